#!/usr/bin/env python3
"""CLI tool to generate a mystery case or inspect stored ones.

Usage:
    python generate_case.py --suspects 3 --scenario mansion         # Generate a suspects case
    python generate_case.py --suspects 5 --impostor --names Ana Luis Eva Tom Sara
    python generate_case.py --custom-place "Space station" --theme "Oxygen leak"
    python generate_case.py --list                                  # List stored cases
    python generate_case.py --show 0973f73e                         # Print a stored case
    python generate_case.py ... --json                              # Output raw JSON

Examples:
    python generate_case.py --suspects 6 --scenario oficina --difficulty hard --lang en -v
    python generate_case.py --show 0973f73e --json
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

# Ensure the backend package is importable
sys.path.insert(0, str(Path(__file__).resolve().parent))

from casegen.config import CASES_DIR, LANGUAGES, MAX_ENTITIES
from casegen.pipeline.case_store import FileCaseStore
from casegen.pipeline.catalog import SupabaseCatalog
from casegen.pipeline.errors import CaseGenerationError
from casegen.pipeline.facade import CasePipeline
from casegen.pipeline.llm_client import create_generator
from casegen.pipeline.models import CustomScenario, GenerationRequest


def list_cases(store: FileCaseStore):
    """List all stored cases with summary info."""
    ids = store.list_ids()
    if not ids:
        print("No stored cases found.")
        return

    print(f"\n{'Case ID':<10} {'Type':<12} {'Cast':>4}  {'Scenario':<20} {'Title'}")
    print("─" * 80)
    for case_id in ids:
        try:
            data = store.load(case_id)
        except (OSError, json.JSONDecodeError) as e:
            print(f"{case_id:<10}  ERROR: {e}")
            continue
        config = data.get("config") or {}
        cast = data.get("players") or data.get("suspects") or []
        print(
            f"{case_id:<10} {config.get('caseType', '?'):<12} {len(cast):>4}  "
            f"{str(config.get('scenario', '?'))[:20]:<20} {data.get('caseTitle', '')}"
        )
    print()


def print_summary(data: dict):
    """Pretty-print a case document."""
    print(f"\n{'═' * 70}")
    print(f"  {data.get('caseTitle', '')}  [{data.get('id')}]")
    print(f"{'═' * 70}")
    print(f"  {data.get('caseDescription', '')}\n")

    victim = data.get("victim") or {}
    print(f"  Victim: {victim.get('name')} ({victim.get('age')}), {victim.get('role')}")
    if victim.get("discoveredBy"):
        print(f"  Discovered by: {victim['discoveredBy']}")
    weapon = data.get("weapon")
    if weapon:
        print(f"  Weapon: {weapon.get('name')}  {weapon.get('photo') or '(no image)'}")

    hidden = data.get("hiddenContext") or {}
    cast = data.get("players") or data.get("suspects") or []
    print(f"\n  Cast ({len(cast)}):")
    for e in cast:
        marker = "★" if e.get("id") == hidden.get("culpritId") else " "
        print(f"   {marker} {e.get('id'):<10} {e.get('name', ''):<22} {e.get('role', ''):<24} {'img' if e.get('photo') else '-'}")

    if hidden:
        print(f"\n  Culprit: {hidden.get('culpritId')}")
        print(f"  Reason:  {hidden.get('culpritReason')}")
        for clue in hidden.get("keyClues", []):
            print(f"   • {clue}")
    print()


async def _print_progress(stage: str, message: str, details: dict) -> None:
    if stage in ("stage_start", "stage_done", "llm_failed"):
        print(f"  … {message}")


async def generate(args) -> dict:
    custom = CustomScenario(args.custom_place, args.theme or "") if args.custom_place else None
    request = GenerationRequest(
        case_type=args.case_type,
        entity_count=args.suspects,
        clue_count=args.clues,
        difficulty=args.difficulty,
        scenario=None if custom else args.scenario,
        custom_scenario=custom,
        style=args.style,
        language=args.lang,
        player_names=args.names or [],
        player_genders=[g.lower() for g in (args.genders or [])],
        entity_kind="player" if args.impostor else "suspect",
        special_role_required=args.impostor,
        allow_special_role_overlap=args.impostor,
    )
    pipeline = CasePipeline(
        generator=create_generator(),
        catalog=SupabaseCatalog(),
        store=FileCaseStore(CASES_DIR),
    )
    document = await pipeline.generate(request, on_progress=None if args.json else _print_progress)
    return document.to_dict()


def main():
    parser = argparse.ArgumentParser(
        description="Mystery case generator CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--list", action="store_true", help="List stored cases")
    parser.add_argument("--show", metavar="CASE_ID", help="Print a stored case")
    parser.add_argument("--json", action="store_true", help="Output raw JSON instead of pretty print")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    parser.add_argument("--case-type", default="asesinato", help="Case type (default: asesinato)")
    parser.add_argument("--suspects", type=int, default=3, help=f"Number of suspects/players (1-{MAX_ENTITIES})")
    parser.add_argument("--clues", type=int, default=5, help="Number of clues")
    parser.add_argument("--difficulty", default="normal", help="Difficulty label")
    parser.add_argument("--scenario", default="aleatorio", help="Scenario name (mansion, hotel, oficina, ...)")
    parser.add_argument("--custom-place", help="Custom scenario place (replaces --scenario)")
    parser.add_argument("--theme", help="Custom scenario theme or situation")
    parser.add_argument("--style", choices=["realistic", "pixel"], help="Catalog image style")
    parser.add_argument("--lang", default="es", choices=sorted(LANGUAGES), help="Output language")
    parser.add_argument("--names", nargs="+", help="Player names, in order")
    parser.add_argument("--genders", nargs="+", help="Player genders, in order")
    parser.add_argument("--impostor", action="store_true", help="Players case with a body discoverer")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    store = FileCaseStore(CASES_DIR)

    if args.list:
        list_cases(store)
        return

    if args.show:
        try:
            data = store.load(args.show)
        except FileNotFoundError:
            print(f"Case {args.show} not found.")
            sys.exit(1)
        if args.json:
            print(json.dumps(data, indent=2, ensure_ascii=False))
        else:
            print_summary(data)
        return

    if not 1 <= args.suspects <= MAX_ENTITIES:
        parser.error(f"--suspects must be between 1 and {MAX_ENTITIES}")

    try:
        data = asyncio.run(generate(args))
    except CaseGenerationError as e:
        print(f"Generation failed ({type(e).__name__}): {e}", file=sys.stderr)
        sys.exit(1)

    if args.json:
        print(json.dumps(data, indent=2, ensure_ascii=False))
    else:
        print_summary(data)


if __name__ == "__main__":
    main()
