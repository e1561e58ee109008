"""Prompt builders for the three generation stages.

System prompts live in ``casegen/prompts/*.txt``; the user prompts carried
here hold the per-run facts (configuration, role assignment, identifier
checklist, catalog profiles, prior-entity summary).
"""

from __future__ import annotations

import json

from casegen.config import LANGUAGES, MURDER_CASE_TYPES, PROMPTS_DIR
from casegen.pipeline.models import CatalogRecord, Entity, GenerationRequest, RoleAssignment


def load_system_prompt(name: str, request: GenerationRequest) -> str:
    template = (PROMPTS_DIR / f"{name}.txt").read_text(encoding="utf-8").strip()
    singular = "player" if request.entity_kind == "player" else "suspect"
    return template.format(
        language=LANGUAGES.get(request.language, LANGUAGES["es"]),
        entity_singular=singular,
        entity_plural=f"{singular}s",
    )


def _configuration_block(request: GenerationRequest) -> str:
    lines = [
        "CONFIGURATION:",
        f"- Case type: {request.case_type}",
    ]
    if request.custom_scenario:
        lines.append(f"- Custom scenario: {request.custom_scenario.as_text()}")
        lines.append(f"  - Place: {request.custom_scenario.place}")
        if request.custom_scenario.theme_or_situation:
            lines.append(f"  - Theme/situation: {request.custom_scenario.theme_or_situation}")
        lines.append("  Adapt every element (roles, locations, details) to this scenario.")
    else:
        lines.append(f"- Scenario: {request.scenario_text}")
    lines.append(f"- Difficulty: {request.difficulty}")
    lines.append(f"- Language: {LANGUAGES.get(request.language, LANGUAGES['es'])}")
    return "\n".join(lines)


# ═══════════════════════════════════════════════════
# Stage 1: core
# ═══════════════════════════════════════════════════

def build_core_prompt(
    request: GenerationRequest,
    assignment: RoleAssignment,
    weapon_record: CatalogRecord | None,
) -> str:
    parts = [
        "Generate ONLY the core of a mystery case (title, description, victim"
        + (", weapon" if weapon_record else "") + ").",
        "",
        _configuration_block(request),
    ]

    if weapon_record:
        parts += [
            "",
            "MURDER WEAPON:",
            f"- Name: {weapon_record.name_for(request.language)}",
            'Use id "weapon-1" and importance "high".',
        ]

    if request.case_type.lower() in MURDER_CASE_TYPES:
        parts.append("- causeOfDeath is REQUIRED and must match the weapon.")

    if assignment.special_role_id:
        parts += [
            "",
            f'The body was discovered by {assignment.special_role_id}. "discoveredBy" MUST start with '
            f'"{assignment.special_role_id}" followed by the time (e.g. "{assignment.special_role_id} at 11:00pm").',
            "timeOfDiscovery is REQUIRED.",
        ]

    parts += [
        "",
        "Respond with one JSON object with keys: caseTitle, caseDescription, victim"
        + (", weapon" if weapon_record else "") + ".",
    ]
    return "\n".join(parts)


# ═══════════════════════════════════════════════════
# Stage 2: entity batch
# ═══════════════════════════════════════════════════

def _profile_line(entity_id: str, record: CatalogRecord | None, language: str) -> str:
    if record is None:
        return f"- {entity_id}: no catalog profile, invent one that fits the scenario"
    tags = ", ".join(record.tags) or "no tags"
    return (
        f"- {entity_id}: gender {record.gender or 'unknown'}, approx. age "
        f"{record.approx_age if record.approx_age is not None else 'unknown'}, "
        f"occupation {record.occupation_for(language) or 'unknown'} (tags: {tags})"
    )


def build_batch_prompt(
    request: GenerationRequest,
    assignment: RoleAssignment,
    batch_ids: list[str],
    batch_records: list[CatalogRecord | None],
    batch_start: int,
    prior_entities: list[Entity],
    array_key: str,
) -> str:
    """User prompt for one entity batch.

    ``batch_start`` is the 0-based position of the first id in the batch,
    used to line up provided player names and genders.
    """
    kind = "player" if request.entity_kind == "player" else "suspect"
    size = len(batch_ids)

    parts = [
        f"Generate EXACTLY {size} {kind}s for a mystery case.",
        "",
        _configuration_block(request),
        f"- Total {kind}s in the case: {request.entity_count}",
        f"- This batch: {batch_ids[0]} to {batch_ids[-1]}",
        "",
        "CATALOG PROFILES FOR THIS BATCH:",
    ]
    for eid, record in zip(batch_ids, batch_records):
        parts.append(_profile_line(eid, record, request.language))

    names = request.player_names[batch_start:batch_start + size]
    genders = request.player_genders[batch_start:batch_start + size]
    if names:
        parts += ["", "PROVIDED NAMES (use them exactly, in order):"]
        for eid, name in zip(batch_ids, names):
            parts.append(f"- {eid}: {name}")
    if genders:
        parts += ["", "PROVIDED GENDERS (use them exactly, in order):"]
        for eid, gender in zip(batch_ids, genders):
            parts.append(f"- {eid}: {gender}")

    if prior_entities:
        parts += ["", f"{kind.upper()}S ALREADY GENERATED (context):"]
        parts += [e.summary_line() for e in prior_entities]

    parts += [
        "",
        f'MANDATORY ID CHECKLIST - the "{array_key}" array must contain exactly these {size} items:',
    ]
    parts += [f"  {n}. {eid}" for n, eid in enumerate(batch_ids, start=1)]

    if assignment.culprit_id in batch_ids:
        parts.append(f"THE CULPRIT IS {assignment.culprit_id} (in this batch). Only it has isCulprit: true.")
    else:
        parts.append("The culprit is NOT in this batch: all must look suspicious, every isCulprit is false.")

    if assignment.special_role_id and assignment.special_role_id in batch_ids:
        parts.append(f"{assignment.special_role_id} discovered the body; reflect it in their alibi.")

    parts += [
        "",
        f'Respond with one JSON object: {{"{array_key}": [...]}} where each item has '
        "id, name, age, role, description, motive, alibi, isCulprit, traits, gender, "
        "timeGap, lastSeen, relationshipWithVictim"
        + (", observations" if kind == "player" else "") + ".",
    ]
    return "\n".join(parts)


# ═══════════════════════════════════════════════════
# Stage 3: hidden context
# ═══════════════════════════════════════════════════

def build_hidden_context_prompt(
    request: GenerationRequest,
    assignment: RoleAssignment,
    entities: list[Entity],
) -> str:
    culprit = next((e for e in entities if e.id == assignment.culprit_id), None)
    culprit_name = culprit.name if culprit else assignment.culprit_id

    parts = [
        "Generate the hidden context (solution) of a mystery case.",
        "",
        _configuration_block(request),
        f"- Culprit: {assignment.culprit_id} ({culprit_name})",
        "",
        "CAST:",
    ]
    parts += [f"- {e.name} ({e.id}): {e.role} - {e.motive or 'no motive'}" for e in entities]

    example = {
        "hiddenContext": {
            "culpritId": assignment.culprit_id,
            "culpritReason": "...",
            "keyClues": ["...", "...", "..."],
            "culpritTraits": ["...", "..."],
        }
    }
    parts += [
        "",
        "Respond with one JSON object shaped like:",
        json.dumps(example, ensure_ascii=False),
    ]
    return "\n".join(parts)
