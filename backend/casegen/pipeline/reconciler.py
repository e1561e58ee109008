"""Entity ↔ catalog reconciliation.

Assigns each generated entity the imagery of its best-matching catalog
record.  Matching is greedy and order-dependent: entities are processed in
order, and a record claimed by one entity is never offered to a later one
within the same run.  Given the same inputs the result is always the same.

Scoring (occupation matched case-insensitively against every locale):
  +10  exact occupation match     (else +3 substring match either way)
  +2   exact gender match
  +2   ages within 1 year         (else +1 within 3 years)
"""

from __future__ import annotations

import logging
from dataclasses import replace

from casegen.pipeline.errors import CatalogExhausted
from casegen.pipeline.models import CatalogRecord, Entity, Weapon

logger = logging.getLogger(__name__)

OCCUPATION_EXACT = 10
OCCUPATION_PARTIAL = 3
GENDER_MATCH = 2
AGE_CLOSE = 2      # |Δ| <= 1
AGE_NEAR = 1       # |Δ| <= 3


def score(entity: Entity, record: CatalogRecord) -> int:
    """Attribute-match score between a generated entity and a catalog record."""
    total = 0

    role = (entity.role or "").strip().lower()
    if role:
        occupations = [o.strip().lower() for o in record.occupation.values() if o and o.strip()]
        if role in occupations:
            total += OCCUPATION_EXACT
        elif any(role in o or o in role for o in occupations):
            total += OCCUPATION_PARTIAL

    if entity.gender and record.gender and entity.gender.lower() == record.gender.lower():
        total += GENDER_MATCH

    if entity.age is not None and record.approx_age is not None:
        delta = abs(entity.age - record.approx_age)
        if delta <= 1:
            total += AGE_CLOSE
        elif delta <= 3:
            total += AGE_NEAR

    return total


def _pick(entity: Entity, records: list[CatalogRecord], claimed: set[str]) -> CatalogRecord:
    unclaimed = [r for r in records if r.id not in claimed]
    if not unclaimed:
        raise CatalogExhausted(f"No unclaimed catalog record left for {entity.id}")

    candidates = unclaimed
    if entity.gender:
        same_gender = [r for r in unclaimed if r.gender == entity.gender.lower()]
        if same_gender:
            candidates = same_gender
        else:
            logger.warning(
                f"[reconcile] No unclaimed '{entity.gender}' record for {entity.id}, "
                f"matching against all {len(unclaimed)} remaining"
            )

    best = candidates[0]
    best_score = score(entity, best)
    for record in candidates[1:]:
        s = score(entity, record)
        if s > best_score:       # strict: ties keep the earlier record
            best, best_score = record, s

    if best_score == 0:
        logger.info(f"[reconcile] {entity.id} ({entity.role}) has no attribute match, using {best.id}")
    return best


def reconcile(entities: list[Entity], records: list[CatalogRecord]) -> list[Entity]:
    """Return copies of *entities* with ``photo`` set from matched records.

    Neither input list is modified.  When the catalog runs out the remaining
    entities keep ``photo=None``.
    """
    claimed: set[str] = set()
    result: list[Entity] = []
    for entity in entities:
        try:
            record = _pick(entity, records, claimed)
        except CatalogExhausted as e:
            logger.warning(f"[reconcile] {e}; leaving imagery empty")
            result.append(replace(entity, photo=None))
            continue
        claimed.add(record.id)
        result.append(replace(entity, photo=record.image_url))
        logger.debug(f"[reconcile] {entity.id} -> {record.id} ({record.occupation_for('es')})")

    matched = sum(1 for e in result if e.photo)
    logger.info(f"[reconcile] Assigned imagery to {matched}/{len(result)} entities from {len(records)} records")
    return result


def attach_weapon_imagery(weapon: Weapon | None, record: CatalogRecord | None) -> Weapon | None:
    """Copy the catalog weapon's imagery onto the generated weapon."""
    if weapon is None:
        return None
    if record is None:
        logger.warning("[reconcile] No weapon record selected, weapon keeps no imagery")
        return replace(weapon, photo=None)
    return replace(weapon, photo=record.image_url)
