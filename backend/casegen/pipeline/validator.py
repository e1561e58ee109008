"""Stage result validation.

Every stage result is checked immediately after parsing and converted into
a typed result, so downstream code never handles an unvalidated dict.
Shape problems raise ShapeMismatch, wrong batch cardinality (or an
identifier collision inside a batch) raises CountMismatch.  Neither is
partially accepted.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Union

from casegen.pipeline.errors import CountMismatch, ShapeMismatch
from casegen.pipeline.models import Entity, HiddenContext, Stage, Victim, Weapon

logger = logging.getLogger(__name__)

_DIGITS_RE = re.compile(r"\d+")


# ═══════════════════════════════════════════════════
# Expectations (what the stage was asked for)
# ═══════════════════════════════════════════════════

@dataclass(frozen=True)
class CoreExpectation:
    with_weapon: bool = False


@dataclass(frozen=True)
class BatchExpectation:
    entity_ids: tuple[str, ...]
    culprit_id: str
    array_key: str = "suspects"


@dataclass(frozen=True)
class HiddenContextExpectation:
    culprit_id: str


# ═══════════════════════════════════════════════════
# Validated results
# ═══════════════════════════════════════════════════

@dataclass
class CoreStageResult:
    title: str
    description: str
    victim: Victim
    weapon: Weapon | None = None


@dataclass
class BatchStageResult:
    entities: list[Entity]


@dataclass
class HiddenContextResult:
    hidden_context: HiddenContext


Expectation = Union[CoreExpectation, BatchExpectation, HiddenContextExpectation]
ValidatedStage = Union[CoreStageResult, BatchStageResult, HiddenContextResult]


def validate(parsed: Any, expectation: Expectation) -> ValidatedStage:
    """Validate a parsed stage result against what the stage was asked for."""
    if isinstance(expectation, CoreExpectation):
        return _validate_core(parsed, expectation)
    if isinstance(expectation, BatchExpectation):
        return _validate_batch(parsed, expectation)
    if isinstance(expectation, HiddenContextExpectation):
        return _validate_hidden_context(parsed, expectation)
    raise TypeError(f"Unknown stage expectation: {type(expectation).__name__}")


# ═══════════════════════════════════════════════════
# Field helpers
# ═══════════════════════════════════════════════════

def _require_object(value: Any, path: str, stage: Stage) -> dict:
    if not isinstance(value, dict):
        raise ShapeMismatch(
            f"Invalid response structure: '{path}' must be an object",
            field=path, stage=stage.value,
        )
    return value


def _require_text(obj: dict, key: str, path: str, stage: Stage) -> str:
    if key not in obj or obj[key] is None:
        raise ShapeMismatch(
            f"Invalid response structure: missing '{path}.{key}'",
            field=f"{path}.{key}", stage=stage.value,
        )
    value = obj[key]
    if isinstance(value, (dict, list)):
        raise ShapeMismatch(
            f"Invalid response structure: '{path}.{key}' must be a string",
            field=f"{path}.{key}", stage=stage.value,
        )
    return str(value).strip()


def _text(obj: dict, key: str) -> str:
    value = obj.get(key)
    if value is None or isinstance(value, (dict, list)):
        return ""
    return str(value).strip()


def _age(value: Any) -> int | None:
    """Coerce ages like 45, "45", "approx. 45 years" to int."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        m = _DIGITS_RE.search(value)
        if m:
            return int(m.group())
    return None


def _text_list(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if v is not None and not isinstance(v, (dict, list)) and str(v).strip()]


# ═══════════════════════════════════════════════════
# Stage 1: core
# ═══════════════════════════════════════════════════

def _validate_core(parsed: Any, expectation: CoreExpectation) -> CoreStageResult:
    stage = Stage.CORE
    root = _require_object(parsed, "$", stage)
    title = _require_text(root, "caseTitle", "$", stage)
    description = _require_text(root, "caseDescription", "$", stage)

    v = _require_object(root.get("victim"), "$.victim", stage)
    victim = Victim(
        name=_require_text(v, "name", "victim", stage),
        age=_age(v.get("age")),
        role=_require_text(v, "role", "victim", stage),
        description=_require_text(v, "description", "victim", stage),
        cause_of_death=_text(v, "causeOfDeath"),
        time_of_death=_text(v, "timeOfDeath"),
        time_of_discovery=_text(v, "timeOfDiscovery"),
        discovered_by=_text(v, "discoveredBy"),
        location=_text(v, "location"),
        body_position=_text(v, "bodyPosition"),
        visible_injuries=_text(v, "visibleInjuries"),
        objects_at_scene=_text(v, "objectsAtScene"),
        signs_of_struggle=_text(v, "signsOfStruggle"),
    )

    weapon = None
    if expectation.with_weapon:
        w = _require_object(root.get("weapon"), "$.weapon", stage)
        weapon = Weapon(
            id=_text(w, "id") or "weapon-1",
            name=_require_text(w, "name", "weapon", stage),
            description=_require_text(w, "description", "weapon", stage),
            location=_text(w, "location"),
            importance="high",
        )

    return CoreStageResult(title=title, description=description, victim=victim, weapon=weapon)


# ═══════════════════════════════════════════════════
# Stage 2: entity batch
# ═══════════════════════════════════════════════════

def _validate_batch(parsed: Any, expectation: BatchExpectation) -> BatchStageResult:
    stage = Stage.ENTITY_BATCHES
    key = expectation.array_key
    root = _require_object(parsed, "$", stage)
    items = root.get(key)
    if items is None and "entities" in root:
        items = root["entities"]
    if not isinstance(items, list):
        raise ShapeMismatch(
            f"Invalid response structure: missing {key} array",
            field=key, stage=stage.value,
        )

    expected = len(expectation.entity_ids)
    if len(items) != expected:
        raise CountMismatch(
            f"AI generated {len(items)} {key} but {expected} were requested for this batch",
            expected=expected, actual=len(items), stage=stage.value,
        )

    for i, item in enumerate(items):
        _require_object(item, f"{key}[{i}]", stage)

    items = _align_to_checklist(items, expectation, stage)

    entities = []
    for entity_id, item in zip(expectation.entity_ids, items):
        path = f"{key}[{entity_id}]"
        claimed = item.get("isCulprit")
        is_culprit = entity_id == expectation.culprit_id
        if isinstance(claimed, bool) and claimed != is_culprit:
            logger.warning(
                f"[validate] Culprit flag drift on {entity_id}: model said {claimed}, "
                f"assignment says {is_culprit}; keeping assignment"
            )
        entities.append(Entity(
            id=entity_id,
            name=_require_text(item, "name", path, stage),
            age=_age(item.get("age")),
            role=_require_text(item, "role", path, stage),
            description=_require_text(item, "description", path, stage),
            motive=_require_text(item, "motive", path, stage),
            alibi=_require_text(item, "alibi", path, stage),
            is_culprit=is_culprit,
            traits=_text_list(item.get("traits")),
            gender=_text(item, "gender").lower(),
            time_gap=_text(item, "timeGap"),
            last_seen=_text(item, "lastSeen"),
            relationship_with_victim=_text(item, "relationshipWithVictim"),
            observations=_text_list(item.get("observations")),
        ))
    return BatchStageResult(entities=entities)


def _returned_id(item: dict) -> str:
    raw = item.get("id")
    if isinstance(raw, (str, int)) and not isinstance(raw, bool):
        return str(raw).strip()
    return ""


def _align_to_checklist(items: list[dict], expectation: BatchExpectation, stage: Stage) -> list[dict]:
    """Order batch items by the identifier checklist.

    Identifiers come from the checklist, never from the output.  When the
    model echoed exactly the checklist ids (in any order) the items are
    re-ordered to match; otherwise they are taken positionally.  Duplicate
    ids inside one batch are an identifier collision.
    """
    returned = [_returned_id(item) for item in items]
    present = [r for r in returned if r]
    if len(present) != len(set(present)):
        raise CountMismatch(
            f"Identifier collision in batch: {returned}",
            expected=len(expectation.entity_ids), actual=len(set(present)),
            stage=stage.value,
        )

    if set(returned) == set(expectation.entity_ids):
        by_id = dict(zip(returned, items))
        return [by_id[eid] for eid in expectation.entity_ids]

    if present:
        logger.info(
            f"[validate] Batch ids {returned} do not match checklist "
            f"{list(expectation.entity_ids)}; assigning positionally"
        )
    return items


# ═══════════════════════════════════════════════════
# Stage 3: hidden context
# ═══════════════════════════════════════════════════

def _validate_hidden_context(parsed: Any, expectation: HiddenContextExpectation) -> HiddenContextResult:
    stage = Stage.HIDDEN_CONTEXT
    root = _require_object(parsed, "$", stage)
    hc = root.get("hiddenContext")
    if hc is None and "culpritReason" in root:
        hc = root
    hc = _require_object(hc, "$.hiddenContext", stage)

    reason = _require_text(hc, "culpritReason", "hiddenContext", stage)
    if "keyClues" not in hc:
        raise ShapeMismatch(
            "Invalid response structure: missing 'hiddenContext.keyClues'",
            field="hiddenContext.keyClues", stage=stage.value,
        )

    claimed = _text(hc, "culpritId")
    if claimed != expectation.culprit_id:
        logger.warning(
            f"[validate] Hidden context names culprit {claimed!r}, "
            f"re-asserting pre-selected {expectation.culprit_id}"
        )

    return HiddenContextResult(hidden_context=HiddenContext(
        culprit_id=expectation.culprit_id,
        culprit_reason=reason,
        key_clues=_text_list(hc.get("keyClues")),
        culprit_traits=_text_list(hc.get("culpritTraits")),
    ))
