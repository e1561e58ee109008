"""Data model for generated case documents.

Internal code works with snake_case dataclasses; ``to_dict()`` produces the
camelCase wire shape the frontend and the Case Store use.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from casegen.config import ENTITY_ID_PREFIX


class Stage(str, Enum):
    """Pipeline states, in execution order."""
    CORE = "core"
    ENTITY_BATCHES = "entity_batches"
    HIDDEN_CONTEXT = "hidden_context"
    DONE = "done"


def entity_id(index: int) -> str:
    """Stable 1-indexed entity identifier, e.g. ``entity-3``."""
    return f"{ENTITY_ID_PREFIX}-{index}"


@dataclass(frozen=True)
class RoleAssignment:
    """Who the culprit is (and who found the body), fixed before generation."""
    culprit_index: int
    special_role_index: int | None = None

    @property
    def culprit_id(self) -> str:
        return entity_id(self.culprit_index)

    @property
    def special_role_id(self) -> str | None:
        if self.special_role_index is None:
            return None
        return entity_id(self.special_role_index)


@dataclass
class CustomScenario:
    place: str
    theme_or_situation: str = ""

    def as_text(self) -> str:
        text = self.place
        if self.theme_or_situation:
            text += f". {self.theme_or_situation}"
        return text


@dataclass
class GenerationRequest:
    """Everything the Facade needs to run one pipeline."""
    case_type: str
    entity_count: int
    clue_count: int
    difficulty: str
    scenario: str | None = None
    custom_scenario: CustomScenario | None = None
    style: str | None = None
    language: str = "es"
    player_names: list[str] = field(default_factory=list)
    player_genders: list[str] = field(default_factory=list)
    entity_kind: str = "suspect"           # suspect | player
    special_role_required: bool = False    # body discoverer
    allow_special_role_overlap: bool = False

    @property
    def scenario_text(self) -> str:
        if self.custom_scenario:
            return self.custom_scenario.as_text()
        return self.scenario or "aleatorio"


@dataclass
class Victim:
    name: str
    age: int | None
    role: str
    description: str
    cause_of_death: str = ""
    time_of_death: str = ""
    time_of_discovery: str = ""
    discovered_by: str = ""
    location: str = ""
    body_position: str = ""
    visible_injuries: str = ""
    objects_at_scene: str = ""
    signs_of_struggle: str = ""

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "age": self.age,
            "role": self.role,
            "description": self.description,
            "causeOfDeath": self.cause_of_death,
            "timeOfDeath": self.time_of_death,
            "timeOfDiscovery": self.time_of_discovery,
            "discoveredBy": self.discovered_by,
            "location": self.location,
            "bodyPosition": self.body_position,
            "visibleInjuries": self.visible_injuries,
            "objectsAtScene": self.objects_at_scene,
            "signsOfStruggle": self.signs_of_struggle,
        }


@dataclass
class Weapon:
    id: str
    name: str
    description: str
    location: str = ""
    photo: str | None = None
    importance: str = "high"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "location": self.location,
            "photo": self.photo,
            "importance": self.importance,
        }


@dataclass
class Entity:
    """A suspect or player. ``photo`` is written only by the reconciler."""
    id: str
    name: str
    age: int | None
    role: str
    description: str
    motive: str
    alibi: str
    is_culprit: bool = False
    traits: list[str] = field(default_factory=list)
    gender: str = ""
    photo: str | None = None
    time_gap: str = ""
    last_seen: str = ""
    relationship_with_victim: str = ""
    observations: list[str] = field(default_factory=list)

    def summary_line(self) -> str:
        return f"- {self.name} ({self.role}): {self.description or 'No description'}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "age": self.age,
            "role": self.role,
            "description": self.description,
            "motive": self.motive,
            "alibi": self.alibi,
            "isCulprit": self.is_culprit,
            "traits": list(self.traits),
            "gender": self.gender,
            "photo": self.photo,
            "timeGap": self.time_gap,
            "lastSeen": self.last_seen,
            "relationshipWithVictim": self.relationship_with_victim,
            "observations": list(self.observations),
        }


@dataclass
class HiddenContext:
    culprit_id: str
    culprit_reason: str
    key_clues: list[str] = field(default_factory=list)
    culprit_traits: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "culpritId": self.culprit_id,
            "culpritReason": self.culprit_reason,
            "keyClues": list(self.key_clues),
            "culpritTraits": list(self.culprit_traits),
        }


@dataclass
class CaseConfig:
    case_type: str
    scenario: str
    difficulty: str
    entity_count: int
    clue_count: int
    entity_kind: str = "suspect"
    style: str | None = None
    language: str = "es"
    custom_scenario: CustomScenario | None = None

    @classmethod
    def from_request(cls, request: GenerationRequest) -> "CaseConfig":
        return cls(
            case_type=request.case_type,
            scenario=request.scenario_text,
            difficulty=request.difficulty,
            entity_count=request.entity_count,
            clue_count=request.clue_count,
            entity_kind=request.entity_kind,
            style=request.style,
            language=request.language,
            custom_scenario=request.custom_scenario,
        )

    def to_dict(self) -> dict:
        result: dict[str, Any] = {
            "caseType": self.case_type,
            "scenario": self.scenario,
            "difficulty": self.difficulty,
            "totalEntities": self.entity_count,
            "totalClues": self.clue_count,
            "entityKind": self.entity_kind,
            "style": self.style,
            "language": self.language,
        }
        if self.custom_scenario:
            result["customScenario"] = {
                "place": self.custom_scenario.place,
                "themeOrSituation": self.custom_scenario.theme_or_situation,
            }
        return result


@dataclass
class CaseDocument:
    """The assembled case. Filled stage by stage, frozen once persisted."""
    config: CaseConfig
    title: str = ""
    description: str = ""
    victim: Victim | None = None
    weapon: Weapon | None = None
    entities: list[Entity] = field(default_factory=list)
    hidden_context: HiddenContext | None = None
    id: str | None = None
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())

    @property
    def entities_key(self) -> str:
        return "players" if self.config.entity_kind == "player" else "suspects"

    @property
    def culprits(self) -> list[Entity]:
        return [e for e in self.entities if e.is_culprit]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "createdAt": self.created_at,
            "caseTitle": self.title,
            "caseDescription": self.description,
            "victim": self.victim.to_dict() if self.victim else None,
            "weapon": self.weapon.to_dict() if self.weapon else None,
            self.entities_key: [e.to_dict() for e in self.entities],
            "hiddenContext": self.hidden_context.to_dict() if self.hidden_context else None,
            "config": self.config.to_dict(),
        }


@dataclass
class CatalogRecord:
    """A read-only catalog row (suspect portrait or weapon)."""
    id: str
    image_url: str | None
    gender: str = ""
    approx_age: int | None = None
    occupation: dict[str, str] = field(default_factory=dict)   # {"en": ..., "es": ...}
    name: dict[str, str] = field(default_factory=dict)         # weapons only
    tags: list[str] = field(default_factory=list)
    style: str | None = None

    @classmethod
    def from_row(cls, row: dict) -> "CatalogRecord":
        occupation = row.get("occupation") or {}
        if isinstance(occupation, str):
            occupation = {"en": occupation, "es": occupation}
        name = row.get("name") or {}
        if isinstance(name, str):
            name = {"en": name, "es": name}
        age = row.get("approx_age")
        try:
            age = int(age) if age is not None else None
        except (TypeError, ValueError):
            age = None
        return cls(
            id=str(row.get("id", "")),
            image_url=row.get("image_url"),
            gender=(row.get("gender") or "").lower(),
            approx_age=age,
            occupation=occupation,
            name=name,
            tags=list(row.get("tags") or []),
            style=row.get("style"),
        )

    def occupation_for(self, language: str) -> str:
        return self.occupation.get(language) or self.occupation.get("en") or self.occupation.get("es") or ""

    def name_for(self, language: str) -> str:
        return self.name.get(language) or self.name.get("en") or self.name.get("es") or ""
