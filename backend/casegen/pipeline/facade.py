"""Pipeline facade: one call from request to persisted case.

Fetches catalog records, fixes the role assignment, runs the stage
orchestrator, applies player names, reconciles imagery and persists.
Nothing is saved unless every step before persistence succeeds.
"""

import logging
import random
import re

from casegen.config import ENTITY_BATCH_SIZE, MURDER_CASE_TYPES
from casegen.pipeline import reconciler, roles
from casegen.pipeline.case_store import CaseStore
from casegen.pipeline.catalog import EntityCatalog
from casegen.pipeline.llm_client import LLMProgressCallback, TextGenerator
from casegen.pipeline.models import CaseDocument, GenerationRequest, RoleAssignment
from casegen.pipeline.orchestrator import StageOrchestrator

logger = logging.getLogger(__name__)


class CasePipeline:
    def __init__(
        self,
        generator: TextGenerator,
        catalog: EntityCatalog,
        store: CaseStore,
        rng: random.Random | None = None,
        batch_size: int = ENTITY_BATCH_SIZE,
    ):
        self.generator = generator
        self.catalog = catalog
        self.store = store
        self.rng = rng
        self.batch_size = batch_size

    async def generate(
        self,
        request: GenerationRequest,
        on_progress: LLMProgressCallback | None = None,
    ) -> CaseDocument:
        if request.entity_count < 1:
            raise ValueError(f"entity_count must be >= 1, got {request.entity_count}")

        scene = None if request.custom_scenario else request.scenario
        records = await self.catalog.query_suspects(
            request.entity_count,
            scene=scene,
            style=request.style,
            preferred_genders=request.player_genders or None,
        )
        if len(records) < request.entity_count:
            logger.warning(f"[pipeline] Catalog returned {len(records)}/{request.entity_count} records")

        weapon_record = None
        if request.case_type.lower() in MURDER_CASE_TYPES:
            weapon_record = await self.catalog.select_weapon(scene=scene, style=request.style)

        assignment = roles.assign(
            request.entity_count,
            special_role_required=request.special_role_required,
            rng=self.rng,
            allow_overlap=request.allow_special_role_overlap,
        )

        orchestrator = StageOrchestrator(self.generator, batch_size=self.batch_size, on_progress=on_progress)
        document = await orchestrator.run(request, assignment, records, weapon_record)

        _apply_player_names(document, request.player_names)
        _resolve_discoverer(document, assignment)

        document.entities = reconciler.reconcile(document.entities, records)
        document.weapon = reconciler.attach_weapon_imagery(document.weapon, weapon_record)

        self.store.save(document)
        logger.info(f"[pipeline] Case {document.id} persisted")
        return document


def _apply_player_names(document: CaseDocument, names: list[str]) -> None:
    """Provided names win over generated ones, in entity order."""
    for entity, name in zip(document.entities, names):
        name = (name or "").strip()
        if name and entity.name != name:
            logger.info(f"[pipeline] {entity.id}: replacing generated name '{entity.name}' with '{name}'")
            entity.name = name


def _resolve_discoverer(document: CaseDocument, assignment: RoleAssignment) -> None:
    """Replace the discoverer's id in the victim record with the entity's name."""
    special_id = assignment.special_role_id
    if not special_id or document.victim is None:
        return
    discoverer = next((e for e in document.entities if e.id == special_id), None)
    if discoverer is None:
        return
    text = document.victim.discovered_by
    pattern = re.compile(re.escape(special_id) + r"(?!\d)")
    if pattern.search(text):
        document.victim.discovered_by = pattern.sub(lambda _: discoverer.name, text)
    elif discoverer.name not in text:
        document.victim.discovered_by = f"{discoverer.name}, {text}" if text else discoverer.name
