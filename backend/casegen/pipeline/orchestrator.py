"""Stage orchestrator: drives one case through the generation stages.

  Stage 1  → Case core (title, description, victim, weapon)
  Stage 2  → Entities, in fixed-size batches with an id checklist each
  Stage 3  → Hidden context (solution), given the full cast

Strictly sequential and retry-free: a stage failure stops the run at that
stage and nothing after it executes.  Every raw response goes through
repair → validate before it touches the document.
"""

import logging
import time

from casegen.config import (
    BATCH_BASE_TOKENS, BATCH_MAX_TOKENS, BATCH_TOKENS_PER_ENTITY,
    CORE_MAX_TOKENS, ENTITY_BATCH_SIZE, HIDDEN_CONTEXT_MAX_TOKENS,
    MURDER_CASE_TYPES,
)
from casegen.pipeline import prompts, schemas
from casegen.pipeline.errors import CountMismatch, StageError
from casegen.pipeline.json_repair import repair_and_parse
from casegen.pipeline.llm_client import LLMProgressCallback, TextGenerator, _noop_cb
from casegen.pipeline.models import (
    CaseConfig, CaseDocument, CatalogRecord, Entity, GenerationRequest,
    RoleAssignment, Stage, entity_id,
)
from casegen.pipeline.validator import (
    BatchExpectation, CoreExpectation, HiddenContextExpectation, validate,
)

logger = logging.getLogger(__name__)


def batch_token_budget(batch_size: int) -> int:
    """Output-size hint for one entity batch."""
    return min(BATCH_MAX_TOKENS, BATCH_BASE_TOKENS + BATCH_TOKENS_PER_ENTITY * batch_size)


def plan_batches(entity_count: int, batch_size: int) -> list[list[str]]:
    """Split ``entity-1 .. entity-N`` into consecutive batches."""
    ids = [entity_id(i) for i in range(1, entity_count + 1)]
    return [ids[i:i + batch_size] for i in range(0, entity_count, batch_size)]


class StageOrchestrator:
    """Runs CORE → ENTITY_BATCHES → HIDDEN_CONTEXT → DONE for one request."""

    def __init__(
        self,
        generator: TextGenerator,
        batch_size: int = ENTITY_BATCH_SIZE,
        on_progress: LLMProgressCallback | None = None,
    ):
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self.generator = generator
        self.batch_size = batch_size
        self.on_progress = on_progress or _noop_cb
        self.stage = Stage.CORE

    async def _call(
        self,
        stage: Stage,
        label: str,
        system_name: str,
        prompt: str,
        max_tokens: int,
        schema: dict,
        expectation,
        request: GenerationRequest,
    ):
        """generate → repair → validate; stamps the stage on any StageError."""
        try:
            raw = await self.generator.generate(
                prompt,
                system_prompt=prompts.load_system_prompt(system_name, request),
                max_tokens=max_tokens,
                task_label=label,
                schema=schema,
                on_progress=self.on_progress,
            )
            parsed = repair_and_parse(raw)
            return validate(parsed, expectation)
        except StageError as e:
            if not e.stage:
                e.stage = stage.value
            logger.error(f"[{label}] {type(e).__name__} at stage {e.stage}: {e}")
            raise

    async def run(
        self,
        request: GenerationRequest,
        assignment: RoleAssignment,
        records: list[CatalogRecord],
        weapon_record: CatalogRecord | None = None,
    ) -> CaseDocument:
        """Generate every section of the case; imagery is left to the reconciler."""
        t0 = time.time()
        document = CaseDocument(config=CaseConfig.from_request(request))
        array_key = document.entities_key
        with_weapon = request.case_type.lower() in MURDER_CASE_TYPES

        # ═══════════════════════════════════════════
        # STAGE 1: CASE CORE
        # ═══════════════════════════════════════════
        self.stage = Stage.CORE
        await self.on_progress("stage_start", "Generating case core...", {"stage": self.stage.value})
        core = await self._call(
            Stage.CORE, "Case Core", "case_core",
            prompts.build_core_prompt(request, assignment, weapon_record if with_weapon else None),
            CORE_MAX_TOKENS, schemas.core_schema(with_weapon),
            CoreExpectation(with_weapon=with_weapon), request,
        )
        document.title = core.title
        document.description = core.description
        document.victim = core.victim
        document.weapon = core.weapon
        if document.weapon and weapon_record:
            # The catalog weapon's name is authoritative
            document.weapon.name = weapon_record.name_for(request.language) or document.weapon.name
        await self.on_progress("stage_done", f"Case core: {core.title}", {"stage": self.stage.value})

        # ═══════════════════════════════════════════
        # STAGE 2: ENTITY BATCHES
        # ═══════════════════════════════════════════
        self.stage = Stage.ENTITY_BATCHES
        batches = plan_batches(request.entity_count, self.batch_size)
        entities: list[Entity] = []
        for n, batch_ids in enumerate(batches, start=1):
            start = len(entities)
            batch_records = [records[i] if i < len(records) else None for i in range(start, start + len(batch_ids))]
            await self.on_progress("stage_start", f"Generating {array_key} batch {n}/{len(batches)}...", {
                "stage": self.stage.value,
                "batch": n,
                "batch_count": len(batches),
                "ids": batch_ids,
            })
            result = await self._call(
                Stage.ENTITY_BATCHES, f"{array_key.capitalize()} Batch {n}/{len(batches)}", "entity_batch",
                prompts.build_batch_prompt(
                    request, assignment, batch_ids, batch_records, start, entities, array_key,
                ),
                batch_token_budget(len(batch_ids)), schemas.batch_schema(array_key, len(batch_ids)),
                BatchExpectation(tuple(batch_ids), assignment.culprit_id, array_key), request,
            )
            entities.extend(result.entities)
            await self.on_progress("stage_done", f"Batch {n}/{len(batches)}: {len(result.entities)} {array_key}", {
                "stage": self.stage.value,
                "batch": n,
            })

        if len(entities) != request.entity_count:
            raise CountMismatch(
                f"Generated {len(entities)} {array_key}, expected {request.entity_count}",
                expected=request.entity_count, actual=len(entities), stage=self.stage.value,
            )
        culprits = [e.id for e in entities if e.is_culprit]
        if culprits != [assignment.culprit_id]:
            raise CountMismatch(
                f"Expected exactly one culprit ({assignment.culprit_id}), found {culprits}",
                expected=1, actual=len(culprits), stage=self.stage.value,
            )
        document.entities = entities

        # ═══════════════════════════════════════════
        # STAGE 3: HIDDEN CONTEXT
        # ═══════════════════════════════════════════
        self.stage = Stage.HIDDEN_CONTEXT
        await self.on_progress("stage_start", "Generating hidden context...", {"stage": self.stage.value})
        hidden = await self._call(
            Stage.HIDDEN_CONTEXT, "Hidden Context", "hidden_context",
            prompts.build_hidden_context_prompt(request, assignment, entities),
            HIDDEN_CONTEXT_MAX_TOKENS, schemas.HIDDEN_CONTEXT_SCHEMA,
            HiddenContextExpectation(assignment.culprit_id), request,
        )
        document.hidden_context = hidden.hidden_context
        await self.on_progress("stage_done", "Hidden context ready", {"stage": self.stage.value})

        self.stage = Stage.DONE
        logger.info(
            f"[orchestrator] Case '{document.title}' generated: {len(entities)} {array_key}, "
            f"{len(batches)} batch(es), {time.time() - t0:.1f}s"
        )
        return document
