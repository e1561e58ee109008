"""Tests for the stage orchestrator.

Tests cover:
  - Batch planning and token budgets
  - Stage order, prompt contents (checklist, culprit flag, prior summary)
  - Stage failures halt the run and carry the stage name
"""

import pytest

from casegen.pipeline.errors import CountMismatch, ShapeMismatch, UnrecoverableFormat, UpstreamCallFailure
from casegen.pipeline.models import GenerationRequest, RoleAssignment, Stage
from casegen.pipeline.orchestrator import StageOrchestrator, batch_token_budget, plan_batches
from conftest import ScriptedGenerator, make_batch, make_core, make_hidden


def _request(count=5, case_type="asesinato", entity_kind="suspect"):
    return GenerationRequest(
        case_type=case_type, entity_count=count, clue_count=4,
        difficulty="normal", scenario="hotel", language="en", entity_kind=entity_kind,
    )


# ═══════════════════════════════════════════════════
# Pure helpers
# ═══════════════════════════════════════════════════

class TestPlanning:

    def test_plan_batches(self):
        assert plan_batches(5, 3) == [["entity-1", "entity-2", "entity-3"], ["entity-4", "entity-5"]]

    def test_plan_single_batch(self):
        assert plan_batches(2, 3) == [["entity-1", "entity-2"]]

    def test_token_budget(self):
        assert batch_token_budget(1) == 1500
        assert batch_token_budget(3) == 2500
        assert batch_token_budget(10) == 4000

    def test_invalid_batch_size(self):
        with pytest.raises(ValueError):
            StageOrchestrator(ScriptedGenerator([]), batch_size=0)


# ═══════════════════════════════════════════════════
# Full run
# ═══════════════════════════════════════════════════

class TestRun:

    @pytest.mark.asyncio
    async def test_stages_in_order(self, catalog_records, weapon_record):
        assignment = RoleAssignment(culprit_index=4)
        gen = ScriptedGenerator([
            make_core(),
            make_batch(["entity-1", "entity-2", "entity-3"], "entity-4"),
            make_batch(["entity-4", "entity-5"], "entity-4"),
            make_hidden("entity-4"),
        ])
        orch = StageOrchestrator(gen, batch_size=3)
        doc = await orch.run(_request(5), assignment, catalog_records, weapon_record)

        assert orch.stage == Stage.DONE
        assert [c["task_label"] for c in gen.calls] == [
            "Case Core", "Suspects Batch 1/2", "Suspects Batch 2/2", "Hidden Context",
        ]
        assert [c["max_tokens"] for c in gen.calls] == [2000, 2500, 2000, 1500]
        assert all("Language: ENGLISH" in c["system_prompt"] for c in gen.calls)
        assert "suspects" in gen.calls[1]["system_prompt"]
        assert [e.id for e in doc.entities] == [f"entity-{i}" for i in range(1, 6)]
        assert [e.id for e in doc.culprits] == ["entity-4"]
        assert doc.hidden_context.culprit_id == "entity-4"
        # Catalog weapon name wins over the generated one
        assert doc.weapon.name == "Candlestick"

    @pytest.mark.asyncio
    async def test_batch_prompts_carry_checklist_and_culprit(self, catalog_records):
        gen = ScriptedGenerator([
            make_core(),
            make_batch(["entity-1", "entity-2", "entity-3"], "entity-4"),
            make_batch(["entity-4", "entity-5"], "entity-4"),
            make_hidden("entity-4"),
        ])
        await StageOrchestrator(gen, batch_size=3).run(_request(5), RoleAssignment(4), catalog_records)

        first, second = gen.calls[1]["prompt"], gen.calls[2]["prompt"]
        assert "1. entity-1" in first and "3. entity-3" in first
        assert "NOT in this batch" in first
        assert "THE CULPRIT IS entity-4" in second
        # Prior-entity summary reaches the second batch only
        assert "- Person 1 (Chef): Person 1 keeps to themselves." in second
        assert "ALREADY GENERATED" not in first
        # Batch 2 has no catalog record left for entity-4/5
        assert "entity-4: no catalog profile" in second
        assert gen.calls[2]["schema"]["properties"]["suspects"]["maxItems"] == 2

    @pytest.mark.asyncio
    async def test_no_weapon_for_non_murder(self, catalog_records, weapon_record):
        gen = ScriptedGenerator([
            make_core(with_weapon=False),
            make_batch(["entity-1", "entity-2"], "entity-1"),
            make_hidden("entity-1"),
        ])
        doc = await StageOrchestrator(gen).run(_request(2, case_type="robo"), RoleAssignment(1), catalog_records, weapon_record)
        assert doc.weapon is None
        assert "weapon" not in gen.calls[0]["schema"]["properties"]

    @pytest.mark.asyncio
    async def test_players_case(self, catalog_records):
        gen = ScriptedGenerator([
            make_core(),
            make_batch(["entity-1", "entity-2"], "entity-2", array_key="players"),
            make_hidden("entity-2"),
        ])
        doc = await StageOrchestrator(gen).run(_request(2, entity_kind="player"), RoleAssignment(2), catalog_records)
        assert doc.entities_key == "players"
        assert "players" in doc.to_dict()
        assert gen.calls[1]["task_label"] == "Players Batch 1/1"

    @pytest.mark.asyncio
    async def test_truncated_response_is_repaired(self, catalog_records):
        truncated_hidden = '{"hiddenContext": {"culpritId": "entity-1", "culpritReason": "Jealousy", "keyClues": ["a", "b'
        gen = ScriptedGenerator([
            make_core(),
            make_batch(["entity-1"], "entity-1"),
            truncated_hidden,
        ])
        doc = await StageOrchestrator(gen).run(_request(1), RoleAssignment(1), catalog_records)
        assert doc.hidden_context.key_clues == ["a", "b"]


# ═══════════════════════════════════════════════════
# Failures
# ═══════════════════════════════════════════════════

class TestFailures:

    @pytest.mark.asyncio
    async def test_core_failure_stops_everything(self, catalog_records):
        gen = ScriptedGenerator(["no json at all"])
        orch = StageOrchestrator(gen)
        with pytest.raises(UnrecoverableFormat) as exc:
            await orch.run(_request(3), RoleAssignment(1), catalog_records)
        assert exc.value.stage == "core"
        assert len(gen.calls) == 1
        assert orch.stage == Stage.CORE

    @pytest.mark.asyncio
    async def test_short_batch_halts_before_hidden_context(self, catalog_records):
        gen = ScriptedGenerator([
            make_core(),
            make_batch(["entity-1", "entity-2"], "entity-2"),   # asked for 3
            make_hidden("entity-2"),
        ])
        orch = StageOrchestrator(gen, batch_size=3)
        with pytest.raises(CountMismatch) as exc:
            await orch.run(_request(3), RoleAssignment(2), catalog_records)
        assert exc.value.stage == "entity_batches"
        assert len(gen.calls) == 2
        assert orch.stage == Stage.ENTITY_BATCHES

    @pytest.mark.asyncio
    async def test_hidden_context_shape_failure(self, catalog_records):
        gen = ScriptedGenerator([
            make_core(),
            make_batch(["entity-1"], "entity-1"),
            {"hiddenContext": {"culpritId": "entity-1"}},
        ])
        with pytest.raises(ShapeMismatch) as exc:
            await StageOrchestrator(gen).run(_request(1), RoleAssignment(1), catalog_records)
        assert exc.value.stage == "hidden_context"

    @pytest.mark.asyncio
    async def test_upstream_failure_carries_stage(self, catalog_records):
        gen = ScriptedGenerator([make_core(), UpstreamCallFailure("timeout")])
        with pytest.raises(UpstreamCallFailure) as exc:
            await StageOrchestrator(gen).run(_request(2), RoleAssignment(1), catalog_records)
        assert exc.value.stage == "entity_batches"

    @pytest.mark.asyncio
    async def test_progress_events(self, catalog_records):
        events = []

        async def on_progress(stage, message, details):
            events.append((stage, details.get("stage")))

        gen = ScriptedGenerator([make_core(), make_batch(["entity-1"], "entity-1"), make_hidden("entity-1")])
        await StageOrchestrator(gen, on_progress=on_progress).run(_request(1), RoleAssignment(1), catalog_records)
        assert events == [
            ("stage_start", "core"), ("stage_done", "core"),
            ("stage_start", "entity_batches"), ("stage_done", "entity_batches"),
            ("stage_start", "hidden_context"), ("stage_done", "hidden_context"),
        ]
