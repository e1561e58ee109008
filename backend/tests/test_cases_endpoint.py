"""Tests for the case generation endpoints.

Route functions are called directly with a patched pipeline factory.
"""

import json
import random
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError

from casegen.api import cases
from casegen.api.cases import CaseRequest, generate_impostor_case, generate_initial_case, get_case
from casegen.main import health, request_validation_handler
from casegen.pipeline.errors import CountMismatch, UpstreamCallFailure
from casegen.pipeline.facade import CasePipeline
from conftest import FakeCatalog, ScriptedGenerator, make_batch, make_core, make_hidden


def _body(**overrides) -> CaseRequest:
    data = {"caseType": "asesinato", "suspects": 1, "clues": 3, "difficulty": "normal", "scenario": "mansion"}
    data.update(overrides)
    return CaseRequest(**data)


def _json(response) -> dict:
    return json.loads(response.body)


# ═══════════════════════════════════════════════════
# Request validation
# ═══════════════════════════════════════════════════

class TestValidation:

    def test_suspect_bounds(self):
        with pytest.raises(ValidationError):
            _body(suspects=0)
        with pytest.raises(ValidationError):
            _body(suspects=21)

    def test_missing_required(self):
        with pytest.raises(ValidationError):
            CaseRequest(suspects=3, clues=2, difficulty="x", scenario="hotel")

    @pytest.mark.asyncio
    async def test_scenario_and_custom_both_rejected(self):
        body = _body(customScenario={"place": "Zeppelin"})
        response = await generate_initial_case(body)
        assert response.status_code == 400
        assert _json(response) == {
            "error": "Invalid case request",
            "details": "Provide exactly one of 'scenario' or 'customScenario'",
        }

    @pytest.mark.asyncio
    async def test_neither_scenario_rejected(self):
        response = await generate_impostor_case(_body(scenario=None))
        assert response.status_code == 400
        assert set(_json(response)) == {"error", "details"}
        assert _json(response)["error"] == "Invalid impostor case request"

    @pytest.mark.asyncio
    async def test_unknown_language_rejected(self):
        pipeline = MagicMock()
        with patch.object(cases, "_build_pipeline", return_value=pipeline):
            response = await generate_initial_case(_body(language="fr"))
        assert response.status_code == 400
        assert _json(response)["details"] == "Unsupported language 'fr'"
        pipeline.generate.assert_not_called()

    @pytest.mark.asyncio
    async def test_body_validation_error_envelope(self):
        exc = RequestValidationError([
            {"loc": ("body", "suspects"), "msg": "Input should be greater than or equal to 1", "type": "greater_than_equal"},
        ])
        response = await request_validation_handler(MagicMock(), exc)
        assert response.status_code == 422
        assert _json(response) == {
            "error": "Invalid request body",
            "details": "body.suspects: Input should be greater than or equal to 1",
        }


# ═══════════════════════════════════════════════════
# Generation endpoints
# ═══════════════════════════════════════════════════

class TestGenerate:

    @pytest.mark.asyncio
    async def test_success_returns_document(self, catalog_records, weapon_record, case_store):
        gen = ScriptedGenerator([make_core(), make_batch(["entity-1"], "entity-1"), make_hidden("entity-1")])
        pipeline = CasePipeline(gen, FakeCatalog(catalog_records, weapon_record), case_store, rng=random.Random(0))

        with patch.object(cases, "_build_pipeline", return_value=pipeline):
            response = await generate_initial_case(_body())

        assert response.status_code == 200
        data = _json(response)
        assert data["suspects"][0]["isCulprit"] is True
        assert data["hiddenContext"]["culpritId"] == "entity-1"
        assert case_store.load(data["id"])["caseTitle"] == data["caseTitle"]

    @pytest.mark.asyncio
    async def test_stage_failure_is_500_envelope(self):
        pipeline = MagicMock()
        pipeline.generate = AsyncMock(side_effect=CountMismatch("AI generated 2 suspects but 3 were requested", 3, 2, "entity_batches"))
        with patch.object(cases, "_build_pipeline", return_value=pipeline):
            response = await generate_initial_case(_body())
        assert response.status_code == 500
        assert _json(response) == {
            "error": "Failed to generate case",
            "details": "AI generated 2 suspects but 3 were requested",
        }

    @pytest.mark.asyncio
    async def test_upstream_failure_is_502(self):
        pipeline = MagicMock()
        pipeline.generate = AsyncMock(side_effect=UpstreamCallFailure("connection refused", stage="core"))
        with patch.object(cases, "_build_pipeline", return_value=pipeline):
            response = await generate_initial_case(_body())
        assert response.status_code == 502
        assert _json(response)["details"] == "connection refused"

    @pytest.mark.asyncio
    async def test_impostor_request_mapping(self):
        pipeline = MagicMock()
        pipeline.generate = AsyncMock(side_effect=CountMismatch("x"))
        body = _body(suspects=4, scenario=None, customScenario={"place": "Train", "themeOrSituation": "Night ride"},
                     playerNames=["A", "B", "C", "D"], playerGenders=["Male", "female", "male", "female"])
        with patch.object(cases, "_build_pipeline", return_value=pipeline):
            response = await generate_impostor_case(body)

        assert _json(response)["error"] == "Failed to generate impostor case"
        request = pipeline.generate.call_args.args[0]
        assert request.entity_kind == "player"
        assert request.special_role_required is True
        assert request.allow_special_role_overlap is True
        assert request.custom_scenario.place == "Train"
        assert request.scenario is None
        assert request.player_genders == ["male", "female", "male", "female"]


# ═══════════════════════════════════════════════════
# Case retrieval / health
# ═══════════════════════════════════════════════════

class TestGetCase:

    @pytest.mark.asyncio
    async def test_unknown_case_404(self, tmp_path):
        with patch.object(cases, "CASES_DIR", tmp_path):
            response = await get_case("nope1234")
        assert response.status_code == 404
        assert _json(response)["error"] == "Case not found"
        assert "nope1234" in _json(response)["details"]

    @pytest.mark.asyncio
    async def test_health(self):
        assert (await health())["status"] == "operational"
