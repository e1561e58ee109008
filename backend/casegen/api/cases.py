"""Case generation endpoints."""

import asyncio
import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from casegen.config import CASES_DIR, LANGUAGES, MAX_CONCURRENT_GENERATIONS, MAX_ENTITIES
from casegen.pipeline.case_store import FileCaseStore
from casegen.pipeline.catalog import SupabaseCatalog
from casegen.pipeline.errors import CaseGenerationError, UpstreamCallFailure
from casegen.pipeline.facade import CasePipeline
from casegen.pipeline.llm_client import create_generator
from casegen.pipeline.models import CustomScenario, GenerationRequest

router = APIRouter()
logger = logging.getLogger(__name__)

# Semaphore limits how many generation pipelines run concurrently
_generation_semaphore = asyncio.Semaphore(MAX_CONCURRENT_GENERATIONS)


class CustomScenarioBody(BaseModel):
    place: str = Field(min_length=1)
    themeOrSituation: str = ""


class CaseRequest(BaseModel):
    caseType: str = Field(min_length=1)
    suspects: int = Field(ge=1, le=MAX_ENTITIES)
    clues: int = Field(ge=0)
    difficulty: str = Field(min_length=1)
    scenario: str | None = None
    customScenario: CustomScenarioBody | None = None
    style: str | None = None
    language: str = "es"
    playerNames: list[str] = []
    playerGenders: list[str] = []


def _to_generation_request(body: CaseRequest, entity_kind: str, special_role: bool) -> GenerationRequest:
    has_scenario = bool(body.scenario and body.scenario.strip())
    if has_scenario == (body.customScenario is not None):
        raise ValueError("Provide exactly one of 'scenario' or 'customScenario'")
    if body.language not in LANGUAGES:
        raise ValueError(f"Unsupported language '{body.language}'")

    custom = None
    if body.customScenario is not None:
        custom = CustomScenario(
            place=body.customScenario.place.strip(),
            theme_or_situation=body.customScenario.themeOrSituation.strip(),
        )
    return GenerationRequest(
        case_type=body.caseType.strip(),
        entity_count=body.suspects,
        clue_count=body.clues,
        difficulty=body.difficulty,
        scenario=body.scenario.strip() if has_scenario else None,
        custom_scenario=custom,
        style=body.style,
        language=body.language,
        player_names=list(body.playerNames),
        player_genders=[g.lower() for g in body.playerGenders],
        entity_kind=entity_kind,
        special_role_required=special_role,
        allow_special_role_overlap=special_role,
    )


def _rejected(error: str, details: str) -> JSONResponse:
    logger.warning(f"[api] {error}: {details}")
    return JSONResponse(status_code=400, content={"error": error, "details": details})


def _build_pipeline() -> CasePipeline:
    """Fresh collaborators per request; runs share no mutable state."""
    return CasePipeline(
        generator=create_generator(),
        catalog=SupabaseCatalog(),
        store=FileCaseStore(CASES_DIR),
    )


async def _generate(request: GenerationRequest, failure_message: str) -> JSONResponse:
    async with _generation_semaphore:
        try:
            document = await _build_pipeline().generate(request)
        except UpstreamCallFailure as e:
            logger.exception(f"[api] {failure_message}: upstream failure at stage '{e.stage}'")
            return JSONResponse(status_code=502, content={"error": failure_message, "details": str(e)})
        except CaseGenerationError as e:
            logger.exception(f"[api] {failure_message}: {type(e).__name__}")
            return JSONResponse(status_code=500, content={"error": failure_message, "details": str(e)})
        except ValueError as e:
            logger.exception(f"[api] {failure_message}: invalid parameters")
            return JSONResponse(status_code=500, content={"error": failure_message, "details": str(e)})
    return JSONResponse(content=document.to_dict())


@router.post("/generate-initial-case")
async def generate_initial_case(body: CaseRequest):
    """Generate a suspects case (one hidden culprit among the suspects)."""
    try:
        request = _to_generation_request(body, entity_kind="suspect", special_role=False)
    except ValueError as e:
        return _rejected("Invalid case request", str(e))
    logger.info(
        f"[api] generate-initial-case: {request.case_type}, {request.entity_count} suspects, "
        f"scenario '{request.scenario_text}', lang {request.language}"
    )
    return await _generate(request, "Failed to generate case")


@router.post("/generate-impostor-case")
async def generate_impostor_case(body: CaseRequest):
    """Generate a players case where one player is the killer and one found the body."""
    try:
        request = _to_generation_request(body, entity_kind="player", special_role=True)
    except ValueError as e:
        return _rejected("Invalid impostor case request", str(e))
    logger.info(
        f"[api] generate-impostor-case: {request.case_type}, {request.entity_count} players, "
        f"scenario '{request.scenario_text}', lang {request.language}"
    )
    return await _generate(request, "Failed to generate impostor case")


@router.get("/cases/{case_id}")
async def get_case(case_id: str):
    try:
        return FileCaseStore(CASES_DIR).load(case_id)
    except FileNotFoundError:
        return JSONResponse(status_code=404, content={"error": "Case not found", "details": f"No case with id '{case_id}'"})
