"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from casegen.api import cases
from casegen.config import CASES_DIR, CORS_ORIGINS, LLM_PROVIDER
from casegen.pipeline.llm_client import check_llm_status

logger = logging.getLogger(__name__)


def _cleanup_partial_writes() -> int:
    """Delete temp files left behind by a crash during an atomic case write."""
    cleaned = 0
    for f in CASES_DIR.glob("case_*.tmp"):
        f.unlink(missing_ok=True)
        cleaned += 1
    if cleaned:
        logger.info(f"Startup cleanup: removed {cleaned} partial case write(s)")
    return cleaned


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: cleanup partial writes on startup."""
    _cleanup_partial_writes()
    logger.info(f"Case generator ready (provider={LLM_PROVIDER}, cases in {CASES_DIR})")
    yield


app = FastAPI(
    title="Mystery Case Generator",
    description="Staged LLM generation of mystery cases with suspects, victim and hidden solution",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Body validation failures use the same {error, details} envelope as generation failures."""
    details = "; ".join(
        f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg', '')}"
        for err in exc.errors()
    )
    return JSONResponse(status_code=422, content={"error": "Invalid request body", "details": details})


app.include_router(cases.router, prefix="/api", tags=["Cases"])


@app.get("/api/health")
async def health():
    return {"status": "operational", "service": "Mystery Case Generator"}


@app.get("/api/health/llm")
async def llm_health():
    return await check_llm_status()
