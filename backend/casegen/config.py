"""Application configuration."""

import os
from pathlib import Path
from dotenv import load_dotenv

# Base paths
BASE_DIR = Path(__file__).resolve().parent.parent

# Load .env from backend root (before any os.getenv calls)
load_dotenv(BASE_DIR / ".env")
TEMP_DIR = Path(os.getenv("CASEGEN_TEMP_DIR", str(BASE_DIR / "temp")))
CASES_DIR = Path(os.getenv("CASES_DIR", str(TEMP_DIR / "cases")))
PROMPTS_DIR = Path(__file__).resolve().parent / "prompts"

# Create directories
for d in [TEMP_DIR, CASES_DIR]:
    d.mkdir(parents=True, exist_ok=True)

# Text generation provider: "ollama" (local) or "openai" (any OpenAI-compatible endpoint)
LLM_PROVIDER = os.getenv("LLM_PROVIDER", "ollama").strip().lower()

# Ollama configuration
OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
OLLAMA_MODEL = os.getenv("OLLAMA_MODEL", "qwen3:32b")

# OpenAI-compatible configuration
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL", "https://api.openai.com")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")

# LLM call policy
LLM_TIMEOUT = float(os.getenv("LLM_TIMEOUT", "180"))        # Seconds per generation call; timeout = call failure
LLM_MAX_RETRIES = int(os.getenv("LLM_MAX_RETRIES", "1"))    # 1 = fail fast (no automatic retry)
LLM_TEMPERATURE = float(os.getenv("LLM_TEMPERATURE", "0.7"))
LLM_CONTEXT_WINDOW = int(os.getenv("LLM_CONTEXT_WINDOW", "32768"))
LLM_USE_STRUCTURED_OUTPUTS = os.getenv("LLM_USE_STRUCTURED_OUTPUTS", "true").strip().lower() in ("1", "true", "yes")

# Stage output-size hints (tokens)
CORE_MAX_TOKENS = 2000
HIDDEN_CONTEXT_MAX_TOKENS = 1500
BATCH_BASE_TOKENS = 1000          # Fixed overhead per batch call
BATCH_TOKENS_PER_ENTITY = 500     # Added per entity in the batch
BATCH_MAX_TOKENS = 4000           # Hard cap per batch call

# Batching: entities requested per generation call
ENTITY_BATCH_SIZE = int(os.getenv("ENTITY_BATCH_SIZE", "3"))
ENTITY_ID_PREFIX = "entity"
MAX_ENTITIES = 20

# Impostor cases: chance that the body discoverer is the culprit
SPECIAL_ROLE_OVERLAP_PROBABILITY = 0.3

# Diagnostics: chars of an unrepairable payload kept for logs
REPAIR_DIAGNOSTIC_TAIL = 500

# Supabase (PostgREST) entity catalog
SUPABASE_URL = os.getenv("SUPABASE_URL", "")
SUPABASE_KEY = os.getenv("SUPABASE_KEY", os.getenv("SUPABASE_ANON_KEY", ""))
CATALOG_TIMEOUT = float(os.getenv("CATALOG_TIMEOUT", "15"))
SUSPECTS_TABLE = "suspects"
WEAPONS_TABLE = "weapons"

# Concurrency
MAX_CONCURRENT_GENERATIONS = int(os.getenv("MAX_CONCURRENT_GENERATIONS", "4"))  # Parallel pipeline runs

# CORS: comma separated list of allowed frontend origins
FRONTEND_URL = os.getenv("FRONTEND_URL", "")
CORS_ORIGINS = [u.strip().rstrip("/") for u in FRONTEND_URL.split(",") if u.strip()] or ["http://localhost:3000"]

# Frontend scenario names → catalog tags
SCENARIO_TAG_MAP = {
    "mansion": "mansion",
    "hotel": "hotel",
    "oficina": "office",
    "barco": "boat",
    "teatro": "theater",
    "museo": "museum",
    "aleatorio": "random",
}
SCENARIO_TAGS = ["mansion", "hotel", "office", "boat", "theater", "museum"]

# Case types that carry a murder weapon
MURDER_CASE_TYPES = {"asesinato", "murder"}

LANGUAGES = {"es": "ESPAÑOL", "en": "ENGLISH"}
