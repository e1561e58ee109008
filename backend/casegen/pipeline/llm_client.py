"""Text Generation Service clients.

Supports:
  - Local Ollama via /api/chat, with structured outputs (format: { schema })
  - Any OpenAI-compatible /v1/chat/completions endpoint (json_object mode)

Both return the raw message content.  Parsing and repair happen in the
pipeline, never here, so a truncated response reaches the repair engine
intact.  Empty content, HTTP errors and timeouts raise UpstreamCallFailure.
"""

import asyncio
import logging
import random
import time
from typing import Awaitable, Callable, Protocol

import httpx

from casegen.config import (
    LLM_CONTEXT_WINDOW, LLM_MAX_RETRIES, LLM_PROVIDER, LLM_TEMPERATURE,
    LLM_TIMEOUT, LLM_USE_STRUCTURED_OUTPUTS, OLLAMA_BASE_URL, OLLAMA_MODEL,
    OPENAI_API_KEY, OPENAI_BASE_URL, OPENAI_MODEL,
)
from casegen.pipeline.errors import UpstreamCallFailure

logger = logging.getLogger(__name__)

# Type for progress callback: async fn(stage, message, details_dict)
LLMProgressCallback = Callable[[str, str, dict], Awaitable[None]]


# No-op callback default
async def _noop_cb(stage: str, message: str, details: dict) -> None:
    pass


class TextGenerator(Protocol):
    """Anything that turns a prompt into raw completion text."""

    async def generate(
        self,
        prompt: str,
        system_prompt: str = "",
        max_tokens: int | None = None,
        task_label: str = "",
        schema: dict | None = None,
        on_progress: LLMProgressCallback | None = None,
    ) -> str: ...


class _HttpTextGenerator:
    """Shared retry / progress loop; subclasses build and read the request."""

    provider = "llm"

    def __init__(
        self,
        model: str,
        base_url: str,
        timeout: float = LLM_TIMEOUT,
        temperature: float = LLM_TEMPERATURE,
        max_retries: int = LLM_MAX_RETRIES,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.temperature = temperature
        self.max_retries = max(1, max_retries)
        self._transport = transport

    def _endpoint(self) -> str:
        raise NotImplementedError

    def _headers(self) -> dict:
        return {}

    def _build_body(self, messages: list[dict], max_tokens: int | None, schema: dict | None) -> dict:
        raise NotImplementedError

    def _extract_content(self, result: dict) -> str:
        raise NotImplementedError

    async def generate(
        self,
        prompt: str,
        system_prompt: str = "",
        max_tokens: int | None = None,
        task_label: str = "",
        schema: dict | None = None,
        on_progress: LLMProgressCallback | None = None,
    ) -> str:
        """Send one chat request and return the raw message content.

        Args:
            prompt: User prompt text
            system_prompt: System prompt for role/context
            max_tokens: Output-size hint for this call
            task_label: Human-readable label for logs and progress events
            schema: JSON Schema for structured output, or None for plain JSON mode
            on_progress: Async callback for progress updates

        Raises:
            UpstreamCallFailure: after ``max_retries`` failed attempts.
        """
        cb = on_progress or _noop_cb
        label = task_label or "LLM Call"

        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        prompt_chars = sum(len(m["content"]) for m in messages)
        await cb("llm_start", label, {
            "type": "llm_start",
            "task": label,
            "provider": self.provider,
            "model": self.model,
            "prompt_chars": prompt_chars,
            "prompt_tokens_est": prompt_chars // 4,
            "max_tokens": max_tokens,
            "schema_enforced": bool(schema) and LLM_USE_STRUCTURED_OUTPUTS,
        })

        body = self._build_body(messages, max_tokens, schema)
        last_error: Exception | None = None

        for attempt in range(self.max_retries):
            t0 = time.time()
            if attempt > 0:
                await cb("llm_retry", f"{label} — Retry {attempt}/{self.max_retries}", {
                    "type": "llm_retry",
                    "task": label,
                    "attempt": attempt + 1,
                    "reason": str(last_error),
                })
                # Exponential backoff with jitter on retries
                backoff = min(2 ** attempt + random.uniform(0, 1), 30)
                await asyncio.sleep(backoff)

            try:
                # Per-call client: concurrent runs never share a client
                async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                    response = await client.post(self._endpoint(), json=body, headers=self._headers())
                    response.raise_for_status()
                    content = self._extract_content(response.json())
            except httpx.TimeoutException as e:
                last_error = e
                logger.warning(f"[{label}] Timed out after {time.time() - t0:.1f}s (limit {self.timeout}s)")
                continue
            except httpx.HTTPError as e:
                last_error = e
                logger.warning(f"[{label}] HTTP error: {e}")
                continue
            except (KeyError, IndexError, TypeError, ValueError) as e:
                last_error = e
                logger.warning(f"[{label}] Unexpected response body: {e}")
                continue

            elapsed = time.time() - t0
            if not content or not content.strip():
                last_error = ValueError("empty content")
                logger.warning(f"[{label}] Empty content after {elapsed:.1f}s")
                continue

            logger.info(f"[{label}] {len(content):,} chars in {elapsed:.1f}s")
            await cb("llm_done", f"✓ {label} — Complete ({len(content)} chars)", {
                "type": "llm_done",
                "task": label,
                "total_seconds": round(elapsed, 2),
                "response_length": len(content),
            })
            return content

        await cb("llm_failed", f"{label} — Failed after {self.max_retries} attempt(s)", {
            "type": "llm_failed",
            "task": label,
            "error": str(last_error),
        })
        raise UpstreamCallFailure(
            f"{self.provider} call '{label}' failed after {self.max_retries} attempt(s): {last_error}"
        )


class OllamaTextGenerator(_HttpTextGenerator):
    provider = "ollama"

    def __init__(self, model: str = OLLAMA_MODEL, base_url: str = OLLAMA_BASE_URL, **kwargs):
        super().__init__(model=model, base_url=base_url, **kwargs)

    def _endpoint(self) -> str:
        return f"{self.base_url}/api/chat"

    def _build_body(self, messages: list[dict], max_tokens: int | None, schema: dict | None) -> dict:
        options = {
            "temperature": self.temperature,
            "num_ctx": LLM_CONTEXT_WINDOW,
        }
        if max_tokens:
            options["num_predict"] = max_tokens
        return {
            "model": self.model,
            "messages": messages,
            "stream": False,
            "options": options,
            "format": schema if (schema and LLM_USE_STRUCTURED_OUTPUTS) else "json",
            "think": False,  # Always explicit, the model default may enable thinking
        }

    def _extract_content(self, result: dict) -> str:
        return result["message"].get("content", "")


class OpenAITextGenerator(_HttpTextGenerator):
    provider = "openai"

    def __init__(
        self,
        model: str = OPENAI_MODEL,
        base_url: str = OPENAI_BASE_URL,
        api_key: str = OPENAI_API_KEY,
        **kwargs,
    ):
        super().__init__(model=model, base_url=base_url, **kwargs)
        self.api_key = api_key

    def _endpoint(self) -> str:
        return f"{self.base_url}/v1/chat/completions"

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}

    def _build_body(self, messages: list[dict], max_tokens: int | None, schema: dict | None) -> dict:
        body = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "response_format": {"type": "json_object"},
        }
        if max_tokens:
            body["max_tokens"] = max_tokens
        return body

    def _extract_content(self, result: dict) -> str:
        return result["choices"][0]["message"].get("content") or ""


def create_generator(provider: str | None = None) -> TextGenerator:
    """Build the configured Text Generation Service client."""
    provider = (provider or LLM_PROVIDER).lower()
    if provider == "openai":
        if not OPENAI_API_KEY:
            logger.warning("[llm] LLM_PROVIDER=openai but OPENAI_API_KEY is empty")
        return OpenAITextGenerator()
    if provider != "ollama":
        raise ValueError(f"Unknown LLM_PROVIDER: {provider!r} (expected 'ollama' or 'openai')")
    return OllamaTextGenerator()


async def check_llm_status() -> dict:
    """Report whether the configured generation service is reachable."""
    try:
        async with httpx.AsyncClient(timeout=10) as client:
            if LLM_PROVIDER == "openai":
                resp = await client.get(
                    f"{OPENAI_BASE_URL.rstrip('/')}/v1/models",
                    headers={"Authorization": f"Bearer {OPENAI_API_KEY}"} if OPENAI_API_KEY else {},
                )
                resp.raise_for_status()
                return {"status": "online", "provider": "openai", "configured_model": OPENAI_MODEL}

            resp = await client.get(f"{OLLAMA_BASE_URL}/api/tags")
            resp.raise_for_status()
            model_names = [m["name"] for m in resp.json().get("models", [])]
            return {
                "status": "online",
                "provider": "ollama",
                "configured_model": OLLAMA_MODEL,
                "model_available": any(OLLAMA_MODEL in name for name in model_names),
            }
    except (httpx.HTTPError, ValueError, KeyError) as e:
        return {"status": "offline", "provider": LLM_PROVIDER, "error": str(e)}
