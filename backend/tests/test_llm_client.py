"""Tests for the Text Generation Service clients (httpx mock transport)."""

import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from casegen.pipeline.errors import UpstreamCallFailure
from casegen.pipeline.llm_client import OllamaTextGenerator, OpenAITextGenerator, create_generator


def _ollama_reply(content):
    return httpx.Response(200, json={"message": {"role": "assistant", "content": content}})


class TestOllama:

    @pytest.mark.asyncio
    async def test_request_shape_and_content(self):
        seen = []

        def handler(request: httpx.Request):
            seen.append(json.loads(request.content))
            assert request.url.path == "/api/chat"
            return _ollama_reply('{"ok": true}')

        gen = OllamaTextGenerator(model="m", base_url="http://ollama:11434", transport=httpx.MockTransport(handler))
        schema = {"type": "object"}
        content = await gen.generate("prompt", system_prompt="sys", max_tokens=1500, task_label="Core", schema=schema)

        assert content == '{"ok": true}'
        body = seen[0]
        assert body["model"] == "m"
        assert body["stream"] is False
        assert body["options"]["num_predict"] == 1500
        assert body["format"] == schema
        assert body["messages"] == [
            {"role": "system", "content": "sys"},
            {"role": "user", "content": "prompt"},
        ]

    @pytest.mark.asyncio
    async def test_plain_json_mode_without_schema(self):
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return _ollama_reply("{}")

        gen = OllamaTextGenerator(base_url="http://o", transport=httpx.MockTransport(handler))
        await gen.generate("p")
        assert seen[0]["format"] == "json"

    @pytest.mark.asyncio
    async def test_empty_content_is_upstream_failure(self):
        gen = OllamaTextGenerator(base_url="http://o", transport=httpx.MockTransport(lambda r: _ollama_reply("  ")))
        with pytest.raises(UpstreamCallFailure):
            await gen.generate("p", task_label="Core")

    @pytest.mark.asyncio
    async def test_http_error_is_upstream_failure(self):
        gen = OllamaTextGenerator(base_url="http://o", transport=httpx.MockTransport(lambda r: httpx.Response(500)))
        with pytest.raises(UpstreamCallFailure):
            await gen.generate("p")

    @pytest.mark.asyncio
    async def test_timeout_is_upstream_failure(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        gen = OllamaTextGenerator(base_url="http://o", transport=httpx.MockTransport(handler))
        with pytest.raises(UpstreamCallFailure):
            await gen.generate("p")

    @pytest.mark.asyncio
    async def test_retries_when_configured(self):
        replies = [httpx.Response(503), _ollama_reply('{"ok": 1}')]
        gen = OllamaTextGenerator(base_url="http://o", max_retries=2,
                                  transport=httpx.MockTransport(lambda r: replies.pop(0)))
        with patch("casegen.pipeline.llm_client.asyncio.sleep", new=AsyncMock()) as sleep:
            content = await gen.generate("p")
        assert content == '{"ok": 1}'
        sleep.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_fail_fast_by_default(self):
        calls = []

        def handler(request):
            calls.append(1)
            return httpx.Response(503)

        gen = OllamaTextGenerator(base_url="http://o", max_retries=1, transport=httpx.MockTransport(handler))
        with pytest.raises(UpstreamCallFailure):
            await gen.generate("p")
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_progress_events(self):
        events = []

        async def cb(stage, message, details):
            events.append(stage)

        gen = OllamaTextGenerator(base_url="http://o", transport=httpx.MockTransport(lambda r: _ollama_reply("{}")))
        await gen.generate("p", on_progress=cb)
        assert events == ["llm_start", "llm_done"]


class TestOpenAI:

    @pytest.mark.asyncio
    async def test_request_shape(self):
        seen = []

        def handler(request: httpx.Request):
            seen.append((request.url.path, request.headers.get("authorization"), json.loads(request.content)))
            return httpx.Response(200, json={"choices": [{"message": {"content": '{"a": 1}'}}]})

        gen = OpenAITextGenerator(model="gpt", base_url="http://api", api_key="k",
                                  transport=httpx.MockTransport(handler))
        assert await gen.generate("p", max_tokens=2000) == '{"a": 1}'
        path, auth, body = seen[0]
        assert path == "/v1/chat/completions"
        assert auth == "Bearer k"
        assert body["max_tokens"] == 2000
        assert body["response_format"] == {"type": "json_object"}

    @pytest.mark.asyncio
    async def test_missing_choices(self):
        gen = OpenAITextGenerator(base_url="http://api", api_key="k",
                                  transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"choices": []})))
        with pytest.raises(UpstreamCallFailure):
            await gen.generate("p")


class TestFactory:

    def test_providers(self):
        assert isinstance(create_generator("ollama"), OllamaTextGenerator)
        assert isinstance(create_generator("openai"), OpenAITextGenerator)

    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            create_generator("bard")
