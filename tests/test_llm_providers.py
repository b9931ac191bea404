"""Tests for llm_providers.py"""

import json

import httpx
import pytest

from app.core.llm_providers import (
    ANTHROPIC_URL,
    GROQ_URL,
    OPENAI_URL,
    PROVIDERS,
    LLMError,
    complete,
    detect_provider_from_key,
    get_provider_spec,
)


def _client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestDetectProvider:
    """Tests for key prefix sniffing."""

    @pytest.mark.parametrize("key,expected", [
        ("gsk_abc", "groq"),
        ("sk-ant-abc", "anthropic"),
        ("sk-proj-abc", "openai"),
        ("something-else", "anthropic"),
    ])
    def test_prefixes(self, key, expected):
        assert detect_provider_from_key(key) == expected


class TestProviderTable:
    """Tests for the provider strategy table."""

    def test_three_dialects(self):
        assert set(PROVIDERS) == {"groq", "openai", "anthropic"}

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown LLM provider"):
            get_provider_spec("mystery")

    def test_case_insensitive_lookup(self):
        assert get_provider_spec("Groq").name == "groq"

    def test_openai_body_requests_json(self):
        body = PROVIDERS["openai"].build_body("gpt-4o-mini", "sys", "usr")
        assert body["response_format"] == {"type": "json_object"}
        assert body["messages"][0] == {"role": "system", "content": "sys"}

    def test_anthropic_body_uses_system_field(self):
        body = PROVIDERS["anthropic"].build_body("claude", "sys", "usr")
        assert body["system"] == "sys"
        assert body["messages"] == [{"role": "user", "content": "usr"}]

    def test_header_shapes(self):
        assert PROVIDERS["groq"].build_headers("k")["Authorization"] == "Bearer k"
        anthropic = PROVIDERS["anthropic"].build_headers("k")
        assert anthropic["x-api-key"] == "k"
        assert "anthropic-version" in anthropic

    def test_extractors(self):
        assert PROVIDERS["openai"].extract_text({"choices": [{"message": {"content": "hi"}}]}) == "hi"
        assert PROVIDERS["anthropic"].extract_text({"content": [{"text": "hi"}]}) == "hi"
        assert PROVIDERS["openai"].extract_text({}) == ""


class TestComplete:
    """Tests for the single-attempt completion call."""

    @pytest.mark.asyncio
    async def test_groq_request(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            seen["auth"] = request.headers["Authorization"]
            return httpx.Response(200, json={"choices": [{"message": {"content": "{}"}}]})

        async with _client(handler) as client:
            response = await complete(PROVIDERS["groq"], "gsk_x", "sys", "usr", client=client)

        assert response.content == "{}"
        assert response.provider == "groq"
        assert seen["url"] == GROQ_URL
        assert seen["auth"] == "Bearer gsk_x"
        assert seen["body"]["model"] == PROVIDERS["groq"].default_model

    @pytest.mark.asyncio
    async def test_anthropic_request(self):
        def handler(request):
            assert str(request.url) == ANTHROPIC_URL
            assert request.headers["x-api-key"] == "sk-ant-x"
            return httpx.Response(200, json={"content": [{"type": "text", "text": "hello"}]})

        async with _client(handler) as client:
            response = await complete(PROVIDERS["anthropic"], "sk-ant-x", "sys", "usr", client=client)

        assert response.content == "hello"

    @pytest.mark.asyncio
    async def test_url_override_only_for_openai(self):
        urls = []

        def handler(request):
            urls.append(str(request.url))
            return httpx.Response(200, json={"choices": [{"message": {"content": ""}}]})

        async with _client(handler) as client:
            await complete(PROVIDERS["openai"], "sk-x", "s", "u", api_url="https://proxy.local/v1/chat", client=client)
            await complete(PROVIDERS["groq"], "gsk_x", "s", "u", api_url="https://proxy.local/v1/chat", client=client)

        assert urls == ["https://proxy.local/v1/chat", GROQ_URL]

    @pytest.mark.asyncio
    async def test_model_override(self):
        def handler(request):
            assert json.loads(request.content)["model"] == "gpt-4.1-mini"
            return httpx.Response(200, json={"choices": [{"message": {"content": ""}}]})

        async with _client(handler) as client:
            response = await complete(PROVIDERS["openai"], "sk-x", "s", "u", model=" gpt-4.1-mini ", client=client)

        assert response.model == "gpt-4.1-mini"

    @pytest.mark.asyncio
    async def test_non_success_raises_once(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(429, text="rate limited")

        async with _client(handler) as client:
            with pytest.raises(LLMError) as exc_info:
                await complete(PROVIDERS["openai"], "sk-x", "s", "u", client=client)

        assert exc_info.value.status_code == 429
        assert "rate limited" in str(exc_info.value)
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_non_json_body_raises(self):
        def handler(request):
            return httpx.Response(200, text="<html>oops</html>")

        async with _client(handler) as client:
            with pytest.raises(LLMError, match="Unreadable"):
                await complete(PROVIDERS["openai"], "sk-x", "s", "u", client=client)

    @pytest.mark.asyncio
    async def test_openai_url_constant(self):
        def handler(request):
            assert str(request.url) == OPENAI_URL
            return httpx.Response(200, json={"choices": [{"message": {"content": "x"}}]})

        async with _client(handler) as client:
            await complete(PROVIDERS["openai"], "sk-x", "s", "u", client=client)
