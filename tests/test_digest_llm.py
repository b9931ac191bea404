"""Tests for digest_llm.py"""

import json
from unittest.mock import patch

import httpx
import pytest

from app.core.digest_llm import (
    INPUT_LIMIT,
    SynthesisErr,
    SynthesisOk,
    attempt_llm_synthesis,
    build_input_payload,
    build_messages,
    map_llm_digest,
    synthesize_llm,
)
from app.core.digest_models import DigestMood, DigestSource
from app.core.settings import LLMCredentials

CREDS = LLMCredentials(provider="openai", api_key="sk-test")


def _openai_client(content=None, status=200, text=None):
    def handler(request):
        if status != 200:
            return httpx.Response(status, text=text or "error")
        return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def items(make_item):
    return [
        make_item(title=f"Story number {i} about agents", source=f"Source {i % 3}",
                  url=f"https://news.example/{i}", description="d" * 400)
        for i in range(12)
    ]


class TestInputPayload:
    """Tests for the bounded model input."""

    def test_capped_at_sixty(self, make_item):
        many = [make_item(title=f"Item {i} with a long title") for i in range(75)]
        payload = build_input_payload(many)
        assert len(payload) == INPUT_LIMIT
        assert payload[-1]["index"] == INPUT_LIMIT - 1

    def test_projection_fields(self, items):
        entry = build_input_payload(items)[0]
        assert set(entry) == {"index", "title", "description", "source", "category", "date", "engagement", "isNew"}
        assert len(entry["description"]) == 300
        assert "url" not in entry

    def test_messages(self, items):
        system, user = build_messages(items)
        assert '"index"' in system
        assert "{{" not in system
        assert f"Here are {len(items)} recent AI news items" in user
        assert json.loads(user.split("\n\n", 1)[1])[0]["index"] == 0


class TestMapLlmDigest:
    """Tests for mapping model JSON back to items."""

    def test_resolves_items_by_index_only(self, items):
        """Item fields come from the input list, never from the model."""
        parsed = {
            "themes": [{
                "title": "A story",
                "description": "desc",
                "mood": "exciting",
                "items": [{"index": 7, "title": "FAKE", "url": "https://evil.example", "whyMatters": "w", "forYou": "f"}],
            }],
        }
        digest = map_llm_digest(parsed, items)
        highlight = digest.themes[0].items[0]
        assert highlight.item is items[7]
        assert highlight.item.url == "https://news.example/7"
        assert highlight.item.title == items[7].title
        assert highlight.why_matters == "w"
        assert highlight.for_you == "f"

    def test_invalid_indices_dropped(self, items):
        parsed = {"themes": [{"title": "t", "items": [
            {"index": -1}, {"index": 12}, {"index": "3"}, {"index": 2.5}, {"index": True}, {"index": 4},
        ]}]}
        digest = map_llm_digest(parsed, items)
        assert [h.item for h in digest.themes[0].items] == [items[4]]

    def test_integral_float_index_accepted(self, items):
        parsed = {"themes": [{"title": "t", "items": [{"index": 7.0}, {"index": 1.0}]}]}
        digest = map_llm_digest(parsed, items)
        assert [h.item for h in digest.themes[0].items] == [items[7], items[1]]

    def test_index_beyond_payload_but_within_items(self, make_item):
        many = [make_item(title=f"Item {i} with a long title") for i in range(70)]
        digest = map_llm_digest({"themes": [{"title": "t", "items": [{"index": 65}]}]}, many)
        assert digest.themes[0].items[0].item is many[65]

    def test_max_four_items_per_theme(self, items):
        parsed = {"themes": [{"title": "t", "items": [{"index": i} for i in range(8)]}]}
        assert len(map_llm_digest(parsed, items).themes[0].items) == 4

    def test_empty_themes_dropped(self, items):
        parsed = {"themes": [
            {"title": "empty", "items": []},
            {"title": "bad", "items": [{"index": 99}]},
            {"title": "good", "items": [{"index": 0}]},
        ]}
        digest = map_llm_digest(parsed, items)
        assert [t.title for t in digest.themes] == ["good"]

    def test_mood_defaults(self, items):
        parsed = {"themes": [
            {"title": "a", "mood": "furious", "items": [{"index": 0}]},
            {"title": "b", "items": [{"index": 1}]},
            {"title": "c", "mood": "practical", "items": [{"index": 2}]},
        ]}
        moods = [t.mood for t in map_llm_digest(parsed, items).themes]
        assert moods == [DigestMood.JUST_FYI, DigestMood.JUST_FYI, DigestMood.PRACTICAL]

    def test_highlights_flattened_and_capped(self, items):
        parsed = {"themes": [
            {"title": "a", "items": [{"index": i} for i in range(0, 4)]},
            {"title": "b", "items": [{"index": i} for i in range(4, 8)]},
        ]}
        digest = map_llm_digest(parsed, items)
        assert [h.item for h in digest.highlights] == items[:5]

    def test_default_texts(self, items):
        digest = map_llm_digest({}, items)
        assert digest.summary == f"Here's what stood out from {len(items)} items today."
        assert digest.closing_note == "That's the picture. You're caught up."
        assert digest.themes == ()
        assert digest.source == DigestSource.LLM
        assert digest.id.startswith("digest-llm-")
        assert digest.item_count == len(items)

    def test_non_object_rejected(self, items):
        with pytest.raises(ValueError):
            map_llm_digest([1, 2], items)


class TestAttemptLlmSynthesis:
    """Tests for the explicit result type."""

    @pytest.mark.asyncio
    async def test_http_429_is_err(self, items):
        async with _openai_client(status=429, text="Too many requests") as client:
            result = await attempt_llm_synthesis(items, CREDS, client=client)
        assert isinstance(result, SynthesisErr)
        assert "429" in result.reason

    @pytest.mark.asyncio
    async def test_transport_error_is_err(self, items):
        def handler(request):
            raise httpx.ConnectError("boom", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            result = await attempt_llm_synthesis(items, CREDS, client=client)
        assert isinstance(result, SynthesisErr)
        assert "ConnectError" in result.reason

    @pytest.mark.asyncio
    async def test_parse_failure_keeps_raw_excerpt(self, items):
        raw = "I am sorry, " + "x" * 500
        async with _openai_client(content=raw) as client:
            result = await attempt_llm_synthesis(items, CREDS, client=client)
        assert isinstance(result, SynthesisErr)
        assert result.reason.startswith("parse:")
        assert result.raw_excerpt == raw[:200]

    @pytest.mark.asyncio
    async def test_fenced_json_is_ok(self, items):
        """Scenario: prose plus a fenced object."""
        text = 'Sure! ```json\n{"summary":"x","themes":[],"closingNote":"y"}\n```'
        async with _openai_client(content=text) as client:
            result = await attempt_llm_synthesis(items, CREDS, client=client)
        assert isinstance(result, SynthesisOk)
        assert result.digest.summary == "x"
        assert result.digest.closing_note == "y"
        assert result.digest.themes == ()
        assert result.digest.source == DigestSource.LLM

    @pytest.mark.asyncio
    async def test_unknown_provider_is_err(self, items):
        creds = LLMCredentials(provider="mistral", api_key="key-123")
        result = await attempt_llm_synthesis(items, creds)
        assert isinstance(result, SynthesisErr)
        assert "Unknown LLM provider" in result.reason

    @pytest.mark.asyncio
    async def test_unexpected_exception_propagates(self, items):
        async with _openai_client(content="{}") as client:
            with patch("app.core.digest_llm.map_llm_digest", side_effect=RuntimeError("bug")):
                with pytest.raises(RuntimeError, match="bug"):
                    await attempt_llm_synthesis(items, CREDS, client=client)


class TestSynthesizeLlm:
    """Tests for the always-a-digest wrapper."""

    @pytest.mark.asyncio
    async def test_429_falls_back_to_algorithmic(self, items):
        async with _openai_client(status=429, text="rate limited") as client:
            digest = await synthesize_llm(items, CREDS, client=client)
        assert digest.source == DigestSource.ALGORITHMIC
        assert digest.llm_error
        assert "429" in digest.llm_error
        assert "llm_error" not in digest.to_dict()

    @pytest.mark.asyncio
    async def test_success_with_control_chars_and_trailing_commas(self, items):
        content = (
            '{"summary": "Line one\nline two", "themes": [{"title": "Agents everywhere", '
            '"description": "d", "mood": "worth-watching", "items": [{"index": 7, '
            '"whyMatters": "Because\tit matters", "forYou": "Try it",},],},], "closingNote": "Bye"}'
        )
        async with _openai_client(content=content) as client:
            digest = await synthesize_llm(items, CREDS, client=client)

        assert digest.source == DigestSource.LLM
        assert digest.summary == "Line one\nline two"
        assert digest.themes[0].items[0].item is items[7]
        assert digest.themes[0].items[0].why_matters == "Because\tit matters"
        assert digest.themes[0].mood == DigestMood.WORTH_WATCHING
        assert digest.llm_error is None

    @pytest.mark.asyncio
    async def test_no_fabricated_items(self, items):
        content = json.dumps({"themes": [
            {"title": "t", "items": [{"index": i, "title": f"made up {i}"} for i in (0, 3, 11, 40)]},
        ]})
        async with _openai_client(content=content) as client:
            digest = await synthesize_llm(items, CREDS, client=client)
        for theme in digest.themes:
            for highlight in theme.items:
                assert highlight.item in items
