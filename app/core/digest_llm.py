"""LLM digest synthesis.

Flow:
1. Project the first INPUT_LIMIT items to a compact JSON payload (index-addressed)
2. One completion request to the configured provider
3. Extract + repair + parse the JSON object from the raw text
4. Map themes back to the real items by index

attempt_llm_synthesis() returns an explicit SynthesisOk / SynthesisErr.
synthesize_llm() always returns a Digest: on SynthesisErr it falls back to
the algorithmic digest, tagged algorithmic, with llm_error set.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Sequence, Union

import httpx

from app.core.digest_algorithmic import synthesize_algorithmic
from app.core.digest_models import (
    MAX_TOP_HIGHLIGHTS,
    Digest,
    DigestHighlight,
    DigestMood,
    DigestSource,
    DigestTheme,
    new_digest_id,
)
from app.core.json_repair import JSONExtractionError, parse_llm_json
from app.core.llm_providers import LLMError, complete, get_provider_spec
from app.core.prompts import get_prompt
from app.core.settings import LLMCredentials
from app.providers.content_types import FeedItem

logger = logging.getLogger(__name__)

INPUT_LIMIT = 60
DESCRIPTION_LIMIT = 300
MAX_ITEMS_PER_THEME = 4
RAW_EXCERPT_LENGTH = 200


@dataclass(frozen=True)
class SynthesisOk:
    digest: Digest


@dataclass(frozen=True)
class SynthesisErr:
    reason: str
    raw_excerpt: str | None = None

    def describe(self) -> str:
        if self.raw_excerpt is None:
            return self.reason
        return f"{self.reason}. Raw: {self.raw_excerpt}"


SynthesisResult = Union[SynthesisOk, SynthesisErr]


def build_input_payload(items: Sequence[FeedItem]) -> list[dict[str, Any]]:
    """Project items to what the model needs. The index links selections back."""
    return [
        {
            "index": i,
            "title": item.title,
            "description": (item.description or "")[:DESCRIPTION_LIMIT],
            "source": item.source,
            "category": item.category.value,
            "date": item.date.strftime("%Y-%m-%d"),
            "engagement": item.engagement,
            "isNew": item.is_new,
        }
        for i, item in enumerate(items[:INPUT_LIMIT])
    ]


def build_messages(items: Sequence[FeedItem]) -> tuple[str, str]:
    """Return (system, user) messages for the synthesis request."""
    payload = build_input_payload(items)
    system = get_prompt("digest_system").render()
    user = get_prompt("digest_user").render(
        count=len(payload),
        items_json=json.dumps(payload, indent=2, ensure_ascii=False),
    )
    return system, user


def _resolve_index(value: Any, item_count: int) -> int | None:
    """Integer index within range, or None. Integral floats (7.0) count."""
    if isinstance(value, bool):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, int) and 0 <= value < item_count:
        return value
    return None


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def map_llm_digest(
    parsed: Any,
    items: Sequence[FeedItem],
    now: datetime | None = None,
) -> Digest:
    """Turn the model's JSON into a Digest.

    Item content always comes from `items`; whatever the model echoes back
    besides the index and its annotations is ignored.

    Raises:
        ValueError: If the top-level value is not an object.
    """
    if not isinstance(parsed, dict):
        raise ValueError(f"Expected a JSON object, got {type(parsed).__name__}")

    now = now or datetime.now(timezone.utc)
    raw_themes = parsed.get("themes")
    if not isinstance(raw_themes, list):
        raw_themes = []

    themes: list[DigestTheme] = []
    for raw_theme in raw_themes:
        if not isinstance(raw_theme, dict):
            continue
        refs = raw_theme.get("items")
        if not isinstance(refs, list):
            refs = []
        resolved: list[tuple[int, dict]] = []
        for ref in refs:
            if not isinstance(ref, dict):
                continue
            index = _resolve_index(ref.get("index"), len(items))
            if index is not None:
                resolved.append((index, ref))
        resolved = resolved[:MAX_ITEMS_PER_THEME]

        if not resolved:
            continue

        themes.append(
            DigestTheme(
                title=_text(raw_theme.get("title")),
                description=_text(raw_theme.get("description")),
                mood=DigestMood.parse(raw_theme.get("mood")),
                items=tuple(
                    DigestHighlight(
                        item=items[index],
                        why_matters=_text(ref.get("whyMatters")),
                        for_you=_text(ref.get("forYou")),
                    )
                    for index, ref in resolved
                ),
            )
        )

    highlights = [h for theme in themes for h in theme.items]

    return Digest(
        id=new_digest_id(DigestSource.LLM, now),
        generated_at=now,
        summary=_text(parsed.get("summary")) or f"Here's what stood out from {len(items)} items today.",
        themes=tuple(themes),
        highlights=tuple(highlights[:MAX_TOP_HIGHLIGHTS]),
        item_count=len(items),
        closing_note=_text(parsed.get("closingNote")) or "That's the picture. You're caught up.",
        source=DigestSource.LLM,
    )


async def attempt_llm_synthesis(
    items: Sequence[FeedItem],
    credentials: LLMCredentials,
    client: httpx.AsyncClient | None = None,
    now: datetime | None = None,
) -> SynthesisResult:
    """Single LLM attempt. Recoverable failures come back as SynthesisErr.

    Recoverable: an unknown provider id, transport errors, non-2xx responses, unreadable provider
    envelopes, text without a parseable JSON object, a non-object top level.
    Anything else propagates.
    """
    try:
        spec = get_provider_spec(credentials.provider)
    except ValueError as e:
        logger.warning(f"LLM synthesis skipped: {e}")
        return SynthesisErr(reason=str(e))

    system, user = build_messages(items)

    try:
        response = await complete(
            spec,
            credentials.api_key,
            system,
            user,
            model=credentials.model,
            api_url=credentials.api_url,
            client=client,
        )
    except LLMError as e:
        logger.warning(f"LLM synthesis failed ({e.provider}): {e}")
        return SynthesisErr(reason=str(e))
    except httpx.HTTPError as e:
        logger.warning(f"LLM request to {spec.name} failed: {e!r}")
        return SynthesisErr(reason=f"transport: {e!r}")

    text = response.content
    try:
        parsed = parse_llm_json(text)
        digest = map_llm_digest(parsed, items, now=now)
    except (JSONExtractionError, json.JSONDecodeError, ValueError) as e:
        logger.warning(f"Failed to parse LLM response: {e}. Raw: {text[:500]!r}")
        return SynthesisErr(reason=f"parse: {e}", raw_excerpt=text[:RAW_EXCERPT_LENGTH])

    logger.info(
        f"LLM digest from {response.provider}/{response.model}: "
        f"{len(digest.themes)} themes, {len(digest.highlights)} highlights"
    )
    return SynthesisOk(digest=digest)


def fallback_digest(
    items: Sequence[FeedItem],
    error: SynthesisErr,
    now: datetime | None = None,
) -> Digest:
    """Algorithmic digest carrying the LLM failure as a diagnostic."""
    digest = synthesize_algorithmic(items, now=now)
    return replace(digest, llm_error=error.describe())


async def synthesize_llm(
    items: Sequence[FeedItem],
    credentials: LLMCredentials,
    client: httpx.AsyncClient | None = None,
    now: datetime | None = None,
) -> Digest:
    """LLM digest, or the algorithmic fallback if the attempt failed.

    The returned digest is tagged llm only when the LLM path succeeded.
    """
    result = await attempt_llm_synthesis(items, credentials, client=client, now=now)
    if isinstance(result, SynthesisOk):
        return result.digest
    return fallback_digest(items, result, now=now)
