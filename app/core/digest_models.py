"""Digest data model and its wire serialization."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Sequence

from app.providers.content_types import FeedItem, format_timestamp, parse_timestamp

# Items sent along with a digest as "all items" context
ALL_ITEMS_LIMIT = 60

# Highlights kept at the top level for compact previews
MAX_TOP_HIGHLIGHTS = 5


class DigestMood(str, Enum):
    """Presentation tone of a theme."""

    EXCITING = "exciting"
    PRACTICAL = "practical"
    WORTH_WATCHING = "worth-watching"
    JUST_FYI = "just-fyi"

    @classmethod
    def parse(cls, value: Any) -> DigestMood:
        """Map a free-form value to a mood, defaulting to just-fyi."""
        try:
            return cls(value)
        except ValueError:
            return cls.JUST_FYI


class DigestSource(str, Enum):
    """How a digest was produced."""

    ALGORITHMIC = "algorithmic"
    LLM = "llm"


def new_digest_id(source: DigestSource, now: datetime | None = None) -> str:
    """Unique per generation; encodes the synthesis path and generation time."""
    ms = int((now.timestamp() if now else time.time()) * 1000)
    return f"digest-{source.value}-{ms}-{uuid.uuid4().hex[:6]}"


@dataclass(frozen=True)
class DigestHighlight:
    """One annotated item inside a theme."""

    item: FeedItem
    why_matters: str
    for_you: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "item": self.item.to_dict(),
            "whyMatters": self.why_matters,
            "forYou": self.for_you,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DigestHighlight:
        return cls(
            item=FeedItem.from_dict(data["item"]),
            why_matters=data.get("whyMatters", ""),
            for_you=data.get("forYou", ""),
        )


@dataclass(frozen=True)
class DigestTheme:
    """Narrative grouping of highlights."""

    title: str
    description: str
    mood: DigestMood
    items: tuple[DigestHighlight, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "mood": self.mood.value,
            "items": [h.to_dict() for h in self.items],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DigestTheme:
        return cls(
            title=data.get("title", ""),
            description=data.get("description", ""),
            mood=DigestMood.parse(data.get("mood")),
            items=tuple(DigestHighlight.from_dict(h) for h in data.get("items", [])),
        )


@dataclass(frozen=True)
class Digest:
    """Synthesized, curated summary of recent items. Never mutated after creation.

    llm_error is an internal diagnostic set when the LLM path fell back to
    the algorithmic one. It is not part of the wire payload.
    """

    id: str
    generated_at: datetime
    summary: str
    themes: tuple[DigestTheme, ...]
    highlights: tuple[DigestHighlight, ...]
    item_count: int
    closing_note: str
    source: DigestSource
    llm_error: str | None = field(default=None, compare=False)

    def to_dict(self) -> dict[str, Any]:
        """Convert to wire dict with canonical timestamps."""
        return {
            "id": self.id,
            "generatedAt": format_timestamp(self.generated_at),
            "summary": self.summary,
            "themes": [t.to_dict() for t in self.themes],
            "highlights": [h.to_dict() for h in self.highlights],
            "itemCount": self.item_count,
            "closingNote": self.closing_note,
            "source": self.source.value,
        }


def serialize_digest(digest: Digest, items: Sequence[FeedItem]) -> dict[str, Any]:
    """Wire payload for a digest plus the first ALL_ITEMS_LIMIT raw items."""
    return {
        **digest.to_dict(),
        "allItems": [item.to_dict() for item in items[:ALL_ITEMS_LIMIT]],
    }


def parse_digest(data: dict[str, Any]) -> Digest:
    """Rebuild a Digest from its wire dict (allItems is ignored)."""
    generated_at = data.get("generatedAt")
    return Digest(
        id=data["id"],
        generated_at=parse_timestamp(generated_at) if generated_at else datetime.now(timezone.utc),
        summary=data.get("summary", ""),
        themes=tuple(DigestTheme.from_dict(t) for t in data.get("themes", [])),
        highlights=tuple(DigestHighlight.from_dict(h) for h in data.get("highlights", [])),
        item_count=int(data.get("itemCount", 0)),
        closing_note=data.get("closingNote", ""),
        source=DigestSource(data.get("source", DigestSource.ALGORITHMIC.value)),
    )
