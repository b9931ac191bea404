"""Provider-agnostic content types for aggregated feed items."""

from __future__ import annotations

import base64
import hashlib
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from app.core.classifier import FeedCategory

# Published within this window counts as new
NEW_WINDOW = timedelta(hours=24)

# Quality thresholds (engagement = votes/stars/likes, source-dependent)
HOT_MIN_ENGAGEMENT = 100
HOT_WINDOW = timedelta(hours=12)
TOP_MIN_ENGAGEMENT = 500


def make_item_id(source: str, title: str) -> str:
    """Stable short id from (source, title). Collisions are rare, not impossible."""
    digest = hashlib.sha1(f"{source}-{title}".encode()).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii")[:16]


def format_timestamp(dt: datetime) -> str:
    """Canonical wire form: UTC ISO-8601 with milliseconds and 'Z'."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp (with 'Z' or offset) into an aware datetime."""
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def is_new(published: datetime, now: datetime) -> bool:
    return now - published < NEW_WINDOW


def quality_tag(engagement: int | None, published: datetime, now: datetime) -> str | None:
    """'top' for very high cumulative engagement, 'hot' for high recent engagement."""
    if not engagement:
        return None
    if engagement >= TOP_MIN_ENGAGEMENT:
        return "top"
    if engagement >= HOT_MIN_ENGAGEMENT and now - published < HOT_WINDOW:
        return "hot"
    return None


@dataclass(frozen=True)
class FeedItem:
    """One piece of aggregated content from any feed source."""

    id: str
    title: str
    description: str
    url: str
    source: str
    date: datetime
    category: FeedCategory = FeedCategory.NEWS
    relevance_score: int = 0
    source_icon: str = ""
    engagement: int | None = None
    quality: str | None = None
    is_new: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to wire dict (camelCase keys, canonical timestamp)."""
        data: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "url": self.url,
            "source": self.source,
            "sourceIcon": self.source_icon,
            "date": format_timestamp(self.date),
            "category": self.category.value,
            "relevanceScore": self.relevance_score,
            "isNew": self.is_new,
        }
        if self.engagement is not None:
            data["engagement"] = self.engagement
        if self.quality is not None:
            data["quality"] = self.quality
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FeedItem:
        """Create FeedItem from its wire dict."""
        try:
            category = FeedCategory(data.get("category") or FeedCategory.NEWS.value)
        except ValueError:
            category = FeedCategory.NEWS
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            description=data.get("description", ""),
            url=data.get("url", ""),
            source=data.get("source", ""),
            source_icon=data.get("sourceIcon", ""),
            date=parse_timestamp(data["date"]),
            category=category,
            relevance_score=int(data.get("relevanceScore") or 0),
            engagement=data.get("engagement"),
            quality=data.get("quality"),
            is_new=bool(data.get("isNew", False)),
        )
