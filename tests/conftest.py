"""Shared fixtures."""

from datetime import datetime, timedelta, timezone

import pytest

from app.core.classifier import FeedCategory
from app.providers.content_types import FeedItem, make_item_id

NOW = datetime(2026, 3, 10, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def make_item():
    """Factory for FeedItems with sensible defaults."""

    def _make(
        title="A long enough title about agents",
        source="Hacker News",
        category=FeedCategory.TOOLS,
        relevance_score=20,
        engagement=None,
        is_new=False,
        hours_old=30,
        url=None,
        description="Some description",
    ):
        return FeedItem(
            id=make_item_id(source, title),
            title=title,
            description=description,
            url=url or f"https://example.com/{abs(hash((source, title)))}",
            source=source,
            date=NOW - timedelta(hours=hours_old),
            category=category,
            relevance_score=relevance_score,
            engagement=engagement,
            is_new=is_new,
        )

    return _make


@pytest.fixture
def sample_items(make_item):
    """Ten distinct viable items across sources and categories."""
    return [
        make_item(title=f"Item number {i} about agent workflows", source=f"Source {i % 4}",
                  category=list(FeedCategory)[i % 5], relevance_score=10 + i)
        for i in range(10)
    ]
