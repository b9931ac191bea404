"""Deterministic digest synthesis without any AI call.

Groups the best-scoring items by category and shows them. It does not
pretend to understand content; it is the fallback for when no LLM is
configured or the LLM path fails.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Sequence

from app.core.classifier import FeedCategory
from app.core.digest_models import (
    MAX_TOP_HIGHLIGHTS,
    Digest,
    DigestHighlight,
    DigestMood,
    DigestSource,
    DigestTheme,
    new_digest_id,
)
from app.providers.content_types import FeedItem

logger = logging.getLogger(__name__)

MIN_TITLE_LENGTH = 15
NEW_ITEM_BONUS = 20
MAX_ENGAGEMENT_BONUS = 30
TOP_SCORED_LIMIT = 30
ITEMS_PER_THEME = 3

# title, description, mood per category
CATEGORY_META: dict[FeedCategory, tuple[str, str, DigestMood]] = {
    FeedCategory.TOOLS: (
        "AI tools & products",
        "New tools and updates to ones people use.",
        DigestMood.PRACTICAL,
    ),
    FeedCategory.TUTORIALS: (
        "Guides & how-tos",
        "People sharing how to do things with AI.",
        DigestMood.PRACTICAL,
    ),
    FeedCategory.WORKFLOWS: (
        "Workflows & techniques",
        "Ways people are using AI in their work.",
        DigestMood.WORTH_WATCHING,
    ),
    FeedCategory.OPENSOURCE: (
        "Open source",
        "New models and projects anyone can use.",
        DigestMood.WORTH_WATCHING,
    ),
    FeedCategory.SAFETY: (
        "Safety & policy",
        "Safety research, regulation, and ethics.",
        DigestMood.JUST_FYI,
    ),
}
OTHER_META = (
    "Other notable items",
    "Announcements, discussions, and news.",
    DigestMood.EXCITING,
)


def is_viable(item: FeedItem) -> bool:
    """Minimal quality gate: a real title and some keyword relevance."""
    return len((item.title or "").strip()) > MIN_TITLE_LENGTH and item.relevance_score > 0


def composite_score(item: FeedItem) -> float:
    """relevance + new bonus + engagement bonus (engagement/10, capped)."""
    score = float(item.relevance_score)
    if item.is_new:
        score += NEW_ITEM_BONUS
    if item.engagement:
        score += min(item.engagement / 10, MAX_ENGAGEMENT_BONUS)
    return score


def synthesize_algorithmic(
    items: Sequence[FeedItem],
    now: datetime | None = None,
) -> Digest:
    """Build a digest by category grouping. Never raises, never does I/O.

    Args:
        items: All items considered (itemCount reflects this full list)
        now: Generation time (defaults to current UTC time)

    Returns:
        Digest with source=algorithmic
    """
    now = now or datetime.now(timezone.utc)

    viable = [item for item in items if is_viable(item)]
    # sorted() is stable, so equal scores keep input order
    scored = sorted(viable, key=composite_score, reverse=True)

    groups: dict[FeedCategory, list[FeedItem]] = {}
    for item in scored[:TOP_SCORED_LIMIT]:
        groups.setdefault(item.category, []).append(item)

    used_ids: set[str] = set()
    themes: list[DigestTheme] = []
    for category, group in groups.items():
        sources_seen: set[str] = set()
        chosen: list[FeedItem] = []
        for item in group:
            if len(chosen) >= ITEMS_PER_THEME:
                break
            if item.id in used_ids or item.source in sources_seen:
                continue
            used_ids.add(item.id)
            sources_seen.add(item.source)
            chosen.append(item)

        if not chosen:
            continue

        title, description, mood = CATEGORY_META.get(category, OTHER_META)
        themes.append(
            DigestTheme(
                title=title,
                description=description,
                mood=mood,
                items=tuple(
                    DigestHighlight(item=item, why_matters=f"From {item.source}.")
                    for item in chosen
                ),
            )
        )

    highlights = [h for theme in themes for h in theme.items]

    logger.info(
        f"Algorithmic digest: {len(viable)} viable of {len(items)} items, "
        f"{len(themes)} themes, {len(highlights)} highlights"
    )

    return Digest(
        id=new_digest_id(DigestSource.ALGORITHMIC, now),
        generated_at=now,
        summary=(
            f"Here are {len(highlights)} items from {len(items)} collected across our sources. "
            "This is a basic view. Configure an LLM API key for an intelligently curated digest."
        ),
        themes=tuple(themes),
        highlights=tuple(highlights[:MAX_TOP_HIGHLIGHTS]),
        item_count=len(items),
        closing_note=(
            "That's what we found. Set GROQ_API_KEY, ANTHROPIC_API_KEY or OPENAI_API_KEY "
            "for smarter curation."
        ),
        source=DigestSource.ALGORITHMIC,
    )
