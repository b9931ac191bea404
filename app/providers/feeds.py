"""Feed aggregation across JSON APIs and RSS/Atom feeds.

Each source is fetched concurrently; a failing source is logged and
skipped. Items are normalized (plain-text description, classification,
isNew, quality tag) and sorted newest first.
"""

from __future__ import annotations

import asyncio
import html
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

import feedparser
import httpx

from app.core.classifier import classify
from app.providers.content_types import FeedItem, is_new, make_item_id, quality_tag

logger = logging.getLogger(__name__)

DESCRIPTION_LIMIT = 200
ITEMS_PER_SOURCE = 15
FETCH_TIMEOUT = 15.0
USER_AGENT = "ai-pulse/0.1"

_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")


class FeedAggregationError(Exception):
    """No source returned anything usable."""


@dataclass(frozen=True)
class RawEntry:
    """Source-specific fields before normalization."""

    title: str
    url: str
    description: str = ""
    published: datetime | None = None
    engagement: int | None = None


@dataclass(frozen=True)
class FeedSource:
    """A named source and how to fetch it."""

    name: str
    icon: str
    url: str
    kind: str  # 'rss', 'hn', 'reddit', 'github'


SOURCES: tuple[FeedSource, ...] = (
    FeedSource("Hugging Face", "🤗", "https://huggingface.co/blog/feed.xml", "rss"),
    FeedSource("OpenAI", "🟢", "https://openai.com/news/rss.xml", "rss"),
    FeedSource("Simon Willison", "🧠", "https://simonwillison.net/atom/everything/", "rss"),
    FeedSource("Latent Space", "🎙️", "https://www.latent.space/feed", "rss"),
    FeedSource("arXiv", "📄", "https://rss.arxiv.org/rss/cs.AI", "rss"),
    FeedSource(
        "Hacker News",
        "🟠",
        "https://hn.algolia.com/api/v1/search?query=AI%20LLM&tags=story&hitsPerPage=20",
        "hn",
    ),
    FeedSource("r/LocalLLaMA", "🦙", "https://www.reddit.com/r/LocalLLaMA/hot.json?limit=15", "reddit"),
    FeedSource("r/ClaudeAI", "🟤", "https://www.reddit.com/r/ClaudeAI/hot.json?limit=15", "reddit"),
    FeedSource(
        "GitHub",
        "🐙",
        "https://api.github.com/search/repositories?q=topic:llm&sort=updated&order=desc&per_page=15",
        "github",
    ),
)


def clean_text(value: str | None, limit: int = DESCRIPTION_LIMIT) -> str:
    """Strip tags, unescape entities, collapse whitespace, truncate."""
    if not value:
        return ""
    text = html.unescape(_TAG_RE.sub(" ", value))
    return _WS_RE.sub(" ", text).strip()[:limit]


def normalize_entry(source: FeedSource, entry: RawEntry, now: datetime) -> FeedItem:
    """Turn a raw entry into a classified FeedItem."""
    title = clean_text(entry.title, limit=300) or "Untitled"
    description = clean_text(entry.description)
    published = entry.published or now
    category, score = classify(title, description)
    return FeedItem(
        id=make_item_id(source.name, title),
        title=title,
        description=description,
        url=entry.url,
        source=source.name,
        source_icon=source.icon,
        date=published,
        category=category,
        relevance_score=score,
        engagement=entry.engagement,
        quality=quality_tag(entry.engagement, published, now),
        is_new=is_new(published, now),
    )


def _from_epoch(value: Any) -> datetime | None:
    try:
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    except (TypeError, ValueError):
        return None


def _from_iso(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def _from_struct(value: Any) -> datetime | None:
    if not value:
        return None
    return datetime(*value[:6], tzinfo=timezone.utc)


def parse_rss(text: str) -> list[RawEntry]:
    feed = feedparser.parse(text)
    entries = getattr(feed, "entries", [])
    if getattr(feed, "bozo", False) and not entries:
        raise ValueError(f"Unparseable feed: {feed.get('bozo_exception')}")
    out: list[RawEntry] = []
    for entry in entries[:ITEMS_PER_SOURCE]:
        link = entry.get("link")
        if not link:
            continue
        out.append(
            RawEntry(
                title=entry.get("title") or "Untitled",
                url=link,
                description=entry.get("summary") or entry.get("description") or "",
                published=_from_struct(entry.get("published_parsed") or entry.get("updated_parsed")),
            )
        )
    return out


def parse_hn(data: dict[str, Any]) -> list[RawEntry]:
    out: list[RawEntry] = []
    for hit in data.get("hits", [])[:ITEMS_PER_SOURCE]:
        object_id = hit.get("objectID")
        points = hit.get("points") or 0
        out.append(
            RawEntry(
                title=hit.get("title") or "Untitled",
                url=hit.get("url") or f"https://news.ycombinator.com/item?id={object_id}",
                description=hit.get("story_text") or f"{points} points • {hit.get('num_comments') or 0} comments",
                published=_from_iso(hit.get("created_at")),
                engagement=points,
            )
        )
    return out


def parse_reddit(data: dict[str, Any]) -> list[RawEntry]:
    out: list[RawEntry] = []
    for child in (data.get("data") or {}).get("children", []):
        post = child.get("data") or {}
        if post.get("stickied"):
            continue
        out.append(
            RawEntry(
                title=post.get("title") or "Untitled",
                url=f"https://www.reddit.com{post.get('permalink', '')}",
                description=post.get("selftext") or "",
                published=_from_epoch(post.get("created_utc")),
                engagement=post.get("score"),
            )
        )
    return out[:ITEMS_PER_SOURCE]


def parse_github(data: dict[str, Any]) -> list[RawEntry]:
    out: list[RawEntry] = []
    for repo in data.get("items", [])[:ITEMS_PER_SOURCE]:
        out.append(
            RawEntry(
                title=f"{repo.get('full_name', '')}: {repo.get('description') or ''}".strip(": "),
                url=repo.get("html_url", ""),
                description=repo.get("description") or "",
                published=_from_iso(repo.get("pushed_at") or repo.get("updated_at")),
                engagement=repo.get("stargazers_count"),
            )
        )
    return out


JSON_PARSERS: dict[str, Callable[[dict[str, Any]], list[RawEntry]]] = {
    "hn": parse_hn,
    "reddit": parse_reddit,
    "github": parse_github,
}


async def fetch_source(client: httpx.AsyncClient, source: FeedSource) -> list[RawEntry]:
    """Fetch and parse one source. Raises on HTTP or parse failure."""
    response = await client.get(source.url)
    response.raise_for_status()
    if source.kind == "rss":
        return parse_rss(response.text)
    return JSON_PARSERS[source.kind](response.json())


async def fetch_all_feeds(
    sources: tuple[FeedSource, ...] = SOURCES,
    client: httpx.AsyncClient | None = None,
    now: datetime | None = None,
) -> list[FeedItem]:
    """Fetch every source concurrently and merge the results.

    Raises:
        FeedAggregationError: If no source produced any item.
    """
    now = now or datetime.now(timezone.utc)
    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(
            timeout=FETCH_TIMEOUT,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
        )

    try:
        results = await asyncio.gather(
            *(fetch_source(client, source) for source in sources),
            return_exceptions=True,
        )
    finally:
        if owns_client:
            await client.aclose()

    items: list[FeedItem] = []
    seen: set[str] = set()
    failed = 0
    for source, result in zip(sources, results):
        if isinstance(result, BaseException):
            failed += 1
            logger.warning(f"Error fetching {source.name}: {result!r}")
            continue
        for entry in result:
            item = normalize_entry(source, entry, now)
            if item.id in seen:
                continue
            seen.add(item.id)
            items.append(item)

    logger.info(f"Fetched {len(items)} items from {len(sources) - failed}/{len(sources)} sources")

    if not items:
        raise FeedAggregationError(f"No items from any of {len(sources)} sources ({failed} failed)")

    # Newest first
    items.sort(key=lambda i: i.date, reverse=True)
    return items


def make_feed_fetcher(
    sources: tuple[FeedSource, ...] = SOURCES,
) -> Callable[[], Awaitable[list[FeedItem]]]:
    """Zero-argument fetcher bound to a source list."""

    async def _fetch() -> list[FeedItem]:
        return await fetch_all_feeds(sources)

    return _fetch

