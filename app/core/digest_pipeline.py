"""Digest Pipeline - Orchestrates digest delivery.

Pipeline Phases:
1. CACHE_LOOKUP: Serve the freshest cached payload (skipped when forced fresh)
2. FETCH: Load current items from the feed aggregator (failure is fatal)
3. SYNTHESIZE: LLM path if a provider key is configured, else algorithmic
4. SERIALIZE: Canonical timestamps, first 60 raw items as allItems
5. CACHE_WRITE: Best effort; the memory slot is always updated

Usage:
    service = DigestService(fetch_all_feeds, cache, Settings.from_env())
    payload = await service.get_digest()
    async for event in service.stream_digest():
        # Handle SSE events
        pass
"""

from __future__ import annotations

import asyncio
import logging
import traceback
from typing import Any, AsyncIterator, Awaitable, Callable, Sequence

import httpx

from app.core.digest_algorithmic import synthesize_algorithmic
from app.core.digest_cache import CacheEntry, DigestCache
from app.core.digest_events import DigestEvent, DigestEventType, progress
from app.core.digest_llm import SynthesisOk, attempt_llm_synthesis, fallback_digest
from app.core.digest_models import Digest, serialize_digest
from app.core.settings import Settings
from app.providers.content_types import FeedItem

logger = logging.getLogger(__name__)

FeedFetcher = Callable[[], Awaitable[list[FeedItem]]]

GENERIC_ERROR = "Failed to generate digest"
DEBUG_STACK_LINES = 5


class DigestGenerationError(Exception):
    """Digest could not be generated (feed aggregation failed)."""


class DigestService:
    """Cache lookup -> fetch -> synthesize -> serialize -> cache write.

    One instance per process. It owns nothing global: the cache (including
    the memory slot shared by all requests) is passed in.
    """

    def __init__(
        self,
        fetch_feeds: FeedFetcher,
        cache: DigestCache,
        settings: Settings,
        llm_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._fetch_feeds = fetch_feeds
        self.cache = cache
        self.settings = settings
        self._llm_client = llm_client
        self._background: set[asyncio.Task] = set()

    async def fetch_items(self) -> list[FeedItem]:
        return await self._fetch_feeds()

    async def synthesize(self, items: Sequence[FeedItem]) -> Digest:
        """Pick the synthesis path and return a digest tagged with the path that produced it."""
        credentials = self.settings.llm_credentials()
        if credentials is None:
            logger.info("No LLM key configured, using algorithmic synthesis")
            return synthesize_algorithmic(items)

        result = await attempt_llm_synthesis(items, credentials, client=self._llm_client)
        if isinstance(result, SynthesisOk):
            return result.digest

        logger.warning(f"Falling back to algorithmic digest: {result.describe()[:300]}")
        return fallback_digest(items, result)

    async def _lookup(self) -> dict[str, Any] | None:
        try:
            return await self.cache.get_cached()
        except Exception as e:
            logger.warning(f"Cache read failed, treating as miss: {e}")
            return None

    async def _run_pipeline(self, force_fresh: bool) -> AsyncIterator[DigestEvent]:
        """Yield progress events, then the digest payload, then done."""
        if not force_fresh:
            cached = await self._lookup()
            if cached is not None:
                logger.info(f"Serving cached digest {cached.get('id')}")
                yield progress(DigestEventType.CACHED, "Serving cached digest")
                yield DigestEvent(type=DigestEventType.DIGEST, data=cached)
                yield DigestEvent(type=DigestEventType.DONE)
                return

        yield progress(DigestEventType.FEEDS_FETCHING, "Fetching feeds...")
        try:
            items = await self._fetch_feeds()
        except Exception as e:
            logger.exception(f"Digest generation failed during fetch: {e}")
            yield DigestEvent(type=DigestEventType.ERROR, data={"message": GENERIC_ERROR})
            yield DigestEvent(type=DigestEventType.DONE)
            return

        yield progress(
            DigestEventType.FEEDS_DONE,
            f"Fetched {len(items)} items",
            itemCount=len(items),
        )

        yield progress(DigestEventType.SYNTHESIZING, "Synthesizing digest...")
        digest = await self.synthesize(items)
        yield progress(
            DigestEventType.SYNTHESIZED,
            f"Found {len(digest.themes)} themes",
            themeCount=len(digest.themes),
            highlightCount=len(digest.highlights),
            source=digest.source.value,
        )

        payload = serialize_digest(digest, items)
        await self.cache.cache(digest.id, payload)
        logger.info(f"Generated digest {digest.id} ({digest.source.value}) from {len(items)} items")

        yield DigestEvent(type=DigestEventType.DIGEST, data=payload)
        yield DigestEvent(type=DigestEventType.DONE)

    async def get_digest(self, force_fresh: bool = False) -> dict[str, Any]:
        """Single-response delivery.

        Raises:
            DigestGenerationError: If the feeds could not be fetched.
        """
        payload: dict[str, Any] | None = None
        async for event in self._run_pipeline(force_fresh):
            if event.type == DigestEventType.ERROR:
                raise DigestGenerationError(event.data.get("message", GENERIC_ERROR))
            if event.type == DigestEventType.DIGEST:
                payload = event.data
        if payload is None:
            raise DigestGenerationError(GENERIC_ERROR)
        return payload

    async def stream_digest(self, force_fresh: bool = False) -> AsyncIterator[DigestEvent]:
        """Incremental delivery.

        The pipeline runs in its own task and feeds a queue; this generator
        only drains it. If the consumer stops early, the task still finishes
        (so the cache write lands) but nothing more is enqueued.
        """
        queue: asyncio.Queue[DigestEvent | None] = asyncio.Queue()
        consumer_gone = asyncio.Event()

        async def produce() -> None:
            try:
                async for event in self._run_pipeline(force_fresh):
                    if not consumer_gone.is_set():
                        queue.put_nowait(event)
            except Exception as e:
                logger.exception(f"Digest stream failed: {e}")
                if not consumer_gone.is_set():
                    queue.put_nowait(DigestEvent(type=DigestEventType.ERROR, data={"message": GENERIC_ERROR}))
                    queue.put_nowait(DigestEvent(type=DigestEventType.DONE))
            finally:
                queue.put_nowait(None)

        task = asyncio.create_task(produce())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

        try:
            while True:
                event = await queue.get()
                if event is None:
                    break
                yield event
        finally:
            if not task.done():
                logger.info("Digest stream consumer left, finishing generation in background")
            consumer_gone.set()

    async def debug_digest(self) -> dict[str, Any]:
        """Uncached generation that reports raw diagnostics instead of a digest.

        Never the default path.
        """
        credentials = self.settings.llm_credentials()
        key_info = {
            "apiKeyPresent": credentials is not None,
            "apiKeyPrefix": credentials.api_key[:4] if credentials else "",
            "provider": credentials.provider if credentials else None,
        }

        try:
            items = await self._fetch_feeds()
        except Exception as e:
            return {"step": "fetch", "error": str(e), **key_info}

        try:
            digest = await self.synthesize(items)
        except Exception as e:
            stack = traceback.format_exception(type(e), e, e.__traceback__)
            return {
                "step": "synthesize",
                "error": str(e),
                "stack": "".join(stack).splitlines()[-DEBUG_STACK_LINES:],
                **key_info,
            }

        return {
            "debug": True,
            "source": digest.source.value,
            "themeCount": len(digest.themes),
            "itemCount": digest.item_count,
            "summary": digest.summary[:200],
            "llmError": digest.llm_error,
            **key_info,
        }

    async def clear_cache(self) -> None:
        await self.cache.clear()

    async def history(self, limit: int = 10) -> list[CacheEntry]:
        return await self.cache.history(limit)

    async def wait_background(self) -> None:
        """Wait for stream producers whose consumers already left."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
