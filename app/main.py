from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import Depends, FastAPI
from fastapi.responses import JSONResponse, StreamingResponse

from app.core.digest_cache import DigestCache, DurableDigestStore, MemoryDigestSlot
from app.core.digest_events import DigestEvent, DigestEventType
from app.core.digest_pipeline import GENERIC_ERROR, DigestService
from app.core.settings import Settings
from app.providers.content_types import format_timestamp
from app.providers.feeds import make_feed_fetcher

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

app = FastAPI(title="ai-pulse")

_service: DigestService | None = None


def build_digest_service(settings: Settings) -> DigestService:
    """Wire cache backends and the feed aggregator into a DigestService."""
    durable = None
    if settings.durable_cache_configured:
        durable = DurableDigestStore.open(
            settings.db_path,
            ttl_seconds=settings.cache_ttl_seconds,
            retention_seconds=settings.retention_seconds,
        )
    cache = DigestCache(
        memory=MemoryDigestSlot(ttl_seconds=settings.cache_ttl_seconds),
        durable=durable,
    )
    return DigestService(make_feed_fetcher(), cache, settings)


def init_digest_service() -> None:
    global _service
    _service = build_digest_service(Settings.from_env())


def get_digest_service() -> DigestService:
    """Get or create the process-wide DigestService."""
    if _service is None:
        init_digest_service()
    assert _service is not None
    return _service


@app.on_event("startup")
def _startup() -> None:
    init_digest_service()


def _sse_response(service: DigestService, force_fresh: bool) -> StreamingResponse:
    async def event_generator():
        """Generate SSE events from the digest pipeline."""
        try:
            async for event in service.stream_digest(force_fresh=force_fresh):
                yield event.to_sse()
        except Exception as e:
            logger.exception(f"Digest stream failed: {e}")
            yield DigestEvent(type=DigestEventType.ERROR, data={"message": GENERIC_ERROR}).to_sse()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@app.get("/api/digest")
async def api_digest(
    fresh: bool = False,
    stream: bool = False,
    debug: bool = False,
    service: DigestService = Depends(get_digest_service),
):
    """Get the current digest.

    Args:
        fresh: Skip the cache and regenerate
        stream: Deliver progress events over SSE instead of one response
        debug: Uncached run that returns diagnostics instead of a digest
    """
    if debug:
        return await service.debug_digest()

    if stream:
        return _sse_response(service, force_fresh=fresh)

    try:
        return await service.get_digest(force_fresh=fresh)
    except Exception as e:
        logger.exception(f"Digest generation failed: {e}")
        return JSONResponse({"error": GENERIC_ERROR}, status_code=500)


@app.get("/api/digest/stream")
async def api_digest_stream(
    fresh: bool = False,
    service: DigestService = Depends(get_digest_service),
):
    """SSE stream for digest progress.

    Events: cached | feeds_fetching, feeds_done, synthesizing, synthesized;
    then digest, then done.
    """
    return _sse_response(service, force_fresh=fresh)


@app.post("/api/digest/refresh")
async def api_digest_refresh(service: DigestService = Depends(get_digest_service)):
    """Clear cached digests so the next request regenerates."""
    try:
        await service.clear_cache()
    except Exception as e:
        logger.exception(f"Failed to clear digest cache: {e}")
        return JSONResponse({"error": "Failed to clear cache"}, status_code=500)
    return {"cleared": True}


@app.get("/api/digest/history")
async def api_digest_history(
    limit: int = 10,
    service: DigestService = Depends(get_digest_service),
):
    """Recent digests from the durable cache, newest first."""
    if not service.cache.durable_configured:
        return JSONResponse(
            {"error": "Database not configured. Set DIGEST_DB_PATH."},
            status_code=501,
        )
    try:
        entries = await service.history(limit)
    except Exception as e:
        logger.exception(f"Failed to fetch digest history: {e}")
        return JSONResponse({"error": "Failed to fetch history"}, status_code=500)
    return [entry.to_dict() for entry in entries]


@app.get("/api/feeds")
async def api_feeds(service: DigestService = Depends(get_digest_service)):
    """Raw aggregated items, uncached."""
    try:
        items = await service.fetch_items()
    except Exception as e:
        logger.exception(f"Error fetching feeds: {e}")
        return JSONResponse({"error": "Failed to fetch feeds"}, status_code=500)
    return {
        "items": [item.to_dict() for item in items],
        "fetchedAt": format_timestamp(datetime.now(timezone.utc)),
    }


@app.get("/api/health")
def api_health(service: DigestService = Depends(get_digest_service)):
    """Which providers and backends are configured (never the keys themselves)."""
    s = service.settings
    credentials = s.llm_credentials()
    return {
        "groq": bool(s.groq_api_key),
        "groqPrefix": s.groq_api_key[:4],
        "anthropic": bool(s.anthropic_api_key),
        "openai": bool(s.openai_api_key),
        "genericKey": bool(s.llm_api_key),
        "llmProvider": credentials.provider if credentials else None,
        "llmModel": s.llm_model or "not set",
        "durableCache": s.durable_cache_configured,
        "appEnv": s.app_env,
    }
