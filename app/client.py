"""Client for the digest API.

Reads the SSE stream and reports progress; falls back to the single
response endpoint if the stream fails or ends without a digest.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable

import httpx

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, dict[str, Any]], None]


class DigestClientError(Exception):
    """Neither the stream nor the fallback request produced a digest."""


@dataclass(frozen=True)
class SSEMessage:
    event: str
    data: dict[str, Any]


async def iter_sse(chunks: AsyncIterator[str]) -> AsyncIterator[SSEMessage]:
    """Parse SSE blocks from text chunks. Incomplete blocks stay buffered."""
    buffer = ""
    async for chunk in chunks:
        buffer += chunk
        *blocks, buffer = buffer.split("\n\n")
        for block in blocks:
            message = _parse_block(block)
            if message is not None:
                yield message
    if buffer.strip():
        message = _parse_block(buffer)
        if message is not None:
            yield message


def _parse_block(block: str) -> SSEMessage | None:
    event = ""
    data_str = ""
    for line in block.split("\n"):
        if line.startswith("event: "):
            event = line[7:]
        elif line.startswith("data: "):
            data_str = line[6:]
    if not event or not data_str:
        return None
    try:
        return SSEMessage(event=event, data=json.loads(data_str))
    except json.JSONDecodeError as e:
        logger.warning(f"SSE parse error, skipping block: {e}")
        return None


class DigestClient:
    """Fetch digests from a running server."""

    def __init__(self, base_url: str, client: httpx.AsyncClient | None = None) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = client

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(None, connect=10.0))
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()

    async def get_digest(self, fresh: bool = False) -> dict[str, Any]:
        """Single-response request.

        Raises:
            DigestClientError: On a non-2xx response.
        """
        params = {"fresh": "1"} if fresh else {}
        response = await self._http().get(f"{self._base_url}/api/digest", params=params)
        if not response.is_success:
            raise DigestClientError(f"Digest request failed: {response.status_code}")
        return response.json()

    async def stream_digest(
        self,
        on_progress: ProgressCallback | None = None,
        fresh: bool = False,
    ) -> dict[str, Any]:
        """Streamed request with transparent fallback to get_digest()."""
        try:
            digest = await self._read_stream(on_progress, fresh)
        except (httpx.HTTPError, DigestClientError) as e:
            logger.warning(f"Digest stream failed, falling back: {e}")
            digest = None

        if digest is None:
            return await self.get_digest(fresh=fresh)
        return digest

    async def _read_stream(
        self,
        on_progress: ProgressCallback | None,
        fresh: bool,
    ) -> dict[str, Any] | None:
        params = {"stream": "1"}
        if fresh:
            params["fresh"] = "1"

        digest: dict[str, Any] | None = None
        async with self._http().stream("GET", f"{self._base_url}/api/digest", params=params) as response:
            if not response.is_success:
                raise DigestClientError(f"Digest stream failed: {response.status_code}")
            async for message in iter_sse(response.aiter_text()):
                if message.event == "digest":
                    digest = message.data
                elif message.event == "error":
                    logger.error(f"Digest stream error: {message.data.get('message')}")
                elif message.event == "done":
                    break
                elif on_progress is not None:
                    on_progress(message.event, message.data)
        return digest
