"""LLM provider table for chat/completion APIs (Groq, OpenAI, Anthropic).

Each provider is described by a ProviderSpec: endpoint, header builder,
body builder and response text extractor. The call itself is a single
attempt; the caller decides what to do with an LLMError.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

import httpx

logger = logging.getLogger(__name__)

# Max tokens the model may generate for one digest
MAX_OUTPUT_TOKENS = 3000
TEMPERATURE = 0.7

GROQ_URL = "https://api.groq.com/openai/v1/chat/completions"
OPENAI_URL = "https://api.openai.com/v1/chat/completions"
ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"


@dataclass(frozen=True)
class ChatResponse:
    """Raw text completion from a provider."""

    content: str
    provider: str
    model: str
    latency_ms: int


class LLMError(Exception):
    """Error during LLM API call."""

    def __init__(self, message: str, provider: str, status_code: int | None = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


def _bearer_headers(api_key: str) -> dict[str, str]:
    return {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {api_key}",
    }


def _anthropic_headers(api_key: str) -> dict[str, str]:
    return {
        "Content-Type": "application/json",
        "x-api-key": api_key,
        "anthropic-version": ANTHROPIC_VERSION,
    }


def _openai_body(model: str, system: str, user: str) -> dict[str, Any]:
    return {
        "model": model,
        "max_tokens": MAX_OUTPUT_TOKENS,
        "temperature": TEMPERATURE,
        "response_format": {"type": "json_object"},
        "messages": [
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ],
    }


def _anthropic_body(model: str, system: str, user: str) -> dict[str, Any]:
    return {
        "model": model,
        "max_tokens": MAX_OUTPUT_TOKENS,
        "system": system,
        "messages": [{"role": "user", "content": user}],
    }


def _openai_text(data: dict[str, Any]) -> str:
    choices = data.get("choices") or [{}]
    return ((choices[0] or {}).get("message") or {}).get("content") or ""


def _anthropic_text(data: dict[str, Any]) -> str:
    content = data.get("content") or [{}]
    return (content[0] or {}).get("text") or ""


@dataclass(frozen=True)
class ProviderSpec:
    """How to talk to one provider dialect."""

    name: str
    url: str
    default_model: str
    build_headers: Callable[[str], dict[str, str]]
    build_body: Callable[[str, str, str], dict[str, Any]]
    extract_text: Callable[[dict[str, Any]], str]
    url_overridable: bool = False


PROVIDERS: dict[str, ProviderSpec] = {
    "groq": ProviderSpec(
        name="groq",
        url=GROQ_URL,
        default_model="llama-3.3-70b-versatile",
        build_headers=_bearer_headers,
        build_body=_openai_body,
        extract_text=_openai_text,
    ),
    "openai": ProviderSpec(
        name="openai",
        url=OPENAI_URL,
        default_model="gpt-4o-mini",
        build_headers=_bearer_headers,
        build_body=_openai_body,
        extract_text=_openai_text,
        url_overridable=True,
    ),
    "anthropic": ProviderSpec(
        name="anthropic",
        url=ANTHROPIC_URL,
        default_model="claude-haiku-4-5-20251001",
        build_headers=_anthropic_headers,
        build_body=_anthropic_body,
        extract_text=_anthropic_text,
    ),
}


def detect_provider_from_key(api_key: str) -> str:
    """Guess the provider from the key format.

    Only used for the generic LLM_API_KEY; named keys carry their provider.
    Anthropic keys also start with 'sk-', so they are checked first.
    """
    if api_key.startswith("gsk_"):
        return "groq"
    if api_key.startswith("sk-ant-"):
        return "anthropic"
    if api_key.startswith("sk-"):
        return "openai"
    return "anthropic"


def get_provider_spec(provider_name: str) -> ProviderSpec:
    """Look up a provider by id.

    Raises:
        ValueError: If the provider is unknown.
    """
    spec = PROVIDERS.get(provider_name.lower())
    if spec is None:
        raise ValueError(
            f"Unknown LLM provider: {provider_name}. Available: {list(PROVIDERS.keys())}"
        )
    return spec


async def complete(
    spec: ProviderSpec,
    api_key: str,
    system: str,
    user: str,
    model: str | None = None,
    api_url: str | None = None,
    client: httpx.AsyncClient | None = None,
) -> ChatResponse:
    """Send one completion request and return the raw text.

    No retries. The overall time budget belongs to the server hosting the
    request, so the client is created without a read timeout.

    Raises:
        LLMError: On non-2xx status or an unreadable response envelope.
        httpx.HTTPError: On transport failures.
    """
    model = (model or spec.default_model).strip()
    url = api_url if (api_url and spec.url_overridable) else spec.url

    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(timeout=httpx.Timeout(None, connect=15.0))

    start_time = time.monotonic()
    try:
        response = await client.post(
            url,
            headers=spec.build_headers(api_key),
            json=spec.build_body(model, system, user),
        )
    finally:
        if owns_client:
            await client.aclose()

    if not response.is_success:
        body = response.text
        logger.warning(f"{spec.name} returned {response.status_code}: {body[:200]}")
        raise LLMError(
            f"{response.status_code}: {body[:200]}",
            provider=spec.name,
            status_code=response.status_code,
        )

    try:
        data = response.json()
        text = spec.extract_text(data)
    except (ValueError, AttributeError, IndexError, TypeError) as e:
        raise LLMError(
            f"Unreadable {spec.name} response: {e}",
            provider=spec.name,
            status_code=response.status_code,
        ) from e

    latency_ms = int((time.monotonic() - start_time) * 1000)
    logger.info(f"{spec.name} ({model}) answered in {latency_ms}ms, {len(text)} chars")

    return ChatResponse(
        content=text,
        provider=spec.name,
        model=model,
        latency_ms=latency_ms,
    )
