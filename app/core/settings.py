from __future__ import annotations

import os
from dataclasses import dataclass

from app.core.llm_providers import detect_provider_from_key

# Named keys in selection priority order
PROVIDER_KEY_ORDER = ("groq", "anthropic", "openai")


@dataclass(frozen=True)
class LLMCredentials:
    provider: str
    api_key: str
    model: str | None = None
    api_url: str | None = None


@dataclass(frozen=True)
class Settings:
    app_env: str
    db_path: str | None
    cache_ttl_hours: float
    retention_days: int
    llm_provider: str | None
    groq_api_key: str
    anthropic_api_key: str
    openai_api_key: str
    llm_api_key: str
    llm_model: str | None
    llm_api_url: str | None

    @staticmethod
    def from_env() -> "Settings":
        def _s(name: str, default: str = "") -> str:
            return os.getenv(name, default).strip()

        def _opt(name: str) -> str | None:
            return _s(name) or None

        return Settings(
            app_env=_s("APP_ENV", "dev"),
            db_path=_opt("DIGEST_DB_PATH"),
            cache_ttl_hours=float(_s("DIGEST_CACHE_TTL_HOURS", "4")),
            retention_days=int(_s("DIGEST_RETENTION_DAYS", "30")),
            llm_provider=_opt("LLM_PROVIDER"),
            groq_api_key=_s("GROQ_API_KEY"),
            anthropic_api_key=_s("ANTHROPIC_API_KEY"),
            openai_api_key=_s("OPENAI_API_KEY"),
            llm_api_key=_s("LLM_API_KEY"),
            llm_model=_opt("LLM_MODEL"),
            llm_api_url=_opt("LLM_API_URL"),
        )

    @property
    def durable_cache_configured(self) -> bool:
        return bool(self.db_path)

    @property
    def cache_ttl_seconds(self) -> float:
        return self.cache_ttl_hours * 60 * 60

    @property
    def retention_seconds(self) -> float:
        return self.retention_days * 24 * 60 * 60

    def _named_key(self, provider: str) -> str:
        return {
            "groq": self.groq_api_key,
            "anthropic": self.anthropic_api_key,
            "openai": self.openai_api_key,
        }.get(provider, "")

    def llm_credentials(self) -> LLMCredentials | None:
        """Resolve which provider and key to use for synthesis.

        Rules (in order):
        1. LLM_PROVIDER set: use that provider's named key, else LLM_API_KEY
        2. First named key present (GROQ > ANTHROPIC > OPENAI)
        3. LLM_API_KEY, provider inferred from the key prefix

        Returns:
            LLMCredentials, or None when no key is configured (algorithmic path)
        """
        if self.llm_provider:
            provider = self.llm_provider.lower()
            key = self._named_key(provider) or self.llm_api_key
            if key:
                return LLMCredentials(provider, key, self.llm_model, self.llm_api_url)
            return None

        for provider in PROVIDER_KEY_ORDER:
            key = self._named_key(provider)
            if key:
                return LLMCredentials(provider, key, self.llm_model, self.llm_api_url)

        if self.llm_api_key:
            return LLMCredentials(
                detect_provider_from_key(self.llm_api_key),
                self.llm_api_key,
                self.llm_model,
                self.llm_api_url,
            )
        return None
