"""LLM connection settings shared by the sketchfriends engines."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any

from llmkit.providers import get_provider

DEFAULT_MODEL = "gemini/gemini-2.0-flash"


@dataclass(frozen=True)
class LLMConfig:
    """LLM connection settings."""

    model: str = DEFAULT_MODEL
    api_base: str | None = None
    api_key: str | None = None
    provider: str | None = None
    timeout: float = 60.0
    num_retries: int = 2

    @classmethod
    def from_env(cls) -> LLMConfig:
        """Build config from SKF_* environment variables."""
        provider_name = os.getenv("SKF_PROVIDER")
        provider = get_provider(provider_name) if provider_name else None

        model = os.getenv("SKF_MODEL")
        api_base = os.getenv("SKF_API_BASE")
        api_key = os.getenv("SKF_API_KEY")

        if provider and not model:
            model = provider.default_model
        if provider and not api_base:
            api_base = provider.api_base
        if provider and not api_key:
            api_key = os.getenv(provider.env_key)

        return cls(
            model=model or DEFAULT_MODEL,
            api_base=api_base,
            api_key=api_key,
            provider=provider_name,
            timeout=float(os.getenv("SKF_TIMEOUT", "60")),
            num_retries=int(os.getenv("SKF_NUM_RETRIES", "2")),
        )

    @property
    def supports_vision(self) -> bool:
        """False only when the configured provider is known to be text-only."""
        if not self.provider:
            return True
        info = get_provider(self.provider)
        return info.supports_vision if info else True

    def to_litellm_kwargs(self) -> dict[str, Any]:
        """Return kwargs suitable for litellm.acompletion()."""
        kwargs: dict[str, Any] = {
            "model": self.model,
            "timeout": self.timeout,
            "num_retries": self.num_retries,
        }
        if self.api_base:
            kwargs["api_base"] = self.api_base
        if self.api_key:
            kwargs["api_key"] = self.api_key
        return kwargs
