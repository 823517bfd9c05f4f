"""Provider registry — base URLs, default models and capabilities."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ProviderInfo:
    """Metadata for an LLM provider."""

    name: str
    api_base: str | None  # None = use litellm default
    env_key: str  # environment variable for the API key
    default_model: str
    supports_vision: bool = True
    is_relay: bool = False


# --- Direct providers ---

_GOOGLE = ProviderInfo(
    name="google",
    api_base=None,
    env_key="GEMINI_API_KEY",
    default_model="gemini/gemini-2.0-flash",
)

_OPENAI = ProviderInfo(
    name="openai",
    api_base=None,
    env_key="OPENAI_API_KEY",
    default_model="openai/gpt-4o-mini",
)

_ANTHROPIC = ProviderInfo(
    name="anthropic",
    api_base=None,
    env_key="ANTHROPIC_API_KEY",
    default_model="anthropic/claude-sonnet-4-5-20250929",
)

_GLM = ProviderInfo(
    name="glm",
    api_base="https://open.bigmodel.cn/api/paas/v4",
    env_key="GLM_API_KEY",
    default_model="openai/glm-4v-flash",
)

# Text-only: drawings cannot be sent, so recognition and evolution fall back.
_DEEPSEEK = ProviderInfo(
    name="deepseek",
    api_base="https://api.deepseek.com/v1",
    env_key="DEEPSEEK_API_KEY",
    default_model="openai/deepseek-chat",
    supports_vision=False,
)

# --- Relay / proxy providers ---

_SILICONFLOW = ProviderInfo(
    name="siliconflow",
    api_base="https://api.siliconflow.cn/v1",
    env_key="SILICONFLOW_API_KEY",
    default_model="openai/Qwen/Qwen2.5-VL-72B-Instruct",
    is_relay=True,
)

_OPENROUTER = ProviderInfo(
    name="openrouter",
    api_base="https://openrouter.ai/api/v1",
    env_key="OPENROUTER_API_KEY",
    default_model="openai/google/gemini-2.0-flash-001",
    is_relay=True,
)

# --- Registry ---

PROVIDERS: dict[str, ProviderInfo] = {
    p.name: p
    for p in [
        _GOOGLE, _OPENAI, _ANTHROPIC, _GLM, _DEEPSEEK,
        _SILICONFLOW, _OPENROUTER,
    ]
}


def get_provider(name: str) -> ProviderInfo | None:
    """Look up a provider by name (case-insensitive)."""
    return PROVIDERS.get(name.lower())


def list_providers(*, vision_only: bool = False) -> list[str]:
    """Return registered provider names, optionally only vision-capable ones."""
    return [
        name for name, info in PROVIDERS.items()
        if info.supports_vision or not vision_only
    ]
