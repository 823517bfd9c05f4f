"""llmkit — LLM connection settings and provider presets."""

from llmkit.config import DEFAULT_MODEL, LLMConfig
from llmkit.providers import PROVIDERS, ProviderInfo, get_provider, list_providers

__all__ = [
    "DEFAULT_MODEL",
    "LLMConfig",
    "PROVIDERS",
    "ProviderInfo",
    "get_provider",
    "list_providers",
]
