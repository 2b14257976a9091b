"""
AI provider adapters (Gemini, Groq, HuggingFace, Ollama).

Each adapter normalizes one vendor API to `ProviderResponse`, keeping
vendor-specific request and response shapes out of the router.
"""

from typing import Any, Dict, Optional, Type

from .base import (
    BaseProvider,
    ChatMessage,
    GenerationSettings,
    ProviderError,
    ProviderResponse,
    Usage,
    estimate_tokens,
)
from .gemini_client import GeminiProvider
from .groq_client import GroqProvider
from .huggingface_client import HuggingFaceProvider
from .ollama_client import OllamaProvider

PROVIDER_CLASSES: Dict[str, Type[BaseProvider]] = {
    "gemini": GeminiProvider,
    "groq": GroqProvider,
    "huggingface": HuggingFaceProvider,
    "ollama": OllamaProvider,
}

ALL_PROVIDERS = list(PROVIDER_CLASSES)
MOBILE_PROVIDERS = ["gemini", "groq"]


def create_provider(name: str, api_key: Optional[str] = None, config: Any = None, **kwargs: Any) -> BaseProvider:
    """
    Build an adapter by provider name.

    `config` (an AppConfig) supplies base URLs and retry policy; an explicit
    `api_key` wins over the configured one.
    """
    cls = PROVIDER_CLASSES.get(name)
    if cls is None:
        raise ValueError(f"Unsupported provider {name!r} (expected one of {', '.join(ALL_PROVIDERS)})")

    if config is not None:
        kwargs.setdefault("timeout", config.ai_timeout_seconds)
        kwargs.setdefault("max_retries", config.ai_retry_attempts)
        kwargs.setdefault("retry_delay", config.ai_retry_delay)
        base_url = {
            "gemini": config.gemini_api_base,
            "groq": config.groq_api_base,
            "huggingface": config.huggingface_api_base,
            "ollama": config.ollama_base_url,
        }[name]
        if base_url:
            kwargs.setdefault("base_url", base_url)
        if api_key is None:
            api_key = config.provider_api_key(name)

    return cls(api_key, **kwargs)


__all__ = [
    "ALL_PROVIDERS",
    "MOBILE_PROVIDERS",
    "PROVIDER_CLASSES",
    "BaseProvider",
    "ChatMessage",
    "GenerationSettings",
    "GeminiProvider",
    "GroqProvider",
    "HuggingFaceProvider",
    "OllamaProvider",
    "ProviderError",
    "ProviderResponse",
    "Usage",
    "create_provider",
    "estimate_tokens",
]
