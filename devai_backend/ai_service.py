"""
Multi-provider AI router.

Requests are checked against what the chosen provider offers. When the
provider fails the router makes at most one hop to the configured
fallback provider, and after that may answer with a canned response.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional

from pydantic import BaseModel, Field

from .cache import get_cache
from .config import AppConfig, load_config
from .errors import (
    AIGenerationError,
    ModelUnavailable,
    ProviderUnavailable,
    RateLimitError,
    ValidationFailed,
)
from .fallback import SIMULATED_PROVIDER, generate_fallback_response
from .llm_providers import (
    ALL_PROVIDERS,
    MOBILE_PROVIDERS,
    PROVIDER_CLASSES,
    BaseProvider,
    ChatMessage,
    GenerationSettings,
    ProviderError,
    Usage,
    create_provider,
    estimate_tokens,
)
from .llm_providers.base import as_messages
from .settings_store import AISettings, get_settings

logger = logging.getLogger(__name__)

RESPONSE_CACHE_TTL = 3600
RATE_WINDOW_SECONDS = 60
STATS_TTL = 86400


class AIRequest(BaseModel):
    messages: List[ChatMessage]
    provider: Optional[str] = None
    model: Optional[str] = None
    system_prompt: Optional[str] = None
    settings: Dict[str, Any] = Field(default_factory=dict)
    user_id: Optional[str] = None
    conversation_id: Optional[str] = None
    allow_simulated: bool = False


class AIResult(BaseModel):
    content: str
    provider: str
    model: str
    usage: Optional[Usage] = None
    token_count: Optional[int] = None
    response_time_ms: int = 0
    finish_reason: str = "stop"
    from_cache: bool = False
    fallback_from: Optional[str] = None
    simulated: bool = False


class AIService:
    def __init__(
        self,
        providers: Dict[str, BaseProvider],
        *,
        cache: Any,
        config: Optional[AppConfig] = None,
        settings_loader: Callable[[], AISettings] = get_settings,
    ):
        self.providers = dict(providers)
        self.cache = cache
        self.config = config or load_config()
        self._settings_loader = settings_loader

    @classmethod
    def from_config(cls, config: AppConfig, cache: Any) -> "AIService":
        providers: Dict[str, BaseProvider] = {}
        for name in ALL_PROVIDERS:
            if name == "ollama":
                if not config.ollama_base_url:
                    continue
            elif not config.provider_api_key(name):
                continue
            providers[name] = create_provider(name, config=config)
            logger.info("[AI] %s client loaded", name)
        logger.info("[AI] Service initialised with %d providers", len(providers))
        return cls(providers, cache=cache, config=config)

    @property
    def settings(self) -> AISettings:
        return self._settings_loader()

    # -- registry ---------------------------------------------------------

    def available_providers(self) -> Dict[str, Dict[str, Any]]:
        return {name: provider.info() for name, provider in self.providers.items()}

    def is_provider_available(self, name: str) -> bool:
        provider = self.providers.get(name)
        return provider is not None and provider.is_available()

    def is_model_available(self, name: str, model: str) -> bool:
        if not self.is_provider_available(name):
            return False
        return model in self.providers[name].available_models()

    @staticmethod
    def provider_names_for_device(is_mobile: bool = False) -> List[str]:
        return list(MOBILE_PROVIDERS if is_mobile else ALL_PROVIDERS)

    def optimal_provider(self, is_mobile: bool = False) -> str:
        preference = ["gemini", "groq"] if is_mobile else ["gemini", "groq", "huggingface"]
        for name in preference:
            if self.is_provider_available(name):
                return name
        return "gemini"

    def resolve_target(self, provider: Optional[str], model: Optional[str]) -> tuple[str, str]:
        """Apply the runtime defaults and check the provider/model pair is usable."""
        name, model = self._resolve(provider, model)
        self.require_provider(name, model)
        return name, model

    def require_provider(self, name: str, model: Optional[str] = None) -> BaseProvider:
        if not self.is_provider_available(name):
            raise ProviderUnavailable(f"AI provider '{name}' is not configured or unavailable")
        provider = self.providers[name]
        if model is None:
            return provider
        models = provider.available_models()
        if models and model not in models:
            raise ModelUnavailable(f"Model '{model}' is not available for provider '{name}'")
        return provider

    def _resolve(self, provider: Optional[str], model: Optional[str]) -> tuple[str, str]:
        settings = self.settings
        name = provider or settings.default_provider
        if model:
            return name, model
        if name == settings.default_provider and settings.default_model:
            return name, settings.default_model
        cls = PROVIDER_CLASSES.get(name)
        existing = self.providers.get(name)
        if existing is not None:
            return name, existing.default_model
        return name, cls.default_model if cls else ""

    # -- request shaping --------------------------------------------------

    def merge_settings(self, overrides: Optional[Dict[str, Any]] = None) -> GenerationSettings:
        current = self.settings
        data: Dict[str, Any] = {
            "temperature": current.temperature,
            "max_tokens": current.max_tokens,
            "top_p": current.top_p,
        }
        if overrides:
            data.update({k: v for k, v in overrides.items() if v is not None})
        return GenerationSettings(**data)

    @staticmethod
    def prepare_messages(messages: List[Any], system_prompt: Optional[str] = None) -> List[ChatMessage]:
        prepared: List[ChatMessage] = []
        if system_prompt:
            prepared.append(ChatMessage(role="system", content=system_prompt))
        prepared.extend(ChatMessage(role=m.role, content=m.content) for m in as_messages(messages))
        return prepared

    @staticmethod
    def cache_key(provider: str, model: str, messages: List[ChatMessage], settings: GenerationSettings) -> str:
        payload = {
            "provider": provider,
            "model": model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "settings": {
                "temperature": settings.temperature,
                "max_tokens": settings.max_tokens,
                "top_p": settings.top_p,
            },
        }
        digest = hashlib.sha256(json.dumps(payload, sort_keys=True).encode("utf-8")).hexdigest()
        return f"ai:response:{digest}"

    @staticmethod
    def estimate_usage(messages: List[ChatMessage], content: str) -> Usage:
        prompt_tokens = sum(estimate_tokens(m.content) for m in messages)
        completion_tokens = estimate_tokens(content)
        return Usage(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        )

    def check_rate_limit(self, provider: str, user_id: Optional[str]) -> None:
        if not user_id:
            return
        key = f"ratelimit:ai:{provider}:{user_id}"
        limit = self.config.ai_requests_per_minute
        current = int(self.cache.get(key) or 0)
        if current >= limit:
            raise RateLimitError(
                f"Rate limit exceeded for AI provider '{provider}'. Limit: {limit} requests per minute."
            )
        self.cache.incr(key, RATE_WINDOW_SECONDS)

    # -- generation -------------------------------------------------------

    def generate_response(self, request: AIRequest) -> AIResult:
        name, model = self._resolve(request.provider, request.model)
        provider = self.require_provider(name, model)
        self.check_rate_limit(name, request.user_id)
        settings = self.merge_settings(request.settings)
        messages = self.prepare_messages(request.messages, request.system_prompt)
        return self._run_chain(
            name,
            provider,
            model,
            messages,
            settings,
            user_id=request.user_id,
            conversation_id=request.conversation_id,
            allow_simulated=request.allow_simulated,
        )

    def _run_chain(
        self,
        name: str,
        provider: BaseProvider,
        model: str,
        messages: List[ChatMessage],
        settings: GenerationSettings,
        *,
        user_id: Optional[str],
        conversation_id: Optional[str],
        allow_simulated: bool,
    ) -> AIResult:
        try:
            return self._generate_with(name, provider, model, messages, settings, user_id, conversation_id)
        except ProviderError as exc:
            logger.error("[AI] Generation failed provider=%s model=%s: %s", name, model, exc)
            last_error: ProviderError = exc

        fallback_name = self._fallback_for(name)
        if fallback_name is not None:
            fallback = self.providers[fallback_name]
            logger.info("[AI] Retrying with fallback provider: %s", fallback_name)
            try:
                result = self._generate_with(
                    fallback_name,
                    fallback,
                    fallback.default_model,
                    messages,
                    settings,
                    user_id,
                    conversation_id,
                )
            except ProviderError as exc:
                logger.error("[AI] Fallback provider %s failed: %s", fallback_name, exc)
                last_error = exc
            else:
                result.fallback_from = name
                return result

        if allow_simulated:
            logger.warning("[AI] All providers failed; serving simulated response")
            return self._simulated(messages, name)
        raise AIGenerationError(f"AI provider '{name}' failed: {last_error}") from last_error

    def _fallback_for(self, name: str) -> Optional[str]:
        fallback = self.settings.fallback_provider
        if not fallback or fallback == name:
            return None
        if not self.is_provider_available(fallback):
            return None
        return fallback

    def _generate_with(
        self,
        name: str,
        provider: BaseProvider,
        model: str,
        messages: List[ChatMessage],
        settings: GenerationSettings,
        user_id: Optional[str],
        conversation_id: Optional[str],
    ) -> AIResult:
        deterministic = settings.temperature == 0
        key = self.cache_key(name, model, messages, settings)
        if deterministic:
            cached = self.cache.get(key)
            if cached:
                logger.info("[AI] Response served from cache provider=%s model=%s", name, model)
                return AIResult(**{**cached, "from_cache": True})

        start = time.perf_counter()
        response = provider.generate(messages, model, settings)
        elapsed_ms = int((time.perf_counter() - start) * 1000)

        usage = response.usage or self.estimate_usage(messages, response.content)
        result = AIResult(
            content=response.content,
            provider=name,
            model=response.model or model,
            usage=usage,
            token_count=usage.completion_tokens or estimate_tokens(response.content),
            response_time_ms=elapsed_ms,
            finish_reason=response.finish_reason,
        )
        if deterministic:
            self.cache.set(key, result.model_dump(), RESPONSE_CACHE_TTL)

        self.record_usage(name, result.model, usage, user_id, conversation_id)
        logger.info(
            "[AI] Response generated provider=%s model=%s time_ms=%d tokens=%s",
            name,
            result.model,
            elapsed_ms,
            result.token_count,
        )
        return result

    def _simulated(self, messages: List[ChatMessage], failed_provider: str) -> AIResult:
        last_user = next((m.content for m in reversed(messages) if m.role == "user"), "")
        canned = generate_fallback_response(last_user, failed_provider)
        return AIResult(
            content=canned["content"],
            provider=SIMULATED_PROVIDER,
            model=canned["model"],
            fallback_from=failed_provider,
            simulated=True,
        )

    def stream_response(self, request: AIRequest) -> "ResponseStream":
        """
        Validate eagerly, then return an iterable of text chunks.

        Validation and rate-limit errors are raised here, before anything is
        streamed to the client.
        """
        name, model = self._resolve(request.provider, request.model)
        provider = self.require_provider(name, model)
        self.check_rate_limit(name, request.user_id)
        settings = self.merge_settings(request.settings)
        messages = self.prepare_messages(request.messages, request.system_prompt)
        return ResponseStream(self, name, provider, model, messages, settings, request)

    def complete_direct(
        self,
        messages: List[Any],
        *,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        api_key: Optional[str] = None,
        is_mobile: bool = False,
        settings: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None,
    ) -> AIResult:
        """
        Stateless completion for clients that bring their own provider key.

        System messages are dropped, mobile clients are limited to the
        mobile-capable providers, and when every call fails the canned
        response is returned (if enabled in the runtime settings).
        """
        name = provider or self.optimal_provider(is_mobile)
        cleaned = [m for m in as_messages(messages) if m.role != "system"]
        if not cleaned:
            raise ValidationFailed("At least one user or assistant message is required.")

        if is_mobile and name not in MOBILE_PROVIDERS:
            logger.warning("[AI] %s is not available on mobile, switching to gemini", name)
            name, model = "gemini", None
        if name not in PROVIDER_CLASSES:
            raise ProviderUnavailable(f"Unsupported provider: {name}")

        if api_key:
            adapter: Optional[BaseProvider] = create_provider(name, api_key, config=self.config)
        else:
            adapter = self.providers.get(name)
        if name != "ollama" and (adapter is None or not adapter.is_available()):
            raise ValidationFailed(f"API key required for {name.upper()}")
        if adapter is None:
            raise ProviderUnavailable("Ollama is not configured on this server")

        _, model = self._resolve(name, model)
        model = model or adapter.default_model
        models = adapter.available_models()
        if models and model not in models:
            raise ModelUnavailable(f"Model '{model}' is not available for provider '{name}'")

        self.check_rate_limit(name, user_id)
        return self._run_chain(
            name,
            adapter,
            model,
            cleaned,
            self.merge_settings(settings),
            user_id=user_id,
            conversation_id=None,
            allow_simulated=self.settings.simulated_fallback,
        )

    # -- bookkeeping ------------------------------------------------------

    def record_usage(
        self,
        provider: str,
        model: str,
        usage: Usage,
        user_id: Optional[str],
        conversation_id: Optional[str],
    ) -> None:
        logger.info(
            "[AI] Usage provider=%s model=%s user=%s conversation=%s total_tokens=%d",
            provider,
            model,
            user_id,
            conversation_id,
            usage.total_tokens,
        )
        if not user_id:
            return
        key = f"stats:ai:{provider}:{user_id}"
        try:
            stats = self.cache.get(key) or {"total_requests": 0, "total_tokens": 0, "last_used": None}
            stats["total_requests"] += 1
            stats["total_tokens"] += usage.total_tokens
            stats["last_used"] = datetime.now(timezone.utc).isoformat()
            self.cache.set(key, stats, STATS_TTL)
        except Exception as exc:
            # Usage bookkeeping must not fail the generation itself.
            logger.warning("[AI] Could not record usage for %s: %s", key, exc)

    def user_stats(self, user_id: str) -> Dict[str, Any]:
        by_provider: Dict[str, Any] = {}
        for name in ALL_PROVIDERS:
            stats = self.cache.get(f"stats:ai:{name}:{user_id}")
            if stats:
                by_provider[name] = stats
        return {
            "by_provider": by_provider,
            "total_requests": sum(s["total_requests"] for s in by_provider.values()),
            "total_tokens": sum(s["total_tokens"] for s in by_provider.values()),
        }

    def providers_health(self) -> Dict[str, Dict[str, Any]]:
        health: Dict[str, Dict[str, Any]] = {}
        for name, provider in self.providers.items():
            checked = datetime.now(timezone.utc).isoformat()
            try:
                healthy = provider.health_check()
            except Exception as exc:
                health[name] = {"available": False, "healthy": False, "error": str(exc), "last_checked": checked}
                continue
            health[name] = {"available": provider.is_available(), "healthy": healthy, "last_checked": checked}
        return health


class ResponseStream:
    """
    Iterable of text chunks; `result` is filled in once iteration finishes.

    Providers without native streaming are called normally and their answer
    is replayed word by word.
    """

    def __init__(
        self,
        service: AIService,
        name: str,
        provider: BaseProvider,
        model: str,
        messages: List[ChatMessage],
        settings: GenerationSettings,
        request: AIRequest,
    ):
        self.service = service
        self.name = name
        self.provider = provider
        self.model = model
        self.messages = messages
        self.settings = settings
        self.request = request
        self.result: Optional[AIResult] = None

    def __iter__(self) -> Iterator[str]:
        if not self.provider.supports_streaming():
            result = self.service._run_chain(
                self.name,
                self.provider,
                self.model,
                self.messages,
                self.settings,
                user_id=self.request.user_id,
                conversation_id=self.request.conversation_id,
                allow_simulated=self.request.allow_simulated,
            )
            for i, word in enumerate(result.content.split(" ")):
                yield word if i == 0 else " " + word
            self.result = result
            return

        start = time.perf_counter()
        parts: List[str] = []
        for chunk in self.provider.stream(self.messages, self.model, self.settings):
            parts.append(chunk)
            yield chunk

        content = "".join(parts)
        usage = self.service.estimate_usage(self.messages, content)
        self.result = AIResult(
            content=content,
            provider=self.name,
            model=self.model,
            usage=usage,
            token_count=usage.completion_tokens,
            response_time_ms=int((time.perf_counter() - start) * 1000),
        )
        self.service.record_usage(
            self.name, self.model, usage, self.request.user_id, self.request.conversation_id
        )


_service: Optional[AIService] = None


def get_ai_service() -> AIService:
    """FastAPI dependency returning the process-wide router."""
    global _service
    if _service is None:
        _service = AIService.from_config(load_config(), get_cache())
    return _service


def reset_ai_service() -> None:
    global _service
    _service = None
