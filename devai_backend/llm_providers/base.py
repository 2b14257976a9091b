from __future__ import annotations

import logging
import math
from typing import Any, Dict, Iterator, List, Optional

from pydantic import BaseModel, Field
from tenacity import RetryCallState, Retrying, retry_if_exception, stop_after_attempt

logger = logging.getLogger(__name__)

USER_AGENT = "DevAI-Agent/1.0.0"


class ProviderError(Exception):
    """Errors raised when calling an upstream AI provider."""

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        status: Optional[int] = None,
        retryable: Optional[bool] = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.status = status
        if retryable is None:
            retryable = status is not None and (status >= 500 or status == 429)
        self.retryable = retryable


class ChatMessage(BaseModel):
    role: str
    content: str


class GenerationSettings(BaseModel):
    temperature: float = Field(default=0.7, ge=0, le=2)
    max_tokens: int = Field(default=2048, ge=1, le=8000)
    top_p: float = Field(default=0.9, ge=0, le=1)
    top_k: int = Field(default=40, ge=1)
    stop_sequences: Optional[List[str]] = None
    seed: Optional[int] = None


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ProviderResponse(BaseModel):
    content: str
    model: str
    usage: Optional[Usage] = None
    finish_reason: str = "stop"


def estimate_tokens(text: Optional[str]) -> int:
    # ~4 characters per token
    if not text:
        return 0
    return math.ceil(len(text) / 4)


def as_messages(messages: List[Any]) -> List[ChatMessage]:
    return [m if isinstance(m, ChatMessage) else ChatMessage(**m) for m in messages]


class BaseProvider:
    """
    Common surface of the provider adapters.

    Subclasses implement `_generate` (one upstream call) and, when the
    vendor supports it, `_stream`. `generate` adds the retry loop.
    """

    name = "base"
    display_name = "Base"
    website = ""
    description = ""
    features: List[str] = []
    rate_limit = ""
    default_model = ""
    models: List[str] = []
    streaming = False

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        base_url: Optional[str] = None,
        models: Optional[List[str]] = None,
        timeout: float = 60,
        max_retries: int = 3,
        retry_delay: float = 1.0,
    ):
        self.api_key = api_key
        if base_url:
            self.base_url = base_url.rstrip("/")
        if models is not None:
            self.models = list(models)
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    def is_available(self) -> bool:
        return bool(self.api_key)

    def available_models(self) -> List[str]:
        return list(self.models)

    def supports_streaming(self) -> bool:
        return self.streaming

    def info(self) -> Dict[str, Any]:
        return {
            "name": self.display_name,
            "provider": self.name,
            "website": self.website,
            "description": self.description,
            "available": self.is_available(),
            "models": self.available_models(),
            "default_model": self.default_model,
            "features": list(self.features),
            "rate_limit": self.rate_limit,
            "streaming": self.supports_streaming(),
        }

    def _error(self, message: str, **kwargs: Any) -> ProviderError:
        return ProviderError(message, provider=self.name, **kwargs)

    def _json_body(self, resp: Any) -> Any:
        try:
            return resp.json()
        except ValueError as exc:
            raise self._error(f"{self.display_name} returned a body that is not JSON: {exc}") from exc

    def _wait(self, retry_state: RetryCallState) -> float:
        return self.retry_delay * retry_state.attempt_number

    def _log_retry(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "[AI] %s attempt %d failed, retrying: %s",
            self.name,
            retry_state.attempt_number,
            exc,
        )

    def generate(
        self,
        messages: List[ChatMessage],
        model: Optional[str] = None,
        settings: Optional[GenerationSettings] = None,
    ) -> ProviderResponse:
        if not self.is_available():
            raise self._error(f"{self.display_name} is not configured.", retryable=False)

        model = model or self.default_model
        settings = settings or GenerationSettings()
        messages = as_messages(messages)

        retrying = Retrying(
            stop=stop_after_attempt(self.max_retries),
            wait=self._wait,
            retry=retry_if_exception(lambda exc: isinstance(exc, ProviderError) and exc.retryable),
            before_sleep=self._log_retry,
            reraise=True,
        )
        return retrying(self._generate, messages, model, settings)

    def stream(
        self,
        messages: List[ChatMessage],
        model: Optional[str] = None,
        settings: Optional[GenerationSettings] = None,
    ) -> Iterator[str]:
        if not self.is_available():
            raise self._error(f"{self.display_name} is not configured.", retryable=False)
        if not self.supports_streaming():
            raise self._error(f"{self.display_name} does not support streaming.", retryable=False)
        return self._stream(as_messages(messages), model or self.default_model, settings or GenerationSettings())

    def health_check(self) -> bool:
        if not self.is_available():
            return False
        try:
            response = self._generate(
                [ChatMessage(role="user", content="Hello")],
                self.default_model,
                GenerationSettings(max_tokens=10, temperature=0),
            )
        except Exception as exc:
            logger.warning("[AI] %s health check failed: %s", self.name, exc)
            return False
        return bool(response.content)

    def _generate(
        self, messages: List[ChatMessage], model: str, settings: GenerationSettings
    ) -> ProviderResponse:
        raise NotImplementedError

    def _stream(
        self, messages: List[ChatMessage], model: str, settings: GenerationSettings
    ) -> Iterator[str]:
        raise NotImplementedError
