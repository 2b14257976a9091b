from typing import Any, Dict, Iterator, List, Optional

import openai
from openai import OpenAI

from .base import BaseProvider, ChatMessage, GenerationSettings, ProviderResponse, Usage

GROQ_API_BASE = "https://api.groq.com/openai/v1"


class GroqProvider(BaseProvider):
    """
    Groq exposes an OpenAI-compatible API, so we drive it with the OpenAI SDK
    pointed at Groq's base URL. SDK-level retries are disabled; retrying is
    done by `BaseProvider.generate`.
    """

    name = "groq"
    display_name = "Groq"
    website = "https://groq.com/"
    description = "Low-latency inference on LPU hardware"
    features = ["text-generation", "fast-inference", "streaming", "json-mode"]
    rate_limit = "30 requests/minute (free tier)"
    default_model = "llama3-8b-8192"
    models = [
        "llama3-8b-8192",
        "llama3-70b-8192",
        "llama-3.1-8b-instant",
        "llama-3.3-70b-versatile",
        "mixtral-8x7b-32768",
        "gemma2-9b-it",
    ]
    streaming = True
    base_url = GROQ_API_BASE

    def __init__(self, api_key: Optional[str] = None, *, client: Any = None, **kwargs: Any):
        super().__init__(api_key, **kwargs)
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = OpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                timeout=self.timeout,
                max_retries=0,
            )
        return self._client

    def build_request(
        self, messages: List[ChatMessage], model: str, settings: GenerationSettings
    ) -> Dict[str, Any]:
        request: Dict[str, Any] = {
            "model": model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "max_tokens": settings.max_tokens,
            "temperature": settings.temperature,
            "top_p": settings.top_p,
        }
        if settings.stop_sequences:
            request["stop"] = settings.stop_sequences
        if settings.seed is not None:
            request["seed"] = settings.seed
        return request

    def _call(self, request: Dict[str, Any]) -> Any:
        try:
            return self.client.chat.completions.create(**request)
        except openai.APIStatusError as exc:
            raise self._error(f"Groq returned {exc.status_code}: {exc.message}", status=exc.status_code) from exc
        except openai.APIConnectionError as exc:
            raise self._error(f"Failed to reach Groq at {self.base_url}: {exc}", retryable=True) from exc

    def _generate(
        self, messages: List[ChatMessage], model: str, settings: GenerationSettings
    ) -> ProviderResponse:
        completion = self._call(self.build_request(messages, model, settings))
        if not completion.choices:
            raise self._error("No choices in Groq response.")

        choice = completion.choices[0]
        usage = None
        if completion.usage is not None:
            usage = Usage(
                prompt_tokens=completion.usage.prompt_tokens or 0,
                completion_tokens=completion.usage.completion_tokens or 0,
                total_tokens=completion.usage.total_tokens or 0,
            )
        return ProviderResponse(
            content=choice.message.content or "",
            model=completion.model or model,
            usage=usage,
            finish_reason=choice.finish_reason or "stop",
        )

    def _stream(
        self, messages: List[ChatMessage], model: str, settings: GenerationSettings
    ) -> Iterator[str]:
        request = self.build_request(messages, model, settings)
        request["stream"] = True
        for chunk in self._call(request):
            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta
            if delta is not None and delta.content:
                yield delta.content
