import json
import logging
from typing import Any, Dict, Iterator, List, Optional

import requests

from .base import (
    USER_AGENT,
    BaseProvider,
    ChatMessage,
    GenerationSettings,
    ProviderResponse,
    Usage,
)

logger = logging.getLogger(__name__)

OLLAMA_BASE_URL = "http://localhost:11434"

# Used when the daemon cannot be asked for its installed models.
COMMON_OLLAMA_MODELS = [
    "llama3.2:3b",
    "llama3.1",
    "llama2",
    "codellama",
    "mistral",
    "mixtral",
    "phi",
    "qwen2.5:7b",
]


class OllamaProvider(BaseProvider):
    """
    Client for a local Ollama daemon, e.g.:
        ollama pull llama3.2:3b
        ollama serve
    """

    name = "ollama"
    display_name = "Ollama"
    website = "https://ollama.com/"
    description = "Local model inference"
    features = ["text-generation", "local-inference", "streaming", "custom-models", "offline-capable"]
    rate_limit = "No limit (local inference)"
    default_model = "llama3.2:3b"
    streaming = True
    base_url = OLLAMA_BASE_URL

    def __init__(self, api_key: Optional[str] = None, **kwargs: Any):
        super().__init__(api_key, **kwargs)
        self._models: Optional[List[str]] = kwargs.get("models")

    def is_available(self) -> bool:
        return bool(self.base_url)

    def load_models(self) -> List[str]:
        url = f"{self.base_url}/api/tags"
        try:
            resp = requests.get(url, headers={"User-Agent": USER_AGENT}, timeout=5)
            resp.raise_for_status()
            models = [m["name"] for m in resp.json().get("models") or [] if m.get("name")]
        except (requests.RequestException, ValueError, KeyError) as exc:
            logger.warning("[AI] Could not list Ollama models at %s: %s", url, exc)
            return list(COMMON_OLLAMA_MODELS)
        logger.info("[AI] Loaded %d Ollama models", len(models))
        return models

    def available_models(self) -> List[str]:
        if self._models is None:
            self._models = self.load_models()
        return list(self._models)

    def build_body(
        self, messages: List[ChatMessage], model: str, settings: GenerationSettings, *, stream: bool
    ) -> Dict[str, Any]:
        options: Dict[str, Any] = {
            "temperature": settings.temperature,
            "top_p": settings.top_p,
            "top_k": settings.top_k,
            "num_predict": settings.max_tokens,
        }
        if settings.stop_sequences:
            options["stop"] = settings.stop_sequences
        if settings.seed is not None:
            options["seed"] = settings.seed
        return {
            "model": model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "stream": stream,
            "options": options,
        }

    def _post(self, body: Dict[str, Any], *, stream: bool = False) -> requests.Response:
        url = f"{self.base_url}/api/chat"
        try:
            resp = requests.post(
                url,
                json=body,
                headers={"User-Agent": USER_AGENT},
                timeout=self.timeout,
                stream=stream,
            )
        except requests.RequestException as exc:
            raise self._error(f"Failed to reach Ollama at {url}: {exc}", retryable=True) from exc

        if resp.status_code != 200:
            raise self._error(f"Ollama returned {resp.status_code}: {resp.text}", status=resp.status_code)
        return resp

    def _generate(
        self, messages: List[ChatMessage], model: str, settings: GenerationSettings
    ) -> ProviderResponse:
        resp = self._post(self.build_body(messages, model, settings, stream=False))
        data = self._json_body(resp)
        message = data.get("message") or {}
        content = message.get("content") or ""
        if not isinstance(content, str) or not content:
            raise self._error("Ollama response did not contain a valid 'message.content' string.")

        prompt_tokens = data.get("prompt_eval_count") or 0
        completion_tokens = data.get("eval_count") or 0
        usage = None
        if prompt_tokens or completion_tokens:
            usage = Usage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            )
        return ProviderResponse(
            content=content,
            model=data.get("model") or model,
            usage=usage,
            finish_reason=data.get("done_reason") or "stop",
        )

    def _stream(
        self, messages: List[ChatMessage], model: str, settings: GenerationSettings
    ) -> Iterator[str]:
        resp = self._post(self.build_body(messages, model, settings, stream=True), stream=True)
        with resp:
            for line in resp.iter_lines(decode_unicode=True):
                if not line:
                    continue
                try:
                    data = json.loads(line)
                except ValueError:
                    logger.warning("[AI] Skipping malformed Ollama stream line")
                    continue
                content = (data.get("message") or {}).get("content")
                if content:
                    yield content
                if data.get("done"):
                    break

    def health_check(self) -> bool:
        try:
            resp = requests.get(f"{self.base_url}/api/tags", timeout=3)
        except requests.RequestException:
            return False
        return resp.status_code == 200
