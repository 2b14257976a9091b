"""
Google Gemini adapter over the Generative Language REST API.
"""

import json
from typing import Any, Dict, Iterator, List

import requests

from .base import (
    USER_AGENT,
    BaseProvider,
    ChatMessage,
    GenerationSettings,
    ProviderResponse,
    Usage,
)

GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta"


def to_gemini_contents(messages: List[ChatMessage]) -> List[Dict[str, Any]]:
    """Map chat roles onto Gemini's user/model turns; system turns are handled separately."""
    contents = []
    for msg in messages:
        if msg.role == "user":
            role = "user"
        elif msg.role == "assistant":
            role = "model"
        else:
            continue
        contents.append({"role": role, "parts": [{"text": msg.content}]})
    return contents


def _candidate_text(data: Dict[str, Any]) -> str:
    candidates = data.get("candidates") or []
    if not candidates:
        return ""
    content = candidates[0].get("content") or {}
    parts = content.get("parts") or []
    text_chunks = []
    for part in parts:
        t = part.get("text")
        if isinstance(t, str):
            text_chunks.append(t)
    return "".join(text_chunks)


class GeminiProvider(BaseProvider):
    name = "gemini"
    display_name = "Google Gemini"
    website = "https://ai.google.dev/"
    description = "Google's multimodal model family"
    features = ["text-generation", "multimodal", "streaming", "system-instructions", "long-context"]
    rate_limit = "60 requests/minute (free tier)"
    default_model = "gemini-1.5-flash"
    models = [
        "gemini-pro",
        "gemini-1.5-pro",
        "gemini-1.5-flash",
        "gemini-1.5-flash-latest",
        "gemini-2.0-flash",
        "gemini-2.5-flash",
    ]
    streaming = True
    base_url = GEMINI_API_BASE

    def build_body(self, messages: List[ChatMessage], settings: GenerationSettings) -> Dict[str, Any]:
        generation_config: Dict[str, Any] = {
            "temperature": settings.temperature,
            "topK": settings.top_k,
            "topP": settings.top_p,
            "maxOutputTokens": settings.max_tokens,
        }
        if settings.stop_sequences:
            generation_config["stopSequences"] = settings.stop_sequences

        body: Dict[str, Any] = {
            "contents": to_gemini_contents(messages),
            "generationConfig": generation_config,
        }
        system = next((m for m in messages if m.role == "system"), None)
        if system is not None:
            body["systemInstruction"] = {"parts": [{"text": system.content}]}
        return body

    def _post(self, model: str, body: Dict[str, Any], *, stream: bool = False) -> requests.Response:
        action = "streamGenerateContent" if stream else "generateContent"
        url = f"{self.base_url}/models/{model}:{action}"
        params = {"key": self.api_key}
        if stream:
            params["alt"] = "sse"
        headers = {"Content-Type": "application/json", "User-Agent": USER_AGENT}

        try:
            resp = requests.post(
                url, headers=headers, params=params, json=body, timeout=self.timeout, stream=stream
            )
        except requests.RequestException as exc:
            raise self._error(f"Failed to reach Gemini at {url}: {exc}", retryable=True) from exc

        if resp.status_code != 200:
            try:
                detail = (resp.json().get("error") or {}).get("message") or resp.text
            except ValueError:
                detail = resp.text
            raise self._error(f"Gemini returned {resp.status_code}: {detail}", status=resp.status_code)
        return resp

    def _generate(
        self, messages: List[ChatMessage], model: str, settings: GenerationSettings
    ) -> ProviderResponse:
        resp = self._post(model, self.build_body(messages, settings))
        data = self._json_body(resp)
        if not data.get("candidates"):
            raise self._error("Gemini response contained no candidates.")

        full_text = _candidate_text(data).strip()
        if not full_text:
            raise self._error("Gemini response did not contain any text parts.")

        usage = None
        meta = data.get("usageMetadata")
        if meta:
            usage = Usage(
                prompt_tokens=meta.get("promptTokenCount", 0),
                completion_tokens=meta.get("candidatesTokenCount", 0),
                total_tokens=meta.get("totalTokenCount", 0),
            )
        finish = (data["candidates"][0].get("finishReason") or "STOP").lower()
        return ProviderResponse(content=full_text, model=model, usage=usage, finish_reason=finish)

    def _stream(
        self, messages: List[ChatMessage], model: str, settings: GenerationSettings
    ) -> Iterator[str]:
        resp = self._post(model, self.build_body(messages, settings), stream=True)
        with resp:
            for line in resp.iter_lines(decode_unicode=True):
                if not line or not line.startswith("data:"):
                    continue
                try:
                    data = json.loads(line[len("data:"):].strip())
                except ValueError:
                    continue
                text = _candidate_text(data)
                if text:
                    yield text
