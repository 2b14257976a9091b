import json
import re
from typing import Any, Dict, List

import requests

from .base import (
    USER_AGENT,
    BaseProvider,
    ChatMessage,
    GenerationSettings,
    ProviderResponse,
    Usage,
    estimate_tokens,
)

HUGGINGFACE_API_BASE = "https://api-inference.huggingface.co"

_ROLE_PREFIX = re.compile(r"^(assistant:|bot:|ai:)", re.I)
_SPECIAL_TOKENS = re.compile(r"<\|.*?\|>")


def build_input(model: str, messages: List[ChatMessage]) -> str:
    """
    Shape the conversation into a single `inputs` string.

    The hosted models are plain text-generation endpoints, so each family
    gets the prompt format it was trained on.
    """
    user_messages = [m for m in messages if m.role == "user"]
    last_user = user_messages[-1].content if user_messages else ""

    if "DialoGPT" in model:
        return last_user
    if "blenderbot" in model:
        return "\n".join(m.content for m in messages if m.role != "system")
    if "flan-t5" in model or "bloom" in model:
        system = next((m for m in messages if m.role == "system"), None)
        prompt = f"{system.content}\n\n" if system else ""
        return prompt + last_user

    transcript = "\n".join(f"{m.role}: {m.content}" for m in messages if m.role != "system")
    return transcript + "\nassistant:"


def clean_generated(content: str, prompt: str, model: str) -> str:
    if not isinstance(content, str) or not content:
        return ""
    # text-generation endpoints echo the prompt back
    if prompt and content.startswith(prompt):
        content = content[len(prompt):]
    content = _ROLE_PREFIX.sub("", content.strip()).strip()
    if "DialoGPT" in model:
        lines = [line for line in content.split("\n") if line.strip()]
        if lines:
            content = lines[-1].strip()
    return _SPECIAL_TOKENS.sub("", content).strip()


def extract_text(data: Any) -> str:
    if isinstance(data, list):
        if not data:
            return ""
        first = data[0]
        if isinstance(first, dict):
            return first.get("generated_text") or first.get("response") or json.dumps(first)
        return str(first)
    if isinstance(data, dict):
        return data.get("generated_text") or data.get("response") or json.dumps(data)
    if isinstance(data, str):
        return data
    return json.dumps(data)


class HuggingFaceProvider(BaseProvider):
    name = "huggingface"
    display_name = "HuggingFace"
    website = "https://huggingface.co/"
    description = "Open models served by the HuggingFace Inference API"
    features = ["text-generation", "conversation", "open-models", "community-models"]
    rate_limit = "100 requests/hour (free tier)"
    default_model = "microsoft/DialoGPT-medium"
    models = [
        "microsoft/DialoGPT-large",
        "microsoft/DialoGPT-medium",
        "facebook/blenderbot-400M-distill",
        "google/flan-t5-large",
        "google/flan-t5-xl",
        "bigscience/bloom-560m",
        "EleutherAI/gpt-j-6b",
    ]
    base_url = HUGGINGFACE_API_BASE

    def build_body(self, inputs: str, settings: GenerationSettings) -> Dict[str, Any]:
        parameters: Dict[str, Any] = {
            "max_length": settings.max_tokens,
            "temperature": settings.temperature,
            "top_p": settings.top_p,
            "do_sample": True,
        }
        if settings.stop_sequences:
            # the inference API accepts a single stop sequence
            parameters["stop_sequence"] = settings.stop_sequences[0]
        return {
            "inputs": inputs,
            "parameters": parameters,
            "options": {"wait_for_model": True, "use_cache": settings.temperature == 0},
        }

    def _generate(
        self, messages: List[ChatMessage], model: str, settings: GenerationSettings
    ) -> ProviderResponse:
        inputs = build_input(model, messages)
        url = f"{self.base_url}/models/{model}"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
        }
        try:
            resp = requests.post(url, headers=headers, json=self.build_body(inputs, settings), timeout=self.timeout)
        except requests.RequestException as exc:
            raise self._error(f"Failed to reach HuggingFace at {url}: {exc}", retryable=True) from exc

        if resp.status_code != 200:
            try:
                detail = resp.json().get("error") or resp.text
            except ValueError:
                detail = resp.text
            # 503 while the model is still loading
            raise self._error(f"HuggingFace returned {resp.status_code}: {detail}", status=resp.status_code)

        content = clean_generated(extract_text(self._json_body(resp)), inputs, model)
        if not content:
            raise self._error("HuggingFace response did not contain generated text.")

        completion_tokens = estimate_tokens(content)
        return ProviderResponse(
            content=content,
            model=model,
            usage=Usage(
                prompt_tokens=estimate_tokens(inputs),
                completion_tokens=completion_tokens,
                total_tokens=estimate_tokens(inputs) + completion_tokens,
            ),
        )
