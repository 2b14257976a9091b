import os
import tempfile

# Must be set before the app (and its limiter) is imported.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["REDIS_URL"] = ""
os.environ["DEVAI_SETTINGS_PATH"] = os.path.join(tempfile.mkdtemp(), "settings.json")
os.environ["JWT_SECRET"] = "test-secret"
os.environ["JWT_REFRESH_SECRET"] = "test-refresh-secret"
os.environ["BCRYPT_ROUNDS"] = "4"
for _key in ("GEMINI_API_KEY", "GROQ_API_KEY", "HUGGINGFACE_API_KEY", "OLLAMA_BASE_URL"):
    os.environ.pop(_key, None)

from typing import Iterator, List, Optional, Union  # noqa: E402

import pytest  # noqa: E402
import redis  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from devai_backend import database, settings_store  # noqa: E402
from devai_backend.ai_service import AIService, get_ai_service  # noqa: E402
from devai_backend.cache import MemoryCache, set_cache  # noqa: E402
from devai_backend.config import load_config  # noqa: E402
from devai_backend.llm_providers import (  # noqa: E402
    BaseProvider,
    ChatMessage,
    GenerationSettings,
    ProviderError,
    ProviderResponse,
    Usage,
)
from devai_backend.main import app  # noqa: E402

Reply = Union[str, Exception]


class StubProvider(BaseProvider):
    """Provider whose replies are scripted; records every call it gets."""

    def __init__(
        self,
        name: str,
        replies: Optional[List[Reply]] = None,
        *,
        models: Optional[List[str]] = None,
        streaming: bool = False,
    ):
        super().__init__("stub-key", models=models or [f"{name}-small", f"{name}-large"], max_retries=1, retry_delay=0)
        self.name = name
        self.display_name = name.title()
        self.default_model = self.models[0]
        self.streaming = streaming
        self.replies: List[Reply] = list(replies or [])
        self.calls: List[dict] = []

    def _next(self) -> str:
        reply = self.replies.pop(0) if self.replies else f"reply from {self.name}"
        if isinstance(reply, Exception):
            raise reply
        return reply

    def _generate(self, messages: List[ChatMessage], model: str, settings: GenerationSettings) -> ProviderResponse:
        self.calls.append({"messages": messages, "model": model, "settings": settings})
        content = self._next()
        return ProviderResponse(
            content=content,
            model=model,
            usage=Usage(prompt_tokens=5, completion_tokens=7, total_tokens=12),
        )

    def _stream(self, messages: List[ChatMessage], model: str, settings: GenerationSettings) -> Iterator[str]:
        self.calls.append({"messages": messages, "model": model, "settings": settings, "stream": True})
        content = self._next()
        for word in content.split(" "):
            yield word + " "


def provider_failure(name: str, status: int = 503) -> ProviderError:
    return ProviderError(f"{name} is down", provider=name, status=status)


class BrokenRedis:
    """Redis client whose every command fails as if the server were down."""

    def __getattr__(self, name):
        def fail(*args, **kwargs):
            raise redis.ConnectionError("redis down")

        return fail


@pytest.fixture
def cache() -> MemoryCache:
    fresh = MemoryCache()
    set_cache(fresh)
    return fresh


@pytest.fixture(autouse=True)
def fresh_state(tmp_path, monkeypatch, cache):
    monkeypatch.setenv("DEVAI_SETTINGS_PATH", str(tmp_path / "settings.json"))
    monkeypatch.setenv("UPLOAD_DIR", str(tmp_path / "uploads"))
    # The settings store mirrors itself into these; restore them after each test.
    monkeypatch.setenv("AI_DEFAULT_PROVIDER", "gemini")
    monkeypatch.setenv("AI_DEFAULT_MODEL", "")
    monkeypatch.setenv("AI_FALLBACK_PROVIDER", "groq")
    monkeypatch.setenv("AI_SIMULATED_FALLBACK", "true")
    monkeypatch.setenv("AI_TEMPERATURE", "0.7")
    monkeypatch.setenv("AI_MAX_TOKENS", "2048")
    monkeypatch.setenv("AI_TOP_P", "0.9")
    settings_store.reset_settings()

    database.init_engine("sqlite://")
    database.init_db()
    yield
    database.drop_db()
    settings_store.reset_settings()
    app.dependency_overrides.clear()


@pytest.fixture
def gemini() -> StubProvider:
    return StubProvider("gemini", streaming=True)


@pytest.fixture
def groq() -> StubProvider:
    return StubProvider("groq")


@pytest.fixture
def ai_service(gemini, groq, cache) -> AIService:
    return AIService({"gemini": gemini, "groq": groq}, cache=cache, config=load_config())


@pytest.fixture
def client(ai_service) -> TestClient:
    app.dependency_overrides[get_ai_service] = lambda: ai_service
    return TestClient(app)


@pytest.fixture
def register(client):
    def _register(username: str = "alice", email: Optional[str] = None, password: str = "password123") -> dict:
        response = client.post(
            "/api/v1/auth/register",
            json={"email": email or f"{username}@example.com", "username": username, "password": password},
        )
        assert response.status_code == 201, response.text
        return response.json()["data"]

    return _register


@pytest.fixture
def auth_headers(register) -> dict:
    data = register()
    return {"Authorization": f"Bearer {data['tokens']['access_token']}"}
