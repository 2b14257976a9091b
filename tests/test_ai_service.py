from unittest.mock import MagicMock, patch

import pytest

from conftest import BrokenRedis, StubProvider, provider_failure
from devai_backend.ai_service import AIRequest, AIService
from devai_backend.cache import RedisCache
from devai_backend.config import load_config
from devai_backend.errors import AIGenerationError, ModelUnavailable, ProviderUnavailable, RateLimitError, ValidationFailed
from devai_backend.fallback import generate_fallback_response
from devai_backend.llm_providers import GeminiProvider
from devai_backend.settings_store import update_settings


def ask(text="Explain decorators", **kwargs):
    return AIRequest(messages=[{"role": "user", "content": text}], **kwargs)


def test_generates_with_default_provider(ai_service, gemini):
    result = ai_service.generate_response(ask(user_id="u1"))

    assert result.provider == "gemini"
    assert result.model == "gemini-small"
    assert result.content == "reply from gemini"
    assert result.usage.total_tokens == 12
    assert result.fallback_from is None
    assert len(gemini.calls) == 1


def test_system_prompt_goes_first(ai_service, gemini):
    ai_service.generate_response(ask(system_prompt="You are terse."))
    roles = [m.role for m in gemini.calls[0]["messages"]]
    assert roles == ["system", "user"]


def test_unknown_provider_and_model_are_rejected(ai_service):
    with pytest.raises(ProviderUnavailable):
        ai_service.generate_response(ask(provider="huggingface"))
    with pytest.raises(ModelUnavailable):
        ai_service.generate_response(ask(provider="gemini", model="gpt-4"))


def test_falls_back_once_to_configured_provider(ai_service, gemini, groq):
    gemini.replies = [provider_failure("gemini")]

    result = ai_service.generate_response(ask())

    assert result.provider == "groq"
    assert result.model == "groq-small"
    assert result.fallback_from == "gemini"
    assert len(gemini.calls) == 1
    assert len(groq.calls) == 1


def test_fallback_provider_never_falls_back_again(ai_service, gemini, groq):
    groq.replies = [provider_failure("groq")]

    with pytest.raises(AIGenerationError):
        ai_service.generate_response(ask(provider="groq"))
    assert gemini.calls == []


def test_all_failures_raise_without_simulation(ai_service, gemini, groq):
    gemini.replies = [provider_failure("gemini")]
    groq.replies = [provider_failure("groq")]

    with pytest.raises(AIGenerationError) as excinfo:
        ai_service.generate_response(ask())
    assert excinfo.value.status_code == 502


def test_all_failures_return_canned_reply_when_allowed(ai_service, gemini, groq):
    gemini.replies = [provider_failure("gemini")]
    groq.replies = [provider_failure("groq")]

    result = ai_service.generate_response(ask("Build me a React component", allow_simulated=True))

    assert result.simulated
    assert result.provider == "simulated"
    assert result.model == "fallback-react"
    assert result.fallback_from == "gemini"


def test_no_fallback_when_none_configured(ai_service, gemini, groq):
    update_settings({"fallback_provider": None})
    gemini.replies = [provider_failure("gemini")]

    with pytest.raises(AIGenerationError):
        ai_service.generate_response(ask())
    assert groq.calls == []


def test_zero_temperature_responses_are_cached(ai_service, gemini):
    first = ai_service.generate_response(ask(settings={"temperature": 0}))
    second = ai_service.generate_response(ask(settings={"temperature": 0}))

    assert not first.from_cache
    assert second.from_cache
    assert second.content == first.content
    assert len(gemini.calls) == 1


def test_non_zero_temperature_is_not_cached(ai_service, gemini):
    ai_service.generate_response(ask())
    ai_service.generate_response(ask())
    assert len(gemini.calls) == 2


def test_per_user_rate_limit(cache, gemini, groq, monkeypatch):
    monkeypatch.setenv("AI_REQUESTS_PER_MINUTE", "2")
    service = AIService({"gemini": gemini, "groq": groq}, cache=cache, config=load_config())

    service.generate_response(ask(user_id="u1"))
    service.generate_response(ask(user_id="u1"))
    with pytest.raises(RateLimitError):
        service.generate_response(ask(user_id="u1"))

    # other users and anonymous calls are unaffected
    service.generate_response(ask(user_id="u2"))
    for _ in range(3):
        service.generate_response(ask())


def test_usage_is_recorded_per_user(ai_service):
    ai_service.generate_response(ask(user_id="u1"))
    ai_service.generate_response(ask(user_id="u1", provider="groq"))

    stats = ai_service.user_stats("u1")
    assert stats["total_requests"] == 2
    assert stats["total_tokens"] == 24
    assert set(stats["by_provider"]) == {"gemini", "groq"}
    assert ai_service.user_stats("nobody")["total_requests"] == 0


def test_missing_usage_is_estimated(ai_service, gemini, monkeypatch):
    from devai_backend.llm_providers import ProviderResponse

    monkeypatch.setattr(gemini, "_generate", lambda messages, model, settings: ProviderResponse(content="abcdefgh", model=model))
    result = ai_service.generate_response(ask("abcd"))
    assert result.usage.completion_tokens == 2
    assert result.usage.prompt_tokens == 1


def test_stream_native_and_replayed(ai_service, gemini, groq):
    gemini.replies = ["streamed reply here"]
    stream = ai_service.stream_response(ask(user_id="u1"))
    assert "".join(stream).strip() == "streamed reply here"
    assert stream.result.provider == "gemini"

    groq.replies = ["word by word"]
    stream = ai_service.stream_response(ask(provider="groq"))
    chunks = list(stream)
    assert chunks == ["word", " by", " word"]
    assert stream.result.content == "word by word"


def test_device_provider_lists(ai_service):
    assert AIService.provider_names_for_device(True) == ["gemini", "groq"]
    assert AIService.provider_names_for_device(False) == ["gemini", "groq", "huggingface", "ollama"]
    assert ai_service.optimal_provider(is_mobile=True) == "gemini"


def test_optimal_provider_prefers_configured_ones(cache):
    service = AIService({"groq": StubProvider("groq")}, cache=cache, config=load_config())
    assert service.optimal_provider() == "groq"
    assert AIService({}, cache=cache, config=load_config()).optimal_provider() == "gemini"


def test_complete_direct_strips_system_and_forces_gemini_on_mobile(ai_service, gemini):
    result = ai_service.complete_direct(
        [{"role": "system", "content": "ignored"}, {"role": "user", "content": "hello"}],
        provider="huggingface",
        is_mobile=True,
    )
    assert result.provider == "gemini"
    assert [m.role for m in gemini.calls[0]["messages"]] == ["user"]


def test_complete_direct_requires_key(ai_service):
    with pytest.raises(ValidationFailed, match="API key required for HUGGINGFACE"):
        ai_service.complete_direct([{"role": "user", "content": "hi"}], provider="huggingface")


def test_complete_direct_returns_canned_reply_when_everything_fails(ai_service, gemini, groq):
    gemini.replies = [provider_failure("gemini")]
    groq.replies = [provider_failure("groq")]

    result = ai_service.complete_direct([{"role": "user", "content": "make an html page"}])

    assert result.simulated
    assert result.model == "fallback-html"


def test_complete_direct_rejects_system_only_input(ai_service):
    with pytest.raises(ValidationFailed):
        ai_service.complete_direct([{"role": "system", "content": "only system"}])


def test_providers_health(ai_service, gemini, groq):
    groq.replies = [provider_failure("groq", status=500)]
    health = ai_service.providers_health()
    assert health["gemini"]["healthy"] is True
    assert health["groq"]["healthy"] is False


def test_registry_follows_configuration(cache, monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "g")
    monkeypatch.setenv("OLLAMA_BASE_URL", "http://localhost:11434")
    service = AIService.from_config(load_config(), cache)
    assert set(service.providers) == {"gemini", "ollama"}
    assert service.is_provider_available("gemini")
    assert not service.is_provider_available("groq")


# -- canned replies ---------------------------------------------------------------


@pytest.mark.parametrize(
    "text,model",
    [
        ("Create a REACT component", "fallback-react"),
        ("I need an HTML landing page", "fallback-html"),
        ("How do I sort a list?", "fallback-generic"),
    ],
)
def test_fallback_keyword_matching(text, model):
    reply = generate_fallback_response(text, "groq")
    assert reply["model"] == model
    assert reply["provider"] == "simulated"
    assert reply["usage"] is None


def test_generic_fallback_quotes_input_and_provider():
    reply = generate_fallback_response("How do I sort a list?", "Gemini")
    assert '"How do I sort a list?"' in reply["content"]
    assert "Gemini is not available" in reply["content"]


def test_unparseable_provider_body_takes_the_fallback_hop(cache, groq):
    resp = MagicMock(status_code=200)
    resp.json.side_effect = ValueError("Expecting value")
    service = AIService({"gemini": GeminiProvider("key", max_retries=1), "groq": groq}, cache=cache, config=load_config())

    with patch("devai_backend.llm_providers.gemini_client.requests.post", return_value=resp):
        result = service.generate_response(ask(user_id="u1"))

    assert result.provider == "groq"
    assert result.fallback_from == "gemini"
    assert len(groq.calls) == 1


def test_broken_redis_does_not_break_generation(gemini, groq):
    service = AIService({"gemini": gemini, "groq": groq}, cache=RedisCache(client=BrokenRedis()), config=load_config())

    result = service.generate_response(ask(user_id="u1", settings={"temperature": 0}))

    assert result.content == "reply from gemini"
    assert service.user_stats("u1")["total_requests"] == 0
