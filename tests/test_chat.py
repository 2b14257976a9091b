import json

from conftest import provider_failure


def conversation(client, headers, **fields):
    return client.post("/api/v1/conversations", json={"title": "Chat", **fields}, headers=headers).json()["data"]


def messages(client, headers, conversation_id):
    return client.get(f"/api/v1/conversations/{conversation_id}/messages", headers=headers).json()["data"]


def test_chat_stores_both_messages(client, auth_headers, gemini):
    conv = conversation(client, auth_headers, system_prompt="You are a Python tutor.")
    gemini.replies = ["Use a list comprehension."]

    response = client.post(
        "/api/v1/ai/chat",
        json={"conversation_id": conv["id"], "message": "How do I filter a list?"},
        headers=auth_headers,
    )

    assert response.status_code == 200, response.text
    data = response.json()["data"]
    assert data["assistant_message"]["content"] == "Use a list comprehension."
    assert data["assistant_message"]["status"] == "completed"
    assert data["assistant_message"]["token_count"] == 7
    assert data["assistant_message"]["metadata"]["provider"] == "gemini"
    assert data["ai"]["model"] == "gemini-small"

    sent = gemini.calls[0]["messages"]
    assert sent[0].role == "system" and sent[0].content == "You are a Python tutor."
    assert sent[-1].content == "How do I filter a list?"

    stored = messages(client, auth_headers, conv["id"])
    assert [(m["role"], m["status"]) for m in stored] == [("user", "completed"), ("assistant", "completed")]


def test_history_excludes_failed_and_pending_messages(client, auth_headers, gemini, groq):
    conv = conversation(client, auth_headers)
    gemini.replies = [provider_failure("gemini")]
    groq.replies = [provider_failure("groq")]
    client.post("/api/v1/ai/chat", json={"conversation_id": conv["id"], "message": "first"}, headers=auth_headers)

    client.post("/api/v1/ai/chat", json={"conversation_id": conv["id"], "message": "second"}, headers=auth_headers)

    sent = [m.content for m in gemini.calls[-1]["messages"]]
    assert sent == ["first", "second"]


def test_chat_failure_marks_message_failed(client, auth_headers, gemini, groq):
    conv = conversation(client, auth_headers)
    gemini.replies = [provider_failure("gemini")]
    groq.replies = [provider_failure("groq")]

    response = client.post("/api/v1/ai/chat", json={"conversation_id": conv["id"], "message": "hi"}, headers=auth_headers)

    assert response.status_code == 502
    assert response.json()["error"] == "ai_generation_failed"
    assistant = messages(client, auth_headers, conv["id"])[-1]
    assert assistant["status"] == "failed"
    assert "error" in assistant["metadata"]


def test_chat_uses_fallback_provider(client, auth_headers, gemini):
    conv = conversation(client, auth_headers)
    gemini.replies = [provider_failure("gemini")]

    data = client.post(
        "/api/v1/ai/chat", json={"conversation_id": conv["id"], "message": "hi"}, headers=auth_headers
    ).json()["data"]

    assert data["ai"]["provider"] == "groq"
    assert data["ai"]["fallback_from"] == "gemini"
    assert data["assistant_message"]["content"] == "reply from groq"


def test_chat_rejects_unavailable_provider_before_storing(client, auth_headers):
    conv = conversation(client, auth_headers)
    response = client.post(
        "/api/v1/ai/chat",
        json={"conversation_id": conv["id"], "message": "hi", "provider": "huggingface"},
        headers=auth_headers,
    )
    assert response.status_code == 400
    assert response.json()["error"] == "provider_not_available"
    assert messages(client, auth_headers, conv["id"]) == []


def test_chat_requires_own_conversation(client, auth_headers, register):
    conv = conversation(client, auth_headers)
    other = {"Authorization": f"Bearer {register('bob')['tokens']['access_token']}"}
    response = client.post("/api/v1/ai/chat", json={"conversation_id": conv["id"], "message": "hi"}, headers=other)
    assert response.status_code == 404


def test_chat_message_length_is_validated(client, auth_headers):
    conv = conversation(client, auth_headers)
    response = client.post(
        "/api/v1/ai/chat", json={"conversation_id": conv["id"], "message": "x" * 10001}, headers=auth_headers
    )
    assert response.status_code == 422


def test_streamed_chat_emits_events(client, auth_headers, gemini):
    conv = conversation(client, auth_headers)
    gemini.replies = ["Hello there"]

    response = client.post(
        "/api/v1/ai/chat",
        json={"conversation_id": conv["id"], "message": "hi", "stream": True},
        headers=auth_headers,
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    events = [json.loads(line[len("data: "):]) for line in response.text.splitlines() if line.startswith("data: ")]
    types = [e["type"] for e in events]
    assert types[0] == "start"
    assert types[-1] == "complete"
    assert "".join(e["content"] for e in events if e["type"] == "chunk").strip() == "Hello there"
    assert events[-1]["message"]["status"] == "completed"

    assistant = messages(client, auth_headers, conv["id"])[-1]
    assert assistant["content"].strip() == "Hello there"


def test_streamed_chat_reports_errors(client, auth_headers, gemini):
    conv = conversation(client, auth_headers)
    gemini.replies = [provider_failure("gemini")]

    response = client.post(
        "/api/v1/ai/chat",
        json={"conversation_id": conv["id"], "message": "hi", "stream": True},
        headers=auth_headers,
    )

    events = [json.loads(line[len("data: "):]) for line in response.text.splitlines() if line.startswith("data: ")]
    assert events[-1]["type"] == "error"
    assert messages(client, auth_headers, conv["id"])[-1]["status"] == "failed"


def test_regenerate_replaces_assistant_reply(client, auth_headers, gemini):
    conv = conversation(client, auth_headers)
    gemini.replies = ["first answer", "better answer"]
    data = client.post(
        "/api/v1/ai/chat", json={"conversation_id": conv["id"], "message": "question"}, headers=auth_headers
    ).json()["data"]
    assistant_id = data["assistant_message"]["id"]

    response = client.post(f"/api/v1/ai/regenerate/{assistant_id}", headers=auth_headers)

    assert response.status_code == 200, response.text
    message = response.json()["data"]["message"]
    assert message["id"] == assistant_id
    assert message["content"] == "better answer"
    assert message["metadata"]["regenerated"] is True
    assert [m.content for m in gemini.calls[-1]["messages"]] == ["question"]


def test_regenerate_only_assistant_messages(client, auth_headers):
    conv = conversation(client, auth_headers)
    data = client.post(
        "/api/v1/ai/chat", json={"conversation_id": conv["id"], "message": "question"}, headers=auth_headers
    ).json()["data"]
    response = client.post(f"/api/v1/ai/regenerate/{data['user_message']['id']}", headers=auth_headers)
    assert response.status_code == 400


def test_complete_endpoint_is_stateless(client, gemini, groq):
    gemini.replies = [provider_failure("gemini")]
    groq.replies = [provider_failure("groq")]

    response = client.post(
        "/api/v1/ai/complete",
        json={"messages": [{"role": "user", "content": "write a react component"}]},
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["simulated"] is True
    assert data["model"] == "fallback-react"


def test_provider_listing_and_models(client, auth_headers):
    providers = client.get("/api/v1/ai/providers", params={"is_mobile": True}).json()["data"]
    assert set(providers["providers"]) == {"gemini", "groq"}
    assert providers["device_providers"] == ["gemini", "groq"]
    assert providers["default_provider"] == "gemini"

    models = client.get("/api/v1/ai/models", params={"provider": "groq"}).json()["data"]
    assert models["groq"]["default_model"] == "groq-small"
    assert client.get("/api/v1/ai/models", params={"provider": "ollama"}).status_code == 400


def test_ai_health_and_stats(client, auth_headers):
    conv = conversation(client, auth_headers)
    client.post("/api/v1/ai/chat", json={"conversation_id": conv["id"], "message": "hi"}, headers=auth_headers)

    health = client.get("/api/v1/ai/health", headers=auth_headers).json()["data"]
    assert health["gemini"]["healthy"] is True

    stats = client.get("/api/v1/ai/stats", headers=auth_headers).json()["data"]
    assert stats["total_requests"] == 1
    assert stats["by_provider"]["gemini"]["total_tokens"] == 12


def test_unexpected_error_marks_message_failed(client, auth_headers, gemini):
    conv = conversation(client, auth_headers)
    gemini.replies = [RuntimeError("boom")]

    response = client.post("/api/v1/ai/chat", json={"conversation_id": conv["id"], "message": "hi"}, headers=auth_headers)

    assert response.status_code == 502
    assert response.json()["error"] == "ai_generation_failed"
    assert messages(client, auth_headers, conv["id"])[-1]["status"] == "failed"


def test_regenerate_unexpected_error_marks_message_failed(client, auth_headers, gemini):
    conv = conversation(client, auth_headers)
    data = client.post(
        "/api/v1/ai/chat", json={"conversation_id": conv["id"], "message": "question"}, headers=auth_headers
    ).json()["data"]
    gemini.replies = [RuntimeError("boom")]

    response = client.post(f"/api/v1/ai/regenerate/{data['assistant_message']['id']}", headers=auth_headers)

    assert response.status_code == 502
    assert messages(client, auth_headers, conv["id"])[-1]["status"] == "failed"
