from datetime import datetime

from devai_backend.utils import bucket_counts, bucket_key, calculate_pagination, format_file_size, generate_slug, unique_slug


def chat(client, headers, text="hi"):
    conversation = client.post("/api/v1/conversations", json={"title": "Stats"}, headers=headers).json()["data"]
    client.post("/api/v1/ai/chat", json={"conversation_id": conversation["id"], "message": text}, headers=headers)
    return conversation


def test_dashboard_totals(client, auth_headers):
    client.post("/api/v1/projects", json={"name": "P"}, headers=auth_headers)
    chat(client, auth_headers)
    client.post(
        "/api/v1/files/upload", files={"file": ("a.md", b"# notes", "text/markdown")}, headers=auth_headers
    )

    data = client.get("/api/v1/analytics/dashboard", headers=auth_headers).json()["data"]
    assert data["totals"]["projects"] == 1
    assert data["totals"]["conversations"] == 1
    assert data["totals"]["messages"] == 2
    assert data["totals"]["files"] == 1
    assert data["totals"]["storage_used"] == 7
    assert data["recent"]["messages"] == 2


def test_usage_buckets_by_day(client, auth_headers):
    chat(client, auth_headers)
    data = client.get("/api/v1/analytics/usage", params={"granularity": "day"}, headers=auth_headers).json()["data"]
    assert len(data["messages"]) == 1
    assert data["messages"][0]["count"] == 2
    assert data["conversations"][0]["count"] == 1


def test_usage_rejects_unknown_granularity_and_timeframe(client, auth_headers):
    assert client.get("/api/v1/analytics/usage", params={"granularity": "minute"}, headers=auth_headers).status_code == 400
    assert client.get("/api/v1/analytics/dashboard", params={"timeframe": "2d"}, headers=auth_headers).status_code == 400


def test_ai_usage_groups_by_provider_and_model(client, auth_headers, gemini):
    chat(client, auth_headers)
    conversation = client.post(
        "/api/v1/conversations", json={"title": "Groq chat", "ai_provider": "groq"}, headers=auth_headers
    ).json()["data"]
    client.post("/api/v1/ai/chat", json={"conversation_id": conversation["id"], "message": "hey"}, headers=auth_headers)

    data = client.get("/api/v1/analytics/ai", headers=auth_headers).json()["data"]
    assert data["total_messages"] == 2
    assert data["total_tokens"] == 14
    assert data["by_provider"]["gemini"]["models"] == {"gemini-small": {"messages": 1, "tokens": 7}}
    assert data["by_provider"]["groq"]["messages"] == 1
    assert data["live_stats"]["total_requests"] == 2


def test_analytics_requires_login(client):
    assert client.get("/api/v1/analytics/dashboard").status_code == 401


# -- helpers ------------------------------------------------------------------


def test_slugs():
    assert generate_slug("Hello, World!") == "hello-world"
    assert generate_slug("Café déjà vu") == "cafe-deja-vu"
    assert generate_slug("!!!") == "untitled"
    taken = {"report", "report-1"}
    assert unique_slug("Report", taken.__contains__) == "report-2"


def test_pagination_and_sizes():
    assert calculate_pagination(2, 10, 25) == {
        "page": 2, "limit": 10, "total": 25, "pages": 3, "has_next": True, "has_prev": True,
    }
    assert calculate_pagination(1, 10, 0)["pages"] == 0
    assert format_file_size(0) == "0 Bytes"
    assert format_file_size(1536) == "1.5 KB"
    assert format_file_size(5 * 1024 * 1024) == "5 MB"


def test_bucket_keys():
    moment = datetime(2024, 5, 16, 13, 45)  # a Thursday
    assert bucket_key(moment, "hour") == "2024-05-16T13:00"
    assert bucket_key(moment, "week") == "2024-05-13"
    assert bucket_key(moment, "month") == "2024-05"
    assert bucket_counts([moment, moment, datetime(2024, 5, 17)], "day") == [
        {"period": "2024-05-16", "count": 2},
        {"period": "2024-05-17", "count": 1},
    ]
