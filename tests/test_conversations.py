def create(client, headers, **fields):
    response = client.post("/api/v1/conversations", json={"title": "Debugging", **fields}, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["data"]


def add(client, headers, conversation_id, content, role="user"):
    response = client.post(
        f"/api/v1/conversations/{conversation_id}/messages",
        json={"role": role, "content": content},
        headers=headers,
    )
    assert response.status_code == 201, response.text
    return response.json()["data"]


def test_create_uses_default_provider_and_unique_slug(client, auth_headers):
    first = create(client, auth_headers)
    second = create(client, auth_headers)
    assert first["ai_provider"] == "gemini"
    assert first["slug"] == "debugging"
    assert second["slug"] == "debugging-1"


def test_create_validates_provider_and_project(client, auth_headers, register):
    bad_provider = client.post("/api/v1/conversations", json={"title": "x", "ai_provider": "openai"}, headers=auth_headers)
    assert bad_provider.status_code == 422

    other = {"Authorization": f"Bearer {register('bob')['tokens']['access_token']}"}
    foreign = client.post("/api/v1/projects", json={"name": "Bob's"}, headers=other).json()["data"]
    response = client.post("/api/v1/conversations", json={"title": "x", "project_id": foreign["id"]}, headers=auth_headers)
    assert response.status_code == 404


def test_messages_keep_their_order(client, auth_headers):
    conversation = create(client, auth_headers)
    for text in ("one", "two", "three"):
        add(client, auth_headers, conversation["id"], text)

    listing = client.get(f"/api/v1/conversations/{conversation['id']}/messages", headers=auth_headers).json()
    assert [m["content"] for m in listing["data"]] == ["one", "two", "three"]
    assert [m["position"] for m in listing["data"]] == [1, 2, 3]
    assert listing["pagination"]["total"] == 3

    detail = client.get(
        f"/api/v1/conversations/{conversation['id']}", params={"message_limit": 2}, headers=auth_headers
    ).json()["data"]
    assert [m["content"] for m in detail["messages"]] == ["two", "three"]


def test_list_includes_counts_and_last_message(client, auth_headers):
    conversation = create(client, auth_headers, title="Has messages")
    create(client, auth_headers, title="Empty")
    add(client, auth_headers, conversation["id"], "hello")
    add(client, auth_headers, conversation["id"], "world")

    items = client.get("/api/v1/conversations", params={"sort_by": "title", "sort_order": "asc"}, headers=auth_headers).json()["data"]
    assert [i["title"] for i in items] == ["Empty", "Has messages"]
    assert items[0]["message_count"] == 0
    assert items[0]["last_message"] is None
    assert items[1]["message_count"] == 2
    assert items[1]["last_message"]["content"] == "world"


def test_search_matches_title_or_message_content(client, auth_headers):
    by_title = create(client, auth_headers, title="Kubernetes notes")
    by_content = create(client, auth_headers, title="Misc")
    create(client, auth_headers, title="Unrelated")
    add(client, auth_headers, by_content["id"], "how do I scale kubernetes pods?")

    items = client.get("/api/v1/conversations", params={"search": "kubernetes"}, headers=auth_headers).json()["data"]
    assert {i["id"] for i in items} == {by_title["id"], by_content["id"]}


def test_update_archive_restore_and_filters(client, auth_headers):
    conversation = create(client, auth_headers)
    updated = client.put(
        f"/api/v1/conversations/{conversation['id']}",
        json={"title": "Renamed", "system_prompt": "Be helpful", "metadata": {"pinned": True}},
        headers=auth_headers,
    ).json()["data"]
    assert updated["slug"] == "renamed"
    assert updated["metadata"] == {"pinned": True}

    client.put(f"/api/v1/conversations/{conversation['id']}/archive", headers=auth_headers)
    archived = client.get("/api/v1/conversations", params={"status": "archived"}, headers=auth_headers).json()["data"]
    assert [c["id"] for c in archived] == [conversation["id"]]

    restored = client.put(f"/api/v1/conversations/{conversation['id']}/restore", headers=auth_headers).json()["data"]
    assert restored["status"] == "active"


def test_delete_cascades_messages(client, auth_headers):
    conversation = create(client, auth_headers)
    message = add(client, auth_headers, conversation["id"], "bye")

    assert client.delete(f"/api/v1/conversations/{conversation['id']}", headers=auth_headers).status_code == 200
    assert client.get(f"/api/v1/conversations/{conversation['id']}", headers=auth_headers).status_code == 404
    deleted = client.delete(
        f"/api/v1/conversations/{conversation['id']}/messages/{message['id']}", headers=auth_headers
    )
    assert deleted.status_code == 404


def test_delete_single_message(client, auth_headers):
    conversation = create(client, auth_headers)
    keep = add(client, auth_headers, conversation["id"], "keep")
    drop = add(client, auth_headers, conversation["id"], "drop")

    response = client.delete(f"/api/v1/conversations/{conversation['id']}/messages/{drop['id']}", headers=auth_headers)
    assert response.status_code == 200
    remaining = client.get(f"/api/v1/conversations/{conversation['id']}/messages", headers=auth_headers).json()["data"]
    assert [m["id"] for m in remaining] == [keep["id"]]


def test_conversations_are_private(client, auth_headers, register):
    conversation = create(client, auth_headers)
    other = {"Authorization": f"Bearer {register('eve')['tokens']['access_token']}"}
    assert client.get(f"/api/v1/conversations/{conversation['id']}", headers=other).status_code == 404


def test_null_for_required_fields_is_rejected(client, auth_headers):
    conversation = create(client, auth_headers)
    for field in ("title", "ai_provider", "status"):
        response = client.put(f"/api/v1/conversations/{conversation['id']}", json={field: None}, headers=auth_headers)
        assert response.status_code == 422, field

    cleared = client.put(
        f"/api/v1/conversations/{conversation['id']}", json={"description": None, "project_id": None}, headers=auth_headers
    )
    assert cleared.status_code == 200
