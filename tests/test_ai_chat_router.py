from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from src.finrelay.api.main import app
from src.finrelay.api.streaming import relay_service
from src.finrelay.domain.ai_models import AIModelCreate
from src.finrelay.infrastructure.model_registry import get_model_registry
from src.finrelay.infrastructure.transcript_store import get_transcript_store
from src.finrelay.services.relay_service import RelayService
from src.finrelay.services.upstream_client import RelayConfig, UpstreamError
from .utils import FakeUpstreamClient, admin_headers, parse_sse, sse_line, user_headers


client = TestClient(app)


@pytest.fixture
def model_id():
    model = get_model_registry().create(
        AIModelCreate(name="gpt-4o-mini", base_url="https://llm.example.com/v1", api_key="sk-test")
    )
    return model.id


@pytest.fixture
def use_upstream():
    def install(fake: FakeUpstreamClient, **config) -> FakeUpstreamClient:
        service = RelayService(client=fake, config=RelayConfig(**config))
        app.dependency_overrides[relay_service] = lambda: service
        return fake

    yield install
    app.dependency_overrides.pop(relay_service, None)


def test_chat_streams_deltas_and_persists_transcript(model_id, use_upstream):
    fake = use_upstream(FakeUpstreamClient([sse_line("Hi"), sse_line(" there"), b"data: [DONE]"]))

    res = client.post("/ai/chat", json={"model_id": model_id, "message": "Hello"}, headers=user_headers(7))

    assert res.status_code == 200
    assert res.headers["content-type"].startswith("text/event-stream")
    assert res.headers["cache-control"] == "no-cache"
    assert parse_sse(res.text) == [
        {"type": "delta", "content": "Hi"},
        {"type": "delta", "content": " there"},
        {"type": "done"},
    ]
    body = fake.calls[0]["body"]
    assert body["model"] == "gpt-4o-mini"
    assert body["stream"] is True
    assert [m["role"] for m in body["messages"]] == ["system", "user"]
    assert body["messages"][1]["content"] == "Hello"

    page = get_transcript_store().list_chats(model_id, user_id=7)
    assert page.total == 1
    assert (page.list[0].user_text, page.list[0].ai_text) == ("Hello", "Hi there")


def test_unknown_model_is_404_without_upstream_call(use_upstream):
    fake = use_upstream(FakeUpstreamClient([b"data: [DONE]"]))

    res = client.post("/ai/chat", json={"model_id": 999, "message": "Hello"}, headers=user_headers())

    assert res.status_code == 404
    assert res.json()["detail"] == "AI model not found"
    assert fake.calls == []


def test_upstream_status_error_is_structured_json(model_id, use_upstream):
    use_upstream(FakeUpstreamClient(error=UpstreamError("AI service returned error: 401", 401, '{"error":"bad key"}')))

    res = client.post("/api/ai/chat", json={"model_id": model_id, "message": "Hello"}, headers=user_headers())

    assert res.status_code == 502
    assert res.json()["detail"] == {
        "message": "AI service returned error: 401",
        "status_code": 401,
        "body": '{"error":"bad key"}',
    }
    assert get_transcript_store().list_chats(model_id).total == 0


def test_upstream_error_can_be_reported_in_band(model_id, use_upstream):
    use_upstream(
        FakeUpstreamClient(error=UpstreamError("AI service returned error: 401", 401, "denied")),
        prestream_errors="sse",
    )

    res = client.post("/ai/chat", json={"model_id": model_id, "message": "Hello"}, headers=user_headers())

    assert res.status_code == 200
    frames = parse_sse(res.text)
    assert [f["type"] for f in frames] == ["error", "done"]
    assert "401" in frames[0]["content"]
    assert get_transcript_store().list_chats(model_id).total == 0


def test_chat_requires_auth_and_valid_body(model_id):
    assert client.post("/ai/chat", json={"model_id": model_id, "message": "x"}).status_code == 401
    res = client.post("/ai/chat", json={"model_id": model_id, "message": ""}, headers=user_headers())
    assert res.status_code == 422


def test_rate_limit_returns_429(model_id, use_upstream, monkeypatch):
    use_upstream(FakeUpstreamClient([b"data: [DONE]"]))
    monkeypatch.delenv("FINRELAY_RATE_LIMIT_DISABLED", raising=False)
    monkeypatch.setenv("FINRELAY_AI_RATE_LIMIT", "1")
    headers = user_headers(11)

    assert client.post("/ai/chat", json={"model_id": model_id, "message": "a"}, headers=headers).status_code == 200
    res = client.post("/ai/chat", json={"model_id": model_id, "message": "b"}, headers=headers)

    assert res.status_code == 429
    assert int(res.headers["retry-after"]) >= 1


def test_history_is_scoped_to_caller_and_paginated(model_id):
    store = get_transcript_store()
    for i in range(3):
        store.add_chat(model_id, 7, f"q{i}", f"a{i}")
    store.add_chat(model_id, 8, "theirs", "x")

    res = client.get("/ai/chat/history", params={"model_id": model_id, "page_size": 2}, headers=user_headers(7))

    assert res.status_code == 200
    data = res.json()
    assert data["total"] == 3
    assert data["page"] == 1 and data["page_size"] == 2
    assert [row["user_text"] for row in data["list"]] == ["q2", "q1"]

    admin = client.get("/admin/ai/chat/history", params={"model_id": model_id}, headers=admin_headers())
    assert admin.json()["total"] == 4


def test_delete_own_history_and_forbid_others(model_id):
    store = get_transcript_store()
    mine = store.add_chat(model_id, 7, "q", "a")
    theirs = store.add_chat(model_id, 8, "q", "a")

    assert client.delete(f"/ai/chat/history/{theirs.id}", headers=user_headers(7)).status_code == 403
    assert client.delete(f"/ai/chat/history/{mine.id}", headers=user_headers(7)).status_code == 204
    assert client.delete(f"/ai/chat/history/{mine.id}", headers=user_headers(7)).status_code == 404
    assert client.delete(f"/admin/ai/chat/history/{theirs.id}", headers=admin_headers()).status_code == 204
    assert store.list_chats(model_id).total == 0


def test_admin_chat_relays_as_admin(model_id, use_upstream):
    use_upstream(FakeUpstreamClient([sse_line("ok")]))

    res = client.post("/admin/ai/chat", json={"model_id": model_id, "message": "ping"}, headers=admin_headers(1))

    assert [f["type"] for f in parse_sse(res.text)] == ["delta", "done"]
    assert get_transcript_store().list_chats(model_id, user_id=1).total == 1


def test_member_cannot_use_admin_chat(model_id):
    res = client.post("/admin/ai/chat", json={"model_id": model_id, "message": "x"}, headers=user_headers())
    assert res.status_code == 403
