"""HTTP tests for the FastAPI application."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from chatrelay.config import Settings
from chatrelay.core import ErrorCode, ProviderAuthError
from chatrelay.main import create_app

from tests.support import StubProvider, build_orchestrator, provider_config


def make_settings(**overrides) -> Settings:
    values = {
        "environment": "test",
        "providers_enabled": "groq",
        "groq_api_key": "test-key",
        "memory_purge_interval_seconds": 0,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def groq() -> StubProvider:
    return StubProvider("groq", ["Photosynthesis turns light into sugar."])


@pytest.fixture
def client(engine, session_factory, groq):
    orchestrator = build_orchestrator(session_factory, [provider_config("groq", 0)], [groq])
    app = create_app(
        make_settings(), orchestrator=orchestrator, engine=engine, session_factory=session_factory
    )
    with TestClient(app) as test_client:
        yield test_client


def test_health_reports_ok(client) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["checks"]["database"] is True
    assert body["checks"]["providers"] == 1


def test_chat_returns_answer_and_echoes_request_id(client) -> None:
    response = client.post(
        "/chat",
        json={"owner_id": "u1", "conversation_id": "c1", "message": "Explain photosynthesis"},
        headers={"X-Request-ID": "req-42"},
    )

    assert response.status_code == 200
    assert response.headers["X-Request-ID"] == "req-42"
    body = response.json()
    assert body["content"] == "Photosynthesis turns light into sugar."
    assert body["provider"] == "groq"
    assert body["cached"] is False
    assert body["degraded"] is False
    assert body["query_type"] == "general"
    assert body["conversation_id"] == "c1"


def test_repeated_chat_is_cached(client, groq) -> None:
    payload = {"owner_id": "u1", "conversation_id": "c1", "message": "Explain photosynthesis"}

    client.post("/chat", json=payload)
    second = client.post("/chat", json=payload)

    assert second.json()["cached"] is True
    assert len(groq.calls) == 1


def test_empty_message_is_rejected_with_error_envelope(client) -> None:
    response = client.post(
        "/chat", json={"owner_id": "u1", "conversation_id": "c1", "message": "   "}
    )

    assert response.status_code == 400
    error = response.json()["error"]
    assert error["code"] == ErrorCode.VALIDATION_ERROR.value
    assert error["message"] == "Message must not be empty"
    assert error["request_id"] == response.headers["X-Request-ID"]


def test_oversized_message_fails_request_validation(client) -> None:
    response = client.post(
        "/chat", json={"owner_id": "u1", "conversation_id": "c1", "message": "x" * 8001}
    )

    assert response.status_code == 422
    assert response.json()["error"]["code"] == ErrorCode.VALIDATION_ERROR.value


def test_memory_create_and_search(client) -> None:
    created = client.post(
        "/memory",
        json={"owner_id": "u1", "content": "User's name is Kunal", "tags": ["Name"], "importance": 5},
    )
    assert created.status_code == 201
    record = created.json()
    assert record["tags"] == ["name"]
    assert record["importance"] == 5

    found = client.post("/memory/search", json={"owner_id": "u1", "query": "what is my name?"})

    assert found.status_code == 200
    body = found.json()
    assert body["results"][0]["id"] == record["id"]
    assert body["results"][0]["forced"] is True
    assert "Kunal" in body["context"]


def test_memory_create_rejects_bad_importance(client) -> None:
    response = client.post(
        "/memory", json={"owner_id": "u1", "content": "something", "importance": 9}
    )

    assert response.status_code == 422


def test_memory_delete_is_owner_scoped(client) -> None:
    record_id = client.post("/memory", json={"owner_id": "u1", "content": "User lives in Pune"}).json()["id"]

    other_owner = client.delete(f"/memory/{record_id}", params={"owner_id": "u2"})
    deleted = client.delete(f"/memory/{record_id}", params={"owner_id": "u1"})
    again = client.delete(f"/memory/{record_id}", params={"owner_id": "u1"})

    assert other_owner.status_code == 404
    assert deleted.status_code == 204
    assert again.status_code == 404
    found = client.post("/memory/search", json={"owner_id": "u1", "query": "where do I live?"})
    assert found.json()["results"] == []


def test_memory_purge_endpoint(client) -> None:
    response = client.post("/memory/purge")

    assert response.status_code == 200
    assert response.json() == {"records": 0, "summaries": 0}


def test_conversation_history_endpoints(client) -> None:
    client.post(
        "/chat",
        json={"owner_id": "u1", "conversation_id": "c1", "message": "Explain photosynthesis"},
    )

    listed = client.get("/conversations", params={"owner_id": "u1"})
    messages = client.get("/conversations/c1/messages", params={"owner_id": "u1"})
    foreign = client.get("/conversations/c1/messages", params={"owner_id": "u2"})

    assert [c["id"] for c in listed.json()] == ["c1"]
    assert listed.json()[0]["title"] == "Explain photosynthesis"
    assert [(m["role"], m["provider"]) for m in messages.json()] == [("user", None), ("assistant", "groq")]
    assert messages.json()[1]["meta"]["cached"] is False
    assert foreign.status_code == 404
    assert client.get("/conversations", params={"owner_id": "u2"}).json() == []


def test_provider_status(client) -> None:
    client.post(
        "/chat", json={"owner_id": "u1", "conversation_id": "c1", "message": "Explain osmosis"}
    )

    response = client.get("/providers/status", params={"events": 5})

    assert response.status_code == 200
    body = response.json()
    assert body["tiers"] == [{"rank": 0, "providers": ["groq"]}]
    assert body["providers"][0]["provider_id"] == "groq"
    assert body["providers"][0]["minute_used"] == 1
    assert body["recent_events"][-1]["outcome"] == "success"
    assert body["cache"]["entries"] == 1
    assert "provider_attempts_total" in body["metrics"]["counters"]


def test_provider_reload_clears_auth_disable(engine, session_factory) -> None:
    groq = StubProvider("groq", [ProviderAuthError(), "Back online."])
    orchestrator = build_orchestrator(session_factory, [provider_config("groq", 0)], [groq])
    app = create_app(
        make_settings(), orchestrator=orchestrator, engine=engine, session_factory=session_factory
    )
    payload = {"owner_id": "u1", "conversation_id": "c1", "message": "Explain osmosis"}

    with TestClient(app) as test_client:
        first = test_client.post("/chat", json=payload)
        disabled = test_client.get("/providers/status").json()["providers"][0]
        reloaded = test_client.post("/providers/reload")
        second = test_client.post("/chat", json=payload)

    assert first.json()["degraded"] is True
    assert disabled["state"] == "disabled"
    assert reloaded.status_code == 200
    assert reloaded.json()["providers"][0]["state"] == "healthy"
    assert second.json()["degraded"] is False
    assert second.json()["content"] == "Back online."


def test_unknown_route_uses_error_envelope(client) -> None:
    response = client.get("/nope")

    assert response.status_code == 404
    assert response.json()["error"]["code"] == ErrorCode.NOT_FOUND.value


def test_app_without_providers_answers_503(engine) -> None:
    app = create_app(make_settings(providers_enabled=""), engine=engine)

    with TestClient(app) as test_client:
        health = test_client.get("/health")
        chat = test_client.post(
            "/chat", json={"owner_id": "u1", "conversation_id": "c1", "message": "hello"}
        )

    assert health.json()["status"] == "degraded"
    assert chat.status_code == 503
    error = chat.json()["error"]
    assert error["code"] == ErrorCode.CONFIGURATION_ERROR.value
    assert error["message"] == "Chat service is temporarily unavailable"
