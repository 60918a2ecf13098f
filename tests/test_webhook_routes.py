"""HTTP surface: verification handshake, delivery, operator endpoints."""

import hashlib
import hmac
import json

import pytest
from fastapi.testclient import TestClient

from agent import app
from conftest import facebook_comment_payload
from routes import webhook_base
from services.llm_service import LLMService


@pytest.fixture
def client():
    # No context manager: the lifespan (Supabase checks, scheduler) stays off
    return TestClient(app)


@pytest.mark.parametrize("path,token", [
    ("/webhook", "fb-verify"),
    ("/webhook/facebook", "fb-verify"),
    ("/webhook/instagram", "ig-verify"),
])
def test_verification_echoes_challenge(client, path, token):
    response = client.get(path, params={"hub.mode": "subscribe", "hub.verify_token": token, "hub.challenge": "1158201444"})

    assert response.status_code == 200
    assert response.text == "1158201444"
    assert response.headers["content-type"].startswith("text/plain")


@pytest.mark.parametrize("params", [
    {"hub.mode": "subscribe", "hub.verify_token": "wrong", "hub.challenge": "1"},
    {"hub.mode": "unsubscribe", "hub.verify_token": "fb-verify", "hub.challenge": "1"},
    {},
])
def test_verification_rejects(client, params):
    response = client.get("/webhook", params=params)
    assert response.status_code == 403
    assert response.text == "Forbidden"


def test_delivery_is_acknowledged(client, db, platform, llm):
    response = client.post("/webhook", content=json.dumps(facebook_comment_payload()))

    assert response.status_code == 200
    assert response.text == "OK"
    assert "X-Request-ID" in response.headers
    assert len(platform["facebook"].replies) == 1


def test_delivery_is_acknowledged_even_when_processing_fails(client, db, platform, llm):
    db.fail_on.add(("comments", "upsert"))
    response = client.post("/webhook/facebook", content=json.dumps(facebook_comment_payload()))
    assert response.status_code == 200
    assert response.text == "OK"


def test_unparseable_body_is_rejected(client):
    response = client.post("/webhook", content=b"{not json")
    assert response.status_code == 400
    assert response.json()["error"] == "parse_error"


def test_signature_is_enforced_when_secret_configured(client, db, platform, llm, monkeypatch):
    monkeypatch.setattr(webhook_base, "FACEBOOK_APP_SECRET", "s3cret")
    body = json.dumps(facebook_comment_payload()).encode()

    unsigned = client.post("/webhook", content=body)
    wrong = client.post("/webhook", content=body, headers={"X-Hub-Signature-256": "sha256=deadbeef"})
    signature = hmac.new(b"s3cret", body, hashlib.sha256).hexdigest()
    signed = client.post("/webhook", content=body, headers={"X-Hub-Signature-256": f"sha256={signature}"})

    assert unsigned.status_code == 401
    assert wrong.status_code == 401
    assert signed.status_code == 200


def test_stale_sessions_listing(client, db):
    db.rows("chat_sessions").extend([
        {"id": "s-1", "chat_id": "comment_c-1", "status": "processing", "updated_at": "2020-01-01T00:00:00+00:00"},
        {"id": "s-2", "chat_id": "comment_c-2", "status": "completed", "updated_at": "2020-01-01T00:00:00+00:00"},
        {"id": "s-3", "chat_id": "user-9", "status": "processing", "updated_at": "2999-01-01T00:00:00+00:00"},
    ])

    response = client.get("/sessions/stale")

    assert response.status_code == 200
    body = response.json()
    assert body["count"] == 1
    assert body["sessions"][0]["chat_id"] == "comment_c-1"


def test_monitor_trigger_and_status(client, db):
    db.rows("chat_sessions").append(
        {"id": "s-1", "chat_id": "user-9", "status": "processing", "updated_at": "2020-01-01T00:00:00+00:00"}
    )

    triggered = client.post("/monitor/trigger")
    status = client.get("/monitor/status")

    assert triggered.json()["triggered"] is True
    assert status.status_code == 200
    assert "dedup_cache_size" in status.json()


def test_operator_routes_require_api_key(client, db, monkeypatch):
    monkeypatch.setenv("AGENT_API_KEY", "k-123")

    assert client.get("/sessions/stale").status_code == 401
    assert client.get("/sessions/stale", headers={"X-API-Key": "k-123"}).status_code == 200
    assert client.get("/monitor/status").status_code == 200
    assert client.get("/webhook", params={"hub.mode": "subscribe", "hub.verify_token": "fb-verify"}).status_code == 200


def test_reindex_without_file_references(client, db):
    response = client.post("/files/reindex")
    assert response.status_code == 200
    assert response.json()["indexed"] is False


def test_health_reports_healthy_without_redis(client, db, monkeypatch):
    monkeypatch.setattr(LLMService, "is_available", staticmethod(lambda: {"available": True, "models_loaded": ["llama3.1"]}))

    body = client.get("/health").json()

    assert body["status"] == "healthy"
    assert body["db_connection"] == "connected"
    assert body["redis_connected"] is False
    assert any(issue.startswith("Redis") for issue in body["issues"])


def test_health_degrades_when_model_unreachable(client, db, monkeypatch):
    monkeypatch.setattr(LLMService, "is_available", staticmethod(lambda: {"available": False, "reason": "connection refused"}))

    body = client.get("/health").json()

    assert body["status"] == "degraded"
    assert "Ollama: connection refused" in body["issues"]
