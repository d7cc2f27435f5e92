"""
Tests for the HTTP API.

Tests cover:
- POST /events: signature check (401), validation (422), dispatch (200)
- POST /api/send: input validation (400), failures (500), success
- Health probes and metrics
"""

import hashlib
import hmac
import json
import os

import pytest
from fastapi.testclient import TestClient

from wa_archiver.config import settings
from wa_archiver.main import app, get_dispatcher, get_messaging_client, get_s3_client
from wa_archiver.storage import Base, engine, get_chat, get_message


TEST_WEBHOOK_SECRET = os.environ["WEBHOOK_SECRET"]
TEST_BUCKET = os.environ["AWS_S3_BUCKET_NAME"]


def compute_signature(body: str, secret: str) -> str:
    """Compute HMAC-SHA256 signature for request body."""
    return hmac.new(
        secret.encode("utf-8"),
        body.encode("utf-8"),
        hashlib.sha256
    ).hexdigest()


def post_event(client: TestClient, body: str, secret: str = TEST_WEBHOOK_SECRET):
    return client.post(
        "/events",
        content=body,
        headers={
            "Content-Type": "application/json",
            "X-Signature": compute_signature(body, secret),
        },
    )


@pytest.fixture(scope="function")
def client(dispatcher, messaging_client, s3):
    """Test client wired to the fake messaging client and moto S3."""
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_messaging_client] = lambda: messaging_client
    app.dependency_overrides[get_s3_client] = lambda: s3

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def text_event_body() -> str:
    return json.dumps({
        "type": "message",
        "info": {
            "id": "3EB0C767D26A1D",
            "chat": "123@s.whatsapp.net",
            "sender": "123@s.whatsapp.net",
            "timestamp": "2025-01-15T10:00:00Z",
            "is_from_me": False,
        },
        "message": {"conversation": "hello"},
    })


class TestEventSignature:
    """Test signature enforcement on POST /events."""

    def test_missing_signature(self, client, text_event_body):
        response = client.post(
            "/events",
            content=text_event_body,
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 401
        assert response.json() == {"detail": "invalid signature"}

    def test_wrong_secret(self, client, text_event_body):
        response = post_event(client, text_event_body, secret="wrong-secret")

        assert response.status_code == 401

    def test_tampered_body(self, client, text_event_body):
        signature = compute_signature(text_event_body, TEST_WEBHOOK_SECRET)

        response = client.post(
            "/events",
            content=text_event_body.replace("hello", "hacked"),
            headers={"Content-Type": "application/json", "X-Signature": signature},
        )

        assert response.status_code == 401

    def test_unconfigured_secret_rejects_everything(self, client, text_event_body, monkeypatch):
        monkeypatch.setattr(settings, "WEBHOOK_SECRET", "")

        response = post_event(client, text_event_body, secret="")

        assert response.status_code == 401

    def test_signature_checked_before_validation(self, client):
        response = client.post(
            "/events",
            content="not json",
            headers={"Content-Type": "application/json", "X-Signature": "00"},
        )

        assert response.status_code == 401


class TestEventValidation:
    """Test 422 responses for malformed events."""

    @pytest.mark.parametrize(
        "body",
        [
            "not json",
            '{"type":"unknown"}',
            '{"type":"message","info":{"id":"m1"}}',
            '{"type":"message","info":{"id":"","chat":"1@s.whatsapp.net","sender":"1@s.whatsapp.net",'
            '"timestamp":"2025-01-15T10:00:00Z"}}',
            '{"type":"message","info":{"id":"m1","chat":"1@s.whatsapp.net","sender":"1@s.whatsapp.net",'
            '"timestamp":"yesterday"}}',
        ],
    )
    def test_invalid_event(self, client, body):
        response = post_event(client, body)

        assert response.status_code == 422


class TestEventDispatch:
    """Test successful event processing through the API."""

    def test_live_text_message(self, client, text_event_body, s3):
        response = post_event(client, text_event_body)

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["event_type"] == "message"
        assert data["result"] == "ok"
        assert data["message_id"] == "3EB0C767D26A1D"
        assert data["archive_path"].startswith(f"{TEST_BUCKET}/input/123@s.whatsapp.net/text_")
        assert "stored" not in data

    def test_live_message_rows(self, client, text_event_body, db):
        post_event(client, text_event_body)

        assert get_chat(db, "123@s.whatsapp.net").last_message_time == "2025-01-15T10:00:00Z"
        assert get_message(db, "3EB0C767D26A1D", "123@s.whatsapp.net").content == "hello"

    def test_ignored_message_is_still_200(self, client):
        body = json.dumps({
            "type": "message",
            "info": {
                "id": "m2",
                "chat": "123@s.whatsapp.net",
                "sender": "123@s.whatsapp.net",
                "timestamp": "2025-01-15T10:00:00Z",
            },
            "message": {"image_message": {"url": "https://mmg.whatsapp.net/v/i.enc"}},
        })

        response = post_event(client, body)

        assert response.status_code == 200
        assert response.json()["result"] == "ignored"

    def test_history_sync(self, client, db):
        body = json.dumps({
            "type": "history_sync",
            "conversations": [
                {
                    "id": "120363025@g.us",
                    "display_name": "Family",
                    "messages": [
                        {"key": {"id": "h1", "participant": "15551234567"}, "message_timestamp": 1736935200,
                         "message": {"conversation": "one"}},
                        {"key": {"id": "h2", "from_me": True}, "message_timestamp": 1736935260,
                         "message": {"extended_text_message": {"text": "two"}}},
                    ],
                }
            ],
        })

        response = post_event(client, body)

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "event_type": "history_sync", "result": "ok", "stored": 2}
        assert get_chat(db, "120363025@g.us").name == "Family"


class TestSend:
    """Test POST /api/send."""

    def test_recipient_required(self, client):
        response = client.post("/api/send", json={"message": "hi"})

        assert response.status_code == 400
        assert response.json()["detail"] == "Recipient is required"

    def test_message_or_media_required(self, client):
        response = client.post("/api/send", json={"recipient": "15551234567", "bucket_name": TEST_BUCKET})

        assert response.status_code == 400
        assert response.json()["detail"] == "Message or media path is required"

    def test_send_text(self, client, messaging_client):
        response = client.post("/api/send", json={"recipient": "15551234567", "message": "hi"})

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Message sent to 15551234567"}
        assert messaging_client.sent == [("15551234567@s.whatsapp.net", {"conversation": "hi"})]

    def test_send_when_disconnected(self, client, messaging_client):
        messaging_client.connected = False

        response = client.post("/api/send", json={"recipient": "15551234567", "message": "hi"})

        assert response.status_code == 500
        assert response.json() == {"success": False, "message": "Not connected to WhatsApp"}

    def test_send_missing_object(self, client):
        response = client.post(
            "/api/send",
            json={"recipient": "15551234567", "bucket_name": TEST_BUCKET, "object_key": "media/missing.jpg"},
        )

        assert response.status_code == 500
        assert response.json()["success"] is False


class TestHealth:
    """Test health probes."""

    def test_live(self, client):
        response = client.get("/health/live")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_ready(self, client):
        response = client.get("/health/ready")

        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    def test_not_ready_without_secret(self, client, monkeypatch):
        monkeypatch.setattr(settings, "WEBHOOK_SECRET", "")

        response = client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["reason"] == "WEBHOOK_SECRET not configured"

    def test_not_ready_without_schema(self, client):
        Base.metadata.drop_all(bind=engine)

        response = client.get("/health/ready")

        assert response.status_code == 503


class TestMetrics:
    """Test the metrics endpoint."""

    def test_metrics_exposed(self, client, text_event_body):
        post_event(client, text_event_body)

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "text/plain" in response.headers["content-type"]
        assert 'events_total{event_type="message",result="ok"}' in response.text
        assert "http_requests_total" in response.text
        assert 'archive_uploads_total{result="uploaded"}' in response.text

    def test_request_id_header(self, client):
        response = client.get("/health/live")

        assert response.headers["X-Request-ID"]
