"""
Tests for the HTTP adapters.
"""

import base64
import hashlib
import hmac
import json

import pytest
from fastapi.testclient import TestClient

from chat_session_agent.api import create_app
from chat_session_agent.api.app import EMPTY_REPLY_MESSAGE
from chat_session_agent.channels.base import BaseChannel, ChannelType
from chat_session_agent.channels.line import parse_line_events
from chat_session_agent.config import Settings
from chat_session_agent.exceptions import UpstreamError

ADMIN = {"Authorization": "Bearer secret"}


class RecordingChannel(BaseChannel):
    """Channel that keeps outgoing messages instead of sending them."""

    def __init__(self):
        self.sent = []

    @property
    def channel_type(self):
        return ChannelType.LINE

    @property
    def name(self):
        return "recording"

    def parse_webhook(self, payload):
        return parse_line_events(payload)

    async def send_message(self, message):
        self.sent.append(message)


def _line_payload(text, user_id="U1", reply_token="rt-1"):
    return {
        "events": [{
            "type": "message",
            "replyToken": reply_token,
            "source": {"type": "user", "userId": user_id},
            "message": {"id": "m-1", "type": "text", "text": text},
        }]
    }


def _sign(secret, body):
    digest = hmac.new(secret.encode(), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


@pytest.fixture
def channel():
    return RecordingChannel()


@pytest.fixture
def settings():
    return Settings(_env_file=None, admin_password="secret")


@pytest.fixture
def client(settings, orchestrator, channel):
    app = create_app(settings=settings, orchestrator=orchestrator, channel=channel)
    with TestClient(app) as test_client:
        yield test_client


def test_health(client):
    """Health reports the wiring."""
    response = client.get("/api/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["backend"] == "memory"
    assert data["provider"] == "mock"
    assert data["line_configured"] is True


def test_chat_success(client):
    """A message gets the generated reply."""
    response = client.post("/chat", json={"message": "hi", "session_id": "web-1"})

    assert response.status_code == 200
    assert response.json() == {"status": "success", "response": "Hello! How can I help you?"}


@pytest.mark.parametrize("body", [{}, {"message": ""}, {"message": "   "}])
def test_chat_requires_message(client, body):
    """Missing text is a client error."""
    response = client.post("/chat", json=body)

    assert response.status_code == 400
    assert response.json() == {"status": "error", "message": "No message provided"}


def test_chat_upstream_failure(client, mock_llm, store):
    """Provider failures answer 502 with the fallback text."""
    mock_llm.generate.side_effect = UpstreamError("mock", "503 Service Unavailable")

    response = client.post("/chat", json={"message": "order 3 noodles"})

    assert response.status_code == 502
    assert response.json() == {
        "status": "error",
        "message": "Sorry, I encountered an error while processing your request.",
    }


def test_line_webhook_relays_reply(client, channel):
    """Each text event is answered through the channel."""
    response = client.post("/webhook/line", json=_line_payload("hi"))

    assert response.status_code == 200
    assert response.json() == {"status": "success", "message": "Webhook received"}
    assert len(channel.sent) == 1
    assert channel.sent[0].reply_token == "rt-1"
    assert channel.sent[0].text == "Hello! How can I help you?"


def test_line_webhook_legacy_path(client, channel, mock_llm):
    """The bare /webhook path still serves LINE."""
    response = client.post("/webhook", json=_line_payload("hi"))

    assert response.status_code == 200
    assert len(channel.sent) == 1
    assert channel.sent[0].reply_token == "rt-1"


def test_line_webhook_uses_per_user_sessions(client, store, mock_llm):
    """LINE users get their own sessions."""
    client.post("/webhook/line", json=_line_payload("first", user_id="U1"))
    client.post("/webhook/line", json=_line_payload("second", user_id="U2"))

    response = client.get("/api/sessions", headers=ADMIN)
    assert response.json()["sessions"] == ["line:U1", "line:U2"]


def test_line_webhook_blank_text(client, channel, mock_llm):
    """Blank messages get the canned reply without generation."""
    client.post("/webhook/line", json=_line_payload("   "))

    assert channel.sent[0].text == EMPTY_REPLY_MESSAGE
    mock_llm.generate.assert_not_awaited()


def test_line_webhook_failure_sends_fallback(client, channel, mock_llm):
    """The user still gets an answer when generation fails."""
    mock_llm.generate.side_effect = UpstreamError("mock", "down")

    response = client.post("/webhook/line", json=_line_payload("hi"))

    assert response.status_code == 200
    assert channel.sent[0].text == "Sorry, I encountered an error while processing your request."


def test_line_webhook_invalid_json(client):
    """Unparseable bodies are rejected."""
    response = client.post(
        "/webhook/line",
        content=b"not json",
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 400


def test_line_webhook_signature(orchestrator, channel):
    """With a channel secret configured, signatures are enforced."""
    settings = Settings(_env_file=None, line_channel_secret="line-secret")
    app = create_app(settings=settings, orchestrator=orchestrator, channel=channel)
    body = json.dumps(_line_payload("hi")).encode()

    with TestClient(app) as client:
        bad = client.post("/webhook/line", content=body, headers={"X-Line-Signature": "nope"})
        good = client.post(
            "/webhook/line",
            content=body,
            headers={"X-Line-Signature": _sign("line-secret", body)},
        )

    assert bad.status_code == 401
    assert good.status_code == 200
    assert len(channel.sent) == 1


def test_admin_requires_password(client):
    """Session administration is password protected."""
    assert client.get("/api/sessions", headers={"Authorization": "Bearer wrong"}).status_code == 401


def test_admin_session_lifecycle(client):
    """Sessions can be created, inspected and cleared."""
    response = client.put(
        "/api/sessions/s1",
        json={"system_instruction": "Be terse."},
        headers=ADMIN,
    )
    assert response.status_code == 200
    assert response.json() == {"id": "s1", "system_instruction": "Be terse."}

    client.post("/chat", json={"message": "hi", "session_id": "s1"})

    response = client.get("/api/sessions/s1", headers=ADMIN)
    assert response.status_code == 200
    data = response.json()
    assert [m["role"] for m in data["history"]] == ["system", "user", "assistant"]
    assert data["retention_limit"] == 10

    response = client.delete("/api/sessions/s1/history", headers=ADMIN)
    assert response.json() == {"id": "s1", "message_count": 0}

    response = client.get("/api/sessions/s1", headers=ADMIN)
    assert [m["content"] for m in response.json()["history"]] == ["Be terse."]


def test_admin_unknown_session(client):
    """Unknown sessions are reported as not found."""
    response = client.get("/api/sessions/ghost", headers=ADMIN)

    assert response.status_code == 404
    assert response.json()["status"] == "error"
    assert "ghost" in response.json()["message"]
