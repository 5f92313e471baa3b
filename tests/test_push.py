import json

import firebase_admin
import pytest

import push
from push import PushGateway, build_message


def _no_app(name):
    raise ValueError(f"The Firebase app \"{name}\" does not exist.")


def test_message_payload_shape():
    message = build_message("tok", "Title", "Body", {"link": "/x", "count": 3, "missing": None})
    assert message.token == "tok"
    assert message.notification.title == "Title"
    assert message.notification.body == "Body"
    assert message.data == {"link": "/x", "count": "3", "missing": ""}


def test_unavailable_gateway_never_calls_firebase(fake_messaging):
    gateway = PushGateway(None)
    assert gateway.available is False
    assert gateway.send("tok", "t", "b") == {"status": "unavailable"}
    assert gateway.send_many(["tok"], "t", "b") == {"status": "unavailable"}
    assert fake_messaging.sent == []


def test_send_returns_message_id(gateway, fake_messaging):
    result = gateway.send("tok", "t", "b", {"link": "/x"})
    assert result == {"status": "sent", "message_id": "projects/test/messages/1"}


def test_send_failure_is_reported_not_raised(gateway, fake_messaging):
    fake_messaging.failing_tokens.add("bad")
    result = gateway.send("bad", "t", "b")
    assert result["status"] == "failed"
    assert "not valid" in result["error"]


def test_send_many_chunks_at_fcm_limit(gateway, fake_messaging, monkeypatch):
    monkeypatch.setattr(push, "MAX_BATCH", 3)
    batches = []
    real_send_each = fake_messaging.send_each

    def recording_send_each(messages, app=None):
        batches.append(len(messages))
        return real_send_each(messages, app)

    monkeypatch.setattr(push.messaging, "send_each", recording_send_each)

    result = gateway.send_many([f"tok-{i}" for i in range(7)] + ["", None], "t", "b")

    assert batches == [3, 3, 1]
    assert result == {"status": "sent", "success_count": 7, "failure_count": 0}


def test_from_env_without_credentials(monkeypatch):
    monkeypatch.delenv("FIREBASE_SERVICE_ACCOUNT_KEY", raising=False)
    assert PushGateway.from_env().available is False


def test_from_env_with_broken_credentials(monkeypatch):
    monkeypatch.setenv("FIREBASE_SERVICE_ACCOUNT_KEY", json.dumps({"type": "service_account"}))
    monkeypatch.setattr(firebase_admin, "get_app", _no_app)
    assert PushGateway.from_env().available is False


def test_from_env_restores_private_key_newlines(monkeypatch):
    captured = {}

    def fake_certificate(info):
        captured.update(info)
        return "cert"

    monkeypatch.setenv("FIREBASE_SERVICE_ACCOUNT_KEY", json.dumps({"private_key": "line1\\nline2"}))
    monkeypatch.setattr(firebase_admin, "get_app", _no_app)
    monkeypatch.setattr(push.credentials, "Certificate", fake_certificate)
    monkeypatch.setattr(firebase_admin, "initialize_app", lambda cred, name=None: ("app", cred, name))

    gateway = PushGateway.from_env()

    assert captured["private_key"] == "line1\nline2"
    assert gateway.app == ("app", "cert", push.APP_NAME)
