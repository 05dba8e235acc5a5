"""WebSocket — token and host verification on the shared listener."""

import logging

import jwt
import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from vidhub.main import create_app


def _token(secret: str) -> str:
    return jwt.encode({"sub": "viewer-1"}, secret, algorithm="HS256")


def test_missing_token_closes_with_policy_violation(settings):
    client = TestClient(create_app(settings))
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/ws") as ws:
            ws.receive_text()
    assert exc.value.code == 1008
    assert exc.value.reason == "Unauthorized"


def test_wrong_secret_closes_with_policy_violation(settings):
    client = TestClient(create_app(settings))
    headers = {"Authorization": _token("not-the-secret")}
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/ws", headers=headers) as ws:
            ws.receive_text()
    assert exc.value.code == 1008


def test_host_mismatch_rejected(settings):
    restricted = settings.model_copy(update={"websocket_host": "videos.example.com"})
    client = TestClient(create_app(restricted))
    headers = {"Authorization": _token(settings.websocket_token_secret)}
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/ws", headers=headers) as ws:
            ws.receive_text()
    assert exc.value.code == 1008


def test_authenticated_messages_are_logged(settings, caplog):
    caplog.set_level(logging.INFO, logger="vidhub.api.routes.websocket")
    client = TestClient(create_app(settings))
    headers = {"Authorization": f"Bearer {_token(settings.websocket_token_secret)}"}

    with client.websocket_connect("/ws", headers=headers) as ws:
        ws.send_text("hello")

    messages = [r.getMessage() for r in caplog.records]
    assert "WebSocket message: hello" in messages
    assert any(m.startswith("WebSocket closed (viewer-1") for m in messages)
