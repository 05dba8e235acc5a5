"""WebSocket Route — authenticated message channel on the same listener as HTTP.

Invariants:
    - Authorization header must hold a JWT signed with websocket_token_secret
    - When websocket_host is configured, the Host header must match it exactly
    - Failed verification closes with 1008 "Unauthorized" before any message is read
    - Received messages are logged; the close is logged

Design Decisions:
    - Accept-then-close for rejections: clients see a proper close frame with the reason
"""

import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from vidhub.api.dependencies import bearer_token
from vidhub.config import Settings
from vidhub.core.errors import AuthenticationError
from vidhub.infrastructure.security import decode_websocket_token

logger = logging.getLogger(__name__)
router = APIRouter(tags=["websocket"])


def verify_client(settings: Settings, websocket: WebSocket) -> dict:
    """Return token claims, or raise AuthenticationError."""
    if settings.websocket_host and websocket.headers.get("host") != settings.websocket_host:
        raise AuthenticationError("Host not allowed")
    token = bearer_token(websocket.headers.get("authorization"))
    if not token:
        raise AuthenticationError()
    return decode_websocket_token(settings, token)


@router.websocket("/ws")
async def websocket_channel(websocket: WebSocket):
    settings: Settings = websocket.app.state.settings
    await websocket.accept()
    try:
        claims = verify_client(settings, websocket)
    except AuthenticationError as e:
        logger.warning(
            f"WebSocket rejected: {e.message}", extra={"service": "websocket"},
        )
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Unauthorized")
        return

    subject = claims.get("sub")
    logger.info(f"WebSocket connected ({subject})", extra={"service": "websocket"})
    try:
        while True:
            message = await websocket.receive_text()
            logger.info(f"WebSocket message: {message}", extra={"service": "websocket"})
    except WebSocketDisconnect as e:
        logger.info(
            f"WebSocket closed ({subject}, code={e.code})",
            extra={"service": "websocket"},
        )
