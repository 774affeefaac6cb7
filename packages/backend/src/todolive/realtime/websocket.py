"""WebSocket endpoint — real-time event delivery to frontend clients.

Learn: Each client connects to /ws?token=JWT (or sends an
Authorization: Bearer header). The handler:
1. Authenticates the token *before* accepting; failures close with 4001
2. Registers the socket in the user's room (one room per user, many tabs)
3. Records presence in the database (best-effort)
4. Reads client frames until disconnect, then unregisters

Outbound delivery does not happen here: the Broadcaster writes straight
to the socket's send_text, and the hub's heartbeat pings every socket.
This is a long-lived connection — one per browser tab.
"""

import json
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from todolive.auth.jwt import TokenError, verify_token
from todolive.events.types import CLIENT_RELAYED_EVENTS, PING, PONG
from todolive.realtime.broadcaster import encode_frame
from todolive.realtime.registry import Connection

logger = structlog.get_logger()
router = APIRouter()

AUTH_FAILED_CODE = 4001


def _extract_token(websocket: WebSocket) -> Optional[str]:
    token = websocket.query_params.get("token")
    if token:
        return token
    header = websocket.headers.get("authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return None


def _authenticate(token: Optional[str]) -> Optional[str]:
    """Return the user id for a valid access token, else None."""
    if not token:
        return None
    try:
        claims = verify_token(token)
    except TokenError:
        return None
    if claims.get("type") != "access":
        return None
    try:
        return str(uuid.UUID(str(claims["sub"])))
    except ValueError:
        return None


async def handle_client_frame(hub, connection: Connection, raw: str) -> None:
    """Dispatch one inbound frame. Malformed frames are ignored."""
    try:
        message = json.loads(raw)
    except json.JSONDecodeError:
        return
    if not isinstance(message, dict):
        return

    event = message.get("type")
    if event == PING:
        await connection.send(encode_frame(PONG, {"timestamp": datetime.now(timezone.utc)}))
        return
    if event == PONG:
        return
    if event not in CLIENT_RELAYED_EVENTS:
        logger.debug("ws.unknown_event", user_id=connection.user_id, event_type=event)
        return

    data: Any = message.get("data")
    if not isinstance(data, dict):
        data = {}
    await hub.broadcaster.broadcast_to_user(
        connection.user_id,
        event,
        {**data, "user_id": connection.user_id, "timestamp": datetime.now(timezone.utc)},
    )


@router.websocket("/ws")
async def realtime_websocket(websocket: WebSocket):
    """WebSocket endpoint for a user's realtime events.

    Learn: Authentication happens before accept(), so an unauthenticated
    client never joins a room. Closing before accept is turned into a
    rejected handshake by the ASGI server; the 4001 code is what clients
    see as "re-login required".
    """
    hub = websocket.app.state.hub

    # ── Authentication ──────────────────────────────────────
    token = _extract_token(websocket)
    user_id = _authenticate(token)
    if user_id is None:
        reason = "Authentication token required" if not token else "Invalid or expired token"
        logger.info("ws.auth_failed", reason=reason)
        await websocket.close(code=AUTH_FAILED_CODE, reason=reason)
        return

    # ── Connection accepted ─────────────────────────────────
    await websocket.accept()

    socket_id = uuid.uuid4().hex
    connection = Connection(
        user_id=user_id,
        socket_id=socket_id,
        send=websocket.send_text,
        close=websocket.close,
        user={"id": user_id},
    )
    hub.registry.register(connection)
    await hub.track_presence(user_id, socket_id, online=True)

    try:
        while True:
            raw = await websocket.receive_text()
            connection.touch()
            await handle_client_frame(hub, connection, raw)
    except WebSocketDisconnect:
        pass
    finally:
        hub.registry.unregister(user_id, socket_id)
        await hub.track_presence(user_id, socket_id, online=False)
        if websocket.client_state == WebSocketState.CONNECTED:
            try:
                await websocket.close()
            except RuntimeError:
                pass
