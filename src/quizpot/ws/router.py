"""WebSocket endpoint with JWT authentication and channel multiplexing."""

import json
import uuid

import jwt
import structlog
from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect

from quizpot.auth.dependencies import get_current_admin
from quizpot.auth.jwt import decode_access_token
from quizpot.config import get_settings
from quizpot.db.models import User
from quizpot.redis_client import get_redis_or_none
from quizpot.ws.manager import manager
from quizpot.ws.publisher import PRESENCE_CHANNEL, publish_event

logger = structlog.get_logger()

router = APIRouter()


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    token: str = Query(...),
) -> None:
    """Single WebSocket endpoint with JWT authentication and channel multiplexing.

    Protocol:
        Client -> Server:
            {"action": "subscribe", "channel": "tournaments"}
            {"action": "subscribe", "channel": "tournament:42"}
            {"action": "unsubscribe", "channel": "tournaments"}
            {"action": "ping"}

        Server -> Client:
            {"channel": "tournaments", "data": {"type": ..., "payload": {...}}}
            {"type": "balance_update", "payload": {...}}
            {"type": "pong"}
            {"type": "error", "message": "..."}
            {"type": "subscribed", "channel": "tournaments"}
            {"type": "unsubscribed", "channel": "tournaments"}
    """
    try:
        claims = decode_access_token(token)
    except jwt.InvalidTokenError as e:
        await websocket.close(code=4001, reason=f"Authentication failed: {e}")
        return
    user_id, username = claims.user_id, claims.username

    settings = get_settings()
    if manager.user_connection_count(user_id) >= settings.ws_max_connections_per_user:
        await websocket.close(code=4008, reason="Too many connections")
        return

    conn_id = str(uuid.uuid4())
    redis = get_redis_or_none()
    if await manager.connect(websocket, conn_id, user_id, username):
        await publish_event(redis, PRESENCE_CHANNEL, "user_online", {"user_id": user_id, "username": username})

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                msg = json.loads(raw)
            except json.JSONDecodeError:
                await websocket.send_json({"type": "error", "message": "Invalid JSON"})
                continue
            if not isinstance(msg, dict):
                await websocket.send_json({"type": "error", "message": "Invalid message"})
                continue

            action = msg.get("action")

            if action == "subscribe":
                channel = msg.get("channel", "")
                if await manager.subscribe(conn_id, channel):
                    await websocket.send_json({"type": "subscribed", "channel": channel})
                else:
                    await websocket.send_json({"type": "error", "message": f"Invalid channel: {channel}"})

            elif action == "unsubscribe":
                channel = msg.get("channel", "")
                await manager.unsubscribe(conn_id, channel)
                await websocket.send_json({"type": "unsubscribed", "channel": channel})

            elif action == "ping":
                await websocket.send_json({"type": "pong"})

            else:
                await websocket.send_json({"type": "error", "message": f"Unknown action: {action}"})

    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception("ws_error", conn_id=conn_id)
    finally:
        if await manager.disconnect(conn_id):
            await publish_event(redis, PRESENCE_CHANNEL, "user_offline", {"user_id": user_id, "username": username})


@router.get("/api/v1/ws/stats", tags=["WebSocket"])
async def ws_stats(admin: User = Depends(get_current_admin)) -> dict:
    """Connection statistics for this instance."""
    return {**manager.get_stats(), "online_users": manager.online_users()}
