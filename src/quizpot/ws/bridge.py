"""Bridges Redis pub/sub to WebSocket clients.

Domain services publish on ``pubsub:*`` channels (broadcasts) and
``ws:user:<id>`` (personal messages) after their commits; this bridge fans
them out to the connected clients of this instance.
"""

import asyncio
import json

import redis.asyncio as aioredis
import structlog

from quizpot.ws.manager import ConnectionManager, manager, tournament_room

logger = structlog.get_logger()

# Map Redis pub/sub channels to WebSocket channels
CHANNEL_MAP: dict[str, str] = {
    "pubsub:tournament_update": "tournaments",
    "pubsub:presence": "presence",
}

# Personal events that only reach connections subscribed to a channel
USER_EVENT_CHANNELS: dict[str, str] = {
    "balance_update": "wallet",
}

USER_PATTERN = "ws:user:*"


class PubSubBridge:
    """Subscribes to Redis pub/sub and pushes messages to WebSocket clients."""

    def __init__(self, redis_client: aioredis.Redis, connections: ConnectionManager = manager) -> None:
        self.redis = redis_client
        self.connections = connections
        self._running = False

    async def start(self) -> None:
        """Listen until ``stop()`` is called or the task is cancelled."""
        self._running = True
        pubsub = self.redis.pubsub()
        await pubsub.subscribe(*CHANNEL_MAP.keys())
        await pubsub.psubscribe(USER_PATTERN)
        logger.info("pubsub_bridge_started", channels=list(CHANNEL_MAP), patterns=[USER_PATTERN])

        try:
            while self._running:
                message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if message is not None:
                    await self.dispatch(message)
        except asyncio.CancelledError:
            pass
        finally:
            await pubsub.unsubscribe()
            await pubsub.punsubscribe()
            await pubsub.aclose()
            logger.info("pubsub_bridge_stopped")

    async def stop(self) -> None:
        """Signal the bridge to stop."""
        self._running = False

    async def dispatch(self, message: dict) -> int:
        """Route one pub/sub message. Returns the number of deliveries."""
        redis_channel = message.get("channel", "")
        if isinstance(redis_channel, bytes):
            redis_channel = redis_channel.decode()

        try:
            data = message.get("data", b"")
            if isinstance(data, bytes):
                data = data.decode()
            payload = json.loads(data)
        except (json.JSONDecodeError, UnicodeDecodeError, TypeError):
            logger.warning("pubsub_invalid_message", channel=redis_channel)
            return 0
        if not isinstance(payload, dict):
            logger.warning("pubsub_invalid_message", channel=redis_channel)
            return 0

        # ── Per-user messages (pattern match on ws:user:*) ──
        if message.get("type") == "pmessage" and redis_channel.startswith("ws:user:"):
            try:
                user_id = int(redis_channel.rsplit(":", 1)[-1])
            except ValueError:
                logger.warning("pubsub_invalid_user_id", channel=redis_channel)
                return 0
            return await self._deliver_to_user(user_id, payload)

        # ── Broadcast messages (exact channel match) ──
        ws_channel = CHANNEL_MAP.get(redis_channel)
        if ws_channel is None:
            return 0

        event = {
            "type": payload.get("event", redis_channel.split(":")[-1]),
            "payload": payload.get("data", {}),
            "timestamp": payload.get("timestamp"),
        }
        sent = await self.connections.broadcast_to_channel(ws_channel, event)

        tournament_id = event["payload"].get("tournament_id") if isinstance(event["payload"], dict) else None
        if ws_channel == "tournaments" and tournament_id is not None:
            sent += await self.connections.broadcast_to_channel(tournament_room(tournament_id), event)

        if sent > 0:
            logger.debug("pubsub_broadcast", channel=ws_channel, event=event["type"], recipients=sent)
        return sent

    async def _deliver_to_user(self, user_id: int, payload: dict) -> int:
        event_type = payload.get("event", "notification")
        event = {"type": event_type, "payload": payload.get("data", payload)}

        channel = USER_EVENT_CHANNELS.get(event_type)
        if channel is not None:
            sent = await self.connections.send_to_user(user_id, channel, event)
        else:
            sent = await self.connections.send_to_user_direct(user_id, event)
        if sent > 0:
            logger.debug("user_notification_sent", user_id=user_id, event=event_type, recipients=sent)
        return sent
