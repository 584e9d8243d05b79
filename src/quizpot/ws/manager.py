"""WebSocket connection manager.

Tracks active connections, their channel subscriptions and which users are
online. Fixed channels are ``tournaments``, ``presence`` and ``wallet``;
each tournament also has its own ``tournament:<id>`` room.
"""

import json
import re
import time
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field

import structlog
from fastapi import WebSocket

logger = structlog.get_logger()

VALID_CHANNELS = {"tournaments", "presence", "wallet"}
_ROOM_RE = re.compile(r"^tournament:\d+$")


def is_valid_channel(channel: str) -> bool:
    return channel in VALID_CHANNELS or bool(_ROOM_RE.match(channel))


def tournament_room(tournament_id: int) -> str:
    return f"tournament:{tournament_id}"


@dataclass
class ClientConnection:
    """Represents a single WebSocket client."""

    websocket: WebSocket
    user_id: int
    username: str
    subscriptions: set[str] = field(default_factory=set)
    connected_at: float = field(default_factory=time.time)
    messages_sent: int = 0


class ConnectionManager:
    """Manages all active WebSocket connections.

    Safe for asyncio via the single-threaded event loop.
    """

    def __init__(self) -> None:
        self._connections: dict[str, ClientConnection] = {}  # conn_id -> client
        self._channels: dict[str, set[str]] = defaultdict(set)  # channel -> {conn_ids}
        self._user_connections: dict[int, set[str]] = defaultdict(set)  # user_id -> {conn_ids}

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def user_connection_count(self, user_id: int) -> int:
        return len(self._user_connections.get(user_id, ()))

    def is_online(self, user_id: int) -> bool:
        return user_id in self._user_connections

    def online_users(self) -> list[int]:
        return sorted(self._user_connections)

    async def connect(self, websocket: WebSocket, conn_id: str, user_id: int, username: str) -> bool:
        """Accept a connection. Returns True when the user just came online."""
        await websocket.accept()
        came_online = user_id not in self._user_connections
        self._connections[conn_id] = ClientConnection(websocket=websocket, user_id=user_id, username=username)
        self._user_connections[user_id].add(conn_id)
        logger.info("ws_connected", conn_id=conn_id, user_id=user_id, came_online=came_online)
        return came_online

    async def disconnect(self, conn_id: str) -> bool:
        """Drop a connection. Returns True when the user's last connection closed."""
        client = self._connections.pop(conn_id, None)
        if client is None:
            return False

        for channel in client.subscriptions:
            self._leave_channel(channel, conn_id)

        went_offline = False
        self._user_connections[client.user_id].discard(conn_id)
        if not self._user_connections[client.user_id]:
            del self._user_connections[client.user_id]
            went_offline = True

        logger.info("ws_disconnected", conn_id=conn_id, user_id=client.user_id, went_offline=went_offline)
        return went_offline

    async def subscribe(self, conn_id: str, channel: str) -> bool:
        """Subscribe a connection to a channel. Returns False if invalid."""
        client = self._connections.get(conn_id)
        if client is None or not is_valid_channel(channel):
            return False

        client.subscriptions.add(channel)
        self._channels[channel].add(conn_id)
        logger.debug("ws_subscribed", conn_id=conn_id, channel=channel)
        return True

    async def unsubscribe(self, conn_id: str, channel: str) -> bool:
        client = self._connections.get(conn_id)
        if client is None:
            return False

        client.subscriptions.discard(channel)
        self._leave_channel(channel, conn_id)
        return True

    def _leave_channel(self, channel: str, conn_id: str) -> None:
        members = self._channels.get(channel)
        if members is None:
            return
        members.discard(conn_id)
        if not members:
            del self._channels[channel]

    async def _send(self, conn_id: str, payload: str) -> bool:
        client = self._connections.get(conn_id)
        if client is None:
            return False
        try:
            await client.websocket.send_text(payload)
        except Exception:
            logger.debug("ws_send_failed", conn_id=conn_id, exc_info=True)
            await self.disconnect(conn_id)
            return False
        client.messages_sent += 1
        return True

    async def _fan_out(self, conn_ids: Iterable[str], payload: str) -> int:
        sent = 0
        for conn_id in list(conn_ids):
            if await self._send(conn_id, payload):
                sent += 1
        return sent

    async def broadcast_to_channel(self, channel: str, message: dict) -> int:
        """Send a message to every subscriber of a channel. Returns recipients."""
        payload = json.dumps({"channel": channel, "data": message})
        return await self._fan_out(self._channels.get(channel, ()), payload)

    async def send_to_user(self, user_id: int, channel: str, message: dict) -> int:
        """Send to the user's connections that are subscribed to ``channel``."""
        subscribed = [
            conn_id for conn_id in self._user_connections.get(user_id, ())
            if channel in self._connections[conn_id].subscriptions
        ]
        return await self._fan_out(subscribed, json.dumps({"channel": channel, "data": message}))

    async def send_to_user_direct(self, user_id: int, message: dict) -> int:
        """Send to all of the user's connections regardless of subscriptions."""
        return await self._fan_out(self._user_connections.get(user_id, ()), json.dumps(message))

    def get_stats(self) -> dict:
        """Get connection statistics."""
        return {
            "total_connections": len(self._connections),
            "unique_users": len(self._user_connections),
            "channels": {ch: len(conns) for ch, conns in self._channels.items() if conns},
        }


# Global singleton
manager = ConnectionManager()
