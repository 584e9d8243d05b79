"""Unit tests for the WebSocket ConnectionManager."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from quizpot.ws.manager import VALID_CHANNELS, ConnectionManager, is_valid_channel, tournament_room


@pytest.fixture
def mgr() -> ConnectionManager:
    return ConnectionManager()


def _make_ws(*, fail_send: bool = False) -> MagicMock:
    ws = AsyncMock()
    ws.accept = AsyncMock()
    if fail_send:
        ws.send_text = AsyncMock(side_effect=RuntimeError("connection closed"))
    else:
        ws.send_text = AsyncMock()
    return ws


class TestChannels:
    def test_fixed_channels(self) -> None:
        assert VALID_CHANNELS == {"tournaments", "presence", "wallet"}

    def test_tournament_rooms(self) -> None:
        assert tournament_room(42) == "tournament:42"
        assert is_valid_channel("tournament:42")
        assert not is_valid_channel("tournament:abc")
        assert not is_valid_channel("tournament:")
        assert not is_valid_channel("chat")


class TestPresence:
    @pytest.mark.asyncio
    async def test_first_connection_brings_user_online(self, mgr: ConnectionManager) -> None:
        ws1, ws2 = _make_ws(), _make_ws()
        assert await mgr.connect(ws1, "conn-1", user_id=7, username="alice") is True
        assert await mgr.connect(ws2, "conn-2", user_id=7, username="alice") is False
        ws1.accept.assert_awaited_once()
        assert mgr.is_online(7)
        assert mgr.user_connection_count(7) == 2
        assert mgr.online_users() == [7]

    @pytest.mark.asyncio
    async def test_last_disconnect_takes_user_offline(self, mgr: ConnectionManager) -> None:
        await mgr.connect(_make_ws(), "conn-1", user_id=7, username="alice")
        await mgr.connect(_make_ws(), "conn-2", user_id=7, username="alice")
        assert await mgr.disconnect("conn-1") is False
        assert mgr.is_online(7)
        assert await mgr.disconnect("conn-2") is True
        assert not mgr.is_online(7)
        assert mgr.online_users() == []

    @pytest.mark.asyncio
    async def test_disconnect_unknown_is_noop(self, mgr: ConnectionManager) -> None:
        assert await mgr.disconnect("nope") is False
        assert mgr.connection_count == 0


class TestSubscriptions:
    @pytest.mark.asyncio
    async def test_subscribe_and_cleanup(self, mgr: ConnectionManager) -> None:
        await mgr.connect(_make_ws(), "conn-1", user_id=1, username="a")
        assert await mgr.subscribe("conn-1", "tournaments") is True
        assert await mgr.subscribe("conn-1", "tournament:3") is True
        assert mgr.get_stats()["channels"] == {"tournaments": 1, "tournament:3": 1}

        await mgr.disconnect("conn-1")
        assert mgr.get_stats()["channels"] == {}

    @pytest.mark.asyncio
    async def test_invalid_channel(self, mgr: ConnectionManager) -> None:
        await mgr.connect(_make_ws(), "conn-1", user_id=1, username="a")
        assert await mgr.subscribe("conn-1", "admin") is False
        assert await mgr.subscribe("missing", "tournaments") is False

    @pytest.mark.asyncio
    async def test_unsubscribe(self, mgr: ConnectionManager) -> None:
        await mgr.connect(_make_ws(), "conn-1", user_id=1, username="a")
        await mgr.subscribe("conn-1", "presence")
        assert await mgr.unsubscribe("conn-1", "presence") is True
        assert "presence" not in mgr.get_stats()["channels"]


class TestDelivery:
    @pytest.mark.asyncio
    async def test_broadcast_reaches_subscribers_only(self, mgr: ConnectionManager) -> None:
        ws1, ws2 = _make_ws(), _make_ws()
        await mgr.connect(ws1, "conn-1", user_id=1, username="a")
        await mgr.connect(ws2, "conn-2", user_id=2, username="b")
        await mgr.subscribe("conn-1", "tournaments")

        sent = await mgr.broadcast_to_channel("tournaments", {"type": "tournament_started"})
        assert sent == 1
        ws2.send_text.assert_not_awaited()
        parsed = json.loads(ws1.send_text.call_args[0][0])
        assert parsed == {"channel": "tournaments", "data": {"type": "tournament_started"}}

    @pytest.mark.asyncio
    async def test_dead_connection_dropped(self, mgr: ConnectionManager) -> None:
        await mgr.connect(_make_ws(fail_send=True), "conn-dead", user_id=1, username="a")
        await mgr.subscribe("conn-dead", "tournaments")

        assert await mgr.broadcast_to_channel("tournaments", {"type": "x"}) == 0
        assert mgr.connection_count == 0
        assert not mgr.is_online(1)

    @pytest.mark.asyncio
    async def test_send_to_user_needs_subscription(self, mgr: ConnectionManager) -> None:
        ws1, ws2 = _make_ws(), _make_ws()
        await mgr.connect(ws1, "conn-1", user_id=42, username="a")
        await mgr.connect(ws2, "conn-2", user_id=42, username="a")
        await mgr.subscribe("conn-1", "wallet")

        assert await mgr.send_to_user(42, "wallet", {"type": "balance_update"}) == 1
        ws2.send_text.assert_not_awaited()
        assert await mgr.send_to_user(99, "wallet", {"type": "balance_update"}) == 0

    @pytest.mark.asyncio
    async def test_direct_send_ignores_subscriptions(self, mgr: ConnectionManager) -> None:
        ws1, ws2 = _make_ws(), _make_ws()
        await mgr.connect(ws1, "conn-1", user_id=42, username="a")
        await mgr.connect(ws2, "conn-2", user_id=42, username="a")

        assert await mgr.send_to_user_direct(42, {"type": "notification"}) == 2
        assert json.loads(ws2.send_text.call_args[0][0]) == {"type": "notification"}
        assert mgr._connections["conn-1"].messages_sent == 1
