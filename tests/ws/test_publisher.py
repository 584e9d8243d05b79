"""Event publishing over Redis pub/sub."""

from __future__ import annotations

import asyncio
import json
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from quizpot.ws.publisher import TOURNAMENT_CHANNEL, publish_event, push_balance_update, push_to_user

pytestmark = pytest.mark.asyncio


async def _next_message(pubsub) -> dict:
    for _ in range(50):
        message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=0.1)
        if message is not None:
            return message
        await asyncio.sleep(0.01)
    raise AssertionError("no message received")


class TestPublish:
    async def test_broadcast_envelope(self, redis) -> None:
        pubsub = redis.pubsub()
        await pubsub.subscribe(TOURNAMENT_CHANNEL)

        await publish_event(redis, TOURNAMENT_CHANNEL, "tournament_started", {"tournament_id": 3})

        message = await _next_message(pubsub)
        payload = json.loads(message["data"])
        assert payload["event"] == "tournament_started"
        assert payload["data"] == {"tournament_id": 3}
        assert payload["timestamp"]
        await pubsub.aclose()

    async def test_balance_update_to_user(self, redis) -> None:
        pubsub = redis.pubsub()
        await pubsub.psubscribe("ws:user:*")

        user = SimpleNamespace(
            id=42, balance=Decimal("15.50"), playable_balance=Decimal("12.50"), bonus_balance=Decimal("3.00"),
        )
        await push_balance_update(redis, user)

        message = await _next_message(pubsub)
        assert message["channel"] == "ws:user:42"
        assert json.loads(message["data"]) == {
            "event": "balance_update",
            "data": {"balance": "15.50", "playable_balance": "12.50", "bonus_balance": "3.00"},
        }
        await pubsub.aclose()

    async def test_without_redis_is_noop(self) -> None:
        await publish_event(None, TOURNAMENT_CHANNEL, "x", {})
        await push_to_user(None, 1, "x", {})

    async def test_failures_are_logged_not_raised(self, caplog) -> None:
        broken = AsyncMock()
        broken.publish = AsyncMock(side_effect=RedisConnectionError("down"))

        await publish_event(broken, TOURNAMENT_CHANNEL, "tournament_started", {})
        await push_to_user(broken, 1, "balance_update", {})

        assert "Failed to publish tournament_started" in caplog.text
        assert "Failed to push balance_update via ws:user:1" in caplog.text
