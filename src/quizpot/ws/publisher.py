"""Publish domain events over Redis pub/sub for WebSocket delivery.

Called after the originating unit of work has committed. Publishing is
fire-and-forget: failures are logged and never propagate to the caller.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)

TOURNAMENT_CHANNEL = "pubsub:tournament_update"
PRESENCE_CHANNEL = "pubsub:presence"


def _default(value: Any) -> str:  # noqa: ANN401
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


async def publish_event(redis: object | None, channel: str, event: str, data: dict[str, Any]) -> None:
    """Publish a broadcast event to a bridge channel."""
    if redis is None:
        return
    payload = {
        "event": event,
        "data": data,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    try:
        await redis.publish(channel, json.dumps(payload, default=_default))  # type: ignore[union-attr]
    except Exception:
        logger.warning("Failed to publish %s on %s", event, channel, exc_info=True)


async def push_to_user(redis: object | None, user_id: int, event: str, data: dict[str, Any]) -> None:
    """Publish a per-user message to ws:user:{user_id}.

    The bridge pattern-subscribes to ``ws:user:*`` and routes the message to
    all of the user's active WebSocket connections.
    """
    if redis is None:
        return
    try:
        await redis.publish(  # type: ignore[union-attr]
            f"ws:user:{user_id}",
            json.dumps({"event": event, "data": data}, default=_default),
        )
    except Exception:
        logger.warning("Failed to push %s via ws:user:%s", event, user_id, exc_info=True)


async def push_balance_update(redis: object | None, user: Any) -> None:  # noqa: ANN401
    """Send the user's current balances after a committed ledger change."""
    await push_to_user(redis, user.id, "balance_update", {
        "balance": str(user.balance),
        "playable_balance": str(user.playable_balance),
        "bonus_balance": str(user.bonus_balance),
    })
