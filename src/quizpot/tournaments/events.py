"""Tournament event fan-out.

Events are published on ``pubsub:tournament_update`` after the transition
has committed. The bridge forwards them to the ``tournaments`` channel and to
the tournament's own ``tournament:<id>`` room.
"""

from __future__ import annotations

from quizpot.db.models import Tournament
from quizpot.ws.publisher import TOURNAMENT_CHANNEL, publish_event

PARTICIPANT_JOINED = "participant_joined"
PARTICIPANT_LEFT = "participant_left"
TOURNAMENT_CREATED = "tournament_created"
TOURNAMENT_STARTED = "tournament_started"
TOURNAMENT_COMPLETED = "tournament_completed"
TOURNAMENT_CANCELLED = "tournament_cancelled"
SCORE_UPDATED = "score_updated"


async def publish_tournament_event(
    redis: object | None,
    event: str,
    tournament: Tournament,
    user_id: int | None = None,
    **extra: object,
) -> None:
    await publish_event(redis, TOURNAMENT_CHANNEL, event, {
        "tournament_id": tournament.id,
        "user_id": user_id,
        "participant_count": tournament.participant_count,
        "status": tournament.status,
        **extra,
    })
