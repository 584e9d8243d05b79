"""Tournament scheduler arq task.

Every minute:
- upcoming tournaments past their start time start when they have enough
  participants and ``auto_start`` is on, and are cancelled (with refunds)
  when under-subscribed;
- active tournaments past their end time are completed and paid out.

Transitions go through the service, so a tick racing an admin action loses
cleanly with InvalidTransition instead of double-applying.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from quizpot.database import get_session_factory
from quizpot.db.models import Tournament
from quizpot.errors import QuizPotError
from quizpot.tournaments import service
from quizpot.tournaments.state import ACTIVE, UPCOMING

logger = logging.getLogger(__name__)


@dataclass
class SchedulerResult:
    started: int = 0
    cancelled: int = 0
    completed: int = 0
    failed: int = 0


async def _due(db: AsyncSession, status: str, column, now: datetime) -> list[int]:  # noqa: ANN001
    result = await db.execute(
        select(Tournament.id).where(Tournament.status == status, column <= now).order_by(Tournament.id)
    )
    return list(result.scalars().all())


async def run_scheduler(db: AsyncSession, redis: object | None, now: datetime | None = None) -> SchedulerResult:
    """Apply due time-based transitions. One failure does not stop the rest."""
    now = now or datetime.now(timezone.utc)
    outcome = SchedulerResult()

    for tournament_id in await _due(db, UPCOMING, Tournament.start_time, now):
        try:
            tournament = await service.get_tournament(db, tournament_id)
            if tournament.participant_count < tournament.min_participants:
                await service.cancel_tournament(
                    db, redis, tournament_id, reason="Not enough participants", now=now,
                )
                outcome.cancelled += 1
            elif tournament.settings.get("auto_start", True):
                await service.start_tournament(db, redis, tournament_id, now=now)
                outcome.started += 1
        except QuizPotError as e:
            outcome.failed += 1
            logger.warning("Scheduler could not advance tournament %d: %s", tournament_id, e.message)

    for tournament_id in await _due(db, ACTIVE, Tournament.end_time, now):
        try:
            await service.complete_tournament(db, redis, tournament_id, now=now)
            outcome.completed += 1
        except QuizPotError as e:
            outcome.failed += 1
            logger.warning("Scheduler could not complete tournament %d: %s", tournament_id, e.message)

    if outcome.started or outcome.cancelled or outcome.completed:
        logger.info(
            "Tournament scheduler: started=%d cancelled=%d completed=%d failed=%d",
            outcome.started, outcome.cancelled, outcome.completed, outcome.failed,
        )
    return outcome


async def tournament_scheduler(ctx: dict) -> dict[str, int]:  # type: ignore[type-arg]
    """arq cron entry point. Runs every minute."""
    async with get_session_factory()() as db:
        outcome = await run_scheduler(db, ctx.get("redis"))
    return {
        "started": outcome.started,
        "cancelled": outcome.cancelled,
        "completed": outcome.completed,
        "failed": outcome.failed,
    }
