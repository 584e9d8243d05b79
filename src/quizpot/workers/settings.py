"""arq worker settings module.

Import path for arq CLI: arq quizpot.workers.settings.WorkerSettings
"""

from __future__ import annotations

import logging

import redis.asyncio as aioredis
from arq import cron
from arq.connections import RedisSettings

from quizpot.config import get_settings
from quizpot.database import close_db, init_db
from quizpot.redis_client import connect
from quizpot.security.worker import security_cleanup
from quizpot.tournaments.worker import tournament_scheduler

logger = logging.getLogger(__name__)


async def startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Open the database engine and a decoded Redis client for the tasks."""
    settings = get_settings()
    await init_db(settings.database_url, pool_size=5)
    ctx["redis"] = connect(settings.redis_url, max_connections=20)
    logger.info("Worker started (environment=%s)", settings.environment)


async def shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    redis_client: aioredis.Redis | None = ctx.get("redis")
    if redis_client:
        await redis_client.aclose()
    await close_db()
    logger.info("Worker shut down")


class WorkerSettings:
    """arq worker settings: tournament scheduler and security cleanup."""

    functions = [tournament_scheduler, security_cleanup]
    cron_jobs = [
        cron(tournament_scheduler, second=0, run_at_startup=True),
        cron(security_cleanup, minute=5, second=0),
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = RedisSettings.from_dsn(get_settings().redis_url)
    max_jobs = 4
    job_timeout = 300
