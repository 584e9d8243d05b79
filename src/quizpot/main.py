"""FastAPI application factory."""

import asyncio
import contextlib
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI

from quizpot.config import get_settings
from quizpot.database import close_db, init_db
from quizpot.health.router import router as health_router
from quizpot.ledger.router import router as ledger_router
from quizpot.middleware import setup_middleware
from quizpot.quiz.router import router as quiz_router
from quizpot.redis_client import close_redis, get_redis, init_redis
from quizpot.security.router import router as security_router
from quizpot.tournaments.router import router as tournaments_router
from quizpot.ws.bridge import PubSubBridge
from quizpot.ws.router import router as ws_router

ROUTERS: tuple[APIRouter, ...] = (
    ledger_router,
    tournaments_router,
    quiz_router,
    security_router,
    ws_router,
)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Open the database and Redis, and run the pub/sub bridge while serving."""
    settings = get_settings()
    await init_db(settings.database_url, pool_size=settings.db_pool_size)
    await init_redis(settings.redis_url, settings.redis_max_connections)

    bridge = PubSubBridge(get_redis())
    bridge_task = asyncio.create_task(bridge.start(), name="pubsub-bridge")
    try:
        yield
    finally:
        await bridge.stop()
        bridge_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await bridge_task
        await close_db()
        await close_redis()


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(
        title="QuizPot API",
        description="Quizzes, prize-pool tournaments and a wallet ledger for the QuizPot WebApp",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )
    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    for router in ROUTERS:
        app.include_router(router)
    return app


app = create_app()
