"""Liveness, readiness and version probes (exempt from request rate limiting)."""

from fastapi import APIRouter, Depends, Response
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from quizpot.config import get_settings
from quizpot.dependencies import get_db
from quizpot.redis_client import get_redis_or_none

router = APIRouter()


async def _check_database(db: AsyncSession) -> str:
    try:
        await db.scalar(text("SELECT 1"))
    except SQLAlchemyError as exc:
        return f"error: {type(exc).__name__}"
    return "ok"


async def _check_redis() -> str:
    redis = get_redis_or_none()
    if redis is None:
        return "error: not initialized"
    try:
        await redis.ping()
    except RedisError as exc:
        return f"error: {type(exc).__name__}"
    return "ok"


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "healthy"}


@router.get("/ready")
async def readiness(response: Response, db: AsyncSession = Depends(get_db)) -> dict[str, object]:
    """Both the database and Redis must answer; otherwise 503 with the failing check."""
    checks = {"database": await _check_database(db), "redis": await _check_redis()}
    if all(state == "ok" for state in checks.values()):
        return {"status": "ready", "checks": checks}
    response.status_code = 503
    return {"status": "degraded", "checks": checks}


@router.get("/version")
async def version() -> dict[str, str]:
    settings = get_settings()
    return {"version": settings.app_version, "environment": settings.environment}
