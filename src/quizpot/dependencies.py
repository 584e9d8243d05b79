"""Shared FastAPI dependencies."""

from collections.abc import AsyncGenerator

from fastapi import Depends

from quizpot.database import get_session as _get_session
from quizpot.redis_client import get_redis as _get_redis
from quizpot.security.service import QuizSecurityService

get_db = _get_session


async def get_redis_dep() -> AsyncGenerator[object, None]:
    """Yield the Redis client as a FastAPI dependency."""
    yield _get_redis()


async def get_security_service(redis: object = Depends(get_redis_dep)) -> QuizSecurityService:
    """Quiz security gate reading its rules from Redis on every check."""
    return QuizSecurityService(redis)
