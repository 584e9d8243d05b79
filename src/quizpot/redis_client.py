"""Process-wide Redis client.

The API process owns one decoded client for the rate limiter, the quiz
limiter store and pub/sub. Workers build their own with ``connect`` and
keep it in the arq context.
"""

import redis.asyncio as redis

_client: redis.Redis | None = None


def connect(url: str, max_connections: int) -> redis.Redis:
    return redis.from_url(  # type: ignore[no-untyped-call]
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=max_connections,
    )


async def init_redis(url: str, max_connections: int = 50) -> None:
    global _client  # noqa: PLW0603
    _client = connect(url, max_connections)


def set_redis(client: redis.Redis | None) -> None:
    """Install an already-built client, or uninstall with None."""
    global _client  # noqa: PLW0603
    _client = client


async def close_redis() -> None:
    global _client  # noqa: PLW0603
    if _client is not None:
        await _client.aclose()
        _client = None


def get_redis() -> redis.Redis:
    """The installed client (FastAPI dependency). Raises RuntimeError before startup."""
    if _client is None:
        msg = "Redis not initialized. Call init_redis() first."
        raise RuntimeError(msg)
    return _client


def get_redis_or_none() -> redis.Redis | None:
    """The installed client, or None where a missing Redis only disables a feature."""
    return _client
