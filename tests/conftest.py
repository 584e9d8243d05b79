"""Shared test fixtures.

The suite runs against in-memory SQLite (aiosqlite, one shared connection)
and fakeredis, so it needs no external services. Setup data is committed
before it is used through the API, because every request opens its own
session on the same connection.
"""

from __future__ import annotations

import os
import tempfile
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from itertools import count
from typing import Any

import pytest
import pytest_asyncio
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from fakeredis import aioredis as fakeredis
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.pool import StaticPool

from quizpot.auth.jwt import create_access_token, reset_keys
from quizpot.config import get_settings
from quizpot.database import close_db, get_engine, get_session_factory, init_db
from quizpot.db.base import Base
from quizpot.db.models import Question, Tournament, User
from quizpot.ledger.entries import AdminAdjustment
from quizpot.ledger.primitives import credit
from quizpot.redis_client import set_redis


def _ensure_test_keys() -> None:
    """Generate an RSA key pair for signing test tokens."""
    tmpdir = tempfile.mkdtemp(prefix="quizpot_test_keys_")
    private_path = os.path.join(tmpdir, "jwt_private.pem")
    public_path = os.path.join(tmpdir, "jwt_public.pem")

    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    with open(private_path, "wb") as f:
        f.write(key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        ))
    with open(public_path, "wb") as f:
        f.write(key.public_key().public_bytes(
            serialization.Encoding.PEM,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        ))

    os.environ["QP_JWT_PRIVATE_KEY_PATH"] = private_path
    os.environ["QP_JWT_PUBLIC_KEY_PATH"] = public_path
    os.environ["QP_LOG_FORMAT"] = "console"
    get_settings.cache_clear()
    reset_keys()


@pytest.fixture(scope="session", autouse=True)
def jwt_keys() -> None:
    _ensure_test_keys()


@pytest_asyncio.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    """Fresh in-memory schema per test."""
    await init_db(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with get_session_factory()() as session:
        yield session
    await close_db()


@pytest_asyncio.fixture
async def redis() -> AsyncGenerator[fakeredis.FakeRedis, None]:
    client = fakeredis.FakeRedis(decode_responses=True)
    await client.flushall()
    set_redis(client)
    yield client
    set_redis(None)
    await client.aclose()


@pytest_asyncio.fixture
async def client(db: AsyncSession, redis: fakeredis.FakeRedis) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client over the ASGI app, sharing the test database and Redis."""
    from quizpot.main import create_app

    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def auth() -> Callable[[User], dict[str, str]]:
    """Bearer headers for a user."""

    def _headers(user: User) -> dict[str, str]:
        token = create_access_token(user.id, user.username, is_admin=user.is_admin)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def make_user(db: AsyncSession) -> Callable[..., Awaitable[User]]:
    """Create and commit a user, funding it through the ledger."""
    seq = count(1)

    async def _make(
        username: str | None = None,
        playable: str | Decimal = "0",
        bonus: str | Decimal = "0",
        **fields: Any,  # noqa: ANN401
    ) -> User:
        n = next(seq)
        user = User(
            username=username or f"player{n}",
            display_name=username or f"Player {n}",
            referral_code=f"REF{n:05d}",
            **fields,
        )
        db.add(user)
        await db.flush()
        for bucket, amount in (("playable", Decimal(playable)), ("bonus", Decimal(bonus))):
            if amount > 0:
                await credit(db, user, amount, AdminAdjustment(description="Test funding", admin_id=user.id), bucket)
        await db.commit()
        return user

    return _make


@pytest.fixture
def make_question(db: AsyncSession) -> Callable[..., Awaitable[Question]]:
    seq = count(1)

    async def _make(
        difficulty: str = "medium",
        category: str = "general",
        correct_answer: int = 0,
        points: int = 10,
        quality_score: float = 70.0,
        **fields: Any,  # noqa: ANN401
    ) -> Question:
        n = next(seq)
        question = Question(
            question=f"Question {n}?",
            options=["A", "B", "C", "D"],
            correct_answer=correct_answer,
            difficulty=difficulty,
            category=category,
            points=points,
            quality_score=quality_score,
            **fields,
        )
        db.add(question)
        await db.commit()
        return question

    return _make


@pytest.fixture
def schedule() -> Callable[..., dict[str, datetime]]:
    """Tournament time window with registration open right now."""

    def _window(now: datetime | None = None) -> dict[str, datetime]:
        now = now or datetime.now(timezone.utc)
        return {
            "registration_start": now - timedelta(hours=1),
            "registration_end": now + timedelta(hours=1),
            "start_time": now + timedelta(hours=2),
            "end_time": now + timedelta(hours=3),
        }

    return _window


@pytest.fixture
def reload(db: AsyncSession) -> Callable[..., Awaitable[Any]]:
    """Re-read an object after it changed through another session or a rollback."""

    async def _reload(model: type, ident: int) -> Any:  # noqa: ANN401
        if model is Tournament:
            result = await db.execute(
                select(Tournament)
                .where(Tournament.id == ident)
                .options(selectinload(Tournament.participants), selectinload(Tournament.questions))
                .execution_options(populate_existing=True)
            )
            return result.scalar_one()
        return await db.get(model, ident, populate_existing=True)

    return _reload
