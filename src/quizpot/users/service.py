"""User lookups and registration."""

from __future__ import annotations

import secrets
import string
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import select

from quizpot.db.models import User
from quizpot.errors import UserNotFound

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()

REFERRAL_CODE_LENGTH = 8
_CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_referral_code() -> str:
    return "".join(secrets.choice(_CODE_ALPHABET) for _ in range(REFERRAL_CODE_LENGTH))


async def get_user_by_id(db: AsyncSession, user_id: int) -> User | None:
    """Fetch a user by ID."""
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def require_user(db: AsyncSession, user_id: int) -> User:
    """Fetch a user by ID or raise UserNotFound."""
    user = await get_user_by_id(db, user_id)
    if user is None:
        raise UserNotFound(f"User {user_id} not found")
    return user


async def get_user_by_referral_code(db: AsyncSession, code: str) -> User | None:
    result = await db.execute(select(User).where(User.referral_code == code.upper()))
    return result.scalar_one_or_none()


async def create_user(
    db: AsyncSession,
    username: str,
    telegram_id: str | None = None,
    display_name: str | None = None,
    referral_code: str | None = None,
    is_admin: bool = False,
) -> User:
    """Register a user, linking a referrer when a valid code is supplied.

    An unknown referral code is ignored rather than rejected.
    """
    referrer = None
    if referral_code:
        referrer = await get_user_by_referral_code(db, referral_code)

    user = User(
        username=username,
        telegram_id=telegram_id,
        display_name=display_name or username,
        is_admin=is_admin,
        referral_code=generate_referral_code(),
        referred_by_id=referrer.id if referrer else None,
        created_at=datetime.now(timezone.utc),
        last_activity=datetime.now(timezone.utc),
    )
    db.add(user)
    await db.flush()
    logger.info("user_created", user_id=user.id, username=username, referred_by=user.referred_by_id)
    return user


# ---------------------------------------------------------------------------
# Progression
# ---------------------------------------------------------------------------

RANK_TITLES: list[tuple[int, str]] = [
    (50, "Diamond"),
    (30, "Platinum"),
    (20, "Gold"),
    (10, "Silver"),
    (1, "Bronze"),
]


def rank_title_for_level(level: int) -> str:
    for threshold, title in RANK_TITLES:
        if level >= threshold:
            return title
    return "Bronze"


def add_xp(user: User, amount: int) -> bool:
    """Add XP; a level costs ``level * 100`` XP. Returns True on level up.

    At most one level is gained per call, leftover XP carries over.
    """
    user.xp += amount
    user.total_xp += amount
    needed = user.level * 100
    if user.xp >= needed:
        user.level += 1
        user.xp -= needed
        user.rank_title = rank_title_for_level(user.level)
        return True
    return False
