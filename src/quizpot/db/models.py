"""ORM models.

Tables are created by the Alembic migrations in ``alembic/versions``; the
Postgres schema additionally enforces ``balance = playable_balance +
bonus_balance`` with a CHECK constraint.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from quizpot.db.base import Base, BigIntPK, JSONType, Money, UTCDateTime, utcnow
from quizpot.ledger.entries import TRANSACTION_STATUSES, TRANSACTION_TYPES

ZERO = Decimal("0.00")


def _one_of(column: str, values: tuple[str, ...]) -> str:
    return f"{column} IN (" + ", ".join(f"'{v}'" for v in values) + ")"


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class User(Base):
    """Aggregate root for money and progression."""

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("playable_balance >= 0", name="users_playable_nonneg"),
        CheckConstraint("bonus_balance >= 0", name="users_bonus_nonneg"),
        CheckConstraint("balance = playable_balance + bonus_balance", name="users_balance_sum"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    telegram_id: Mapped[str | None] = mapped_column(String(32), unique=True, nullable=True)
    username: Mapped[str] = mapped_column(String(30), unique=True, nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_blocked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    blocked_reason: Mapped[str | None] = mapped_column(String(256), nullable=True)
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    withdrawal_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    has_deposited: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # --- Money ---
    balance: Mapped[Decimal] = mapped_column(Money, default=ZERO, nullable=False)
    playable_balance: Mapped[Decimal] = mapped_column(Money, default=ZERO, nullable=False)
    bonus_balance: Mapped[Decimal] = mapped_column(Money, default=ZERO, nullable=False)
    total_earned: Mapped[Decimal] = mapped_column(Money, default=ZERO, nullable=False)
    total_deposited: Mapped[Decimal] = mapped_column(Money, default=ZERO, nullable=False)
    total_withdrawn: Mapped[Decimal] = mapped_column(Money, default=ZERO, nullable=False)
    ledger_version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # --- Progression ---
    xp: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_xp: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    level: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    rank_title: Mapped[str] = mapped_column(String(32), default="Bronze", nullable=False)
    questions_answered: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    correct_answers: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    average_score: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)

    # --- Referral ---
    referral_code: Mapped[str | None] = mapped_column(String(16), unique=True, nullable=True)
    referred_by_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=True)
    referral_rewarded: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    last_activity: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


class Transaction(Base):
    """Immutable-once-completed record of a balance change."""

    __tablename__ = "transactions"
    __table_args__ = (
        CheckConstraint("amount >= 0", name="transactions_amount_nonneg"),
        CheckConstraint("fee >= 0", name="transactions_fee_nonneg"),
        CheckConstraint(_one_of("type", TRANSACTION_TYPES), name="transactions_type"),
        CheckConstraint(_one_of("status", TRANSACTION_STATUSES), name="transactions_status"),
        Index("idx_transactions_user_created", "user_id", "created_at"),
        Index("idx_transactions_status", "status"),
        Index("idx_transactions_tournament", "tournament_id"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    reference: Mapped[str] = mapped_column(String(40), unique=True, nullable=False)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=False)
    type: Mapped[str] = mapped_column(String(24), nullable=False)
    category: Mapped[str] = mapped_column(String(16), nullable=False)
    bucket: Mapped[str] = mapped_column(String(16), nullable=False, default="playable")
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    fee: Mapped[Decimal] = mapped_column(Money, default=ZERO, nullable=False)
    net_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    currency: Mapped[str] = mapped_column(String(10), default="USDT", nullable=False)
    balance_before: Mapped[Decimal] = mapped_column(Money, nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(Money, nullable=False)
    status: Mapped[str] = mapped_column(String(16), default="pending", nullable=False)
    payment_method: Mapped[str] = mapped_column(String(16), default="internal", nullable=False)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    ledger_seq: Mapped[int | None] = mapped_column(Integer, nullable=True)

    tournament_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("tournaments.id", ondelete="SET NULL"), nullable=True,
    )
    tournament_rank: Mapped[int | None] = mapped_column(Integer, nullable=True)

    network: Mapped[str | None] = mapped_column(String(16), nullable=True)
    tx_hash: Mapped[str | None] = mapped_column(String(128), nullable=True)
    from_address: Mapped[str | None] = mapped_column(String(128), nullable=True)
    to_address: Mapped[str | None] = mapped_column(String(128), nullable=True)

    processed_by_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    admin_notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    tx_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSONType, default=dict, nullable=False)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


# ---------------------------------------------------------------------------
# Quiz questions
# ---------------------------------------------------------------------------


class Question(Base):
    """Multiple-choice quiz question with usage statistics."""

    __tablename__ = "questions"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    question: Mapped[str] = mapped_column(String(500), nullable=False)
    options: Mapped[list[str]] = mapped_column(JSONType, nullable=False)
    correct_answer: Mapped[int] = mapped_column(Integer, nullable=False)
    explanation: Mapped[str | None] = mapped_column(Text, nullable=True)
    difficulty: Mapped[str] = mapped_column(String(8), default="medium", nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    points: Mapped[int] = mapped_column(Integer, default=10, nullable=False)
    time_limit: Mapped[int] = mapped_column(Integer, default=30, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    times_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    correct_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    incorrect_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    average_time: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    quality_score: Mapped[float] = mapped_column(Float, default=50.0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)


# ---------------------------------------------------------------------------
# Tournaments
# ---------------------------------------------------------------------------


class Tournament(Base):
    """Scored competition over a fixed question set."""

    __tablename__ = "tournaments"
    __table_args__ = (
        CheckConstraint("min_participants >= 2", name="tournaments_min_participants"),
        CheckConstraint("max_participants >= min_participants", name="tournaments_max_ge_min"),
        Index("idx_tournaments_status_start", "status", "start_time"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    difficulty: Mapped[str] = mapped_column(String(8), default="medium", nullable=False)

    entry_fee: Mapped[Decimal] = mapped_column(Money, nullable=False)
    prize_pool: Mapped[Decimal] = mapped_column(Money, nullable=False)
    app_fee: Mapped[Decimal] = mapped_column(Money, default=ZERO, nullable=False)
    max_participants: Mapped[int] = mapped_column(Integer, nullable=False)
    min_participants: Mapped[int] = mapped_column(Integer, default=2, nullable=False)

    status: Mapped[str] = mapped_column(String(16), default="upcoming", nullable=False)
    phase: Mapped[str] = mapped_column(String(16), default="registration", nullable=False)

    registration_start: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    registration_end: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    start_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    end_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    actual_start_time: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    actual_end_time: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    question_count: Mapped[int] = mapped_column(Integer, default=10, nullable=False)
    time_per_question: Mapped[int] = mapped_column(Integer, default=30, nullable=False)
    is_private: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    invite_code: Mapped[str | None] = mapped_column(String(8), unique=True, nullable=True)
    settings: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict, nullable=False)

    prize_distribution: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, default=list, nullable=False)
    total_prizes: Mapped[Decimal] = mapped_column(Money, default=ZERO, nullable=False)

    created_by_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=False)
    winner_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

    participants: Mapped[list[TournamentParticipant]] = relationship(
        "TournamentParticipant",
        back_populates="tournament",
        cascade="all, delete-orphan",
        order_by="TournamentParticipant.id",
    )
    questions: Mapped[list[TournamentQuestion]] = relationship(
        "TournamentQuestion",
        back_populates="tournament",
        cascade="all, delete-orphan",
        order_by="TournamentQuestion.position",
    )

    @property
    def participant_count(self) -> int:
        return len(self.participants)


class TournamentParticipant(Base):
    """A user's seat in a tournament roster."""

    __tablename__ = "tournament_participants"
    __table_args__ = (
        UniqueConstraint("tournament_id", "user_id", name="tournament_participants_tournament_user_key"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    tournament_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("tournaments.id", ondelete="CASCADE"), nullable=False,
    )
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=False)
    joined_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    time_spent: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    answers: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, default=list, nullable=False)
    rank: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    prize: Mapped[Decimal] = mapped_column(Money, default=ZERO, nullable=False)

    tournament: Mapped[Tournament] = relationship("Tournament", back_populates="participants")


class TournamentQuestion(Base):
    """Ordered link between a tournament and its fixed question set."""

    __tablename__ = "tournament_questions"
    __table_args__ = (
        UniqueConstraint("tournament_id", "question_id", name="tournament_questions_tournament_question_key"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    tournament_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("tournaments.id", ondelete="CASCADE"), nullable=False,
    )
    question_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("questions.id"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)

    tournament: Mapped[Tournament] = relationship("Tournament", back_populates="questions")
    question: Mapped[Question] = relationship("Question", lazy="joined")
