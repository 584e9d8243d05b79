"""Ledger primitives: balance mutation paired with its transaction record.

Every function here works inside the caller's unit of work. Nothing commits:
the enclosing service flushes the balance change and the transaction row in
the same database transaction and commits once, so a failure on either side
rolls both back.

Callers must hold the user's row lock (``lock_user`` / ``lock_users``) before
mutating balances. Lock order is tournament row first, then users by
ascending id.
"""

from __future__ import annotations

import logging
import secrets
import string
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from quizpot.db.models import Transaction, User
from quizpot.errors import InsufficientFunds, TransactionAlreadyProcessed, UserNotFound
from quizpot.ledger.entries import BUCKETS, EARNING_TYPES, LedgerEntry, signed_delta

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
_BASE36 = string.digits + string.ascii_uppercase


def to_money(value: Decimal | int | float | str) -> Decimal:
    """Quantize a monetary value to cents."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def _base36(number: int) -> str:
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits)) or "0"


def generate_reference() -> str:
    """Human-friendly transaction reference, e.g. TXN_LZ4K2P1Q_7F3KD."""
    suffix = "".join(secrets.choice(_BASE36) for _ in range(5))
    return f"TXN_{_base36(int(time.time() * 1000))}_{suffix}"


def bucket_value(user: User, bucket: str) -> Decimal:
    if bucket not in BUCKETS:
        raise ValueError(f"Unknown balance bucket: {bucket}")
    return getattr(user, f"{bucket}_balance")


async def lock_user(db: AsyncSession, user_id: int) -> User:
    """Load a user row with an exclusive lock held until commit."""
    result = await db.execute(
        select(User)
        .where(User.id == user_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    user = result.scalar_one_or_none()
    if user is None:
        raise UserNotFound(f"User {user_id} not found")
    return user


async def lock_users(db: AsyncSession, user_ids: Iterable[int]) -> dict[int, User]:
    """Lock several users in ascending id order."""
    ids = sorted(set(user_ids))
    if not ids:
        return {}
    result = await db.execute(
        select(User)
        .where(User.id.in_(ids))
        .order_by(User.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    users = {u.id: u for u in result.scalars().all()}
    missing = [uid for uid in ids if uid not in users]
    if missing:
        raise UserNotFound(f"User {missing[0]} not found")
    return users


def _apply_delta(user: User, bucket: str, delta: Decimal) -> tuple[Decimal, Decimal]:
    """Move one bucket by ``delta``; all-or-nothing."""
    before = bucket_value(user, bucket)
    after = before + delta
    if after < 0:
        raise InsufficientFunds(
            f"Insufficient {bucket} balance",
            bucket=bucket,
            available=before,
            required=-delta,
        )
    setattr(user, f"{bucket}_balance", after)
    user.balance = user.playable_balance + user.bonus_balance
    user.ledger_version += 1
    return before, after


async def _record(
    db: AsyncSession,
    user: User,
    entry: LedgerEntry,
    bucket: str,
    amount: Decimal,
    before: Decimal,
    after: Decimal,
) -> Transaction:
    now = datetime.now(timezone.utc)
    fee = to_money(entry.fee)
    txn = Transaction(
        reference=generate_reference(),
        user_id=user.id,
        type=entry.type,
        category=entry.category,
        bucket=bucket,
        amount=amount,
        fee=fee,
        net_amount=amount - fee,
        balance_before=before,
        balance_after=after,
        status="completed",
        payment_method=entry.payment_method,
        description=entry.description,
        ledger_seq=user.ledger_version,
        created_at=now,
        completed_at=now,
        **entry.row_fields(),
    )
    db.add(txn)
    await db.flush()
    return txn


async def credit(
    db: AsyncSession,
    user: User,
    amount: Decimal,
    entry: LedgerEntry,
    bucket: str = "playable",
) -> Transaction:
    """Increase a balance bucket and record the completed transaction."""
    amount = to_money(amount)
    if amount <= 0:
        raise ValueError("Credit amount must be positive")
    before, after = _apply_delta(user, bucket, amount)
    if entry.type in EARNING_TYPES:
        user.total_earned += amount
    return await _record(db, user, entry, bucket, amount, before, after)


async def debit(
    db: AsyncSession,
    user: User,
    amount: Decimal,
    entry: LedgerEntry,
    bucket: str = "playable",
) -> Transaction:
    """Decrease a balance bucket; raises InsufficientFunds without side effects."""
    amount = to_money(amount)
    if amount <= 0:
        raise ValueError("Debit amount must be positive")
    before, after = _apply_delta(user, bucket, -amount)
    return await _record(db, user, entry, bucket, amount, before, after)


async def open_pending(
    db: AsyncSession,
    user: User,
    amount: Decimal,
    entry: LedgerEntry,
    bucket: str = "playable",
) -> Transaction:
    """Record an externally-confirmed flow awaiting approval. Balance untouched."""
    amount = to_money(amount)
    fee = to_money(entry.fee)
    current = bucket_value(user, bucket)
    txn = Transaction(
        reference=generate_reference(),
        user_id=user.id,
        type=entry.type,
        category=entry.category,
        bucket=bucket,
        amount=amount,
        fee=fee,
        net_amount=amount - fee,
        balance_before=current,
        balance_after=current,
        status="pending",
        payment_method=entry.payment_method,
        description=entry.description,
        created_at=datetime.now(timezone.utc),
        **entry.row_fields(),
    )
    db.add(txn)
    await db.flush()
    return txn


async def settle_pending(
    db: AsyncSession,
    txn: Transaction,
    user: User,
    actor_id: int,
    notes: str | None = None,
) -> Transaction:
    """Apply a pending transaction's delta and mark it completed in one unit."""
    if txn.status != "pending":
        raise TransactionAlreadyProcessed()
    delta = signed_delta(txn.category, txn.amount)
    before, after = _apply_delta(user, txn.bucket, delta)
    now = datetime.now(timezone.utc)
    txn.balance_before = before
    txn.balance_after = after
    txn.ledger_seq = user.ledger_version
    txn.status = "completed"
    txn.processed_by_id = actor_id
    txn.processed_at = now
    txn.completed_at = now
    txn.admin_notes = notes
    await db.flush()
    return txn


async def reject_pending(
    db: AsyncSession,
    txn: Transaction,
    actor_id: int,
    reason: str,
    notes: str | None = None,
) -> Transaction:
    """Mark a pending transaction failed. Balance untouched."""
    if txn.status != "pending":
        raise TransactionAlreadyProcessed()
    txn.status = "failed"
    txn.processed_by_id = actor_id
    txn.processed_at = datetime.now(timezone.utc)
    txn.rejection_reason = reason
    txn.admin_notes = notes
    await db.flush()
    return txn


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


@dataclass
class LedgerAudit:
    user_id: int
    checked: int = 0
    mismatches: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.mismatches


async def verify_user_ledger(db: AsyncSession, user_id: int) -> LedgerAudit:
    """Replay a user's applied transactions from zero and compare snapshots."""
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise UserNotFound(f"User {user_id} not found")

    rows = await db.execute(
        select(Transaction)
        .where(
            Transaction.user_id == user_id,
            Transaction.ledger_seq.isnot(None),
            Transaction.status.in_(("completed", "refunded")),
        )
        .order_by(Transaction.ledger_seq)
    )
    audit = LedgerAudit(user_id=user_id)
    running = {bucket: Decimal("0.00") for bucket in BUCKETS}

    for txn in rows.scalars().all():
        audit.checked += 1
        expected_before = running[txn.bucket]
        expected_after = expected_before + signed_delta(txn.category, txn.amount)
        if txn.balance_before != expected_before or txn.balance_after != expected_after:
            audit.mismatches.append(
                f"{txn.reference}: recorded {txn.balance_before}->{txn.balance_after}, "
                f"replayed {expected_before}->{expected_after}"
            )
        running[txn.bucket] = txn.balance_after

    for bucket in BUCKETS:
        if running[bucket] != bucket_value(user, bucket):
            audit.mismatches.append(
                f"{bucket}: ledger ends at {running[bucket]}, user holds {bucket_value(user, bucket)}"
            )
    if user.balance != user.playable_balance + user.bonus_balance:
        audit.mismatches.append("balance is not the sum of playable and bonus balances")

    if not audit.ok:
        logger.error("Ledger divergence for user %s: %s", user_id, audit.mismatches)
    return audit
