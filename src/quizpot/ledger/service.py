"""Wallet flows built on the ledger primitives.

Deposits and withdrawals are recorded as pending transactions and only move
money when an admin approves them. Admin balance adjustments go through the
same credit/debit path as every other money event.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from quizpot.config import Settings, get_settings
from quizpot.database import unit_of_work
from quizpot.db.models import Transaction, User
from quizpot.errors import (
    AmountOutOfRange,
    InsufficientFunds,
    InvalidTransactionType,
    TransactionAlreadyProcessed,
    TransactionNotFound,
    WithdrawalNotAllowed,
)
from quizpot.ledger.entries import (
    AdminAdjustment,
    AdminDeduction,
    BonusGrant,
    CryptoDeposit,
    CryptoWithdrawal,
    ReferralReward,
)
from quizpot.ledger.primitives import (
    bucket_value,
    credit,
    debit,
    lock_user,
    lock_users,
    open_pending,
    reject_pending,
    settle_pending,
    to_money,
)
from quizpot.ws.publisher import push_balance_update, push_to_user

logger = logging.getLogger(__name__)

ADJUST_OPERATIONS = ("add", "subtract", "set")


def withdrawal_fee(amount: Decimal, settings: Settings | None = None) -> Decimal:
    """Withdrawal fee: percentage of the amount with a fixed minimum."""
    settings = settings or get_settings()
    return max(to_money(amount * settings.withdrawal_fee_rate), to_money(settings.withdrawal_min_fee))


def can_withdraw(user: User) -> bool:
    return user.withdrawal_enabled and user.is_verified and user.has_deposited


async def _load_transaction(db: AsyncSession, transaction_id: int, lock: bool = False) -> Transaction:
    stmt = select(Transaction).where(Transaction.id == transaction_id)
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(stmt)
    txn = result.scalar_one_or_none()
    if txn is None:
        raise TransactionNotFound()
    return txn


def _check_range(amount: Decimal, low: Decimal, high: Decimal, what: str) -> None:
    if amount < low or amount > high:
        raise AmountOutOfRange(
            f"{what} amount must be between {low} and {high}",
            min_amount=low,
            max_amount=high,
        )


# ---------------------------------------------------------------------------
# Deposits
# ---------------------------------------------------------------------------


async def request_deposit(
    db: AsyncSession,
    user_id: int,
    amount: Decimal,
    network: str,
    tx_hash: str | None = None,
    from_address: str | None = None,
    settings: Settings | None = None,
) -> Transaction:
    """Record a crypto deposit awaiting admin confirmation."""
    settings = settings or get_settings()
    amount = to_money(amount)
    _check_range(amount, settings.min_deposit, settings.max_deposit, "Deposit")

    async with unit_of_work(db):
        if tx_hash:
            existing = await db.execute(
                select(Transaction.id).where(Transaction.type == "deposit", Transaction.tx_hash == tx_hash)
            )
            if existing.first() is not None:
                raise TransactionAlreadyProcessed("This transaction hash has already been submitted")

        user = await lock_user(db, user_id)
        entry = CryptoDeposit(
            description=f"Deposit {amount} {settings.currency} via {network}",
            network=network,
            tx_hash=tx_hash,
            from_address=from_address,
        )
        txn = await open_pending(db, user, amount, entry)

    logger.info("Deposit requested: user=%s amount=%s ref=%s", user_id, amount, txn.reference)
    return txn


async def approve_deposit(
    db: AsyncSession,
    redis: object | None,
    transaction_id: int,
    admin_id: int,
    notes: str | None = None,
    settings: Settings | None = None,
) -> Transaction:
    """Confirm a pending deposit and credit the user's playable balance.

    The first approved deposit of a referred user pays the referral reward
    into the referrer's bonus balance in the same unit of work.
    """
    settings = settings or get_settings()
    pays_referral = settings.referral_reward > 0
    referrer: User | None = None

    async with unit_of_work(db):
        txn = await _load_transaction(db, transaction_id)
        if txn.type != "deposit":
            raise InvalidTransactionType()
        owner = await db.get(User, txn.user_id)
        lock_ids = {txn.user_id}
        if pays_referral and owner is not None and owner.referred_by_id and not owner.referral_rewarded:
            lock_ids.add(owner.referred_by_id)

        users = await lock_users(db, lock_ids)
        user = users[txn.user_id]
        txn = await _load_transaction(db, transaction_id, lock=True)

        await settle_pending(db, txn, user, admin_id, notes)
        user.total_deposited += txn.amount
        user.has_deposited = True

        if pays_referral and user.referred_by_id and not user.referral_rewarded and user.referred_by_id in users:
            referrer = users[user.referred_by_id]
            await credit(
                db,
                referrer,
                settings.referral_reward,
                ReferralReward(description=f"Referral reward for {user.username}", referee_id=user.id),
                bucket="bonus",
            )
            user.referral_rewarded = True

    logger.info("Deposit approved: ref=%s user=%s amount=%s admin=%s", txn.reference, user.id, txn.amount, admin_id)
    await push_balance_update(redis, user)
    await push_to_user(redis, user.id, "deposit_approved", {"reference": txn.reference, "amount": txn.amount})
    if referrer is not None:
        await push_balance_update(redis, referrer)
    return txn


async def reject_deposit(
    db: AsyncSession,
    redis: object | None,
    transaction_id: int,
    admin_id: int,
    reason: str,
    notes: str | None = None,
) -> Transaction:
    async with unit_of_work(db):
        txn = await _load_transaction(db, transaction_id, lock=True)
        if txn.type != "deposit":
            raise InvalidTransactionType()
        await reject_pending(db, txn, admin_id, reason, notes)

    logger.info("Deposit rejected: ref=%s admin=%s reason=%s", txn.reference, admin_id, reason)
    await push_to_user(redis, txn.user_id, "deposit_rejected", {"reference": txn.reference, "reason": reason})
    return txn


# ---------------------------------------------------------------------------
# Withdrawals
# ---------------------------------------------------------------------------


async def request_withdrawal(
    db: AsyncSession,
    user_id: int,
    amount: Decimal,
    network: str,
    to_address: str,
    settings: Settings | None = None,
) -> Transaction:
    """Record a withdrawal request. Funds move only on approval."""
    settings = settings or get_settings()
    amount = to_money(amount)

    async with unit_of_work(db):
        user = await lock_user(db, user_id)
        if not can_withdraw(user):
            raise WithdrawalNotAllowed()
        _check_range(amount, settings.min_withdrawal, settings.max_withdrawal, "Withdrawal")
        if amount > user.playable_balance:
            raise InsufficientFunds(
                "Insufficient withdrawable balance",
                bucket="playable",
                available=user.playable_balance,
                required=amount,
            )
        fee = withdrawal_fee(amount, settings)
        entry = CryptoWithdrawal(
            description=f"Withdrawal {amount} {settings.currency} via {network}",
            fee=fee,
            network=network,
            to_address=to_address,
        )
        txn = await open_pending(db, user, amount, entry)

    logger.info("Withdrawal requested: user=%s amount=%s fee=%s ref=%s", user_id, amount, fee, txn.reference)
    return txn


async def approve_withdrawal(
    db: AsyncSession,
    redis: object | None,
    transaction_id: int,
    admin_id: int,
    tx_hash: str | None = None,
    notes: str | None = None,
) -> Transaction:
    """Debit the full amount and complete the withdrawal."""
    async with unit_of_work(db):
        txn = await _load_transaction(db, transaction_id)
        if txn.type != "withdrawal":
            raise InvalidTransactionType()
        user = await lock_user(db, txn.user_id)
        txn = await _load_transaction(db, transaction_id, lock=True)

        await settle_pending(db, txn, user, admin_id, notes)
        user.total_withdrawn += txn.amount
        if tx_hash:
            txn.tx_hash = tx_hash

    logger.info("Withdrawal approved: ref=%s user=%s amount=%s admin=%s", txn.reference, user.id, txn.amount, admin_id)
    await push_balance_update(redis, user)
    await push_to_user(redis, user.id, "withdrawal_approved", {"reference": txn.reference, "amount": txn.net_amount})
    return txn


async def reject_withdrawal(
    db: AsyncSession,
    redis: object | None,
    transaction_id: int,
    admin_id: int,
    reason: str,
    notes: str | None = None,
) -> Transaction:
    async with unit_of_work(db):
        txn = await _load_transaction(db, transaction_id, lock=True)
        if txn.type != "withdrawal":
            raise InvalidTransactionType()
        await reject_pending(db, txn, admin_id, reason, notes)

    logger.info("Withdrawal rejected: ref=%s admin=%s reason=%s", txn.reference, admin_id, reason)
    await push_to_user(redis, txn.user_id, "withdrawal_rejected", {"reference": txn.reference, "reason": reason})
    return txn


# ---------------------------------------------------------------------------
# Admin adjustments
# ---------------------------------------------------------------------------


async def adjust_balance(
    db: AsyncSession,
    redis: object | None,
    admin_id: int,
    user_id: int,
    amount: Decimal,
    operation: str,
    bucket: str = "playable",
    reason: str = "",
) -> Transaction | None:
    """Add to, subtract from, or set a balance bucket.

    Returns the recorded transaction, or None when ``set`` targets the
    current value and nothing moves.
    """
    if operation not in ADJUST_OPERATIONS:
        raise ValueError(f"Unknown adjustment operation: {operation}")
    amount = to_money(amount)
    if amount < 0 or (operation != "set" and amount == 0):
        raise AmountOutOfRange("Adjustment amount must be positive")

    description = f"Admin adjustment ({operation}): {reason}".strip()
    txn: Transaction | None = None
    async with unit_of_work(db):
        user = await lock_user(db, user_id)
        delta = amount
        if operation == "subtract":
            delta = -amount
        elif operation == "set":
            delta = amount - bucket_value(user, bucket)

        if delta > 0:
            entry: AdminAdjustment = AdminAdjustment(description=description, admin_id=admin_id, notes=reason)
            txn = await credit(db, user, delta, entry, bucket=bucket)
        elif delta < 0:
            entry = AdminDeduction(description=description, admin_id=admin_id, notes=reason)
            txn = await debit(db, user, -delta, entry, bucket=bucket)

    if txn is None:
        return None
    logger.info(
        "Balance adjusted: user=%s bucket=%s op=%s amount=%s admin=%s",
        user_id, bucket, operation, amount, admin_id,
    )
    await push_balance_update(redis, user)
    return txn


async def grant_bonus(
    db: AsyncSession,
    redis: object | None,
    user_id: int,
    amount: Decimal,
    description: str,
) -> Transaction:
    """Credit promotional funds to the bonus bucket."""
    async with unit_of_work(db):
        user = await lock_user(db, user_id)
        txn = await credit(db, user, amount, BonusGrant(description=description), bucket="bonus")

    logger.info("Bonus granted: user=%s amount=%s", user_id, txn.amount)
    await push_balance_update(redis, user)
    return txn


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


async def list_transactions(
    db: AsyncSession,
    user_id: int | None = None,
    type: str | None = None,  # noqa: A002
    status: str | None = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[Transaction], int]:
    """Newest-first transactions with optional filters. Returns (items, total)."""
    filters: list[Any] = []
    if user_id is not None:
        filters.append(Transaction.user_id == user_id)
    if type is not None:
        filters.append(Transaction.type == type)
    if status is not None:
        filters.append(Transaction.status == status)

    total = (await db.execute(select(func.count()).select_from(Transaction).where(*filters))).scalar() or 0
    result = await db.execute(
        select(Transaction)
        .where(*filters)
        .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all()), total


async def get_transaction(db: AsyncSession, transaction_id: int, user_id: int | None = None) -> Transaction:
    """Fetch a transaction, optionally scoped to its owner."""
    txn = await _load_transaction(db, transaction_id)
    if user_id is not None and txn.user_id != user_id:
        raise TransactionNotFound()
    return txn
