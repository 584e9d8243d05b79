"""Ledger primitives and wallet flows against the database."""

from __future__ import annotations

from decimal import Decimal

import pytest
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from quizpot.config import Settings
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
from quizpot.ledger import service
from quizpot.ledger.entries import AdminAdjustment, TournamentEntryFee
from quizpot.ledger.primitives import credit, debit, lock_user, lock_users, verify_user_ledger

pytestmark = pytest.mark.asyncio

WALLET = "TQn9Y2khEsLJW1ChVWFMSMeRDow5KcbLSE"


class TestPrimitives:
    async def test_credit_records_snapshot(self, db, make_user):
        user = await make_user(playable="10")
        async with unit_of_work(db):
            locked = await lock_user(db, user.id)
            txn = await credit(db, locked, Decimal("5.5"), AdminAdjustment(description="Top up"))

        assert txn.amount == Decimal("5.50")
        assert txn.balance_before == Decimal("10.00")
        assert txn.balance_after == Decimal("15.50")
        assert txn.status == "completed"
        assert user.playable_balance == Decimal("15.50")
        assert user.balance == Decimal("15.50")

    async def test_debit_insufficient_has_no_side_effects(self, db, make_user, reload):
        user = await make_user(playable="20")
        user_id = user.id
        version = user.ledger_version

        with pytest.raises(InsufficientFunds) as exc_info:
            async with unit_of_work(db):
                locked = await lock_user(db, user_id)
                await debit(db, locked, Decimal("20.01"), TournamentEntryFee(description="Entry", tournament_id=1))

        assert exc_info.value.to_dict()["code"] == "INSUFFICIENT_BALANCE"
        fresh = await reload(User, user_id)
        assert fresh.playable_balance == Decimal("20.00")
        assert fresh.ledger_version == version
        count = await db.execute(select(Transaction).where(Transaction.user_id == user_id))
        assert len(count.scalars().all()) == 1

    async def test_buckets_are_independent(self, db, make_user, reload):
        user = await make_user(playable="5", bonus="50")
        user_id = user.id
        with pytest.raises(InsufficientFunds):
            async with unit_of_work(db):
                locked = await lock_user(db, user_id)
                await debit(db, locked, Decimal("10"), AdminAdjustment(description="x"), bucket="playable")
        fresh = await reload(User, user_id)
        assert fresh.bonus_balance == Decimal("50.00")
        assert fresh.balance == Decimal("55.00")

    async def test_non_positive_amounts_rejected(self, db, make_user):
        user = await make_user()
        with pytest.raises(ValueError):
            await credit(db, user, Decimal("0"), AdminAdjustment(description="x"))
        with pytest.raises(ValueError):
            await debit(db, user, Decimal("-1"), AdminAdjustment(description="x"))
        await db.rollback()

    async def test_lock_users_orders_and_validates(self, db, make_user):
        a = await make_user()
        b = await make_user()
        users = await lock_users(db, [b.id, a.id, b.id])
        assert list(users) == sorted([a.id, b.id])
        await db.rollback()

    async def test_ledger_audit_clean(self, db, make_user):
        user = await make_user(playable="30", bonus="5")
        async with unit_of_work(db):
            locked = await lock_user(db, user.id)
            await debit(db, locked, Decimal("12.25"), TournamentEntryFee(description="Entry", tournament_id=1))
        audit = await verify_user_ledger(db, user.id)
        assert audit.ok
        assert audit.checked == 3

    async def test_ledger_audit_detects_tampering(self, db, make_user):
        user = await make_user(playable="30")
        user_id = user.id
        await db.execute(
            update(User)
            .where(User.id == user_id)
            .values(playable_balance=Decimal("99.00"), balance=Decimal("99.00"))
        )
        await db.commit()
        audit = await verify_user_ledger(db, user_id)
        assert not audit.ok
        assert any("playable" in m for m in audit.mismatches)

    async def test_schema_rejects_balance_out_of_sum(self, db, make_user):
        user = await make_user(playable="30", bonus="5")
        user_id = user.id
        with pytest.raises(IntegrityError):
            await db.execute(update(User).where(User.id == user_id).values(balance=Decimal("36.00")))
        await db.rollback()
        assert (await verify_user_ledger(db, user_id)).ok


class TestDeposits:
    async def test_deposit_pending_until_approved(self, db, redis, make_user):
        admin = await make_user(is_admin=True)
        user = await make_user()

        txn = await service.request_deposit(db, user.id, Decimal("100"), "TRC20", tx_hash="0xabc")
        assert txn.status == "pending"
        assert user.playable_balance == Decimal("0")

        approved = await service.approve_deposit(db, redis, txn.id, admin.id, notes="Confirmed on chain")
        assert approved.status == "completed"
        assert approved.balance_after == Decimal("100.00")
        assert user.playable_balance == Decimal("100.00")
        assert user.total_deposited == Decimal("100.00")
        assert user.has_deposited is True
        assert (await verify_user_ledger(db, user.id)).ok

    async def test_double_approval_rejected(self, db, redis, make_user, reload):
        admin = await make_user(is_admin=True)
        user = await make_user()
        user_id, admin_id = user.id, admin.id
        txn = await service.request_deposit(db, user_id, Decimal("50"), "ERC20")
        txn_id = txn.id
        await service.approve_deposit(db, redis, txn_id, admin_id)

        with pytest.raises(TransactionAlreadyProcessed):
            await service.approve_deposit(db, redis, txn_id, admin_id)
        assert (await reload(User, user_id)).playable_balance == Decimal("50.00")

    async def test_rejected_deposit_moves_nothing(self, db, redis, make_user):
        admin = await make_user(is_admin=True)
        user = await make_user()
        txn = await service.request_deposit(db, user.id, Decimal("50"), "ERC20")
        rejected = await service.reject_deposit(db, redis, txn.id, admin.id, "No matching transfer")
        assert rejected.status == "failed"
        assert rejected.rejection_reason == "No matching transfer"
        assert user.playable_balance == Decimal("0")

    async def test_duplicate_tx_hash(self, db, make_user):
        user = await make_user()
        user_id = user.id
        await service.request_deposit(db, user_id, Decimal("20"), "TRC20", tx_hash="0xdup")
        with pytest.raises(TransactionAlreadyProcessed):
            await service.request_deposit(db, user_id, Decimal("20"), "TRC20", tx_hash="0xdup")

    async def test_amount_range(self, db, make_user):
        user = await make_user()
        with pytest.raises(AmountOutOfRange):
            await service.request_deposit(db, user.id, Decimal("5"), "TRC20")

    async def test_first_deposit_pays_referrer_once(self, db, redis, make_user):
        admin = await make_user(is_admin=True)
        referrer = await make_user()
        user = await make_user(referred_by_id=referrer.id)

        first = await service.request_deposit(db, user.id, Decimal("20"), "TRC20")
        await service.approve_deposit(db, redis, first.id, admin.id)
        second = await service.request_deposit(db, user.id, Decimal("20"), "TRC20")
        await service.approve_deposit(db, redis, second.id, admin.id)

        assert referrer.bonus_balance == Decimal("5.00")
        assert referrer.total_earned == Decimal("5.00")
        assert user.referral_rewarded is True
        rewards = await db.execute(select(Transaction).where(Transaction.type == "referral"))
        assert len(rewards.scalars().all()) == 1

    async def test_referrals_switched_off(self, db, redis, make_user, reload):
        admin = await make_user(is_admin=True)
        referrer = await make_user()
        user = await make_user(referred_by_id=referrer.id)

        txn = await service.request_deposit(db, user.id, Decimal("20"), "TRC20")
        approved = await service.approve_deposit(
            db, redis, txn.id, admin.id, settings=Settings(referral_reward=Decimal("0")),
        )

        assert approved.status == "completed"
        assert user.playable_balance == Decimal("20.00")
        assert (await reload(User, referrer.id)).bonus_balance == 0
        rewards = await db.execute(select(Transaction).where(Transaction.type == "referral"))
        assert rewards.scalars().all() == []

    async def test_withdrawal_cannot_be_approved_as_deposit(self, db, redis, make_user):
        admin = await make_user(is_admin=True)
        user = await make_user(playable="100", is_verified=True, withdrawal_enabled=True, has_deposited=True)
        txn = await service.request_withdrawal(db, user.id, Decimal("50"), "TRC20", WALLET)
        with pytest.raises(InvalidTransactionType):
            await service.approve_deposit(db, redis, txn.id, admin.id)


class TestWithdrawals:
    async def test_requires_verification_and_deposit(self, db, make_user):
        user = await make_user(playable="100")
        with pytest.raises(WithdrawalNotAllowed):
            await service.request_withdrawal(db, user.id, Decimal("50"), "TRC20", WALLET)

    async def test_bonus_is_not_withdrawable(self, db, make_user):
        user = await make_user(
            playable="20", bonus="500", is_verified=True, withdrawal_enabled=True, has_deposited=True,
        )
        with pytest.raises(InsufficientFunds):
            await service.request_withdrawal(db, user.id, Decimal("50"), "TRC20", WALLET)

    async def test_approve_debits_full_amount(self, db, redis, make_user):
        admin = await make_user(is_admin=True)
        user = await make_user(playable="100", is_verified=True, withdrawal_enabled=True, has_deposited=True)

        txn = await service.request_withdrawal(db, user.id, Decimal("60"), "TRC20", WALLET)
        assert txn.fee == Decimal("1.20")
        assert txn.net_amount == Decimal("58.80")
        assert user.playable_balance == Decimal("100.00")

        await service.approve_withdrawal(db, redis, txn.id, admin.id, tx_hash="0xpaid")
        assert user.playable_balance == Decimal("40.00")
        assert user.total_withdrawn == Decimal("60.00")
        assert txn.tx_hash == "0xpaid"

    async def test_approval_fails_if_funds_left_meanwhile(self, db, redis, make_user, reload):
        admin = await make_user(is_admin=True)
        user = await make_user(playable="100", is_verified=True, withdrawal_enabled=True, has_deposited=True)
        user_id, admin_id = user.id, admin.id
        txn = await service.request_withdrawal(db, user_id, Decimal("80"), "TRC20", WALLET)
        txn_id = txn.id
        await service.adjust_balance(db, redis, admin_id, user_id, Decimal("50"), "subtract", reason="Chargeback")

        with pytest.raises(InsufficientFunds):
            await service.approve_withdrawal(db, redis, txn_id, admin_id)
        assert (await reload(Transaction, txn_id)).status == "pending"
        assert (await reload(User, user_id)).playable_balance == Decimal("50.00")

    async def test_reject(self, db, redis, make_user):
        admin = await make_user(is_admin=True)
        user = await make_user(playable="100", is_verified=True, withdrawal_enabled=True, has_deposited=True)
        txn = await service.request_withdrawal(db, user.id, Decimal("30"), "TRC20", WALLET)
        await service.reject_withdrawal(db, redis, txn.id, admin.id, "Address flagged")
        assert txn.status == "failed"
        assert user.playable_balance == Decimal("100.00")


class TestAdminAdjustments:
    async def test_add_subtract_set(self, db, redis, make_user):
        admin = await make_user(is_admin=True)
        user = await make_user(playable="10")

        await service.adjust_balance(db, redis, admin.id, user.id, Decimal("15"), "add", reason="Goodwill")
        assert user.playable_balance == Decimal("25.00")
        await service.adjust_balance(db, redis, admin.id, user.id, Decimal("5"), "subtract", reason="Fix")
        assert user.playable_balance == Decimal("20.00")
        txn = await service.adjust_balance(db, redis, admin.id, user.id, Decimal("3"), "set", bucket="bonus", reason="Fix")
        assert txn is not None
        assert user.bonus_balance == Decimal("3.00")
        assert user.balance == Decimal("23.00")
        assert (await verify_user_ledger(db, user.id)).ok

    async def test_set_to_current_value_is_noop(self, db, redis, make_user):
        admin = await make_user(is_admin=True)
        user = await make_user(playable="10")
        txn = await service.adjust_balance(db, redis, admin.id, user.id, Decimal("10"), "set", reason="Noop")
        assert txn is None

    async def test_cannot_subtract_below_zero(self, db, redis, make_user):
        admin = await make_user(is_admin=True)
        user = await make_user(playable="10")
        with pytest.raises(InsufficientFunds):
            await service.adjust_balance(db, redis, admin.id, user.id, Decimal("11"), "subtract", reason="x")

    async def test_grant_bonus(self, db, redis, make_user):
        user = await make_user()
        txn = await service.grant_bonus(db, redis, user.id, Decimal("7.5"), "Welcome bonus")
        assert txn.bucket == "bonus"
        assert user.bonus_balance == Decimal("7.50")
        assert user.total_earned == Decimal("7.50")


class TestQueries:
    async def test_list_and_scope(self, db, redis, make_user):
        user = await make_user(playable="10")
        other = await make_user(playable="10")
        await service.grant_bonus(db, redis, user.id, Decimal("1"), "Bonus")

        items, total = await service.list_transactions(db, user_id=user.id)
        assert total == 2
        assert items[0].type == "bonus"

        items, total = await service.list_transactions(db, type="bonus")
        assert total == 1

        with pytest.raises(TransactionNotFound):
            await service.get_transaction(db, items[0].id, user_id=other.id)
