"""Ledger entry variants and money helpers."""

from __future__ import annotations

from decimal import Decimal

import pytest

from quizpot.ledger.entries import (
    TRANSACTION_TYPES,
    AdminAdjustment,
    AdminDeduction,
    BonusGrant,
    CryptoDeposit,
    CryptoWithdrawal,
    QuizReward,
    ReferralReward,
    TournamentEntryFee,
    TournamentPrize,
    TournamentRefund,
    signed_delta,
)
from quizpot.ledger.primitives import generate_reference, to_money
from quizpot.ledger.service import withdrawal_fee


class TestEntryVariants:
    def test_entry_fee_is_tournament_expense(self):
        entry = TournamentEntryFee(description="Entry", tournament_id=7)
        assert (entry.type, entry.category) == ("tournament", "expense")
        assert entry.row_fields() == {"tournament_id": 7}

    def test_prize_records_rank(self):
        entry = TournamentPrize(description="Prize", tournament_id=7, rank=2)
        assert entry.category == "income"
        assert entry.row_fields() == {"tournament_id": 7, "tournament_rank": 2}

    def test_quiz_reward_metadata(self):
        entry = QuizReward(description="Quiz", correct_answers=4, total_questions=5)
        assert entry.row_fields()["tx_metadata"] == {"correct_answers": 4, "total_questions": 5}

    def test_admin_deduction_flips_category(self):
        assert AdminAdjustment(description="x").category == "income"
        assert AdminDeduction(description="x").category == "expense"
        assert AdminDeduction(description="x").type == "admin_adjustment"

    def test_variants_cover_every_transaction_type(self):
        variants = (
            TournamentEntryFee, TournamentPrize, TournamentRefund, QuizReward, ReferralReward,
            BonusGrant, AdminAdjustment, AdminDeduction, CryptoDeposit, CryptoWithdrawal,
        )
        assert {v.type for v in variants} == set(TRANSACTION_TYPES)

    def test_entries_are_frozen(self):
        entry = TournamentEntryFee(description="Entry", tournament_id=1)
        with pytest.raises(AttributeError):
            entry.tournament_id = 2  # type: ignore[misc]

    def test_deposit_requires_known_network(self):
        with pytest.raises(ValueError, match="Unsupported network"):
            CryptoDeposit(description="Deposit", network="DOGE")
        assert CryptoDeposit(description="Deposit", network="TRC20").payment_method == "crypto"

    def test_withdrawal_requires_address(self):
        with pytest.raises(ValueError, match="destination address"):
            CryptoWithdrawal(description="Withdraw", network="ERC20", to_address="0x12")
        entry = CryptoWithdrawal(description="Withdraw", network="ERC20", to_address="0x1234567890abcdef")
        assert entry.row_fields()["to_address"] == "0x1234567890abcdef"


class TestMoneyHelpers:
    def test_signed_delta(self):
        assert signed_delta("income", Decimal("5.00")) == Decimal("5.00")
        assert signed_delta("expense", Decimal("5.00")) == Decimal("-5.00")
        assert signed_delta("transfer", Decimal("5.00")) == Decimal("0.00")

    def test_to_money_rounds_half_up(self):
        assert to_money("1.005") == Decimal("1.01")
        assert to_money(3) == Decimal("3.00")
        assert to_money(0.1) == Decimal("0.10")

    def test_reference_format(self):
        ref = generate_reference()
        assert ref.startswith("TXN_")
        assert len(ref.split("_")) == 3
        assert generate_reference() != ref

    def test_withdrawal_fee_minimum(self):
        assert withdrawal_fee(Decimal("20.00")) == Decimal("1.00")

    def test_withdrawal_fee_percentage(self):
        assert withdrawal_fee(Decimal("500.00")) == Decimal("10.00")
