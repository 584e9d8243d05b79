"""Ledger entry variants.

Each money event is described by one frozen dataclass. The shared core
(type, category, description, fee, payment method) lives on ``LedgerEntry``;
variants add the fields their flow requires, so a tournament entry cannot be
built without a tournament and a crypto withdrawal cannot be built without a
network and destination address.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, ClassVar, Literal

Bucket = Literal["playable", "bonus"]

BUCKETS: tuple[str, ...] = ("playable", "bonus")
TRANSACTION_TYPES: tuple[str, ...] = (
    "deposit",
    "withdrawal",
    "quiz",
    "tournament",
    "referral",
    "bonus",
    "refund",
    "admin_adjustment",
)
TRANSACTION_STATUSES: tuple[str, ...] = (
    "pending",
    "processing",
    "completed",
    "failed",
    "cancelled",
    "refunded",
)
CRYPTO_NETWORKS: frozenset[str] = frozenset({"TRC20", "ERC20", "BEP20", "Polygon", "Arbitrum", "Optimism"})

# Entry types whose credits count towards User.total_earned
EARNING_TYPES: frozenset[str] = frozenset({"tournament", "quiz", "referral", "bonus"})


@dataclass(frozen=True)
class LedgerEntry:
    """Shared core of every ledger entry."""

    type: ClassVar[str]
    category: ClassVar[str]
    payment_method: ClassVar[str] = "internal"

    description: str
    fee: Decimal = Decimal("0.00")

    def row_fields(self) -> dict[str, Any]:
        """Variant-specific Transaction columns."""
        return {}


@dataclass(frozen=True)
class TournamentEntryFee(LedgerEntry):
    type: ClassVar[str] = "tournament"
    category: ClassVar[str] = "expense"

    tournament_id: int = 0

    def row_fields(self) -> dict[str, Any]:
        return {"tournament_id": self.tournament_id}


@dataclass(frozen=True)
class TournamentPrize(LedgerEntry):
    type: ClassVar[str] = "tournament"
    category: ClassVar[str] = "income"

    tournament_id: int = 0
    rank: int = 0

    def row_fields(self) -> dict[str, Any]:
        return {"tournament_id": self.tournament_id, "tournament_rank": self.rank}


@dataclass(frozen=True)
class TournamentRefund(LedgerEntry):
    type: ClassVar[str] = "refund"
    category: ClassVar[str] = "income"

    tournament_id: int = 0

    def row_fields(self) -> dict[str, Any]:
        return {"tournament_id": self.tournament_id}


@dataclass(frozen=True)
class QuizReward(LedgerEntry):
    type: ClassVar[str] = "quiz"
    category: ClassVar[str] = "income"

    correct_answers: int = 0
    total_questions: int = 0

    def row_fields(self) -> dict[str, Any]:
        return {
            "tx_metadata": {
                "correct_answers": self.correct_answers,
                "total_questions": self.total_questions,
            },
        }


@dataclass(frozen=True)
class ReferralReward(LedgerEntry):
    type: ClassVar[str] = "referral"
    category: ClassVar[str] = "income"
    payment_method: ClassVar[str] = "referral"

    referee_id: int = 0

    def row_fields(self) -> dict[str, Any]:
        return {"tx_metadata": {"referee_id": self.referee_id}}


@dataclass(frozen=True)
class BonusGrant(LedgerEntry):
    type: ClassVar[str] = "bonus"
    category: ClassVar[str] = "income"
    payment_method: ClassVar[str] = "bonus"


@dataclass(frozen=True)
class AdminAdjustment(LedgerEntry):
    type: ClassVar[str] = "admin_adjustment"
    category: ClassVar[str] = "income"

    admin_id: int = 0
    notes: str = ""

    def row_fields(self) -> dict[str, Any]:
        return {"processed_by_id": self.admin_id, "admin_notes": self.notes}


@dataclass(frozen=True)
class AdminDeduction(AdminAdjustment):
    category: ClassVar[str] = "expense"


@dataclass(frozen=True)
class CryptoDeposit(LedgerEntry):
    type: ClassVar[str] = "deposit"
    category: ClassVar[str] = "income"
    payment_method: ClassVar[str] = "crypto"

    network: str = ""
    tx_hash: str | None = None
    from_address: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.network not in CRYPTO_NETWORKS:
            raise ValueError(f"Unsupported network: {self.network}")

    def row_fields(self) -> dict[str, Any]:
        return {
            "network": self.network,
            "tx_hash": self.tx_hash,
            "from_address": self.from_address,
            "tx_metadata": dict(self.metadata),
        }


@dataclass(frozen=True)
class CryptoWithdrawal(LedgerEntry):
    type: ClassVar[str] = "withdrawal"
    category: ClassVar[str] = "expense"
    payment_method: ClassVar[str] = "crypto"

    network: str = ""
    to_address: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.network not in CRYPTO_NETWORKS:
            raise ValueError(f"Unsupported network: {self.network}")
        if len(self.to_address) < 10:
            raise ValueError("A valid destination address is required")

    def row_fields(self) -> dict[str, Any]:
        return {
            "network": self.network,
            "to_address": self.to_address,
            "tx_metadata": dict(self.metadata),
        }


def signed_delta(category: str, amount: Decimal) -> Decimal:
    """Balance delta implied by a transaction category."""
    if category == "income":
        return amount
    if category == "expense":
        return -amount
    return Decimal("0.00")
