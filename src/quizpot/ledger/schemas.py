"""Pydantic models for wallet and admin ledger endpoints."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from quizpot.ledger.entries import CRYPTO_NETWORKS


def _check_network(value: str) -> str:
    if value not in CRYPTO_NETWORKS:
        msg = f"Unsupported network. Use one of: {', '.join(sorted(CRYPTO_NETWORKS))}"
        raise ValueError(msg)
    return value


class BalanceResponse(BaseModel):
    balance: Decimal
    playable_balance: Decimal
    bonus_balance: Decimal
    total_earned: Decimal
    total_deposited: Decimal
    total_withdrawn: Decimal
    can_withdraw: bool


class TransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    reference: str
    user_id: int
    type: str
    category: str
    bucket: str
    amount: Decimal
    fee: Decimal
    net_amount: Decimal
    currency: str
    balance_before: Decimal
    balance_after: Decimal
    status: str
    payment_method: str
    description: str | None = None
    tournament_id: int | None = None
    tournament_rank: int | None = None
    network: str | None = None
    tx_hash: str | None = None
    to_address: str | None = None
    rejection_reason: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias="tx_metadata")
    created_at: datetime
    completed_at: datetime | None = None


class TransactionListResponse(BaseModel):
    transactions: list[TransactionResponse]
    total: int
    page: int
    per_page: int


class DepositRequest(BaseModel):
    amount: Decimal = Field(gt=0, decimal_places=2)
    network: str
    tx_hash: str | None = Field(None, max_length=128)
    from_address: str | None = Field(None, max_length=128)

    @field_validator("network")
    @classmethod
    def validate_network(cls, value: str) -> str:
        return _check_network(value)


class WithdrawalRequest(BaseModel):
    amount: Decimal = Field(gt=0, decimal_places=2)
    network: str
    to_address: str = Field(min_length=10, max_length=128)

    @field_validator("network")
    @classmethod
    def validate_network(cls, value: str) -> str:
        return _check_network(value)


class ApproveRequest(BaseModel):
    notes: str | None = Field(None, max_length=1000)
    tx_hash: str | None = Field(None, max_length=128)


class RejectRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=500)
    notes: str | None = Field(None, max_length=1000)


class AdjustBalanceRequest(BaseModel):
    amount: Decimal = Field(ge=0, decimal_places=2)
    operation: Literal["add", "subtract", "set"]
    bucket: Literal["playable", "bonus"] = "playable"
    reason: str = Field(min_length=1, max_length=500)


class BonusRequest(BaseModel):
    amount: Decimal = Field(gt=0, decimal_places=2)
    description: str = Field(min_length=1, max_length=500)


class LedgerAuditResponse(BaseModel):
    user_id: int
    ok: bool
    checked: int
    mismatches: list[str]
