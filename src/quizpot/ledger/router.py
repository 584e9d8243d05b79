"""Wallet and admin ledger endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from quizpot.auth.dependencies import get_current_admin, get_current_user
from quizpot.db.models import User
from quizpot.dependencies import get_db, get_redis_dep
from quizpot.ledger import service
from quizpot.ledger.primitives import verify_user_ledger
from quizpot.ledger.schemas import (
    AdjustBalanceRequest,
    ApproveRequest,
    BalanceResponse,
    BonusRequest,
    DepositRequest,
    LedgerAuditResponse,
    RejectRequest,
    TransactionListResponse,
    TransactionResponse,
    WithdrawalRequest,
)

router = APIRouter(prefix="/api/v1", tags=["Wallet"])


def _page(items, total: int, page: int, per_page: int) -> TransactionListResponse:  # noqa: ANN001
    return TransactionListResponse(
        transactions=[TransactionResponse.model_validate(t) for t in items],
        total=total,
        page=page,
        per_page=per_page,
    )


def _balance(user: User) -> BalanceResponse:
    return BalanceResponse(
        balance=user.balance,
        playable_balance=user.playable_balance,
        bonus_balance=user.bonus_balance,
        total_earned=user.total_earned,
        total_deposited=user.total_deposited,
        total_withdrawn=user.total_withdrawn,
        can_withdraw=service.can_withdraw(user),
    )


# ── User wallet ──


@router.get("/wallet/balance", response_model=BalanceResponse)
async def get_balance(user: User = Depends(get_current_user)):
    return _balance(user)


@router.get("/wallet/transactions", response_model=TransactionListResponse)
async def list_my_transactions(
    type: str | None = Query(None),  # noqa: A002
    status: str | None = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    items, total = await service.list_transactions(
        db, user_id=user.id, type=type, status=status, limit=per_page, offset=(page - 1) * per_page,
    )
    return _page(items, total, page, per_page)


@router.get("/wallet/transactions/{transaction_id}", response_model=TransactionResponse)
async def get_my_transaction(
    transaction_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    txn = await service.get_transaction(db, transaction_id, user_id=user.id)
    return TransactionResponse.model_validate(txn)


@router.post("/wallet/deposits", response_model=TransactionResponse, status_code=201)
async def create_deposit(
    body: DepositRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Submit a deposit for admin confirmation."""
    txn = await service.request_deposit(
        db, user.id, body.amount, body.network, tx_hash=body.tx_hash, from_address=body.from_address,
    )
    return TransactionResponse.model_validate(txn)


@router.post("/wallet/withdrawals", response_model=TransactionResponse, status_code=201)
async def create_withdrawal(
    body: WithdrawalRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Request a withdrawal; funds move when an admin approves it."""
    txn = await service.request_withdrawal(db, user.id, body.amount, body.network, body.to_address)
    return TransactionResponse.model_validate(txn)


# ── Admin ──


@router.get("/admin/transactions", response_model=TransactionListResponse)
async def admin_list_transactions(
    user_id: int | None = Query(None),
    type: str | None = Query(None),  # noqa: A002
    status: str | None = Query("pending"),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    items, total = await service.list_transactions(
        db, user_id=user_id, type=type, status=status, limit=per_page, offset=(page - 1) * per_page,
    )
    return _page(items, total, page, per_page)


@router.post("/admin/deposits/{transaction_id}/approve", response_model=TransactionResponse)
async def admin_approve_deposit(
    transaction_id: int,
    body: ApproveRequest,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
    redis: object = Depends(get_redis_dep),
):
    txn = await service.approve_deposit(db, redis, transaction_id, admin.id, notes=body.notes)
    return TransactionResponse.model_validate(txn)


@router.post("/admin/deposits/{transaction_id}/reject", response_model=TransactionResponse)
async def admin_reject_deposit(
    transaction_id: int,
    body: RejectRequest,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
    redis: object = Depends(get_redis_dep),
):
    txn = await service.reject_deposit(db, redis, transaction_id, admin.id, body.reason, notes=body.notes)
    return TransactionResponse.model_validate(txn)


@router.post("/admin/withdrawals/{transaction_id}/approve", response_model=TransactionResponse)
async def admin_approve_withdrawal(
    transaction_id: int,
    body: ApproveRequest,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
    redis: object = Depends(get_redis_dep),
):
    txn = await service.approve_withdrawal(
        db, redis, transaction_id, admin.id, tx_hash=body.tx_hash, notes=body.notes,
    )
    return TransactionResponse.model_validate(txn)


@router.post("/admin/withdrawals/{transaction_id}/reject", response_model=TransactionResponse)
async def admin_reject_withdrawal(
    transaction_id: int,
    body: RejectRequest,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
    redis: object = Depends(get_redis_dep),
):
    txn = await service.reject_withdrawal(db, redis, transaction_id, admin.id, body.reason, notes=body.notes)
    return TransactionResponse.model_validate(txn)


@router.post("/admin/users/{user_id}/balance", response_model=BalanceResponse)
async def admin_adjust_balance(
    user_id: int,
    body: AdjustBalanceRequest,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
    redis: object = Depends(get_redis_dep),
):
    """Add, subtract or set one of a user's balance buckets."""
    await service.adjust_balance(
        db, redis, admin.id, user_id, body.amount, body.operation, bucket=body.bucket, reason=body.reason,
    )
    target = await db.get(User, user_id)
    return _balance(target)


@router.post("/admin/users/{user_id}/bonus", response_model=TransactionResponse, status_code=201)
async def admin_grant_bonus(
    user_id: int,
    body: BonusRequest,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
    redis: object = Depends(get_redis_dep),
):
    txn = await service.grant_bonus(db, redis, user_id, body.amount, body.description)
    return TransactionResponse.model_validate(txn)


@router.get("/admin/users/{user_id}/ledger-audit", response_model=LedgerAuditResponse)
async def admin_ledger_audit(
    user_id: int,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    """Replay a user's transaction history against the stored balances."""
    audit = await verify_user_ledger(db, user_id)
    return LedgerAuditResponse(
        user_id=audit.user_id, ok=audit.ok, checked=audit.checked, mismatches=audit.mismatches,
    )
