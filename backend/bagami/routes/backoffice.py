from __future__ import annotations
from datetime import date
from uuid import UUID
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from bagami.db import get_session
from bagami.auth_deps import require_admin
from bagami.models.user import User
from bagami.schemas.backoffice import (
    TopUpRequest, TopUpResponse, TopUpResultPublic, RejectWithdrawalRequest, WithdrawalDecisionResponse,
    PlatformSettingPublic, UpdateSettingRequest, UpdateSettingResponse, RevenueStats, WithdrawalStats,
    TransactionStats, TransactionPage, BackofficeTransaction, UserSummary, Pagination,
)
from bagami.schemas.wallet import TransactionPublic, WalletPublic
from bagami.services import ledger, platform_settings, reports, withdrawals
from bagami.services.errors import NotFound
from bagami.services.notifications import Notifier, current_notifier
from bagami.services.settlement import platform_revenue_stats
from bagami.services.topups import top_up_wallets
from bagami.services.withdrawals import WithdrawalDecision

router = APIRouter(prefix="/backoffice", tags=["backoffice"])

def _client(request: Request) -> dict:
    return {
        "ip_address": request.client.host if request.client else None,
        "user_agent": (request.headers.get("user-agent") or "")[:255] or None,
    }

def _decision(d: WithdrawalDecision) -> WithdrawalDecisionResponse:
    return WithdrawalDecisionResponse(
        withdrawal=TransactionPublic.model_validate(d.withdrawal),
        refund=TransactionPublic.model_validate(d.refund) if d.refund is not None else None,
        wallet=WalletPublic.model_validate(d.wallet) if d.wallet is not None else None,
        audit_recorded=d.audit_recorded,
    )

@router.post("/topup", response_model=TopUpResponse)
async def topup(
    payload: TopUpRequest,
    session: AsyncSession = Depends(get_session),
    admin: User = Depends(require_admin),
    notifier: Notifier = Depends(current_notifier),
):
    batch = await top_up_wallets(
        session,
        admin_id=admin.id,
        user_ids=payload.user_ids,
        amount=payload.amount,
        reason=payload.reason,
        admin_email=admin.email,
        notifier=notifier,
    )
    return TopUpResponse(
        reference_id=batch.reference_id,
        amount=batch.amount,
        succeeded=batch.succeeded,
        failed=batch.failed,
        results=[TopUpResultPublic.model_validate(r) for r in batch.results],
    )

@router.get("/withdrawals", response_model=list[TransactionPublic])
async def list_withdrawals(
    status: str = Query(default="pending", pattern="^(pending|completed|failed|all)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    session: AsyncSession = Depends(get_session),
    admin: User = Depends(require_admin),
):
    rows = await withdrawals.list_withdrawals(session, status=None if status == "all" else status, limit=limit, offset=offset)
    return [TransactionPublic.model_validate(r) for r in rows]

@router.get("/withdrawals/stats", response_model=WithdrawalStats)
async def get_withdrawal_stats(session: AsyncSession = Depends(get_session), admin: User = Depends(require_admin)):
    return await withdrawals.withdrawal_stats(session)

@router.post("/withdrawals/{withdrawal_id}/approve", response_model=WithdrawalDecisionResponse)
async def approve(
    withdrawal_id: UUID,
    request: Request,
    session: AsyncSession = Depends(get_session),
    admin: User = Depends(require_admin),
    notifier: Notifier = Depends(current_notifier),
):
    d = await withdrawals.approve_withdrawal(
        session, withdrawal_id=withdrawal_id, admin_id=admin.id, notifier=notifier, **_client(request),
    )
    return _decision(d)

@router.post("/withdrawals/{withdrawal_id}/reject", response_model=WithdrawalDecisionResponse)
async def reject(
    withdrawal_id: UUID,
    payload: RejectWithdrawalRequest,
    request: Request,
    session: AsyncSession = Depends(get_session),
    admin: User = Depends(require_admin),
    notifier: Notifier = Depends(current_notifier),
):
    d = await withdrawals.reject_withdrawal(
        session, withdrawal_id=withdrawal_id, admin_id=admin.id, reason=payload.reason,
        notifier=notifier, **_client(request),
    )
    return _decision(d)

@router.get("/platform-settings", response_model=list[PlatformSettingPublic])
async def get_settings(session: AsyncSession = Depends(get_session), admin: User = Depends(require_admin)):
    return [PlatformSettingPublic.model_validate(s) for s in await platform_settings.list_settings(session)]

@router.post("/platform-settings", response_model=UpdateSettingResponse)
async def update_settings(
    payload: UpdateSettingRequest,
    request: Request,
    session: AsyncSession = Depends(get_session),
    admin: User = Depends(require_admin),
):
    row, audited = await platform_settings.update_setting(
        session, key=payload.key, value=payload.value, description=payload.description,
        admin_id=admin.id, **_client(request),
    )
    return UpdateSettingResponse(setting=PlatformSettingPublic.model_validate(row), audit_recorded=audited)

@router.get("/revenue", response_model=RevenueStats)
async def revenue(
    days: int = Query(default=30, ge=1, le=365),
    session: AsyncSession = Depends(get_session),
    admin: User = Depends(require_admin),
):
    return await platform_revenue_stats(session, days=days)

@router.get("/transactions", response_model=TransactionPage)
async def list_transactions(
    search: str | None = Query(default=None, max_length=100),
    type: str = Query(default="all", pattern="^(credit|debit|all)$"),
    status: str = Query(default="all", pattern="^(pending|completed|failed|all)$"),
    category: str = "all",
    date_from: date | None = None,
    date_to: date | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
    admin: User = Depends(require_admin),
):
    found = await reports.search_transactions(
        session,
        search=search,
        type=None if type == "all" else type,
        status=None if status == "all" else status,
        category=None if category == "all" else category,
        date_from=date_from,
        date_to=date_to,
        page=page,
        per_page=limit,
    )
    return TransactionPage(
        transactions=[
            BackofficeTransaction(
                **TransactionPublic.model_validate(tx).model_dump(exclude={"metadata"}),
                metadata_json=tx.metadata_json,
                user=UserSummary.model_validate(owner),
            )
            for tx, owner in found.items
        ],
        pagination=Pagination(
            current_page=found.page,
            total_pages=found.total_pages,
            total_items=found.total,
            items_per_page=found.per_page,
        ),
    )

@router.get("/transactions/stats", response_model=TransactionStats)
async def get_transaction_stats(session: AsyncSession = Depends(get_session), admin: User = Depends(require_admin)):
    return await reports.transaction_stats(session)

@router.get("/transactions/{transaction_id}", response_model=TransactionPublic)
async def get_transaction(
    transaction_id: UUID,
    session: AsyncSession = Depends(get_session),
    admin: User = Depends(require_admin),
):
    tx = await ledger.get_transaction(session, transaction_id)
    if tx is None:
        raise NotFound("Transaction not found", transaction_id=str(transaction_id))
    return TransactionPublic.model_validate(tx)
