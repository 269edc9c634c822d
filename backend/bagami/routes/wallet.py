from __future__ import annotations
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from bagami.db import get_session
from bagami.auth_deps import get_current_user
from bagami.models.user import User
from bagami.schemas.wallet import (
    WalletSnapshot, WalletPublic, WalletStats, TransactionPublic, LedgerEntryResponse,
    WithdrawRequest, RecordTransactionRequest, AddMoneyRequest,
)
from bagami.services import ledger
from bagami.services.accounts import require_active_user
from bagami.services.ledger import LedgerResult
from bagami.services.notifications import Notifier, current_notifier
from bagami.services.topups import add_money
from bagami.services.withdrawals import request_withdrawal

router = APIRouter(prefix="/wallet", tags=["wallet"])

def _entry(result: LedgerResult) -> LedgerEntryResponse:
    return LedgerEntryResponse(
        transaction=TransactionPublic.model_validate(result.transaction),
        wallet=WalletPublic.model_validate(result.wallet),
    )

@router.get("", response_model=WalletSnapshot)
async def get_wallet(session: AsyncSession = Depends(get_session), user: User = Depends(get_current_user)):
    wallet = await ledger.get_or_create_wallet(session, user.id)
    rows = await ledger.list_transactions(session, user.id, limit=20)
    # persist a wallet created on first access
    await session.commit()
    return WalletSnapshot(
        wallet=WalletPublic.model_validate(wallet),
        transactions=[TransactionPublic.model_validate(r) for r in rows],
    )

@router.get("/transactions", response_model=list[TransactionPublic])
async def get_transactions(
    type: str | None = Query(default=None, pattern="^(credit|debit)$"),
    status: str | None = Query(default=None, pattern="^(pending|completed|failed)$"),
    category: str | None = None,
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    session: AsyncSession = Depends(get_session),
    user: User = Depends(get_current_user),
):
    rows = await ledger.list_transactions(session, user.id, type=type, status=status, category=category, limit=limit, offset=offset)
    return [TransactionPublic.model_validate(r) for r in rows]

@router.get("/stats", response_model=WalletStats)
async def get_stats(session: AsyncSession = Depends(get_session), user: User = Depends(get_current_user)):
    stats = await ledger.wallet_stats(session, user.id)
    await session.commit()
    return stats

@router.post("/withdraw", response_model=LedgerEntryResponse)
async def withdraw(
    payload: WithdrawRequest,
    session: AsyncSession = Depends(get_session),
    user: User = Depends(get_current_user),
    notifier: Notifier = Depends(current_notifier),
):
    await require_active_user(session, user.id)
    result = await request_withdrawal(
        session, user_id=user.id, amount=payload.amount,
        payout_destination=payload.payout_destination, notifier=notifier,
    )
    return _entry(result)

@router.post("/add-money", response_model=LedgerEntryResponse)
async def add_money_to_wallet(
    payload: AddMoneyRequest,
    session: AsyncSession = Depends(get_session),
    user: User = Depends(get_current_user),
    notifier: Notifier = Depends(current_notifier),
):
    result = await add_money(
        session, user_id=user.id, amount=payload.amount, payment_method=payload.payment_method, notifier=notifier,
    )
    return _entry(result)

@router.post("/record-transaction", response_model=LedgerEntryResponse)
async def record_transaction(
    payload: RecordTransactionRequest,
    session: AsyncSession = Depends(get_session),
    user: User = Depends(get_current_user),
    notifier: Notifier = Depends(current_notifier),
):
    """Bookkeeping entry for a payment made outside the wallet. Balance is unchanged."""
    await require_active_user(session, user.id)
    result = await ledger.record_transaction(
        session,
        user_id=user.id,
        amount=payload.amount,
        description=payload.description,
        category=payload.category,
        type=payload.type,
        reference_id=payload.reference_id,
        metadata=payload.metadata,
        notifier=notifier,
    )
    return _entry(result)
