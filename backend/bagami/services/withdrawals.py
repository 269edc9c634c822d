"""Cash-out requests.

    pending --approve--> completed   (no balance change; funds left at request time)
    pending --reject---> failed      (+ new completed Refund credit for the same amount)

A withdrawal is a debit Transaction in category "Withdrawal". Only pending
requests can be decided; the status change is a conditional UPDATE so two
admins racing on the same request cannot both win.
"""
from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timezone as dt_tz
from typing import Any
from uuid import UUID, uuid4
import structlog
from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from bagami.models.transaction import Transaction
from bagami.models.wallet import Wallet
from bagami.schemas.metadata import CATEGORY_REFUND, CATEGORY_WITHDRAWAL, parse_metadata, validate_metadata
from bagami.services import audit, ledger, notifications
from bagami.services.errors import AlreadyProcessed, InvalidMetadata, NotFound
from bagami.services.ledger import COMPLETED, CREDIT, DEBIT, FAILED, PENDING, LedgerResult, unit_of_work
from bagami.services.notifications import Notifier

log = structlog.get_logger(__name__)


@dataclass(slots=True)
class WithdrawalDecision:
    withdrawal: Transaction
    refund: Transaction | None = None
    wallet: Wallet | None = None
    audit_recorded: bool = True


def _now() -> datetime:
    return datetime.now(dt_tz.utc)


def _context(tx: Transaction, **extra) -> dict[str, Any]:
    return {"transaction_id": str(tx.id), "amount": int(tx.amount), "currency": tx.currency, **extra}


async def request_withdrawal(
    session: AsyncSession,
    *,
    user_id: UUID,
    amount: int,
    payout_destination: str,
    withdrawal_type: str = "mobile_money",
    notifier: Notifier | None = None,
) -> LedgerResult:
    """
    Reserve `amount` immediately: the pending debit and the balance decrement
    commit together, so the same funds cannot be withdrawn or spent twice.
    """
    ledger.require_positive_amount(amount)
    destination = (payout_destination or "").strip()
    meta = parse_metadata({
        "kind": "withdrawal",
        "payout_destination": destination,
        "withdrawal_type": withdrawal_type,
        "requested_at": _now(),
    })
    async with unit_of_work(session, "request_withdrawal", user_id=user_id, amount=amount):
        result = await ledger.post_entry(
            session,
            user_id=user_id,
            type=DEBIT,
            amount=amount,
            status=PENDING,
            description=f"Withdrawal to mobile money ({destination})",
            category=CATEGORY_WITHDRAWAL,
            reference_id=f"WITHDRAWAL-{uuid4().hex[:12].upper()}",
            metadata=meta,
        )
    log.info("withdrawal_requested", user_id=str(user_id), amount=amount,
             transaction_id=str(result.transaction.id), balance=result.wallet.balance)
    notifications.dispatch(notifier, user_id, notifications.WITHDRAWAL_REQUESTED, _context(result.transaction))
    return result


async def get_withdrawal(session: AsyncSession, withdrawal_id: UUID) -> Transaction:
    tx = await session.get(Transaction, withdrawal_id)
    if tx is None or tx.category != CATEGORY_WITHDRAWAL:
        raise NotFound("Withdrawal request not found", withdrawal_id=str(withdrawal_id))
    return tx


async def list_withdrawals(
    session: AsyncSession, *, status: str | None = None, limit: int = 50, offset: int = 0,
) -> list[Transaction]:
    q = select(Transaction).where(Transaction.category == CATEGORY_WITHDRAWAL)
    if status:
        q = q.where(Transaction.status == status)
    q = q.order_by(Transaction.created_at.desc(), Transaction.id).offset(offset).limit(limit)
    return list((await session.execute(q)).scalars().all())


async def withdrawal_stats(session: AsyncSession) -> dict:
    rows = (await session.execute(
        select(Transaction.status, func.count(), func.coalesce(func.sum(Transaction.amount), 0))
        .where(Transaction.category == CATEGORY_WITHDRAWAL)
        .group_by(Transaction.status)
    )).all()
    by_status = {status: (int(count), int(total)) for status, count, total in rows}
    return {
        "total_pending": by_status.get(PENDING, (0, 0))[0],
        "total_completed": by_status.get(COMPLETED, (0, 0))[0],
        "total_failed": by_status.get(FAILED, (0, 0))[0],
        "pending_amount": by_status.get(PENDING, (0, 0))[1],
    }


async def _load_pending(session: AsyncSession, withdrawal_id: UUID) -> Transaction:
    tx = await get_withdrawal(session, withdrawal_id)
    if tx.status != PENDING:
        raise AlreadyProcessed(withdrawal_id=str(withdrawal_id), status=tx.status)
    return tx


async def _close(session: AsyncSession, tx: Transaction, status: str, annotations: dict[str, Any]) -> Transaction:
    meta = parse_metadata(tx.metadata_json).model_copy(update=annotations)
    stored = validate_metadata(CATEGORY_WITHDRAWAL, meta)
    stmt = (
        update(Transaction)
        .where(Transaction.id == tx.id, Transaction.status == PENDING)
        .values({Transaction.status: status, Transaction.metadata_json: stored, Transaction.updated_at: func.now()})
        .execution_options(synchronize_session="fetch", populate_existing=True)
        .returning(Transaction)
    )
    closed = (await session.execute(stmt)).scalars().first()
    if closed is None:
        raise AlreadyProcessed(withdrawal_id=str(tx.id))
    return closed


async def approve_withdrawal(
    session: AsyncSession,
    *,
    withdrawal_id: UUID,
    admin_id: UUID,
    notifier: Notifier | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> WithdrawalDecision:
    async with unit_of_work(session, "approve_withdrawal", withdrawal_id=withdrawal_id, admin_id=admin_id):
        tx = await _load_pending(session, withdrawal_id)
        tx = await _close(session, tx, COMPLETED, {"approved_by": admin_id, "approved_at": _now()})

    audited = await audit.record_admin_action(
        session,
        admin_id=admin_id,
        action=audit.APPROVE_WITHDRAWAL,
        target_type="Transaction",
        target_id=tx.id,
        details={"amount": int(tx.amount), "currency": tx.currency, "user_id": str(tx.user_id)},
        ip_address=ip_address,
        user_agent=user_agent,
    )
    log.info("withdrawal_approved", withdrawal_id=str(tx.id), admin_id=str(admin_id), amount=int(tx.amount))
    notifications.dispatch(notifier, tx.user_id, notifications.WITHDRAWAL_APPROVED, _context(tx))
    return WithdrawalDecision(withdrawal=tx, audit_recorded=audited)


async def reject_withdrawal(
    session: AsyncSession,
    *,
    withdrawal_id: UUID,
    admin_id: UUID,
    reason: str,
    notifier: Notifier | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> WithdrawalDecision:
    """
    Close the request as failed and give the money back as a new Refund credit.
    The original entry is never reversed in place.
    """
    reason = (reason or "").strip()
    if not reason:
        raise InvalidMetadata("Rejection reason is required")

    async with unit_of_work(session, "reject_withdrawal", withdrawal_id=withdrawal_id, admin_id=admin_id):
        tx = await _load_pending(session, withdrawal_id)
        tx = await _close(session, tx, FAILED, {"rejected_by": admin_id, "rejected_at": _now(), "rejection_reason": reason})
        refund = await ledger.post_entry(
            session,
            user_id=tx.user_id,
            type=CREDIT,
            amount=int(tx.amount),
            description="Withdrawal rejected - Amount refunded",
            category=CATEGORY_REFUND,
            reference_id=f"REFUND-{tx.reference_id or tx.id}",
            metadata={
                "kind": "refund",
                "original_withdrawal_id": tx.id,
                "rejection_reason": reason,
                "rejected_by": admin_id,
            },
        )

    audited = await audit.record_admin_action(
        session,
        admin_id=admin_id,
        action=audit.REJECT_WITHDRAWAL,
        target_type="Transaction",
        target_id=tx.id,
        details={
            "amount": int(tx.amount),
            "currency": tx.currency,
            "user_id": str(tx.user_id),
            "reason": reason,
            "refund_transaction_id": str(refund.transaction.id),
        },
        ip_address=ip_address,
        user_agent=user_agent,
    )
    log.info("withdrawal_rejected", withdrawal_id=str(tx.id), admin_id=str(admin_id), amount=int(tx.amount),
             refund_id=str(refund.transaction.id), balance=refund.wallet.balance)
    notifications.dispatch(notifier, tx.user_id, notifications.WITHDRAWAL_REJECTED, _context(tx, reason=reason))
    return WithdrawalDecision(withdrawal=tx, refund=refund.transaction, wallet=refund.wallet, audit_recorded=audited)
