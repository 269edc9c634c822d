"""Wallet top-ups: admin bonuses for several users, and money a user adds to their own wallet."""
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone as dt_tz
from uuid import UUID, uuid4
import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from bagami.config import settings
from bagami.schemas.metadata import CATEGORY_BONUS
from bagami.services import audit, ledger
from bagami.services.accounts import require_active_user
from bagami.services.errors import InvalidAmount, InvalidMetadata, LedgerError
from bagami.services.notifications import Notifier

log = structlog.get_logger(__name__)


@dataclass(slots=True)
class TopUpResult:
    user_id: UUID
    success: bool
    transaction_id: UUID | None = None
    new_balance: int | None = None
    error: str | None = None
    code: str | None = None


@dataclass(slots=True)
class TopUpBatch:
    reference_id: str
    amount: int
    results: list[TopUpResult] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return len(self.results) - self.succeeded


async def top_up_wallets(
    session: AsyncSession,
    *,
    admin_id: UUID,
    user_ids: list[UUID],
    amount: int,
    reason: str,
    admin_email: str | None = None,
    notifier: Notifier | None = None,
) -> TopUpBatch:
    """
    One credit per user, each its own unit of work. A suspended or unknown
    account fails only its own entry.
    """
    ledger.require_positive_amount(amount)
    if amount > settings.max_topup_amount:
        raise InvalidAmount(f"Amount cannot exceed {settings.max_topup_amount} {settings.base_currency}", amount=amount)
    reason = (reason or "").strip()
    if not reason:
        raise InvalidMetadata("Reason is required")
    if not user_ids:
        raise InvalidMetadata("At least one user is required")

    batch = TopUpBatch(reference_id=f"TOPUP-{uuid4().hex[:12].upper()}", amount=amount)
    # dict.fromkeys keeps order and drops duplicates
    for user_id in dict.fromkeys(user_ids):
        try:
            await require_active_user(session, user_id)
            result = await ledger.credit(
                session,
                user_id=user_id,
                amount=amount,
                description=f"Admin top-up: {reason}",
                category=CATEGORY_BONUS,
                reference_id=batch.reference_id,
                metadata={"kind": "top_up", "topup_type": "admin_topup", "admin_id": admin_id,
                          "reason": reason, "admin_email": admin_email},
                notifier=notifier,
            )
        except LedgerError as e:
            await session.rollback()
            log.info("wallet_topup_skipped", user_id=str(user_id), code=e.code, reason=e.message)
            batch.results.append(TopUpResult(user_id=user_id, success=False, error=e.message, code=e.code))
            continue

        await audit.record_admin_action(
            session,
            admin_id=admin_id,
            action=audit.WALLET_TOPUP,
            target_type="Wallet",
            target_id=user_id,
            details={"amount": amount, "reason": reason, "reference_id": batch.reference_id,
                     "transaction_id": str(result.transaction.id), "new_balance": int(result.wallet.balance)},
        )
        batch.results.append(TopUpResult(
            user_id=user_id, success=True,
            transaction_id=result.transaction.id, new_balance=int(result.wallet.balance),
        ))

    log.info("wallet_topup_batch", admin_id=str(admin_id), reference_id=batch.reference_id,
             amount=amount, succeeded=batch.succeeded, failed=batch.failed)
    return batch


async def add_money(
    session: AsyncSession,
    *,
    user_id: UUID,
    amount: int,
    payment_method: str | None = None,
    notifier: Notifier | None = None,
) -> ledger.LedgerResult:
    """
    Credit the user's own wallet. There is no payment gateway yet, so the
    deposit completes immediately and is booked as a Bonus.
    """
    ledger.require_positive_amount(amount)
    if amount < settings.min_add_money_amount:
        raise InvalidAmount(f"Minimum amount is {settings.min_add_money_amount} {settings.base_currency}", amount=amount)
    if amount > settings.max_topup_amount:
        raise InvalidAmount(f"Maximum amount is {settings.max_topup_amount} {settings.base_currency} per transaction", amount=amount)
    method = (payment_method or "").strip() or "mobile_money"
    await require_active_user(session, user_id)

    result = await ledger.credit(
        session,
        user_id=user_id,
        amount=amount,
        description=f"Wallet top-up via {method}",
        category=CATEGORY_BONUS,
        reference_id=f"TOPUP-{uuid4().hex[:12].upper()}",
        metadata={"kind": "deposit", "payment_method": method, "topup_type": "manual",
                  "processed_at": datetime.now(dt_tz.utc)},
        notifier=notifier,
    )
    log.info("wallet_money_added", user_id=str(user_id), amount=amount, payment_method=method,
             transaction_id=str(result.transaction.id))
    return result
