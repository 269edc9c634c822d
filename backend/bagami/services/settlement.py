from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timezone as dt_tz, timedelta
from uuid import UUID
import structlog
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from bagami.models.transaction import Transaction
from bagami.models.wallet import Wallet
from bagami.schemas.metadata import CATEGORY_DELIVERY_INCOME, DeliveryIncomeMetadata
from bagami.services import ledger, notifications
from bagami.services.errors import AlreadyProcessed, InvalidAmount
from bagami.services.fees import FeeBreakdown, RateProvider, SettingsRateProvider, calculate_fee
from bagami.services.notifications import Notifier

log = structlog.get_logger(__name__)


@dataclass(slots=True)
class Settlement:
    fee: FeeBreakdown
    transaction: Transaction
    wallet: Wallet


def delivery_reference(delivery_id: str) -> str:
    return f"DELIVERY-{delivery_id}"


def _settled_income():
    # audit-only entries never count as a settlement
    return (
        Transaction.category == CATEGORY_DELIVERY_INCOME,
        Transaction.status == ledger.COMPLETED,
        Transaction.affects_balance.is_(True),
    )


async def _already_settled(session: AsyncSession, payee_id: UUID, delivery_id: str) -> bool:
    count = await session.scalar(
        select(func.count()).select_from(Transaction).where(
            Transaction.user_id == payee_id,
            Transaction.reference_id == delivery_reference(delivery_id),
            *_settled_income(),
        )
    )
    return bool(count)


async def settle_delivery_payment(
    session: AsyncSession,
    *,
    payee_id: UUID,
    gross_amount: int,
    delivery_id: str,
    payer_id: UUID | None = None,
    description: str | None = None,
    rate_provider: RateProvider | None = None,
    notifier: Notifier | None = None,
) -> Settlement:
    """
    Credit the provider with gross minus the platform fee.

    The fee is not posted against anyone: it is the gap between gross and net,
    frozen into the credit's metadata at the rate in force right now. Capturing
    the payer's funds is a separate step.

    A delivery is settled at most once per payee. The lookup below rejects the
    common case; the unique index on (user_id, reference_id) for settlement
    entries rejects a concurrent duplicate at commit.
    """
    ledger.require_positive_amount(gross_amount)
    duplicate = AlreadyProcessed("Delivery payment has already been settled", delivery_id=delivery_id)

    async with ledger.unit_of_work(session, "settle_delivery_payment", conflict=duplicate,
                                   payee_id=payee_id, delivery_id=delivery_id):
        if await _already_settled(session, payee_id, delivery_id):
            raise duplicate
        fee = await calculate_fee(gross_amount, rate_provider=rate_provider or SettingsRateProvider(session))
        if fee.net_amount <= 0:
            raise InvalidAmount("Nothing left to credit after the platform fee", gross_amount=gross_amount, fee_amount=fee.fee_amount)
        result = await ledger.post_entry(
            session,
            user_id=payee_id,
            type=ledger.CREDIT,
            amount=fee.net_amount,
            description=description or f"Payment received for delivery {delivery_id}",
            category=CATEGORY_DELIVERY_INCOME,
            reference_id=delivery_reference(delivery_id),
            metadata=DeliveryIncomeMetadata(
                delivery_id=delivery_id,
                gross_amount=fee.gross_amount,
                fee_amount=fee.fee_amount,
                net_amount=fee.net_amount,
                fee_rate=fee.fee_rate,
                payer_id=payer_id,
            ),
        )

    log.info(
        "delivery_payment_settled",
        delivery_id=delivery_id, payee_id=str(payee_id),
        gross_amount=fee.gross_amount, fee_amount=fee.fee_amount, net_amount=fee.net_amount,
        fee_rate=str(fee.fee_rate), balance=result.wallet.balance,
    )
    notifications.dispatch(notifier, payee_id, notifications.TRANSACTION, ledger.transaction_context(result.transaction))
    return Settlement(fee=fee, transaction=result.transaction, wallet=result.wallet)


async def settled_fee_metadata(session: AsyncSession, since: datetime | None = None) -> list[dict]:
    """Fee splits of real settlements, read back from their metadata."""
    q = select(Transaction.metadata_json).where(*_settled_income())
    if since is not None:
        q = q.where(Transaction.created_at >= since)
    rows = (await session.execute(q)).scalars().all()
    return [m for m in rows if m and m.get("kind") == "delivery_income"]


async def platform_revenue_stats(session: AsyncSession, days: int = 30) -> dict:
    """Commission earned in the window."""
    settlements = await settled_fee_metadata(session, since=datetime.now(dt_tz.utc) - timedelta(days=days))
    total_fees = sum(int(m["fee_amount"]) for m in settlements)
    gross_volume = sum(int(m["gross_amount"]) for m in settlements)
    return {
        "period_days": days,
        "settlements": len(settlements),
        "total_fee_amount": total_fees,
        "gross_volume": gross_volume,
        "net_paid_out": gross_volume - total_fees,
        "avg_fee_per_settlement": int(total_fees / len(settlements)) if settlements else 0,
    }
