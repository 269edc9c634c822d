"""Backoffice views over the whole ledger."""
from __future__ import annotations
import math
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone as dt_tz
from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from bagami.models.transaction import Transaction
from bagami.models.user import User
from bagami.services.ledger import COMPLETED, CREDIT, DEBIT, FAILED, PENDING
from bagami.services.settlement import settled_fee_metadata


@dataclass(slots=True)
class TransactionPage:
    items: list[tuple[Transaction, User]] = field(default_factory=list)
    total: int = 0
    page: int = 1
    per_page: int = 20

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.per_page) if self.per_page else 0


def _day_start(d: date) -> datetime:
    return datetime.combine(d, time.min, tzinfo=dt_tz.utc)


async def search_transactions(
    session: AsyncSession,
    *,
    search: str | None = None,
    type: str | None = None,
    status: str | None = None,
    category: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    page: int = 1,
    per_page: int = 20,
) -> TransactionPage:
    """
    Every user's entries, newest first. `search` matches the description or
    the owner's name or email, case-insensitively; dates are whole UTC days,
    both ends included.
    """
    conds = []
    term = (search or "").strip()
    if term:
        conds.append(or_(
            Transaction.description.icontains(term, autoescape=True),
            User.name.icontains(term, autoescape=True),
            User.email.icontains(term, autoescape=True),
        ))
    if type:
        conds.append(Transaction.type == type)
    if status:
        conds.append(Transaction.status == status)
    if category:
        conds.append(Transaction.category == category)
    if date_from:
        conds.append(Transaction.created_at >= _day_start(date_from))
    if date_to:
        conds.append(Transaction.created_at < _day_start(date_to + timedelta(days=1)))

    joined = select(Transaction, User).join(User, User.id == Transaction.user_id).where(*conds)
    total = await session.scalar(
        select(func.count()).select_from(Transaction).join(User, User.id == Transaction.user_id).where(*conds)
    )
    q = joined.order_by(Transaction.created_at.desc(), Transaction.id).offset((page - 1) * per_page).limit(per_page)
    rows = (await session.execute(q)).all()
    return TransactionPage(items=[(tx, user) for tx, user in rows], total=int(total or 0), page=page, per_page=per_page)


async def transaction_stats(session: AsyncSession) -> dict:
    """Counts cover every entry; money totals only what moved wallets."""
    counts = dict((await session.execute(
        select(Transaction.status, func.count()).group_by(Transaction.status)
    )).all())

    async def _sum(type_: str) -> int:
        total = await session.scalar(
            select(func.coalesce(func.sum(Transaction.amount), 0)).where(
                Transaction.type == type_,
                Transaction.status == COMPLETED,
                Transaction.affects_balance.is_(True),
            )
        )
        return int(total or 0)

    settlements = await settled_fee_metadata(session)
    return {
        "total_transactions": int(sum(counts.values())),
        "completed_count": int(counts.get(COMPLETED, 0)),
        "pending_count": int(counts.get(PENDING, 0)),
        "failed_count": int(counts.get(FAILED, 0)),
        "total_credits": await _sum(CREDIT),
        "total_debits": await _sum(DEBIT),
        "total_fees": sum(int(m["fee_amount"]) for m in settlements),
    }
