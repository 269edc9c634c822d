from __future__ import annotations
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator
from uuid import UUID
import structlog
from sqlalchemy import select, update, func, and_, or_, case
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from bagami.config import settings
from bagami.models.transaction import Transaction
from bagami.models.wallet import Wallet
from bagami.schemas.metadata import CATEGORY_REFUND, CATEGORY_WITHDRAWAL, parse_metadata, validate_metadata
from bagami.services import notifications
from bagami.services.errors import InvalidAmount, InvalidMetadata, InsufficientBalance, LedgerError, PersistenceFailure
from bagami.services.notifications import Notifier

log = structlog.get_logger(__name__)

CREDIT = "credit"
DEBIT = "debit"

PENDING = "pending"
COMPLETED = "completed"
FAILED = "failed"

AUDIT_ONLY_FORBIDDEN_CATEGORIES = frozenset({CATEGORY_WITHDRAWAL, CATEGORY_REFUND})
AUDIT_ONLY_FORBIDDEN_KINDS = frozenset({"delivery_income", "withdrawal", "refund"})


@dataclass(slots=True)
class LedgerResult:
    transaction: Transaction
    wallet: Wallet


def require_positive_amount(amount: Any) -> int:
    # bool is an int subclass; floats and numeric strings are rejected too
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmount(amount=amount)
    return amount


@asynccontextmanager
async def unit_of_work(
    session: AsyncSession, op: str, *, conflict: LedgerError | None = None, **ctx,
) -> AsyncIterator[None]:
    """
    Commit everything done inside the block, or nothing.
    Domain errors roll back and propagate as-is; storage errors roll back and
    surface as PersistenceFailure. No retries.

    `conflict` is raised instead when a unique constraint rejects the write,
    i.e. a concurrent caller already did the same thing.
    """
    ctx = {k: str(v) if isinstance(v, UUID) else v for k, v in ctx.items()}
    try:
        yield
        await session.commit()
    except LedgerError as e:
        await session.rollback()
        log.info("ledger_rejected", op=op, code=e.code, reason=e.message, **ctx)
        raise
    except IntegrityError as e:
        await session.rollback()
        if conflict is None:
            log.error("ledger_persistence_failure", op=op, error=str(e), **ctx)
            raise PersistenceFailure(op=op) from e
        log.info("ledger_rejected", op=op, code=conflict.code, reason=conflict.message, **ctx)
        raise conflict from e
    except SQLAlchemyError as e:
        await session.rollback()
        log.error("ledger_persistence_failure", op=op, error=str(e), **ctx)
        raise PersistenceFailure(op=op) from e


# ---------- wallet row ----------

def _insert_wallet(session: AsyncSession):
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(Wallet)
    if dialect == "sqlite":
        return sqlite_insert(Wallet)
    raise NotImplementedError(f"unsupported database dialect: {dialect}")


async def get_or_create_wallet(session: AsyncSession, user_id: UUID) -> Wallet:
    """Existing wallet, or a new empty one in the base currency. Safe under concurrent first access."""
    wallet = await session.scalar(select(Wallet).where(Wallet.user_id == user_id))
    if wallet is not None:
        return wallet
    await session.execute(
        _insert_wallet(session)
        .values(user_id=user_id, balance=0, currency=settings.base_currency)
        .on_conflict_do_nothing(index_elements=[Wallet.user_id])
    )
    return await session.scalar(select(Wallet).where(Wallet.user_id == user_id))


async def _move_balance(session: AsyncSession, user_id: UUID, delta: int) -> Wallet | None:
    """
    Single conditional UPDATE; a decrement only matches while balance >= amount,
    so the sufficiency check and the write cannot be split by a concurrent debit.
    Returns None when the decrement did not apply.
    """
    stmt = update(Wallet).where(Wallet.user_id == user_id)
    if delta < 0:
        stmt = stmt.where(Wallet.balance >= -delta)
    stmt = (
        stmt.values(balance=Wallet.balance + delta, updated_at=func.now())
        .execution_options(synchronize_session="fetch", populate_existing=True)
        .returning(Wallet)
    )
    return (await session.execute(stmt)).scalars().first()


async def post_entry(
    session: AsyncSession,
    *,
    user_id: UUID,
    type: str,
    amount: int,
    description: str,
    category: str,
    status: str = COMPLETED,
    reference_id: str | None = None,
    metadata: Any = None,
    affects_balance: bool = True,
) -> LedgerResult:
    """
    Insert one ledger entry and, when it affects the balance, move the wallet.
    Does not commit: callers wrap it in unit_of_work together with whatever
    else must be atomic with it.
    """
    stored = validate_metadata(category, metadata)
    wallet = await get_or_create_wallet(session, user_id)
    if affects_balance:
        moved = await _move_balance(session, user_id, amount if type == CREDIT else -amount)
        if moved is None:
            raise InsufficientBalance(
                f"Insufficient balance: need {amount}, have {wallet.balance}",
                user_id=str(user_id), amount=amount, balance=wallet.balance,
            )
        wallet = moved

    tx = Transaction(
        user_id=user_id,
        type=type,
        amount=int(amount),
        currency=wallet.currency,
        status=status,
        description=description,
        category=category,
        reference_id=reference_id,
        metadata_json=stored,
        affects_balance=affects_balance,
    )
    session.add(tx)
    await session.flush()
    return LedgerResult(transaction=tx, wallet=wallet)


def transaction_context(tx: Transaction) -> dict[str, Any]:
    return {
        "transaction_id": str(tx.id),
        "type": tx.type,
        "amount": int(tx.amount),
        "currency": tx.currency,
        "category": tx.category,
        "description": tx.description,
    }


# ---------- public operations ----------

async def credit(
    session: AsyncSession,
    *,
    user_id: UUID,
    amount: int,
    description: str,
    category: str,
    reference_id: str | None = None,
    metadata: Any = None,
    notifier: Notifier | None = None,
) -> LedgerResult:
    require_positive_amount(amount)
    async with unit_of_work(session, "credit", user_id=user_id, amount=amount, category=category):
        result = await post_entry(
            session, user_id=user_id, type=CREDIT, amount=amount, description=description,
            category=category, reference_id=reference_id, metadata=metadata,
        )
    log.info("wallet_credited", user_id=str(user_id), amount=amount, category=category,
             transaction_id=str(result.transaction.id), balance=result.wallet.balance)
    notifications.dispatch(notifier, user_id, notifications.TRANSACTION, transaction_context(result.transaction))
    return result


async def debit(
    session: AsyncSession,
    *,
    user_id: UUID,
    amount: int,
    description: str,
    category: str,
    reference_id: str | None = None,
    metadata: Any = None,
    notifier: Notifier | None = None,
) -> LedgerResult:
    """Raises InsufficientBalance (and changes nothing) if the wallet cannot cover `amount`."""
    require_positive_amount(amount)
    async with unit_of_work(session, "debit", user_id=user_id, amount=amount, category=category):
        result = await post_entry(
            session, user_id=user_id, type=DEBIT, amount=amount, description=description,
            category=category, reference_id=reference_id, metadata=metadata,
        )
    log.info("wallet_debited", user_id=str(user_id), amount=amount, category=category,
             transaction_id=str(result.transaction.id), balance=result.wallet.balance)
    notifications.dispatch(notifier, user_id, notifications.TRANSACTION, transaction_context(result.transaction))
    return result


async def record_transaction(
    session: AsyncSession,
    *,
    user_id: UUID,
    amount: int,
    description: str,
    category: str,
    type: str = DEBIT,
    reference_id: str | None = None,
    metadata: Any = None,
    notifier: Notifier | None = None,
) -> LedgerResult:
    """
    Audit-only entry (e.g. a delivery paid directly, outside the wallet).
    The wallet balance is NOT touched and the entry is flagged affects_balance=False.
    Settlements, withdrawals and refunds only exist as real ledger movements.
    """
    require_positive_amount(amount)
    if type not in (CREDIT, DEBIT):
        raise InvalidMetadata(f"type must be '{CREDIT}' or '{DEBIT}'", type=type)
    if category in AUDIT_ONLY_FORBIDDEN_CATEGORIES:
        raise InvalidMetadata(f"{category} entries cannot be recorded without moving the balance", category=category)
    if metadata is not None and parse_metadata(metadata).kind in AUDIT_ONLY_FORBIDDEN_KINDS:
        raise InvalidMetadata("Settlement metadata cannot be recorded without moving the balance", category=category)
    async with unit_of_work(session, "record_transaction", user_id=user_id, amount=amount, category=category):
        result = await post_entry(
            session, user_id=user_id, type=type, amount=amount, description=description,
            category=category, reference_id=reference_id, metadata=metadata, affects_balance=False,
        )
    log.info("transaction_recorded", user_id=str(user_id), amount=amount, type=type, category=category,
             transaction_id=str(result.transaction.id))
    notifications.dispatch(notifier, user_id, notifications.DIRECT_PAYMENT, transaction_context(result.transaction))
    return result


# ---------- reads ----------

async def get_transaction(session: AsyncSession, transaction_id: UUID) -> Transaction | None:
    return await session.get(Transaction, transaction_id)


async def list_transactions(
    session: AsyncSession,
    user_id: UUID,
    *,
    type: str | None = None,
    status: str | None = None,
    category: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Transaction]:
    q = select(Transaction).where(Transaction.user_id == user_id)
    if type:
        q = q.where(Transaction.type == type)
    if status:
        q = q.where(Transaction.status == status)
    if category:
        q = q.where(Transaction.category == category)
    q = q.order_by(Transaction.created_at.desc(), Transaction.id).offset(offset).limit(limit)
    return list((await session.execute(q)).scalars().all())


async def ledger_balance(session: AsyncSession, user_id: UUID) -> int:
    """Balance recomputed from the ledger; audit-only entries are ignored."""
    applied_debit = and_(
        Transaction.type == DEBIT,
        or_(Transaction.status == COMPLETED, Transaction.category == CATEGORY_WITHDRAWAL),
    )
    signed = case(
        (and_(Transaction.type == CREDIT, Transaction.status == COMPLETED), Transaction.amount),
        (applied_debit, -Transaction.amount),
        else_=0,
    )
    total = await session.scalar(
        select(func.coalesce(func.sum(signed), 0))
        .where(Transaction.user_id == user_id, Transaction.affects_balance.is_(True))
    )
    return int(total or 0)


async def reconcile_wallet(session: AsyncSession, user_id: UUID) -> dict:
    wallet = await get_or_create_wallet(session, user_id)
    expected = await ledger_balance(session, user_id)
    drift = int(wallet.balance) - expected
    if drift:
        log.warning("wallet_drift_detected", user_id=str(user_id), balance=wallet.balance, ledger_balance=expected, drift=drift)
    return {"balance": int(wallet.balance), "ledger_balance": expected, "drift": drift}


async def wallet_stats(session: AsyncSession, user_id: UUID) -> dict:
    """Totals of wallet movements only; audit-only entries are not counted."""
    wallet = await get_or_create_wallet(session, user_id)

    async def _sum(*conds) -> int:
        total = await session.scalar(
            select(func.coalesce(func.sum(Transaction.amount), 0))
            .where(Transaction.user_id == user_id, Transaction.affects_balance.is_(True), *conds)
        )
        return int(total or 0)

    return {
        "balance": int(wallet.balance),
        "currency": wallet.currency,
        "total_credit": await _sum(Transaction.type == CREDIT, Transaction.status == COMPLETED),
        "total_debit": await _sum(Transaction.type == DEBIT, Transaction.status == COMPLETED),
        "pending_amount": await _sum(Transaction.status == PENDING),
    }
