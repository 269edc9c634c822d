import asyncio
import pytest
from sqlalchemy import select, update, func
from sqlalchemy.exc import OperationalError

from bagami.db import SessionLocal
from bagami.models.wallet import Wallet
from bagami.schemas.metadata import (
    CATEGORY_BONUS, CATEGORY_DELIVERY_INCOME, CATEGORY_DELIVERY_PAYMENT, CATEGORY_GENERAL, CATEGORY_REFUND,
    CATEGORY_WITHDRAWAL,
)
from bagami.services import ledger, notifications
from bagami.services.errors import InsufficientBalance, InvalidAmount, InvalidMetadata, PersistenceFailure
from conftest import balance_of


@pytest.mark.asyncio
async def test_get_or_create_wallet_is_idempotent(session, make_user):
    user = await make_user()
    w1 = await ledger.get_or_create_wallet(session, user.id)
    w2 = await ledger.get_or_create_wallet(session, user.id)
    await session.commit()
    assert w1.user_id == w2.user_id == user.id
    assert w1.balance == 0 and w1.currency == "XOF"
    count = await session.scalar(select(func.count()).select_from(Wallet).where(Wallet.user_id == user.id))
    assert count == 1


@pytest.mark.asyncio
async def test_credit_then_debit(session, make_user, notifier):
    user = await make_user()
    r = await ledger.credit(session, user_id=user.id, amount=5000, description="Welcome bonus",
                            category=CATEGORY_BONUS, notifier=notifier)
    assert r.wallet.balance == 5000
    assert (r.transaction.type, r.transaction.status, r.transaction.amount) == ("credit", "completed", 5000)

    r = await ledger.debit(session, user_id=user.id, amount=1200, description="Delivery fee",
                           category=CATEGORY_DELIVERY_PAYMENT, notifier=notifier)
    assert r.wallet.balance == 3800
    assert r.transaction.type == "debit"
    assert notifier.kinds(user.id) == [notifications.TRANSACTION, notifications.TRANSACTION]
    assert await ledger.ledger_balance(session, user.id) == 3800


@pytest.mark.asyncio
@pytest.mark.parametrize("bad", [0, -5, 1.5, True, "100"])
async def test_invalid_amount_touches_nothing(session, make_user, bad):
    user = await make_user()
    with pytest.raises(InvalidAmount):
        await ledger.credit(session, user_id=user.id, amount=bad, description="x", category=CATEGORY_BONUS)
    with pytest.raises(InvalidAmount):
        await ledger.debit(session, user_id=user.id, amount=bad, description="x", category=CATEGORY_BONUS)
    assert await session.get(Wallet, user.id) is None


@pytest.mark.asyncio
async def test_debit_insufficient_balance(session, make_user, notifier):
    user = await make_user(balance=1000)
    with pytest.raises(InsufficientBalance):
        await ledger.debit(session, user_id=user.id, amount=1500, description="Too much",
                           category=CATEGORY_DELIVERY_PAYMENT, notifier=notifier)
    assert notifier.sent == []
    assert await balance_of(user.id) == 1000
    debits = await ledger.list_transactions(session, user.id, type="debit")
    assert debits == []


@pytest.mark.asyncio
async def test_concurrent_debits_cannot_overdraw(make_user):
    user = await make_user(balance=100)

    async def _debit():
        async with SessionLocal() as s:
            return await ledger.debit(s, user_id=user.id, amount=70, description="Concurrent",
                                      category=CATEGORY_DELIVERY_PAYMENT, notifier=notifications.LogNotifier())

    results = await asyncio.gather(_debit(), _debit(), return_exceptions=True)
    assert sum(1 for r in results if isinstance(r, ledger.LedgerResult)) == 1
    assert sum(1 for r in results if isinstance(r, InsufficientBalance)) == 1
    assert await balance_of(user.id) == 30


@pytest.mark.asyncio
async def test_record_transaction_is_audit_only(session, make_user, notifier):
    user = await make_user(balance=3000)
    r = await ledger.record_transaction(
        session, user_id=user.id, amount=2500, description="Paid in cash", type="debit",
        category=CATEGORY_DELIVERY_PAYMENT,
        metadata={"kind": "direct_payment", "payment_method": "cash", "delivery_id": "D-77"},
        notifier=notifier,
    )
    assert r.transaction.affects_balance is False
    assert r.wallet.balance == 3000
    assert notifier.kinds(user.id) == [notifications.DIRECT_PAYMENT]
    assert await ledger.reconcile_wallet(session, user.id) == {"balance": 3000, "ledger_balance": 3000, "drift": 0}
    stats = await ledger.wallet_stats(session, user.id)
    assert (stats["total_credit"], stats["total_debit"]) == (3000, 0)


@pytest.mark.asyncio
@pytest.mark.parametrize("category,metadata", [
    (CATEGORY_DELIVERY_INCOME, {"kind": "delivery_income", "delivery_id": "D-1", "gross_amount": 1000,
                                "fee_amount": 175, "net_amount": 825, "fee_rate": "0.175"}),
    (CATEGORY_WITHDRAWAL, {"kind": "withdrawal", "payout_destination": "+22670000000",
                           "requested_at": "2026-10-19T10:00:00+00:00"}),
    (CATEGORY_REFUND, {"kind": "refund", "original_withdrawal_id": "6f1c2a52-3d7e-4f3b-9a61-0c8f1e2d4b5a",
                       "rejection_reason": "x"}),
])
async def test_record_transaction_cannot_fake_wallet_movements(session, make_user, notifier, category, metadata):
    user = await make_user()
    with pytest.raises(InvalidMetadata):
        await ledger.record_transaction(session, user_id=user.id, amount=1000, description="x", type="credit",
                                        category=category, metadata=metadata, notifier=notifier)
    assert await ledger.list_transactions(session, user.id) == []
    assert notifier.sent == []


@pytest.mark.asyncio
async def test_record_transaction_rejects_unknown_type(session, make_user):
    user = await make_user()
    with pytest.raises(InvalidMetadata):
        await ledger.record_transaction(session, user_id=user.id, amount=100, description="x",
                                        category=CATEGORY_GENERAL, type="transfer")


@pytest.mark.asyncio
async def test_metadata_must_match_category(session, make_user):
    user = await make_user()
    with pytest.raises(InvalidMetadata):
        await ledger.credit(session, user_id=user.id, amount=100, description="x",
                            category=CATEGORY_WITHDRAWAL, metadata={"kind": "note", "notes": {}})
    with pytest.raises(InvalidMetadata):
        await ledger.credit(session, user_id=user.id, amount=100, description="x", category="Gift")
    with pytest.raises(InvalidMetadata):
        await ledger.credit(session, user_id=user.id, amount=100, description="x",
                            category=CATEGORY_GENERAL, metadata={"kind": "note", "unexpected": 1})
    assert await session.get(Wallet, user.id) is None


@pytest.mark.asyncio
async def test_notifier_failure_does_not_undo_credit(session, make_user):
    class Exploding:
        def notify(self, user_id, kind, context):
            raise ConnectionError("redis down")

    user = await make_user()
    r = await ledger.credit(session, user_id=user.id, amount=900, description="Bonus",
                            category=CATEGORY_BONUS, notifier=Exploding())
    assert r.wallet.balance == 900
    assert await balance_of(user.id) == 900


@pytest.mark.asyncio
async def test_list_transactions_and_stats(session, make_user, notifier):
    user = await make_user(balance=10000)
    await ledger.debit(session, user_id=user.id, amount=2500, description="Delivery",
                       category=CATEGORY_DELIVERY_PAYMENT, notifier=notifier)
    await ledger.credit(session, user_id=user.id, amount=500, description="Note", category=CATEGORY_GENERAL,
                        metadata={"kind": "note", "notes": {"source": "promo"}}, notifier=notifier)

    rows = await ledger.list_transactions(session, user.id)
    assert len(rows) == 3
    credits = await ledger.list_transactions(session, user.id, type="credit")
    assert {r.amount for r in credits} == {10000, 500}
    assert len(await ledger.list_transactions(session, user.id, limit=1)) == 1
    general = await ledger.list_transactions(session, user.id, category=CATEGORY_GENERAL)
    assert general[0].metadata_json == {"kind": "note", "notes": {"source": "promo"}}

    stats = await ledger.wallet_stats(session, user.id)
    assert stats == {"balance": 8000, "currency": "XOF", "total_credit": 10500, "total_debit": 2500, "pending_amount": 0}


@pytest.mark.asyncio
async def test_reconcile_reports_drift(session, make_user):
    user = await make_user(balance=1000)
    await session.execute(update(Wallet).where(Wallet.user_id == user.id).values(balance=1500))
    await session.commit()
    report = await ledger.reconcile_wallet(session, user.id)
    assert report == {"balance": 1500, "ledger_balance": 1000, "drift": 500}


@pytest.mark.asyncio
@pytest.mark.parametrize("op", [ledger.credit, ledger.debit])
async def test_storage_failure_rolls_back_everything(session, make_user, notifier, monkeypatch, op):
    user = await make_user(balance=3000)
    move_balance = ledger._move_balance

    async def _move_then_fail(s, user_id, delta):
        await move_balance(s, user_id, delta)
        raise OperationalError("INSERT INTO transactions", {}, Exception("disk I/O error"))

    monkeypatch.setattr(ledger, "_move_balance", _move_then_fail)
    with pytest.raises(PersistenceFailure) as exc:
        await op(session, user_id=user.id, amount=500, description="Lost write",
                 category=CATEGORY_DELIVERY_PAYMENT, notifier=notifier)
    assert exc.value.code == "PERSISTENCE_FAILURE"
    assert not session.in_transaction()
    assert notifier.sent == []

    assert await balance_of(user.id) == 3000
    rows = await ledger.list_transactions(session, user.id)
    assert [r.description for r in rows] == ["Opening balance"]
