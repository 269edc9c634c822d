import asyncio
import uuid
import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from bagami.db import SessionLocal
from bagami.models.transaction import Transaction
from bagami.schemas.metadata import CATEGORY_BONUS, CATEGORY_REFUND, CATEGORY_WITHDRAWAL
from bagami.services import audit, ledger, notifications, withdrawals
from bagami.services.errors import AlreadyProcessed, InsufficientBalance, InvalidMetadata, NotFound
from conftest import balance_of

DEST = "+22670000000"


async def _request(user, amount, notifier):
    async with SessionLocal() as s:
        r = await withdrawals.request_withdrawal(s, user_id=user.id, amount=amount, payout_destination=DEST, notifier=notifier)
    return r.transaction


@pytest.mark.asyncio
async def test_request_reserves_funds(make_user, notifier):
    user = await make_user(balance=10000)
    tx = await _request(user, 4000, notifier)
    assert (tx.type, tx.status, tx.category) == ("debit", "pending", CATEGORY_WITHDRAWAL)
    assert tx.reference_id.startswith("WITHDRAWAL-")
    assert tx.metadata_json["payout_destination"] == DEST
    assert tx.metadata_json["withdrawal_type"] == "mobile_money"
    assert await balance_of(user.id) == 6000
    assert notifier.kinds(user.id) == [notifications.WITHDRAWAL_REQUESTED]


@pytest.mark.asyncio
async def test_request_requires_funds_and_destination(session, make_user, notifier):
    user = await make_user(balance=1000)
    with pytest.raises(InsufficientBalance):
        await withdrawals.request_withdrawal(session, user_id=user.id, amount=5000, payout_destination=DEST, notifier=notifier)
    with pytest.raises(InvalidMetadata):
        await withdrawals.request_withdrawal(session, user_id=user.id, amount=500, payout_destination="   ", notifier=notifier)
    assert await withdrawals.list_withdrawals(session) == []
    assert await balance_of(user.id) == 1000
    assert notifier.sent == []


@pytest.mark.asyncio
async def test_approve_keeps_balance_and_audits(session, make_user, notifier):
    user = await make_user(balance=10000)
    admin = await make_user(role="admin")
    tx = await _request(user, 4000, notifier)

    d = await withdrawals.approve_withdrawal(session, withdrawal_id=tx.id, admin_id=admin.id, notifier=notifier)
    assert d.withdrawal.status == "completed"
    assert d.withdrawal.metadata_json["approved_by"] == str(admin.id)
    assert d.refund is None and d.audit_recorded is True
    assert await balance_of(user.id) == 6000
    assert notifier.kinds(user.id)[-1] == notifications.WITHDRAWAL_APPROVED

    actions = await audit.list_admin_actions(session, target_id=tx.id)
    assert [a.action for a in actions] == [audit.APPROVE_WITHDRAWAL]
    assert actions[0].details["amount"] == 4000
    await session.rollback()

    with pytest.raises(AlreadyProcessed):
        await withdrawals.approve_withdrawal(session, withdrawal_id=tx.id, admin_id=admin.id, notifier=notifier)
    with pytest.raises(AlreadyProcessed):
        await withdrawals.reject_withdrawal(session, withdrawal_id=tx.id, admin_id=admin.id, reason="late", notifier=notifier)
    assert await balance_of(user.id) == 6000


@pytest.mark.asyncio
async def test_reject_refunds_with_new_entry(session, make_user, notifier):
    user = await make_user(balance=10000)
    admin = await make_user(role="admin")
    tx = await _request(user, 4000, notifier)

    d = await withdrawals.reject_withdrawal(session, withdrawal_id=tx.id, admin_id=admin.id,
                                            reason="Invalid mobile money number", notifier=notifier)
    assert d.withdrawal.status == "failed"
    assert d.withdrawal.metadata_json["rejection_reason"] == "Invalid mobile money number"
    assert d.refund.type == "credit" and d.refund.status == "completed"
    assert d.refund.category == CATEGORY_REFUND
    assert d.refund.amount == 4000
    assert d.refund.reference_id == f"REFUND-{tx.reference_id}"
    assert d.refund.metadata_json["original_withdrawal_id"] == str(tx.id)
    assert d.wallet.balance == 10000
    assert notifier.kinds(user.id)[-1] == notifications.WITHDRAWAL_REJECTED

    # the original debit is closed, not deleted
    original = await session.scalar(select(Transaction).where(Transaction.id == tx.id))
    assert original.amount == 4000 and original.status == "failed"
    related = (await session.execute(
        select(Transaction).where(Transaction.reference_id.in_([tx.reference_id, f"REFUND-{tx.reference_id}"]))
    )).scalars().all()
    assert sorted((t.type, t.status) for t in related) == [("credit", "completed"), ("debit", "failed")]
    assert await ledger.reconcile_wallet(session, user.id) == {"balance": 10000, "ledger_balance": 10000, "drift": 0}


@pytest.mark.asyncio
async def test_reject_requires_reason(session, make_user, notifier):
    user = await make_user(balance=1000)
    admin = await make_user(role="admin")
    tx = await _request(user, 1000, notifier)
    with pytest.raises(InvalidMetadata):
        await withdrawals.reject_withdrawal(session, withdrawal_id=tx.id, admin_id=admin.id, reason="  ")
    assert (await withdrawals.get_withdrawal(session, tx.id)).status == "pending"


@pytest.mark.asyncio
async def test_decisions_need_an_existing_withdrawal(session, make_user):
    user = await make_user(balance=500)
    admin = await make_user(role="admin")
    with pytest.raises(NotFound):
        await withdrawals.approve_withdrawal(session, withdrawal_id=uuid.uuid4(), admin_id=admin.id)
    bonus = (await ledger.list_transactions(session, user.id, category=CATEGORY_BONUS))[0]
    await session.rollback()
    with pytest.raises(NotFound):
        await withdrawals.reject_withdrawal(session, withdrawal_id=bonus.id, admin_id=admin.id, reason="not a withdrawal")


@pytest.mark.asyncio
async def test_concurrent_approvals_only_one_wins(make_user, notifier):
    user = await make_user(balance=5000)
    admin = await make_user(role="admin")
    tx = await _request(user, 2000, notifier)

    async def _approve():
        async with SessionLocal() as s:
            return await withdrawals.approve_withdrawal(s, withdrawal_id=tx.id, admin_id=admin.id, notifier=notifier)

    results = await asyncio.gather(_approve(), _approve(), return_exceptions=True)
    assert sum(1 for r in results if isinstance(r, withdrawals.WithdrawalDecision)) == 1
    assert sum(1 for r in results if isinstance(r, AlreadyProcessed)) == 1
    assert await balance_of(user.id) == 3000


@pytest.mark.asyncio
async def test_audit_failure_does_not_undo_decision(session, make_user, notifier, monkeypatch):
    class _FailingAuditSession:
        def __init__(self, *args, **kwargs):
            pass

        async def __aenter__(self):
            return self

        async def __aexit__(self, *exc):
            return False

        def add(self, obj):
            pass

        async def commit(self):
            raise OperationalError("INSERT INTO admin_actions", {}, Exception("disk I/O error"))

    user = await make_user(balance=3000)
    admin = await make_user(role="admin")
    tx = await _request(user, 1000, notifier)

    monkeypatch.setattr(audit, "AsyncSession", _FailingAuditSession)
    d = await withdrawals.approve_withdrawal(session, withdrawal_id=tx.id, admin_id=admin.id, notifier=notifier)
    assert d.audit_recorded is False
    assert (await withdrawals.get_withdrawal(session, tx.id)).status == "completed"


@pytest.mark.asyncio
async def test_concurrent_requests_cannot_overdraw(make_user, notifier):
    user = await make_user(balance=100)
    results = await asyncio.gather(_request(user, 70, notifier), _request(user, 70, notifier), return_exceptions=True)
    assert sum(1 for r in results if isinstance(r, Transaction)) == 1
    assert sum(1 for r in results if isinstance(r, InsufficientBalance)) == 1
    assert await balance_of(user.id) == 30
    async with SessionLocal() as s:
        pending = await withdrawals.list_withdrawals(s, status="pending")
        assert [w.amount for w in pending] == [70]
        assert await ledger.reconcile_wallet(s, user.id) == {"balance": 30, "ledger_balance": 30, "drift": 0}
