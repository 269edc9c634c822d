from __future__ import annotations
import asyncio
from uuid import UUID
from bagami.db import SessionLocal
from bagami.models.notification import Notification
from bagami.models.user import User

def _amount(ctx: dict) -> str:
    return f"{int(ctx.get('amount') or 0):,} {ctx.get('currency') or ''}".strip()

def render(kind: str, ctx: dict) -> tuple[str, str]:
    """Plain title/message for a notification kind. Localisation happens client-side."""
    if kind == "transaction":
        desc = ctx.get("description")
        suffix = f": {desc}" if desc else ""
        if ctx.get("type") == "credit":
            return "Wallet credited", f"{_amount(ctx)} was added to your wallet{suffix}"
        return "Wallet debited", f"{_amount(ctx)} was deducted from your wallet{suffix}"
    if kind == "direct_payment":
        return "Payment recorded", f"A direct payment of {_amount(ctx)} was recorded ({ctx.get('category', '')})"
    if kind == "withdrawal_requested":
        return "Withdrawal requested", f"Your withdrawal of {_amount(ctx)} is pending approval"
    if kind == "withdrawal_approved":
        return "Withdrawal approved", f"Your withdrawal of {_amount(ctx)} has been approved"
    if kind == "withdrawal_rejected":
        return "Withdrawal rejected", f"Your withdrawal of {_amount(ctx)} was rejected and refunded. Reason: {ctx.get('reason', '')}"
    return "Notification", ctx.get("description") or kind

async def _run(user_id: str, kind: str, context: dict):
    async with SessionLocal() as session:
        uid = UUID(user_id)
        if not await session.get(User, uid):
            return
        title, message = render(kind, context)
        session.add(Notification(
            user_id=uid,
            type=kind[:32],
            title=title[:120],
            message=message[:500],
            related_id=context.get("transaction_id"),
        ))
        await session.commit()

def deliver_notification(user_id: str, kind: str, context: dict):
    # RQ entry point (sync); run the async coroutine
    asyncio.run(_run(user_id, kind, context))
