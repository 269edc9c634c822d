from __future__ import annotations
from typing import Any
from uuid import UUID
import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from bagami.models.admin_action import AdminAction

log = structlog.get_logger(__name__)

APPROVE_WITHDRAWAL = "APPROVE_WITHDRAWAL"
REJECT_WITHDRAWAL = "REJECT_WITHDRAWAL"
WALLET_TOPUP = "wallet_topup"
UPDATE_PLATFORM_SETTINGS = "UPDATE_PLATFORM_SETTINGS"


async def record_admin_action(
    session: AsyncSession,
    *,
    admin_id: UUID,
    action: str,
    target_type: str,
    target_id: Any,
    details: dict | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> bool:
    """
    Write one audit row on a separate session, after the audited change committed.
    Returns False (and logs) on failure; the audited change stands either way.
    """
    try:
        async with AsyncSession(session.bind, expire_on_commit=False) as audit_session:
            audit_session.add(AdminAction(
                admin_id=admin_id,
                action=action,
                target_type=target_type,
                target_id=str(target_id),
                details=details,
                ip_address=ip_address,
                user_agent=user_agent,
            ))
            await audit_session.commit()
    except SQLAlchemyError as e:
        log.error("admin_action_log_failed", admin_id=str(admin_id), action=action, target_id=str(target_id), error=str(e))
        return False
    log.info("admin_action", admin_id=str(admin_id), action=action, target_type=target_type, target_id=str(target_id))
    return True


async def list_admin_actions(session: AsyncSession, *, target_id: Any | None = None, limit: int = 50) -> list[AdminAction]:
    q = select(AdminAction)
    if target_id is not None:
        q = q.where(AdminAction.target_id == str(target_id))
    q = q.order_by(AdminAction.created_at.desc()).limit(limit)
    return list((await session.execute(q)).scalars().all())
