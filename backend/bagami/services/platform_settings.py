from __future__ import annotations
from uuid import UUID
import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bagami.models.platform_setting import PlatformSetting
from bagami.services import audit
from bagami.services.errors import InvalidSetting
from bagami.services.fees import COMMISSION_RATE_KEY, parse_rate
from bagami.services.ledger import unit_of_work

log = structlog.get_logger(__name__)


def _normalize(key: str, value: str) -> str:
    if key == COMMISSION_RATE_KEY:
        return str(parse_rate(value))
    value = (value or "").strip()
    if not value:
        raise InvalidSetting("Setting value cannot be empty", key=key)
    return value


async def list_settings(session: AsyncSession) -> list[PlatformSetting]:
    return list((await session.execute(select(PlatformSetting).order_by(PlatformSetting.key))).scalars().all())


async def get_setting(session: AsyncSession, key: str) -> PlatformSetting | None:
    return await session.get(PlatformSetting, key)


async def update_setting(
    session: AsyncSession,
    *,
    key: str,
    value: str,
    admin_id: UUID,
    description: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> tuple[PlatformSetting, bool]:
    """Upsert one setting. Returns the row and whether the audit entry was written."""
    key = (key or "").strip()
    if not key:
        raise InvalidSetting("Setting key is required")
    value = _normalize(key, value)

    async with unit_of_work(session, "update_setting", key=key, admin_id=admin_id):
        row = await session.get(PlatformSetting, key)
        old_value = row.value if row is not None else None
        if row is None:
            row = PlatformSetting(key=key, value=value, description=description, updated_by=admin_id)
            session.add(row)
        else:
            row.value = value
            row.updated_by = admin_id
            if description is not None:
                row.description = description
        await session.flush()

    audited = await audit.record_admin_action(
        session,
        admin_id=admin_id,
        action=audit.UPDATE_PLATFORM_SETTINGS,
        target_type="PlatformSetting",
        target_id=key,
        details={"key": key, "old_value": old_value, "new_value": value},
        ip_address=ip_address,
        user_agent=user_agent,
    )
    log.info("platform_setting_updated", key=key, old_value=old_value, new_value=value, admin_id=str(admin_id))
    return row, audited
