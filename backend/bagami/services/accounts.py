from __future__ import annotations
from uuid import UUID
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bagami.models.user import User
from bagami.services.errors import AccountSuspended


async def require_active_user(session: AsyncSession, user_id: UUID) -> User:
    """Unknown and deactivated accounts are both treated as suspended."""
    user = await session.scalar(select(User).where(User.id == user_id))
    if user is None or not user.is_active:
        raise AccountSuspended(user_id=str(user_id))
    return user
