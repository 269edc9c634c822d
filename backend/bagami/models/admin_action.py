from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, DateTime, JSON, Uuid, func
from sqlalchemy.dialects.postgresql import JSONB
from bagami.db import Base

class AdminAction(Base):
    """Backoffice audit trail: who did what to which record."""
    __tablename__ = "admin_actions"
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    admin_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True, nullable=False)
    action: Mapped[str] = mapped_column(String(64), nullable=False)       # APPROVE_WITHDRAWAL | REJECT_WITHDRAWAL | wallet_topup | ...
    target_type: Mapped[str] = mapped_column(String(32), nullable=False)  # Transaction | User | PlatformSettings
    target_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    details: Mapped[dict | None] = mapped_column(JSON().with_variant(JSONB(), "postgresql"), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
