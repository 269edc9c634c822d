from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, BigInteger, Boolean, DateTime, ForeignKey, CheckConstraint, Index, JSON, Uuid, func, text
from sqlalchemy.dialects.postgresql import JSONB
from bagami.db import Base

SETTLEMENT_PREDICATE = "category = 'Delivery Income' AND affects_balance"

class Transaction(Base):
    """
    Append-only ledger entry.
      - type:   credit | debit (amount is always positive)
      - status: pending | completed | failed; only pending entries may transition
      - affects_balance: False for audit-only records (direct payments settled off-ledger)

    Over rows with affects_balance:
      wallet.balance == Σ(completed credits) - Σ(debits that are completed or are withdrawals)
    A withdrawal is deducted when requested; rejecting it posts a separate refund credit.
    """
    __tablename__ = "transactions"
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)

    type: Mapped[str] = mapped_column(String(8), nullable=False)        # credit | debit
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)     # minor units, > 0
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="XOF")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="completed")
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    reference_id: Mapped[str | None] = mapped_column(String(64), index=True, nullable=True)
    # "metadata" is reserved on declarative classes
    metadata_json: Mapped[dict | None] = mapped_column(
        "metadata", JSON().with_variant(JSONB(), "postgresql"), nullable=True
    )
    affects_balance: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_transaction_amount_positive"),
        CheckConstraint("type IN ('credit','debit')", name="ck_transaction_type"),
        CheckConstraint("status IN ('pending','completed','failed')", name="ck_transaction_status"),
        Index("ix_transactions_user_created", "user_id", "created_at"),
        # one settlement credit per payee and delivery
        Index(
            "uq_transactions_delivery_income_ref", "user_id", "reference_id", unique=True,
            postgresql_where=text(SETTLEMENT_PREDICATE),
            sqlite_where=text(SETTLEMENT_PREDICATE),
        ),
    )
