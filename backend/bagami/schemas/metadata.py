"""Typed transaction metadata.

Each ledger category accepts a fixed set of metadata shapes, tagged by `kind`.
Metadata is validated when the entry is written and stored as JSON.
"""
from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Literal, Union
from uuid import UUID
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, model_validator

from bagami.services.errors import InvalidMetadata

CATEGORY_DELIVERY_INCOME = "Delivery Income"
CATEGORY_DELIVERY_PAYMENT = "Delivery Payment"
CATEGORY_FEE = "Fee"
CATEGORY_BONUS = "Bonus"
CATEGORY_WITHDRAWAL = "Withdrawal"
CATEGORY_REFUND = "Refund"
CATEGORY_GENERAL = "General"


class _Metadata(BaseModel):
    model_config = ConfigDict(extra="forbid")


class DeliveryIncomeMetadata(_Metadata):
    """Fee split captured at settlement time; never recomputed afterwards."""
    kind: Literal["delivery_income"] = "delivery_income"
    delivery_id: str = Field(min_length=1, max_length=64)
    gross_amount: int = Field(gt=0)
    fee_amount: int = Field(ge=0)
    net_amount: int = Field(ge=0)
    fee_rate: Decimal = Field(ge=0, le=1)
    payer_id: UUID | None = None

    @model_validator(mode="after")
    def _split_adds_up(self):
        if self.fee_amount + self.net_amount != self.gross_amount:
            raise ValueError("fee_amount + net_amount must equal gross_amount")
        return self


class DeliveryPaymentMetadata(_Metadata):
    kind: Literal["delivery_payment"] = "delivery_payment"
    delivery_id: str = Field(min_length=1, max_length=64)
    payee_id: UUID | None = None
    gross_amount: int | None = Field(default=None, gt=0)


class DirectPaymentMetadata(_Metadata):
    """Payment settled outside the wallet (cash, mobile money); bookkeeping only."""
    kind: Literal["direct_payment"] = "direct_payment"
    payment_method: str = Field(default="direct", min_length=1, max_length=32)
    delivery_id: str | None = Field(default=None, max_length=64)
    counterparty_id: UUID | None = None


class WithdrawalMetadata(_Metadata):
    kind: Literal["withdrawal"] = "withdrawal"
    payout_destination: str = Field(min_length=1, max_length=64)
    withdrawal_type: str = "mobile_money"
    requested_at: datetime
    approved_by: UUID | None = None
    approved_at: datetime | None = None
    rejected_by: UUID | None = None
    rejected_at: datetime | None = None
    rejection_reason: str | None = None

    @model_validator(mode="after")
    def _destination_not_blank(self):
        if not self.payout_destination.strip():
            raise ValueError("payout_destination is required")
        return self


class RefundMetadata(_Metadata):
    kind: Literal["refund"] = "refund"
    original_withdrawal_id: UUID
    rejection_reason: str = Field(min_length=1, max_length=255)
    rejected_by: UUID | None = None


class TopUpMetadata(_Metadata):
    kind: Literal["top_up"] = "top_up"
    topup_type: str = "admin"
    admin_id: UUID
    reason: str = Field(min_length=1, max_length=255)
    admin_email: str | None = None


class DepositMetadata(_Metadata):
    """Money the user added themselves; credited immediately until a payment gateway confirms deposits."""
    kind: Literal["deposit"] = "deposit"
    payment_method: str = Field(default="mobile_money", min_length=1, max_length=32)
    topup_type: Literal["manual", "gateway"] = "manual"
    processed_at: datetime


class NoteMetadata(_Metadata):
    """Free annotations for categories without a dedicated shape."""
    kind: Literal["note"] = "note"
    notes: dict[str, str | int | bool | None] = Field(default_factory=dict)


TransactionMetadata = Annotated[
    Union[
        DeliveryIncomeMetadata,
        DeliveryPaymentMetadata,
        DirectPaymentMetadata,
        WithdrawalMetadata,
        RefundMetadata,
        TopUpMetadata,
        DepositMetadata,
        NoteMetadata,
    ],
    Field(discriminator="kind"),
]

_adapter: TypeAdapter[Any] = TypeAdapter(TransactionMetadata)

# category -> accepted metadata kinds
CATEGORY_KINDS: dict[str, frozenset[str]] = {
    CATEGORY_DELIVERY_INCOME: frozenset({"delivery_income", "direct_payment"}),
    CATEGORY_DELIVERY_PAYMENT: frozenset({"delivery_payment", "direct_payment"}),
    CATEGORY_FEE: frozenset({"note"}),
    CATEGORY_BONUS: frozenset({"top_up", "deposit", "note"}),
    CATEGORY_WITHDRAWAL: frozenset({"withdrawal"}),
    CATEGORY_REFUND: frozenset({"refund"}),
    CATEGORY_GENERAL: frozenset({"note"}),
}

# categories whose entries are meaningless without metadata
METADATA_REQUIRED = frozenset({CATEGORY_DELIVERY_INCOME, CATEGORY_WITHDRAWAL, CATEGORY_REFUND})


def parse_metadata(raw: Any) -> BaseModel:
    if isinstance(raw, _Metadata):
        return raw
    try:
        return _adapter.validate_python(raw)
    except ValidationError as e:
        raise InvalidMetadata(f"Invalid metadata: {e.errors(include_url=False)}") from e


def validate_metadata(category: str, metadata: Any) -> dict | None:
    """Check metadata against its category and return the JSON form to store."""
    kinds = CATEGORY_KINDS.get(category)
    if kinds is None:
        raise InvalidMetadata(f"Unknown transaction category: {category!r}", category=category)
    if metadata is None:
        if category in METADATA_REQUIRED:
            raise InvalidMetadata(f"{category} entries require metadata", category=category)
        return None
    model = parse_metadata(metadata)
    if model.kind not in kinds:
        raise InvalidMetadata(
            f"Metadata kind {model.kind!r} is not allowed for category {category!r}",
            category=category,
            kind=model.kind,
        )
    return model.model_dump(mode="json", exclude_none=True)
