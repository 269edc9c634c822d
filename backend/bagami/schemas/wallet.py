from __future__ import annotations
from pydantic import BaseModel, ConfigDict, Field
from uuid import UUID
from datetime import datetime
from typing import Any

class WalletPublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: UUID
    balance: int
    currency: str
    updated_at: datetime | None = None

class TransactionPublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    type: str
    amount: int
    currency: str
    status: str
    description: str
    category: str
    reference_id: str | None = None
    metadata: dict[str, Any] | None = Field(default=None, validation_alias="metadata_json")
    affects_balance: bool
    created_at: datetime
    updated_at: datetime | None = None

class WalletSnapshot(BaseModel):
    wallet: WalletPublic
    transactions: list[TransactionPublic]

class WalletStats(BaseModel):
    balance: int
    currency: str
    total_credit: int
    total_debit: int
    pending_amount: int

class LedgerEntryResponse(BaseModel):
    transaction: TransactionPublic
    wallet: WalletPublic

class WithdrawRequest(BaseModel):
    # strict: floats and numeric strings are rejected instead of coerced
    amount: int = Field(strict=True, description="Amount in minor units")
    payout_destination: str = Field(description="Mobile money number")

class RecordTransactionRequest(BaseModel):
    amount: int = Field(strict=True)
    description: str = Field(min_length=1, max_length=255)
    category: str
    type: str = "debit"
    reference_id: str | None = Field(default=None, max_length=64)
    metadata: dict[str, Any] | None = None

class AddMoneyRequest(BaseModel):
    amount: int = Field(strict=True, description="Amount in minor units")
    payment_method: str | None = Field(default=None, max_length=32)
