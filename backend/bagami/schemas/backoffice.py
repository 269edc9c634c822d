from __future__ import annotations
from pydantic import BaseModel, ConfigDict, Field
from uuid import UUID
from datetime import datetime
from bagami.schemas.wallet import TransactionPublic, WalletPublic

class TopUpRequest(BaseModel):
    user_ids: list[UUID] = Field(min_length=1)
    amount: int = Field(strict=True)
    reason: str

class TopUpResultPublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: UUID
    success: bool
    transaction_id: UUID | None = None
    new_balance: int | None = None
    error: str | None = None
    code: str | None = None

class TopUpResponse(BaseModel):
    reference_id: str
    amount: int
    succeeded: int
    failed: int
    results: list[TopUpResultPublic]

class RejectWithdrawalRequest(BaseModel):
    reason: str

class WithdrawalDecisionResponse(BaseModel):
    withdrawal: TransactionPublic
    refund: TransactionPublic | None = None
    wallet: WalletPublic | None = None
    audit_recorded: bool

class PlatformSettingPublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    key: str
    value: str
    description: str | None = None
    updated_by: UUID | None = None
    updated_at: datetime | None = None

class UpdateSettingRequest(BaseModel):
    key: str = Field(min_length=1, max_length=64)
    value: str = Field(max_length=255)
    description: str | None = Field(default=None, max_length=255)

class UpdateSettingResponse(BaseModel):
    setting: PlatformSettingPublic
    audit_recorded: bool

class RevenueStats(BaseModel):
    period_days: int
    settlements: int
    total_fee_amount: int
    gross_volume: int
    net_paid_out: int
    avg_fee_per_settlement: int

class WithdrawalStats(BaseModel):
    total_pending: int
    total_completed: int
    total_failed: int
    pending_amount: int

class TransactionStats(BaseModel):
    total_transactions: int
    completed_count: int
    pending_count: int
    failed_count: int
    total_credits: int
    total_debits: int
    total_fees: int

class UserSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str | None = None
    email: str

class BackofficeTransaction(TransactionPublic):
    user: UserSummary

class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total_items: int
    items_per_page: int

class TransactionPage(BaseModel):
    transactions: list[BackofficeTransaction]
    pagination: Pagination
