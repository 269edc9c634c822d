from __future__ import annotations
from pydantic import BaseModel, Field
from uuid import UUID
from bagami.schemas.wallet import TransactionPublic, WalletPublic

class FeeCalculateRequest(BaseModel):
    gross_amount: int = Field(strict=True)

class FeeBreakdownPublic(BaseModel):
    gross_amount: int
    fee_amount: int
    net_amount: int
    fee_rate: str
    fee_percentage: str

class SettleDeliveryRequest(BaseModel):
    payee_id: UUID
    gross_amount: int = Field(strict=True)
    payer_id: UUID | None = None
    description: str | None = Field(default=None, max_length=255)

class SettlementResponse(BaseModel):
    fee: FeeBreakdownPublic
    transaction: TransactionPublic
    wallet: WalletPublic
