from __future__ import annotations
from fastapi import APIRouter, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

from bagami.db import get_session
from bagami.auth_deps import get_current_user, require_admin
from bagami.schemas.fees import FeeCalculateRequest, FeeBreakdownPublic, SettleDeliveryRequest, SettlementResponse
from bagami.schemas.wallet import TransactionPublic, WalletPublic
from bagami.services.fees import FeeBreakdown, SettingsRateProvider, calculate_fee
from bagami.services.notifications import Notifier, current_notifier
from bagami.services.settlement import settle_delivery_payment

router = APIRouter(tags=["payments"])

def _fee(fee: FeeBreakdown) -> FeeBreakdownPublic:
    return FeeBreakdownPublic(
        gross_amount=fee.gross_amount,
        fee_amount=fee.fee_amount,
        net_amount=fee.net_amount,
        fee_rate=str(fee.fee_rate),
        fee_percentage=fee.fee_percentage,
    )

@router.post("/platform-fee/calculate", response_model=FeeBreakdownPublic)
async def calculate(payload: FeeCalculateRequest, session: AsyncSession = Depends(get_session), user=Depends(get_current_user)):
    """Preview of what a provider would receive for a delivery at the current rate."""
    fee = await calculate_fee(payload.gross_amount, rate_provider=SettingsRateProvider(session))
    return _fee(fee)

@router.post("/deliveries/{delivery_id}/settle", response_model=SettlementResponse)
async def settle(
    payload: SettleDeliveryRequest,
    delivery_id: str = Path(min_length=1, max_length=48),
    session: AsyncSession = Depends(get_session),
    admin=Depends(require_admin),
    notifier: Notifier = Depends(current_notifier),
):
    s = await settle_delivery_payment(
        session,
        payee_id=payload.payee_id,
        gross_amount=payload.gross_amount,
        delivery_id=delivery_id,
        payer_id=payload.payer_id,
        description=payload.description,
        notifier=notifier,
    )
    return SettlementResponse(
        fee=_fee(s.fee),
        transaction=TransactionPublic.model_validate(s.transaction),
        wallet=WalletPublic.model_validate(s.wallet),
    )
