"""Platform commission.

The rate is read through a RateProvider on every calculation, never cached, so
an admin change applies to the next settlement. Fees are floored to whole
minor units: the platform never takes more than the stated rate.
"""
from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_FLOOR
from typing import Any, Protocol
import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from bagami.config import settings
from bagami.models.platform_setting import PlatformSetting
from bagami.services.errors import InvalidSetting
from bagami.services.ledger import require_positive_amount

log = structlog.get_logger(__name__)

COMMISSION_RATE_KEY = "commission_rate"
FALLBACK_RATE = Decimal("0.175")


def parse_rate(raw: Any) -> Decimal:
    """Decimal in [0, 1] or InvalidSetting."""
    try:
        rate = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        raise InvalidSetting("Commission rate must be a decimal number", value=raw)
    if not rate.is_finite() or rate < 0 or rate > 1:
        raise InvalidSetting("Commission rate must be between 0 and 1 (0% to 100%)", value=raw)
    return rate


def default_rate() -> Decimal:
    try:
        return parse_rate(settings.default_commission_rate)
    except InvalidSetting:
        return FALLBACK_RATE


class RateProvider(Protocol):
    async def get_rate(self) -> Decimal: ...


class StaticRateProvider:
    def __init__(self, rate: Any):
        self.rate = parse_rate(rate)

    async def get_rate(self) -> Decimal:
        return self.rate


class SettingsRateProvider:
    """Reads platform_settings.commission_rate; falls back to the default rate."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_rate(self) -> Decimal:
        try:
            raw = await self.session.scalar(
                select(PlatformSetting.value).where(PlatformSetting.key == COMMISSION_RATE_KEY)
            )
        except SQLAlchemyError as e:
            log.warning("commission_rate_fallback", reason="read_failed", error=str(e))
            return default_rate()
        if raw is None:
            log.info("commission_rate_fallback", reason="missing")
            return default_rate()
        try:
            return parse_rate(raw)
        except InvalidSetting:
            log.warning("commission_rate_fallback", reason="invalid", value=raw)
            return default_rate()


@dataclass(slots=True, frozen=True)
class FeeBreakdown:
    gross_amount: int
    fee_amount: int
    net_amount: int
    fee_rate: Decimal

    @property
    def fee_percentage(self) -> str:
        return f"{self.fee_rate * 100:.1f}%"


def split_fee(gross_amount: int, rate: Decimal, *, min_fee: int | None = None, max_fee: int | None = None) -> FeeBreakdown:
    """fee = floor(gross * rate), clamped to [min_fee, max_fee] and never above gross."""
    require_positive_amount(gross_amount)
    lo = settings.min_fee if min_fee is None else min_fee
    hi = settings.max_fee if max_fee is None else max_fee

    fee = int((Decimal(gross_amount) * rate).to_integral_value(rounding=ROUND_FLOOR))
    if hi is not None:
        fee = min(fee, hi)
    fee = max(lo, fee)
    fee = min(fee, gross_amount)
    return FeeBreakdown(gross_amount=gross_amount, fee_amount=fee, net_amount=gross_amount - fee, fee_rate=rate)


async def get_rate(rate_provider: RateProvider) -> Decimal:
    # fee calculation must always produce a result
    try:
        return await rate_provider.get_rate()
    except Exception as e:
        log.warning("commission_rate_fallback", reason="provider_error", error=str(e))
        return default_rate()


async def calculate_fee(
    gross_amount: int,
    *,
    rate_provider: RateProvider,
    min_fee: int | None = None,
    max_fee: int | None = None,
) -> FeeBreakdown:
    require_positive_amount(gross_amount)
    rate = await get_rate(rate_provider)
    return split_fee(gross_amount, rate, min_fee=min_fee, max_fee=max_fee)
