from decimal import Decimal
import pytest
from bagami.services.errors import InvalidAmount, InvalidSetting
from bagami.services.fees import (
    FALLBACK_RATE, SettingsRateProvider, StaticRateProvider, calculate_fee, get_rate, parse_rate, split_fee,
)

RATE = Decimal("0.175")

@pytest.mark.parametrize("gross,fee,net", [
    (100000, 17500, 82500),
    (4996, 874, 4122),   # 874.3 floors to 874
    (1, 0, 1),
    (7, 1, 6),           # 1.225
])
def test_split_fee_floors(gross, fee, net):
    b = split_fee(gross, RATE)
    assert (b.fee_amount, b.net_amount) == (fee, net)
    assert b.fee_amount + b.net_amount == gross

def test_split_fee_rate_bounds():
    assert split_fee(5000, Decimal("0")).fee_amount == 0
    full = split_fee(5000, Decimal("1"))
    assert full.fee_amount == 5000 and full.net_amount == 0

def test_split_fee_clamps():
    assert split_fee(1000, RATE, min_fee=200).fee_amount == 200
    assert split_fee(100000, RATE, max_fee=5000).fee_amount == 5000
    # a minimum larger than the payment cannot produce a negative net
    b = split_fee(100, RATE, min_fee=500)
    assert (b.fee_amount, b.net_amount) == (100, 0)

def test_fee_percentage():
    assert split_fee(100000, RATE).fee_percentage == "17.5%"

@pytest.mark.parametrize("bad", [0, -10, 12.5, True, "100", None])
def test_split_fee_rejects_bad_amounts(bad):
    with pytest.raises(InvalidAmount):
        split_fee(bad, RATE)

@pytest.mark.parametrize("raw,expected", [("0.175", Decimal("0.175")), ("0", Decimal("0")), ("1", Decimal("1")), (" 0.2 ", Decimal("0.2"))])
def test_parse_rate(raw, expected):
    assert parse_rate(raw) == expected

@pytest.mark.parametrize("raw", ["abc", "", "1.5", "-0.1", "NaN", "Infinity"])
def test_parse_rate_rejects(raw):
    with pytest.raises(InvalidSetting):
        parse_rate(raw)

class _BrokenProvider:
    async def get_rate(self):
        raise RuntimeError("settings store unreachable")

@pytest.mark.asyncio
async def test_get_rate_falls_back_when_provider_fails():
    assert await get_rate(_BrokenProvider()) == FALLBACK_RATE
    b = await calculate_fee(4996, rate_provider=_BrokenProvider())
    assert b.fee_amount == 874

@pytest.mark.asyncio
async def test_static_provider():
    b = await calculate_fee(100000, rate_provider=StaticRateProvider("0.1"))
    assert (b.fee_amount, b.net_amount, b.fee_rate) == (10000, 90000, Decimal("0.1"))

@pytest.mark.asyncio
async def test_settings_provider_reads_each_time(session, set_commission_rate):
    provider = SettingsRateProvider(session)
    assert await provider.get_rate() == FALLBACK_RATE  # no row yet
    await session.rollback()

    await set_commission_rate("0.2")
    assert await provider.get_rate() == Decimal("0.2")
    await session.rollback()

    await set_commission_rate("2.5")
    assert await provider.get_rate() == FALLBACK_RATE
    await session.rollback()

    await set_commission_rate("not-a-number")
    assert await provider.get_rate() == FALLBACK_RATE
