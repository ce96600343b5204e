from decimal import Decimal, ROUND_HALF_UP

import pytest

from services.errors import InvalidRate
from services.pricing import calculate_pricing


def test_base_rate_100_breakdown():
    p = calculate_pricing(100)
    assert p.fee == Decimal("10.00")
    assert p.payer_amount == Decimal("110.00")
    assert p.payee_amount == Decimal("90.00")


@pytest.mark.parametrize("rate", ["0.01", "0.05", "1.15", "33.33", "99.95", "100", "149.99", "1234.56", 0.1, 7])
def test_platform_keeps_twice_the_fee(rate):
    p = calculate_pricing(rate)
    assert p.payer_amount - p.payee_amount == 2 * p.fee
    assert p.fee == (p.base_rate * Decimal("0.10")).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def test_half_cent_fee_rounds_away_from_zero():
    # 10% of 0.05 is 0.005
    assert calculate_pricing("0.05").fee == Decimal("0.01")
    # 10% of 1.25 is 0.125
    assert calculate_pricing("1.25").fee == Decimal("0.13")


def test_float_rate_has_no_binary_noise():
    p = calculate_pricing(19.99)
    assert p.base_rate == Decimal("19.99")
    assert p.fee == Decimal("2.00")


@pytest.mark.parametrize("rate", [0, -5, "0", "-0.01", "0.004", None, "abc", "NaN", "Infinity", True])
def test_rejects_non_positive_or_garbage(rate):
    with pytest.raises(InvalidRate):
        calculate_pricing(rate)


def test_same_rate_same_breakdown():
    assert calculate_pricing("45.50") == calculate_pricing(Decimal("45.5"))
