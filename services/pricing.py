"""
Money breakdown for a provider's base rate.

The platform charges the payer a 10% fee on top of the rate and withholds
another 10% from the payee, so ``payer_amount - payee_amount == 2 * fee``.
Every caller derives amounts through :func:`calculate_pricing` from the same
base rate; nothing recomputes the arithmetic on its own.
"""
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from services.errors import InvalidRate

FEE_RATE = Decimal("0.10")
CENT = Decimal("0.01")


def _round(value: Decimal) -> Decimal:
    # ROUND_HALF_UP on Decimal rounds half away from zero
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class MoneyBreakdown:
    base_rate: Decimal
    fee: Decimal
    payer_amount: Decimal
    payee_amount: Decimal

    def to_dict(self):
        return {
            "base_rate": str(self.base_rate),
            "fee": str(self.fee),
            "payer_amount": str(self.payer_amount),
            "payee_amount": str(self.payee_amount),
        }


def to_rate(value) -> Decimal:
    """Parse a user- or DB-supplied rate into a 2dp Decimal, raising InvalidRate."""
    if isinstance(value, bool) or value is None:
        raise InvalidRate()
    try:
        # str() keeps floats like 0.1 from dragging binary noise into Decimal
        rate = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise InvalidRate()
    if not rate.is_finite():
        raise InvalidRate()
    rate = _round(rate)
    if rate <= 0:
        raise InvalidRate()
    return rate


def calculate_pricing(base_rate) -> MoneyBreakdown:
    rate = to_rate(base_rate)
    fee = _round(rate * FEE_RATE)
    return MoneyBreakdown(
        base_rate=rate,
        fee=fee,
        payer_amount=rate + fee,
        payee_amount=rate - fee,
    )
