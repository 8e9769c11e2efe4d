"""
Commission Calculator - stateless split of a booking price

The platform keeps ``floor(price * rate / 100)``; the model receives the
rest, so the two parts always add back to the price.
"""
from typing import NamedTuple

from app.core.exceptions import ValidationException


class CommissionSplit(NamedTuple):
    commission: int
    net: int


def split(price: int, rate_percent: int) -> CommissionSplit:
    """Split ``price`` into platform commission and model net amount"""
    fields = {}
    if price < 0:
        fields["price"] = "price must be non-negative"
    if not 0 <= rate_percent <= 100:
        fields["rate_percent"] = "commission rate must be between 0 and 100"
    if fields:
        raise ValidationException("Invalid commission input", fields=fields)

    commission = (price * rate_percent) // 100
    return CommissionSplit(commission=commission, net=price - commission)


def percent_of(amount: int, rate_percent: int) -> int:
    """Floor of ``rate_percent`` percent of ``amount`` (referral payouts)"""
    return split(amount, rate_percent).commission
