"""
tally.engine.quote — Points ↔ Currency Quotes
==============================================

Pure calculation for the redemption boundary: how many points buy a
given airtime/data value at the configured rate.  No DB I/O.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import Decimal

from tally.errors import InvalidAmountError


@dataclass(frozen=True, slots=True)
class Quote:
    product_type: str
    carrier: str
    currency_value: Decimal
    rate: Decimal
    points_needed: int


def resolve_rate(
    base_rate: Decimal, carrier: str, carrier_overrides: dict | None
) -> Decimal:
    """Carrier-specific rate if configured, else the product's base rate."""
    if carrier_overrides and carrier in carrier_overrides:
        return Decimal(str(carrier_overrides[carrier]))
    return Decimal(base_rate)


def calculate_quote(
    *,
    product_type: str,
    carrier: str,
    currency_value: Decimal,
    base_rate: Decimal,
    min_points: int,
    max_points: int,
    carrier_overrides: dict | None = None,
) -> Quote:
    """Points needed for *currency_value*, rounded up to a whole point.

    Raises
    ------
    InvalidAmountError
        If the value is not positive or the points fall outside
        ``[min_points, max_points]``.
    """
    value = Decimal(currency_value)
    if value <= 0:
        raise InvalidAmountError("Redemption value must be greater than 0")

    rate = resolve_rate(base_rate, carrier, carrier_overrides)
    points = math.ceil(value * rate)

    if points < min_points or points > max_points:
        raise InvalidAmountError(
            f"{product_type} redemptions must cost between {min_points} and "
            f"{max_points} points (this one costs {points})"
        )

    return Quote(
        product_type=product_type,
        carrier=carrier,
        currency_value=value,
        rate=rate,
        points_needed=points,
    )
