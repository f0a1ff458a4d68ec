# app/services/commission.py
"""Platform commission split.

One rate is used everywhere: the checkout breakdown shown to the payer and
the amounts persisted on the Payment / Order rows.
"""
from __future__ import annotations
from decimal import Decimal, ROUND_HALF_UP
from typing import NamedTuple

from flask import current_app, has_app_context

DEFAULT_COMMISSION_RATE = Decimal("0.20")
CENTS = Decimal("0.01")


class Split(NamedTuple):
    price: Decimal
    rate: Decimal
    commission: Decimal
    payout: Decimal


def to_money(value) -> Decimal:
    """Coerce floats/strings/ints to a 2dp Decimal without float noise."""
    if isinstance(value, Decimal):
        d = value
    else:
        d = Decimal(str(value))
    return d.quantize(CENTS, rounding=ROUND_HALF_UP)


def commission_rate() -> Decimal:
    if has_app_context():
        return Decimal(str(current_app.config.get("COMMISSION_RATE", DEFAULT_COMMISSION_RATE)))
    return DEFAULT_COMMISSION_RATE


def split(price, rate: Decimal | None = None) -> Split:
    """Commission rounded to kobo; payout takes the remainder so the sum is exact."""
    price = to_money(price)
    rate = commission_rate() if rate is None else Decimal(str(rate))
    commission = (price * rate).quantize(CENTS, rounding=ROUND_HALF_UP)
    return Split(price=price, rate=rate, commission=commission, payout=price - commission)
