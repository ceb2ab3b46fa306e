"""
Currency helpers shared by the premium calculator, the domain contracts and
the payment bridge.

Rounding policy: every premium is quantized to 2 decimal places with
ROUND_HALF_UP. Amounts handed to the customer for payment are always produced
by these helpers, so the figure shown, the decision snapshot and the payment
link amount are the same Decimal.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

MONEY_STEP = Decimal("0.01")
MONEY_ROUNDING = ROUND_HALF_UP
ZERO = Decimal("0.00")

# Input ceilings. The SQL money columns keep 14 integer digits; with amounts
# below MAX_AMOUNT and rates below MAX_RATE a line premium always fits.
MAX_AMOUNT = Decimal("1e10")
MAX_RATE = Decimal("1000")
MAX_TOTAL = Decimal("1e14")


def to_decimal(value: Any, limit: Optional[Decimal] = None) -> Decimal:
    """Coerce operator input (str / int / float / Decimal) into a Decimal.

    Floats go through ``str`` so that ``1.1`` becomes ``Decimal("1.1")`` and not
    its binary approximation. Raises ``ValueError`` for anything non-numeric and,
    when ``limit`` is given, for magnitudes at or above it.
    """
    if isinstance(value, bool):
        raise ValueError(f"Not a number: {value!r}")
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, int):
        amount = Decimal(value)
    elif isinstance(value, float):
        amount = Decimal(str(value))
    else:
        raw = str(value if value is not None else "").replace(",", "").strip()
        if not raw:
            raise ValueError("Empty value is not a number")
        try:
            amount = Decimal(raw)
        except InvalidOperation as exc:
            raise ValueError(f"Not a number: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"Not a finite number: {value!r}")
    if limit is not None and abs(amount) >= limit:
        raise ValueError(f"Out of range: {value!r} (limit {limit})")
    return amount


def quantize_money(amount: Any, limit: Optional[Decimal] = None) -> Decimal:
    try:
        return to_decimal(amount, limit).quantize(MONEY_STEP, rounding=MONEY_ROUNDING)
    except InvalidOperation as exc:
        raise ValueError(f"Out of range: {amount!r}") from exc


def line_premium(base_premium: Any, rate: Any) -> Decimal:
    """round(base_premium * rate, 2), half-up."""
    return quantize_money(to_decimal(base_premium) * to_decimal(rate))


def format_money(amount: Any) -> str:
    return f"{quantize_money(amount):.2f}"
