"""
Coverage & premium calculator.

Each line's premium is round(base_premium * rate, 2) half-up (src/utils/money.py).
The total is always the sum over a full recomputation of every line; there is
no incremental update path.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from src.integrations.contracts.interfaces import CoverageLine
from src.utils.money import MAX_AMOUNT, MAX_RATE, ZERO, line_premium, quantize_money, to_decimal

logger = logging.getLogger(__name__)

CUSTOM_CODE_PREFIX = "CUSTOM_"


@dataclass(frozen=True)
class PricedLine:
    code: str
    name: str
    sum_insured: Decimal
    base_premium: Decimal
    rate: Decimal
    premium: Decimal
    policy_effective_date: Optional[date] = None


def recompute(lines: Sequence[CoverageLine]) -> Tuple[List[PricedLine], Decimal]:
    """Price every line and sum them. Pure: the input lines are not modified."""
    priced = [
        PricedLine(
            code=line.code,
            name=line.name,
            sum_insured=line.sum_insured,
            base_premium=line.base_premium,
            rate=line.rate,
            premium=line_premium(line.base_premium, line.rate),
            policy_effective_date=line.policy_effective_date,
        )
        for line in lines
    ]
    total = quantize_money(sum((p.premium for p in priced), ZERO))
    return priced, total


def total_premium(lines: Iterable[CoverageLine]) -> Decimal:
    return recompute(list(lines))[1]


def is_zero_total(lines: Iterable[CoverageLine]) -> bool:
    return total_premium(lines) == ZERO


# ---------------------------------------------------------------------------
# Parsing operator input
# ---------------------------------------------------------------------------

def _decimal_field(
    raw: Dict[str, Any],
    keys: Sequence[str],
    errors: Dict[str, str],
    field: str,
    default: Decimal,
    *,
    allow_negative: bool = False,
    limit: Decimal = MAX_AMOUNT,
) -> Decimal:
    value = None
    for key in keys:
        if raw.get(key) is not None and str(raw.get(key)).strip() != "":
            value = raw.get(key)
            break
    if value is None:
        return default
    try:
        amount = to_decimal(value)
    except ValueError:
        errors[field] = f"{keys[0]} must be a number"
        return default
    if abs(amount) >= limit:
        errors[field] = f"{keys[0]} must be less than {limit:,f}"
        return default
    if amount < 0 and not allow_negative:
        errors[field] = f"{keys[0]} must not be negative"
    return amount


def date_field(raw: Dict[str, Any], keys: Sequence[str], errors: Dict[str, str], field: str) -> Optional[date]:
    for key in keys:
        value = raw.get(key)
        if value in (None, ""):
            continue
        if isinstance(value, date):
            return value
        try:
            return date.fromisoformat(str(value)[:10])
        except ValueError:
            errors[field] = f"{keys[0]} must be a valid date (YYYY-MM-DD)"
            return None
    return None


def parse_line(raw: Dict[str, Any], index: int, errors: Dict[str, str], *, code_hint: Optional[str] = None) -> CoverageLine:
    """Build a CoverageLine from a payload dict; problems are recorded under ``coverages[index].<field>``."""
    prefix = f"coverages[{index}]"
    name = str(raw.get("name") or raw.get("coverage_name") or "").strip()
    if not name:
        errors[f"{prefix}.name"] = "Coverage name is required"
    code = str(raw.get("code") or raw.get("coverage_code") or raw.get("type") or "").strip()
    if not code:
        code = code_hint or f"{CUSTOM_CODE_PREFIX}{index + 1}"

    return CoverageLine(
        code=code,
        name=name,
        sum_insured=_decimal_field(raw, ("sum_insured", "sumInsured", "amount"), errors, f"{prefix}.sum_insured", ZERO),
        base_premium=_decimal_field(raw, ("base_premium", "basePremium"), errors, f"{prefix}.base_premium", ZERO),
        rate=_decimal_field(raw, ("rate",), errors, f"{prefix}.rate", Decimal("1.0"), limit=MAX_RATE),
        policy_effective_date=date_field(
            raw, ("policy_effective_date", "policyEffectiveDate"), errors, f"{prefix}.policy_effective_date"
        ),
    )


def parse_lines(raw_lines: Iterable[Dict[str, Any]], errors: Dict[str, str]) -> List[CoverageLine]:
    lines = [parse_line(raw or {}, i, errors) for i, raw in enumerate(raw_lines)]
    return with_unique_codes(lines)


def validate_lines(raw_lines: Iterable[Dict[str, Any]]) -> Dict[str, str]:
    """Every problem across every line, keyed ``coverages[i].<field>``. Empty dict means valid."""
    errors: Dict[str, str] = {}
    parse_lines(raw_lines, errors)
    return errors


def with_unique_codes(lines: List[CoverageLine]) -> List[CoverageLine]:
    """Re-number clashing custom codes so every line in a proposal has its own code."""
    seen = set()
    counter = 1
    for line in lines:
        if line.code in seen:
            while f"{CUSTOM_CODE_PREFIX}{counter}" in seen:
                counter += 1
            logger.debug("Coverage code %s repeated; renamed to %s%d", line.code, CUSTOM_CODE_PREFIX, counter)
            line.code = f"{CUSTOM_CODE_PREFIX}{counter}"
        seen.add(line.code)
    return lines


def next_custom_code(lines: Sequence[CoverageLine]) -> str:
    taken = {line.code for line in lines}
    n = len(lines) + 1
    while f"{CUSTOM_CODE_PREFIX}{n}" in taken:
        n += 1
    return f"{CUSTOM_CODE_PREFIX}{n}"
