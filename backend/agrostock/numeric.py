# Overview: Decimal helpers for quantities and costs.

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

"""
Numeric invariants (authoritative)

- Quantities and costs are decimal.Decimal end to end; floats never enter
  the engine (floats from JSON are converted through str()).
- Quantities carry 4 decimal places; unit costs and money amounts carry 4.
- Rounding is half-up and happens once per partial cost, so a total is
  always the exact sum of its parts.
"""

QUANTITY_EXP = Decimal("0.0001")
COST_EXP = Decimal("0.0001")
ZERO = Decimal("0")

# Columns are Numeric(18, 4): anything larger overflows most backends
MAX_VALUE = Decimal("99999999999999.9999")


def to_decimal(value: Any) -> Decimal:
    """Coerce int/str/float/Decimal to Decimal; raises ValueError on garbage."""
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool):
        raise ValueError("boolean is not a number")
    elif isinstance(value, (int, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValueError(f"invalid number: {value!r}")
    elif isinstance(value, float):
        result = Decimal(str(value))
    else:
        raise ValueError(f"invalid number: {value!r}")

    if not result.is_finite():
        raise ValueError(f"invalid number: {value!r}")
    return result


def quantize_quantity(value: Any) -> Decimal:
    return to_decimal(value).quantize(QUANTITY_EXP, rounding=ROUND_HALF_UP)


def quantize_cost(value: Any) -> Decimal:
    return to_decimal(value).quantize(COST_EXP, rounding=ROUND_HALF_UP)


def decimal_str(value: Optional[Decimal]) -> Optional[str]:
    """Serialize for JSON without float conversion."""
    if value is None:
        return None
    return str(to_decimal(value))
