# estate_payroll/services/deductions/rounding.py
from __future__ import annotations

from decimal import Decimal, ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_EVEN, ROUND_HALF_UP
from enum import Enum
from typing import Callable, Dict

from .errors import ConfigurationError


class RoundingMethod(str, Enum):
    ROUND = "round"
    CEIL = "ceil"
    FLOOR = "floor"

    @classmethod
    def parse(cls, value) -> "RoundingMethod":
        if isinstance(value, cls):
            return value
        raw = (str(value or "round")).strip().lower()
        # "ceiling" appears in older imports
        if raw == "ceiling":
            raw = "ceil"
        try:
            return cls(raw)
        except ValueError:
            raise ConfigurationError(f"unknown rounding method {value!r}", rounding_method=value)


class TieBreak(str, Enum):
    HALF_UP = "half_up"
    HALF_EVEN = "half_even"

    @classmethod
    def parse(cls, value) -> "TieBreak":
        if isinstance(value, cls):
            return value
        raw = (str(value or "half_up")).strip().lower().replace("-", "_")
        if raw in ("bankers", "banker"):
            raw = "half_even"
        try:
            return cls(raw)
        except ValueError:
            raise ConfigurationError(f"unknown tie-break {value!r}", tie_break=value)


def quantum(precision: int) -> Decimal:
    """Decimal exponent for `precision` places: 2 -> Decimal('0.01'), 0 -> Decimal('1')."""
    if precision < 0:
        raise ConfigurationError("rounding precision must be >= 0", rounding_precision=precision)
    return Decimal(1).scaleb(-precision)


_TIE_MODES = {
    TieBreak.HALF_UP: ROUND_HALF_UP,
    TieBreak.HALF_EVEN: ROUND_HALF_EVEN,
}


def _round(amount: Decimal, q: Decimal, tie_break: TieBreak) -> Decimal:
    return amount.quantize(q, rounding=_TIE_MODES[tie_break])


def _ceil(amount: Decimal, q: Decimal, tie_break: TieBreak) -> Decimal:
    return amount.quantize(q, rounding=ROUND_CEILING)


def _floor(amount: Decimal, q: Decimal, tie_break: TieBreak) -> Decimal:
    return amount.quantize(q, rounding=ROUND_FLOOR)


_STRATEGIES: Dict[RoundingMethod, Callable[[Decimal, Decimal, TieBreak], Decimal]] = {
    RoundingMethod.ROUND: _round,
    RoundingMethod.CEIL: _ceil,
    RoundingMethod.FLOOR: _floor,
}


def apply_rounding(
    amount: Decimal,
    precision: int = 2,
    method: RoundingMethod = RoundingMethod.ROUND,
    tie_break: TieBreak = TieBreak.HALF_UP,
) -> Decimal:
    """
    Round `amount` to `precision` decimal places.

      apply_rounding(Decimal("50.20"), 0, RoundingMethod.CEIL)         -> 51
      apply_rounding(Decimal("12.345"), 2)                              -> 12.35
      apply_rounding(Decimal("12.345"), 2, tie_break=TieBreak.HALF_EVEN) -> 12.34
    """
    return _STRATEGIES[method](Decimal(amount), quantum(precision), tie_break)
