# estate_payroll/services/deductions/brackets.py
from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple

from .errors import BracketConfigurationError, ConfigurationError, OutOfRange

SMALLEST_UNIT = Decimal("0.01")
_ZERO = Decimal("0")
_HUNDRED = Decimal("100")


class BracketMethod(str, Enum):
    FIXED = "fixed"
    PERCENTAGE = "percentage"

    @classmethod
    def parse(cls, value) -> "BracketMethod":
        if isinstance(value, cls):
            return value
        try:
            return cls((str(value or "fixed")).strip().lower())
        except ValueError:
            raise ConfigurationError(f"unknown wage range calculation method {value!r}",
                                     calculation_method=value)


def to_decimal(x, field: Optional[str] = None) -> Decimal:
    """Decimal from a DB value, str or float (floats go through str to avoid binary drift)."""
    if x is None or x == "":
        return _ZERO
    if isinstance(x, Decimal):
        d = x
    else:
        try:
            d = Decimal(str(x).strip())
        except (InvalidOperation, ValueError, TypeError):
            d = None
    if d is None or not d.is_finite():
        raise ConfigurationError(f"{field or 'value'}: {x!r} is not a number", field=field, value=str(x))
    return d


@dataclass(frozen=True)
class WageRange:
    min_wage: Decimal
    max_wage: Optional[Decimal]
    calculation_method: BracketMethod = BracketMethod.FIXED
    employee_amount: Decimal = _ZERO
    employer_amount: Decimal = _ZERO
    employee_percentage: Decimal = _ZERO
    employer_percentage: Decimal = _ZERO
    id: Optional[int] = None

    @classmethod
    def create(cls, min_wage, max_wage=None, calculation_method="fixed",
               employee_amount=0, employer_amount=0,
               employee_percentage=0, employer_percentage=0, id=None) -> "WageRange":
        return cls(
            min_wage=to_decimal(min_wage, "min_wage"),
            max_wage=None if max_wage is None or max_wage == "" else to_decimal(max_wage, "max_wage"),
            calculation_method=BracketMethod.parse(calculation_method),
            employee_amount=to_decimal(employee_amount, "employee_amount"),
            employer_amount=to_decimal(employer_amount, "employer_amount"),
            employee_percentage=to_decimal(employee_percentage, "employee_percentage"),
            employer_percentage=to_decimal(employer_percentage, "employer_percentage"),
            id=id,
        )

    @property
    def is_open_ended(self) -> bool:
        return self.max_wage is None

    def contains(self, salary: Decimal) -> bool:
        return self.min_wage <= salary and (self.max_wage is None or salary <= self.max_wage)

    def contribution(self, gross_salary: Decimal) -> Tuple[Decimal, Decimal]:
        """Unrounded (employee, employer) for a salary inside this range."""
        if self.calculation_method is BracketMethod.FIXED:
            return self.employee_amount, self.employer_amount
        return (
            gross_salary * self.employee_percentage / _HUNDRED,
            gross_salary * self.employer_percentage / _HUNDRED,
        )

    def display(self, currency: str = "RM") -> str:
        lo = f"{currency} {self.min_wage:,.2f}"
        if self.max_wage is None:
            return f"{lo} and above"
        return f"{lo} - {currency} {self.max_wage:,.2f}"


class WageBracketIndex:
    """
    Sorted, gapless salary intervals for one deduction type.

    Validation happens here, at construction, so a broken table is reported while
    reference data loads and never half-way through a pay run. Lookups are a binary
    search over the sorted `min_wage` values.
    """

    def __init__(self, ranges: Iterable[WageRange], deduction_code: Optional[str] = None,
                 unit: Decimal = SMALLEST_UNIT):
        self.deduction_code = deduction_code
        self.unit = unit
        self._ranges: Tuple[WageRange, ...] = self.validate(ranges, deduction_code, unit)
        self._mins: List[Decimal] = [r.min_wage for r in self._ranges]

    @staticmethod
    def validate(ranges: Iterable[WageRange], deduction_code: Optional[str] = None,
                 unit: Decimal = SMALLEST_UNIT) -> Tuple[WageRange, ...]:
        """Return the ranges sorted by min_wage or raise BracketConfigurationError."""
        rows = sorted(ranges, key=lambda r: r.min_wage)

        def bad(msg: str, r: Optional[WageRange] = None, **extra):
            return BracketConfigurationError(
                f"{deduction_code or 'wage brackets'}: {msg}",
                deduction_code,
                range=r.display() if r is not None else None,
                **extra,
            )

        if not rows:
            raise bad("no wage ranges configured")
        if rows[0].min_wage != _ZERO:
            raise bad("lowest range must start at 0", rows[0])

        for r in rows:
            if r.min_wage < _ZERO:
                raise bad("min_wage must be >= 0", r)
            if r.max_wage is not None and r.max_wage < r.min_wage:
                raise bad("max_wage must be >= min_wage", r)
            for amt in (r.employee_amount, r.employer_amount):
                if amt < _ZERO:
                    raise bad("contribution amounts must be >= 0", r)
            for pct in (r.employee_percentage, r.employer_percentage):
                if pct < _ZERO or pct > _HUNDRED:
                    raise bad("contribution percentages must be within 0..100", r)

        for prev, nxt in zip(rows, rows[1:]):
            if prev.max_wage is None:
                raise bad("only the highest range may be open-ended", prev)
            expected = prev.max_wage + unit
            if nxt.min_wage < expected:
                raise bad("ranges overlap", nxt, previous=prev.display())
            if nxt.min_wage > expected:
                raise bad("gap between ranges", nxt, previous=prev.display(),
                          expected_min_wage=str(expected))

        if rows[-1].max_wage is not None:
            raise bad("highest range must be open-ended (max_wage empty)", rows[-1])
        return tuple(rows)

    @property
    def ranges(self) -> Tuple[WageRange, ...]:
        return self._ranges

    def __len__(self) -> int:
        return len(self._ranges)

    def __iter__(self) -> Iterator[WageRange]:
        return iter(self._ranges)

    def find(self, gross_salary) -> WageRange:
        salary = to_decimal(gross_salary)
        if salary < self._mins[0]:
            raise OutOfRange(salary, self.deduction_code)
        # Sub-unit salaries (e.g. 2000.005) fall between two ranges; they belong to
        # the lower one.
        return self._ranges[bisect_right(self._mins, salary) - 1]


def ranges_from_dicts(rows: Sequence[dict]) -> List[WageRange]:
    return [
        WageRange.create(
            min_wage=r.get("min_wage"),
            max_wage=r.get("max_wage"),
            calculation_method=r.get("calculation_method", "fixed"),
            employee_amount=r.get("employee_amount", 0),
            employer_amount=r.get("employer_amount", 0),
            employee_percentage=r.get("employee_percentage", 0),
            employer_percentage=r.get("employer_percentage", 0),
            id=r.get("id"),
        )
        for r in rows
    ]
