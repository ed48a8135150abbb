# estate_payroll/services/deductions/rate_table.py
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from .brackets import WageBracketIndex, to_decimal
from .errors import ConfigurationConflict, ConfigurationError
from .rounding import RoundingMethod, TieBreak

ALL = "all"
LOCAL = "local"
FOREIGNER = "foreigner"
NO_PASSPORT = "foreigner_no_passport"
NATIONALITY_SCOPES = (ALL, LOCAL, FOREIGNER, NO_PASSPORT)
# Classes a worker can fall into, in reporting order
NATIONALITY_CLASSES = (LOCAL, FOREIGNER, NO_PASSPORT)

# Free-text nationality values seen on worker records that count as "local"
_LOCAL_ALIASES = {"local", "malaysian", "malaysia", "my", "mys", "warganegara"}
_FOREIGN_ALIASES = {"foreigner", "foreign", "non-local", "non_local", "expat"}
_NO_PASSPORT_ALIASES = {"foreigner_no_passport", "foreigner (no passport)", "no_passport", "no passport"}

_TRUE = {"1", "true", "yes", "y", "on"}
_FALSE = {"0", "false", "no", "n", "off"}


def nationality_class(value: Optional[str]) -> str:
    """
    Collapse a worker's nationality into the class deduction types are scoped by.

      nationality_class("Malaysian") -> "local"
      nationality_class("Indonesian") -> "foreigner"
      nationality_class("Foreigner (No Passport)") -> "foreigner_no_passport"
      nationality_class(None) -> "local"

    Workers without a passport only match versions scoped to them explicitly; "all"
    does not reach them, so with the default reference data they pay nothing.
    """
    raw = (value or "").strip().lower()
    if not raw or raw in _LOCAL_ALIASES:
        return LOCAL
    if raw in _NO_PASSPORT_ALIASES:
        return NO_PASSPORT
    return FOREIGNER


def normalize_scope(value: Optional[str]) -> str:
    raw = (value or "").strip().lower()
    if not raw or raw == ALL:
        return ALL
    if raw in _LOCAL_ALIASES:
        return LOCAL
    if raw in _FOREIGN_ALIASES:
        return FOREIGNER
    if raw in _NO_PASSPORT_ALIASES:
        return NO_PASSPORT
    raise ConfigurationError(f"unknown nationality scope {value!r}", applies_to_nationality=value)


def _to_bool(value, name: str) -> bool:
    if isinstance(value, bool):
        return value
    if value is None or value == "":
        return True
    raw = str(value).strip().lower()
    if raw in _TRUE:
        return True
    if raw in _FALSE:
        return False
    raise ConfigurationError(f"{name}: {value!r} is not a boolean", field=name, value=str(value))


def _to_precision(value) -> int:
    if value is None or value == "":
        return 2
    raw = str(value).strip()
    if isinstance(value, bool) or not raw.isdigit():
        raise ConfigurationError(f"rounding_precision: {value!r} is not an integer",
                                 field="rounding_precision", value=str(value))
    return int(raw)


class CalculationType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"
    WAGE_RANGE = "wage_range"

    @classmethod
    def parse(cls, value) -> "CalculationType":
        if isinstance(value, cls):
            return value
        try:
            return cls((str(value or "percentage")).strip().lower())
        except ValueError:
            raise ConfigurationError(
                f"unknown calculation type {value!r}; valid: {', '.join(c.value for c in cls)}",
                calculation_type=value,
            )


@dataclass(frozen=True)
class DeductionVersion:
    """One effective-dated version of a statutory deduction. Never mutated once built."""

    code: str
    name: str
    calculation_type: CalculationType
    effective_from: date
    effective_until: Optional[date] = None
    applies_to_nationality: str = ALL
    is_active: bool = True
    employee_rate: Decimal = Decimal("0")
    employer_rate: Decimal = Decimal("0")
    rounding_method: RoundingMethod = RoundingMethod.ROUND
    rounding_precision: int = 2
    tie_break: TieBreak = TieBreak.HALF_UP
    id: Optional[int] = None
    brackets: Optional[WageBracketIndex] = field(default=None, compare=False, repr=False)

    def __post_init__(self):
        if self.effective_until is not None and self.effective_until < self.effective_from:
            raise ConfigurationError(
                f"{self.code}: effective_until is before effective_from",
                deduction_code=self.code,
                effective_from=self.effective_from.isoformat(),
                effective_until=self.effective_until.isoformat(),
            )
        if self.rounding_precision < 0:
            raise ConfigurationError(f"{self.code}: rounding_precision must be >= 0",
                                     deduction_code=self.code)
        if self.calculation_type is CalculationType.WAGE_RANGE and self.brackets is None:
            raise ConfigurationError(f"{self.code}: wage_range deduction without wage ranges",
                                     deduction_code=self.code)

    @classmethod
    def create(cls, code, name=None, calculation_type="percentage", effective_from=None,
               effective_until=None, applies_to_nationality=ALL, is_active=True,
               employee_rate=0, employer_rate=0, rounding_method="round",
               rounding_precision=2, tie_break="half_up", id=None,
               wage_ranges=None) -> "DeductionVersion":
        """Build from loosely typed values (DB rows, JSON); parses enums exactly once."""
        if effective_from is None:
            raise ConfigurationError(f"{code}: effective_from is required", deduction_code=code)
        brackets = None
        if wage_ranges:
            brackets = WageBracketIndex(wage_ranges, deduction_code=code)
        return cls(
            code=code,
            name=name or code,
            calculation_type=CalculationType.parse(calculation_type),
            effective_from=effective_from,
            effective_until=effective_until,
            applies_to_nationality=normalize_scope(applies_to_nationality),
            is_active=_to_bool(is_active, "is_active"),
            employee_rate=to_decimal(employee_rate, "employee_contribution"),
            employer_rate=to_decimal(employer_rate, "employer_contribution"),
            rounding_method=RoundingMethod.parse(rounding_method),
            rounding_precision=_to_precision(rounding_precision),
            tie_break=TieBreak.parse(tie_break),
            id=id,
            brackets=brackets,
        )

    @property
    def uses_brackets(self) -> bool:
        return self.brackets is not None

    def covers(self, on: date) -> bool:
        return self.effective_from <= on and (self.effective_until is None or on <= self.effective_until)

    def applies_to(self, nationality: str) -> bool:
        if self.applies_to_nationality == ALL:
            return nationality != NO_PASSPORT
        return self.applies_to_nationality == nationality

    def windows_overlap(self, other: "DeductionVersion") -> bool:
        end_a = self.effective_until or date.max
        end_b = other.effective_until or date.max
        return self.effective_from <= end_b and other.effective_from <= end_a

    def scopes_intersect(self, other: "DeductionVersion") -> bool:
        a, b = self.applies_to_nationality, other.applies_to_nationality
        if a == b:
            return True
        return ALL in (a, b) and NO_PASSPORT not in (a, b)


class RateTable:
    """
    Append-only table of deduction versions keyed by code.

    Construction checks that no two active versions of a code can ever match the
    same (nationality, date); `append` returns a new table and leaves this one as is.
    """

    def __init__(self, versions: Iterable[DeductionVersion] = (), validate: bool = True):
        by_code: Dict[str, List[DeductionVersion]] = defaultdict(list)
        for v in versions:
            by_code[v.code].append(v)
        self._by_code: Dict[str, Tuple[DeductionVersion, ...]] = {
            code: tuple(sorted(vs, key=lambda v: (v.effective_from, v.applies_to_nationality)))
            for code, vs in by_code.items()
        }
        if validate:
            for code in self._by_code:
                self._check_code(code)

    def _check_code(self, code: str) -> None:
        active = [v for v in self._by_code[code] if v.is_active]
        for i, a in enumerate(active):
            for b in active[i + 1:]:
                if a.scopes_intersect(b) and a.windows_overlap(b):
                    on = max(a.effective_from, b.effective_from)
                    scope = b.applies_to_nationality if a.applies_to_nationality == ALL else a.applies_to_nationality
                    raise ConfigurationConflict(code, scope, on, [x for x in (a.id, b.id) if x is not None])

    def append(self, version: DeductionVersion) -> "RateTable":
        return RateTable(list(self) + [version])

    def __iter__(self) -> Iterator[DeductionVersion]:
        for code in sorted(self._by_code):
            yield from self._by_code[code]

    def __len__(self) -> int:
        return sum(len(vs) for vs in self._by_code.values())

    def codes(self, active_only: bool = True) -> List[str]:
        if not active_only:
            return sorted(self._by_code)
        return sorted(c for c, vs in self._by_code.items() if any(v.is_active for v in vs))

    def versions(self, code: str) -> Tuple[DeductionVersion, ...]:
        return self._by_code.get(code, ())

    def candidates(self, code: str, nationality: str, on: date) -> List[DeductionVersion]:
        return [
            v for v in self.versions(code)
            if v.is_active and v.covers(on) and v.applies_to(nationality)
        ]

    def bracketed(self) -> List[DeductionVersion]:
        return [v for v in self if v.uses_brackets]
