# estate_payroll/services/deductions/aggregator.py
from __future__ import annotations

import json
import re
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from .brackets import to_decimal
from .calculator import ContributionCalculator
from .errors import DeductionError, WorkerCalculationError
from .rate_table import nationality_class
from .resolver import DeductionResolver

_CENT = Decimal("0.01")

# Payslip order: EPF*, SOCSO, EIS*, then the rest alphabetically
_DISPLAY_RULES = (
    (re.compile(r"^EPF", re.I), 0),
    (re.compile(r"^SOCSO$", re.I), 1),
    (re.compile(r"^EIS", re.I), 2),
)


def display_order(code: str) -> Tuple[int, str]:
    for rx, prio in _DISPLAY_RULES:
        if rx.search(code):
            return prio, code
    return 3, code


def money_str(x: Decimal) -> str:
    """Fixed-point text for persistence; at least two places, never exponent notation."""
    d = to_decimal(x)
    if d.as_tuple().exponent > -2:
        d = d.quantize(_CENT)
    return format(d, "f")


@dataclass(frozen=True)
class DeductionLine:
    code: str
    name: str
    employee_amount: Decimal
    employer_amount: Decimal

    def to_dict(self) -> Dict[str, str]:
        return {
            "name": self.name,
            "employee_amount": money_str(self.employee_amount),
            "employer_amount": money_str(self.employer_amount),
        }


@dataclass(frozen=True)
class DeductionBreakdown:
    worker_id: Any
    pay_period_date: date
    gross_salary: Decimal
    lines: Tuple[DeductionLine, ...]
    total_employee_deductions: Decimal
    total_employer_deductions: Decimal
    net_salary: Decimal

    @property
    def codes(self) -> Tuple[str, ...]:
        return tuple(l.code for l in self.lines)

    def get(self, code: str) -> Optional[DeductionLine]:
        for l in self.lines:
            if l.code == code:
                return l
        return None

    def deductions_dict(self) -> Dict[str, Dict[str, str]]:
        """The per-code mapping persisted on the pay-calculation detail."""
        return {l.code: l.to_dict() for l in self.lines}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "worker_id": self.worker_id,
            "pay_period_date": self.pay_period_date.isoformat(),
            "gross_salary": money_str(self.gross_salary),
            "deductions": self.deductions_dict(),
            "total_employee_deductions": money_str(self.total_employee_deductions),
            "total_employer_deductions": money_str(self.total_employer_deductions),
            "net_salary": money_str(self.net_salary),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))


def _worker_nationality(worker) -> str:
    cls = getattr(worker, "nationality_class", None)
    if cls:
        return cls
    return nationality_class(getattr(worker, "nationality", None))


class BreakdownAggregator:
    """Runs every applicable deduction for one worker and sums the result. Pure."""

    def __init__(self, resolver: DeductionResolver, calculator: Optional[ContributionCalculator] = None):
        self.resolver = resolver
        self.calculator = calculator or ContributionCalculator()

    def build(self, worker, gross_salary, pay_period_date: date) -> DeductionBreakdown:
        worker_id = getattr(worker, "id", None)
        gross = to_decimal(gross_salary)
        types = self.resolver.applicable_types(_worker_nationality(worker), pay_period_date)

        lines = []
        for dt in sorted(types, key=lambda t: display_order(t.code)):
            try:
                c = self.calculator.compute(dt, gross)
            except WorkerCalculationError:
                raise
            except DeductionError as e:
                raise WorkerCalculationError(worker_id, dt.code, e) from e
            lines.append(DeductionLine(dt.code, dt.name, c.employee_amount, c.employer_amount))

        total_employee = sum((l.employee_amount for l in lines), Decimal("0"))
        total_employer = sum((l.employer_amount for l in lines), Decimal("0"))
        return DeductionBreakdown(
            worker_id=worker_id,
            pay_period_date=pay_period_date,
            gross_salary=gross,
            lines=tuple(lines),
            total_employee_deductions=total_employee,
            total_employer_deductions=total_employer,
            net_salary=gross - total_employee,
        )
