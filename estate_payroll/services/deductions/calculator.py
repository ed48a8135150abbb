# estate_payroll/services/deductions/calculator.py
from __future__ import annotations

from decimal import Decimal
from typing import NamedTuple, Tuple

from .brackets import to_decimal
from .errors import OutOfRange
from .rate_table import CalculationType, DeductionVersion
from .rounding import apply_rounding

_HUNDRED = Decimal("100")


class Contribution(NamedTuple):
    employee_amount: Decimal
    employer_amount: Decimal


class ContributionCalculator:
    """
    Turns one deduction version and a gross salary into rounded contributions.

    Branches:
      - flat percentage: gross * rate / 100
      - fixed: the version's amounts as-is
      - wage brackets: the matching range decides (fixed amounts or its own percentages)

    Rounding is the last step and is applied to each side on its own.
    """

    def compute(self, deduction: DeductionVersion, gross_salary) -> Contribution:
        gross = to_decimal(gross_salary)
        if gross < 0:
            raise OutOfRange(gross, deduction.code)
        employee, employer = self._raw(deduction, gross)
        return Contribution(
            employee_amount=self._round(deduction, employee),
            employer_amount=self._round(deduction, employer),
        )

    def _raw(self, deduction: DeductionVersion, gross: Decimal) -> Tuple[Decimal, Decimal]:
        if deduction.uses_brackets:
            return deduction.brackets.find(gross).contribution(gross)
        if deduction.calculation_type is CalculationType.FIXED:
            return deduction.employee_rate, deduction.employer_rate
        return (
            gross * deduction.employee_rate / _HUNDRED,
            gross * deduction.employer_rate / _HUNDRED,
        )

    @staticmethod
    def _round(deduction: DeductionVersion, amount: Decimal) -> Decimal:
        return apply_rounding(
            amount,
            deduction.rounding_precision,
            deduction.rounding_method,
            deduction.tie_break,
        )
