# estate_payroll/models/payroll/__init__.py
# Import order matters: deduction reference data first, then pay calculations
# (details point at workers, which load from the parent package).
from estate_payroll.extensions import db  # noqa

from .deduction_type import DeductionType, DeductionWageRange
from .pay_calculation import PayCalculation, PayCalculationDetail

__all__ = [
    "DeductionType", "DeductionWageRange",
    "PayCalculation", "PayCalculationDetail",
]
