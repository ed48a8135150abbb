# estate_payroll/services/deductions/__init__.py
# Statutory deduction engine. Pure: no Flask, no DB; callers hand it an immutable
# RateTable and persist whatever it returns.
from .errors import (
    DeductionError, ConfigurationError, BracketConfigurationError, ConfigurationConflict,
    CalculationError, OutOfRange, WorkerCalculationError,
)
from .rounding import RoundingMethod, TieBreak, apply_rounding
from .brackets import BracketMethod, WageRange, WageBracketIndex, ranges_from_dicts
from .rate_table import (
    ALL, LOCAL, FOREIGNER, NO_PASSPORT, NATIONALITY_CLASSES, CalculationType, DeductionVersion, RateTable,
    nationality_class, normalize_scope,
)
from .resolver import DeductionResolver
from .calculator import Contribution, ContributionCalculator
from .aggregator import BreakdownAggregator, DeductionBreakdown, DeductionLine, display_order, money_str

__all__ = [
    "DeductionError", "ConfigurationError", "BracketConfigurationError", "ConfigurationConflict",
    "CalculationError", "OutOfRange", "WorkerCalculationError",
    "RoundingMethod", "TieBreak", "apply_rounding",
    "BracketMethod", "WageRange", "WageBracketIndex", "ranges_from_dicts",
    "ALL", "LOCAL", "FOREIGNER", "NO_PASSPORT", "NATIONALITY_CLASSES",
    "CalculationType", "DeductionVersion", "RateTable", "nationality_class", "normalize_scope",
    "DeductionResolver", "Contribution", "ContributionCalculator",
    "BreakdownAggregator", "DeductionBreakdown", "DeductionLine", "display_order", "money_str",
]
