# estate_payroll/services/deduction_snapshot.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional

from flask import current_app, has_app_context

from estate_payroll.models.payroll.deduction_type import DeductionType, DeductionWageRange
from estate_payroll.services.deductions import (
    BreakdownAggregator, DeductionResolver, DeductionVersion, RateTable, WageRange,
)

log = logging.getLogger(__name__)


def _default_tie_break() -> str:
    if has_app_context():
        return current_app.config.get("PAYROLL_DEFAULT_TIE_BREAK", "half_up")
    return "half_up"


def wage_range_from_row(r: DeductionWageRange) -> WageRange:
    return WageRange.create(
        min_wage=r.min_wage,
        max_wage=r.max_wage,
        calculation_method=r.calculation_method,
        employee_amount=r.employee_amount,
        employer_amount=r.employer_amount,
        employee_percentage=r.employee_percentage,
        employer_percentage=r.employer_percentage,
        id=r.id,
    )


def version_from_row(row: DeductionType) -> DeductionVersion:
    """ORM row → immutable engine version (brackets validated here)."""
    ranges = [wage_range_from_row(r) for r in (row.wage_ranges or [])]
    return DeductionVersion.create(
        code=row.code,
        name=row.name,
        calculation_type=row.calculation_type,
        effective_from=row.effective_from,
        effective_until=row.effective_until,
        applies_to_nationality=row.applies_to_nationality,
        is_active=row.is_active,
        employee_rate=row.employee_contribution,
        employer_rate=row.employer_contribution,
        rounding_method=row.rounding_method,
        rounding_precision=row.rounding_precision,
        tie_break=row.rounding_tie_break or _default_tie_break(),
        id=row.id,
        wage_ranges=ranges or None,
    )


@dataclass(frozen=True)
class DeductionSnapshot:
    """Everything a pay run needs, frozen at load time and safe to share across threads."""

    rate_table: RateTable
    resolver: DeductionResolver
    aggregator: BreakdownAggregator
    loaded_at: datetime

    @classmethod
    def from_versions(cls, versions: Iterable[DeductionVersion]) -> "DeductionSnapshot":
        table = RateTable(versions)
        resolver = DeductionResolver(table)
        return cls(
            rate_table=table,
            resolver=resolver,
            aggregator=BreakdownAggregator(resolver),
            loaded_at=datetime.utcnow(),
        )


def load_snapshot(rows: Optional[List[DeductionType]] = None) -> DeductionSnapshot:
    """
    Load every deduction version from the database and validate it as a whole.

    Raises ConfigurationError (bracket gaps/overlaps, ambiguous windows, unknown
    enums) before any worker is touched.
    """
    if rows is None:
        rows = DeductionType.query.order_by(DeductionType.code.asc(), DeductionType.effective_from.asc()).all()
    snap = DeductionSnapshot.from_versions(version_from_row(r) for r in rows)
    log.info(
        "deduction snapshot loaded: %d versions, %d codes, %d bracket tables",
        len(snap.rate_table), len(snap.rate_table.codes()), len(snap.rate_table.bracketed()),
    )
    return snap
