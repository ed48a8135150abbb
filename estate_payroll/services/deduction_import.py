# estate_payroll/services/deduction_import.py
"""
Reference-data import for deduction types and their wage brackets.

Definitions are plain dicts (seed constants, JSON files, API bodies):

    {
      "code": "SOCSO", "name": "SOCSO", "calculation_type": "wage_range",
      "applies_to_nationality": "local", "effective_from": "2024-01-01",
      "rounding_method": "round", "rounding_precision": 2,
      "wage_ranges": [{"min_wage": 0, "max_wage": 30, "employee_amount": 0.10, ...}, ...]
    }

Every definition is validated as an engine version (enums, bracket gaplessness) and
the resulting table is checked for overlapping windows *before* anything is flushed.
Existing versions are never edited except to close an open-ended window when an
open-ended successor of the same scope is appended.
"""
from __future__ import annotations

import json
import logging
from dataclasses import replace
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from estate_payroll.extensions import db
from estate_payroll.models.payroll.deduction_type import DeductionType, DeductionWageRange
from estate_payroll.services.deduction_snapshot import version_from_row
from estate_payroll.services.deductions import (
    ConfigurationError, DeductionVersion, RateTable, normalize_scope, ranges_from_dicts,
)

log = logging.getLogger(__name__)


def _to_date(v) -> Optional[date]:
    if v is None or v == "":
        return None
    if isinstance(v, date):
        return v
    try:
        return date.fromisoformat(str(v))
    except ValueError:
        raise ConfigurationError(f"invalid date {v!r} (expected YYYY-MM-DD)")


def version_from_definition(defn: Dict[str, Any]) -> DeductionVersion:
    """Validate a definition dict by building the engine version it describes."""
    code = (defn.get("code") or "").strip().upper()
    if not code:
        raise ConfigurationError("code is required")
    ranges = defn.get("wage_ranges") or []
    return DeductionVersion.create(
        code=code,
        name=defn.get("name") or code,
        calculation_type=defn.get("calculation_type", "wage_range" if ranges else "percentage"),
        effective_from=_to_date(defn.get("effective_from")),
        effective_until=_to_date(defn.get("effective_until")),
        applies_to_nationality=defn.get("applies_to_nationality", "all"),
        is_active=defn.get("is_active", True),
        employee_rate=defn.get("employee_contribution", 0),
        employer_rate=defn.get("employer_contribution", 0),
        rounding_method=defn.get("rounding_method", "round"),
        rounding_precision=defn.get("rounding_precision", 2),
        tie_break=defn.get("rounding_tie_break", "half_up"),
        wage_ranges=ranges_from_dicts(ranges) if ranges else None,
    )


def _row_from_version(v: DeductionVersion, description: Optional[str]) -> DeductionType:
    row = DeductionType(
        code=v.code,
        name=v.name,
        description=description,
        calculation_type=v.calculation_type.value,
        employee_contribution=v.employee_rate,
        employer_contribution=v.employer_rate,
        applies_to_nationality=v.applies_to_nationality,
        is_active=v.is_active,
        effective_from=v.effective_from,
        effective_until=v.effective_until,
        rounding_method=v.rounding_method.value,
        rounding_precision=v.rounding_precision,
        rounding_tie_break=v.tie_break.value,
    )
    for r in (v.brackets or ()):
        row.wage_ranges.append(DeductionWageRange(
            min_wage=r.min_wage,
            max_wage=r.max_wage,
            employee_amount=r.employee_amount,
            employer_amount=r.employer_amount,
            employee_percentage=r.employee_percentage,
            employer_percentage=r.employer_percentage,
            calculation_method=r.calculation_method.value,
        ))
    return row


def _predecessors_to_close(existing: List[DeductionType], new: DeductionVersion) -> List[DeductionType]:
    """
    Open-ended active versions the new version supersedes.

    Only an open-ended successor with the same scope closes its predecessor; any
    other overlap is left in place so the table check reports it as a conflict.
    """
    if new.effective_until is not None:
        return []
    out = []
    for row in existing:
        if not row.is_active or row.effective_until is not None:
            continue
        if row.effective_from >= new.effective_from:
            continue
        if normalize_scope(row.applies_to_nationality) == new.applies_to_nationality:
            out.append(row)
    return out


def import_deduction_type(defn: Dict[str, Any], close_previous: bool = True) -> DeductionType:
    """
    Append one deduction version. Flushes, does not commit.

    Raises BracketConfigurationError / ConfigurationConflict / ConfigurationError when
    the definition (or the table it would produce) is invalid; nothing is written then.
    """
    new = version_from_definition(defn)
    existing = DeductionType.query.filter(DeductionType.code == new.code).all()

    closing = _predecessors_to_close(existing, new) if close_previous else []
    planned_until = {row.id: new.effective_from - timedelta(days=1) for row in closing}

    current = []
    for row in existing:
        v = version_from_row(row)
        if row.id in planned_until:
            v = replace(v, effective_until=planned_until[row.id])
        current.append(v)
    # raises ConfigurationConflict on overlap
    RateTable(current).append(new)

    for row in closing:
        row.effective_until = planned_until[row.id]
        log.info("closing %s version id=%s at %s", row.code, row.id, row.effective_until)

    row = _row_from_version(new, defn.get("description"))
    db.session.add(row)
    db.session.flush()
    log.info(
        "imported deduction %s (%s, %s) effective %s..%s with %d wage ranges",
        row.code, row.calculation_type, row.applies_to_nationality,
        row.effective_from, row.effective_until or "open", len(row.wage_ranges),
    )
    return row


def import_definitions(defs: Iterable[Dict[str, Any]], skip_existing: bool = True) -> Dict[str, int]:
    """
    Import many definitions in one transaction; all or nothing.

    With `skip_existing`, a definition whose (code, effective_from, nationality) is
    already stored is left alone so seeding can be re-run.
    """
    created = skipped = 0
    try:
        for defn in defs:
            if skip_existing and _already_imported(defn):
                skipped += 1
                continue
            import_deduction_type(defn)
            created += 1
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return {"created": created, "skipped": skipped}


def _already_imported(defn: Dict[str, Any]) -> bool:
    code = (defn.get("code") or "").strip().upper()
    eff_from = _to_date(defn.get("effective_from"))
    scope = normalize_scope(defn.get("applies_to_nationality"))
    return DeductionType.query.filter_by(
        code=code, effective_from=eff_from, applies_to_nationality=scope
    ).first() is not None


def load_definitions_file(path: str) -> List[Dict[str, Any]]:
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("deduction_types") or [data]
    if not isinstance(data, list):
        raise ConfigurationError(f"{path}: expected a list of deduction definitions")
    return data


# ---------------- default (Malaysia) reference data ----------------

def _socso_first_category() -> List[Dict[str, Any]]:
    """
    SOCSO first-category (employment injury + invalidity) schedule, local workers.
    Low bands are irregular; from RM200 up the table moves in RM100 steps until the
    RM6,000 insurable ceiling, after which contributions stay flat.
    """
    rows = [
        (Decimal("0"), Decimal("30"), Decimal("0.10"), Decimal("0.40")),
        (Decimal("30.01"), Decimal("50"), Decimal("0.20"), Decimal("0.70")),
        (Decimal("50.01"), Decimal("70"), Decimal("0.30"), Decimal("1.10")),
        (Decimal("70.01"), Decimal("100"), Decimal("0.40"), Decimal("1.50")),
        (Decimal("100.01"), Decimal("140"), Decimal("0.60"), Decimal("2.10")),
        (Decimal("140.01"), Decimal("200"), Decimal("0.85"), Decimal("2.95")),
    ]
    for hundreds in range(3, 61):
        lo = Decimal(hundreds - 1) * 100 + Decimal("0.01")
        hi = Decimal(hundreds) * 100
        employee = Decimal("0.50") * hundreds - Decimal("0.25")
        employer = Decimal("1.75") * hundreds - Decimal("0.85")
        rows.append((lo, hi, employee, employer))
    out = [
        {"min_wage": str(lo), "max_wage": str(hi), "employee_amount": str(ee),
         "employer_amount": str(er), "calculation_method": "fixed"}
        for lo, hi, ee, er in rows
    ]
    last = rows[-1]
    out.append({"min_wage": "6000.01", "max_wage": None, "employee_amount": str(last[2]),
                "employer_amount": str(last[3]), "calculation_method": "fixed"})
    return out


def default_definitions(effective_from: date = date(2024, 1, 1)) -> List[Dict[str, Any]]:
    eff = effective_from.isoformat()
    return [
        {
            "code": "EPF_LOCAL", "name": "EPF",
            "description": "Employees Provident Fund - retirement savings (local workers)",
            "calculation_type": "percentage", "applies_to_nationality": "local",
            "employee_contribution": "11.00", "employer_contribution": "13.00",
            "rounding_method": "ceil", "rounding_precision": 0,
            "effective_from": eff,
        },
        {
            "code": "EPF_FOREIGN", "name": "EPF",
            "description": "Employees Provident Fund - foreign workers",
            "calculation_type": "percentage", "applies_to_nationality": "foreigner",
            "employee_contribution": "2.00", "employer_contribution": "2.00",
            "rounding_method": "ceil", "rounding_precision": 0,
            "effective_from": "2025-10-01",
        },
        {
            "code": "SOCSO", "name": "SOCSO",
            "description": "Social Security Organization - employment injury and invalidity",
            "calculation_type": "wage_range", "applies_to_nationality": "local",
            "rounding_method": "round", "rounding_precision": 2,
            "effective_from": eff,
            "wage_ranges": _socso_first_category(),
        },
        {
            "code": "SOCSO_FOREIGN", "name": "SOCSO",
            "description": "SOCSO employment injury scheme - foreign workers",
            "calculation_type": "percentage", "applies_to_nationality": "foreigner",
            "employee_contribution": "1.25", "employer_contribution": "1.25",
            "rounding_method": "round", "rounding_precision": 2,
            "effective_from": eff,
        },
        {
            "code": "EIS_LOCAL", "name": "EIS",
            "description": "Employment Insurance System (SIP)",
            "calculation_type": "percentage", "applies_to_nationality": "local",
            "employee_contribution": "0.20", "employer_contribution": "0.20",
            "rounding_method": "round", "rounding_precision": 2,
            "effective_from": eff,
        },
    ]


def seed_defaults(effective_from: date = date(2024, 1, 1)) -> Dict[str, int]:
    return import_definitions(default_definitions(effective_from))
