from __future__ import annotations
from collections import namedtuple
from datetime import date
from typing import Any, Dict

from flask import Blueprint, request, current_app
from sqlalchemy import or_

from estate_payroll.extensions import db
from estate_payroll.common.http import ok, fail, parse_date, parse_decimal
from estate_payroll.models.payroll.deduction_type import DeductionType
from estate_payroll.models.worker import Worker
from estate_payroll.services.deduction_import import import_deduction_type
from estate_payroll.services.deduction_snapshot import load_snapshot, wage_range_from_row
from estate_payroll.services.deductions import (
    BracketConfigurationError, ConfigurationConflict, ConfigurationError, nationality_class,
)

bp = Blueprint("deductions", __name__, url_prefix="/api/v1/deductions")

_PreviewWorker = namedtuple("_PreviewWorker", "id nationality_class")


def _money(x) -> str:
    return f"{x:.2f}" if x is not None else "0.00"


def _type_row(x: DeductionType) -> Dict[str, Any]:
    currency = current_app.config.get("PAYROLL_CURRENCY", "RM")
    return {
        "id": x.id,
        "code": x.code,
        "name": x.name,
        "description": x.description,
        "calculation_type": x.calculation_type,
        "employee_contribution": _money(x.employee_contribution),
        "employer_contribution": _money(x.employer_contribution),
        "applies_to_nationality": x.applies_to_nationality or "all",
        "is_active": bool(x.is_active),
        "effective_from": x.effective_from.isoformat() if x.effective_from else None,
        "effective_until": x.effective_until.isoformat() if x.effective_until else None,
        "rounding": {
            "method": x.rounding_method,
            "precision": x.rounding_precision,
            "tie_break": x.rounding_tie_break,
        },
        "wage_ranges": [
            {
                "id": r.id,
                "min_wage": _money(r.min_wage),
                "max_wage": _money(r.max_wage) if r.max_wage is not None else None,
                "calculation_method": r.calculation_method,
                "employee_amount": _money(r.employee_amount),
                "employer_amount": _money(r.employer_amount),
                "employee_percentage": _money(r.employee_percentage),
                "employer_percentage": _money(r.employer_percentage),
                "display": wage_range_from_row(r).display(currency),
            }
            for r in (x.wage_ranges or [])
        ],
    }


@bp.get("/types")
def list_types():
    q = DeductionType.query
    if request.args.get("code"):
        q = q.filter(DeductionType.code == request.args["code"].strip().upper())
    active_on = parse_date(request.args.get("active_on"))
    if request.args.get("active_on") and not active_on:
        return fail("active_on must be YYYY-MM-DD", 422)
    if active_on:
        q = q.filter(
            DeductionType.is_active.is_(True),
            DeductionType.effective_from <= active_on,
            or_(DeductionType.effective_until.is_(None), DeductionType.effective_until >= active_on),
        )
    rows = q.order_by(DeductionType.code.asc(), DeductionType.effective_from.desc()).all()
    return ok([_type_row(r) for r in rows])


@bp.post("/types")
def create_type():
    j = request.get_json(silent=True) or {}
    if not (j.get("code") or "").strip():
        return fail("code is required", 422)
    if not parse_date(j.get("effective_from")):
        return fail("effective_from is required (YYYY-MM-DD)", 422)
    try:
        row = import_deduction_type(j)
        db.session.commit()
    except ConfigurationConflict as e:
        db.session.rollback()
        return fail("Overlapping effective period for the same code/nationality", 409,
                    code=e.code, detail=e.detail)
    except BracketConfigurationError as e:
        db.session.rollback()
        return fail(e.message, 422, code=e.code, detail=e.detail)
    except ConfigurationError as e:
        db.session.rollback()
        return fail(e.message, 422, code=e.code, detail=e.detail)
    current_app.logger.info("deduction type %s v%s created via API", row.code, row.id)
    return ok(_type_row(row), 201)


@bp.post("/preview")
def preview():
    """Breakdown for an ad-hoc salary, nothing persisted."""
    j = request.get_json(silent=True) or {}
    gross = parse_decimal(j.get("gross_salary"))
    if gross is None:
        return fail("gross_salary is required and must be numeric", 422)
    if gross < 0:
        return fail("gross_salary must be >= 0", 422)
    as_of = parse_date(j.get("as_of")) or date.today()

    if j.get("worker_id") is not None:
        try:
            w = db.session.get(Worker, int(j["worker_id"]))
        except (TypeError, ValueError):
            return fail("worker_id must be integer", 422)
        if not w:
            return fail("Worker not found", 404)
        worker = _PreviewWorker(w.id, w.nationality_class)
    else:
        worker = _PreviewWorker(None, nationality_class(j.get("nationality")))

    snapshot = load_snapshot()
    breakdown = snapshot.aggregator.build(worker, gross, as_of)
    data = breakdown.to_dict()
    data["nationality_class"] = worker.nationality_class
    data["currency"] = current_app.config.get("PAYROLL_CURRENCY", "RM")
    return ok(data)
