from __future__ import annotations
from typing import Any, Dict

from flask import Blueprint, request, current_app

from estate_payroll.common.http import ok, fail
from estate_payroll.models.payroll.pay_calculation import PayCalculation, PayCalculationDetail
from estate_payroll.services.pay_calculation_service import (
    PayCalculationStateError, finalize, pay_calculation_totals, period_date, run_pay_calculation,
)

bp = Blueprint("pay_calculations", __name__, url_prefix="/api/v1/pay-calculations")


def _detail_row(d: PayCalculationDetail) -> Dict[str, Any]:
    return {
        "id": d.id,
        "worker_id": d.worker_id,
        "worker_name": d.worker.name if d.worker else None,
        "gross_salary": f"{d.gross_salary:.2f}",
        "employee_deductions": f"{d.employee_deductions:.2f}",
        "employer_deductions": f"{d.employer_deductions:.2f}",
        "net_salary": f"{d.net_salary:.2f}",
        "currency": d.currency,
        "deductions": d.deduction_breakdown or {},
        "calculated_at": d.calculated_at.isoformat() if d.calculated_at else None,
    }


def _pc_row(pc: PayCalculation, with_details=True) -> Dict[str, Any]:
    out = {
        "id": pc.id,
        "month_year": pc.month_year,
        "status": pc.status,
        "totals": pay_calculation_totals(pc),
        "failures": pc.failures or [],
        "finalized_at": pc.finalized_at.isoformat() if pc.finalized_at else None,
    }
    if with_details:
        out["details"] = [_detail_row(d) for d in sorted(pc.details, key=lambda d: d.worker_id)]
    return out


def _valid_month(month_year: str):
    try:
        period_date(month_year)
    except PayCalculationStateError as e:
        return fail(e.message, 422, code=e.code)
    return None


@bp.post("/<month_year>/run")
def run(month_year: str):
    bad = _valid_month(month_year)
    if bad:
        return bad
    j = request.get_json(silent=True) or {}
    salaries = j.get("salaries")
    if not isinstance(salaries, dict) or not salaries:
        return fail("salaries must be a non-empty object {worker_id: gross_salary}", 422)
    try:
        result = run_pay_calculation(month_year, salaries)
    except PayCalculationStateError as e:
        return fail(e.message, 409, code=e.code, detail=e.detail)
    current_app.logger.info("pay calculation %s run via API: %d processed, %d failures",
                            month_year, result.processed, len(result.failures))
    data = result.to_dict()
    data["pay_calculation"] = _pc_row(result.pay_calculation)
    return ok(data)


@bp.get("/<month_year>")
def get_one(month_year: str):
    bad = _valid_month(month_year)
    if bad:
        return bad
    pc = PayCalculation.query.filter_by(month_year=month_year).first()
    if not pc:
        return fail("Pay calculation not found", 404)
    return ok(_pc_row(pc))


@bp.post("/<month_year>/finalize")
def finalize_one(month_year: str):
    bad = _valid_month(month_year)
    if bad:
        return bad
    pc = PayCalculation.query.filter_by(month_year=month_year).first()
    if not pc:
        return fail("Pay calculation not found", 404)
    try:
        finalize(pc)
    except PayCalculationStateError as e:
        return fail(e.message, 409, code=e.code, detail=e.detail)
    return ok(_pc_row(pc, with_details=False))
