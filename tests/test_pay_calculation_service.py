import os
from datetime import date
from decimal import Decimal

import pytest

from estate_payroll import create_app
from estate_payroll.extensions import db
from estate_payroll.models.payroll.deduction_type import DeductionType
from estate_payroll.models.payroll.pay_calculation import PayCalculation, PayCalculationDetail
from estate_payroll.models.worker import Worker
from estate_payroll.services.deduction_import import seed_defaults
from estate_payroll.services.deduction_snapshot import load_snapshot
from estate_payroll.services.deductions import ConfigurationConflict, OutOfRange
from estate_payroll.services.pay_calculation_service import (
    PayCalculationStateError, finalize, period_date, recalculate_detail, run_pay_calculation,
)


@pytest.fixture(scope="function")
def app():
    os.environ["DATABASE_URL"] = "sqlite:///:memory:"
    app = create_app()
    with app.app_context():
        db.create_all()
        yield app


@pytest.fixture(scope="function")
def session(app):
    with app.app_context():
        seed_defaults()
        yield db.session


def _worker(session, name, nationality):
    w = Worker(name=name, nationality=nationality)
    session.add(w)
    session.commit()
    return w


def test_period_date():
    assert period_date("2025-06") == date(2025, 6, 1)
    for bad in ("2025-13", "2025-6", "June 2025", ""):
        with pytest.raises(PayCalculationStateError):
            period_date(bad)


def test_run_computes_and_totals(session):
    ahmad = _worker(session, "Ahmad", "Malaysian")
    budi = _worker(session, "Budi", "Indonesian")

    res = run_pay_calculation("2025-06", {ahmad.id: "3000.00", budi.id: "2200.00"})
    assert res.ok
    assert res.processed == 2

    pc = PayCalculation.query.filter_by(month_year="2025-06").one()
    details = {d.worker_id: d for d in pc.details}

    local = details[ahmad.id].deduction_breakdown
    assert list(local) == ["EPF_LOCAL", "SOCSO", "EIS_LOCAL"]
    assert local["EPF_LOCAL"] == {"name": "EPF", "employee_amount": "330.00", "employer_amount": "390.00"}
    assert local["SOCSO"]["employee_amount"] == "14.75"
    assert local["EIS_LOCAL"]["employee_amount"] == "6.00"
    assert details[ahmad.id].net_salary == Decimal("2649.25")

    foreign = details[budi.id].deduction_breakdown
    # EPF for foreign workers only starts in October 2025
    assert list(foreign) == ["SOCSO_FOREIGN"]
    assert foreign["SOCSO_FOREIGN"]["employee_amount"] == "27.50"

    assert pc.total_gross_salary == Decimal("5200.00")
    assert pc.total_deductions == Decimal("378.25")
    assert pc.total_employer_deductions == Decimal("475.15")
    assert pc.total_net_salary == Decimal("4821.75")
    assert pc.total_net_salary + pc.total_deductions == pc.total_gross_salary


def test_totals_match_detail_sums(session):
    ids = [_worker(session, f"W{i}", "Malaysian" if i % 2 else "Nepali").id for i in range(12)]
    run_pay_calculation("2025-07", {wid: Decimal("1500.00") + i * Decimal("333.33") for i, wid in enumerate(ids)})
    pc = PayCalculation.query.filter_by(month_year="2025-07").one()
    assert pc.total_deductions == sum(d.employee_deductions for d in pc.details)
    assert pc.total_employer_deductions == sum(d.employer_deductions for d in pc.details)
    assert pc.total_net_salary == sum(d.net_salary for d in pc.details)


def test_parallel_and_serial_runs_agree(session):
    ids = [_worker(session, f"W{i}", "local" if i % 3 else "Bangladeshi").id for i in range(20)]
    salaries = {wid: Decimal("1200.00") + i * Decimal("250.50") for i, wid in enumerate(ids)}
    snap = load_snapshot()

    run_pay_calculation("2025-08", salaries, snapshot=snap, max_workers=1)
    run_pay_calculation("2025-09", salaries, snapshot=snap, max_workers=8)

    serial = PayCalculation.query.filter_by(month_year="2025-08").one()
    parallel = PayCalculation.query.filter_by(month_year="2025-09").one()
    s = {d.worker_id: d.deduction_breakdown for d in serial.details}
    p = {d.worker_id: d.deduction_breakdown for d in parallel.details}
    assert s == p
    assert serial.total_net_salary == parallel.total_net_salary


def test_rerun_replaces_details(session):
    w = _worker(session, "Ahmad", "Malaysian")
    run_pay_calculation("2025-06", {w.id: "3000"})
    run_pay_calculation("2025-06", {w.id: "2000"})
    assert PayCalculationDetail.query.count() == 1
    pc = PayCalculation.query.filter_by(month_year="2025-06").one()
    assert pc.total_gross_salary == Decimal("2000.00")


def test_zero_gross_removes_detail(session):
    a = _worker(session, "A", "Malaysian")
    b = _worker(session, "B", "Malaysian")
    run_pay_calculation("2025-06", {a.id: "3000", b.id: "2500"})
    res = run_pay_calculation("2025-06", {b.id: 0})
    assert res.removed == 1
    pc = PayCalculation.query.filter_by(month_year="2025-06").one()
    assert [d.worker_id for d in pc.details] == [a.id]
    assert pc.total_gross_salary == Decimal("3000.00")


def test_failures_collected_and_block_finalize(session):
    a = _worker(session, "A", "Malaysian")
    b = _worker(session, "B", "Malaysian")
    res = run_pay_calculation("2025-06", {a.id: "3000", b.id: "-5", 9999: "1000", "x": "1"})
    assert res.processed == 1
    codes = {f["code"] for f in res.failures}
    assert codes == {"OUT_OF_RANGE", "UNKNOWN_WORKER", "INVALID_WORKER_ID"}

    pc = PayCalculation.query.filter_by(month_year="2025-06").one()
    assert len(pc.failures) == 3
    assert [d.worker_id for d in pc.details] == [a.id]
    with pytest.raises(PayCalculationStateError):
        finalize(pc)


def test_fixing_failures_allows_finalize(session):
    a = _worker(session, "A", "Malaysian")
    run_pay_calculation("2025-06", {a.id: "-1"})
    pc = PayCalculation.query.filter_by(month_year="2025-06").one()
    assert pc.failures

    run_pay_calculation("2025-06", {a.id: "1800"})
    pc = PayCalculation.query.filter_by(month_year="2025-06").one()
    assert pc.failures == []
    finalize(pc)
    assert pc.is_finalized
    assert pc.finalized_at is not None


def test_finalized_month_is_locked(session):
    a = _worker(session, "A", "Malaysian")
    run_pay_calculation("2025-06", {a.id: "1800"})
    pc = PayCalculation.query.filter_by(month_year="2025-06").one()
    finalize(pc)
    with pytest.raises(PayCalculationStateError):
        run_pay_calculation("2025-06", {a.id: "1900"})
    with pytest.raises(PayCalculationStateError):
        recalculate_detail(pc.details[0], "1900")
    assert PayCalculation.query.filter_by(month_year="2025-06").one().total_gross_salary == Decimal("1800.00")


def test_recalculate_detail(session):
    a = _worker(session, "A", "Malaysian")
    b = _worker(session, "B", "Indonesian")
    run_pay_calculation("2025-06", {a.id: "3000", b.id: "2200"})
    pc = PayCalculation.query.filter_by(month_year="2025-06").one()
    detail = next(d for d in pc.details if d.worker_id == a.id)

    out = recalculate_detail(detail, "2950")
    assert out is detail
    assert detail.gross_salary == Decimal("2950.00")
    assert detail.deduction_breakdown["EPF_LOCAL"]["employee_amount"] == "325.00"
    assert pc.total_gross_salary == Decimal("5150.00")

    with pytest.raises(OutOfRange):
        recalculate_detail(detail, "-1")

    assert recalculate_detail(detail, 0) is None
    pc = PayCalculation.query.filter_by(month_year="2025-06").one()
    assert [d.worker_id for d in pc.details] == [b.id]
    assert pc.total_gross_salary == Decimal("2200.00")


def test_configuration_conflict_aborts_before_writing(session):
    a = _worker(session, "A", "Malaysian")
    session.add(DeductionType(code="EPF_LOCAL", name="EPF", calculation_type="percentage",
                              applies_to_nationality="all", effective_from=date(2025, 1, 1),
                              employee_contribution=Decimal("12")))
    session.commit()
    with pytest.raises(ConfigurationConflict):
        run_pay_calculation("2025-06", {a.id: "3000"})
    assert PayCalculation.query.count() == 0
