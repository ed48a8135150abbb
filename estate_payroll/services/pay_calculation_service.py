# estate_payroll/services/pay_calculation_service.py
"""
Monthly pay calculation: statutory deductions for every worker of a month.

Flow of `run_pay_calculation`:
  1. load the deduction snapshot (configuration errors abort here, nothing written)
  2. compute one breakdown per worker on a thread pool; the snapshot is read-only
  3. back on the calling thread, upsert details, drop stale ones, store failures
  4. recompute the month's totals from the detail rows and commit once
"""
from __future__ import annotations

import logging
import re
from collections import namedtuple
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional

from flask import current_app

from estate_payroll.extensions import db
from estate_payroll.models.payroll.pay_calculation import PayCalculation, PayCalculationDetail
from estate_payroll.models.worker import Worker
from estate_payroll.services.deduction_snapshot import DeductionSnapshot, load_snapshot
from estate_payroll.services.deductions import (
    DeductionBreakdown, DeductionError, OutOfRange, WorkerCalculationError,
)

log = logging.getLogger(__name__)

_MONTH_RE = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])$")

# what the pool threads get instead of ORM instances
_WorkerRef = namedtuple("_WorkerRef", "id nationality_class")


class PayCalculationStateError(DeductionError):
    """Operation not allowed in the pay calculation's current state."""

    code = "PAYCALC_STATE_ERROR"


def period_date(month_year: str) -> date:
    """'2025-06' -> date(2025, 6, 1); deductions are resolved as of the first of the month."""
    m = _MONTH_RE.match(month_year or "")
    if not m:
        raise PayCalculationStateError(f"invalid month_year {month_year!r} (expected YYYY-MM)",
                                       month_year=month_year)
    return date(int(m.group(1)), int(m.group(2)), 1)


def _failure(worker_id, code: str, message: str, deduction_code: Optional[str] = None) -> Dict[str, Any]:
    out = {"worker_id": worker_id, "code": code, "message": message}
    if deduction_code:
        out["deduction_code"] = deduction_code
    return out


def _gross(value) -> Optional[Decimal]:
    try:
        d = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    return d if d.is_finite() else None


@dataclass
class PayCalculationRunResult:
    pay_calculation: PayCalculation
    processed: int = 0
    removed: int = 0
    failures: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def to_dict(self) -> Dict[str, Any]:
        pc = self.pay_calculation
        return {
            "month_year": pc.month_year,
            "status": pc.status,
            "processed": self.processed,
            "removed": self.removed,
            "failures": self.failures,
            "totals": pay_calculation_totals(pc),
        }


def pay_calculation_totals(pc: PayCalculation) -> Dict[str, str]:
    return {
        "gross_salary": f"{Decimal(pc.total_gross_salary or 0):.2f}",
        "employee_deductions": f"{Decimal(pc.total_deductions or 0):.2f}",
        "employer_deductions": f"{Decimal(pc.total_employer_deductions or 0):.2f}",
        "net_salary": f"{Decimal(pc.total_net_salary or 0):.2f}",
    }


def _compute_all(snapshot: DeductionSnapshot, jobs: List[tuple], on: date, max_workers: int):
    """Run the aggregator for every (ref, gross) job; returns (breakdowns, failures)."""
    breakdowns: Dict[int, DeductionBreakdown] = {}
    failures: List[Dict[str, Any]] = []
    if not jobs:
        return breakdowns, failures

    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(jobs)))) as pool:
        futures = {pool.submit(snapshot.aggregator.build, ref, gross, on): ref for ref, gross in jobs}
        for fut in as_completed(futures):
            ref = futures[fut]
            try:
                breakdowns[ref.id] = fut.result()
            except WorkerCalculationError as e:
                log.warning("worker %s: %s failed: %s", ref.id, e.deduction_code, e.cause.message)
                failures.append(_failure(ref.id, e.cause.code, e.cause.message, e.deduction_code))
    return breakdowns, failures


def run_pay_calculation(month_year: str, gross_by_worker: Mapping[Any, Any],
                        snapshot: Optional[DeductionSnapshot] = None,
                        max_workers: Optional[int] = None) -> PayCalculationRunResult:
    """
    Compute and persist deductions for `{worker_id: gross_salary}` in `month_year`.

    Workers not in the mapping keep their existing details. A gross of 0 removes the
    worker's detail. Per-worker failures are collected on `PayCalculation.failures`
    (and block finalization); configuration errors raise before anything is written.
    """
    on = period_date(month_year)
    if snapshot is None:
        snapshot = load_snapshot()
    if max_workers is None:
        max_workers = int(current_app.config.get("PAYROLL_MAX_WORKERS", 4))
    currency = current_app.config.get("PAYROLL_CURRENCY", "RM")

    try:
        pc = PayCalculation.find_or_create_for_month(month_year)
        if pc.is_finalized:
            raise PayCalculationStateError(f"pay calculation {month_year} is finalized",
                                           month_year=month_year)

        failures: List[Dict[str, Any]] = []
        wanted: Dict[int, Decimal] = {}
        for raw_id, raw_gross in (gross_by_worker or {}).items():
            try:
                wid = int(raw_id)
            except (TypeError, ValueError):
                failures.append(_failure(raw_id, "INVALID_WORKER_ID", "worker id must be an integer"))
                continue
            gross = _gross(raw_gross)
            if gross is None:
                failures.append(_failure(wid, "INVALID_GROSS", f"gross salary {raw_gross!r} is not a number"))
                continue
            if gross < 0:
                failures.append(_failure(wid, "OUT_OF_RANGE", f"gross salary {gross} is negative"))
                continue
            wanted[wid] = gross

        workers = {w.id: w for w in Worker.query.filter(Worker.id.in_(list(wanted))).all()} if wanted else {}
        for wid in sorted(set(wanted) - set(workers)):
            failures.append(_failure(wid, "UNKNOWN_WORKER", f"worker {wid} not found"))
            wanted.pop(wid)

        jobs = [
            (_WorkerRef(wid, workers[wid].nationality_class), gross)
            for wid, gross in sorted(wanted.items())
            if gross != 0
        ]
        breakdowns, calc_failures = _compute_all(snapshot, jobs, on, max_workers)
        failures.extend(calc_failures)

        # single writer from here on
        existing = {d.worker_id: d for d in pc.details}
        removed = 0
        failed_ids = {f["worker_id"] for f in failures}
        # a failing worker keeps no stale detail behind
        for wid in sorted(set(wanted) | {i for i in failed_ids if isinstance(i, int)}):
            detail = existing.get(wid)
            if wid in failed_ids or wanted[wid] == 0:
                if detail is not None:
                    pc.details.remove(detail)
                    removed += 1
                continue
            if detail is None:
                detail = PayCalculationDetail(pay_calculation=pc, worker_id=wid, currency=currency)
                db.session.add(detail)
            detail.apply_breakdown(breakdowns[wid])

        touched = set(wanted) | failed_ids
        kept = [f for f in (pc.failures or []) if f.get("worker_id") not in touched]
        pc.failures = sorted(kept + failures, key=lambda f: str(f.get("worker_id")))

        db.session.flush()
        pc.recalculate_overall_total()
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    log.info(
        "pay calculation %s: %d workers computed, %d removed, %d failures (gross=%s net=%s)",
        month_year, len(breakdowns), removed, len(failures), pc.total_gross_salary, pc.total_net_salary,
    )
    return PayCalculationRunResult(pc, processed=len(breakdowns), removed=removed, failures=failures)


def recalculate_detail(detail: PayCalculationDetail, gross_salary=None,
                       snapshot: Optional[DeductionSnapshot] = None) -> Optional[PayCalculationDetail]:
    """
    Recompute one worker's detail after its gross changed, then the month's totals.

    Returns None when the gross dropped to zero and the detail was removed.
    """
    pc = detail.pay_calculation
    if pc.is_finalized:
        raise PayCalculationStateError(f"pay calculation {pc.month_year} is finalized",
                                       month_year=pc.month_year)
    gross = _gross(gross_salary if gross_salary is not None else detail.gross_salary)
    if gross is None:
        raise PayCalculationStateError(f"gross salary {gross_salary!r} is not a number")
    if gross < 0:
        raise OutOfRange(gross)

    wid = detail.worker_id
    try:
        if gross == 0:
            log.info("pay calculation %s: worker %s has no earnings, removing detail",
                     pc.month_year, detail.worker_id)
            pc.details.remove(detail)
            detail = None
        else:
            if snapshot is None:
                snapshot = load_snapshot()
            worker = detail.worker or db.session.get(Worker, detail.worker_id)
            ref = _WorkerRef(detail.worker_id, worker.nationality_class)
            detail.apply_breakdown(snapshot.aggregator.build(ref, gross, period_date(pc.month_year)))
        if pc.failures:
            pc.failures = [f for f in pc.failures if f.get("worker_id") != wid]
        db.session.flush()
        pc.recalculate_overall_total()
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return detail


def finalize(pc: PayCalculation) -> PayCalculation:
    """Lock the month. Refused while any worker failed in the last run."""
    if pc.is_finalized:
        return pc
    if pc.failures:
        raise PayCalculationStateError(
            f"pay calculation {pc.month_year} has {len(pc.failures)} failing worker(s)",
            month_year=pc.month_year,
            failures=len(pc.failures),
        )
    pc.recalculate_overall_total()
    pc.status = "finalized"
    pc.finalized_at = datetime.utcnow()
    db.session.commit()
    log.info("pay calculation %s finalized (%d details, net=%s)",
             pc.month_year, len(pc.details), pc.total_net_salary)
    return pc
