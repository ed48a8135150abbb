# estate_payroll/services/deductions/errors.py
from __future__ import annotations

from typing import Any, Dict, Optional


class DeductionError(Exception):
    """Base class for every error raised by the deduction engine."""

    code = "DEDUCTION_ERROR"

    def __init__(self, message: str, **detail: Any):
        super().__init__(message)
        self.message = message
        self.detail: Dict[str, Any] = {k: v for k, v in detail.items() if v is not None}

    def to_dict(self) -> Dict[str, Any]:
        out = {"code": self.code, "message": self.message}
        if self.detail:
            out["detail"] = self.detail
        return out


# ---------- configuration (fatal, pre-flight) ----------

class ConfigurationError(DeductionError):
    """Reference data is unusable; no payroll run may proceed until it is fixed."""

    code = "DEDUCTION_CONFIG_ERROR"


class BracketConfigurationError(ConfigurationError):
    """Wage brackets of one deduction type have a gap, an overlap or a bad open end."""

    code = "BRACKET_CONFIG_ERROR"

    def __init__(self, message: str, deduction_code: Optional[str] = None, **detail: Any):
        super().__init__(message, deduction_code=deduction_code, **detail)
        self.deduction_code = deduction_code


class ConfigurationConflict(ConfigurationError):
    """More than one version of a code matches the same nationality and date."""

    code = "CONFIGURATION_CONFLICT"

    def __init__(self, deduction_code: str, nationality: Optional[str], on, version_ids=()):
        super().__init__(
            f"{len(version_ids) or 'several'} versions of {deduction_code} match "
            f"nationality={nationality} on {on}",
            deduction_code=deduction_code,
            nationality=nationality,
            on=on.isoformat() if hasattr(on, "isoformat") else on,
            version_ids=list(version_ids) or None,
        )
        self.deduction_code = deduction_code
        self.nationality = nationality
        self.on = on
        self.version_ids = tuple(version_ids)


# ---------- calculation (fatal per worker) ----------

class CalculationError(DeductionError):
    code = "DEDUCTION_CALC_ERROR"


class OutOfRange(CalculationError):
    """Salary falls outside every configured wage bracket (e.g. negative gross)."""

    code = "OUT_OF_RANGE"

    def __init__(self, gross_salary, deduction_code: Optional[str] = None):
        super().__init__(
            f"salary {gross_salary} is outside the wage brackets"
            + (f" of {deduction_code}" if deduction_code else ""),
            gross_salary=str(gross_salary),
            deduction_code=deduction_code,
        )
        self.gross_salary = gross_salary
        self.deduction_code = deduction_code


class WorkerCalculationError(CalculationError):
    """A worker's breakdown failed; carries the worker and the offending deduction."""

    def __init__(self, worker_id, deduction_code: Optional[str], cause: DeductionError):
        super().__init__(
            f"worker {worker_id}: {cause.message}",
            worker_id=worker_id,
            deduction_code=deduction_code,
            cause=cause.code,
        )
        self.worker_id = worker_id
        self.deduction_code = deduction_code
        self.cause = cause
