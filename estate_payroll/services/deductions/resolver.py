# estate_payroll/services/deductions/resolver.py
from __future__ import annotations

from datetime import date
from typing import FrozenSet, Optional

from .errors import ConfigurationConflict
from .rate_table import DeductionVersion, RateTable, nationality_class, NATIONALITY_SCOPES


def _as_class(nationality: Optional[str]) -> str:
    raw = (nationality or "").strip().lower()
    return raw if raw in NATIONALITY_SCOPES else nationality_class(nationality)


class DeductionResolver:
    """
    Picks the single effective version of a deduction code for (nationality, date).

    A miss means "this deduction does not apply" and comes back as None; two or more
    matches are a configuration error and raise ConfigurationConflict.
    """

    def __init__(self, rate_table: RateTable):
        self.rate_table = rate_table

    def resolve(self, code: str, nationality: Optional[str], as_of: date) -> Optional[DeductionVersion]:
        nat = _as_class(nationality)
        matches = self.rate_table.candidates(code, nat, as_of)
        if len(matches) > 1:
            raise ConfigurationConflict(code, nat, as_of, [m.id for m in matches if m.id is not None])
        return matches[0] if matches else None

    def applicable_types(self, nationality: Optional[str], as_of: date) -> FrozenSet[DeductionVersion]:
        out = set()
        for code in self.rate_table.codes(active_only=True):
            v = self.resolve(code, nationality, as_of)
            if v is not None:
                out.add(v)
        return frozenset(out)
