import json
import os
from datetime import date
from decimal import Decimal

import pytest

from estate_payroll import create_app
from estate_payroll.extensions import db
from estate_payroll.models.payroll.deduction_type import DeductionType
from estate_payroll.services.deduction_import import (
    default_definitions, import_deduction_type, import_definitions, load_definitions_file, seed_defaults,
)
from estate_payroll.services.deduction_snapshot import load_snapshot
from estate_payroll.services.deductions import (
    BracketConfigurationError, ConfigurationConflict, ConfigurationError, WageBracketIndex, ranges_from_dicts,
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
        yield db.session


def _epf(eff_from, ee="11.00", **kw):
    d = {
        "code": "EPF_LOCAL", "name": "EPF", "calculation_type": "percentage",
        "applies_to_nationality": "local", "employee_contribution": ee, "employer_contribution": "13.00",
        "rounding_method": "ceil", "rounding_precision": 0, "effective_from": eff_from,
    }
    d.update(kw)
    return d


def test_seed_defaults_is_rerunnable(session):
    first = seed_defaults()
    assert first == {"created": 5, "skipped": 0}
    again = seed_defaults()
    assert again == {"created": 0, "skipped": 5}
    codes = sorted({r.code for r in DeductionType.query.all()})
    assert codes == ["EIS_LOCAL", "EPF_FOREIGN", "EPF_LOCAL", "SOCSO", "SOCSO_FOREIGN"]


def test_seeded_socso_table_is_gapless(session):
    seed_defaults()
    socso = DeductionType.query.filter_by(code="SOCSO").one()
    assert socso.wage_ranges[0].min_wage == Decimal("0")
    assert socso.wage_ranges[-1].max_wage is None
    for prev, nxt in zip(socso.wage_ranges, socso.wage_ranges[1:]):
        assert prev.max_wage + Decimal("0.01") == nxt.min_wage


def test_default_definitions_pass_bracket_validation():
    for d in default_definitions():
        if d.get("wage_ranges"):
            WageBracketIndex.validate(ranges_from_dicts(d["wage_ranges"]), d["code"])


def test_successor_closes_open_predecessor(session):
    import_definitions([_epf("2024-01-01")])
    import_definitions([_epf("2025-01-01", ee="12.00")])

    rows = DeductionType.query.filter_by(code="EPF_LOCAL").order_by(DeductionType.effective_from).all()
    assert len(rows) == 2
    assert rows[0].effective_until == date(2024, 12, 31)
    assert rows[0].employee_contribution == Decimal("11.00")
    assert rows[1].effective_until is None

    snap = load_snapshot()
    assert snap.resolver.resolve("EPF_LOCAL", "local", date(2024, 12, 31)).employee_rate == Decimal("11.00")
    assert snap.resolver.resolve("EPF_LOCAL", "local", date(2025, 1, 1)).employee_rate == Decimal("12.00")


def test_backdated_overlap_rejected_and_nothing_written(session):
    import_definitions([_epf("2024-01-01", effective_until="2024-12-31")])
    import_definitions([_epf("2025-01-01")])

    with pytest.raises(ConfigurationConflict):
        import_definitions([_epf("2024-06-01", effective_until="2024-09-30")])
    assert DeductionType.query.filter_by(code="EPF_LOCAL").count() == 2


def test_bracket_gap_rejected(session):
    d = {
        "code": "SOCSO", "calculation_type": "wage_range", "applies_to_nationality": "local",
        "effective_from": "2024-01-01",
        "wage_ranges": [
            {"min_wage": 0, "max_wage": "1000.00", "employee_amount": "5"},
            {"min_wage": "1000.05", "max_wage": None, "employee_amount": "10"},
        ],
    }
    with pytest.raises(BracketConfigurationError):
        import_deduction_type(d)
    assert DeductionType.query.count() == 0


def test_unknown_enum_values_rejected(session):
    with pytest.raises(ConfigurationError):
        import_deduction_type(_epf("2024-01-01", rounding_method="truncate"))
    with pytest.raises(ConfigurationError):
        import_deduction_type(_epf("2024-01-01", applies_to_nationality="martian"))
    with pytest.raises(ConfigurationError):
        import_deduction_type(_epf("not-a-date"))


def test_all_or_nothing_batch(session):
    batch = [
        _epf("2024-01-01"),
        {"code": "EIS_LOCAL", "calculation_type": "percentage", "effective_from": "2024-01-01",
         "applies_to_nationality": "local", "rounding_method": "sideways"},
    ]
    with pytest.raises(ConfigurationError):
        import_definitions(batch)
    assert DeductionType.query.count() == 0


def test_load_definitions_file(tmp_path, session):
    p = tmp_path / "deductions.json"
    p.write_text(json.dumps({"deduction_types": [_epf("2024-01-01")]}), encoding="utf-8")
    defs = load_definitions_file(str(p))
    assert len(defs) == 1
    assert import_definitions(defs) == {"created": 1, "skipped": 0}


def _hrdf(eff_from, nat="all", **kw):
    d = {
        "code": "HRDF", "name": "HRDF", "calculation_type": "percentage",
        "applies_to_nationality": nat, "employee_contribution": "0", "employer_contribution": "1.00",
        "effective_from": eff_from,
    }
    d.update(kw)
    return d


def test_narrower_successor_does_not_close_wider_predecessor(session):
    import_definitions([_hrdf("2024-01-01", nat="all")])

    with pytest.raises(ConfigurationConflict):
        import_definitions([_hrdf("2025-01-01", nat="local")])

    row = DeductionType.query.filter_by(code="HRDF").one()
    assert row.effective_until is None
    snap = load_snapshot()
    assert snap.resolver.resolve("HRDF", "foreigner", date(2025, 6, 1)) is not None


def test_bounded_successor_does_not_close_open_predecessor(session):
    import_definitions([_hrdf("2024-01-01")])

    with pytest.raises(ConfigurationConflict):
        import_definitions([_hrdf("2025-01-01", effective_until="2025-03-31", employer_contribution="2.00")])

    row = DeductionType.query.filter_by(code="HRDF").one()
    assert row.effective_until is None
    snap = load_snapshot()
    assert snap.resolver.resolve("HRDF", "local", date(2025, 6, 1)).employer_rate == Decimal("1.00")


def test_explicitly_closed_predecessor_accepts_narrower_successor(session):
    import_definitions([_hrdf("2024-01-01", effective_until="2024-12-31")])
    import_definitions([_hrdf("2025-01-01", nat="local")])

    snap = load_snapshot()
    assert snap.resolver.resolve("HRDF", "foreigner", date(2024, 6, 1)) is not None
    assert snap.resolver.resolve("HRDF", "foreigner", date(2025, 6, 1)) is None
    assert snap.resolver.resolve("HRDF", "local", date(2025, 6, 1)) is not None


def test_reimport_with_free_text_scope_is_skipped(session):
    defn = _epf("2024-01-01", applies_to_nationality="Malaysian")
    assert import_definitions([defn]) == {"created": 1, "skipped": 0}
    assert import_definitions([defn]) == {"created": 0, "skipped": 1}
    assert DeductionType.query.one().applies_to_nationality == "local"


@pytest.mark.parametrize("field,value", [
    ("employee_contribution", "abc"),
    ("employer_contribution", "NaN"),
    ("rounding_precision", "two"),
    ("is_active", "maybe"),
])
def test_malformed_values_are_configuration_errors(session, field, value):
    with pytest.raises(ConfigurationError) as exc:
        import_deduction_type(_epf("2024-01-01", **{field: value}))
    assert exc.value.detail["field"] == field
    assert DeductionType.query.count() == 0


def test_malformed_wage_range_value_is_configuration_error(session):
    d = {
        "code": "SOCSO", "calculation_type": "wage_range", "applies_to_nationality": "local",
        "effective_from": "2024-01-01",
        "wage_ranges": [{"min_wage": 0, "max_wage": None, "employee_amount": "ten"}],
    }
    with pytest.raises(ConfigurationError) as exc:
        import_deduction_type(d)
    assert exc.value.detail["field"] == "employee_amount"


def test_string_false_is_inactive(session):
    row = import_deduction_type(_epf("2024-01-01", is_active="false"))
    assert row.is_active is False
