from datetime import date
from decimal import Decimal

import pytest

from estate_payroll.services.deductions import (
    ConfigurationError, ContributionCalculator, DeductionVersion, OutOfRange, ranges_from_dicts,
)

ON = date(2024, 1, 1)


def _pct(code="EPF_LOCAL", ee="11", er="13", method="round", precision=2, tie="half_up"):
    return DeductionVersion.create(
        code=code, calculation_type="percentage", effective_from=ON,
        employee_rate=ee, employer_rate=er,
        rounding_method=method, rounding_precision=precision, tie_break=tie,
    )


def _socso(method="round", precision=2):
    return DeductionVersion.create(
        code="SOCSO", calculation_type="wage_range", effective_from=ON,
        applies_to_nationality="local",
        rounding_method=method, rounding_precision=precision,
        wage_ranges=ranges_from_dicts([
            {"min_wage": 0, "max_wage": "2900.00", "employee_amount": "14.25", "employer_amount": "49.85"},
            {"min_wage": "2900.01", "max_wage": "3000.00", "employee_amount": "21.25", "employer_amount": "74.35"},
            {"min_wage": "3000.01", "max_wage": "5000.00", "calculation_method": "percentage",
             "employee_percentage": "0.5", "employer_percentage": "1.75"},
            {"min_wage": "5000.01", "max_wage": None, "employee_amount": "29.75", "employer_amount": "104.15"},
        ]),
    )


def test_epf_local_percentage():
    c = ContributionCalculator().compute(_pct(), Decimal("3000.00"))
    assert c.employee_amount == Decimal("330.00")
    assert c.employer_amount == Decimal("390.00")


def test_epf_ceil_to_whole_ringgit():
    c = ContributionCalculator().compute(_pct(method="ceil", precision=0), Decimal("1850.50"))
    # 203.555 / 240.565
    assert c.employee_amount == Decimal("204")
    assert c.employer_amount == Decimal("241")


def test_socso_fixed_bracket():
    c = ContributionCalculator().compute(_socso(), Decimal("2950.00"))
    assert c.employee_amount == Decimal("21.25")
    assert c.employer_amount == Decimal("74.35")


def test_socso_upper_bound_inclusive():
    c = ContributionCalculator().compute(_socso(), Decimal("3000.00"))
    assert c.employee_amount == Decimal("21.25")


def test_percentage_bracket_rounds_after_multiplying():
    # 3333.33 * 0.5% = 16.66665 ; * 1.75% = 58.333275
    c = ContributionCalculator().compute(_socso(), Decimal("3333.33"))
    assert c.employee_amount == Decimal("16.67")
    assert c.employer_amount == Decimal("58.33")


def test_open_ended_top_bracket():
    c = ContributionCalculator().compute(_socso(), Decimal("12000"))
    assert (c.employee_amount, c.employer_amount) == (Decimal("29.75"), Decimal("104.15"))


def test_fixed_type_returns_amounts_regardless_of_salary():
    v = DeductionVersion.create(code="UNION_DUES", calculation_type="fixed", effective_from=ON,
                                employee_rate="8.00", employer_rate="0")
    calc = ContributionCalculator()
    assert calc.compute(v, Decimal("900")).employee_amount == Decimal("8.00")
    assert calc.compute(v, Decimal("9000")).employee_amount == Decimal("8.00")


def test_each_side_rounded_independently_with_tie_break():
    # 1234.50 * 1% = 12.345 on both sides
    up = ContributionCalculator().compute(_pct(ee="1", er="1"), Decimal("1234.50"))
    even = ContributionCalculator().compute(_pct(ee="1", er="1", tie="half_even"), Decimal("1234.50"))
    assert up.employee_amount == Decimal("12.35")
    assert even.employee_amount == Decimal("12.34")


def test_float_input_converted_via_str():
    c = ContributionCalculator().compute(_pct(ee="11", er="13"), 0.1 + 0.2)
    # str(0.30000000000000004) keeps the digits, result still rounds to cents
    assert c.employee_amount == Decimal("0.03")


def test_negative_gross_is_out_of_range():
    calc = ContributionCalculator()
    with pytest.raises(OutOfRange):
        calc.compute(_pct(), Decimal("-1"))
    with pytest.raises(OutOfRange):
        calc.compute(_socso(), Decimal("-1"))


def test_zero_gross():
    c = ContributionCalculator().compute(_pct(), Decimal("0"))
    assert c.employee_amount == Decimal("0")


def test_wage_range_type_without_ranges_is_configuration_error():
    with pytest.raises(ConfigurationError):
        DeductionVersion.create(code="SOCSO", calculation_type="wage_range", effective_from=ON)


def test_unknown_calculation_type_is_configuration_error():
    with pytest.raises(ConfigurationError):
        DeductionVersion.create(code="X", calculation_type="progressive", effective_from=ON)
