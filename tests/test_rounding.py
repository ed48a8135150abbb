from decimal import Decimal

import pytest

from estate_payroll.services.deductions import ConfigurationError, RoundingMethod, TieBreak, apply_rounding


def test_ceil_to_whole_ringgit():
    assert apply_rounding(Decimal("50.20"), 0, RoundingMethod.CEIL) == Decimal("51")
    assert apply_rounding(Decimal("50.00"), 0, RoundingMethod.CEIL) == Decimal("50")


def test_floor_to_whole_ringgit():
    assert apply_rounding(Decimal("50.99"), 0, RoundingMethod.FLOOR) == Decimal("50")


def test_round_half_up_vs_half_even():
    assert apply_rounding(Decimal("12.345"), 2) == Decimal("12.35")
    assert apply_rounding(Decimal("12.345"), 2, RoundingMethod.ROUND, TieBreak.HALF_EVEN) == Decimal("12.34")
    assert apply_rounding(Decimal("12.355"), 2, RoundingMethod.ROUND, TieBreak.HALF_EVEN) == Decimal("12.36")


def test_tie_break_ignored_by_ceil_and_floor():
    for tb in TieBreak:
        assert apply_rounding(Decimal("1.005"), 2, RoundingMethod.CEIL, tb) == Decimal("1.01")
        assert apply_rounding(Decimal("1.005"), 2, RoundingMethod.FLOOR, tb) == Decimal("1.00")


def test_precision_is_exact_decimal_places():
    out = apply_rounding(Decimal("330"), 2)
    assert str(out) == "330.00"


@pytest.mark.parametrize("raw,expected", [
    ("round", RoundingMethod.ROUND),
    ("CEIL", RoundingMethod.CEIL),
    ("ceiling", RoundingMethod.CEIL),
    (" floor ", RoundingMethod.FLOOR),
    (None, RoundingMethod.ROUND),
])
def test_parse_rounding_method(raw, expected):
    assert RoundingMethod.parse(raw) is expected


def test_unknown_rounding_method_is_configuration_error():
    with pytest.raises(ConfigurationError):
        RoundingMethod.parse("truncate")


def test_parse_tie_break_aliases():
    assert TieBreak.parse("bankers") is TieBreak.HALF_EVEN
    assert TieBreak.parse("half-up") is TieBreak.HALF_UP
    with pytest.raises(ConfigurationError):
        TieBreak.parse("half_down")


def test_negative_precision_rejected():
    with pytest.raises(ConfigurationError):
        apply_rounding(Decimal("1.5"), -1)
