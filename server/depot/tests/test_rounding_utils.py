from decimal import Decimal

from depot.utils.rounding import round_half_up


def test_round_half_up_rounds_ties_away_from_zero():
    assert round_half_up(Decimal("0.405")) == Decimal("0.41")
    assert round_half_up(Decimal("12.5"), places=0) == Decimal("13")
    assert round_half_up(Decimal("12.49"), places=0) == Decimal("12")


def test_round_half_up_accepts_common_types_and_none():
    assert round_half_up(12) == Decimal("12.00")
    assert round_half_up(12.3) == Decimal("12.30")
    assert round_half_up("12.345") == Decimal("12.35")
    assert round_half_up(None) is None
