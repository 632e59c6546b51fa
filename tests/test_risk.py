"""Tests for ATR-based stop-loss / take-profit calculation."""

import pytest

from zoneforge.risk.sl_tp import (
    RiskLevels,
    calculate_atr_levels,
    calculate_sl,
    calculate_tp,
    levels_on_correct_side,
)


class TestStopAndTarget:
    def test_buy_levels(self):
        assert calculate_sl(1.1050, "buy", 0.0010) == pytest.approx(1.1035)
        assert calculate_tp(1.1050, "buy", 0.0010) == pytest.approx(1.1080)

    def test_sell_levels(self):
        assert calculate_sl(1.1000, "sell", 0.0010) == pytest.approx(1.1015)
        assert calculate_tp(1.1000, "sell", 0.0010) == pytest.approx(1.0970)

    def test_invalid_direction(self):
        with pytest.raises(ValueError, match="direction"):
            calculate_sl(1.1, "long", 0.001)
        with pytest.raises(ValueError, match="direction"):
            calculate_tp(1.1, "short", 0.001)

    def test_correct_side(self):
        assert levels_on_correct_side(1.1, "buy", 1.09, 1.12)
        assert not levels_on_correct_side(1.1, "buy", 1.12, 1.09)
        assert levels_on_correct_side(1.1, "sell", 1.12, 1.09)


class TestAtrLevels:
    def test_default_multipliers_give_two_to_one(self):
        levels = calculate_atr_levels(1.1050, "buy", 0.0010)
        assert levels == RiskLevels(sl=1.1035, tp=1.108)
        assert levels.reward_risk(1.1050) == pytest.approx(2.0)

    def test_rounded_to_digits(self):
        levels = calculate_atr_levels(150.123, "sell", 0.1234, digits=3)
        assert levels.sl == round(150.123 + 1.5 * 0.1234, 3)
        assert levels.tp == round(150.123 - 3.0 * 0.1234, 3)

    @pytest.mark.parametrize("atr, entry", [(0.0, 1.1), (-0.001, 1.1), (0.001, 0.0)])
    def test_degenerate_inputs(self, atr, entry):
        assert calculate_atr_levels(entry, "buy", atr) is None

    def test_non_positive_target(self):
        assert calculate_atr_levels(0.002, "sell", 0.001) is None

    def test_zero_risk(self):
        assert RiskLevels(sl=1.1, tp=1.2).reward_risk(1.1) == 0.0
