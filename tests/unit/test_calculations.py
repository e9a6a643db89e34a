"""Unit tests for achievement-rate and donation math."""

from __future__ import annotations

from citadel.pow.calculations import (
    calculate_achievement_rate,
    calculate_actual_sats,
    round_half_up,
)


class TestRoundHalfUp:
    def test_half_rounds_away_from_zero(self):
        """2.5 -> 3, where builtin round() would give 2."""
        assert round_half_up(2.5) == 3
        assert round(2.5) == 2

    def test_below_half_rounds_down(self):
        assert round_half_up(2.49) == 2

    def test_one_decimal(self):
        assert round_half_up(2.45, 1) == 2.5
        assert round_half_up(2.44, 1) == 2.4


class TestAchievementRate:
    def test_half_goal(self):
        assert calculate_achievement_rate(3600, 1800) == 50.0

    def test_capped_at_100(self):
        """Working past the goal never exceeds 100%."""
        assert calculate_achievement_rate(3600, 7200) == 100.0

    def test_exact_goal(self):
        assert calculate_achievement_rate(1500, 1500) == 100.0

    def test_one_decimal_place(self):
        assert calculate_achievement_rate(3, 1) == 33.3
        assert calculate_achievement_rate(3, 2) == 66.7

    def test_zero_goal_is_zero(self):
        """A non-positive goal yields 0 instead of dividing by zero."""
        assert calculate_achievement_rate(0, 100) == 0.0
        assert calculate_achievement_rate(-5, 100) == 0.0

    def test_nothing_done(self):
        assert calculate_achievement_rate(3600, 0) == 0.0


class TestActualSats:
    def test_scales_by_rate(self):
        assert calculate_actual_sats(1000, 50.0) == 500

    def test_fractional_rate(self):
        assert calculate_actual_sats(1000, 33.3) == 333

    def test_half_sat_rounds_up(self):
        """1001 * 50% = 500.5 -> 501."""
        assert calculate_actual_sats(1001, 50.0) == 501

    def test_zero_rate(self):
        assert calculate_actual_sats(1000, 0.0) == 0

    def test_full_rate(self):
        assert calculate_actual_sats(2100, 100.0) == 2100

