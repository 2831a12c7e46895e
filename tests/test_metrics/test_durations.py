"""Tests for duration statistics helpers."""

import math

import pytest

from jobwatch.metrics.durations import (
    coefficient_of_variation,
    completion_forecast,
    duration_stability,
    duration_summary,
    health_score,
    is_near_miss,
    percent_change,
    rate,
    severity_for,
    sla_prediction,
    z_scores,
)

WEIGHTS = {"success_rate": 0.5, "sla_compliance": 0.3, "duration_stability": 0.2}


class TestDurationSummary:
    def test_summary(self):
        summary = duration_summary([10, 20, 30, 40])

        assert summary["average"] == 25.0
        assert summary["median"] == 25.0
        assert summary["min"] == 10.0
        assert summary["max"] == 40.0
        assert summary["p95"] == pytest.approx(38.5)
        assert summary["p99"] == pytest.approx(39.7)

    def test_empty_sample(self):
        """Should return None for every statistic instead of raising."""
        assert set(duration_summary([]).values()) == {None}


class TestZScores:
    def test_symmetric_sample(self):
        assert z_scores([2, 4]) == [-1.0, 1.0]

    def test_no_spread(self):
        assert z_scores([5, 5, 5]) == [0.0, 0.0, 0.0]

    def test_empty(self):
        assert z_scores([]) == []


class TestRatios:
    def test_rate(self):
        assert rate(1, 3) == 33.33
        assert rate(0, 5) == 0.0

    def test_rate_without_denominator(self):
        assert rate(0, 0) is None

    def test_percent_change(self):
        assert percent_change(150, 100) == 50.0
        assert percent_change(50, 100) == -50.0

    def test_percent_change_without_baseline(self):
        assert percent_change(10, 0) is None
        assert percent_change(None, 10) is None
        assert percent_change(10, None) is None

    def test_coefficient_of_variation(self):
        assert coefficient_of_variation([2, 4]) == pytest.approx(1 / 3)
        assert coefficient_of_variation([]) is None
        assert coefficient_of_variation([0, 0]) is None


class TestDurationStability:
    def test_identical_runs(self):
        assert duration_stability([10, 10, 10]) == 100.0

    def test_wild_runs_floor_at_zero(self):
        assert duration_stability([0, 0, 30]) == 0.0

    def test_no_data(self):
        assert duration_stability([]) is None


class TestHealthScore:
    def test_all_factors(self):
        score = health_score(
            {"success_rate": 100, "sla_compliance": 100, "duration_stability": 100}, WEIGHTS
        )

        assert score == 100.0

    def test_missing_factor_weight_is_redistributed(self):
        """Should score a job without SLA data on its other factors only."""
        score = health_score(
            {"success_rate": 80, "sla_compliance": None, "duration_stability": 100}, WEIGHTS
        )

        assert score == 85.71

    def test_no_data(self):
        assert health_score({"success_rate": None}, WEIGHTS) is None

    def test_unweighted_factor_is_ignored(self):
        assert health_score({"success_rate": 50, "other": 0}, WEIGHTS) == 50.0


class TestCompletionForecast:
    def test_historical_median(self):
        remaining, confidence, based_on = completion_forecast(30, [100.0] * 20)

        assert remaining == 70.0
        assert confidence == 100.0
        assert based_on == "historical_median"

    def test_small_history_lowers_confidence(self):
        _, confidence, _ = completion_forecast(30, [100.0] * 5)

        assert confidence == 25.0

    def test_overrun_never_goes_negative(self):
        remaining, _, _ = completion_forecast(500, [100.0, 100.0])

        assert remaining == 0.0

    def test_step_progress_fallback(self):
        """Should extrapolate from completed steps when there is no history."""
        remaining, confidence, based_on = completion_forecast(
            50, [], steps_total=10, steps_completed=5
        )

        assert remaining == 50.0
        assert confidence == 25.0
        assert based_on == "step_progress"

    def test_nothing_to_go_on(self):
        assert completion_forecast(50, []) == (None, 0.0, "no_history")


class TestSeverity:
    @pytest.mark.parametrize(
        "z, expected",
        [
            (3.1, "low"),
            (4.5, "medium"),
            (6.0, "high"),
            (-7.0, "high"),
            (math.inf, "high"),
        ],
    )
    def test_severity_bands(self, z, expected):
        assert severity_for(z, 3.0) == expected


class TestSlaPrediction:
    def test_nothing_to_go_on(self):
        assert sla_prediction(None, None, None, 0) == (None, 0.0, [])

    def test_trend_and_near_misses(self):
        """Should carry half the trend forward and take a quarter of the near misses off."""
        predicted, confidence, factors = sla_prediction(60.0, 80.0, 20.0, 15)

        assert predicted == 85.0
        assert confidence == 50.0
        assert factors == [("compliance_trend", 10.0), ("near_misses", -5.0)]

    def test_clamped_to_100(self):
        predicted, confidence, _ = sla_prediction(0.0, 100.0, 0.0, 60)

        assert predicted == 100.0
        assert confidence == 100.0

    def test_earlier_half_only(self):
        predicted, _, factors = sla_prediction(50.0, None, None, 3)

        assert predicted == 50.0
        assert factors[0] == ("compliance_trend", 0.0)

    @pytest.mark.parametrize(
        "duration, sla, expected",
        [(50, 60, True), (60, 60, True), (40, 60, False), (61, 60, False), (50, None, False)],
    )
    def test_near_miss(self, duration, sla, expected):
        assert is_near_miss(duration, sla) is expected
