"""Duration statistics and scoring helpers.

Pure functions over plain lists so they can be tested without a database.
Every helper tolerates empty input and returns None (or an empty result)
instead of raising.
"""

import math

import numpy as np


def duration_summary(durations: list[float]) -> dict[str, float | None]:
    """Mean, median, p95, p99, min and max of a duration sample."""
    if not durations:
        return {
            "average": None,
            "median": None,
            "p95": None,
            "p99": None,
            "min": None,
            "max": None,
        }
    values = np.asarray(durations, dtype=float)
    return {
        "average": round(float(np.mean(values)), 3),
        "median": round(float(np.median(values)), 3),
        "p95": round(float(np.percentile(values, 95)), 3),
        "p99": round(float(np.percentile(values, 99)), 3),
        "min": round(float(np.min(values)), 3),
        "max": round(float(np.max(values)), 3),
    }


def z_scores(values: list[float]) -> list[float]:
    """Population z-score of each value. All zeros when the sample has no spread."""
    if not values:
        return []
    arr = np.asarray(values, dtype=float)
    std = float(np.std(arr))
    if std == 0:
        return [0.0] * len(values)
    return [float(z) for z in (arr - np.mean(arr)) / std]


def coefficient_of_variation(values: list[float]) -> float | None:
    """stddev / mean; None for an empty sample or a zero mean."""
    if not values:
        return None
    arr = np.asarray(values, dtype=float)
    mean = float(np.mean(arr))
    if mean == 0:
        return None
    return float(np.std(arr)) / mean


def rate(numerator: int, denominator: int) -> float | None:
    """Percentage rounded to 2 places, or None when there is nothing to divide by."""
    if denominator == 0:
        return None
    return round(numerator / denominator * 100, 2)


def percent_change(current: float | None, previous: float | None) -> float | None:
    if current is None or previous is None or previous == 0:
        return None
    return round((current - previous) / previous * 100, 2)


def duration_stability(durations: list[float]) -> float | None:
    """0-100 score; 100 means every run took the same time."""
    cv = coefficient_of_variation(durations)
    if cv is None:
        return None
    return round(max(0.0, 1.0 - cv) * 100, 2)


def health_score(
    factors: dict[str, float | None],
    weights: dict[str, float],
) -> float | None:
    """
    Weighted 0-100 score over the factors that have data.

    Weights of missing factors are redistributed over the present ones, so a
    job with no SLA configured is scored on its other factors alone.
    """
    present = {
        name: score
        for name, score in factors.items()
        if score is not None and weights.get(name, 0) > 0
    }
    total_weight = sum(weights[name] for name in present)
    if not present or total_weight == 0:
        return None
    score = sum(present[name] * weights[name] for name in present) / total_weight
    return round(min(max(score, 0.0), 100.0), 2)


def completion_forecast(
    elapsed: float,
    historical: list[float],
    steps_total: int | None = None,
    steps_completed: int | None = None,
) -> tuple[float | None, float, str]:
    """
    Estimate remaining seconds for a running execution.

    Uses the median of the job's past successful durations; falls back to
    extrapolating step progress when there is no history.

    Returns:
        (remaining_seconds, confidence 0-100, based_on)
    """
    if historical:
        expected = float(np.median(historical))
        remaining = max(expected - elapsed, 0.0)
        cv = coefficient_of_variation(historical) or 0.0
        sample_weight = min(1.0, len(historical) / 20)
        confidence = round(sample_weight * max(0.0, 1.0 - cv) * 100, 2)
        return remaining, confidence, "historical_median"

    if steps_total and steps_completed and 0 < steps_completed < steps_total:
        expected = elapsed * steps_total / steps_completed
        return max(expected - elapsed, 0.0), 25.0, "step_progress"

    return None, 0.0, "no_history"


def severity_for(z: float, threshold: float) -> str:
    """low / medium / high by how far past the anomaly threshold a z-score sits."""
    magnitude = abs(z)
    if math.isinf(magnitude) or magnitude >= threshold * 2:
        return "high"
    if magnitude >= threshold * 1.5:
        return "medium"
    return "low"


# A finished run that used more than this share of its SLA counts as a near miss
NEAR_MISS_RATIO = 0.8
TREND_CARRY = 0.5
NEAR_MISS_WEIGHT = 0.25
FULL_CONFIDENCE_SAMPLE = 30


def is_near_miss(duration: float | None, sla_seconds: float | None) -> bool:
    if duration is None or sla_seconds is None:
        return False
    return NEAR_MISS_RATIO * sla_seconds < duration <= sla_seconds


def sla_prediction(
    earlier_compliance: float | None,
    recent_compliance: float | None,
    near_miss_rate: float | None,
    sample_size: int,
) -> tuple[float | None, float, list[tuple[str, float]]]:
    """
    Project SLA compliance for the next period.

    Starts from the recent compliance rate (the earlier one when nothing
    recent finished), carries half of the change between the two halves of
    the window forward, and takes a quarter of the near-miss rate off.

    Returns:
        (predicted compliance 0-100, confidence 0-100, [(factor, impact in points)])
    """
    baseline = recent_compliance if recent_compliance is not None else earlier_compliance
    if baseline is None:
        return None, 0.0, []

    trend = 0.0
    if recent_compliance is not None and earlier_compliance is not None:
        trend = round((recent_compliance - earlier_compliance) * TREND_CARRY, 2)
    near_misses = round(-(near_miss_rate or 0.0) * NEAR_MISS_WEIGHT, 2)

    predicted = min(max(baseline + trend + near_misses, 0.0), 100.0)
    confidence = round(min(1.0, sample_size / FULL_CONFIDENCE_SAMPLE) * 100, 2)
    factors = [("compliance_trend", trend), ("near_misses", near_misses)]
    return round(predicted, 2), confidence, factors
