"""Partial-period correction for the still-open month.

A model forecast for the current month is blended with the naive run-rate of
the figures accumulated so far: ``partial_total / elapsed_fraction``.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date as date_type

MAX_ELAPSED_FRACTION = 0.95
DEFAULT_MAX_MODEL_WEIGHT = 0.7
DEFAULT_MIN_ELAPSED = 0.1


@dataclass
class PartialPeriodBlend:
    """Result of blending a model forecast with the open month's run-rate.

    Attributes:
        value: Blended forecast (equals the model forecast when not applied).
        applied: Whether the run-rate contributed.
        model_weight: Weight on the model forecast.
        run_rate: Naive projection of the partial figures (0 when not applied).
    """

    value: float
    applied: bool
    model_weight: float = 1.0
    run_rate: float = 0.0


def elapsed_fraction(as_of: date_type, cap: float = MAX_ELAPSED_FRACTION) -> float:
    """Fraction of the month elapsed on ``as_of``.

    Formula: day / days_in_month, capped at ``cap``.

    Args:
        as_of: Date inside the open month.
        cap: Upper bound of the fraction.

    Returns:
        Fraction in (0, cap].
    """
    days_in_month = calendar.monthrange(as_of.year, as_of.month)[1]
    return min(as_of.day / days_in_month, cap)


def blend_with_partial_period(
    model_forecast: float,
    partial_total: float,
    elapsed: float,
    model_confidence: float,
    max_model_weight: float = DEFAULT_MAX_MODEL_WEIGHT,
    min_elapsed: float = DEFAULT_MIN_ELAPSED,
) -> PartialPeriodBlend:
    """Blend a model forecast with the run-rate of the open month.

    Formula:
        w = min(max_model_weight, model_confidence)
        value = w · model_forecast + (1 - w) · partial_total / elapsed

    CRITICAL: Not applied when no partial data exists (``partial_total <= 0``)
    or too little of the month has elapsed (``elapsed < min_elapsed``).

    Args:
        model_forecast: Model forecast for the open month.
        partial_total: Figure accumulated so far in the open month.
        elapsed: Fraction of the month elapsed.
        model_confidence: Model confidence in [0, 1].
        max_model_weight: Cap on the model weight.
        min_elapsed: Minimum elapsed fraction before blending.

    Returns:
        PartialPeriodBlend with the corrected value.
    """
    if partial_total <= 0 or elapsed < min_elapsed or elapsed <= 0:
        return PartialPeriodBlend(value=model_forecast, applied=False)

    model_weight = max(0.0, min(max_model_weight, model_confidence))
    run_rate = partial_total / elapsed
    value = model_weight * model_forecast + (1.0 - model_weight) * run_rate
    return PartialPeriodBlend(
        value=value,
        applied=True,
        model_weight=model_weight,
        run_rate=run_rate,
    )
