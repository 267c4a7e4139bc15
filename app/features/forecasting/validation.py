"""Walk-forward validation engine shared by the forecasting models.

CRITICAL: Respects temporal order - every test point is forecast from data
strictly before it.

Walk-forward example (n=30, min_train_size=24, max_test_periods=6):
    Split 0: [0..24) train, 24 test
    Split 1: [0..25) train, 25 test
    ...
    Split 5: [0..29) train, 29 test
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Any

import numpy as np

from app.features.forecasting.metrics import DEFAULT_DECAY, MetricsCalculator
from app.features.forecasting.schemas import BacktestPeriod, ConfidenceLabel, ValidationResult

DEFAULT_MAX_TEST_PERIODS = 6

# Confidence thresholds: (weighted MAPE %, MASE)
HIGH_CONFIDENCE_THRESHOLDS = (10.0, 0.8)
MEDIUM_CONFIDENCE_THRESHOLDS = (20.0, 1.2)

OneStepForecaster = Callable[[np.ndarray[Any, np.dtype[np.floating[Any]]]], float]


@dataclass
class WalkForwardSplit:
    """A single one-step-ahead split.

    Attributes:
        split_index: Index of the split (0-based).
        train_indices: Indices strictly before the test point.
        test_index: Index of the point being forecast.
    """

    split_index: int
    train_indices: np.ndarray[Any, np.dtype[np.intp]]
    test_index: int


class WalkForwardSplitter:
    """Generate expanding-window, one-step-ahead splits.

    The last ``min(max_test_periods, n - min_train_size)`` points are test
    points; each one trains on every point before it.

    Attributes:
        min_train_size: Minimum points before the first test point.
        max_test_periods: Maximum number of test points.
    """

    def __init__(
        self,
        min_train_size: int,
        max_test_periods: int = DEFAULT_MAX_TEST_PERIODS,
    ) -> None:
        """Initialize the splitter.

        Args:
            min_train_size: Minimum points before the first test point.
            max_test_periods: Maximum number of test points.

        Raises:
            ValueError: If either size is not positive.
        """
        if min_train_size < 1:
            raise ValueError(f"min_train_size must be >= 1, got {min_train_size}")
        if max_test_periods < 1:
            raise ValueError(f"max_test_periods must be >= 1, got {max_test_periods}")
        self.min_train_size = min_train_size
        self.max_test_periods = max_test_periods

    def n_test_periods(self, n_samples: int) -> int:
        """Number of test points available for a series of n_samples."""
        return max(0, min(self.max_test_periods, n_samples - self.min_train_size))

    def split(self, n_samples: int) -> Iterator[WalkForwardSplit]:
        """Generate splits for a series of n_samples points.

        Args:
            n_samples: Series length.

        Yields:
            WalkForwardSplit objects in chronological order; nothing when the
            series is too short.
        """
        n_test = self.n_test_periods(n_samples)
        first_test = n_samples - n_test
        for split_idx, test_idx in enumerate(range(first_test, n_samples)):
            yield WalkForwardSplit(
                split_index=split_idx,
                train_indices=np.arange(0, test_idx),
                test_index=test_idx,
            )

    def validate_no_leakage(self, n_samples: int) -> bool:
        """Validate that no split trains on its test point or later.

        Args:
            n_samples: Series length.

        Returns:
            True if no leakage detected, False otherwise.
        """
        for split in self.split(n_samples):
            if len(split.train_indices) == 0:
                return False
            if int(split.train_indices[-1]) >= split.test_index:
                return False
            if split.test_index in set(split.train_indices.tolist()):
                return False
        return True


def classify_confidence(weighted_mape: float, mase: float) -> ConfidenceLabel:
    """Map validation errors to a confidence label.

    Args:
        weighted_mape: Recency-weighted MAPE (%).
        mase: Mean absolute scaled error.

    Returns:
        "High", "Medium" or "Low".
    """
    if weighted_mape < HIGH_CONFIDENCE_THRESHOLDS[0] and mase < HIGH_CONFIDENCE_THRESHOLDS[1]:
        return "High"
    if weighted_mape < MEDIUM_CONFIDENCE_THRESHOLDS[0] and mase < MEDIUM_CONFIDENCE_THRESHOLDS[1]:
        return "Medium"
    return "Low"


def perform_temporal_cross_validation(
    series: np.ndarray[Any, np.dtype[np.floating[Any]]],
    season_length: int,
    forecast_one_step: OneStepForecaster,
    min_train_size: int,
    max_test_periods: int = DEFAULT_MAX_TEST_PERIODS,
    decay: float = DEFAULT_DECAY,
) -> ValidationResult:
    """Walk-forward validate a one-step forecaster.

    Args:
        series: Monthly series (already outlier-treated).
        season_length: Seasonal lag for the MASE naive benchmark.
        forecast_one_step: Fits on a training prefix and returns the forecast
            for the next point. Exceptions propagate to the caller.
        min_train_size: Minimum training prefix length.
        max_test_periods: Maximum number of test points.
        decay: Recency decay for weighted MAPE.

    Returns:
        ValidationResult; ``ValidationResult.insufficient()`` when no test
        point is available.
    """
    y = np.asarray(series, dtype=np.float64)
    splitter = WalkForwardSplitter(min_train_size, max_test_periods)
    splits = list(splitter.split(len(y)))
    if not splits:
        return ValidationResult.insufficient()

    actuals: list[float] = []
    forecasts: list[float] = []
    periods: list[BacktestPeriod] = []
    for split in splits:
        actual = float(y[split.test_index])
        forecast = float(forecast_one_step(y[split.train_indices]))
        error = abs(actual - forecast) / abs(actual) * 100.0 if actual != 0 else 0.0
        actuals.append(actual)
        forecasts.append(forecast)
        periods.append(
            BacktestPeriod(period=split.test_index, actual=actual, forecast=forecast, error=error)
        )

    a = np.array(actuals)
    f = np.array(forecasts)
    train_prefix = y[: splits[0].test_index]

    calculator = MetricsCalculator()
    smape = calculator.smape(a, f).value
    mape = calculator.mape(a, f).value
    mase = calculator.mase(a, f, train_prefix, season_length).value
    weighted_mape = calculator.weighted_mape(a, f, decay).value

    return ValidationResult(
        smape=smape,
        mape=mape,
        mase=mase,
        weighted_mape=weighted_mape,
        confidence=classify_confidence(weighted_mape, mase),
        periods=periods,
    )
