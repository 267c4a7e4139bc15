"""Accuracy metrics for walk-forward validation.

Supported Metrics:
- MAE: Mean Absolute Error
- sMAPE: Symmetric Mean Absolute Percentage Error (0-200 scale)
- MAPE: Mean Absolute Percentage Error over non-zero actuals
- MASE: Mean Absolute Scaled Error against an in-sample naive forecast
- Weighted MAPE: MAPE with exponentially decaying weights on older periods

CRITICAL: All metrics handle edge cases (zeros, empty arrays) without
raising, except for length mismatches.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import numpy as np

MASE_CAP = 10.0
DEFAULT_DECAY = 0.9


@dataclass
class MetricResult:
    """Result of a single metric calculation.

    Attributes:
        name: Name of the metric.
        value: Calculated value (may be nan for empty input).
        n_samples: Number of samples used in calculation.
        warnings: List of warnings generated during calculation.
    """

    name: str
    value: float
    n_samples: int
    warnings: list[str] = field(default_factory=lambda: [])


def _check_lengths(
    actuals: np.ndarray[Any, np.dtype[np.floating[Any]]],
    predictions: np.ndarray[Any, np.dtype[np.floating[Any]]],
) -> None:
    if len(actuals) != len(predictions):
        raise ValueError(
            f"Length mismatch: actuals={len(actuals)}, predictions={len(predictions)}"
        )


class MetricsCalculator:
    """Calculate forecasting accuracy metrics.

    CRITICAL: All metrics handle edge cases (zeros, empty arrays).
    """

    EPSILON = 1e-10

    @staticmethod
    def mae(
        actuals: np.ndarray[Any, np.dtype[np.floating[Any]]],
        predictions: np.ndarray[Any, np.dtype[np.floating[Any]]],
    ) -> MetricResult:
        """Mean Absolute Error.

        Formula: mean(|actual - predicted|)

        Args:
            actuals: Ground truth values.
            predictions: Predicted values.

        Returns:
            MetricResult with MAE value.

        Raises:
            ValueError: If arrays have different lengths.
        """
        if len(actuals) == 0:
            return MetricResult(name="mae", value=np.nan, n_samples=0, warnings=["Empty array"])
        _check_lengths(actuals, predictions)

        mae_value = float(np.mean(np.abs(np.asarray(actuals) - np.asarray(predictions))))
        return MetricResult(name="mae", value=mae_value, n_samples=len(actuals))

    @staticmethod
    def smape(
        actuals: np.ndarray[Any, np.dtype[np.floating[Any]]],
        predictions: np.ndarray[Any, np.dtype[np.floating[Any]]],
    ) -> MetricResult:
        """Symmetric Mean Absolute Percentage Error.

        Formula: 100/n * sum(2 * |A - F| / (|A| + |F|))

        CRITICAL: When both A and F are 0, contributes 0 to sum (perfect forecast).

        Args:
            actuals: Ground truth values.
            predictions: Predicted values.

        Returns:
            MetricResult with sMAPE value (0-200 scale).

        Raises:
            ValueError: If arrays have different lengths.
        """
        warnings: list[str] = []

        if len(actuals) == 0:
            return MetricResult(name="smape", value=np.nan, n_samples=0, warnings=["Empty array"])
        _check_lengths(actuals, predictions)

        a = np.asarray(actuals, dtype=np.float64)
        f = np.asarray(predictions, dtype=np.float64)
        numerator = 2.0 * np.abs(a - f)
        denominator = np.abs(a) + np.abs(f)

        with np.errstate(divide="ignore", invalid="ignore"):
            ratios = np.where(denominator == 0, 0.0, numerator / denominator)

        n_zeros = int(np.sum((a == 0) & (f == 0)))
        if n_zeros > 0:
            warnings.append(f"{n_zeros} samples with zero actual and forecast")

        return MetricResult(
            name="smape", value=float(100.0 * np.mean(ratios)), n_samples=len(a), warnings=warnings
        )

    @staticmethod
    def mape(
        actuals: np.ndarray[Any, np.dtype[np.floating[Any]]],
        predictions: np.ndarray[Any, np.dtype[np.floating[Any]]],
    ) -> MetricResult:
        """Mean Absolute Percentage Error over non-zero actuals.

        Formula: 100/k * sum(|A - F| / |A|) for A != 0

        Args:
            actuals: Ground truth values.
            predictions: Predicted values.

        Returns:
            MetricResult with MAPE value; 0 when every actual is zero.

        Raises:
            ValueError: If arrays have different lengths.
        """
        if len(actuals) == 0:
            return MetricResult(name="mape", value=np.nan, n_samples=0, warnings=["Empty array"])
        _check_lengths(actuals, predictions)

        a = np.asarray(actuals, dtype=np.float64)
        f = np.asarray(predictions, dtype=np.float64)
        mask = a != 0
        if not np.any(mask):
            return MetricResult(
                name="mape", value=0.0, n_samples=0, warnings=["All actuals are zero"]
            )

        value = float(100.0 * np.mean(np.abs(a[mask] - f[mask]) / np.abs(a[mask])))
        return MetricResult(name="mape", value=value, n_samples=int(np.sum(mask)))

    @staticmethod
    def mase(
        actuals: np.ndarray[Any, np.dtype[np.floating[Any]]],
        predictions: np.ndarray[Any, np.dtype[np.floating[Any]]],
        train: np.ndarray[Any, np.dtype[np.floating[Any]]],
        season_length: int = 12,
    ) -> MetricResult:
        """Mean Absolute Scaled Error.

        Formula: MAE(forecast) / MAE(in-sample naive forecast)

        The naive scale is the seasonal naive (lag ``season_length``) on the
        training series; lag-1 naive is used when the training series is
        shorter than ``season_length + 1`` or its seasonal scale is zero.

        CRITICAL: A zero scale with a zero forecast error is a perfect
        forecast (0); a zero scale with non-zero error returns the cap.
        The result is capped at MASE_CAP.

        Args:
            actuals: Ground truth values.
            predictions: Predicted values.
            train: Training series preceding the actuals.
            season_length: Seasonal lag of the naive benchmark.

        Returns:
            MetricResult with MASE value.

        Raises:
            ValueError: If arrays have different lengths.
        """
        warnings: list[str] = []

        if len(actuals) == 0:
            return MetricResult(name="mase", value=np.nan, n_samples=0, warnings=["Empty array"])
        _check_lengths(actuals, predictions)

        a = np.asarray(actuals, dtype=np.float64)
        f = np.asarray(predictions, dtype=np.float64)
        y = np.asarray(train, dtype=np.float64)
        error = float(np.mean(np.abs(a - f)))

        scale = 0.0
        if len(y) > season_length:
            scale = float(np.mean(np.abs(y[season_length:] - y[:-season_length])))
        if scale <= MetricsCalculator.EPSILON and len(y) > 1:
            warnings.append("Seasonal naive scale unavailable; using lag-1 naive")
            scale = float(np.mean(np.abs(np.diff(y))))

        if scale <= MetricsCalculator.EPSILON:
            if error <= MetricsCalculator.EPSILON:
                return MetricResult(name="mase", value=0.0, n_samples=len(a), warnings=warnings)
            warnings.append("Naive scale is zero; MASE capped")
            return MetricResult(name="mase", value=MASE_CAP, n_samples=len(a), warnings=warnings)

        return MetricResult(
            name="mase", value=min(error / scale, MASE_CAP), n_samples=len(a), warnings=warnings
        )

    @staticmethod
    def weighted_mape(
        actuals: np.ndarray[Any, np.dtype[np.floating[Any]]],
        predictions: np.ndarray[Any, np.dtype[np.floating[Any]]],
        decay: float = DEFAULT_DECAY,
    ) -> MetricResult:
        """Recency-weighted MAPE.

        Formula: sum(w_i * APE_i) / sum(w_i), w_i = decay^(periods_ago)

        The last element is the most recent period (weight 1). Periods with a
        zero actual are excluded.

        Args:
            actuals: Ground truth values, chronological.
            predictions: Predicted values.
            decay: Per-period weight decay in (0, 1].

        Returns:
            MetricResult with weighted MAPE value.

        Raises:
            ValueError: If arrays have different lengths or decay is out of range.
        """
        if not 0 < decay <= 1:
            raise ValueError(f"decay must be in (0, 1], got {decay}")
        if len(actuals) == 0:
            return MetricResult(
                name="weighted_mape", value=np.nan, n_samples=0, warnings=["Empty array"]
            )
        _check_lengths(actuals, predictions)

        a = np.asarray(actuals, dtype=np.float64)
        f = np.asarray(predictions, dtype=np.float64)
        periods_ago = np.arange(len(a) - 1, -1, -1, dtype=np.float64)
        weights = np.power(decay, periods_ago)
        mask = a != 0
        if not np.any(mask):
            return MetricResult(
                name="weighted_mape", value=0.0, n_samples=0, warnings=["All actuals are zero"]
            )

        ape = np.abs(a[mask] - f[mask]) / np.abs(a[mask])
        value = float(100.0 * np.sum(weights[mask] * ape) / np.sum(weights[mask]))
        return MetricResult(name="weighted_mape", value=value, n_samples=int(np.sum(mask)))
