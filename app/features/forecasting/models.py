"""Shared forecaster interface and prediction-interval construction.

All forecasters implement a common interface:
- fit(y) -> self
- predict(horizon) -> np.ndarray
- get_params() -> dict
- set_params(**params) -> self

CRITICAL: All implementations must be deterministic; identical input gives
identical output.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from app.features.forecasting.schemas import PredictionInterval

Z_80 = 1.2816
Z_95 = 1.96


@dataclass
class FitResult:
    """Result of model fitting.

    Attributes:
        fitted: Whether the model was successfully fitted.
        n_observations: Number of observations used for fitting.
        residual_std: Standard deviation of in-sample one-step residuals.
        metrics: Dictionary of training metrics (e.g., {"train_mae": 1.23}).
    """

    fitted: bool
    n_observations: int
    residual_std: float = 0.0
    metrics: dict[str, float] = field(default_factory=lambda: {})


class BaseForecaster(ABC):
    """Abstract base class for the monthly forecasting models.

    Interface follows scikit-learn conventions:
    - fit(y) -> self
    - predict(horizon) -> np.ndarray
    - get_params() -> dict
    - set_params(**params) -> self
    """

    #: Multiplier applied to the upper half of prediction intervals.
    upper_interval_widening: float = 1.0

    def __init__(self) -> None:
        """Initialize the forecaster."""
        self._is_fitted = False
        self._fit_result: FitResult | None = None

    @abstractmethod
    def fit(self, y: np.ndarray[Any, np.dtype[np.floating[Any]]]) -> BaseForecaster:
        """Fit the model on historical data.

        Args:
            y: Monthly values (1D array, chronological).

        Returns:
            self (for method chaining).

        Raises:
            ValueError: If y has insufficient observations.
        """

    @abstractmethod
    def predict(self, horizon: int) -> np.ndarray[Any, np.dtype[np.floating[Any]]]:
        """Generate forecasts for the specified horizon.

        Args:
            horizon: Number of steps to forecast.

        Returns:
            Array of non-negative forecasts with shape [horizon].

        Raises:
            RuntimeError: If model has not been fitted.
        """

    @abstractmethod
    def get_params(self) -> dict[str, Any]:
        """Get model parameters (scikit-learn convention).

        Returns:
            Dictionary of parameter names to values.
        """

    @abstractmethod
    def set_params(self, **params: Any) -> BaseForecaster:  # noqa: ANN401
        """Set model parameters (scikit-learn convention).

        Args:
            **params: Parameter names and values to set.

        Returns:
            self (for method chaining).
        """

    @property
    def is_fitted(self) -> bool:
        """Check if the model has been fitted.

        Returns:
            True if fit() has been called successfully.
        """
        return self._is_fitted

    @property
    def fit_result(self) -> FitResult:
        """Result of the last successful fit.

        Raises:
            RuntimeError: If model has not been fitted.
        """
        if self._fit_result is None:
            raise RuntimeError("Model must be fitted before reading fit_result")
        return self._fit_result

    def predict_intervals(self, horizon: int) -> list[PredictionInterval]:
        """Prediction intervals around ``predict(horizon)``.

        Args:
            horizon: Number of steps to forecast.

        Returns:
            One PredictionInterval per horizon step.
        """
        return prediction_intervals(
            self.predict(horizon),
            self.fit_result.residual_std,
            upper_widening=self.upper_interval_widening,
        )


def prediction_intervals(
    forecast: np.ndarray[Any, np.dtype[np.floating[Any]]],
    residual_std: float,
    upper_widening: float = 1.0,
) -> list[PredictionInterval]:
    """Build 80% and 95% intervals from a residual standard deviation.

    Formula: f[h] ± z · std · sqrt(h), upper half multiplied by
    ``upper_widening``, lower bounds floored at 0.

    Args:
        forecast: Point forecasts for steps 1..H.
        residual_std: In-sample residual standard deviation.
        upper_widening: Multiplier (>= 1) on the upper half-width.

    Returns:
        One PredictionInterval per horizon step.
    """
    std = residual_std if math.isfinite(residual_std) and residual_std > 0 else 0.0
    intervals: list[PredictionInterval] = []
    for h, value in enumerate(forecast, start=1):
        point = float(value)
        spread = std * math.sqrt(h)
        intervals.append(
            PredictionInterval(
                lower_80=max(0.0, point - Z_80 * spread),
                upper_80=point + Z_80 * spread * upper_widening,
                lower_95=max(0.0, point - Z_95 * spread),
                upper_95=point + Z_95 * spread * upper_widening,
            )
        )
    return intervals
