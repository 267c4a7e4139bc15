"""Multiplicative Holt-Winters (triple exponential smoothing) forecaster.

Formulas (season length m, one observation per month):
    level[t]  = α·x[t]/s[t-m] + (1-α)·(level[t-1] + trend[t-1])
    trend[t]  = β·(level[t] - level[t-1]) + (1-β)·trend[t-1]
    s[t]      = γ·x[t]/level[t] + (1-γ)·s[t-m]
    ŷ[n-1+h]  = (level[n-1] + h·trend[n-1]) · s[(n-1+h) mod m]

CRITICAL: Observations <= 0 (missing months) carry level+trend forward and
leave trend and seasonal index untouched. Forecasts are floored at 0.
"""

from __future__ import annotations

import itertools
from typing import Any

import numpy as np

from app.features.forecasting.metrics import DEFAULT_DECAY
from app.features.forecasting.models import BaseForecaster, FitResult
from app.features.forecasting.schemas import HoltWintersParameters, ValidationResult
from app.features.forecasting.telemetry import ForecastObserver, NullObserver
from app.features.forecasting.validation import (
    DEFAULT_MAX_TEST_PERIODS,
    WalkForwardSplitter,
    perform_temporal_cross_validation,
)

ALPHA_GRID: tuple[float, ...] = (0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9)
BETA_GRID: tuple[float, ...] = (0.1, 0.15, 0.2, 0.25, 0.3, 0.4, 0.5)
GAMMA_GRID: tuple[float, ...] = (0.1, 0.15, 0.2, 0.25, 0.3, 0.4, 0.5)

FALLBACK_PARAMETERS = HoltWintersParameters(alpha=0.3, beta=0.2, gamma=0.2)

SEASONAL_INDEX_BOUNDS = (0.3, 3.0)


class HoltWintersForecaster(BaseForecaster):
    """Multiplicative Holt-Winters with additive trend.

    Attributes:
        alpha: Level smoothing in (0, 1].
        beta: Trend smoothing in (0, 1].
        gamma: Seasonal smoothing in (0, 1].
        season_length: Periods per season.
    """

    def __init__(
        self,
        alpha: float = FALLBACK_PARAMETERS.alpha,
        beta: float = FALLBACK_PARAMETERS.beta,
        gamma: float = FALLBACK_PARAMETERS.gamma,
        season_length: int = 12,
    ) -> None:
        """Initialize the forecaster.

        Args:
            alpha: Level smoothing in (0, 1].
            beta: Trend smoothing in (0, 1].
            gamma: Seasonal smoothing in (0, 1].
            season_length: Periods per season (must be >= 2).

        Raises:
            ValueError: If a parameter is out of range.
        """
        super().__init__()
        self.alpha = alpha
        self.beta = beta
        self.gamma = gamma
        self.season_length = season_length
        self._validate_params()
        self._n_observations = 0
        self._level = 0.0
        self._trend = 0.0
        self._seasonal: np.ndarray[Any, np.dtype[np.floating[Any]]] = np.ones(season_length)
        self._components: dict[str, list[float]] = {}

    @classmethod
    def from_parameters(
        cls, parameters: HoltWintersParameters, season_length: int = 12
    ) -> HoltWintersForecaster:
        """Create a forecaster from a parameter schema."""
        return cls(
            alpha=parameters.alpha,
            beta=parameters.beta,
            gamma=parameters.gamma,
            season_length=season_length,
        )

    def _validate_params(self) -> None:
        for name in ("alpha", "beta", "gamma"):
            value = getattr(self, name)
            if not 0 < value <= 1:
                raise ValueError(f"{name} must be in (0, 1], got {value}")
        if self.season_length < 2:
            raise ValueError(f"season_length must be >= 2, got {self.season_length}")

    def _initial_seasonal_indices(
        self, y: np.ndarray[Any, np.dtype[np.floating[Any]]]
    ) -> np.ndarray[Any, np.dtype[np.floating[Any]]]:
        """Median same-position value over the mean of whole seasons, clamped."""
        m = self.season_length
        whole = y[: (len(y) // m) * m]
        positive = whole[whole > 0]
        indices = np.ones(m, dtype=np.float64)
        if len(positive) == 0:
            return indices

        overall_mean = float(np.mean(positive))
        for k in range(m):
            same_position = y[k::m]
            same_position = same_position[same_position > 0]
            if len(same_position) > 0:
                indices[k] = float(np.median(same_position)) / overall_mean
        return np.clip(indices, *SEASONAL_INDEX_BOUNDS)

    def fit(self, y: np.ndarray[Any, np.dtype[np.floating[Any]]]) -> HoltWintersForecaster:
        """Run the smoothing recursion over the series.

        Args:
            y: Monthly values (1D array, chronological).

        Returns:
            self (for method chaining).

        Raises:
            ValueError: If y has fewer than two full seasons.
        """
        m = self.season_length
        y = np.asarray(y, dtype=np.float64)
        n = len(y)
        if n < 2 * m:
            raise ValueError(f"Need at least {2 * m} observations (two seasons), got {n}")

        seasonal = self._initial_seasonal_indices(y)
        level = float(np.mean(y[:m]))
        trend = (float(np.mean(y[m : 2 * m])) - level) / m

        levels = np.empty(n)
        trends = np.empty(n)
        seasonals = np.empty(n)
        residuals: list[float] = []

        for t in range(n):
            k = t % m
            x = float(y[t])
            one_step = (level + trend) * seasonal[k]

            if x <= 0:
                level = level + trend
            else:
                previous_level = level
                level = self.alpha * x / seasonal[k] + (1 - self.alpha) * (level + trend)
                trend = self.beta * (level - previous_level) + (1 - self.beta) * trend
                if level > 0:
                    seasonal[k] = self.gamma * x / level + (1 - self.gamma) * seasonal[k]
                if t >= m:
                    residuals.append(x - one_step)

            levels[t] = level
            trends[t] = trend
            seasonals[t] = seasonal[k]

        if not np.all(np.isfinite(levels)):
            raise ValueError("Smoothing recursion diverged")

        self._n_observations = n
        self._level = level
        self._trend = trend
        self._seasonal = seasonal
        self._components = {
            "level": levels.tolist(),
            "trend": trends.tolist(),
            "seasonal": seasonals.tolist(),
        }

        residual_array = np.array(residuals) if residuals else np.zeros(1)
        self._fit_result = FitResult(
            fitted=True,
            n_observations=n,
            residual_std=float(np.std(residual_array)),
            metrics={"train_mae": float(np.mean(np.abs(residual_array)))},
        )
        self._is_fitted = True
        return self

    def predict(self, horizon: int) -> np.ndarray[Any, np.dtype[np.floating[Any]]]:
        """Forecast the next ``horizon`` months.

        Args:
            horizon: Number of steps to forecast.

        Returns:
            Array of non-negative forecasts with shape [horizon].

        Raises:
            RuntimeError: If model has not been fitted.
        """
        if not self._is_fitted:
            raise RuntimeError("Model must be fitted before predict")

        m = self.season_length
        last = self._n_observations - 1
        steps = np.arange(1, horizon + 1)
        seasonal = self._seasonal[(last + steps) % m]
        forecast = (self._level + steps * self._trend) * seasonal
        return np.maximum(forecast, 0.0)

    @property
    def components(self) -> dict[str, list[float]]:
        """Fitted level, trend and seasonal index per observation."""
        return self._components

    def get_params(self) -> dict[str, Any]:
        """Get model parameters."""
        return {
            "alpha": self.alpha,
            "beta": self.beta,
            "gamma": self.gamma,
            "season_length": self.season_length,
        }

    def set_params(self, **params: Any) -> HoltWintersForecaster:  # noqa: ANN401
        """Set model parameters; the model must be refitted afterwards."""
        for key in ("alpha", "beta", "gamma", "season_length"):
            if key in params:
                setattr(self, key, params[key])
        self._validate_params()
        self._is_fitted = False
        return self


def validate_parameters(
    series: np.ndarray[Any, np.dtype[np.floating[Any]]],
    parameters: HoltWintersParameters,
    season_length: int = 12,
    max_test_periods: int = DEFAULT_MAX_TEST_PERIODS,
    decay: float = DEFAULT_DECAY,
) -> ValidationResult:
    """Walk-forward validate one parameter set.

    Args:
        series: Outlier-treated monthly series.
        parameters: Smoothing parameters to evaluate.
        season_length: Periods per season.
        max_test_periods: Maximum number of test points.
        decay: Recency decay for weighted MAPE.

    Returns:
        ValidationResult for the parameters.

    Raises:
        ValueError: If a refit on a training prefix fails.
    """

    def forecast_one_step(train: np.ndarray[Any, np.dtype[np.floating[Any]]]) -> float:
        model = HoltWintersForecaster.from_parameters(parameters, season_length)
        return float(model.fit(train).predict(1)[0])

    return perform_temporal_cross_validation(
        series,
        season_length=season_length,
        forecast_one_step=forecast_one_step,
        min_train_size=2 * season_length,
        max_test_periods=max_test_periods,
        decay=decay,
    )


def optimize_parameters(
    series: np.ndarray[Any, np.dtype[np.floating[Any]]],
    season_length: int = 12,
    max_test_periods: int = DEFAULT_MAX_TEST_PERIODS,
    decay: float = DEFAULT_DECAY,
    observer: ForecastObserver | None = None,
) -> tuple[HoltWintersParameters, ValidationResult]:
    """Grid-search smoothing parameters by walk-forward weighted MAPE.

    Candidates are evaluated in ALPHA_GRID × BETA_GRID × GAMMA_GRID order;
    the lowest weighted MAPE wins and the first candidate wins ties.
    Candidates that raise are skipped. When no candidate can be scored, or
    the series leaves no test point, FALLBACK_PARAMETERS are used.

    Args:
        series: Outlier-treated monthly series.
        season_length: Periods per season.
        max_test_periods: Maximum number of test points.
        decay: Recency decay for weighted MAPE.
        observer: Telemetry callback.

    Returns:
        Tuple of (selected parameters, their validation result).
    """
    observe = observer or NullObserver()
    splitter = WalkForwardSplitter(2 * season_length, max_test_periods)
    if splitter.n_test_periods(len(series)) == 0:
        observe(
            "forecasting.holt_winters_search_fallback",
            reason="no_test_periods",
            n_observations=len(series),
        )
        return FALLBACK_PARAMETERS, _validate_or_default(
            series, FALLBACK_PARAMETERS, season_length, max_test_periods, decay
        )

    best: tuple[HoltWintersParameters, ValidationResult] | None = None
    n_failed = 0
    for alpha, beta, gamma in itertools.product(ALPHA_GRID, BETA_GRID, GAMMA_GRID):
        candidate = HoltWintersParameters(alpha=alpha, beta=beta, gamma=gamma)
        try:
            validation = validate_parameters(
                series, candidate, season_length, max_test_periods, decay
            )
        except (ValueError, ArithmeticError):
            n_failed += 1
            continue
        if not np.isfinite(validation.weighted_mape):
            n_failed += 1
            continue
        if best is None or validation.weighted_mape < best[1].weighted_mape:
            best = (candidate, validation)

    if best is None:
        observe(
            "forecasting.holt_winters_search_fallback",
            reason="all_candidates_failed",
            n_failed=n_failed,
        )
        return FALLBACK_PARAMETERS, ValidationResult.insufficient()

    observe(
        "forecasting.holt_winters_search_completed",
        alpha=best[0].alpha,
        beta=best[0].beta,
        gamma=best[0].gamma,
        weighted_mape=best[1].weighted_mape,
        n_failed=n_failed,
    )
    return best


def _validate_or_default(
    series: np.ndarray[Any, np.dtype[np.floating[Any]]],
    parameters: HoltWintersParameters,
    season_length: int,
    max_test_periods: int,
    decay: float,
) -> ValidationResult:
    try:
        return validate_parameters(series, parameters, season_length, max_test_periods, decay)
    except (ValueError, ArithmeticError):
        return ValidationResult.insufficient()
