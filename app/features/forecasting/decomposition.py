"""Prophet-style decomposition forecaster.

The series is decomposed as ``y = trend + seasonal + residual``:
- seasonal: yearly Fourier terms from a ridge fit of [1, t, harmonics],
- trend: continuous piecewise-linear fit through detected changepoints,
- residual: what is left.

Forecasts extrapolate the trend with its last segment slope and add the
Fourier seasonality evaluated at future months; they are floored at 0.

CRITICAL: Below MIN_DECOMPOSITION_POINTS observations ``fit`` raises; callers
turn that into the documented all-zero default.
"""

from __future__ import annotations

import math
from typing import Any

import numpy as np

from app.features.forecasting.metrics import MetricsCalculator
from app.features.forecasting.models import BaseForecaster, FitResult
from app.features.forecasting.schemas import DecompositionConfig
from app.features.forecasting.telemetry import ForecastObserver, NullObserver

MIN_DECOMPOSITION_POINTS = 6
MIN_SEGMENT_POINTS = 3
HOLDOUT_POINTS = 3

# Slope floor as a fraction of mean |y|
SLOPE_FLOOR_RATIO = 1e-3

TRIAL_CONFIGS: tuple[DecompositionConfig, ...] = (
    DecompositionConfig(
        name="conservative",
        n_changepoints=5,
        changepoint_threshold=0.5,
        seasonality_prior_scale=5.0,
        fourier_order=2,
    ),
    DecompositionConfig(
        name="balanced",
        n_changepoints=10,
        changepoint_threshold=0.25,
        seasonality_prior_scale=10.0,
        fourier_order=3,
    ),
    DecompositionConfig(
        name="flexible",
        n_changepoints=15,
        changepoint_threshold=0.15,
        seasonality_prior_scale=20.0,
        fourier_order=4,
    ),
)

DEFAULT_CONFIG = TRIAL_CONFIGS[1]


def fourier_terms(
    t: np.ndarray[Any, np.dtype[np.floating[Any]]],
    period: int,
    order: int,
) -> np.ndarray[Any, np.dtype[np.floating[Any]]]:
    """Sin/cos harmonics k=1..order of the given period.

    Args:
        t: Time indices.
        period: Season length.
        order: Number of harmonics.

    Returns:
        Array of shape [len(t), 2*order]; [len(t), 0] when order is 0.
    """
    columns: list[np.ndarray[Any, np.dtype[np.floating[Any]]]] = []
    for k in range(1, order + 1):
        angle = 2.0 * math.pi * k * t / period
        columns.append(np.sin(angle))
        columns.append(np.cos(angle))
    if not columns:
        return np.zeros((len(t), 0))
    return np.column_stack(columns)


def _segment_slope(values: np.ndarray[Any, np.dtype[np.floating[Any]]]) -> float:
    x = np.arange(len(values), dtype=np.float64)
    return float(np.polyfit(x, values, 1)[0])


class DecompositionForecaster(BaseForecaster):
    """Trend + Fourier seasonality + residual forecaster.

    Prediction intervals are widened on the upper side (growth bias).

    Attributes:
        config: Decomposition configuration.
    """

    upper_interval_widening = 1.25

    def __init__(self, config: DecompositionConfig | None = None) -> None:
        """Initialize the forecaster.

        Args:
            config: Decomposition configuration (balanced trial by default).
        """
        super().__init__()
        self.config = config or DEFAULT_CONFIG
        self._n_observations = 0
        self._fourier_order = 0
        self._fourier_coef: np.ndarray[Any, np.dtype[np.floating[Any]]] = np.zeros(0)
        self._last_trend = 0.0
        self._last_slope = 0.0
        self._changepoints: list[int] = []
        self._confidence = 0.0
        self._components: dict[str, list[float]] = {}

    def _fit_seasonality(
        self,
        y: np.ndarray[Any, np.dtype[np.floating[Any]]],
        t: np.ndarray[Any, np.dtype[np.floating[Any]]],
    ) -> np.ndarray[Any, np.dtype[np.floating[Any]]]:
        """Ridge fit of [1, t, harmonics]; returns the seasonal component."""
        m = self.config.season_length
        self._fourier_order = min(self.config.fourier_order, m // 2) if len(y) >= m else 0
        fourier = fourier_terms(t, m, self._fourier_order)
        if fourier.shape[1] == 0:
            self._fourier_coef = np.zeros(0)
            return np.zeros(len(y))

        design = np.column_stack([np.ones(len(y)), t, fourier])
        penalty = np.zeros(design.shape[1])
        penalty[2:] = 1.0 / self.config.seasonality_prior_scale**2
        gram = design.T @ design + np.diag(penalty)
        coef = np.linalg.lstsq(gram, design.T @ y, rcond=None)[0]
        self._fourier_coef = coef[2:]
        return fourier @ self._fourier_coef

    def _detect_changepoints(
        self,
        deseasonalized: np.ndarray[Any, np.dtype[np.floating[Any]]],
        scale: float,
    ) -> list[int]:
        """Boundaries where the segment slope changes beyond the threshold."""
        n = len(deseasonalized)
        if self.config.n_changepoints == 0:
            return []

        segment = max(MIN_SEGMENT_POINTS, n // (self.config.n_changepoints + 1))
        slope_floor = SLOPE_FLOOR_RATIO * scale
        changepoints: list[int] = []
        for boundary in range(segment, n - MIN_SEGMENT_POINTS + 1, segment):
            before = _segment_slope(deseasonalized[boundary - segment : boundary])
            after = _segment_slope(deseasonalized[boundary : boundary + segment])
            threshold = self.config.changepoint_threshold * max(abs(before), slope_floor)
            if abs(after - before) > threshold:
                changepoints.append(boundary)
            if len(changepoints) >= self.config.n_changepoints:
                break
        return changepoints

    def fit(self, y: np.ndarray[Any, np.dtype[np.floating[Any]]]) -> DecompositionForecaster:
        """Decompose the series into trend, seasonality and residual.

        Args:
            y: Monthly values (1D array, chronological).

        Returns:
            self (for method chaining).

        Raises:
            ValueError: If y has fewer than MIN_DECOMPOSITION_POINTS values.
        """
        y = np.asarray(y, dtype=np.float64)
        n = len(y)
        if n < MIN_DECOMPOSITION_POINTS:
            raise ValueError(
                f"Need at least {MIN_DECOMPOSITION_POINTS} observations, got {n}"
            )

        t = np.arange(n, dtype=np.float64)
        seasonal = self._fit_seasonality(y, t)
        deseasonalized = y - seasonal

        scale = float(np.mean(np.abs(y)))
        changepoints = self._detect_changepoints(deseasonalized, scale)

        hinge = [np.maximum(t - c, 0.0) for c in changepoints]
        design = np.column_stack([np.ones(n), t, *hinge])
        coef = np.linalg.lstsq(design, deseasonalized, rcond=None)[0]
        trend = design @ coef
        residual = y - trend - seasonal

        var_y = float(np.var(y))
        var_resid = float(np.var(residual))
        if var_y <= MetricsCalculator.EPSILON:
            confidence = 1.0 if np.allclose(residual, 0.0) else 0.0
        else:
            confidence = float(np.clip(1.0 - var_resid / var_y, 0.0, 1.0))

        self._n_observations = n
        self._changepoints = changepoints
        self._last_trend = float(trend[-1])
        self._last_slope = float(coef[1] + np.sum(coef[2:]))
        self._confidence = confidence
        self._components = {
            "trend": trend.tolist(),
            "seasonal": seasonal.tolist(),
            "residual": residual.tolist(),
        }
        self._fit_result = FitResult(
            fitted=True,
            n_observations=n,
            residual_std=float(np.std(residual)),
            metrics={"train_mae": float(np.mean(np.abs(residual)))},
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

        steps = np.arange(1, horizon + 1, dtype=np.float64)
        future_t = (self._n_observations - 1) + steps
        trend = self._last_trend + steps * self._last_slope
        seasonal = fourier_terms(future_t, self.config.season_length, self._fourier_order)
        if seasonal.shape[1] > 0:
            trend = trend + seasonal @ self._fourier_coef
        return np.maximum(trend, 0.0)

    @property
    def components(self) -> dict[str, list[float]]:
        """Fitted trend, seasonal and residual per observation."""
        return self._components

    @property
    def changepoints(self) -> list[int]:
        """Indices where the trend slope changes."""
        return self._changepoints

    @property
    def confidence(self) -> float:
        """Share of variance explained: clip(1 - var(residual)/var(y), 0, 1)."""
        return self._confidence

    def get_params(self) -> dict[str, Any]:
        """Get model parameters."""
        return self.config.model_dump()

    def set_params(self, **params: Any) -> DecompositionForecaster:  # noqa: ANN401
        """Set configuration fields; the model must be refitted afterwards."""
        self.config = self.config.model_copy(update=params)
        self._is_fitted = False
        return self


def score_config(
    series: np.ndarray[Any, np.dtype[np.floating[Any]]],
    config: DecompositionConfig,
) -> float:
    """MAE of a configuration on the last HOLDOUT_POINTS values.

    Falls back to in-sample residual MAE when holding points out would leave
    fewer than MIN_DECOMPOSITION_POINTS for training.

    Raises:
        ValueError: If the model cannot be fitted.
    """
    y = np.asarray(series, dtype=np.float64)
    if len(y) - HOLDOUT_POINTS >= MIN_DECOMPOSITION_POINTS:
        model = DecompositionForecaster(config).fit(y[:-HOLDOUT_POINTS])
        return float(np.mean(np.abs(model.predict(HOLDOUT_POINTS) - y[-HOLDOUT_POINTS:])))
    model = DecompositionForecaster(config).fit(y)
    return model.fit_result.metrics["train_mae"]


def optimize_config(
    series: np.ndarray[Any, np.dtype[np.floating[Any]]],
    season_length: int = 12,
    observer: ForecastObserver | None = None,
) -> DecompositionConfig:
    """Pick the trial configuration with the lowest holdout error.

    Args:
        series: Outlier-treated monthly series.
        season_length: Periods per season.
        observer: Telemetry callback.

    Returns:
        Best configuration (first wins ties); the balanced trial when every
        trial fails.
    """
    observe = observer or NullObserver()
    best: tuple[DecompositionConfig, float] | None = None
    for trial in TRIAL_CONFIGS:
        config = trial.model_copy(update={"season_length": season_length})
        try:
            error = score_config(series, config)
        except (ValueError, np.linalg.LinAlgError):
            continue
        if not math.isfinite(error):
            continue
        if best is None or error < best[1]:
            best = (config, error)

    if best is None:
        observe("forecasting.decomposition_search_fallback", n_observations=len(series))
        return DEFAULT_CONFIG.model_copy(update={"season_length": season_length})

    observe(
        "forecasting.decomposition_search_completed",
        config=best[0].name,
        holdout_mae=best[1],
    )
    return best[0]
