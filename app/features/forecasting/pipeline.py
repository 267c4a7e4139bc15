"""Model entry points: history rows in, presentation-ready results out.

Each entry point runs:
    monthly series (gaps zero-filled) → outlier treatment → fit + parameter
    search → walk-forward validation → partial-period correction → annual
    projection → data quality, confidence and recommendations

CRITICAL: Entry points never raise for short or empty history; they return
the documented ``insufficient`` defaults instead.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date as date_type
from typing import Any

import numpy as np

from app.features.forecasting.correction import (
    DEFAULT_MAX_MODEL_WEIGHT,
    DEFAULT_MIN_ELAPSED,
    MAX_ELAPSED_FRACTION,
    blend_with_partial_period,
    elapsed_fraction,
)
from app.features.forecasting.decomposition import (
    MIN_DECOMPOSITION_POINTS,
    DecompositionForecaster,
    optimize_config,
)
from app.features.forecasting.ensemble import EnsembleCombiner
from app.features.forecasting.holt_winters import (
    HoltWintersForecaster,
    optimize_parameters,
    validate_parameters,
)
from app.features.forecasting.metrics import DEFAULT_DECAY
from app.features.forecasting.outliers import (
    DEFAULT_Z_THRESHOLD,
    OutlierTreatment,
    assess_data_quality,
    detect_and_treat_outliers,
)
from app.features.forecasting.schemas import (
    AutoParameters,
    BusinessContext,
    CurrentPeriodSnapshot,
    DecompositionConfig,
    EnsembleResult,
    HistoricalDataPoint,
    ManualParameters,
    ModelForecastResult,
    ModelName,
    SeriesForecast,
    ValidationResult,
)
from app.features.forecasting.telemetry import ForecastObserver, default_observer
from app.features.forecasting.validation import (
    DEFAULT_MAX_TEST_PERIODS,
    perform_temporal_cross_validation,
)

MONTHS_PER_YEAR = 12

HIGH_SMAPE = 25.0
HIGH_MASE = 1.5
MAX_OUTLIERS = 2


@dataclass
class MonthlySeries:
    """Chronological monthly series with missing months filled with 0.

    Attributes:
        services: Services per month.
        gmv: GMV per month.
        first_period: (year, month) of the first element, None when empty.
    """

    services: np.ndarray[Any, np.dtype[np.floating[Any]]]
    gmv: np.ndarray[Any, np.dtype[np.floating[Any]]]
    first_period: tuple[int, int] | None = None

    def __len__(self) -> int:
        return len(self.services)


@dataclass
class PipelineOptions:
    """Tunables shared by the model entry points.

    Attributes:
        season_length: Periods per season.
        horizon: Months to forecast (at least one year is always computed).
        z_threshold: Outlier z-score threshold.
        max_test_periods: Walk-forward test points.
        decay: Recency decay for weighted MAPE.
        max_model_weight: Cap on the model weight in the partial-period blend.
        min_elapsed: Minimum elapsed fraction before blending.
        max_elapsed: Cap on the elapsed fraction.
    """

    season_length: int = 12
    horizon: int = 12
    z_threshold: float = DEFAULT_Z_THRESHOLD
    max_test_periods: int = DEFAULT_MAX_TEST_PERIODS
    decay: float = DEFAULT_DECAY
    max_model_weight: float = DEFAULT_MAX_MODEL_WEIGHT
    min_elapsed: float = DEFAULT_MIN_ELAPSED
    max_elapsed: float = MAX_ELAPSED_FRACTION

    @property
    def path_length(self) -> int:
        return max(self.horizon, MONTHS_PER_YEAR)


@dataclass
class EnsembleRun:
    """Everything produced by one ensemble computation."""

    ensemble: EnsembleResult
    decomposition: ModelForecastResult
    holt_winters: ModelForecastResult
    context: BusinessContext
    n_observations: int = 0


def build_monthly_series(
    history: Sequence[HistoricalDataPoint],
    before: date_type | None = None,
) -> MonthlySeries:
    """Sort rows into a gap-free monthly series.

    Duplicate months are summed. Rows in or after the month of ``before``
    are dropped, and months missing up to the month before it count as 0.

    Args:
        history: Monthly rows in any order.
        before: Date inside the open month (optional).

    Returns:
        MonthlySeries; empty arrays when no row qualifies.
    """
    cutoff = before.year * 12 + before.month - 1 if before else None
    rows = [r for r in history if cutoff is None or r.period_index < cutoff]
    if not rows:
        return MonthlySeries(services=np.zeros(0), gmv=np.zeros(0))

    start = min(r.period_index for r in rows)
    end = cutoff - 1 if cutoff is not None else max(r.period_index for r in rows)
    services = np.zeros(end - start + 1)
    gmv = np.zeros(end - start + 1)
    for row in rows:
        services[row.period_index - start] += row.services
        gmv[row.period_index - start] += row.gmv

    return MonthlySeries(services=services, gmv=gmv, first_period=(start // 12, start % 12 + 1))


def build_recommendations(
    validation: ValidationResult,
    outliers_detected: int,
) -> list[str]:
    """Rule-based recommendations for a single model result.

    Args:
        validation: Walk-forward validation of the services series.
        outliers_detected: Winsorized points in the services series.

    Returns:
        Non-empty list of recommended actions.
    """
    actions: list[str] = []
    if validation.smape > HIGH_SMAPE:
        actions.append(
            f"Forecast error is high (sMAPE {validation.smape:.1f}%); incorporate "
            "external drivers such as campaigns or fleet changes"
        )
    if validation.mase > HIGH_MASE:
        actions.append(
            f"Model does not beat the naive forecast (MASE {validation.mase:.2f}); "
            "review recent structural changes"
        )
    if outliers_detected > MAX_OUTLIERS:
        actions.append(
            f"{outliers_detected} atypical months detected; investigate them before "
            "relying on the forecast"
        )
    if validation.confidence == "Low":
        actions.append("Low validation confidence; recalibrate the model more frequently")
    if not actions:
        actions.append("Model operating within acceptable parameters")
    return actions


# =============================================================================
# Per-series forecasts
# =============================================================================


def _holt_winters_series(
    treatment: OutlierTreatment,
    parameters: AutoParameters | ManualParameters,
    options: PipelineOptions,
    observer: ForecastObserver,
    series_name: str,
) -> SeriesForecast:
    y = treatment.winsorized_data
    m = options.season_length
    if isinstance(parameters, ManualParameters):
        selected = parameters.as_parameters()
        try:
            validation = validate_parameters(
                y, selected, m, options.max_test_periods, options.decay
            )
        except (ValueError, ArithmeticError):
            validation = ValidationResult.insufficient()
    else:
        selected, validation = optimize_parameters(
            y, m, options.max_test_periods, options.decay, observer=observer
        )

    model = HoltWintersForecaster.from_parameters(selected, m).fit(y)
    forecast = model.predict(options.path_length)
    observer(
        "forecasting.holt_winters_fitted",
        series=series_name,
        alpha=selected.alpha,
        beta=selected.beta,
        gamma=selected.gamma,
        weighted_mape=validation.weighted_mape,
        outliers=treatment.n_outliers,
    )
    return SeriesForecast(
        model="holt_winters",
        forecast=forecast.tolist(),
        intervals=model.predict_intervals(options.path_length),
        components=model.components,
        parameters={"alpha": selected.alpha, "beta": selected.beta, "gamma": selected.gamma},
        validation=validation,
        confidence_score=float(np.clip(validation.score, 0.0, 1.0)),
        outliers_detected=treatment.n_outliers,
    )


def _decomposition_series(
    treatment: OutlierTreatment,
    config: DecompositionConfig | None,
    options: PipelineOptions,
    observer: ForecastObserver,
    series_name: str,
) -> SeriesForecast:
    y = treatment.winsorized_data
    m = options.season_length
    selected = config or optimize_config(y, m, observer=observer)

    def forecast_one_step(train: np.ndarray[Any, np.dtype[np.floating[Any]]]) -> float:
        return float(DecompositionForecaster(selected).fit(train).predict(1)[0])

    validation = perform_temporal_cross_validation(
        y,
        season_length=m,
        forecast_one_step=forecast_one_step,
        min_train_size=MIN_DECOMPOSITION_POINTS,
        max_test_periods=options.max_test_periods,
        decay=options.decay,
    )
    model = DecompositionForecaster(selected).fit(y)
    observer(
        "forecasting.decomposition_fitted",
        series=series_name,
        config=selected.name,
        changepoints=len(model.changepoints),
        confidence=model.confidence,
        weighted_mape=validation.weighted_mape,
        outliers=treatment.n_outliers,
    )
    return SeriesForecast(
        model="decomposition",
        forecast=model.predict(options.path_length).tolist(),
        intervals=model.predict_intervals(options.path_length),
        components=model.components,
        changepoints=model.changepoints,
        parameters={
            "config": selected.name,
            "n_changepoints": float(selected.n_changepoints),
            "changepoint_threshold": selected.changepoint_threshold,
            "seasonality_prior_scale": selected.seasonality_prior_scale,
            "fourier_order": float(selected.fourier_order),
        },
        validation=validation,
        confidence_score=model.confidence,
        outliers_detected=treatment.n_outliers,
    )


# =============================================================================
# Model entry points
# =============================================================================


def _assemble(
    model: ModelName,
    services: SeriesForecast,
    gmv: SeriesForecast,
    services_treatment: OutlierTreatment,
    current: CurrentPeriodSnapshot | None,
    options: PipelineOptions,
) -> ModelForecastResult:
    """Apply the partial-period correction and build the model result."""
    monthly_services = services.forecast[0]
    monthly_gmv = gmv.forecast[0]
    applied = False
    if current is not None:
        elapsed = elapsed_fraction(current.as_of, cap=options.max_elapsed)
        services_blend = blend_with_partial_period(
            monthly_services,
            current.services_so_far,
            elapsed,
            services.confidence_score,
            max_model_weight=options.max_model_weight,
            min_elapsed=options.min_elapsed,
        )
        gmv_blend = blend_with_partial_period(
            monthly_gmv,
            current.gmv_so_far,
            elapsed,
            gmv.confidence_score,
            max_model_weight=options.max_model_weight,
            min_elapsed=options.min_elapsed,
        )
        monthly_services = services_blend.value
        monthly_gmv = gmv_blend.value
        applied = services_blend.applied or gmv_blend.applied

    return ModelForecastResult(
        model=model,
        services=services,
        gmv=gmv,
        monthly_services=monthly_services,
        monthly_gmv=monthly_gmv,
        annual_services=monthly_services + sum(services.forecast[1:MONTHS_PER_YEAR]),
        annual_gmv=monthly_gmv + sum(gmv.forecast[1:MONTHS_PER_YEAR]),
        confidence=services.validation.confidence,
        confidence_score=services.confidence_score,
        data_quality=assess_data_quality(services_treatment),
        partial_period_applied=applied,
        recommended_actions=build_recommendations(
            services.validation, services.outliers_detected
        ),
    )


def run_holt_winters(
    history: Sequence[HistoricalDataPoint],
    current: CurrentPeriodSnapshot | None = None,
    parameters: AutoParameters | ManualParameters | None = None,
    options: PipelineOptions | None = None,
    observer: ForecastObserver | None = None,
) -> ModelForecastResult:
    """Holt-Winters forecast of services and GMV.

    Args:
        history: Monthly rows (any order).
        current: Open-month snapshot; history rows in that month are ignored.
        parameters: Auto (grid search) or manual smoothing parameters.
        options: Pipeline tunables.
        observer: Telemetry callback.

    Returns:
        ModelForecastResult; the insufficient default when fewer than two
        seasons of history, or of months with services, are available.
    """
    options = options or PipelineOptions()
    observe = observer or default_observer()
    parameters = parameters or AutoParameters()
    series = build_monthly_series(history, current.as_of if current else None)

    min_history = 2 * options.season_length
    n_positive = int(np.count_nonzero(series.services > 0))
    if len(series) < min_history or n_positive < min_history:
        observe(
            "forecasting.insufficient_data",
            model="holt_winters",
            n_observations=len(series),
            n_positive=n_positive,
            min_required=min_history,
        )
        return ModelForecastResult.insufficient("holt_winters", options.path_length)

    observe(
        "forecasting.holt_winters_started",
        n_observations=len(series),
        mode=parameters.mode,
    )
    services_treatment = detect_and_treat_outliers(series.services, options.z_threshold)
    gmv_treatment = detect_and_treat_outliers(series.gmv, options.z_threshold)
    try:
        services = _holt_winters_series(
            services_treatment, parameters, options, observe, "services"
        )
        gmv = _holt_winters_series(gmv_treatment, parameters, options, observe, "gmv")
    except ValueError as e:
        observe("forecasting.holt_winters_failed", error=str(e))
        return ModelForecastResult.insufficient("holt_winters", options.path_length)

    return _assemble("holt_winters", services, gmv, services_treatment, current, options)


def run_decomposition(
    history: Sequence[HistoricalDataPoint],
    current: CurrentPeriodSnapshot | None = None,
    config: DecompositionConfig | None = None,
    options: PipelineOptions | None = None,
    observer: ForecastObserver | None = None,
) -> ModelForecastResult:
    """Decomposition forecast of services and GMV.

    Args:
        history: Monthly rows (any order).
        current: Open-month snapshot; history rows in that month are ignored.
        config: Fixed configuration; the trial configurations are searched
            when omitted.
        options: Pipeline tunables.
        observer: Telemetry callback.

    Returns:
        ModelForecastResult; the insufficient default when fewer than
        MIN_DECOMPOSITION_POINTS months with services are available.
    """
    options = options or PipelineOptions()
    observe = observer or default_observer()
    series = build_monthly_series(history, current.as_of if current else None)

    n_positive = int(np.count_nonzero(series.services > 0))
    if n_positive < MIN_DECOMPOSITION_POINTS:
        observe(
            "forecasting.insufficient_data",
            model="decomposition",
            n_observations=len(series),
            n_positive=n_positive,
            min_required=MIN_DECOMPOSITION_POINTS,
        )
        return ModelForecastResult.insufficient("decomposition", options.path_length)

    observe("forecasting.decomposition_started", n_observations=len(series))
    services_treatment = detect_and_treat_outliers(series.services, options.z_threshold)
    gmv_treatment = detect_and_treat_outliers(series.gmv, options.z_threshold)
    try:
        services = _decomposition_series(services_treatment, config, options, observe, "services")
        gmv = _decomposition_series(gmv_treatment, config, options, observe, "gmv")
    except (ValueError, np.linalg.LinAlgError) as e:
        observe("forecasting.decomposition_failed", error=str(e))
        return ModelForecastResult.insufficient("decomposition", options.path_length)

    return _assemble("decomposition", services, gmv, services_treatment, current, options)


def run_ensemble(
    history: Sequence[HistoricalDataPoint],
    current: CurrentPeriodSnapshot | None = None,
    context: BusinessContext | None = None,
    parameters: AutoParameters | ManualParameters | None = None,
    options: PipelineOptions | None = None,
    combiner: EnsembleCombiner | None = None,
    observer: ForecastObserver | None = None,
) -> EnsembleRun:
    """Run both models and combine them.

    Args:
        history: Monthly rows (any order).
        current: Open-month snapshot.
        context: Business context; derived from history when omitted.
        parameters: Holt-Winters parameter request.
        options: Pipeline tunables.
        combiner: Ensemble combiner (default caps when omitted).
        observer: Telemetry callback.

    Returns:
        EnsembleRun with the ensemble and both model results.
    """
    observe = observer or default_observer()
    combiner = combiner or EnsembleCombiner(observer=observe)
    decomposition = run_decomposition(history, current, options=options, observer=observe)
    holt_winters = run_holt_winters(
        history, current, parameters=parameters, options=options, observer=observe
    )

    if context is None:
        context = BusinessContext.from_history(
            list(history),
            current,
            bounds_lower_factor=combiner.bounds_lower_factor,
            bounds_upper_factor=combiner.bounds_upper_factor,
        )

    ensemble = combiner.combine(decomposition, holt_winters, context)
    return EnsembleRun(
        ensemble=ensemble,
        decomposition=decomposition,
        holt_winters=holt_winters,
        context=context,
        n_observations=len(build_monthly_series(history, current.as_of if current else None)),
    )
