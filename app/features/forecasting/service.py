"""Forecasting service: data source + pipeline orchestration.

Orchestrates:
- Loading history and the open month's figures from the operations database
- Running the Holt-Winters, decomposition and ensemble pipelines
- Timing and logging each computation

CRITICAL: All tunables come from Settings; the pipeline itself is pure.
"""

from __future__ import annotations

import time
from datetime import date as date_type

import structlog

from app.core.config import get_settings
from app.features.forecasting.data_source import HistoricalDataSource
from app.features.forecasting.ensemble import EnsembleCombiner
from app.features.forecasting.pipeline import (
    PipelineOptions,
    build_monthly_series,
    run_decomposition,
    run_ensemble,
    run_holt_winters,
)
from app.features.forecasting.schemas import (
    AutoParameters,
    CurrentPeriodSnapshot,
    EnsembleComputeRequest,
    EnsembleForecastResponse,
    HistoricalDataPoint,
    ManualParameters,
    ModelForecastResponse,
)
from app.features.forecasting.telemetry import ForecastObserver, StructlogObserver

logger = structlog.get_logger()


class ForecastingService:
    """Service for producing model and ensemble forecasts.

    Provides orchestration layer for:
    - Mapping settings to pipeline options and ensemble caps
    - Loading inputs through HistoricalDataSource
    - Running the pure forecasting pipeline
    """

    def __init__(self, observer: ForecastObserver | None = None) -> None:
        """Initialize the forecasting service.

        Args:
            observer: Telemetry callback (structlog by default).
        """
        self.settings = get_settings()
        self.observer = observer or StructlogObserver()

    def pipeline_options(self) -> PipelineOptions:
        """Pipeline tunables from settings."""
        return PipelineOptions(
            season_length=self.settings.forecast_season_length,
            horizon=self.settings.forecast_horizon,
            z_threshold=self.settings.forecast_outlier_z_threshold,
            max_test_periods=self.settings.forecast_validation_max_periods,
            decay=self.settings.forecast_validation_decay,
            max_model_weight=self.settings.forecast_partial_max_model_weight,
            min_elapsed=self.settings.forecast_partial_min_elapsed,
            max_elapsed=self.settings.forecast_partial_max_elapsed,
        )

    def combiner(self) -> EnsembleCombiner:
        """Ensemble combiner with the configured caps and bound factors."""
        return EnsembleCombiner(
            max_decomposition_weight=self.settings.ensemble_max_decomposition_weight,
            max_holt_winters_weight=self.settings.ensemble_max_holt_winters_weight,
            min_linear_weight=self.settings.ensemble_min_linear_weight,
            bounds_lower_factor=self.settings.ensemble_bounds_lower_factor,
            bounds_upper_factor=self.settings.ensemble_bounds_upper_factor,
            observer=self.observer,
        )

    @staticmethod
    async def _load(
        source: HistoricalDataSource,
        as_of: date_type,
    ) -> tuple[list[HistoricalDataPoint], CurrentPeriodSnapshot]:
        """Load history and the open month; an empty open month reads as zeros."""
        history = await source.fetch_history()
        current = await source.fetch_current_period(as_of)
        return history, current or CurrentPeriodSnapshot(as_of=as_of)

    async def holt_winters_forecast(
        self,
        source: HistoricalDataSource,
        as_of: date_type,
        parameters: AutoParameters | ManualParameters | None = None,
    ) -> ModelForecastResponse:
        """Holt-Winters forecast from live data.

        Args:
            source: Operations database reader.
            as_of: Date inside the open month.
            parameters: Auto or manual smoothing parameters.

        Returns:
            ModelForecastResponse with the Holt-Winters result.

        Raises:
            SQLAlchemyError: If loading data fails.
        """
        start_time = time.perf_counter()
        parameters = parameters or AutoParameters()
        history, current = await self._load(source, as_of)

        logger.info(
            "forecasting.holt_winters_forecast_started",
            n_rows=len(history),
            mode=parameters.mode,
            as_of=str(as_of),
        )
        options = self.pipeline_options()
        result = run_holt_winters(
            history, current, parameters=parameters, options=options, observer=self.observer
        )
        duration_ms = (time.perf_counter() - start_time) * 1000

        logger.info(
            "forecasting.holt_winters_forecast_completed",
            confidence=result.confidence,
            insufficient_data=result.insufficient_data,
            duration_ms=duration_ms,
        )
        return ModelForecastResponse(
            forecast=result,
            as_of=as_of,
            n_observations=len(build_monthly_series(history, as_of)),
            duration_ms=duration_ms,
        )

    async def decomposition_forecast(
        self,
        source: HistoricalDataSource,
        as_of: date_type,
    ) -> ModelForecastResponse:
        """Decomposition forecast from live data.

        Args:
            source: Operations database reader.
            as_of: Date inside the open month.

        Returns:
            ModelForecastResponse with the decomposition result.

        Raises:
            SQLAlchemyError: If loading data fails.
        """
        start_time = time.perf_counter()
        history, current = await self._load(source, as_of)

        logger.info(
            "forecasting.decomposition_forecast_started",
            n_rows=len(history),
            as_of=str(as_of),
        )
        result = run_decomposition(
            history, current, options=self.pipeline_options(), observer=self.observer
        )
        duration_ms = (time.perf_counter() - start_time) * 1000

        logger.info(
            "forecasting.decomposition_forecast_completed",
            confidence=result.confidence,
            insufficient_data=result.insufficient_data,
            duration_ms=duration_ms,
        )
        return ModelForecastResponse(
            forecast=result,
            as_of=as_of,
            n_observations=len(build_monthly_series(history, as_of)),
            duration_ms=duration_ms,
        )

    async def ensemble_forecast(
        self,
        source: HistoricalDataSource,
        as_of: date_type,
        parameters: AutoParameters | ManualParameters | None = None,
    ) -> EnsembleForecastResponse:
        """Ensemble forecast from live data.

        Args:
            source: Operations database reader.
            as_of: Date inside the open month.
            parameters: Holt-Winters parameter request.

        Returns:
            EnsembleForecastResponse with the ensemble and both model results.

        Raises:
            SQLAlchemyError: If loading data fails.
        """
        history, current = await self._load(source, as_of)
        return self.compute(
            EnsembleComputeRequest(
                history=history,
                current_period=current,
                parameters=parameters or AutoParameters(),
            )
        )

    def compute(self, request: EnsembleComputeRequest) -> EnsembleForecastResponse:
        """Ensemble forecast from caller-supplied inputs (no database).

        Args:
            request: History, open-month snapshot, optional context and
                Holt-Winters parameters.

        Returns:
            EnsembleForecastResponse with the ensemble and both model results.
        """
        start_time = time.perf_counter()
        logger.info(
            "forecasting.ensemble_started",
            n_rows=len(request.history),
            context_supplied=request.context is not None,
            mode=request.parameters.mode,
        )

        run = run_ensemble(
            request.history,
            request.current_period,
            context=request.context,
            parameters=request.parameters,
            options=self.pipeline_options(),
            combiner=self.combiner(),
            observer=self.observer,
        )
        duration_ms = (time.perf_counter() - start_time) * 1000

        logger.info(
            "forecasting.ensemble_completed",
            confidence=run.ensemble.confidence,
            confidence_score=run.ensemble.confidence_score,
            replaced=len(run.ensemble.replaced_predictions),
            n_observations=run.n_observations,
            duration_ms=duration_ms,
        )
        return EnsembleForecastResponse(
            ensemble=run.ensemble,
            decomposition=run.decomposition,
            holt_winters=run.holt_winters,
            context=run.context,
            n_observations=run.n_observations,
            duration_ms=duration_ms,
        )
