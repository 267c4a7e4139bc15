"""Forecasting module for monthly services and GMV.

This module provides the forecasting core: outlier treatment, a Holt-Winters
model, a Prophet-style decomposition model, a shared walk-forward validation
engine and a confidence-weighted ensemble.

Exports:
    Models:
        - BaseForecaster: Abstract base class for all forecasters
        - HoltWintersForecaster: Multiplicative triple exponential smoothing
        - DecompositionForecaster: Trend + Fourier seasonality + residual

    Pipeline:
        - run_holt_winters, run_decomposition, run_ensemble
        - EnsembleCombiner: Confidence-weighted combination

    Schemas:
        - HistoricalDataPoint, CurrentPeriodSnapshot, BusinessContext
        - ModelForecastResult, EnsembleResult

    Service:
        - ForecastingService: Orchestration layer over the data source
"""

from app.features.forecasting.decomposition import DecompositionForecaster
from app.features.forecasting.ensemble import EnsembleCombiner
from app.features.forecasting.holt_winters import HoltWintersForecaster
from app.features.forecasting.models import BaseForecaster, FitResult
from app.features.forecasting.pipeline import run_decomposition, run_ensemble, run_holt_winters
from app.features.forecasting.schemas import (
    BusinessContext,
    CurrentPeriodSnapshot,
    EnsembleResult,
    HistoricalDataPoint,
    ModelForecastResult,
)
from app.features.forecasting.service import ForecastingService

__all__ = [
    # Models
    "BaseForecaster",
    # Schemas
    "BusinessContext",
    "CurrentPeriodSnapshot",
    "DecompositionForecaster",
    # Pipeline
    "EnsembleCombiner",
    "EnsembleResult",
    "FitResult",
    # Service
    "ForecastingService",
    "HistoricalDataPoint",
    "HoltWintersForecaster",
    "ModelForecastResult",
    "run_decomposition",
    "run_ensemble",
    "run_holt_winters",
]
