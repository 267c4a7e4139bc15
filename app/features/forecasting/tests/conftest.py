"""Test fixtures for forecasting module."""

import math
from datetime import date

import numpy as np
import pytest
from httpx import ASGITransport, AsyncClient

from app.features.forecasting.schemas import (
    BusinessContext,
    CurrentPeriodSnapshot,
    HistoricalDataPoint,
    ModelForecastResult,
    SeriesForecast,
    ValidationResult,
)
from app.features.forecasting.telemetry import RecordingObserver
from app.main import app

AOV = 250.0


def seasonal_value(t: int) -> float:
    """Noise-free seasonal pattern: 100 ± 20 over a 12-month cycle."""
    return 100.0 + 20.0 * math.sin(2.0 * math.pi * t / 12.0)


def make_history(values: list[float], start_year: int = 2022, aov: float = AOV):
    """Monthly rows starting in January of start_year."""
    rows = []
    for i, value in enumerate(values):
        rows.append(
            HistoricalDataPoint(
                year=start_year + i // 12,
                month=i % 12 + 1,
                services=value,
                gmv=value * aov,
                services_completed=value,
            )
        )
    return rows


def make_validation(
    smape: float = 5.0,
    mase: float = 0.5,
    weighted_mape: float = 5.0,
    confidence: str = "High",
) -> ValidationResult:
    """Validation result with chosen metrics."""
    return ValidationResult(
        smape=smape,
        mape=weighted_mape,
        mase=mase,
        weighted_mape=weighted_mape,
        confidence=confidence,
    )


def make_model_result(
    model: str,
    services: float,
    gmv: float | None = None,
    validation: ValidationResult | None = None,
    path_length: int = 12,
) -> ModelForecastResult:
    """Model result with a flat forecast path."""
    validation = validation or make_validation()
    gmv = services * AOV if gmv is None else gmv

    def series(value: float) -> SeriesForecast:
        template = SeriesForecast.insufficient(model, path_length)
        return template.model_copy(
            update={
                "forecast": [value] * path_length,
                "validation": validation,
                "confidence_score": 0.9,
                "insufficient_data": False,
            }
        )

    return ModelForecastResult(
        model=model,
        services=series(services),
        gmv=series(gmv),
        monthly_services=services,
        monthly_gmv=gmv,
        annual_services=services * 12,
        annual_gmv=gmv * 12,
        confidence=validation.confidence,
        confidence_score=0.9,
        data_quality="high",
        recommended_actions=["Model operating within acceptable parameters"],
    )


@pytest.fixture
def seasonal_series() -> np.ndarray:
    """36 months of the noise-free seasonal pattern."""
    return np.array([seasonal_value(t) for t in range(36)], dtype=np.float64)


@pytest.fixture
def seasonal_history() -> list[HistoricalDataPoint]:
    """36 monthly rows (2022-01 .. 2024-12) of the seasonal pattern."""
    return make_history([seasonal_value(t) for t in range(36)])


@pytest.fixture
def linear_series() -> np.ndarray:
    """24 months of a pure linear trend (50, 52, 54, ...)."""
    return np.array([50.0 + 2.0 * t for t in range(24)], dtype=np.float64)


@pytest.fixture
def empty_current() -> CurrentPeriodSnapshot:
    """Open-month snapshot with nothing registered yet (January 2025)."""
    return CurrentPeriodSnapshot(as_of=date(2025, 1, 15))


@pytest.fixture
def observer() -> RecordingObserver:
    """Observer that keeps every checkpoint."""
    return RecordingObserver()


@pytest.fixture
def context() -> BusinessContext:
    """Business context for a forecast of May with four closed months."""
    return BusinessContext(
        ytd_services=400.0,
        ytd_gmv=400.0 * AOV,
        closed_months=4,
        average_order_value=AOV,
        current_month_services=50.0,
        current_month_gmv=50.0 * AOV,
        historical_average_services=100.0,
        historical_average_gmv=100.0 * AOV,
        seasonal_factor=1.0,
    )


@pytest.fixture
async def client():
    """Create async HTTP client for testing FastAPI endpoints."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
def history_factory():
    """Factory building monthly rows from a list of service counts."""
    return make_history


@pytest.fixture
def seasonal_values():
    """Factory returning the first n values of the seasonal pattern."""

    def _values(n: int) -> list[float]:
        return [seasonal_value(t) for t in range(n)]

    return _values


@pytest.fixture
def validation_factory():
    """Factory building ValidationResult objects."""
    return make_validation


@pytest.fixture
def model_result_factory():
    """Factory building flat-path ModelForecastResult objects."""
    return make_model_result
