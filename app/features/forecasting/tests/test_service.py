"""Tests for the forecasting service."""

from datetime import date

import pytest

from app.features.forecasting.schemas import (
    CurrentPeriodSnapshot,
    EnsembleComputeRequest,
    ManualParameters,
)
from app.features.forecasting.service import ForecastingService


class _FakeSource:
    def __init__(self, history, current=None):
        self.history = history
        self.current = current
        self.calls: list[str] = []

    async def fetch_history(self):
        self.calls.append("history")
        return self.history

    async def fetch_current_period(self, as_of):
        self.calls.append(f"current:{as_of.isoformat()}")
        return self.current


@pytest.fixture
def service(observer):
    """Service recording telemetry in memory."""
    return ForecastingService(observer=observer)


class TestConfiguration:
    """Tests for settings-derived options."""

    def test_pipeline_options_from_settings(self, service) -> None:
        """Test defaults flow from settings into the pipeline."""
        options = service.pipeline_options()

        assert options.season_length == 12
        assert options.horizon == 12
        assert options.z_threshold == 2.0
        assert options.max_test_periods == 6
        assert options.decay == 0.9
        assert options.max_model_weight == 0.7

    def test_combiner_from_settings(self, service) -> None:
        """Test ensemble caps come from settings."""
        combiner = service.combiner()

        assert combiner.max_decomposition_weight == 0.7
        assert combiner.max_holt_winters_weight == 0.6
        assert combiner.min_linear_weight == 0.1


class TestLiveForecasts:
    """Tests for the data-source backed forecasts."""

    async def test_holt_winters_forecast(self, service, seasonal_history) -> None:
        """Test history and open month are loaded and forecast."""
        source = _FakeSource(seasonal_history)

        response = await service.holt_winters_forecast(source, date(2025, 1, 15))

        assert source.calls == ["history", "current:2025-01-15"]
        assert response.forecast.model == "holt_winters"
        assert response.n_observations == 36
        assert response.as_of == date(2025, 1, 15)
        assert response.duration_ms >= 0

    async def test_manual_parameters(self, service, seasonal_history, observer) -> None:
        """Test manual parameters reach the model."""
        params = ManualParameters(alpha=0.4, beta=0.2, gamma=0.3)

        response = await service.holt_winters_forecast(
            _FakeSource(seasonal_history), date(2025, 1, 15), params
        )

        assert response.forecast.services.parameters["alpha"] == 0.4
        assert "forecasting.holt_winters_search_completed" not in observer.names()

    async def test_decomposition_forecast(self, service, seasonal_history) -> None:
        """Test the decomposition forecast from the data source."""
        response = await service.decomposition_forecast(
            _FakeSource(seasonal_history), date(2025, 1, 15)
        )

        assert response.forecast.model == "decomposition"
        assert response.forecast.insufficient_data is False

    async def test_ensemble_forecast_uses_open_month(self, service, seasonal_history) -> None:
        """Test the open month's figures drive the partial-period correction."""
        current = CurrentPeriodSnapshot(as_of=date(2025, 1, 20), services_so_far=70.0)

        response = await service.ensemble_forecast(
            _FakeSource(seasonal_history, current), date(2025, 1, 20)
        )

        assert response.ensemble.monthly_services_actual == 70.0
        assert response.holt_winters.partial_period_applied is True
        assert response.decomposition.partial_period_applied is True

    async def test_missing_open_month_reads_as_zero(self, service, seasonal_history) -> None:
        """Test no current-period row means nothing registered yet."""
        response = await service.ensemble_forecast(
            _FakeSource(seasonal_history, None), date(2025, 1, 20)
        )

        assert response.ensemble.monthly_services_actual == 0.0
        assert response.holt_winters.partial_period_applied is False


class TestCompute:
    """Tests for ForecastingService.compute."""

    def test_compute_from_request(self, service, seasonal_history, observer) -> None:
        """Test the stateless entry point returns both models and the ensemble."""
        request = EnsembleComputeRequest(
            history=seasonal_history,
            current_period=CurrentPeriodSnapshot(as_of=date(2025, 1, 15)),
        )

        response = service.compute(request)

        assert response.n_observations == 36
        assert response.ensemble.insufficient_data is False
        assert response.context.closed_months == 0
        assert "ensemble.combined" in observer.names()
