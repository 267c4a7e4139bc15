"""Tests for the model entry points."""

from datetime import date

import numpy as np
import pytest

from app.features.forecasting.pipeline import (
    PipelineOptions,
    build_monthly_series,
    build_recommendations,
    run_decomposition,
    run_ensemble,
    run_holt_winters,
)
from app.features.forecasting.schemas import (
    CurrentPeriodSnapshot,
    DecompositionConfig,
    HistoricalDataPoint,
    ManualParameters,
)


def _row(year: int, month: int, services: float) -> HistoricalDataPoint:
    return HistoricalDataPoint(year=year, month=month, services=services, gmv=services * 250.0)


class TestBuildMonthlySeries:
    """Tests for build_monthly_series."""

    def test_sorts_fills_gaps_and_sums_duplicates(self) -> None:
        """Test unordered rows become a gap-free chronological series."""
        rows = [_row(2023, 3, 30.0), _row(2023, 1, 10.0), _row(2023, 3, 5.0)]

        series = build_monthly_series(rows)

        np.testing.assert_array_equal(series.services, [10.0, 0.0, 35.0])
        np.testing.assert_array_equal(series.gmv, [2500.0, 0.0, 8750.0])
        assert series.first_period == (2023, 1)

    def test_drops_open_month_and_later(self) -> None:
        """Test rows in or after the open month are excluded."""
        rows = [_row(2023, 1, 10.0), _row(2023, 3, 30.0), _row(2023, 4, 40.0)]

        series = build_monthly_series(rows, before=date(2023, 3, 10))

        np.testing.assert_array_equal(series.services, [10.0, 0.0])

    def test_zero_fills_up_to_open_month(self) -> None:
        """Test months without rows before the open month count as zero."""
        series = build_monthly_series([_row(2023, 1, 10.0)], before=date(2023, 4, 1))

        np.testing.assert_array_equal(series.services, [10.0, 0.0, 0.0])

    def test_empty_history(self) -> None:
        """Test no rows gives an empty series."""
        series = build_monthly_series([])

        assert len(series) == 0
        assert series.first_period is None


class TestBuildRecommendations:
    """Tests for build_recommendations."""

    def test_healthy_model(self, validation_factory) -> None:
        """Test a well-validated model gets the default action."""
        actions = build_recommendations(validation_factory(), outliers_detected=0)

        assert actions == ["Model operating within acceptable parameters"]

    def test_poor_model(self, validation_factory) -> None:
        """Test each triggered rule contributes one action."""
        poor = validation_factory(smape=30.0, mase=2.0, weighted_mape=30.0, confidence="Low")

        actions = build_recommendations(poor, outliers_detected=3)

        assert len(actions) == 4
        assert "sMAPE 30.0%" in actions[0]
        assert "MASE 2.00" in actions[1]
        assert actions[2].startswith("3 atypical months")


class TestPipelineOptions:
    """Tests for PipelineOptions."""

    @pytest.mark.parametrize(("horizon", "expected"), [(1, 12), (12, 12), (18, 18)])
    def test_path_covers_at_least_a_year(self, horizon: int, expected: int) -> None:
        """Test forecasts always span the annual projection."""
        assert PipelineOptions(horizon=horizon).path_length == expected


class TestRunHoltWinters:
    """Tests for run_holt_winters."""

    def test_seasonal_history(self, seasonal_history, observer) -> None:
        """Test a clean seasonal history forecasts the next cycle."""
        result = run_holt_winters(seasonal_history, observer=observer)

        assert result.insufficient_data is False
        assert result.model == "holt_winters"
        # Next month is t=36, where the pattern is back at 100
        assert result.monthly_services == pytest.approx(100.0, abs=0.5)
        assert result.monthly_gmv == pytest.approx(25000.0, rel=0.01)
        assert result.annual_services == pytest.approx(1200.0, abs=5.0)
        assert len(result.services.forecast) == 12
        assert len(result.services.intervals) == 12
        assert result.confidence == "High"
        assert result.data_quality == "high"
        assert result.partial_period_applied is False
        assert set(result.services.components) == {"level", "trend", "seasonal"}
        assert "forecasting.holt_winters_search_completed" in observer.names()
        assert observer.names().count("forecasting.holt_winters_fitted") == 2

    def test_manual_parameters_skip_search(self, seasonal_history, observer) -> None:
        """Test manual parameters are used as given."""
        params = ManualParameters(alpha=0.5, beta=0.1, gamma=0.1)

        result = run_holt_winters(seasonal_history, parameters=params, observer=observer)

        assert result.services.parameters == {"alpha": 0.5, "beta": 0.1, "gamma": 0.1}
        assert "forecasting.holt_winters_search_completed" not in observer.names()

    def test_partial_period_correction(self, seasonal_history, observer) -> None:
        """Test figures so far in the open month pull the forecast toward the run-rate."""
        current = CurrentPeriodSnapshot(as_of=date(2025, 1, 16), services_so_far=60.0)

        result = run_holt_winters(seasonal_history, current, observer=observer)

        # 0.7 * 100 + 0.3 * (60 / (16/31))
        assert result.partial_period_applied is True
        assert result.monthly_services == pytest.approx(0.7 * 100.0 + 0.3 * 60.0 * 31 / 16, abs=0.5)
        assert result.services.forecast[0] == pytest.approx(100.0, abs=0.5)

    def test_rows_in_open_month_are_ignored(self, seasonal_history, empty_current) -> None:
        """Test a row for the still-open month does not leak into the fit."""
        leaked = [*seasonal_history, _row(2025, 1, 9999.0)]

        clean = run_holt_winters(seasonal_history, empty_current)
        dirty = run_holt_winters(leaked, empty_current)

        assert dirty.monthly_services == clean.monthly_services

    def test_horizon_option(self, seasonal_history) -> None:
        """Test longer horizons extend the forecast path."""
        result = run_holt_winters(seasonal_history, options=PipelineOptions(horizon=18))

        assert len(result.services.forecast) == 18

    def test_short_history_is_insufficient(self, history_factory, observer) -> None:
        """Test fewer than two seasons gives the all-zero default."""
        result = run_holt_winters(history_factory([100.0] * 23), observer=observer)

        assert result.insufficient_data is True
        assert result.monthly_services == 0.0
        assert result.services.forecast == [0.0] * 12
        assert result.confidence == "Low"
        assert observer.names() == ["forecasting.insufficient_data"]

    def test_empty_history_is_insufficient(self) -> None:
        """Test no history at all never raises."""
        assert run_holt_winters([]).insufficient_data is True

    def test_history_without_services_is_insufficient(self, history_factory, observer) -> None:
        """Test months without services do not count towards the two seasons."""
        values = [0.0] * 16 + [100.0] * 20

        result = run_holt_winters(history_factory(values), observer=observer)

        assert result.insufficient_data is True
        assert result.confidence == "Low"
        assert observer.names() == ["forecasting.insufficient_data"]
        assert observer.events[0][1]["n_observations"] == 36
        assert observer.events[0][1]["n_positive"] == 20


class TestRunDecomposition:
    """Tests for run_decomposition."""

    def test_seasonal_history(self, seasonal_history, observer) -> None:
        """Test the decomposition model tracks the seasonal cycle."""
        result = run_decomposition(seasonal_history, observer=observer)

        assert result.insufficient_data is False
        assert result.model == "decomposition"
        assert result.monthly_services == pytest.approx(100.0, abs=1.0)
        assert result.annual_services == pytest.approx(1200.0, abs=10.0)
        assert result.confidence_score > 0.99
        assert set(result.services.components) == {"trend", "seasonal", "residual"}
        assert "forecasting.decomposition_search_completed" in observer.names()

    def test_fixed_config(self, seasonal_history, observer) -> None:
        """Test a given configuration skips the trial search."""
        config = DecompositionConfig(name="custom", fourier_order=2)

        result = run_decomposition(seasonal_history, config=config, observer=observer)

        assert result.services.parameters["config"] == "custom"
        assert "forecasting.decomposition_search_completed" not in observer.names()

    def test_six_months_is_enough(self, history_factory) -> None:
        """Test the decomposition model works from six months of history."""
        history = history_factory([50.0, 52.0, 54.0, 56.0, 58.0, 60.0])

        result = run_decomposition(history)

        assert result.insufficient_data is False
        assert result.monthly_services == pytest.approx(62.0, abs=1e-6)

    def test_short_history_is_insufficient(self, history_factory) -> None:
        """Test fewer than six months gives the all-zero default."""
        result = run_decomposition(history_factory([10.0] * 5))

        assert result.insufficient_data is True
        assert result.recommended_actions == ["Insufficient data to produce a reliable forecast"]

    def test_all_zero_history_is_insufficient(self, history_factory) -> None:
        """Test a zero-only history is not fitted as a perfect flat line."""
        result = run_decomposition(history_factory([0.0] * 36))

        assert result.insufficient_data is True
        assert result.confidence_score == 0.0


class TestRunEnsemble:
    """Tests for run_ensemble."""

    def test_seasonal_history(self, seasonal_history, empty_current, observer) -> None:
        """Test the ensemble of two agreeing models on a clean history."""
        run = run_ensemble(seasonal_history, empty_current, observer=observer)

        assert run.n_observations == 36
        assert run.ensemble.insufficient_data is False
        assert run.ensemble.monthly_services_forecast == pytest.approx(100.0, abs=1.0)
        # January: no closed months, twelve forecast months
        assert run.context.closed_months == 0
        assert run.ensemble.annual_services_forecast == pytest.approx(1200.0, abs=12.0)
        assert run.ensemble.replaced_predictions == []
        assert run.ensemble.model_agreement > 0.95
        assert run.ensemble.confidence == "High"
        assert run.ensemble.coherence.is_coherent is True
        weights = run.ensemble.model_weights
        assert weights.decomposition + weights.holt_winters + weights.linear == pytest.approx(1.0)
        assert observer.names()[-1] == "ensemble.combined"

    def test_gap_months_count_as_zero(self, seasonal_history, empty_current) -> None:
        """Test a missing month still yields a series covering the whole range."""
        with_gap = [row for row in seasonal_history if (row.year, row.month) != (2023, 6)]

        run = run_ensemble(with_gap, empty_current)

        assert run.n_observations == 36
        assert run.ensemble.insufficient_data is False

    def test_short_history_is_insufficient(self, history_factory, empty_current) -> None:
        """Test one year of history is too short for Holt-Winters, so the ensemble degrades."""
        history = history_factory([100.0] * 12, start_year=2024)

        run = run_ensemble(history, empty_current)

        assert run.holt_winters.insufficient_data is True
        assert run.decomposition.insufficient_data is False
        assert run.ensemble.insufficient_data is True
        assert run.ensemble.monthly_services_forecast == 0.0

    def test_all_zero_history_is_insufficient(self, history_factory, empty_current) -> None:
        """Test a history with no services never reports confidence."""
        run = run_ensemble(history_factory([0.0] * 36), empty_current)

        assert run.holt_winters.insufficient_data is True
        assert run.decomposition.insufficient_data is True
        assert run.ensemble.insufficient_data is True
        assert run.ensemble.confidence == "Low"
        assert run.ensemble.recommended_actions == [
            "Insufficient data to produce a reliable forecast"
        ]
