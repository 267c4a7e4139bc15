"""Tests for forecasting schemas."""

from datetime import date

import pytest
from pydantic import ValidationError

from app.features.forecasting.schemas import (
    AutoParameters,
    BusinessContext,
    CurrentPeriodSnapshot,
    EnsembleComputeRequest,
    EnsembleResult,
    HistoricalDataPoint,
    ManualParameters,
    ModelForecastResult,
    SanityBounds,
    ValidationResult,
)


class TestHistoricalDataPoint:
    """Tests for HistoricalDataPoint."""

    def test_period_index_orders_months(self) -> None:
        """Test period_index increases by one per month across years."""
        dec = HistoricalDataPoint(year=2023, month=12)
        jan = HistoricalDataPoint(year=2024, month=1)

        assert jan.period_index - dec.period_index == 1

    @pytest.mark.parametrize("month", [0, 13])
    def test_invalid_month(self, month: int) -> None:
        """Test month must be 1-12."""
        with pytest.raises(ValidationError):
            HistoricalDataPoint(year=2024, month=month)

    def test_negative_figures_read_as_zero(self) -> None:
        """Test negative figures are accepted as months without information."""
        row = HistoricalDataPoint(
            year=2024, month=1, services=-1.0, gmv=-5.0, services_completed=-2.0
        )

        assert (row.services, row.gmv, row.services_completed) == (0.0, 0.0, 0.0)

    def test_non_finite_rejected(self) -> None:
        """Test NaN figures are still rejected."""
        with pytest.raises(ValidationError):
            HistoricalDataPoint(year=2024, month=1, services=float("nan"))

    def test_negative_running_totals_read_as_zero(self) -> None:
        """Test the open-month snapshot reads negative totals as 0."""
        snapshot = CurrentPeriodSnapshot(as_of=date(2025, 1, 10), services_so_far=-3.0)

        assert snapshot.services_so_far == 0.0

    def test_frozen(self) -> None:
        """Test rows are immutable."""
        row = HistoricalDataPoint(year=2024, month=1, services=10.0)

        with pytest.raises(ValidationError):
            row.services = 20.0


class TestParameterRequest:
    """Tests for the auto/manual parameter union."""

    def test_default_is_auto(self) -> None:
        """Test omitted parameters request a grid search."""
        request = EnsembleComputeRequest()

        assert isinstance(request.parameters, AutoParameters)

    def test_manual_parameters_parsed(self) -> None:
        """Test mode=manual selects ManualParameters."""
        request = EnsembleComputeRequest.model_validate(
            {"parameters": {"mode": "manual", "alpha": 0.5, "beta": 0.2, "gamma": 0.1}}
        )

        assert isinstance(request.parameters, ManualParameters)
        assert request.parameters.as_parameters().alpha == 0.5

    @pytest.mark.parametrize(
        "parameters",
        [
            {"mode": "manual", "alpha": 0.5},
            {"mode": "manual", "alpha": 0.0, "beta": 0.2, "gamma": 0.2},
            {"mode": "manual", "alpha": 0.5, "beta": 1.2, "gamma": 0.2},
            {"mode": "bogus"},
            {"mode": "auto", "alpha": 0.5},
        ],
    )
    def test_invalid_parameters_rejected(self, parameters: dict) -> None:
        """Test incomplete, out-of-range or unknown parameter requests fail."""
        with pytest.raises(ValidationError):
            EnsembleComputeRequest.model_validate({"parameters": parameters})

    def test_history_length_limit(self) -> None:
        """Test the request caps history at 600 rows."""
        rows = [{"year": 2000 + i // 12, "month": i % 12 + 1} for i in range(601)]

        with pytest.raises(ValidationError):
            EnsembleComputeRequest.model_validate({"history": rows})


class TestValidationResult:
    """Tests for ValidationResult."""

    def test_scores(self) -> None:
        """Test score and accuracy_score formulas."""
        result = ValidationResult(
            smape=10.0, mape=12.0, mase=0.5, weighted_mape=20.0, confidence="Medium"
        )

        assert result.score == pytest.approx(1 / 1.6)
        assert result.accuracy_score == pytest.approx(1 / 1.7)

    def test_scores_serialized(self) -> None:
        """Test computed scores are part of the response payload."""
        payload = ValidationResult.insufficient().model_dump()

        assert payload["score"] == pytest.approx(1 / 12)
        assert "accuracy_score" in payload

    def test_insufficient_defaults(self) -> None:
        """Test the documented insufficient-data metrics."""
        result = ValidationResult.insufficient()

        assert (result.smape, result.mape, result.mase, result.weighted_mape) == (
            100.0,
            100.0,
            10.0,
            100.0,
        )
        assert result.confidence == "Low"


class TestInsufficientDefaults:
    """Tests for the insufficient-data result defaults."""

    def test_model_result(self) -> None:
        """Test the model default is all zero with Low confidence."""
        result = ModelForecastResult.insufficient("holt_winters", horizon=12)

        assert result.insufficient_data is True
        assert result.services.forecast == [0.0] * 12
        assert len(result.gmv.intervals) == 12
        assert result.annual_gmv == 0.0
        assert result.confidence == "Low"
        assert result.confidence_score == 0.0
        assert result.data_quality == "low"

    def test_ensemble_result(self) -> None:
        """Test the ensemble default is all zero with Low confidence."""
        result = EnsembleResult.insufficient()

        assert result.monthly_services_forecast == 0.0
        assert result.annual_gmv_forecast == 0.0
        assert result.confidence == "Low"
        assert set(result.individual_models) == {"decomposition", "holt_winters", "linear"}


class TestSanityBounds:
    """Tests for SanityBounds."""

    def test_upper_must_exceed_lower(self) -> None:
        """Test inverted bounds are rejected."""
        with pytest.raises(ValidationError, match="max_services"):
            SanityBounds(min_services=100.0, max_services=50.0, min_gmv=1.0, max_gmv=2.0)


class TestBusinessContextFromHistory:
    """Tests for BusinessContext.from_history."""

    def test_derives_year_to_date_and_open_month(self, history_factory) -> None:
        """Test YTD, averages, projection and bounds from 26 months of history."""
        history = history_factory([100.0] * 24 + [80.0, 120.0], start_year=2023)
        current = CurrentPeriodSnapshot(as_of=date(2025, 3, 10), services_so_far=40.0)

        context = BusinessContext.from_history(history, current)

        assert context.closed_months == 2
        assert context.remaining_months == 10
        assert context.ytd_services == 200.0
        assert context.ytd_gmv == 200.0 * 250.0
        assert context.average_order_value == pytest.approx(250.0)
        assert context.historical_average_services == pytest.approx(100.0)
        assert context.current_month_services == 40.0
        # No GMV reported yet: services so far at the average order value
        assert context.current_month_gmv == pytest.approx(10000.0)
        assert context.current_month_projection == pytest.approx(40.0 * 31 / 10)
        assert context.seasonal_factor == pytest.approx(1.0)
        assert context.bounds == SanityBounds(
            min_services=40.0, max_services=240.0, min_gmv=10000.0, max_gmv=60000.0
        )

    def test_ignores_rows_in_open_month(self, history_factory) -> None:
        """Test a row for the open month does not count as history."""
        history = history_factory([100.0] * 26, start_year=2023)
        history.append(HistoricalDataPoint(year=2025, month=3, services=500.0, gmv=125000.0))
        current = CurrentPeriodSnapshot(as_of=date(2025, 3, 10))

        context = BusinessContext.from_history(history, current)

        assert context.historical_average_services == pytest.approx(100.0)
        assert context.bounds is not None
        assert context.bounds.max_services == pytest.approx(200.0)

    def test_seasonal_factor_of_forecast_month(self, history_factory) -> None:
        """Test the seasonal factor compares the forecast month to the overall mean."""
        # Januaries at 200, every other month at 100
        values = [200.0 if i % 12 == 0 else 100.0 for i in range(24)]
        history = history_factory(values, start_year=2023)

        context = BusinessContext.from_history(history, as_of=date(2025, 1, 20))

        # Overall mean 2600 / 24
        assert context.seasonal_factor == pytest.approx(200.0 / (2600.0 / 24))

    def test_reference_date_defaults_to_month_after_history(self, history_factory) -> None:
        """Test without a snapshot the month after the last row is forecast."""
        history = history_factory([100.0] * 18, start_year=2024)

        context = BusinessContext.from_history(history)

        # Rows end in June 2025, so July is the open month
        assert context.closed_months == 6
        assert context.ytd_services == 600.0

    def test_empty_history(self) -> None:
        """Test no history gives a zero context without bounds."""
        context = BusinessContext.from_history([], as_of=date(2025, 5, 1))

        assert context.ytd_services == 0.0
        assert context.historical_average_services == 0.0
        assert context.closed_months == 4
        assert context.bounds is None
        assert context.seasonal_factor == 1.0
