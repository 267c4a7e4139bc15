"""Pydantic schemas for the forecasting core and its API contracts.

Input records and model configurations are immutable (frozen=True); result
objects are plain models rebuilt from scratch on every computation. Every
result type has a documented ``insufficient`` default so callers always get
a structurally valid object.
"""

from __future__ import annotations

from datetime import date as date_type
from typing import Annotated, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    computed_field,
    field_validator,
)

from app.features.forecasting.correction import elapsed_fraction

ConfidenceLabel = Literal["High", "Medium", "Low"]
DataQuality = Literal["high", "medium", "low"]
ModelName = Literal["holt_winters", "decomposition"]

INSUFFICIENT_DATA_ACTION = "Insufficient data to produce a reliable forecast"

# =============================================================================
# Source Data
# =============================================================================


class HistoricalDataPoint(BaseModel):
    """Monthly aggregate row from ``get_historical_monthly_data``.

    Attributes:
        year: Calendar year.
        month: Calendar month (1-12).
        services: Completed services in the month.
        gmv: Gross merchandise value in the month (currency units).
        services_completed: Raw completed-service count as reported upstream.

    Negative figures carry no information and read as 0.
    """

    model_config = ConfigDict(frozen=True)

    year: int = Field(..., ge=2000, le=2100)
    month: int = Field(..., ge=1, le=12)
    services: float = Field(default=0.0, allow_inf_nan=False)
    gmv: float = Field(default=0.0, allow_inf_nan=False)
    services_completed: float = Field(default=0.0, allow_inf_nan=False)

    @field_validator("services", "gmv", "services_completed")
    @classmethod
    def clamp_negative(cls, v: float) -> float:
        """Read negative figures as 0 (no information)."""
        return max(v, 0.0)

    @property
    def period_index(self) -> int:
        """Months since year 0, used to order rows and detect gaps."""
        return self.year * 12 + (self.month - 1)


class CurrentPeriodSnapshot(BaseModel):
    """Figures accumulated so far in the still-open month.

    Attributes:
        as_of: Date inside the open month the figures were taken on.
        services_so_far: Unique services registered so far.
        gmv_so_far: GMV registered so far (0 when not reported).
    """

    model_config = ConfigDict(frozen=True)

    as_of: date_type
    services_so_far: float = Field(default=0.0, allow_inf_nan=False)
    gmv_so_far: float = Field(default=0.0, allow_inf_nan=False)

    @field_validator("services_so_far", "gmv_so_far")
    @classmethod
    def clamp_negative(cls, v: float) -> float:
        """Read negative running totals as 0."""
        return max(v, 0.0)


# =============================================================================
# Model Configuration
# =============================================================================


class HoltWintersParameters(BaseModel):
    """Smoothing parameters for level, trend and season."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    alpha: float = Field(..., gt=0, le=1, description="Level smoothing")
    beta: float = Field(..., gt=0, le=1, description="Trend smoothing")
    gamma: float = Field(..., gt=0, le=1, description="Seasonal smoothing")


class AutoParameters(BaseModel):
    """Select Holt-Winters parameters by grid search."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    mode: Literal["auto"] = "auto"


class ManualParameters(HoltWintersParameters):
    """Use caller-supplied Holt-Winters parameters and skip the search."""

    mode: Literal["manual"] = "manual"

    def as_parameters(self) -> HoltWintersParameters:
        """Strip the discriminator."""
        return HoltWintersParameters(alpha=self.alpha, beta=self.beta, gamma=self.gamma)


ParameterRequest = Annotated[AutoParameters | ManualParameters, Field(discriminator="mode")]


class DecompositionConfig(BaseModel):
    """Configuration for the Prophet-style decomposition model.

    Attributes:
        name: Label of the trial configuration.
        n_changepoints: Maximum number of candidate changepoints.
        changepoint_threshold: Relative slope change that marks a changepoint.
        seasonality_prior_scale: Inverse ridge penalty on Fourier terms.
        fourier_order: Number of yearly harmonics.
        season_length: Periods per season (12 for monthly data).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = "balanced"
    n_changepoints: int = Field(default=10, ge=0, le=50)
    changepoint_threshold: float = Field(default=0.25, gt=0)
    seasonality_prior_scale: float = Field(default=10.0, gt=0)
    fourier_order: int = Field(default=3, ge=0, le=6)
    season_length: int = Field(default=12, ge=2)


# =============================================================================
# Validation
# =============================================================================


class BacktestPeriod(BaseModel):
    """One walk-forward test point.

    Attributes:
        period: Index of the test point in the series.
        actual: Observed value.
        forecast: One-step-ahead forecast from data strictly before it.
        error: Absolute percentage error (%), 0 when the actual is 0.
    """

    period: int
    actual: float
    forecast: float
    error: float


class ValidationResult(BaseModel):
    """Walk-forward validation metrics for one fitted configuration."""

    smape: float
    mape: float
    mase: float
    weighted_mape: float
    confidence: ConfidenceLabel
    periods: list[BacktestPeriod] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def score(self) -> float:
        """Performance score used for ensemble weighting."""
        return 1.0 / (1.0 + self.smape / 100.0 + self.mase)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def accuracy_score(self) -> float:
        """Recency-aware accuracy used for confidence blending."""
        return 1.0 / (1.0 + self.weighted_mape / 100.0 + self.mase)

    @classmethod
    def insufficient(cls) -> ValidationResult:
        """Validation result when no test point could be evaluated."""
        return cls(
            smape=100.0,
            mape=100.0,
            mase=10.0,
            weighted_mape=100.0,
            confidence="Low",
            periods=[],
        )


# =============================================================================
# Forecast Results
# =============================================================================


class PredictionInterval(BaseModel):
    """80% and 95% prediction interval for one horizon step."""

    lower_80: float
    upper_80: float
    lower_95: float
    upper_95: float


class SeriesForecast(BaseModel):
    """Forecast of a single monthly series by one model.

    Attributes:
        model: Model that produced the forecast.
        forecast: Point forecasts for horizon steps 1..H.
        intervals: Prediction intervals aligned with ``forecast``.
        components: Fitted components (level/trend/seasonal or
            trend/seasonal/residual).
        changepoints: Changepoint indices (decomposition model only).
        parameters: Parameters the model was fitted with.
        validation: Walk-forward validation of those parameters.
        confidence_score: Model confidence in [0, 1].
        outliers_detected: Points winsorized before fitting.
        insufficient_data: True when this is the documented default.
    """

    model: ModelName
    forecast: list[float]
    intervals: list[PredictionInterval]
    components: dict[str, list[float]] = Field(default_factory=dict)
    changepoints: list[int] = Field(default_factory=list)
    parameters: dict[str, float | str] = Field(default_factory=dict)
    validation: ValidationResult
    confidence_score: float = Field(..., ge=0, le=1)
    outliers_detected: int = 0
    insufficient_data: bool = False

    @classmethod
    def insufficient(cls, model: ModelName, horizon: int = 1) -> SeriesForecast:
        """All-zero, confidence-0 default."""
        return cls(
            model=model,
            forecast=[0.0] * horizon,
            intervals=[
                PredictionInterval(lower_80=0.0, upper_80=0.0, lower_95=0.0, upper_95=0.0)
                for _ in range(horizon)
            ],
            validation=ValidationResult.insufficient(),
            confidence_score=0.0,
            insufficient_data=True,
        )


class ModelForecastResult(BaseModel):
    """Presentation-ready output of one model for services and GMV."""

    model: ModelName
    services: SeriesForecast
    gmv: SeriesForecast
    monthly_services: float
    monthly_gmv: float
    annual_services: float
    annual_gmv: float
    confidence: ConfidenceLabel
    confidence_score: float = Field(..., ge=0, le=1)
    data_quality: DataQuality
    partial_period_applied: bool = False
    recommended_actions: list[str]
    insufficient_data: bool = False

    @classmethod
    def insufficient(cls, model: ModelName, horizon: int = 1) -> ModelForecastResult:
        """Zero-valued, Low-confidence default for short history."""
        return cls(
            model=model,
            services=SeriesForecast.insufficient(model, horizon),
            gmv=SeriesForecast.insufficient(model, horizon),
            monthly_services=0.0,
            monthly_gmv=0.0,
            annual_services=0.0,
            annual_gmv=0.0,
            confidence="Low",
            confidence_score=0.0,
            data_quality="low",
            recommended_actions=[INSUFFICIENT_DATA_ACTION],
            insufficient_data=True,
        )


# =============================================================================
# Ensemble
# =============================================================================


class SanityBounds(BaseModel):
    """Plausible range of a monthly prediction."""

    model_config = ConfigDict(frozen=True)

    min_services: float = Field(..., ge=0)
    max_services: float = Field(..., gt=0)
    min_gmv: float = Field(..., ge=0)
    max_gmv: float = Field(..., gt=0)

    @field_validator("max_services", "max_gmv")
    @classmethod
    def validate_upper_bound(cls, v: float, info: ValidationInfo) -> float:
        """Ensure each upper bound is above its lower bound."""
        field_name = info.field_name or ""
        lower = info.data.get(field_name.replace("max_", "min_"))
        if lower is not None and v <= lower:
            raise ValueError(f"{field_name} must be greater than its lower bound ({lower})")
        return v


class BusinessContext(BaseModel):
    """Business figures the ensemble needs, supplied from live data.

    Attributes:
        ytd_services: Services in closed months of the current year.
        ytd_gmv: GMV in closed months of the current year.
        closed_months: Closed months in the current year (0-11).
        average_order_value: GMV per service.
        current_month_projection: Run-rate projection of the open month.
        current_month_services: Services so far in the open month.
        current_month_gmv: GMV so far in the open month.
        historical_average_services: Mean monthly services over history.
        historical_average_gmv: Mean monthly GMV over history.
        seasonal_factor: Seasonal index of the month being forecast.
        bounds: Plausibility bounds; derived from history when omitted.
    """

    model_config = ConfigDict(frozen=True)

    ytd_services: float = Field(default=0.0, ge=0)
    ytd_gmv: float = Field(default=0.0, ge=0)
    closed_months: int = Field(default=0, ge=0, le=11)
    average_order_value: float = Field(default=0.0, ge=0)
    current_month_projection: float | None = Field(default=None, ge=0)
    current_month_services: float = Field(default=0.0, ge=0)
    current_month_gmv: float = Field(default=0.0, ge=0)
    historical_average_services: float = Field(default=0.0, ge=0)
    historical_average_gmv: float = Field(default=0.0, ge=0)
    seasonal_factor: float = Field(default=1.0, gt=0)
    bounds: SanityBounds | None = None

    @property
    def remaining_months(self) -> int:
        """Months left in the year including the open one."""
        return 12 - self.closed_months

    @classmethod
    def from_history(
        cls,
        history: list[HistoricalDataPoint],
        current: CurrentPeriodSnapshot | None = None,
        as_of: date_type | None = None,
        bounds_lower_factor: float = 0.5,
        bounds_upper_factor: float = 2.0,
    ) -> BusinessContext:
        """Derive the business context from live data.

        Args:
            history: Closed monthly rows (any order).
            current: Open-month snapshot, if available.
            as_of: Reference date; defaults to ``current.as_of``, then to the
                first day of the month after the last history row.
            bounds_lower_factor: Lower sanity bound as a multiple of the
                smallest positive month.
            bounds_upper_factor: Upper sanity bound as a multiple of the
                largest month.

        Returns:
            BusinessContext; zeros where history is empty.
        """
        rows = sorted(history, key=lambda row: row.period_index)
        if as_of is None and current is not None:
            as_of = current.as_of
        if as_of is not None:
            open_period = as_of.year * 12 + as_of.month - 1
            rows = [r for r in rows if r.period_index < open_period]
        if as_of is None:
            if current is not None:
                as_of = current.as_of
            elif rows:
                next_index = rows[-1].period_index + 1
                as_of = date_type(next_index // 12, next_index % 12 + 1, 1)
            else:
                as_of = date_type.today()

        ytd_rows = [r for r in rows if r.year == as_of.year and r.month < as_of.month]
        total_services = sum(r.services for r in rows)
        total_gmv = sum(r.gmv for r in rows)
        aov = total_gmv / total_services if total_services > 0 else 0.0

        services_so_far = current.services_so_far if current else 0.0
        gmv_so_far = current.gmv_so_far if current else 0.0
        if gmv_so_far == 0 and services_so_far > 0:
            gmv_so_far = services_so_far * aov

        projection = None
        if services_so_far > 0:
            projection = services_so_far / elapsed_fraction(as_of)

        positive_services = [r.services for r in rows if r.services > 0]
        positive_gmv = [r.gmv for r in rows if r.gmv > 0]

        seasonal_factor = 1.0
        same_month = [r.services for r in rows if r.month == as_of.month and r.services > 0]
        if same_month and positive_services:
            overall = sum(positive_services) / len(positive_services)
            seasonal_factor = (sum(same_month) / len(same_month)) / overall
            seasonal_factor = min(max(seasonal_factor, 0.3), 3.0)

        bounds = None
        if positive_services and positive_gmv:
            bounds = SanityBounds(
                min_services=bounds_lower_factor * min(positive_services),
                max_services=bounds_upper_factor * max(positive_services),
                min_gmv=bounds_lower_factor * min(positive_gmv),
                max_gmv=bounds_upper_factor * max(positive_gmv),
            )

        return cls(
            ytd_services=sum(r.services for r in ytd_rows),
            ytd_gmv=sum(r.gmv for r in ytd_rows),
            closed_months=as_of.month - 1,
            average_order_value=aov,
            current_month_projection=projection,
            current_month_services=services_so_far,
            current_month_gmv=gmv_so_far,
            historical_average_services=total_services / len(rows) if rows else 0.0,
            historical_average_gmv=total_gmv / len(rows) if rows else 0.0,
            seasonal_factor=seasonal_factor,
            bounds=bounds,
        )


class ModelWeights(BaseModel):
    """Ensemble weights; always sum to 1."""

    decomposition: float = Field(..., ge=0, le=1)
    holt_winters: float = Field(..., ge=0, le=1)
    linear: float = Field(..., ge=0, le=1)


class ModelPrediction(BaseModel):
    """Monthly prediction of one ensemble member."""

    services: float
    gmv: float


class ForecastCoherence(BaseModel):
    """Agreement between the services and GMV forecasts.

    Attributes:
        is_coherent: Whether both deviations are within tolerance.
        implied_aov: GMV forecast divided by the services forecast.
        expected_aov: Average order value from the business context.
        aov_deviation: Signed deviation of implied from expected AOV (%).
        gmv_deviation: Deviation of the GMV forecast from
            services forecast × expected AOV (%).
    """

    is_coherent: bool = True
    implied_aov: float = 0.0
    expected_aov: float = 0.0
    aov_deviation: float = 0.0
    gmv_deviation: float = 0.0


class EnsembleResult(BaseModel):
    """Externally consumed ensemble forecast."""

    monthly_services_forecast: float
    monthly_gmv_forecast: float
    annual_services_forecast: float
    annual_gmv_forecast: float
    monthly_services_actual: float
    monthly_gmv_actual: float
    annual_services_actual: float
    annual_gmv_actual: float
    monthly_services_variance: float
    monthly_gmv_variance: float
    annual_services_variance: float
    annual_gmv_variance: float
    confidence: ConfidenceLabel
    confidence_score: float = Field(..., ge=0, le=1)
    model_agreement: float = Field(..., ge=0, le=1)
    model_weights: ModelWeights
    individual_models: dict[str, ModelPrediction]
    replaced_predictions: list[str] = Field(default_factory=list)
    coherence: ForecastCoherence = Field(default_factory=ForecastCoherence)
    recommended_actions: list[str]
    insufficient_data: bool = False

    @classmethod
    def insufficient(cls) -> EnsembleResult:
        """All-zero default when an upstream model result is missing."""
        zero = ModelPrediction(services=0.0, gmv=0.0)
        return cls(
            monthly_services_forecast=0.0,
            monthly_gmv_forecast=0.0,
            annual_services_forecast=0.0,
            annual_gmv_forecast=0.0,
            monthly_services_actual=0.0,
            monthly_gmv_actual=0.0,
            annual_services_actual=0.0,
            annual_gmv_actual=0.0,
            monthly_services_variance=0.0,
            monthly_gmv_variance=0.0,
            annual_services_variance=0.0,
            annual_gmv_variance=0.0,
            confidence="Low",
            confidence_score=0.0,
            model_agreement=0.0,
            model_weights=ModelWeights(decomposition=0.0, holt_winters=0.0, linear=1.0),
            individual_models={
                "decomposition": zero,
                "holt_winters": zero,
                "linear": zero,
            },
            recommended_actions=[INSUFFICIENT_DATA_ACTION],
            insufficient_data=True,
        )


# =============================================================================
# API Request/Response Schemas
# =============================================================================


class EnsembleComputeRequest(BaseModel):
    """Request body for POST /forecasting/ensemble/compute.

    Attributes:
        history: Monthly history, any order; missing months count as 0.
        current_period: Open-month snapshot (optional).
        context: Business context; derived from history when omitted.
        parameters: Holt-Winters parameter request.
    """

    history: list[HistoricalDataPoint] = Field(default_factory=list, max_length=600)
    current_period: CurrentPeriodSnapshot | None = None
    context: BusinessContext | None = None
    parameters: ParameterRequest = Field(default_factory=AutoParameters)


class EnsembleForecastResponse(BaseModel):
    """Response body for the ensemble endpoints."""

    ensemble: EnsembleResult
    decomposition: ModelForecastResult
    holt_winters: ModelForecastResult
    context: BusinessContext
    n_observations: int
    duration_ms: float


class ModelForecastResponse(BaseModel):
    """Response body for the single-model endpoints."""

    forecast: ModelForecastResult
    as_of: date_type
    n_observations: int
    duration_ms: float
