"""Forecasting API routes for model and ensemble forecasts."""

from datetime import date as date_type

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.exceptions import BadRequestError, DatabaseError
from app.core.logging import get_logger
from app.features.forecasting.data_source import HistoricalDataSource
from app.features.forecasting.schemas import (
    AutoParameters,
    EnsembleComputeRequest,
    EnsembleForecastResponse,
    ManualParameters,
    ModelForecastResponse,
)
from app.features.forecasting.service import ForecastingService

logger = get_logger(__name__)

router = APIRouter(prefix="/forecasting", tags=["forecasting"])


def get_data_source(db: AsyncSession = Depends(get_db)) -> HistoricalDataSource:
    """Operations database reader bound to the request session."""
    return HistoricalDataSource(db)


def parse_parameters(
    alpha: float | None = Query(None, gt=0, le=1, description="Level smoothing"),
    beta: float | None = Query(None, gt=0, le=1, description="Trend smoothing"),
    gamma: float | None = Query(None, gt=0, le=1, description="Seasonal smoothing"),
) -> AutoParameters | ManualParameters:
    """Manual parameters when all three are given, grid search when none are.

    Raises:
        BadRequestError: If only some of alpha, beta and gamma are given.
    """
    given = [p is not None for p in (alpha, beta, gamma)]
    if not any(given):
        return AutoParameters()
    if not all(given):
        raise BadRequestError(
            message="Provide all of alpha, beta and gamma, or none of them",
            details={"alpha": alpha, "beta": beta, "gamma": gamma},
        )
    return ManualParameters(alpha=alpha, beta=beta, gamma=gamma)


def resolve_as_of(
    as_of: date_type | None = Query(
        None, description="Date inside the open month (defaults to today)"
    ),
) -> date_type:
    """Reference date of the open month."""
    return as_of or date_type.today()


@router.get(
    "/holt-winters",
    response_model=ModelForecastResponse,
    status_code=status.HTTP_200_OK,
    summary="Holt-Winters forecast of services and GMV",
    description="""
Multiplicative Holt-Winters forecast of monthly services and GMV.

**Parameters:** pass `alpha`, `beta` and `gamma` together to skip the grid
search; omit all three to select them by walk-forward weighted MAPE.

**Partial month:** the current month's forecast is blended with the run-rate
of the services registered so far.

**Short history:** fewer than 24 months returns an all-zero, Low-confidence
result flagged `insufficient_data`.
""",
)
async def holt_winters_forecast(
    parameters: AutoParameters | ManualParameters = Depends(parse_parameters),
    as_of: date_type = Depends(resolve_as_of),
    source: HistoricalDataSource = Depends(get_data_source),
) -> ModelForecastResponse:
    """Holt-Winters forecast from the operations database.

    Raises:
        DatabaseError: If the history or current-period query fails.
    """
    logger.info(
        "forecasting.holt_winters_request_received",
        mode=parameters.mode,
        as_of=str(as_of),
    )
    service = ForecastingService()
    try:
        response = await service.holt_winters_forecast(source, as_of, parameters)
    except SQLAlchemyError as e:
        logger.error(
            "forecasting.holt_winters_request_failed",
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
        raise DatabaseError(
            message="Failed to load forecasting data",
            details={"error": str(e)},
        ) from e

    logger.info(
        "forecasting.holt_winters_request_completed",
        confidence=response.forecast.confidence,
        n_observations=response.n_observations,
        duration_ms=response.duration_ms,
    )
    return response


@router.get(
    "/decomposition",
    response_model=ModelForecastResponse,
    status_code=status.HTTP_200_OK,
    summary="Decomposition forecast of services and GMV",
    description="""
Prophet-style forecast: piecewise-linear trend with changepoints, yearly
Fourier seasonality and residual, with 80% and 95% prediction intervals.

**Short history:** fewer than 6 months returns an all-zero, Low-confidence
result flagged `insufficient_data`.
""",
)
async def decomposition_forecast(
    as_of: date_type = Depends(resolve_as_of),
    source: HistoricalDataSource = Depends(get_data_source),
) -> ModelForecastResponse:
    """Decomposition forecast from the operations database.

    Raises:
        DatabaseError: If the history or current-period query fails.
    """
    logger.info("forecasting.decomposition_request_received", as_of=str(as_of))
    service = ForecastingService()
    try:
        response = await service.decomposition_forecast(source, as_of)
    except SQLAlchemyError as e:
        logger.error(
            "forecasting.decomposition_request_failed",
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
        raise DatabaseError(
            message="Failed to load forecasting data",
            details={"error": str(e)},
        ) from e

    logger.info(
        "forecasting.decomposition_request_completed",
        confidence=response.forecast.confidence,
        n_observations=response.n_observations,
        duration_ms=response.duration_ms,
    )
    return response


@router.get(
    "/ensemble",
    response_model=EnsembleForecastResponse,
    status_code=status.HTTP_200_OK,
    summary="Ensemble forecast from live data",
    description="""
Confidence-weighted combination of the decomposition model, Holt-Winters and
a linear baseline. Implausible model predictions are replaced with the
year-to-date run-rate and listed in `replaced_predictions`.
""",
)
async def ensemble_forecast(
    parameters: AutoParameters | ManualParameters = Depends(parse_parameters),
    as_of: date_type = Depends(resolve_as_of),
    source: HistoricalDataSource = Depends(get_data_source),
) -> EnsembleForecastResponse:
    """Ensemble forecast from the operations database.

    Raises:
        DatabaseError: If the history or current-period query fails.
    """
    logger.info(
        "forecasting.ensemble_request_received",
        mode=parameters.mode,
        as_of=str(as_of),
    )
    service = ForecastingService()
    try:
        response = await service.ensemble_forecast(source, as_of, parameters)
    except SQLAlchemyError as e:
        logger.error(
            "forecasting.ensemble_request_failed",
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
        raise DatabaseError(
            message="Failed to load forecasting data",
            details={"error": str(e)},
        ) from e

    logger.info(
        "forecasting.ensemble_request_completed",
        confidence=response.ensemble.confidence,
        n_observations=response.n_observations,
        duration_ms=response.duration_ms,
    )
    return response


@router.post(
    "/ensemble/compute",
    response_model=EnsembleForecastResponse,
    status_code=status.HTTP_200_OK,
    summary="Ensemble forecast from supplied data",
    description="""
Run the ensemble pipeline on caller-supplied history and open-month figures
without touching the database. When `context` is omitted it is derived from
the supplied history.
""",
)
async def compute_ensemble(request: EnsembleComputeRequest) -> EnsembleForecastResponse:
    """Ensemble forecast from the request body."""
    logger.info(
        "forecasting.compute_request_received",
        n_rows=len(request.history),
        mode=request.parameters.mode,
    )
    response = ForecastingService().compute(request)
    logger.info(
        "forecasting.compute_request_completed",
        confidence=response.ensemble.confidence,
        n_observations=response.n_observations,
        duration_ms=response.duration_ms,
    )
    return response
