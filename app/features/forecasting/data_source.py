"""Read access to the operations database.

Two set-returning SQL functions feed the forecasting core:
- the monthly history function (``year, month, services, gmv,
  services_completed``),
- the current-period function (one row with ``unique_services`` and
  optionally ``gmv``).

Function names come from settings and are validated as SQL identifiers.
"""

from __future__ import annotations

from datetime import date as date_type

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.logging import get_logger
from app.features.forecasting.schemas import CurrentPeriodSnapshot, HistoricalDataPoint

logger = get_logger(__name__)


def _as_float(value: object) -> float:
    if value is None:
        return 0.0
    return float(value)  # type: ignore[arg-type]


class HistoricalDataSource:
    """Async reader of monthly history and the open month's figures.

    Attributes:
        db: Database session.
        historical_function: Name of the monthly history function.
        current_period_function: Name of the current-period function.
    """

    def __init__(
        self,
        db: AsyncSession,
        historical_function: str | None = None,
        current_period_function: str | None = None,
    ) -> None:
        """Initialize the data source.

        Args:
            db: Database session.
            historical_function: Override of the history function name.
            current_period_function: Override of the current-period function name.
        """
        settings = get_settings()
        self.db = db
        self.historical_function = historical_function or settings.historical_data_function
        self.current_period_function = (
            current_period_function or settings.current_period_function
        )

    async def fetch_history(self) -> list[HistoricalDataPoint]:
        """Load every monthly row.

        Returns:
            Monthly rows ordered by year and month; NULL figures read as 0.

        Raises:
            SQLAlchemyError: If the query fails.
        """
        stmt = text(
            "SELECT year, month, services, gmv, services_completed "
            f"FROM {self.historical_function}() ORDER BY year, month"
        )
        result = await self.db.execute(stmt)
        rows = result.mappings().all()

        history = [
            HistoricalDataPoint(
                year=int(row["year"]),
                month=int(row["month"]),
                services=_as_float(row["services"]),
                gmv=_as_float(row["gmv"]),
                services_completed=_as_float(row["services_completed"]),
            )
            for row in rows
        ]
        logger.info(
            "forecasting.history_loaded",
            function=self.historical_function,
            n_rows=len(history),
        )
        return history

    async def fetch_current_period(self, as_of: date_type) -> CurrentPeriodSnapshot | None:
        """Load the open month's figures.

        Args:
            as_of: Date the figures are attributed to.

        Returns:
            Snapshot, or None when the function returns no row.

        Raises:
            SQLAlchemyError: If the query fails.
        """
        stmt = text(f"SELECT * FROM {self.current_period_function}()")
        result = await self.db.execute(stmt)
        row = result.mappings().first()
        if row is None:
            logger.info("forecasting.current_period_empty", function=self.current_period_function)
            return None

        snapshot = CurrentPeriodSnapshot(
            as_of=as_of,
            services_so_far=_as_float(row.get("unique_services")),
            gmv_so_far=_as_float(row.get("gmv")),
        )
        logger.info(
            "forecasting.current_period_loaded",
            function=self.current_period_function,
            as_of=str(as_of),
            services_so_far=snapshot.services_so_far,
        )
        return snapshot
