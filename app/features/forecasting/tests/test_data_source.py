"""Tests for the operations database reader."""

from datetime import date

import pytest

from app.features.forecasting.data_source import HistoricalDataSource


class _Result:
    def __init__(self, rows):
        self._rows = rows

    def mappings(self):
        return self

    def all(self):
        return self._rows

    def first(self):
        return self._rows[0] if self._rows else None


class _FakeSession:
    """Session stand-in that records SQL and returns canned rows."""

    def __init__(self, rows):
        self.rows = rows
        self.statements: list[str] = []

    async def execute(self, stmt):
        self.statements.append(str(stmt))
        return _Result(self.rows)


@pytest.mark.asyncio
async def test_fetch_history_maps_rows():
    """Rows should become HistoricalDataPoint objects with NULLs read as 0."""
    session = _FakeSession(
        [
            {"year": 2024, "month": 1, "services": 120, "gmv": 30000.0, "services_completed": 118},
            {"year": 2024, "month": 2, "services": None, "gmv": None, "services_completed": None},
        ]
    )

    history = await HistoricalDataSource(session).fetch_history()

    assert [(row.year, row.month) for row in history] == [(2024, 1), (2024, 2)]
    assert history[0].services == 120.0
    assert history[0].services_completed == 118.0
    assert history[1].services == 0.0
    assert history[1].gmv == 0.0


@pytest.mark.asyncio
async def test_fetch_history_reads_negative_figures_as_zero():
    """A negative correction row should load as a month without information."""
    rows = [
        {"year": 2024, "month": m, "services": 100, "gmv": 25000.0, "services_completed": 100}
        for m in range(1, 12)
    ]
    rows.append(
        {"year": 2024, "month": 12, "services": 90, "gmv": -5.0, "services_completed": -1}
    )
    session = _FakeSession(rows)

    history = await HistoricalDataSource(session).fetch_history()

    assert len(history) == 12
    assert history[-1].services == 90.0
    assert history[-1].gmv == 0.0
    assert history[-1].services_completed == 0.0


@pytest.mark.asyncio
async def test_fetch_history_calls_configured_function():
    """The history query should select from the configured SQL function."""
    session = _FakeSession([])

    await HistoricalDataSource(session).fetch_history()

    assert "FROM get_historical_monthly_data()" in session.statements[0]
    assert "ORDER BY year, month" in session.statements[0]


@pytest.mark.asyncio
async def test_function_names_can_be_overridden():
    """Explicit function names should take precedence over settings."""
    session = _FakeSession([])
    source = HistoricalDataSource(
        session, historical_function="monthly_rollup", current_period_function="open_month"
    )

    await source.fetch_history()
    await source.fetch_current_period(date(2025, 3, 10))

    assert "FROM monthly_rollup()" in session.statements[0]
    assert "FROM open_month()" in session.statements[1]


@pytest.mark.asyncio
async def test_fetch_current_period():
    """The open month's row should become a snapshot dated as_of."""
    session = _FakeSession([{"unique_services": 42, "gmv": 10500.0}])

    snapshot = await HistoricalDataSource(session).fetch_current_period(date(2025, 3, 10))

    assert snapshot is not None
    assert snapshot.as_of == date(2025, 3, 10)
    assert snapshot.services_so_far == 42.0
    assert snapshot.gmv_so_far == 10500.0
    assert "FROM forensic_audit_current_period()" in session.statements[0]


@pytest.mark.asyncio
async def test_fetch_current_period_without_gmv_column():
    """A row without a GMV column should report zero GMV."""
    session = _FakeSession([{"unique_services": 7}])

    snapshot = await HistoricalDataSource(session).fetch_current_period(date(2025, 3, 10))

    assert snapshot is not None
    assert snapshot.gmv_so_far == 0.0


@pytest.mark.asyncio
async def test_fetch_current_period_empty():
    """No row should return None."""
    session = _FakeSession([])

    assert await HistoricalDataSource(session).fetch_current_period(date(2025, 3, 10)) is None
