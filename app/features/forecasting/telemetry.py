"""Telemetry observer injected into the forecasting core.

The core never logs directly; it reports checkpoints (fit started, parameter
search finished, prediction replaced, ...) to a ``ForecastObserver``. The
default observer forwards them to structlog with dotted event names.
"""

from __future__ import annotations

from typing import Any, Protocol

import structlog

from app.core.logging import get_logger

# Suffixes of events that indicate a degraded computation
WARNING_EVENT_SUFFIXES = (
    "_failed",
    "_replaced",
    "_fallback",
    "insufficient_data",
)


class ForecastObserver(Protocol):
    """Callback receiving forecasting checkpoints."""

    def __call__(self, event: str, **fields: Any) -> None:  # noqa: ANN401
        """Record a checkpoint.

        Args:
            event: Dotted event name (e.g. ``ensemble.prediction_replaced``).
            **fields: Structured context for the event.
        """
        ...


class StructlogObserver:
    """Forward checkpoints to a structlog logger.

    Degraded-path events (failures, replacements, fallbacks, insufficient
    data) are logged at warning level, everything else at info.
    """

    def __init__(self, logger: structlog.typing.FilteringBoundLogger | None = None) -> None:
        self._logger = logger or get_logger("app.features.forecasting")

    def __call__(self, event: str, **fields: Any) -> None:  # noqa: ANN401
        if event.endswith(WARNING_EVENT_SUFFIXES):
            self._logger.warning(event, **fields)
        else:
            self._logger.info(event, **fields)


class NullObserver:
    """Discard every checkpoint."""

    def __call__(self, event: str, **fields: Any) -> None:  # noqa: ANN401
        return None


class RecordingObserver:
    """Keep checkpoints in memory, in the order they were reported.

    Attributes:
        events: List of (event, fields) tuples.
    """

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def __call__(self, event: str, **fields: Any) -> None:  # noqa: ANN401
        self.events.append((event, fields))

    def names(self) -> list[str]:
        """Event names in reporting order."""
        return [name for name, _ in self.events]


def default_observer() -> ForecastObserver:
    """Observer used when callers do not inject one."""
    return StructlogObserver()
