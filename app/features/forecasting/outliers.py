"""Outlier detection and winsorization for monthly series.

Points whose population z-score exceeds the threshold are clamped to the
nearest bound ``mean ± z·std``. Statistics cover observed (positive) months
only; months <= 0 carry no information and pass through unchanged. Length
and order are always preserved, so outputs stay aligned with the calendar
months of the input.

CRITICAL: Treatment is applied before every fit and every validation run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import numpy as np

from app.features.forecasting.schemas import DataQuality

DEFAULT_Z_THRESHOLD = 2.0


@dataclass
class OutlierTreatment:
    """Result of outlier treatment.

    Attributes:
        winsorized_data: Series with outliers clamped; same length as input.
        outlier_indices: Positions of the clamped points.
        mean: Population mean of the observed months.
        std: Population standard deviation of the observed months.
        lower_bound: mean - z·std.
        upper_bound: mean + z·std.
    """

    winsorized_data: np.ndarray[Any, np.dtype[np.floating[Any]]]
    outlier_indices: list[int] = field(default_factory=lambda: [])
    mean: float = 0.0
    std: float = 0.0
    lower_bound: float = 0.0
    upper_bound: float = 0.0

    @property
    def n_outliers(self) -> int:
        """Number of clamped points."""
        return len(self.outlier_indices)


def detect_and_treat_outliers(
    series: np.ndarray[Any, np.dtype[np.floating[Any]]],
    z_threshold: float = DEFAULT_Z_THRESHOLD,
) -> OutlierTreatment:
    """Winsorize points whose |z| exceeds the threshold.

    Args:
        series: Monthly series (1D).
        z_threshold: Z-score beyond which a point is clamped.

    Returns:
        OutlierTreatment; the input is returned unchanged when it has fewer
        than two observed months or zero variance.

    Raises:
        ValueError: If z_threshold is not positive.
    """
    if z_threshold <= 0:
        raise ValueError(f"z_threshold must be positive, got {z_threshold}")

    data = np.asarray(series, dtype=np.float64).copy()
    observed = data > 0
    if np.count_nonzero(observed) < 2:
        mean = float(np.mean(data[observed])) if observed.any() else 0.0
        return OutlierTreatment(
            winsorized_data=data, mean=mean, lower_bound=mean, upper_bound=mean
        )

    mean = float(np.mean(data[observed]))
    std = float(np.std(data[observed]))
    lower = mean - z_threshold * std
    upper = mean + z_threshold * std

    if std == 0:
        return OutlierTreatment(
            winsorized_data=data, mean=mean, std=std, lower_bound=lower, upper_bound=upper
        )

    z_scores = np.abs(data - mean) / std
    outlier_mask = observed & (z_scores > z_threshold)

    return OutlierTreatment(
        winsorized_data=np.where(observed, np.clip(data, lower, upper), data),
        outlier_indices=[int(i) for i in np.flatnonzero(outlier_mask)],
        mean=mean,
        std=std,
        lower_bound=lower,
        upper_bound=upper,
    )


def assess_data_quality(treatment: OutlierTreatment) -> DataQuality:
    """Grade a series by outlier ratio and coefficient of variation.

    Args:
        treatment: Result of detect_and_treat_outliers.

    Returns:
        "high" when outlier ratio < 0.1 and CV < 0.3, "medium" when
        < 0.2 and < 0.6, else "low". Empty or zero-mean series grade "low".
    """
    n = len(treatment.winsorized_data)
    if n == 0 or treatment.mean <= 0:
        return "low"

    outlier_ratio = treatment.n_outliers / n
    cv = treatment.std / treatment.mean

    if outlier_ratio < 0.1 and cv < 0.3:
        return "high"
    if outlier_ratio < 0.2 and cv < 0.6:
        return "medium"
    return "low"
