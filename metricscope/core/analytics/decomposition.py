"""
Decomposer - additive trend / seasonal / residual split.

trend    : centered simple moving average
seasonal : per-phase mean of the detrended series, centered to zero mean
residual : original - trend - seasonal
"""

import logging

import numpy as np

from metricscope.core.analytics.intervals import default_seasonal_period
from metricscope.core.domain.results import Decomposition
from metricscope.core.domain.series import TimeSeries
from metricscope.core.errors import ComputationError, ValidationError

logger = logging.getLogger(__name__)

MIN_WINDOW_SIZE = 3


def check_decomposition_params(window_size: int, seasonal_period: int | None, metric_id: str) -> None:
    if window_size < MIN_WINDOW_SIZE:
        raise ValidationError(
            f"Window size must be at least {MIN_WINDOW_SIZE}", "decompose",
            metric_id=metric_id, window_size=window_size,
        )
    if seasonal_period is not None and seasonal_period < 1:
        raise ValidationError(
            "Seasonal period must be positive", "decompose",
            metric_id=metric_id, seasonal_period=seasonal_period,
        )


def decompose(
    series: TimeSeries,
    window_size: int = 7,
    seasonal_period: int | None = None,
) -> Decomposition:
    """
    Split a cleaned series into trend, seasonal and residual components.

    Args:
        series: Cleaned, ordered series
        window_size: Moving average window for the trend (>= 3)
        seasonal_period: Points per seasonal cycle. Inferred from the series
            interval when omitted.

    Returns:
        Decomposition whose components add back up to the original
    """
    check_decomposition_params(window_size, seasonal_period, series.metric_id)
    if len(series) == 0:
        raise ComputationError("Cannot decompose an empty series", "decompose", metric_id=series.metric_id)

    period = seasonal_period or default_seasonal_period(series.interval)
    values = series.values()

    if len(values) < 2 * period:
        logger.warning(
            f"Series of {len(values)} points is shorter than two seasonal periods ({period}); "
            "seasonal estimate is low confidence"
        )

    trend = centered_moving_average(values, window_size)
    seasonal = seasonal_component(values - trend, period)
    residual = values - trend - seasonal

    return Decomposition(
        trend=series.with_values(trend),
        seasonal=series.with_values(seasonal),
        residual=series.with_values(residual),
        original=series,
        window_size=window_size,
        seasonal_period=period,
    )


def centered_moving_average(values: np.ndarray, window_size: int) -> np.ndarray:
    """
    Centered moving average over window_size points.

    Near the edges the window shrinks symmetrically to the widest window that
    still fits, so the first and last points are their own average.
    """
    n = len(values)
    half = window_size // 2
    cumsum = np.concatenate(([0.0], np.cumsum(values)))

    trend = np.empty(n, dtype=float)
    for i in range(n):
        h = min(half, i, n - 1 - i)
        trend[i] = (cumsum[i + h + 1] - cumsum[i - h]) / (2 * h + 1)
    return trend


def seasonal_component(detrended: np.ndarray, period: int) -> np.ndarray:
    """Mean detrended value per phase, centered, repeated across the series."""
    n = len(detrended)
    if period <= 1 or n == 0:
        return np.zeros(n, dtype=float)

    phases = np.arange(n) % period
    sums = np.bincount(phases, weights=detrended, minlength=period)
    counts = np.bincount(phases, minlength=period)

    observed = counts > 0
    pattern = np.zeros(period, dtype=float)
    pattern[observed] = sums[observed] / counts[observed]
    pattern[observed] -= pattern[observed].mean()

    return pattern[phases]
