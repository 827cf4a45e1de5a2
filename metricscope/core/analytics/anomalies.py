"""
Anomaly Detector - Z-score flags against a global or trailing baseline.
"""

import logging

import numpy as np

from metricscope.core.domain.results import Anomaly
from metricscope.core.domain.series import TimeSeries
from metricscope.core.errors import ValidationError

logger = logging.getLogger(__name__)

MIN_POINTS = 3
# A point whose score equals the threshold is flagged. Scores are rounded
# first so that float noise does not decide the boundary case.
SCORE_DECIMALS = 10


def check_anomaly_params(threshold: float, lookback_window: int | None, metric_id: str) -> None:
    if threshold <= 0:
        raise ValidationError(
            "Threshold must be positive", "detect_anomalies",
            metric_id=metric_id, threshold=threshold,
        )
    if lookback_window is not None and lookback_window < 1:
        raise ValidationError(
            "Lookback window must be at least 1", "detect_anomalies",
            metric_id=metric_id, lookback_window=lookback_window,
        )


def detect_anomalies(
    series: TimeSeries,
    threshold: float = 3.0,
    lookback_window: int | None = None,
) -> list[Anomaly]:
    """
    Flag points whose Z-score reaches the threshold.

    Args:
        series: Cleaned, ordered series
        threshold: Z-score threshold (in standard deviations)
        lookback_window: When given, each point is scored against the
            preceding `lookback_window` points only (the point itself
            excluded); earlier points use whatever history exists.
            When omitted, one mean/std over the whole series is used.

    Returns:
        Anomalies in timestamp order
    """
    check_anomaly_params(threshold, lookback_window, series.metric_id)

    values = series.values()
    if len(values) < MIN_POINTS:
        return []

    if lookback_window is None:
        scores = _global_scores(values)
    else:
        scores = _local_scores(values, lookback_window)

    anomalies = [
        Anomaly(timestamp=point.timestamp, value=point.value, z_score=float(score))
        for point, score in zip(series.points, scores)
        if np.isfinite(score) and round(abs(score), SCORE_DECIMALS) >= threshold
    ]

    mode = "global" if lookback_window is None else f"local(window={lookback_window})"
    logger.debug(f"Detected {len(anomalies)} anomalies in {len(values)} points ({mode}, threshold={threshold})")
    return anomalies


def _global_scores(values: np.ndarray) -> np.ndarray:
    std = values.std()
    if std == 0:
        return np.zeros(len(values))
    return (values - values.mean()) / std


def _local_scores(values: np.ndarray, window: int) -> np.ndarray:
    scores = np.full(len(values), np.nan)
    for i in range(1, len(values)):
        history = values[max(0, i - window):i]
        std = history.std()
        if std == 0:
            continue
        scores[i] = (values[i] - history.mean()) / std
    return scores
