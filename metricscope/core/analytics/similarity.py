"""
Correlation / Entropy Analyzer.

- Pearson correlation between two series, index-aligned or timestamp-aligned
- Sample entropy (Richman & Moorman) as a regularity measure of one series
"""

import logging
import math

import numpy as np
import pandas as pd
from numpy.lib.stride_tricks import sliding_window_view

from metricscope.core.domain.series import TimeSeries
from metricscope.core.errors import ComputationError, ValidationError

logger = logging.getLogger(__name__)


def calculate_correlation(series_a: TimeSeries, series_b: TimeSeries, align: bool = False) -> float:
    """
    Pearson correlation coefficient in [-1, 1].

    Args:
        series_a: First series
        series_b: Second series
        align: Match points by nearest timestamp (within half the smaller
            sampling interval) instead of by index. Without alignment both
            series must have the same length.

    Returns:
        Correlation coefficient; 0.0 when either side has no variance
    """
    context = {"metric_a": series_a.metric_id, "metric_b": series_b.metric_id, "align": align}
    if len(series_a) == 0 or len(series_b) == 0:
        raise ValidationError("Empty time series provided", "calculate_correlation", **context)

    if align:
        a, b = _align_by_timestamp(series_a, series_b)
        if len(a) < 2:
            raise ComputationError(
                f"Only {len(a)} points could be aligned, need at least 2", "calculate_correlation", **context
            )
    else:
        if len(series_a) != len(series_b):
            raise ValidationError(
                "Time series must have the same length", "calculate_correlation",
                length_a=len(series_a), length_b=len(series_b), **context,
            )
        if len(series_a) < 2:
            raise ValidationError("Time series must have at least 2 points", "calculate_correlation", **context)
        a, b = series_a.values(), series_b.values()

    return pearson(a, b)


def pearson(a: np.ndarray, b: np.ndarray) -> float:
    da = a - a.mean()
    db = b - b.mean()
    ss_a = float(np.sum(da * da))
    ss_b = float(np.sum(db * db))
    if ss_a == 0 or ss_b == 0:
        return 0.0

    r = float(np.sum(da * db)) / math.sqrt(ss_a * ss_b)
    return max(-1.0, min(1.0, r))


def _align_by_timestamp(series_a: TimeSeries, series_b: TimeSeries) -> tuple[np.ndarray, np.ndarray]:
    left = series_a.to_frame().sort_values("ds")
    right = series_b.to_frame().sort_values("ds").rename(columns={"y": "y_b"})

    spacings = [_median_spacing(df) for df in (left, right)]
    spacings = [s for s in spacings if s is not None]
    tolerance = min(spacings) / 2 if spacings else pd.Timedelta(0)

    merged = pd.merge_asof(left, right, on="ds", direction="nearest", tolerance=tolerance)
    merged = merged.dropna(subset=["y", "y_b"])
    logger.debug(f"Aligned {len(merged)} of {len(left)}/{len(right)} points (tolerance={tolerance})")
    return merged["y"].to_numpy(dtype=float), merged["y_b"].to_numpy(dtype=float)


def _median_spacing(df: pd.DataFrame) -> pd.Timedelta | None:
    if len(df) < 2:
        return None
    return df["ds"].diff().dropna().median()


def check_entropy_params(embedding_dimension: int, tolerance: float, metric_id: str) -> None:
    context = {"metric_id": metric_id, "embedding_dimension": embedding_dimension, "tolerance": tolerance}
    if embedding_dimension < 1:
        raise ValidationError("Embedding dimension must be at least 1", "calculate_sample_entropy", **context)
    if tolerance <= 0:
        raise ValidationError("Tolerance must be positive", "calculate_sample_entropy", **context)


def calculate_sample_entropy(
    series: TimeSeries,
    embedding_dimension: int = 2,
    tolerance: float = 0.2,
) -> float:
    """
    Sample entropy of a series. Higher values mean less predictable.

    Args:
        series: Cleaned, ordered series
        embedding_dimension: Template length m
        tolerance: Match tolerance as a fraction of the series' standard deviation

    Returns:
        -ln(A / B) where B and A count template pairs of length m and m + 1
        within tolerance; math.inf when no template pairs match
    """
    check_entropy_params(embedding_dimension, tolerance, series.metric_id)
    context = {
        "metric_id": series.metric_id,
        "embedding_dimension": embedding_dimension,
        "tolerance": tolerance,
    }

    values = series.values()
    m = embedding_dimension
    if len(values) < m + 2:
        raise ComputationError(
            f"Need at least {m + 2} data points for embedding dimension {m}",
            "calculate_sample_entropy", length=len(values), **context,
        )

    r = tolerance * values.std()
    n_templates = len(values) - m
    b = _count_matches(values, m, n_templates, r)
    a = _count_matches(values, m + 1, n_templates, r)

    if a == 0 or b == 0:
        return math.inf
    return float(-math.log(a / b))


def _count_matches(values: np.ndarray, length: int, n_templates: int, r: float) -> int:
    """Template pairs (i < j) of the given length within Chebyshev distance r."""
    templates = sliding_window_view(values, length)[:n_templates]
    count = 0
    for i in range(n_templates - 1):
        distances = np.max(np.abs(templates[i + 1:] - templates[i]), axis=1)
        count += int(np.sum(distances <= r))
    return count


def interpret_correlation(coefficient: float) -> str:
    strength = abs(coefficient)
    direction = "positive" if coefficient >= 0 else "negative"
    if strength > 0.9:
        return f"Very strong {direction} correlation"
    if strength > 0.7:
        return f"Strong {direction} correlation"
    if strength > 0.5:
        return f"Moderate {direction} correlation"
    if strength > 0.3:
        return f"Weak {direction} correlation"
    return "Very weak or no correlation"


def interpret_entropy(entropy: float) -> str:
    if math.isinf(entropy):
        return "Maximum complexity/randomness"
    if entropy > 2.5:
        return "Very high complexity/randomness"
    if entropy > 1.5:
        return "High complexity/randomness"
    if entropy > 0.8:
        return "Moderate complexity/randomness"
    if entropy > 0.3:
        return "Low complexity/randomness"
    return "Very low complexity/randomness (highly predictable pattern)"
