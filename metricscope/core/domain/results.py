"""
Result Domain Models - Data structures returned by the analytics engine.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from metricscope.core.domain.options import ForecastMethod
from metricscope.core.domain.series import TimeSeries


@dataclass
class ValidationIssue:
    """A problem found while validating a raw series."""

    type: str  # e.g. EMPTY_INPUT, INVALID_TIMESTAMP, MISSING_VALUE
    message: str
    index: int | None = None
    timestamp: datetime | None = None


@dataclass
class ValidationReport:
    is_valid: bool = True
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)


@dataclass
class IntervalStats:
    """Spacing between consecutive timestamps, in seconds."""

    mean: float = 0.0
    min: float = 0.0
    max: float = 0.0
    median: float = 0.0
    coefficient_of_variation: float = 0.0
    is_regular: bool = True


@dataclass
class PreprocessMetadata:
    original_length: int = 0
    processed_length: int = 0
    has_missing_values: bool = False
    has_outliers: bool = False
    missing_count: int = 0
    outlier_count: int = 0
    inserted_count: int = 0
    interval_stats: IntervalStats = field(default_factory=IntervalStats)


@dataclass
class PreprocessResult:
    """Cleaned series plus what was found and changed on the way."""

    data: TimeSeries
    validation: ValidationReport
    metadata: PreprocessMetadata


@dataclass
class Decomposition:
    """
    Additive decomposition: original[i] == trend[i] + seasonal[i] + residual[i]
    up to floating point error. All four series share timestamps.
    """

    trend: TimeSeries
    seasonal: TimeSeries
    residual: TimeSeries
    original: TimeSeries
    window_size: int
    seasonal_period: int


@dataclass
class Anomaly:
    """A point flagged as anomalous."""

    timestamp: datetime
    value: float
    z_score: float  # signed, (value - mean) / std of the baseline


@dataclass
class ConfidenceBand:
    upper: TimeSeries
    lower: TimeSeries


@dataclass
class ValidationMetrics:
    """Backtest errors on a held-out suffix. mape is a fraction, None when every actual is zero."""

    mape: float | None
    rmse: float
    mae: float
    r2: float


@dataclass
class ForecastResult:
    forecast: TimeSeries
    confidence: ConfidenceBand
    accuracy: float  # 0.0 = useless, 1.0 = perfect
    method: ForecastMethod
    requested_method: ForecastMethod
    validation_metrics: ValidationMetrics | None = None
    model_params: dict[str, Any] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
