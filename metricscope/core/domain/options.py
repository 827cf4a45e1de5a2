"""
Options Domain Model - Method identifiers and per-operation options.

Uses Pydantic for validation of caller-supplied parameters.
"""

from datetime import timedelta
from enum import Enum

from pydantic import BaseModel, Field


class ForecastMethod(str, Enum):
    """Forecasting algorithms, simplest first. AUTO picks one of the others."""

    NAIVE = "naive"
    SEASONAL_NAIVE = "seasonal_naive"
    MOVING_AVERAGE = "moving_average"
    LINEAR_REGRESSION = "linear_regression"
    AUTO = "auto"


class DownsampleMethod(str, Enum):
    LTTB = "lttb"
    MIN_MAX = "min-max"
    AVERAGE = "average"
    FIRST_LAST_SIGNIFICANT = "first-last-significant"


class PreprocessOptions(BaseModel):
    """Cleaning steps applied before analysis. Every step is independent."""

    fill_missing_values: bool = False
    remove_outliers: bool = False
    outlier_threshold: float = Field(default=3.0, gt=0)  # in standard deviations
    normalize_timestamps: bool = False
    expected_interval: str | timedelta | None = None


class ForecastOptions(BaseModel):
    """Configuration for forecast generation."""

    window_size: int = Field(default=7, ge=1)  # moving average window
    confidence_level: float = Field(default=0.95, gt=0, lt=1)
    validate_with_history: bool = False
    seasonal_period: int | None = Field(default=None, ge=1)
    clamp_non_negative: bool = True  # marketing metrics are counts and amounts
