"""
Forecaster - point forecasts with confidence bands.

Methods are a closed set (ForecastMethod) dispatched through a lookup table.
Each method fits on history and returns its predictions together with the
one-step in-sample residuals that size the confidence band:

    band(h) = forecast(h) +/- crit * sigma * sqrt(h)

crit is the Student-t quantile for fewer than 30 degrees of freedom and the
normal quantile otherwise.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable

import numpy as np
from scipy import stats

from metricscope.core.analytics.intervals import default_seasonal_period, parse_interval
from metricscope.core.domain.options import ForecastMethod, ForecastOptions
from metricscope.core.domain.results import ConfidenceBand, ForecastResult, ValidationMetrics
from metricscope.core.domain.series import TimeSeries, TimeSeriesPoint
from metricscope.core.errors import ComputationError, ValidationError

logger = logging.getLogger(__name__)

MIN_HORIZON = 1
MAX_HORIZON = 365
MIN_REGRESSION_POINTS = 3
MIN_TRAINING_POINTS = 2
MIN_AUTO_POINTS = 6
T_DISTRIBUTION_MAX_DOF = 30
DEFAULT_ACCURACY = 0.5  # when in-sample MAPE cannot be computed
TIE_TOLERANCE = 1e-12

# Simplest first; auto-selection prefers the earlier method on ties
METHOD_ORDER = (
    ForecastMethod.NAIVE,
    ForecastMethod.SEASONAL_NAIVE,
    ForecastMethod.MOVING_AVERAGE,
    ForecastMethod.LINEAR_REGRESSION,
)


@dataclass
class MethodFit:
    """Output of a single forecasting method over a horizon."""

    method: ForecastMethod
    predictions: np.ndarray
    residuals: np.ndarray  # one-step in-sample errors (actual - predicted)
    sigma: float
    dof: int
    accuracy: float
    params: dict[str, Any] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)


def generate_forecast(
    series: TimeSeries,
    horizon: int,
    method: ForecastMethod | str = ForecastMethod.AUTO,
    options: ForecastOptions | None = None,
) -> ForecastResult:
    """
    Forecast `horizon` steps past the end of a cleaned series.

    Args:
        series: Cleaned, ordered history
        horizon: Steps to forecast, 1 to 365
        method: Forecasting method, or AUTO to pick by backtest error
        options: Window size, confidence level, validation and clamping

    Returns:
        ForecastResult with forecast, confidence band, accuracy and the method used
    """
    options = options or ForecastOptions()
    requested = check_forecast_params(horizon, method, series.metric_id)

    values = series.values()
    if len(values) == 0:
        raise ComputationError(
            "Cannot forecast an empty series", "generate_forecast",
            metric_id=series.metric_id, horizon=horizon, method=requested.value,
        )

    period = options.seasonal_period or default_seasonal_period(series.interval)
    warnings: list[str] = []
    selection: dict[str, float | None] = {}

    if requested == ForecastMethod.AUTO:
        chosen, selection, auto_warnings = select_method(values, horizon, options, period)
        warnings.extend(auto_warnings)
    else:
        chosen = requested

    fit = fit_method(chosen, values, horizon, options, period)
    warnings.extend(fit.warnings)

    accuracy = fit.accuracy
    validation_metrics = None
    if options.validate_with_history:
        validation_metrics = backtest(values, fit.method, horizon, options, period)
        if validation_metrics is None:
            warnings.append(
                f"Validation skipped: need at least {MIN_TRAINING_POINTS} training points "
                f"before a {horizon}-point holdout"
            )
        elif validation_metrics.mape is not None:
            accuracy = 1.0 - min(1.0, validation_metrics.mape)

    predictions = fit.predictions
    crit = critical_value(options.confidence_level, fit.dof)
    spread = crit * fit.sigma * np.sqrt(np.arange(1, horizon + 1))
    upper = predictions + spread
    lower = predictions - spread
    if options.clamp_non_negative:
        predictions = np.maximum(predictions, 0.0)
        lower = np.maximum(lower, 0.0)
        upper = np.maximum(upper, predictions)

    timestamps = _future_timestamps(series, horizon)
    params = dict(fit.params, sigma=fit.sigma, critical_value=crit)
    if selection:
        params["selection_scores"] = selection

    for warning in warnings:
        logger.warning(f"Forecast for '{series.metric_id}': {warning}")
    logger.debug(
        f"Forecast '{series.metric_id}' horizon={horizon} requested={requested.value} "
        f"method={fit.method.value} accuracy={accuracy:.3f}"
    )

    return ForecastResult(
        forecast=_future_series(series, timestamps, predictions),
        confidence=ConfidenceBand(
            upper=_future_series(series, timestamps, upper),
            lower=_future_series(series, timestamps, lower),
        ),
        accuracy=float(np.clip(accuracy, 0.0, 1.0)),
        method=fit.method,
        requested_method=requested,
        validation_metrics=validation_metrics,
        model_params=params,
        warnings=warnings,
    )


def check_forecast_params(horizon: int, method: ForecastMethod | str, metric_id: str) -> ForecastMethod:
    """Validate the horizon and method name; returns the method as a ForecastMethod."""
    try:
        method = ForecastMethod(method)
    except ValueError:
        raise ValidationError(
            "Unknown forecast method", "generate_forecast",
            metric_id=metric_id, method=method, allowed=[m.value for m in ForecastMethod],
        ) from None

    if isinstance(horizon, bool) or not isinstance(horizon, int) or not MIN_HORIZON <= horizon <= MAX_HORIZON:
        raise ValidationError(
            f"Horizon must be between {MIN_HORIZON} and {MAX_HORIZON}", "generate_forecast",
            metric_id=metric_id, horizon=horizon, method=method.value,
        )
    return method


# Methods

def naive_forecast(values: np.ndarray, horizon: int, options: ForecastOptions, period: int) -> MethodFit:
    """Repeat the last observation."""
    residuals = np.diff(values)
    return MethodFit(
        method=ForecastMethod.NAIVE,
        predictions=np.full(horizon, values[-1], dtype=float),
        residuals=residuals,
        sigma=_rms(residuals),
        dof=max(len(residuals) - 1, 0),
        accuracy=_in_sample_accuracy(values[1:], residuals),
        params={"last_value": float(values[-1])},
    )


def seasonal_naive_forecast(values: np.ndarray, horizon: int, options: ForecastOptions, period: int) -> MethodFit:
    """Repeat the value from one seasonal period back."""
    n = len(values)
    if n < period:
        fit = naive_forecast(values, horizon, options, period)
        fit.warnings.append(
            f"Seasonal naive needs {period} points for one period, got {n}; fell back to naive"
        )
        return fit

    last_cycle = values[n - period:]
    predictions = np.array([last_cycle[(h - 1) % period] for h in range(1, horizon + 1)], dtype=float)
    residuals = values[period:] - values[:-period]
    return MethodFit(
        method=ForecastMethod.SEASONAL_NAIVE,
        predictions=predictions,
        residuals=residuals,
        sigma=_rms(residuals),
        dof=max(len(residuals) - 1, 0),
        accuracy=_in_sample_accuracy(values[period:], residuals),
        params={"seasonal_period": period},
    )


def moving_average_forecast(values: np.ndarray, horizon: int, options: ForecastOptions, period: int) -> MethodFit:
    """Mean of the last window_size observations, held flat."""
    n = len(values)
    window = options.window_size
    warnings = []
    if n < window:
        warnings.append(f"Moving average window {window} exceeds history of {n} points; using {n}")
        window = n

    # One-step predictions use up to `window` preceding points
    cumsum = np.concatenate(([0.0], np.cumsum(values)))
    residuals = np.array([
        values[t] - (cumsum[t] - cumsum[max(0, t - window)]) / min(t, window)
        for t in range(1, n)
    ], dtype=float)

    level = float(values[n - window:].mean())
    return MethodFit(
        method=ForecastMethod.MOVING_AVERAGE,
        predictions=np.full(horizon, level, dtype=float),
        residuals=residuals,
        sigma=_rms(residuals),
        dof=max(len(residuals) - 1, 0),
        accuracy=_in_sample_accuracy(values[1:], residuals),
        params={"window_size": window, "level": level},
        warnings=warnings,
    )


def linear_regression_forecast(values: np.ndarray, horizon: int, options: ForecastOptions, period: int) -> MethodFit:
    """Ordinary least squares of value on position, extrapolated."""
    n = len(values)
    if n < MIN_REGRESSION_POINTS:
        fit = naive_forecast(values, horizon, options, period)
        fit.warnings.append(
            f"Linear regression needs {MIN_REGRESSION_POINTS} points, got {n}; fell back to naive"
        )
        return fit

    x = np.arange(n, dtype=float)
    slope, intercept = np.polyfit(x, values, 1)
    fitted = intercept + slope * x
    residuals = values - fitted

    ssr = float(np.sum(residuals ** 2))
    sst = float(np.sum((values - values.mean()) ** 2))
    r2 = _r_squared(ssr, sst)

    future_x = np.arange(n, n + horizon, dtype=float)
    return MethodFit(
        method=ForecastMethod.LINEAR_REGRESSION,
        predictions=intercept + slope * future_x,
        residuals=residuals,
        sigma=math.sqrt(ssr / (n - 2)),
        dof=n - 2,
        accuracy=float(np.clip(r2, 0.0, 1.0)),
        params={"slope": float(slope), "intercept": float(intercept), "r2": r2},
    )


METHODS: dict[ForecastMethod, Callable[[np.ndarray, int, ForecastOptions, int], MethodFit]] = {
    ForecastMethod.NAIVE: naive_forecast,
    ForecastMethod.SEASONAL_NAIVE: seasonal_naive_forecast,
    ForecastMethod.MOVING_AVERAGE: moving_average_forecast,
    ForecastMethod.LINEAR_REGRESSION: linear_regression_forecast,
}


def fit_method(
    method: ForecastMethod,
    values: np.ndarray,
    horizon: int,
    options: ForecastOptions,
    period: int,
) -> MethodFit:
    return METHODS[method](values, horizon, options, period)


# Validation and selection

def backtest(
    values: np.ndarray,
    method: ForecastMethod,
    horizon: int,
    options: ForecastOptions,
    period: int,
) -> ValidationMetrics | None:
    """
    Fit on a training prefix and score against the held-out suffix of length `horizon`.

    Returns None when fewer than MIN_TRAINING_POINTS remain for training.
    """
    n_train = len(values) - horizon
    if n_train < MIN_TRAINING_POINTS:
        return None

    train, actual = values[:n_train], values[n_train:]
    predicted = fit_method(method, train, horizon, options, period).predictions
    if options.clamp_non_negative:
        predicted = np.maximum(predicted, 0.0)
    return validation_metrics(actual, predicted)


def validation_metrics(actual: np.ndarray, predicted: np.ndarray) -> ValidationMetrics:
    errors = actual - predicted
    sse = float(np.sum(errors ** 2))
    sst = float(np.sum((actual - actual.mean()) ** 2))
    return ValidationMetrics(
        mape=mape(actual, predicted),
        rmse=math.sqrt(sse / len(actual)),
        mae=float(np.mean(np.abs(errors))),
        r2=_r_squared(sse, sst),
    )


def mape(actual: np.ndarray, predicted: np.ndarray) -> float | None:
    """Mean absolute percentage error as a fraction, skipping zero actuals."""
    nonzero = actual != 0
    if not nonzero.any():
        return None
    return float(np.mean(np.abs((actual[nonzero] - predicted[nonzero]) / actual[nonzero])))


def select_method(
    values: np.ndarray,
    horizon: int,
    options: ForecastOptions,
    period: int,
) -> tuple[ForecastMethod, dict[str, float | None], list[str]]:
    """
    Backtest every method on the same holdout and return the lowest-error one.

    Error is MAPE, or RMSE when every held-out actual is zero. Ties within
    TIE_TOLERANCE keep the simpler method.
    """
    n = len(values)
    if n < MIN_AUTO_POINTS:
        return ForecastMethod.NAIVE, {}, [
            f"Auto selection needs {MIN_AUTO_POINTS} points, got {n}; using naive"
        ]

    holdout = min(horizon, max(1, n // 4))
    scores: dict[str, float | None] = {}
    best_method, best_score = ForecastMethod.NAIVE, math.inf
    for method in METHOD_ORDER:
        metrics = backtest(values, method, holdout, options, period)
        score = None if metrics is None else (metrics.mape if metrics.mape is not None else metrics.rmse)
        scores[method.value] = score
        if score is not None and score < best_score - TIE_TOLERANCE:
            best_method, best_score = method, score

    logger.debug(f"Auto selection on {holdout}-point holdout: {scores} -> {best_method.value}")
    return best_method, scores, []


# Helpers

def critical_value(confidence_level: float, dof: int) -> float:
    """Two-sided quantile: Student-t for small samples, normal otherwise."""
    q = (1 + confidence_level) / 2
    if 1 <= dof < T_DISTRIBUTION_MAX_DOF:
        return float(stats.t.ppf(q, dof))
    return float(stats.norm.ppf(q))


def _rms(residuals: np.ndarray) -> float:
    if len(residuals) == 0:
        return 0.0
    return float(np.sqrt(np.mean(residuals ** 2)))


def _r_squared(sse: float, sst: float) -> float:
    if sst == 0:
        return 1.0 if math.isclose(sse, 0.0, abs_tol=1e-12) else 0.0
    return 1.0 - sse / sst


def _in_sample_accuracy(actual: np.ndarray, residuals: np.ndarray) -> float:
    if len(residuals) == 0:
        return DEFAULT_ACCURACY
    error = mape(actual, actual - residuals)
    if error is None:
        return DEFAULT_ACCURACY
    return 1.0 - min(1.0, error)


def _forecast_step(series: TimeSeries) -> timedelta:
    if series.interval:
        try:
            return parse_interval(series.interval)
        except ValidationError:
            logger.debug(f"Unparseable interval {series.interval!r}, using median spacing")

    timestamps = series.timestamps()
    if len(timestamps) >= 2:
        spacing = np.median([(b - a).total_seconds() for a, b in zip(timestamps, timestamps[1:])])
        if spacing > 0:
            return timedelta(seconds=float(spacing))
    return timedelta(days=1)


def _future_timestamps(series: TimeSeries, horizon: int) -> list:
    step = _forecast_step(series)
    last = series.points[-1].timestamp
    return [last + h * step for h in range(1, horizon + 1)]


def _future_series(series: TimeSeries, timestamps: list, values: np.ndarray) -> TimeSeries:
    return TimeSeries(
        points=[TimeSeriesPoint(timestamp=t, value=float(v)) for t, v in zip(timestamps, values)],
        metric_id=series.metric_id,
        start=timestamps[0],
        end=timestamps[-1],
        interval=series.interval,
    )
