"""
Tests for the Forecaster.
"""
import math
from datetime import timedelta

import numpy as np
import pytest
from scipy import stats

from metricscope.core.analytics.forecasting import (
    METHOD_ORDER,
    critical_value,
    generate_forecast,
    mape,
    select_method,
    validation_metrics,
)
from metricscope.core.domain.options import ForecastMethod, ForecastOptions
from metricscope.core.domain.series import TimeSeries
from metricscope.core.errors import ComputationError, ValidationError

from factories import DAY, START, daily_series


def test_linear_series_extrapolates_the_line():
    series = daily_series(list(range(10, 40)))
    result = generate_forecast(series, 5, ForecastMethod.LINEAR_REGRESSION)

    assert result.forecast.values() == pytest.approx([40, 41, 42, 43, 44], abs=0.5)
    assert result.accuracy >= 0.95
    assert result.method == ForecastMethod.LINEAR_REGRESSION
    assert result.model_params["slope"] == pytest.approx(1.0)


def test_naive_repeats_last_value():
    result = generate_forecast(daily_series([5, 6, 7]), 3, ForecastMethod.NAIVE)

    assert result.forecast.values().tolist() == [7, 7, 7]
    assert result.method == ForecastMethod.NAIVE


def test_forecast_timestamps_continue_at_the_interval():
    series = daily_series([1, 2, 3, 4])
    result = generate_forecast(series, 3, ForecastMethod.NAIVE)

    last = series.points[-1].timestamp
    assert result.forecast.timestamps() == [last + DAY, last + 2 * DAY, last + 3 * DAY]
    assert result.confidence.upper.timestamps() == result.forecast.timestamps()
    assert result.confidence.lower.timestamps() == result.forecast.timestamps()


def test_forecast_step_falls_back_to_median_spacing():
    series = TimeSeries.from_values([1, 2, 3], start=START, step=timedelta(hours=6))
    result = generate_forecast(series, 2, ForecastMethod.NAIVE)

    assert result.forecast.timestamps()[0] - series.points[-1].timestamp == timedelta(hours=6)


def test_seasonal_naive_repeats_last_cycle():
    values = [1, 2, 3, 4, 5, 6, 7] * 3
    result = generate_forecast(daily_series(values), 10, ForecastMethod.SEASONAL_NAIVE)

    assert result.forecast.values().tolist() == [1, 2, 3, 4, 5, 6, 7, 1, 2, 3]
    assert result.method == ForecastMethod.SEASONAL_NAIVE
    assert result.model_params["seasonal_period"] == 7


def test_seasonal_naive_falls_back_to_naive_on_short_history():
    result = generate_forecast(daily_series([3, 4, 5]), 2, ForecastMethod.SEASONAL_NAIVE)

    assert result.method == ForecastMethod.NAIVE
    assert result.requested_method == ForecastMethod.SEASONAL_NAIVE
    assert result.forecast.values().tolist() == [5, 5]
    assert any("fell back to naive" in w for w in result.warnings)


def test_seasonal_period_option_overrides_interval():
    values = [10, 20, 30] * 4
    options = ForecastOptions(seasonal_period=3)
    result = generate_forecast(daily_series(values), 3, ForecastMethod.SEASONAL_NAIVE, options)

    assert result.forecast.values().tolist() == [10, 20, 30]


def test_moving_average_uses_last_window():
    values = [100, 100, 1, 2, 3, 4, 5, 6, 7]
    result = generate_forecast(daily_series(values), 2, ForecastMethod.MOVING_AVERAGE)

    assert result.forecast.values().tolist() == pytest.approx([4.0, 4.0])
    assert result.model_params["window_size"] == 7


def test_moving_average_window_shrinks_to_history():
    result = generate_forecast(daily_series([2, 4, 6]), 1, ForecastMethod.MOVING_AVERAGE)

    assert result.forecast.values().tolist() == pytest.approx([4.0])
    assert result.model_params["window_size"] == 3
    assert any("exceeds history" in w for w in result.warnings)


def test_linear_regression_needs_three_points():
    result = generate_forecast(daily_series([1, 2]), 2, ForecastMethod.LINEAR_REGRESSION)

    assert result.method == ForecastMethod.NAIVE
    assert result.forecast.values().tolist() == [2, 2]


def test_confidence_band_widens_with_horizon():
    rng = np.random.default_rng(3)
    series = daily_series(100 + rng.normal(0, 5, 60))
    result = generate_forecast(series, 10, ForecastMethod.MOVING_AVERAGE)

    width = result.confidence.upper.values() - result.confidence.lower.values()
    assert np.all(np.diff(width) > 0)
    assert width[3] / width[0] == pytest.approx(2.0)  # sqrt(4) / sqrt(1)
    assert np.all(result.confidence.lower.values() <= result.forecast.values())
    assert np.all(result.confidence.upper.values() >= result.forecast.values())


def test_perfect_fit_has_zero_width_band():
    result = generate_forecast(daily_series(list(range(10, 40))), 5, ForecastMethod.LINEAR_REGRESSION)

    assert result.confidence.upper.values() == pytest.approx(result.forecast.values())
    assert result.confidence.lower.values() == pytest.approx(result.forecast.values())


def test_higher_confidence_gives_wider_band():
    series = daily_series(100 + np.random.default_rng(8).normal(0, 5, 40))
    narrow = generate_forecast(series, 3, ForecastMethod.NAIVE, ForecastOptions(confidence_level=0.8))
    wide = generate_forecast(series, 3, ForecastMethod.NAIVE, ForecastOptions(confidence_level=0.99))

    assert (wide.confidence.upper.values() > narrow.confidence.upper.values()).all()


def test_clamp_non_negative():
    falling = daily_series([50, 40, 30, 20, 10])
    clamped = generate_forecast(falling, 5, ForecastMethod.LINEAR_REGRESSION)
    raw = generate_forecast(falling, 5, ForecastMethod.LINEAR_REGRESSION, ForecastOptions(clamp_non_negative=False))

    assert clamped.forecast.values().min() == 0.0
    assert clamped.confidence.lower.values().min() >= 0.0
    assert raw.forecast.values().min() < 0


def test_critical_value_switches_to_normal_for_large_samples():
    assert critical_value(0.95, 5) == pytest.approx(stats.t.ppf(0.975, 5))
    assert critical_value(0.95, 100) == pytest.approx(1.959964, abs=1e-5)
    assert critical_value(0.95, 0) == pytest.approx(1.959964, abs=1e-5)


def test_validation_metrics_populated():
    series = daily_series(list(range(10, 40)))
    result = generate_forecast(
        series, 5, ForecastMethod.LINEAR_REGRESSION, ForecastOptions(validate_with_history=True),
    )

    metrics = result.validation_metrics
    assert metrics is not None
    assert metrics.mape == pytest.approx(0.0, abs=1e-9)
    assert metrics.rmse == pytest.approx(0.0, abs=1e-9)
    assert metrics.r2 == pytest.approx(1.0)
    assert result.accuracy == pytest.approx(1.0)


def test_validation_skipped_when_history_too_short():
    result = generate_forecast(
        daily_series([1, 2, 3]), 2, ForecastMethod.NAIVE, ForecastOptions(validate_with_history=True),
    )

    assert result.validation_metrics is None
    assert any("Validation skipped" in w for w in result.warnings)


def test_mape_excludes_zero_actuals():
    actual = np.array([0.0, 10.0, 20.0])
    predicted = np.array([5.0, 11.0, 18.0])

    assert mape(actual, predicted) == pytest.approx((0.1 + 0.1) / 2)
    assert mape(np.zeros(3), predicted) is None


def test_validation_metrics_values():
    metrics = validation_metrics(np.array([2.0, 4.0]), np.array([1.0, 5.0]))

    assert metrics.mae == 1.0
    assert metrics.rmse == 1.0
    assert metrics.mape == pytest.approx(0.375)
    assert metrics.r2 == pytest.approx(0.0)


def test_auto_picks_linear_regression_for_a_trend():
    result = generate_forecast(daily_series([3 * i + 5 for i in range(40)]), 7, ForecastMethod.AUTO)

    assert result.requested_method == ForecastMethod.AUTO
    assert result.method == ForecastMethod.LINEAR_REGRESSION
    assert set(result.model_params["selection_scores"]) == {m.value for m in METHOD_ORDER}


def test_auto_picks_seasonal_naive_for_a_cycle():
    values = [10, 50, 20, 80, 30, 60, 40] * 6
    result = generate_forecast(daily_series(values), 7, ForecastMethod.AUTO)

    assert result.method == ForecastMethod.SEASONAL_NAIVE


def test_auto_tie_prefers_simpler_method():
    # Every method forecasts the constant exactly
    method, scores, _ = select_method(np.full(20, 8.0), 5, ForecastOptions(), 7)

    assert method == ForecastMethod.NAIVE
    assert all(score == pytest.approx(0.0) for score in scores.values())


def test_auto_on_short_history_uses_naive():
    result = generate_forecast(daily_series([1, 2, 3]), 2, ForecastMethod.AUTO)

    assert result.method == ForecastMethod.NAIVE
    assert result.warnings


def test_auto_falls_back_to_rmse_when_actuals_are_zero():
    values = [5.0, 3.0, 4.0, 6.0, 2.0, 5.0, 4.0, 3.0, 0.0, 0.0, 0.0]
    method, scores, _ = select_method(np.array(values), 2, ForecastOptions(clamp_non_negative=False), 7)

    assert all(score is not None for score in scores.values())
    assert method in METHOD_ORDER


def test_string_method_accepted():
    assert generate_forecast(daily_series([5, 6, 7]), 1, "naive").method == ForecastMethod.NAIVE


def test_unknown_method_rejected():
    with pytest.raises(ValidationError):
        generate_forecast(daily_series([5, 6, 7]), 1, "prophet")


@pytest.mark.parametrize("horizon", [0, -1, 366])
def test_horizon_out_of_range(horizon):
    with pytest.raises(ValidationError) as exc_info:
        generate_forecast(daily_series([1, 2, 3]), horizon, ForecastMethod.NAIVE)
    assert exc_info.value.context["horizon"] == horizon


def test_horizon_bounds_inclusive():
    assert len(generate_forecast(daily_series([1, 2, 3]), 365, ForecastMethod.NAIVE).forecast) == 365


def test_empty_series_is_computation_error():
    with pytest.raises(ComputationError):
        generate_forecast(TimeSeries(metric_id="revenue"), 3, ForecastMethod.NAIVE)


def test_single_point_series_forecasts():
    result = generate_forecast(daily_series([9.0]), 2, ForecastMethod.NAIVE)

    assert result.forecast.values().tolist() == [9.0, 9.0]
    assert result.accuracy == 0.5
    assert all(math.isfinite(v) for v in result.confidence.upper.values())
