"""
Tests for the Anomaly Detector.
"""
import pytest

from metricscope.core.analytics.anomalies import detect_anomalies
from metricscope.core.errors import ValidationError

from factories import START, daily_series


def test_spike_at_end_is_the_only_anomaly():
    series = daily_series([1, 1, 1, 1, 1, 1, 1, 1, 1, 50])
    anomalies = detect_anomalies(series, threshold=3.0)

    assert len(anomalies) == 1
    assert anomalies[0].value == 50
    assert anomalies[0].timestamp == series.points[-1].timestamp
    assert anomalies[0].z_score == pytest.approx(3.0)


@pytest.mark.parametrize("threshold", [0.001, 1.0, 3.0, 100.0])
def test_constant_series_has_no_anomalies(threshold):
    series = daily_series([4.2] * 25)

    assert detect_anomalies(series, threshold=threshold) == []
    assert detect_anomalies(series, threshold=threshold, lookback_window=5) == []


def test_fewer_than_three_points_returns_nothing():
    assert detect_anomalies(daily_series([1.0, 100.0]), threshold=0.1) == []


def test_negative_spike_has_negative_score():
    series = daily_series([10.0] * 20 + [-100.0])
    anomalies = detect_anomalies(series, threshold=3.0)

    assert len(anomalies) == 1
    assert anomalies[0].z_score < 0


def test_local_mode_uses_only_preceding_window():
    # Level shift: globally the last block is unremarkable, locally the jump is not
    values = [10.0, 11.0] * 10 + [30.0, 31.0] * 10
    series = daily_series(values)

    global_hits = detect_anomalies(series, threshold=3.0)
    local_hits = detect_anomalies(series, threshold=3.0, lookback_window=6)

    assert global_hits == []
    assert [a.timestamp for a in local_hits][0] == series.points[20].timestamp


def test_local_mode_scores_early_points_with_partial_history():
    values = [10.0, 12.0, 10.0, 12.0, 100.0]
    anomalies = detect_anomalies(daily_series(values), threshold=3.0, lookback_window=50)

    assert [a.value for a in anomalies] == [100.0]


def test_local_mode_skips_zero_variance_windows():
    values = [5.0, 5.0, 5.0, 5.0, 80.0]
    assert detect_anomalies(daily_series(values), threshold=1.0, lookback_window=3) == []


def test_results_are_in_timestamp_order():
    values = [0.0] * 30
    values[5], values[20] = 100.0, -100.0
    anomalies = detect_anomalies(daily_series(values), threshold=3.0)

    assert [a.timestamp for a in anomalies] == sorted(a.timestamp for a in anomalies)
    assert anomalies[0].timestamp > START


def test_invalid_threshold():
    with pytest.raises(ValidationError):
        detect_anomalies(daily_series([1.0, 2.0, 3.0]), threshold=0)


def test_invalid_lookback_window():
    with pytest.raises(ValidationError):
        detect_anomalies(daily_series([1.0, 2.0, 3.0]), lookback_window=0)
