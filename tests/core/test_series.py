"""
Tests for the series model and the error taxonomy.
"""
import math

import numpy as np
import pandas as pd
import pytest

from metricscope.core.domain.series import TimeSeries
from metricscope.core.errors import AnalyticsError, DependencyError, ValidationError

from factories import DAY, START, daily_series


def test_frame_round_trip_keeps_metadata():
    series = daily_series([1.0, 2.0, 3.0])
    rebuilt = TimeSeries.from_frame(series.to_frame(), metric_id="revenue", interval="1 day")

    assert rebuilt.points == series.points
    assert rebuilt.metric_id == "revenue"


def test_from_frame_maps_missing_entries():
    df = pd.DataFrame({"ds": [pd.Timestamp(START), pd.NaT], "y": [None, 2.0]})
    series = TimeSeries.from_frame(df)

    assert math.isnan(series[0].value)
    assert series[1].timestamp is None


def test_from_frame_requires_columns():
    with pytest.raises(ValueError):
        TimeSeries.from_frame(pd.DataFrame({"timestamp": [], "value": []}))


def test_with_values_keeps_timestamps():
    series = daily_series([1.0, 2.0])
    doubled = series.with_values(np.array([2.0, 4.0]))

    assert doubled.timestamps() == [START, START + DAY]
    assert doubled.values().tolist() == [2.0, 4.0]
    assert series.values().tolist() == [1.0, 2.0]


def test_error_message_carries_context():
    error = ValidationError("Horizon out of range", "generate_forecast", metric_id="revenue", horizon=400)

    assert str(error) == "[generate_forecast] Horizon out of range (horizon=400, metric_id='revenue')"
    assert isinstance(error, AnalyticsError)
    assert error.to_dict() == {
        "error": "ValidationError",
        "message": "Horizon out of range",
        "operation": "generate_forecast",
        "context": {"metric_id": "revenue", "horizon": "400"},
    }


def test_error_without_operation():
    assert str(DependencyError("No data available")) == "No data available"
