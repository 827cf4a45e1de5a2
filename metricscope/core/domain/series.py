"""
Series Domain Model - Timestamped observations and helpers to move them
between plain points, numpy arrays and pandas DataFrames.

DataFrames use the ['ds', 'y'] column convention.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Iterator

import numpy as np
import pandas as pd


@dataclass(frozen=True)
class TimeSeriesPoint:
    """A single observation."""

    timestamp: datetime
    value: float


@dataclass
class TimeSeries:
    """
    Ordered observations of one metric.

    Raw series handed to the preprocessor may be unsorted or contain invalid
    points; every series produced by the engine is sorted, free of duplicate
    timestamps and inside [start, end] when those are set.
    """

    points: list[TimeSeriesPoint] = field(default_factory=list)
    metric_id: str = ""
    start: datetime | None = None
    end: datetime | None = None
    interval: str | None = None

    def __len__(self) -> int:
        return len(self.points)

    def __iter__(self) -> Iterator[TimeSeriesPoint]:
        return iter(self.points)

    def __getitem__(self, index: int) -> TimeSeriesPoint:
        return self.points[index]

    def values(self) -> np.ndarray:
        return np.array([p.value for p in self.points], dtype=float)

    def timestamps(self) -> list[datetime]:
        return [p.timestamp for p in self.points]

    def replace_points(self, points: list[TimeSeriesPoint]) -> "TimeSeries":
        """Copy of this series (same metric, range and interval) with new points."""
        return replace(self, points=list(points))

    def with_values(self, values) -> "TimeSeries":
        """Copy of this series with the same timestamps and new values."""
        points = [
            TimeSeriesPoint(timestamp=p.timestamp, value=float(v))
            for p, v in zip(self.points, values)
        ]
        return self.replace_points(points)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({
            "ds": pd.to_datetime(self.timestamps()),
            "y": self.values(),
        })

    @classmethod
    def from_frame(
        cls,
        df: pd.DataFrame,
        metric_id: str = "",
        start: datetime | None = None,
        end: datetime | None = None,
        interval: str | None = None,
    ) -> "TimeSeries":
        """Build a series from a DataFrame with 'ds' and 'y' columns."""
        required_cols = {"ds", "y"}
        if not required_cols.issubset(df.columns):
            raise ValueError(f"DataFrame must contain columns: {required_cols}")

        points = []
        for ts, y in zip(df["ds"], df["y"]):
            if pd.isna(ts):
                ts = None
            elif isinstance(ts, pd.Timestamp):
                ts = ts.to_pydatetime()
            points.append(TimeSeriesPoint(
                timestamp=ts,
                value=float("nan") if pd.isna(y) else float(y),
            ))
        return cls(points=points, metric_id=metric_id, start=start, end=end, interval=interval)

    @classmethod
    def from_values(
        cls,
        values,
        start: datetime,
        step,
        metric_id: str = "",
        interval: str | None = None,
    ) -> "TimeSeries":
        """Evenly spaced series starting at `start` with spacing `step`."""
        points = [
            TimeSeriesPoint(timestamp=start + i * step, value=float(v))
            for i, v in enumerate(values)
        ]
        return cls(points=points, metric_id=metric_id, interval=interval)
