"""
SeriesSource Port - Interface to the data-access layer that stores raw observations.
Returns Pandas DataFrames, converted to TimeSeries by the service layer.
"""

from abc import ABC, abstractmethod
from datetime import datetime

import pandas as pd
from pydantic import BaseModel, ConfigDict


class SeriesSource(BaseModel, ABC):
    """
    Abstract interface for fetching metric history.
    Also serves as a Pydantic Model for configuration validation.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    @abstractmethod
    async def get_time_series(
        self,
        metric_id: str,
        start: datetime,
        end: datetime,
        interval: str,
    ) -> pd.DataFrame:
        """
        Fetch one metric over a date range.

        Args:
            metric_id: Metric identifier
            start: Range start (inclusive)
            end: Range end (inclusive)
            interval: Nominal aggregation interval, e.g. "1 day"

        Returns:
            DataFrame with columns ['ds', 'y'], points within [start, end], sorted ascending
        """
        ...

    async def close(self) -> None:
        """Release any held connections."""
