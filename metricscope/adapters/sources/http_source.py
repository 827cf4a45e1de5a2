"""
HTTP Series Source - reads metric history from the dashboard's data-access API.

GET {base_url}/api/v1/metrics/{metric_id}/timeseries?start=...&end=...&interval=...
    -> {"status": "success", "data": [{"timestamp": "...", "value": 1.0}, ...]}
"""

import logging
from datetime import datetime

import httpx
import pandas as pd
from pydantic import PrivateAttr

from metricscope.core.ports.series_source import SeriesSource

logger = logging.getLogger(__name__)


class HttpSeriesSource(SeriesSource):
    """
    Series source backed by a JSON HTTP API.
    Configured via Pydantic model fields.
    """
    base_url: str
    timeout: float = 30.0
    headers: dict[str, str] = {}

    _client: httpx.AsyncClient | None = PrivateAttr(default=None)

    def model_post_init(self, __context):
        """Normalize URL after initialization."""
        self.base_url = self.base_url.rstrip("/")

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers=self.headers,
            )
        return self._client

    async def get_time_series(
        self,
        metric_id: str,
        start: datetime,
        end: datetime,
        interval: str,
    ) -> pd.DataFrame:
        """Fetch a metric and return it as a ['ds', 'y'] DataFrame."""
        client = await self._get_client()

        params = {
            "start": start.isoformat(),
            "end": end.isoformat(),
            "interval": interval,
        }

        response = await client.get(
            f"{self.base_url}/api/v1/metrics/{metric_id}/timeseries",
            params=params,
        )
        response.raise_for_status()

        data = response.json()

        if data.get("status") != "success":
            raise RuntimeError(f"Time series request failed: {data.get('error', 'Unknown error')}")

        rows = data.get("data") or []
        if not rows:
            return pd.DataFrame(columns=["ds", "y"])

        df = pd.DataFrame(rows, columns=["timestamp", "value"])
        df["ds"] = pd.to_datetime(df["timestamp"], utc=True, format="ISO8601")
        if not _is_aware(start):
            df["ds"] = df["ds"].dt.tz_localize(None)
        df["y"] = pd.to_numeric(df["value"], errors="coerce")

        # The data-access contract is points within range, ascending
        in_range = (df["ds"] >= pd.Timestamp(start)) & (df["ds"] <= pd.Timestamp(end))
        dropped = int((~in_range).sum())
        if dropped:
            logger.warning(f"Dropped {dropped} points outside [{start}, {end}] for '{metric_id}'")

        return df.loc[in_range, ["ds", "y"]].sort_values("ds", kind="stable").reset_index(drop=True)

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None


def _is_aware(ts: datetime) -> bool:
    return ts.tzinfo is not None and ts.tzinfo.utcoffset(ts) is not None
