"""
Analytics Service - The entry point for every engine capability.

Each operation follows the same path:
1. Validate request parameters (ValidationError, before any I/O)
2. Fetch raw history through the SeriesSource port (cached, series namespace)
3. Preprocess: fill gaps and snap timestamps onto the requested interval
4. Run the engine function (cached: decomposition, forecast or analysis namespace)
5. Downsample only what is returned for visualization
"""

import asyncio
import logging
from datetime import datetime

from metricscope.core.analytics.anomalies import check_anomaly_params, detect_anomalies
from metricscope.core.analytics.decomposition import check_decomposition_params, decompose
from metricscope.core.analytics.downsampling import check_downsample_params, downsample, downsample_async
from metricscope.core.analytics.forecasting import check_forecast_params, generate_forecast
from metricscope.core.analytics.intervals import parse_interval
from metricscope.core.analytics.preprocessing import preprocess
from metricscope.core.analytics.similarity import (
    calculate_correlation,
    calculate_sample_entropy,
    check_entropy_params,
    interpret_correlation,
    interpret_entropy,
)
from metricscope.core.domain.options import DownsampleMethod, ForecastMethod, ForecastOptions, PreprocessOptions
from metricscope.core.domain.responses import (
    AnomalyResponse,
    CorrelationResponse,
    DecompositionResponse,
    EntropyResponse,
    SeriesResponse,
)
from metricscope.core.domain.results import Decomposition, ForecastResult, PreprocessResult
from metricscope.core.domain.series import TimeSeries
from metricscope.core.domain.settings import SystemSettings
from metricscope.core.errors import ComputationError, DependencyError, ValidationError
from metricscope.core.ports.series_source import SeriesSource
from metricscope.core.services.cache import AnalyticsCache, make_cache_key

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = "1 day"


class AnalyticsService:
    """
    Runs engine operations for one metric (or a pair) over a date range.
    """

    def __init__(
        self,
        source: SeriesSource,
        cache: AnalyticsCache,
        settings: SystemSettings | None = None,
    ):
        """
        Initialize the service.

        Args:
            source: Port to the data-access layer
            cache: Cache namespaces, owned by the caller
            settings: Downsampling limits and chunk size (defaults when omitted)
        """
        self.source = source
        self.cache = cache
        self.settings = settings or SystemSettings()

    async def get_time_series(
        self,
        metric_id: str,
        start: datetime,
        end: datetime,
        interval: str = DEFAULT_INTERVAL,
        max_points: int | None = None,
        method: DownsampleMethod | str = DownsampleMethod.LTTB,
    ) -> SeriesResponse:
        """Preprocessed series, downsampled to max_points (settings default when omitted)."""
        self._check_request("get_time_series", metric_id, start, end, interval)
        if max_points is None:
            max_points = self.settings.default_max_points
        method = check_downsample_params(max_points, method, metric_id=metric_id)

        logger.info(f"Time series '{metric_id}' {start} -> {end} ({interval})")
        cleaned = await self._cleaned(metric_id, start, end, interval)
        series = cleaned.data

        reduced = await downsample_async(
            series, max_points, method, chunk_size=self.settings.downsample_chunk_size,
        )
        return SeriesResponse(
            series=reduced,
            total_points=len(series),
            downsampled_points=len(reduced),
            was_downsampled=reduced is not series,
            metadata=cleaned.metadata,
            warnings=cleaned.validation.warnings,
        )

    async def decompose(
        self,
        metric_id: str,
        start: datetime,
        end: datetime,
        interval: str = DEFAULT_INTERVAL,
        window_size: int = 7,
        seasonal_period: int | None = None,
        max_points: int | None = None,
    ) -> DecompositionResponse:
        """
        Trend / seasonal / residual split.

        Components are downsampled with bucket averages so they stay aligned
        and still add up to the downsampled original.
        """
        self._check_request(
            "decompose", metric_id, start, end, interval,
            window_size=window_size, seasonal_period=seasonal_period,
        )
        check_decomposition_params(window_size, seasonal_period, metric_id)
        if max_points is None:
            max_points = self.settings.decomposition_max_points
        check_downsample_params(max_points, DownsampleMethod.AVERAGE, metric_id=metric_id)

        async def compute() -> Decomposition:
            cleaned = await self._cleaned(metric_id, start, end, interval)
            return decompose(cleaned.data, window_size=window_size, seasonal_period=seasonal_period)

        key = make_cache_key(
            "decomposition", metric_id, start, end, interval,
            window_size=window_size, seasonal_period=seasonal_period,
        )
        logger.info(f"Decomposition '{metric_id}' window={window_size} period={seasonal_period}")
        result = await self.cache.decomposition.get_or_compute(key, compute)

        total = len(result.original)
        if total <= max_points:
            return DecompositionResponse(result, total, total, False)

        def reduce(component: TimeSeries) -> TimeSeries:
            return downsample(component, max_points, DownsampleMethod.AVERAGE)

        reduced = Decomposition(
            trend=reduce(result.trend),
            seasonal=reduce(result.seasonal),
            residual=reduce(result.residual),
            original=reduce(result.original),
            window_size=result.window_size,
            seasonal_period=result.seasonal_period,
        )
        return DecompositionResponse(reduced, total, len(reduced.original), True)

    async def detect_anomalies(
        self,
        metric_id: str,
        start: datetime,
        end: datetime,
        interval: str = DEFAULT_INTERVAL,
        threshold: float = 3.0,
        lookback_window: int | None = None,
    ) -> AnomalyResponse:
        self._check_request(
            "detect_anomalies", metric_id, start, end, interval,
            threshold=threshold, lookback_window=lookback_window,
        )
        check_anomaly_params(threshold, lookback_window, metric_id)

        async def compute() -> AnomalyResponse:
            cleaned = await self._cleaned(metric_id, start, end, interval)
            anomalies = detect_anomalies(cleaned.data, threshold=threshold, lookback_window=lookback_window)
            return AnomalyResponse(
                metric_id=metric_id,
                anomalies=anomalies,
                total_points=len(cleaned.data),
                threshold=threshold,
                lookback_window=lookback_window,
            )

        key = make_cache_key(
            "anomalies", metric_id, start, end, interval,
            threshold=threshold, lookback_window=lookback_window,
        )
        logger.info(f"Anomaly detection '{metric_id}' threshold={threshold} lookback={lookback_window}")
        return await self.cache.analysis.get_or_compute(key, compute)

    async def forecast(
        self,
        metric_id: str,
        start: datetime,
        end: datetime,
        interval: str = DEFAULT_INTERVAL,
        horizon: int = 30,
        method: ForecastMethod | str = ForecastMethod.AUTO,
        options: ForecastOptions | None = None,
    ) -> ForecastResult:
        self._check_request("forecast", metric_id, start, end, interval, horizon=horizon, method=method)
        method = check_forecast_params(horizon, method, metric_id)
        options = options or ForecastOptions()

        async def compute() -> ForecastResult:
            cleaned = await self._cleaned(metric_id, start, end, interval)
            return generate_forecast(cleaned.data, horizon, method, options)

        key = make_cache_key(
            "forecast", metric_id, start, end, interval,
            horizon=horizon, method=method, options=options,
        )
        logger.info(f"Forecast '{metric_id}' horizon={horizon} method={method.value}")
        return await self.cache.forecast.get_or_compute(key, compute)

    async def correlation(
        self,
        metric_a: str,
        metric_b: str,
        start: datetime,
        end: datetime,
        interval: str = DEFAULT_INTERVAL,
        align: bool = False,
    ) -> CorrelationResponse:
        self._check_request("correlation", metric_a, start, end, interval, metric_b=metric_b, align=align)
        self._check_request("correlation", metric_b, start, end, interval, metric_a=metric_a, align=align)

        async def compute() -> CorrelationResponse:
            cleaned_a, cleaned_b = await asyncio.gather(
                self._cleaned(metric_a, start, end, interval),
                self._cleaned(metric_b, start, end, interval),
            )
            coefficient = calculate_correlation(cleaned_a.data, cleaned_b.data, align=align)
            return CorrelationResponse(
                metric_a=metric_a,
                metric_b=metric_b,
                coefficient=coefficient,
                interpretation=interpret_correlation(coefficient),
                aligned=align,
            )

        key = make_cache_key("correlation", f"{metric_a}|{metric_b}", start, end, interval, align=align)
        logger.info(f"Correlation '{metric_a}' vs '{metric_b}' align={align}")
        return await self.cache.analysis.get_or_compute(key, compute)

    async def entropy(
        self,
        metric_id: str,
        start: datetime,
        end: datetime,
        interval: str = DEFAULT_INTERVAL,
        embedding_dimension: int = 2,
        tolerance: float = 0.2,
    ) -> EntropyResponse:
        self._check_request(
            "entropy", metric_id, start, end, interval,
            embedding_dimension=embedding_dimension, tolerance=tolerance,
        )
        check_entropy_params(embedding_dimension, tolerance, metric_id)

        async def compute() -> EntropyResponse:
            cleaned = await self._cleaned(metric_id, start, end, interval)
            value = calculate_sample_entropy(
                cleaned.data, embedding_dimension=embedding_dimension, tolerance=tolerance,
            )
            return EntropyResponse(
                metric_id=metric_id,
                entropy=value,
                interpretation=interpret_entropy(value),
                embedding_dimension=embedding_dimension,
                tolerance=tolerance,
            )

        key = make_cache_key(
            "entropy", metric_id, start, end, interval,
            embedding_dimension=embedding_dimension, tolerance=tolerance,
        )
        logger.info(f"Sample entropy '{metric_id}' m={embedding_dimension} r={tolerance}")
        return await self.cache.analysis.get_or_compute(key, compute)

    def invalidate_cache(self, pattern: str | None = None) -> int:
        """Drop cached results, all of them or those whose key matches a glob pattern."""
        return self.cache.invalidate(pattern)

    # Internals

    def _check_request(
        self,
        operation: str,
        metric_id: str,
        start: datetime,
        end: datetime,
        interval: str,
        **params,
    ) -> None:
        context = dict(metric_id=metric_id, start=start, end=end, interval=interval, **params)
        if not metric_id or not metric_id.strip():
            raise ValidationError("Metric id is required", operation, **context)
        if start is None or end is None:
            raise ValidationError("Start and end dates are required", operation, **context)
        if start > end:
            raise ValidationError("Start must not be after end", operation, **context)
        try:
            parse_interval(interval)
        except ValidationError as e:
            raise ValidationError(e.message, operation, **context) from e

    async def _fetch(self, metric_id: str, start: datetime, end: datetime, interval: str) -> TimeSeries:
        """Raw history from the data-access layer, cached in the series namespace."""

        async def compute() -> TimeSeries:
            try:
                df = await self.source.get_time_series(metric_id, start, end, interval)
            except Exception as e:
                logger.error(f"Data access failed for '{metric_id}': {e}")
                raise DependencyError(
                    f"Data access failed: {e}", "get_time_series",
                    metric_id=metric_id, start=start, end=end, interval=interval,
                ) from e

            if df is None or df.empty:
                logger.warning(f"No data found for '{metric_id}' between {start} and {end}")
                raise DependencyError(
                    "No data available", "get_time_series",
                    metric_id=metric_id, start=start, end=end, interval=interval,
                )
            return TimeSeries.from_frame(df, metric_id=metric_id, start=start, end=end, interval=interval)

        key = make_cache_key("series", metric_id, start, end, interval)
        return await self.cache.series.get_or_compute(key, compute)

    async def _cleaned(self, metric_id: str, start: datetime, end: datetime, interval: str) -> PreprocessResult:
        raw = await self._fetch(metric_id, start, end, interval)
        result = preprocess(raw, PreprocessOptions(
            fill_missing_values=True,
            normalize_timestamps=True,
            expected_interval=interval,
        ))

        for issue in result.validation.errors:
            logger.warning(f"'{metric_id}': {issue.type} {issue.message}")
        if not result.validation.is_valid:
            raise ComputationError(
                "Not enough valid data after preprocessing", "preprocess",
                metric_id=metric_id, start=start, end=end, interval=interval,
                errors=[issue.type for issue in result.validation.errors],
            )
        return result
