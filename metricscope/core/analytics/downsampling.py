"""
Downsampler - reduces a series to at most `max_points` for presentation.

- lttb: Largest-Triangle-Three-Buckets, preserves visual shape (default)
- min-max: keeps the lowest and highest point of each bucket
- average: one mean point per bucket
- first-last-significant: endpoints plus points that moved a meaningful
  fraction of the value range since the last kept point

min-max and average reduce each bucket independently, so `downsample_async`
spreads their buckets over worker threads and produces the same output.
"""

import asyncio
import inspect
import logging
from datetime import timedelta
from typing import Any, Awaitable, Callable, Sequence

import numpy as np

from metricscope.core.domain.options import DownsampleMethod
from metricscope.core.domain.series import TimeSeries, TimeSeriesPoint
from metricscope.core.errors import ValidationError

logger = logging.getLogger(__name__)

MIN_POINTS = 3
DEFAULT_SIGNIFICANCE_THRESHOLD = 0.1
DEFAULT_CHUNK_SIZE = 10_000
DEFAULT_CONCURRENT_CHUNKS = 4


def downsample(
    series: TimeSeries,
    max_points: int,
    method: DownsampleMethod | str = DownsampleMethod.LTTB,
    significance_threshold: float = DEFAULT_SIGNIFICANCE_THRESHOLD,
) -> TimeSeries:
    """
    Reduce a series to at most max_points points.

    Returns the input series itself when it already fits.
    """
    method = check_downsample_params(max_points, method, significance_threshold, series.metric_id)
    if len(series) <= max_points:
        return series

    points = series.points
    if method == DownsampleMethod.LTTB:
        sampled = _lttb(points, max_points)
    elif method == DownsampleMethod.FIRST_LAST_SIGNIFICANT:
        sampled = _first_last_significant(points, max_points, significance_threshold)
    else:
        reducer = _BUCKET_REDUCERS[method]
        sampled = _reduce_buckets(_bucket_layout(points, max_points, method), reducer)

    logger.debug(f"Downsampled '{series.metric_id}' {len(points)} -> {len(sampled)} points ({method.value})")
    return series.replace_points(sampled)


async def downsample_async(
    series: TimeSeries,
    max_points: int,
    method: DownsampleMethod | str = DownsampleMethod.LTTB,
    significance_threshold: float = DEFAULT_SIGNIFICANCE_THRESHOLD,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    concurrent_chunks: int = DEFAULT_CONCURRENT_CHUNKS,
) -> TimeSeries:
    """Same result as `downsample`, computed off the event loop."""
    method = check_downsample_params(max_points, method, significance_threshold, series.metric_id)
    if len(series) <= max_points:
        return series

    if method not in _BUCKET_REDUCERS:
        return await asyncio.to_thread(downsample, series, max_points, method, significance_threshold)

    reducer = _BUCKET_REDUCERS[method]
    buckets = _bucket_layout(series.points, max_points, method)
    sampled = await process_in_parallel_chunks(
        buckets,
        chunk_size,
        concurrent_chunks,
        lambda chunk: _reduce_buckets(chunk, reducer),
    )
    return series.replace_points(sampled)


async def process_in_chunks(
    items: Sequence[Any],
    chunk_size: int,
    processor: Callable[[list], list | Awaitable[list]],
) -> list:
    """
    Run processor over consecutive chunks, yielding to the event loop in between.

    processor may be a plain function or a coroutine function.
    """
    if chunk_size <= 0:
        raise ValidationError("Chunk size must be positive", "process_in_chunks", chunk_size=chunk_size)
    if not items:
        return []

    logger.debug(f"Processing {len(items)} items in chunks of {chunk_size}")
    result = []
    for i in range(0, len(items), chunk_size):
        chunk_result = processor(list(items[i:i + chunk_size]))
        if inspect.isawaitable(chunk_result):
            chunk_result = await chunk_result
        result.extend(chunk_result)
        await asyncio.sleep(0)
    return result


async def process_in_parallel_chunks(
    items: Sequence[Any],
    chunk_size: int,
    concurrent_chunks: int,
    processor: Callable[[list], list],
) -> list:
    """
    Run processor over chunks on worker threads, `concurrent_chunks` at a time.

    Results are concatenated in chunk order.
    """
    if chunk_size <= 0:
        raise ValidationError(
            "Chunk size must be positive", "process_in_parallel_chunks", chunk_size=chunk_size,
        )
    if concurrent_chunks <= 0:
        raise ValidationError(
            "Concurrent chunks must be positive", "process_in_parallel_chunks",
            concurrent_chunks=concurrent_chunks,
        )
    if not items:
        return []

    chunks = [list(items[i:i + chunk_size]) for i in range(0, len(items), chunk_size)]
    logger.debug(f"Processing {len(items)} items in {len(chunks)} chunks, {concurrent_chunks} at a time")

    result = []
    for i in range(0, len(chunks), concurrent_chunks):
        batch = chunks[i:i + concurrent_chunks]
        batch_results = await asyncio.gather(*(asyncio.to_thread(processor, chunk) for chunk in batch))
        for chunk_result in batch_results:
            result.extend(chunk_result)
    return result


def check_downsample_params(
    max_points: int,
    method: DownsampleMethod | str = DownsampleMethod.LTTB,
    significance_threshold: float = DEFAULT_SIGNIFICANCE_THRESHOLD,
    metric_id: str = "",
) -> DownsampleMethod:
    """Validate downsampling arguments; returns the method as a DownsampleMethod."""
    try:
        method = DownsampleMethod(method)
    except ValueError:
        raise ValidationError(
            "Unknown downsampling method", "downsample",
            metric_id=metric_id, method=method,
            allowed=[m.value for m in DownsampleMethod],
        ) from None
    if max_points < MIN_POINTS:
        raise ValidationError(
            f"max_points must be at least {MIN_POINTS}", "downsample",
            metric_id=metric_id, max_points=max_points,
        )
    if significance_threshold < 0:
        raise ValidationError(
            "Significance threshold must not be negative", "downsample",
            metric_id=metric_id, significance_threshold=significance_threshold,
        )
    return method


def _offsets(points: Sequence[TimeSeriesPoint]) -> np.ndarray:
    first = points[0].timestamp
    return np.array([(p.timestamp - first).total_seconds() for p in points], dtype=float)


# LTTB

def _lttb(points: list[TimeSeriesPoint], max_points: int) -> list[TimeSeriesPoint]:
    n = len(points)
    x = _offsets(points)
    y = np.array([p.value for p in points], dtype=float)

    every = (n - 2) / (max_points - 2)
    sampled = [points[0]]
    a = 0
    for i in range(max_points - 2):
        # Average of the next bucket is the third triangle vertex
        avg_start = int(np.floor((i + 1) * every)) + 1
        avg_end = min(int(np.floor((i + 2) * every)) + 1, n)
        avg_x = x[avg_start:avg_end].mean()
        avg_y = y[avg_start:avg_end].mean()

        range_start = int(np.floor(i * every)) + 1
        range_end = int(np.floor((i + 1) * every)) + 1
        areas = np.abs(
            (x[a] - avg_x) * (y[range_start:range_end] - y[a])
            - (x[a] - x[range_start:range_end]) * (avg_y - y[a])
        )
        a = range_start + int(np.argmax(areas))
        sampled.append(points[a])

    sampled.append(points[-1])
    return sampled


# Bucket-associative methods

def _bucket_layout(
    points: list[TimeSeriesPoint],
    max_points: int,
    method: DownsampleMethod,
) -> list[list[TimeSeriesPoint]]:
    """Split points into the buckets each method reduces independently."""
    n = len(points)
    if method == DownsampleMethod.AVERAGE:
        return [[points[i] for i in idx] for idx in np.array_split(np.arange(n), max_points)]

    # min-max: endpoints are single-point buckets, two points per interior bucket
    n_buckets = (max_points - 2) // 2
    if n_buckets == 0:
        return [[points[0]], [points[-1]]]
    interior = np.array_split(np.arange(1, n - 1), n_buckets)
    return [[points[0]]] + [[points[i] for i in idx] for idx in interior] + [[points[-1]]]


def _reduce_buckets(
    buckets: list[list[TimeSeriesPoint]],
    reducer: Callable[[list[TimeSeriesPoint]], list[TimeSeriesPoint]],
) -> list[TimeSeriesPoint]:
    return [point for bucket in buckets for point in reducer(bucket)]


def _average_bucket(bucket: list[TimeSeriesPoint]) -> list[TimeSeriesPoint]:
    first = bucket[0].timestamp
    mean_offset = float(_offsets(bucket).mean())
    mean_value = float(np.mean([p.value for p in bucket]))
    return [TimeSeriesPoint(timestamp=first + timedelta(seconds=mean_offset), value=mean_value)]


def _min_max_bucket(bucket: list[TimeSeriesPoint]) -> list[TimeSeriesPoint]:
    values = [p.value for p in bucket]
    lo = int(np.argmin(values))
    hi = int(np.argmax(values))
    if lo == hi:
        return [bucket[lo]]
    return [bucket[min(lo, hi)], bucket[max(lo, hi)]]


_BUCKET_REDUCERS = {
    DownsampleMethod.AVERAGE: _average_bucket,
    DownsampleMethod.MIN_MAX: _min_max_bucket,
}


# First / last / significant

def _first_last_significant(
    points: list[TimeSeriesPoint],
    max_points: int,
    threshold: float,
) -> list[TimeSeriesPoint]:
    values = np.array([p.value for p in points], dtype=float)
    min_change = threshold * (values.max() - values.min())

    significant = []
    last_value = values[0]
    for i in range(1, len(points) - 1):
        if min_change > 0 and abs(values[i] - last_value) >= min_change:
            significant.append(i)
            last_value = values[i]

    budget = max_points - 2
    if len(significant) > budget:
        picks = np.unique(np.linspace(0, len(significant) - 1, budget).round().astype(int))
        significant = [significant[i] for i in picks]

    return [points[0]] + [points[i] for i in significant] + [points[-1]]
