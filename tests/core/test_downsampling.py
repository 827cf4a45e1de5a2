"""
Tests for the Downsampler and the chunked processing helpers.
"""
import asyncio

import numpy as np
import pytest

from metricscope.core.analytics.downsampling import (
    downsample,
    downsample_async,
    process_in_chunks,
    process_in_parallel_chunks,
)
from metricscope.core.domain.options import DownsampleMethod
from metricscope.core.errors import ValidationError

from factories import daily_series

ALL_METHODS = list(DownsampleMethod)


def noisy_series(n=1000, seed=0):
    rng = np.random.default_rng(seed)
    return daily_series(np.cumsum(rng.normal(0, 1, n)))


@pytest.mark.parametrize("method", ALL_METHODS)
def test_small_series_returned_unchanged(method):
    series = daily_series([1.0, 5.0, 2.0, 8.0])

    assert downsample(series, 4, method) is series
    assert downsample(series, 100, method) is series


@pytest.mark.parametrize("method", ALL_METHODS)
@pytest.mark.parametrize("max_points", [3, 4, 10, 101])
def test_output_never_exceeds_max_points(method, max_points):
    result = downsample(noisy_series(), max_points, method)

    assert 2 <= len(result) <= max_points
    assert result.metric_id == "revenue"


@pytest.mark.parametrize("method", [DownsampleMethod.LTTB, DownsampleMethod.MIN_MAX,
                                    DownsampleMethod.FIRST_LAST_SIGNIFICANT])
def test_selection_methods_keep_endpoints_and_order(method):
    series = noisy_series()
    result = downsample(series, 50, method)

    assert result.points[0] == series.points[0]
    assert result.points[-1] == series.points[-1]
    assert result.timestamps() == sorted(result.timestamps())
    assert set(result.points) <= set(series.points)


def test_lttb_keeps_a_spike():
    values = [0.0] * 500
    values[250] = 100.0
    result = downsample(daily_series(values), 20, DownsampleMethod.LTTB)

    assert 100.0 in result.values()
    assert len(result) == 20


def test_min_max_keeps_global_extremes():
    series = noisy_series(seed=5)
    result = downsample(series, 40, DownsampleMethod.MIN_MAX)

    assert result.values().max() == series.values().max()
    assert result.values().min() == series.values().min()


def test_average_buckets():
    series = daily_series(list(range(12)))
    result = downsample(series, 4, DownsampleMethod.AVERAGE)

    assert result.values().tolist() == [1.0, 4.0, 7.0, 10.0]
    # Bucket timestamp is the mean of its members
    assert result.timestamps()[0] == series.timestamps()[1]


def test_first_last_significant_drops_flat_stretches():
    values = [0.0] * 100 + [10.0] * 100
    result = downsample(daily_series(values), 50, DownsampleMethod.FIRST_LAST_SIGNIFICANT)

    assert result.values().tolist() == [0.0, 10.0, 10.0]


def test_first_last_significant_constant_series_keeps_endpoints():
    result = downsample(daily_series([3.0] * 100), 10, DownsampleMethod.FIRST_LAST_SIGNIFICANT)

    assert len(result) == 2


def test_first_last_significant_respects_threshold():
    series = noisy_series(seed=9)
    loose = downsample(series, 900, DownsampleMethod.FIRST_LAST_SIGNIFICANT, significance_threshold=0.01)
    strict = downsample(series, 900, DownsampleMethod.FIRST_LAST_SIGNIFICANT, significance_threshold=0.3)

    assert len(strict) < len(loose)


def test_string_method_accepted():
    assert len(downsample(noisy_series(), 10, "min-max")) <= 10


def test_max_points_below_three_rejected():
    with pytest.raises(ValidationError):
        downsample(noisy_series(), 2)


def test_unknown_method_rejected():
    with pytest.raises(ValidationError):
        downsample(noisy_series(), 10, "median")


@pytest.mark.asyncio
@pytest.mark.parametrize("method", ALL_METHODS)
async def test_async_matches_sync(method):
    series = noisy_series(n=5000, seed=2)

    chunked = await downsample_async(series, 200, method, chunk_size=7, concurrent_chunks=3)

    assert chunked.points == downsample(series, 200, method).points


@pytest.mark.asyncio
async def test_async_small_series_returned_unchanged():
    series = daily_series([1.0, 2.0])
    assert await downsample_async(series, 10) is series


@pytest.mark.asyncio
async def test_process_in_chunks_preserves_order():
    seen = []

    def double(chunk):
        seen.append(len(chunk))
        return [x * 2 for x in chunk]

    result = await process_in_chunks(list(range(10)), 4, double)

    assert result == [x * 2 for x in range(10)]
    assert seen == [4, 4, 2]


@pytest.mark.asyncio
async def test_process_in_chunks_accepts_coroutines():
    async def negate(chunk):
        await asyncio.sleep(0)
        return [-x for x in chunk]

    assert await process_in_chunks([1, 2, 3], 2, negate) == [-1, -2, -3]


@pytest.mark.asyncio
async def test_process_in_parallel_chunks_preserves_order():
    result = await process_in_parallel_chunks(list(range(100)), 7, 4, lambda chunk: [x + 1 for x in chunk])

    assert result == list(range(1, 101))


@pytest.mark.asyncio
async def test_chunk_helpers_handle_empty_input():
    assert await process_in_chunks([], 5, lambda c: c) == []
    assert await process_in_parallel_chunks([], 5, 2, lambda c: c) == []


@pytest.mark.asyncio
async def test_chunk_helpers_validate_sizes():
    with pytest.raises(ValidationError):
        await process_in_chunks([1], 0, lambda c: c)
    with pytest.raises(ValidationError):
        await process_in_parallel_chunks([1], 1, 0, lambda c: c)
