"""
Preprocessor - validates and cleans a raw series before any analysis runs.

Steps, in order:
1. Validate every point (timestamp, finite value, range, duplicates)
2. Sort and measure the sampling interval (median spacing)
3. Detect and optionally remove outliers
4. Optionally snap timestamps onto a regular grid
5. Detect gaps and optionally fill them by linear interpolation

Problems that can be repaired are reported as warnings. The result is only
invalid when fewer than two usable points remain.
"""

import logging
import math
from datetime import datetime, timedelta

import numpy as np

from metricscope.core.analytics.intervals import parse_interval
from metricscope.core.domain.options import PreprocessOptions
from metricscope.core.domain.results import (
    IntervalStats,
    PreprocessMetadata,
    PreprocessResult,
    ValidationIssue,
    ValidationReport,
)
from metricscope.core.domain.series import TimeSeries, TimeSeriesPoint

logger = logging.getLogger(__name__)

REGULARITY_TOLERANCE = 0.1  # max coefficient of variation of spacing
INTERVAL_MISMATCH_TOLERANCE = 0.1  # relative difference detected vs expected
GAP_FACTOR = 1.5  # spacing above GAP_FACTOR * step is a gap
MAX_INFERRED_STEP_RATIO = 50  # median spacing / smallest spacing


def preprocess(series: TimeSeries, options: PreprocessOptions | None = None) -> PreprocessResult:
    """
    Validate and clean a series.

    Args:
        series: Raw series, in any order, possibly with invalid points
        options: Cleaning steps to apply (all disabled by default)

    Returns:
        PreprocessResult with the cleaned series, the validation report and metadata
    """
    options = options or PreprocessOptions()
    report = ValidationReport()
    metadata = PreprocessMetadata(original_length=len(series))

    if len(series) == 0:
        report.is_valid = False
        report.errors.append(ValidationIssue("EMPTY_INPUT", "Time series is empty"))
        return PreprocessResult(series.replace_points([]), report, metadata)

    timestamps, values = _validate_points(series, report)
    metadata.missing_count = int(np.sum(~np.isfinite(values)))
    if not options.fill_missing_values:
        # Unfilled missing values are dropped, so they do not shape the grid
        keep = np.isfinite(values)
        timestamps = [t for t, k in zip(timestamps, keep) if k]
        values = values[keep]

    if len(timestamps) >= 2:
        metadata.interval_stats = _interval_stats(timestamps)
    step = _resolve_step(timestamps, metadata.interval_stats, options, report)
    even_split = options.expected_interval is None

    # Outliers
    outliers = _outlier_mask(values, options.outlier_threshold)
    metadata.outlier_count = int(outliers.sum())
    metadata.has_outliers = metadata.outlier_count > 0
    if metadata.has_outliers:
        if options.remove_outliers:
            report.warnings.append(ValidationIssue(
                "OUTLIERS_REMOVED",
                f"Removed {metadata.outlier_count} outliers beyond {options.outlier_threshold} std",
            ))
            if options.fill_missing_values:
                values = values.copy()
                values[outliers] = np.nan
            else:
                keep = ~outliers
                timestamps = [t for t, k in zip(timestamps, keep) if k]
                values = values[keep]
        else:
            report.warnings.append(ValidationIssue(
                "OUTLIERS_DETECTED",
                f"Found {metadata.outlier_count} outliers beyond {options.outlier_threshold} std",
            ))

    if options.normalize_timestamps and step is not None and timestamps:
        timestamps, values = _snap_to_grid(timestamps, values, step, report)

    # Gaps
    if step is not None:
        gaps = _find_gaps(timestamps, step, even_split)
        missing_slots = sum(n for _, n in gaps)
        if missing_slots:
            metadata.has_missing_values = True
            report.warnings.append(ValidationIssue(
                "GAPS_DETECTED",
                f"Found {len(gaps)} gaps totalling {missing_slots} missing points",
            ))
            if options.fill_missing_values:
                timestamps, values = _insert_gap_points(timestamps, values, gaps, step, even_split)
                metadata.inserted_count = missing_slots

    if metadata.missing_count:
        metadata.has_missing_values = True

    if options.fill_missing_values:
        values = _fill_missing(timestamps, values)

    points = [
        TimeSeriesPoint(timestamp=t, value=float(v))
        for t, v in zip(timestamps, values)
        if math.isfinite(v)
    ]
    metadata.processed_length = len(points)

    if len(points) < 2:
        report.is_valid = False
        report.errors.append(ValidationIssue(
            "INSUFFICIENT_DATA",
            f"Need at least 2 valid points, got {len(points)}",
        ))

    logger.debug(
        f"Preprocessed {metadata.original_length} -> {metadata.processed_length} points "
        f"(missing={metadata.missing_count}, outliers={metadata.outlier_count}, inserted={metadata.inserted_count})"
    )
    return PreprocessResult(series.replace_points(points), report, metadata)


def _validate_points(series: TimeSeries, report: ValidationReport) -> tuple[list[datetime], np.ndarray]:
    """Drop points with unusable timestamps, mark non-finite values as NaN, sort."""
    rows = []
    for index, point in enumerate(series.points):
        if not isinstance(point.timestamp, datetime):
            report.errors.append(ValidationIssue(
                "INVALID_TIMESTAMP", "Point has no valid timestamp", index=index,
            ))
            continue

        if series.start is not None and point.timestamp < series.start or (
            series.end is not None and point.timestamp > series.end
        ):
            report.errors.append(ValidationIssue(
                "OUT_OF_RANGE",
                f"Point outside [{series.start}, {series.end}]",
                index=index,
                timestamp=point.timestamp,
            ))
            continue

        value = _as_float(point.value)
        if not math.isfinite(value):
            report.warnings.append(ValidationIssue(
                "MISSING_VALUE", "Point has no finite value", index=index, timestamp=point.timestamp,
            ))
            value = float("nan")
        rows.append((point.timestamp, value, index))

    rows.sort(key=lambda row: row[0])

    timestamps: list[datetime] = []
    values: list[float] = []
    for ts, value, index in rows:
        if timestamps and ts == timestamps[-1]:
            report.errors.append(ValidationIssue(
                "DUPLICATE_TIMESTAMP", "Repeated timestamp, first occurrence kept", index=index, timestamp=ts,
            ))
            continue
        timestamps.append(ts)
        values.append(value)

    return timestamps, np.array(values, dtype=float)


def _as_float(value) -> float:
    if value is None or isinstance(value, bool):
        return float("nan")
    try:
        return float(value)
    except (TypeError, ValueError):
        return float("nan")


def _offsets(timestamps: list[datetime]) -> np.ndarray:
    """Seconds since the first timestamp."""
    first = timestamps[0]
    return np.array([(t - first).total_seconds() for t in timestamps], dtype=float)


def _interval_stats(timestamps: list[datetime]) -> IntervalStats:
    diffs = np.diff(_offsets(timestamps))
    mean = float(diffs.mean())
    cv = float(diffs.std() / mean) if mean > 0 else 0.0
    return IntervalStats(
        mean=mean,
        min=float(diffs.min()),
        max=float(diffs.max()),
        median=float(np.median(diffs)),
        coefficient_of_variation=cv,
        is_regular=cv <= REGULARITY_TOLERANCE,
    )


def _resolve_step(
    timestamps: list[datetime],
    stats: IntervalStats,
    options: PreprocessOptions,
    report: ValidationReport,
) -> timedelta | None:
    """
    Grid step for snapping and gap filling.

    The expected interval when given. Otherwise the smallest spacing: filling
    and snapping on that step never produce a smaller spacing, so a cleaned
    series yields the same step again. No step is inferred when the smallest
    spacing is far below the median.
    """
    detected = timedelta(seconds=stats.median) if stats.median > 0 else None
    if options.expected_interval is None:
        if detected is None:
            return None
        smallest = min(b - a for a, b in zip(timestamps, timestamps[1:]))
        if detected / smallest > MAX_INFERRED_STEP_RATIO:
            report.warnings.append(ValidationIssue(
                "IRREGULAR_INTERVAL",
                f"Smallest spacing {smallest} is too far below the median {detected} to use as a grid step",
            ))
            return None
        return smallest

    expected = parse_interval(options.expected_interval)
    if detected is not None:
        mismatch = abs(detected - expected) / expected
        if mismatch > INTERVAL_MISMATCH_TOLERANCE:
            report.warnings.append(ValidationIssue(
                "INTERVAL_MISMATCH",
                f"Detected interval {detected} differs from expected {expected}",
            ))
    return expected


def _outlier_mask(values: np.ndarray, threshold: float) -> np.ndarray:
    finite = np.isfinite(values)
    mask = np.zeros(len(values), dtype=bool)
    if finite.sum() < 2:
        return mask

    known = values[finite]
    std = known.std()
    if std == 0:
        return mask

    mask[finite] = np.abs(known - known.mean()) > threshold * std
    return mask


def _snap_to_grid(
    timestamps: list[datetime],
    values: np.ndarray,
    step: timedelta,
    report: ValidationReport,
) -> tuple[list[datetime], np.ndarray]:
    anchor = timestamps[0]
    snapped: list[datetime] = []
    kept: list[float] = []
    for ts, value in zip(timestamps, values):
        # Nearest slot, halves round up; exact in whole microseconds
        slot, remainder = divmod(ts - anchor, step)
        if 2 * remainder >= step:
            slot += 1
        grid_ts = anchor + slot * step
        if snapped and grid_ts == snapped[-1]:
            report.warnings.append(ValidationIssue(
                "TIMESTAMP_COLLISION", "Two points snapped to the same slot, first kept", timestamp=ts,
            ))
            continue
        snapped.append(grid_ts)
        kept.append(value)
    return snapped, np.array(kept, dtype=float)


def _find_gaps(timestamps: list[datetime], step: timedelta, even_split: bool) -> list[tuple[int, int]]:
    """
    (index of the point before the gap, number of missing points) pairs.

    With an expected step a gap is any spacing above GAP_FACTOR steps. With an
    inferred step it is a spacing of at least two steps, later split into
    equal parts no shorter than the step.
    """
    gaps = []
    for i in range(len(timestamps) - 1):
        spacing = timestamps[i + 1] - timestamps[i]
        if even_split:
            parts = spacing // step
            if parts >= 2:
                gaps.append((i, parts - 1))
        else:
            ratio = spacing / step
            if ratio > GAP_FACTOR:
                gaps.append((i, round(ratio) - 1))
    return gaps


def _insert_gap_points(
    timestamps: list[datetime],
    values: np.ndarray,
    gaps: list[tuple[int, int]],
    step: timedelta,
    even_split: bool,
) -> tuple[list[datetime], np.ndarray]:
    missing_after = dict(gaps)
    new_ts: list[datetime] = []
    new_values: list[float] = []
    for i, (ts, value) in enumerate(zip(timestamps, values)):
        new_ts.append(ts)
        new_values.append(value)
        missing = missing_after.get(i, 0)
        if not missing:
            continue
        spacing = timestamps[i + 1] - ts
        for j in range(1, missing + 1):
            if even_split:
                new_ts.append(ts + spacing * j // (missing + 1))
            else:
                new_ts.append(ts + j * step)
            new_values.append(float("nan"))
    return new_ts, np.array(new_values, dtype=float)


def _fill_missing(timestamps: list[datetime], values: np.ndarray) -> np.ndarray:
    """Linear interpolation between known neighbours, series mean at the edges."""
    missing = ~np.isfinite(values)
    if not missing.any() or missing.all():
        return values

    filled = values.copy()
    offsets = _offsets(timestamps)
    known = ~missing
    known_offsets = offsets[known]
    known_values = values[known]

    interior = missing & (offsets > known_offsets[0]) & (offsets < known_offsets[-1])
    filled[interior] = np.interp(offsets[interior], known_offsets, known_values)
    filled[missing & ~interior] = known_values.mean()
    return filled
