"""
Deterministic statistics over an execution result.

Pure computation, no model calls.  Looks at the first table only (the
row total covers every table) and picks:

    • the first numeric column   → mean / median / std-dev / outliers / distribution
    • the first datetime column  → time range / trend / gaps

Every threshold is a policy parameter (``StatisticsPolicy``).  Nothing
in here raises on empty, all-null or unparseable data; a column that
cannot be detected simply yields ``None`` for its sub-record.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

from telemetry_copilot.analysis.models import (
    Gap,
    NumericalStats,
    StatisticalAnalysis,
    Summary,
    TemporalStats,
    TimeRange,
)
from telemetry_copilot.services.results import ExecutionResult, Table

_NUMERIC_TYPE_MARKERS = ("int", "long", "real", "decimal", "double", "float", "numeric", "number")
_DATETIME_TYPE_MARKERS = ("datetime", "timestamp", "date")
_DATETIME_NAME_MARKERS = ("time", "date")
_NUMERIC_SAMPLE_SIZE = 10
_MAX_GAPS = 50

# KQL returns 7 fractional digits; datetime only keeps microseconds.
_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


@dataclass(frozen=True)
class StatisticsPolicy:
    outlier_multiplier: float = 2.0
    max_outliers: int = 10
    normal_skew: float = 0.5
    skewed_skew: float = 1.0
    uniform_spread: float = 0.3
    trend_threshold: float = 0.1
    seasonal_flip_ratio: float = 0.5
    gap_multiplier: float = 3.0

    @classmethod
    def from_settings(cls, settings) -> "StatisticsPolicy":
        return cls(
            outlier_multiplier=settings.OUTLIER_STDDEV_MULTIPLIER,
            trend_threshold=settings.TREND_CHANGE_THRESHOLD,
            gap_multiplier=settings.GAP_INTERVAL_MULTIPLIER,
        )


def compute_statistics(
    result: ExecutionResult, policy: StatisticsPolicy | None = None
) -> StatisticalAnalysis:
    policy = policy or StatisticsPolicy()
    table = result.first_table
    if table is None:
        return StatisticalAnalysis(summary=Summary(total_rows=0))

    unique_values, null_percentage = _column_summary(table)
    summary = Summary(
        total_rows=result.total_rows,
        unique_values=unique_values,
        null_percentage=null_percentage,
    )

    numeric_index = find_numeric_column(table)
    numerical = None
    if numeric_index is not None:
        numerical = _numerical_stats(
            table.columns[numeric_index].name,
            numeric_values(table, numeric_index),
            policy,
        )

    temporal = None
    date_index = find_datetime_column(table, skip=numeric_index)
    if date_index is not None:
        temporal = _temporal_stats(table, date_index, numeric_index, policy)

    return StatisticalAnalysis(summary=summary, numerical=numerical, temporal=temporal)


# ── Column detection ─────────────────────────────────────────────


def to_number(value: Any) -> float | None:
    """Best-effort numeric coercion; ``None`` for anything else."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        number = float(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def numeric_values(table: Table, index: int) -> list[float]:
    values = (to_number(v) for v in table.column_values(index))
    return [v for v in values if v is not None]


def find_numeric_column(table: Table) -> int | None:
    """
    First column that is declared numeric, or whose first non-null
    values all parse as numbers.  Columns without a single usable value
    are skipped.
    """
    for i, column in enumerate(table.columns):
        col_type = column.type.lower()
        if any(marker in col_type for marker in _NUMERIC_TYPE_MARKERS):
            if numeric_values(table, i):
                return i
            continue

        if _is_datetime_type(col_type):
            continue

        sample = [v for v in table.column_values(i) if v is not None][:_NUMERIC_SAMPLE_SIZE]
        if sample and all(to_number(v) is not None for v in sample):
            return i
    return None


def _is_datetime_type(col_type: str) -> bool:
    return any(marker in col_type for marker in _DATETIME_TYPE_MARKERS) or col_type == "time"


def find_datetime_column(table: Table, skip: int | None = None) -> int | None:
    """
    First column typed as a date/time, or named like one, that holds at
    least one parseable timestamp.
    """
    for i, column in enumerate(table.columns):
        declared = _is_datetime_type(column.type.lower())
        by_name = any(marker in column.name.lower() for marker in _DATETIME_NAME_MARKERS)
        if not declared and (not by_name or i == skip):
            continue
        if any(parse_timestamp(v, allow_numeric=declared) for v in table.column_values(i)):
            return i
    return None


def parse_timestamp(value: Any, *, allow_numeric: bool = False) -> datetime | None:
    """Parse a cell into an aware UTC datetime, or ``None``."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        text = _FRACTION_RE.sub(r"\1", text)
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    if allow_numeric:
        number = to_number(value)
        if number is None:
            return None
        # Large values are epoch milliseconds
        seconds = number / 1000 if abs(number) > 1e11 else number
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    return None


# ── Summary ──────────────────────────────────────────────────────


def _hashable(value: Any) -> Any:
    try:
        hash(value)
    except TypeError:
        return repr(value)
    return value


def _column_summary(table: Table) -> tuple[dict[str, int], dict[str, float]]:
    unique_values: dict[str, int] = {}
    null_percentage: dict[str, float] = {}
    total = table.row_count

    for i, column in enumerate(table.columns):
        non_null = [v for v in table.column_values(i) if v is not None]
        unique_values[column.name] = len({_hashable(v) for v in non_null})
        null_percentage[column.name] = (
            round((total - len(non_null)) / total * 100, 2) if total else 0.0
        )
    return unique_values, null_percentage


# ── Numerical ────────────────────────────────────────────────────


def lower_median(values: list[float]) -> float:
    ordered = sorted(values)
    return ordered[(len(ordered) - 1) // 2]


def _numerical_stats(
    column: str, values: list[float], policy: StatisticsPolicy
) -> NumericalStats | None:
    if not values:
        return None

    n = len(values)
    mean = math.fsum(values) / n
    median = lower_median(values)
    std_dev = math.sqrt(math.fsum((v - mean) ** 2 for v in values) / n)

    outliers: list[float] = []
    if std_dev > 0:
        limit = policy.outlier_multiplier * std_dev
        outliers = [v for v in values if abs(v - mean) > limit][: policy.max_outliers]

    return NumericalStats(
        column=column,
        mean=round(mean, 2),
        median=round(median, 2),
        std_dev=round(std_dev, 2),
        outliers=outliers,
        distribution=_classify_distribution(values, mean, std_dev, policy),
    )


def _classify_distribution(
    values: list[float], mean: float, std_dev: float, policy: StatisticsPolicy
) -> str:
    if len(values) < 3:
        return "unknown"
    if std_dev == 0:
        return "normal"

    skewness = math.fsum(((v - mean) / std_dev) ** 3 for v in values) / len(values)
    if abs(skewness) < policy.normal_skew:
        return "normal"
    if abs(skewness) < policy.skewed_skew:
        return "skewed"

    spread = max(values) - min(values)
    if spread > 0 and std_dev / spread < policy.uniform_spread:
        return "uniform"
    return "skewed"


# ── Temporal ─────────────────────────────────────────────────────


def _temporal_stats(
    table: Table,
    date_index: int,
    numeric_index: int | None,
    policy: StatisticsPolicy,
) -> TemporalStats | None:
    declared = _is_datetime_type(table.columns[date_index].type.lower())
    points: list[tuple[datetime, float | None]] = []
    for row in table.rows:
        ts = parse_timestamp(row[date_index], allow_numeric=declared)
        if ts is None:
            continue
        value = to_number(row[numeric_index]) if numeric_index is not None else None
        points.append((ts, value))

    if not points:
        return None

    points.sort(key=lambda p: p[0])
    timestamps = [p[0] for p in points]
    series = [p[1] for p in points if p[1] is not None]

    if len(series) >= 3:
        trend = _series_trend(series, policy)
    else:
        trend = _density_trend(timestamps, policy)

    return TemporalStats(
        column=table.columns[date_index].name,
        time_range=TimeRange(start=timestamps[0], end=timestamps[-1]),
        trend=trend,
        gaps=_find_gaps(timestamps, policy),
    )


def _relative_change(first: float, second: float) -> float:
    base = abs(first) or abs(second)
    if base == 0:
        return 0.0
    return (second - first) / base


def _series_trend(series: list[float], policy: StatisticsPolicy) -> str:
    """First-half mean vs second-half mean of the time-ordered values."""
    n = len(series)
    if n < 3:
        return "unknown"

    half = n // 2
    first = math.fsum(series[:half]) / half
    second = math.fsum(series[n - half:]) / half
    change = _relative_change(first, second)

    if change > policy.trend_threshold:
        return "increasing"
    if change < -policy.trend_threshold:
        return "decreasing"
    if n >= 6 and _direction_flip_ratio(series) >= policy.seasonal_flip_ratio:
        return "seasonal"
    return "stable"


def _direction_flip_ratio(series: list[float]) -> float:
    signs = [
        1 if b > a else -1
        for a, b in zip(series, series[1:])
        if b != a
    ]
    if len(signs) < 2:
        return 0.0
    flips = sum(1 for a, b in zip(signs, signs[1:]) if a != b)
    return flips / (len(signs) - 1)


def _density_trend(timestamps: list[datetime], policy: StatisticsPolicy) -> str:
    """Without a value column, compare how many events fall in each half of the range."""
    if len(timestamps) < 3:
        return "unknown"
    start, end = timestamps[0], timestamps[-1]
    if end == start:
        return "stable"

    midpoint = start + (end - start) / 2
    first = sum(1 for ts in timestamps if ts < midpoint)
    second = len(timestamps) - first
    change = _relative_change(float(first), float(second))

    if change > policy.trend_threshold:
        return "increasing"
    if change < -policy.trend_threshold:
        return "decreasing"
    return "stable"


def _find_gaps(timestamps: list[datetime], policy: StatisticsPolicy) -> list[Gap]:
    intervals = [
        (b - a).total_seconds() for a, b in zip(timestamps, timestamps[1:])
    ]
    positive = [i for i in intervals if i > 0]
    if len(positive) < 2:
        return []

    threshold = lower_median(positive) * policy.gap_multiplier
    gaps: list[Gap] = []
    for (a, b), interval in zip(zip(timestamps, timestamps[1:]), intervals):
        if interval > threshold:
            gaps.append(Gap(start=a, end=b))
            if len(gaps) >= _MAX_GAPS:
                break
    return gaps


def bucket_hint(time_range: TimeRange) -> timedelta:
    """Bucket size that splits *time_range* into roughly 24–60 bins."""
    span = (time_range.end - time_range.start).total_seconds()
    for bucket in (60, 300, 900, 3600, 6 * 3600, 86400):
        if span / bucket <= 60:
            return timedelta(seconds=bucket)
    return timedelta(days=7)
