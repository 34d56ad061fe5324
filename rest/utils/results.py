"""Decoding of warehouse result rows into typed metrics.

Decoders never raise on malformed rows: a row with an unexpected shape is
skipped, and an empty or missing result yields an empty list.

Row shapes:
    parse_cumulative / parse_breakdown(TIME_SERIES):
        (dates[], values[], breakdown)   breakdown may be a 1-element array
    parse_breakdown(AGGREGATE):
        (breakdown, value)
    parse_cumulative_rows:
        (date, breakdown, cumulative)    one row per bucket and breakdown
"""

import logging
from datetime import date, datetime
from typing import Any

from common.errors import ValidationError
from rest.config.metrics import BreakdownSeries, ChartSlice, DataPoint, QueryKind, SeriesPoint
from rest.utils.filters import parse_datetime
from rest.utils.timeseries import BREAKDOWN_NULL, BREAKDOWN_OTHER, bucket_start, check_interval

logger = logging.getLogger(__name__)

OTHER = "other"
UNKNOWN = "unknown"


def _is_sequence(value: Any) -> bool:
    return isinstance(value, (list, tuple))


def to_number(value: Any) -> float:
    if isinstance(value, bool) or value is None:
        return 0
    if isinstance(value, (int, float)):
        return value
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0


def _date_str(value: Any) -> str:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def _date_key(value: Any) -> str:
    """Day-resolution key used to align rows on the bucket axis."""
    return _date_str(value)[:10]


def _breakdown_str(value: Any) -> str | None:
    if _is_sequence(value):
        value = value[0] if value else None
    if value is None:
        return None
    return str(value)


def is_unknown_breakdown(key: str | None) -> bool:
    """Null sentinel, empty, or the literal "unknown"."""
    return not key or key == BREAKDOWN_NULL or key.lower() == UNKNOWN


def is_other_breakdown(key: str | None) -> bool:
    return key in (BREAKDOWN_OTHER, OTHER)


def first_row(rows: list[Any] | None, width: int) -> list[float]:
    """Numeric cells of a single-row aggregate result, zero-padded to ``width``."""
    row = rows[0] if rows and _is_sequence(rows[0]) else []
    return [to_number(row[i]) if i < len(row) else 0 for i in range(width)]


def parse_cumulative(rows: list[Any] | None) -> list[DataPoint]:
    """Expand nested-array rows into one point per (date, breakdown)."""
    points: list[DataPoint] = []
    for row in rows or []:
        if not _is_sequence(row) or len(row) < 2:
            continue
        dates, values = row[0], row[1]
        if not _is_sequence(dates) or not _is_sequence(values):
            continue
        breakdown = _breakdown_str(row[2]) if len(row) > 2 else None
        for i, day in enumerate(dates):
            value = values[i] if i < len(values) else 0
            points.append(
                DataPoint(date=_date_str(day), value=to_number(value), breakdown=breakdown or None)
            )
    return points


def parse_breakdown(
    rows: list[Any] | None, kind: QueryKind = QueryKind.TIME_SERIES
) -> list[BreakdownSeries]:
    """Decode breakdown rows of the given ``kind``.

    TIME_SERIES totals are the sum of the series values. Breakdowns missing a
    value are reported as "unknown".
    """
    series: list[BreakdownSeries] = []
    for row in rows or []:
        if not _is_sequence(row) or len(row) < 2:
            continue
        if kind == QueryKind.TIME_SERIES:
            dates, values = row[0], row[1]
            if not _is_sequence(dates) or not _is_sequence(values):
                continue
            breakdown = _breakdown_str(row[2]) if len(row) > 2 else None
            time_series = [
                SeriesPoint(
                    date=_date_str(day),
                    value=to_number(values[i] if i < len(values) else 0),
                )
                for i, day in enumerate(dates)
            ]
            series.append(
                BreakdownSeries(
                    breakdown=breakdown or UNKNOWN,
                    total=sum(p.value for p in time_series),
                    time_series=time_series,
                )
            )
        else:
            breakdown = _breakdown_str(row[0])
            series.append(BreakdownSeries(breakdown=breakdown or UNKNOWN, total=to_number(row[1])))
    return sort_breakdowns(series)


def parse_cumulative_rows(
    rows: list[Any] | None, buckets: list[str] | None = None
) -> tuple[list[DataPoint], list[BreakdownSeries]]:
    """Decode long ``(date, breakdown, cumulative)`` rows.

    Returns the raw points (one per well-formed row) and one series per
    breakdown aligned on ``buckets`` (plus any dates seen in the rows), holding
    the last cumulative value through buckets without a row. A series total
    is its final cumulative value.
    """
    points: list[DataPoint] = []
    by_breakdown: dict[str, dict[str, float]] = {}
    for row in rows or []:
        if not _is_sequence(row) or len(row) < 3:
            continue
        breakdown = _breakdown_str(row[1]) or UNKNOWN
        value = to_number(row[2])
        points.append(DataPoint(date=_date_str(row[0]), value=value, breakdown=breakdown))
        by_breakdown.setdefault(breakdown, {})[_date_key(row[0])] = value

    axis = sorted(set(buckets or []).union(*(values.keys() for values in by_breakdown.values())))
    series = []
    for breakdown, values in by_breakdown.items():
        current = 0
        time_series = []
        for day in axis:
            current = values.get(day, current)
            time_series.append(SeriesPoint(date=day, value=current))
        series.append(BreakdownSeries(breakdown=breakdown, total=current, time_series=time_series))
    return points, sort_breakdowns(series)


def _rank(key: str) -> int:
    if is_other_breakdown(key):
        return 2
    if key == BREAKDOWN_NULL:
        return 1
    return 0


def sort_breakdowns(series: list[BreakdownSeries]) -> list[BreakdownSeries]:
    """Total descending, ties by name, with null and other buckets last."""
    return sorted(series, key=lambda s: (_rank(s.breakdown), -s.total, s.breakdown))


def top_n_with_other(series: list[BreakdownSeries], n: int) -> list[BreakdownSeries]:
    """Keep the ``n`` largest breakdowns and fold the rest into one "other".

    The "other" series is present only when something was folded. Its total is
    the sum of folded totals and its points are summed by index.
    """
    if n < 0:
        raise ValueError("n must be non-negative")
    regular = sorted(
        (s for s in series if not is_other_breakdown(s.breakdown)),
        key=lambda s: (-s.total, s.breakdown),
    )
    kept = sort_breakdowns(regular[:n])
    folded = regular[n:] + [s for s in series if is_other_breakdown(s.breakdown)]
    if not folded:
        return kept

    length = max(len(s.time_series) for s in folded)
    time_series = []
    for i in range(length):
        day = next(s.time_series[i].date for s in folded if i < len(s.time_series))
        value = sum(s.time_series[i].value for s in folded if i < len(s.time_series))
        time_series.append(SeriesPoint(date=day, value=value))

    other = BreakdownSeries(
        breakdown=OTHER,
        total=sum(s.total for s in folded),
        time_series=time_series,
    )
    return kept + [other]


def percentage_change(current: float, previous: float) -> float:
    """Percent change from ``previous`` to ``current``.

    >>> percentage_change(150, 100)
    50.0
    >>> percentage_change(50, 0)
    100
    """
    if previous == 0:
        return 100 if current > 0 else 0
    return (current - previous) / previous * 100


def growth_rate(values: list[float]) -> float:
    """Percent change between the first and last value."""
    if len(values) < 2:
        return 0
    return percentage_change(values[-1], values[0])


def flatten_time_series(points: list[DataPoint]) -> list[dict[str, Any]]:
    """Pivot points into chart rows ``{"date": ..., <breakdown>: value}``."""
    by_date: dict[str, dict[str, Any]] = {}
    for point in points:
        row = by_date.setdefault(point.date, {"date": point.date})
        row[point.breakdown or "value"] = point.value
    return [by_date[day] for day in sorted(by_date)]


def aggregate_by_period(points: list[SeriesPoint], period: str) -> list[SeriesPoint]:
    """Sum points into day, week (Sunday-based) or month buckets."""
    check_interval(period)
    totals: dict[str, float] = {}
    for point in points:
        try:
            day = parse_datetime(point.date).date()
        except ValidationError:
            logger.warning(f"Skipping point with unparseable date {point.date!r}")
            continue
        key = bucket_start(day, period).isoformat()
        totals[key] = totals.get(key, 0) + point.value
    return [SeriesPoint(date=key, value=totals[key]) for key in sorted(totals)]


def breakdown_for_chart(series: list[BreakdownSeries]) -> list[ChartSlice]:
    """Pie/bar chart slices: null bucket shown as "Unknown", other dropped."""
    slices = [
        ChartSlice(name="Unknown" if s.breakdown == BREAKDOWN_NULL else s.breakdown, value=s.total)
        for s in series
        if not is_other_breakdown(s.breakdown)
    ]
    return sorted(slices, key=lambda s: -s.value)
