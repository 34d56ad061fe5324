"""HogQL time-series and breakdown query composition.

Every series is aligned on one bucket axis generated from the requested window
(``date_array_clause`` in HogQL, ``date_buckets`` in Python), so all breakdowns
share the same x-axis even when some buckets have no events.

Two sentinel breakdown values are reserved by the warehouse:

    BREAKDOWN_OTHER - rows folded past the top-N limit
    BREAKDOWN_NULL  - rows whose breakdown property is null or empty

Ordering always puts real values first, then the null bucket, then "other".
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Literal

from common.errors import ValidationError
from rest.utils.filters import (
    TRUE,
    Expr,
    format_date_for_hogql,
    parse_datetime,
    quote,
    render,
    validate_identifier,
)

Interval = Literal["day", "week", "month"]
INTERVALS: tuple[str, ...] = ("day", "week", "month")

BREAKDOWN_OTHER = "$$_posthog_breakdown_other_$$"
BREAKDOWN_NULL = "$$_posthog_breakdown_null_$$"

QUERY_ROW_LIMIT = 50000

_INTERVAL_FUNCS = {
    "day": "toIntervalDay",
    "week": "toIntervalWeek",
    "month": "toIntervalMonth",
}

_BUCKET_FUNCS = {
    "day": "toStartOfDay",
    "week": "toStartOfWeek",
    "month": "toStartOfMonth",
}


def check_interval(interval: str) -> str:
    if interval not in INTERVALS:
        raise ValidationError("intervalUnit must be 'day', 'week', or 'month'")
    return interval


def _start_of(expr: str, interval: str) -> str:
    # toStartOfWeek takes a week mode, not an interval
    if interval == "week":
        return f"toStartOfWeek({expr})"
    return f"toStartOfInterval({expr}, {_INTERVAL_FUNCS[interval]}(1))"


def bucket_start_clause(field: str, interval: str = "day") -> str:
    """Truncate ``field`` to the start of its bucket."""
    return f"{_BUCKET_FUNCS[check_interval(interval)]}({field})"


def date_array_clause(start: str | datetime, end: str | datetime, interval: str = "day") -> str:
    """Inclusive array of bucket starts covering ``start`` through ``end``."""
    check_interval(interval)
    interval_func = _INTERVAL_FUNCS[interval]
    start_expr = _start_of(
        f"assumeNotNull(toDateTime({quote(format_date_for_hogql(start))}))", interval
    )
    end_expr = _start_of(
        f"assumeNotNull(toDateTime({quote(format_date_for_hogql(end))}))", interval
    )
    return (
        f"arrayMap(number -> plus({start_expr}, {interval_func}(number)), "
        f"range(0, plus(coalesce(dateDiff('{interval}', {start_expr}, {end_expr})), 1)))"
    )


def bucket_start(day: date, interval: str) -> date:
    """Start of the bucket containing ``day``."""
    if interval == "week":
        # Sunday-based weeks, matching toStartOfWeek's default mode
        return day - timedelta(days=(day.weekday() + 1) % 7)
    if interval == "month":
        return day.replace(day=1)
    return day


def _next_bucket(day: date, interval: str) -> date:
    if interval == "week":
        return day + timedelta(days=7)
    if interval == "month":
        if day.month == 12:
            return day.replace(year=day.year + 1, month=1)
        return day.replace(month=day.month + 1)
    return day + timedelta(days=1)


def date_buckets(start: str | datetime, end: str | datetime, interval: str = "day") -> list[str]:
    """The bucket axis computed locally, as ``YYYY-MM-DD`` strings.

    >>> date_buckets("2024-01-30T12:00:00Z", "2024-03-01T00:00:00Z", "month")
    ['2024-01-01', '2024-02-01', '2024-03-01']
    """
    check_interval(interval)
    current = bucket_start(parse_datetime(start).date(), interval)
    last = bucket_start(parse_datetime(end).date(), interval)
    buckets = []
    while current <= last:
        buckets.append(current.isoformat())
        current = _next_bucket(current, interval)
    return buckets


def cumulative_fill_clause(date_alias: str = "date") -> str:
    """Per bucket cumulative value, holding the last positive value through gaps."""
    return f"arrayFill(x -> greater(x, 0), {direct_time_series_clause(date_alias)})"


def direct_time_series_clause(date_alias: str = "date") -> str:
    """Per bucket value without hold-fill."""
    return (
        "arrayMap(_match_date -> arraySum(arraySlice(groupArray(ifNull(count, 0)), "
        "indexOf(groupArray(day_start) AS _days_for_count, _match_date) AS _index, "
        "plus(minus(arrayLastIndex(x -> equals(x, _match_date), _days_for_count), _index), 1))), "
        f"{date_alias})"
    )


def fill_forward(values: list[float | None]) -> list[float]:
    """Python counterpart of ``cumulative_fill_clause``.

    Missing (None) or non-positive entries take the last positive value seen;
    leading gaps stay at zero.

    >>> fill_forward([None, 3, None, 0, 5])
    [0, 3, 3, 3, 5]
    """
    filled: list[float] = []
    last = None
    for value in values:
        if value is not None and value > 0:
            last = value
            filled.append(value)
        elif last is not None:
            filled.append(last)
        else:
            filled.append(value or 0)
    return filled


def breakdown_ordering_clause(field: str = "breakdown_value", is_array: bool = True) -> str:
    """Sort key: 0 for real values, 1 for the null bucket, 2 for "other"."""
    test = "has" if is_array else "equals"
    return (
        f"if({test}({field}, {quote(BREAKDOWN_OTHER)}), 2, "
        f"if({test}({field}, {quote(BREAKDOWN_NULL)}), 1, 0))"
    )


def breakdown_order_by(
    field: str = "breakdown_value", is_array: bool = True, total_alias: str = "total"
) -> str:
    """Full ORDER BY list: sentinels last, then final value desc, then name."""
    return (
        f"{breakdown_ordering_clause(field, is_array)} ASC, "
        f"arrayElement({total_alias}, -1) DESC, "
        f"{field} ASC"
    )


def breakdown_limit_clause(top_n: int = 25, is_array: bool = True) -> str:
    """Rename breakdowns past the first ``top_n`` rows to the other sentinel."""
    condition = f"ifNull(greaterOrEquals(row_number, {int(top_n)}), 0)"
    if is_array:
        return f"arrayMap(i -> if({condition}, {quote(BREAKDOWN_OTHER)}, i), breakdown_value)"
    return f"if({condition}, {quote(BREAKDOWN_OTHER)}, breakdown_value)"


def breakdown_value_clause(field: str, use_array: bool = True) -> str:
    """Null-safe breakdown value; null or empty becomes the null sentinel."""
    value = f"ifNull(nullIf(toString({field}), ''), {quote(BREAKDOWN_NULL)})"
    return f"[{value}]" if use_array else value


def cumulative_window_function(partition_by: str | None = None) -> str:
    if partition_by:
        return f"sum(count) OVER (PARTITION BY {partition_by} ORDER BY day_start ASC)"
    return "sum(count) OVER (ORDER BY day_start ASC)"


def _counted_source(
    source: str,
    where: Expr,
    breakdown_field: str,
    timestamp_field: str,
    interval: str,
    count_expr: str,
    distinct_on: str | None,
) -> str:
    """Innermost SELECT producing ``count, day_start, breakdown_value_1`` rows.

    With ``distinct_on`` each entity is counted once, in the bucket it was
    first seen.
    """
    bucket = bucket_start_clause(timestamp_field, interval)
    value = breakdown_value_clause(breakdown_field, use_array=False)
    if distinct_on:
        return f"""
            SELECT
                count() AS count,
                day_start,
                breakdown_value_1
            FROM (
                SELECT
                    {distinct_on} AS entity,
                    min({bucket}) AS day_start,
                    {value} AS breakdown_value_1
                FROM {source}
                WHERE {render(where)}
                GROUP BY entity, breakdown_value_1
            )
            GROUP BY day_start, breakdown_value_1"""
    return f"""
            SELECT
                {count_expr} AS count,
                {bucket} AS day_start,
                {value} AS breakdown_value_1
            FROM {source}
            WHERE {render(where)}
            GROUP BY day_start, breakdown_value_1"""


@dataclass
class CumulativeBreakdownQuery:
    """Breakdown query returning nested-array rows ``(dates[], values[], breakdown)``.

    Rows past ``top_n`` are folded by the warehouse into the other sentinel.
    With ``cumulative=False`` each bucket holds that bucket's own count.

    Attributes:
        start: Window start (ISO-8601)
        end: Window end (ISO-8601)
        source: FROM clause, e.g. ``events AS e``
        breakdown_field: Property or column the series are split by
        where: Filter expression applied to ``source``
        timestamp_field: Column bucketed on the date axis
        interval: ``day``, ``week`` or ``month``
        top_n: Breakdowns kept before folding into "other"
        is_array: Wrap breakdown values in single-element arrays
        cumulative: Running totals (hold-filled) instead of per-bucket counts
        count_expr: Aggregate counted per bucket
        distinct_on: Count each value of this expression once, when first seen
    """

    start: str | datetime
    end: str | datetime
    source: str
    breakdown_field: str
    where: Expr = TRUE
    timestamp_field: str = "timestamp"
    interval: str = "day"
    top_n: int = 25
    is_array: bool = True
    cumulative: bool = True
    count_expr: str = "count()"
    distinct_on: str | None = None

    def render(self) -> str:
        check_interval(self.interval)
        validate_identifier(self.breakdown_field)
        inner = _counted_source(
            self.source,
            self.where,
            self.breakdown_field,
            self.timestamp_field,
            self.interval,
            self.count_expr,
            self.distinct_on,
        )
        wrapped = "[breakdown_value_1]" if self.is_array else "breakdown_value_1"
        grouped = f"""
          SELECT
            sum(count) AS count,
            day_start,
            {wrapped} AS breakdown_value
          FROM ({inner}
          )
          GROUP BY day_start, breakdown_value_1
          ORDER BY day_start ASC, breakdown_value ASC"""
        if self.cumulative:
            grouped = f"""
          SELECT
            day_start,
            {cumulative_window_function("breakdown_value")} AS count,
            breakdown_value
          FROM ({grouped}
          )
          ORDER BY day_start ASC"""
        fill = (
            cumulative_fill_clause("date") if self.cumulative else direct_time_series_clause("date")
        )
        order_by = breakdown_order_by("breakdown_value", self.is_array)
        not_null = (
            "arrayExists(x -> isNotNull(x), breakdown_value)"
            if self.is_array
            else "isNotNull(breakdown_value)"
        )
        return f"""
      SELECT
        groupArray(1)(date)[1] AS date,
        arrayFold((acc, x) -> arrayMap(i -> plus(acc[i], x[i]), range(1, plus(length(date), 1))), groupArray(ifNull(total, 0)), arrayWithConstant(length(date), reinterpretAsFloat64(0))) AS total,
        {breakdown_limit_clause(self.top_n, self.is_array)} AS breakdown_value
      FROM (
        SELECT
          {date_array_clause(self.start, self.end, self.interval)} AS date,
          {fill} AS total,
          breakdown_value AS breakdown_value,
          rowNumberInAllBlocks() AS row_number
        FROM ({grouped}
        )
        GROUP BY breakdown_value
        ORDER BY {order_by}
      )
      WHERE {not_null}
      GROUP BY breakdown_value
      ORDER BY {order_by}
      LIMIT {QUERY_ROW_LIMIT}
    """


@dataclass
class CumulativeRowsQuery:
    """Long-format cumulative query returning ``(date, breakdown, cumulative)`` rows.

    Top-N folding and bucket alignment happen in Python
    (``parse_cumulative_rows`` and ``top_n_with_other``).
    """

    source: str
    breakdown_field: str
    where: Expr = TRUE
    timestamp_field: str = "timestamp"
    interval: str = "day"
    count_expr: str = "count()"
    distinct_on: str | None = None

    def render(self) -> str:
        check_interval(self.interval)
        validate_identifier(self.breakdown_field)
        inner = _counted_source(
            self.source,
            self.where,
            self.breakdown_field,
            self.timestamp_field,
            self.interval,
            self.count_expr,
            self.distinct_on,
        )
        return f"""
      SELECT
        day_start AS date,
        breakdown_value_1 AS breakdown,
        {cumulative_window_function("breakdown_value_1")} AS cumulative
      FROM ({inner}
      )
      ORDER BY date ASC, breakdown ASC
      LIMIT {QUERY_ROW_LIMIT}
    """
