"""Filter expressions for HogQL event queries.

Filters are built as a small tagged expression tree and turned into HogQL text
by a single ``render`` function:

    Predicate  - a leaf holding one already-rendered boolean fragment
    And        - a conjunction node over child expressions
    TRUE       - the always-true expression, rendered as ``1 = 1``

``conjunction`` applies the combine rules used everywhere in the query layer:

    []          -> TRUE                 (rendered ``1 = 1``)
    [a]         -> a                    (no redundant wrapping)
    [a, b, ...] -> And((a, b, ...))     (rendered ``and(a, b, ...)``)

Example:
    >>> render(conjunction([event_filter("signup"), Predicate("x > 1")]))
    "and(equals(event, 'signup'), x > 1)"
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Union

from common.errors import ValidationError
from common.settings import DEFAULT_INTERNAL_IPS

# Person cohort holding known developers
DEVELOPER_COHORT_ID = 172499
DEVELOPER_COHORT_VERSION = 40

INTERNAL_REFERRING_DOMAIN = "commercial-company"
INTERNAL_EMAIL_DOMAIN = "fiveonefour.com"
INTERNAL_PATH = "/studio"

HOGQL_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Property paths such as ``properties.cli_name`` or ``org_id``
_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_.$]*$")


@dataclass(frozen=True)
class Predicate:
    """Leaf expression holding a rendered boolean fragment."""

    sql: str


@dataclass(frozen=True)
class And:
    """Conjunction of child expressions."""

    children: tuple["Expr", ...]


@dataclass(frozen=True)
class TrueExpr:
    """Always-true expression."""


TRUE = TrueExpr()

Expr = Union[Predicate, And, TrueExpr]


@dataclass
class FilterOptions:
    """Toggles for internal-traffic exclusion.

    Every toggle defaults to on. A disabled toggle contributes no predicate.

    Attributes:
        exclude_localhost: Drop events whose host is localhost / 127.0.0.1
        exclude_internal_ips: Drop events from the configured internal IPs
        exclude_internal_paths: Drop events on internal (studio) paths
        exclude_internal_domains: Drop events referred by internal domains
        exclude_developers: Drop events flagged as developer traffic
        exclude_internal_emails: Drop events from internal email accounts
        exclude_developer_cohort: Drop persons in the developer cohort
    """

    exclude_localhost: bool = True
    exclude_internal_ips: bool = True
    exclude_internal_paths: bool = True
    exclude_internal_domains: bool = True
    exclude_developers: bool = True
    exclude_internal_emails: bool = True
    exclude_developer_cohort: bool = True


def render(expr: Expr) -> str:
    """Render an expression tree to HogQL text."""
    if isinstance(expr, TrueExpr):
        return "1 = 1"
    if isinstance(expr, Predicate):
        return expr.sql
    if isinstance(expr, And):
        parts = [render(child) for child in expr.children]
        if not parts:
            return "1 = 1"
        if len(parts) == 1:
            return parts[0]
        return f"and({', '.join(parts)})"
    raise TypeError(f"Unsupported filter expression: {expr!r}")


def conjunction(exprs: Iterable[Expr]) -> Expr:
    """AND expressions together following the combine rules."""
    items = tuple(exprs)
    if not items:
        return TRUE
    if len(items) == 1:
        return items[0]
    return And(items)


def combine_filters(filters: list[str]) -> str:
    """Combine rendered fragments with AND."""
    return render(conjunction(Predicate(f) for f in filters))


def quote(value: str) -> str:
    """Quote a string literal for HogQL."""
    escaped = str(value).replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def validate_identifier(value: str) -> str:
    """Return ``value`` if it is a safe property path, else raise ValidationError."""
    if not value or not _IDENTIFIER_RE.match(value):
        raise ValidationError(f"Invalid breakdown property: {value!r}")
    return value


def parse_datetime(value: str | datetime) -> datetime:
    """Parse an ISO-8601 timestamp into an aware UTC datetime.

    Naive inputs are treated as UTC.
    """
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).strip())
        except ValueError as e:
            raise ValidationError(
                f"Invalid date format: {value!r}. Use ISO 8601 format."
            ) from e
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_date_for_hogql(value: str | datetime) -> str:
    """Format an ISO-8601 timestamp as ``YYYY-MM-DD HH:MM:SS`` in UTC.

    >>> format_date_for_hogql("2024-01-15T10:30:00.000Z")
    '2024-01-15 10:30:00'
    """
    return parse_datetime(value).strftime(HOGQL_DATE_FORMAT)


def date_range_filter(
    start: str | datetime,
    end: str | datetime,
    field: str = "timestamp",
    end_inclusive: bool = True,
) -> list[Predicate]:
    """Date range from the start of ``start``'s day through ``end``.

    With ``end_inclusive=False`` the upper bound is strict, so a window ending
    where another begins shares no events with it.
    """
    start_literal = quote(format_date_for_hogql(start))
    end_literal = quote(format_date_for_hogql(end))
    upper = "lessOrEquals" if end_inclusive else "less"
    return [
        Predicate(
            f"greaterOrEquals({field}, toStartOfInterval("
            f"assumeNotNull(toDateTime({start_literal})), toIntervalDay(1)))"
        ),
        Predicate(f"{upper}({field}, assumeNotNull(toDateTime({end_literal})))"),
    ]


def internal_traffic_filters(
    options: FilterOptions | None = None,
    internal_ips: Iterable[str] = DEFAULT_INTERNAL_IPS,
) -> list[Predicate]:
    """Predicates excluding internal and developer traffic."""
    options = options or FilterOptions()
    filters: list[Predicate] = []

    if options.exclude_localhost:
        filters.append(
            Predicate(
                "ifNull(not(match(toString(properties.$host), "
                "'^(localhost|127\\.0\\.0\\.1)($|:)')), 1)"
            )
        )

    ips = [quote(ip) for ip in internal_ips]
    if options.exclude_internal_ips and ips:
        filters.append(Predicate(f"notIn(properties.$ip, tuple({', '.join(ips)}))"))

    if options.exclude_internal_paths:
        filters.append(
            Predicate(f"notILike(toString(properties.$pathname), '%{INTERNAL_PATH}%')")
        )

    if options.exclude_internal_domains:
        filters.append(
            Predicate(
                "notILike(toString(properties.$referring_domain), "
                f"'%{INTERNAL_REFERRING_DOMAIN}%')"
            )
        )

    if options.exclude_developers:
        filters.append(Predicate("notEquals(properties.is_moose_developer, true)"))
        filters.append(Predicate("notEquals(properties.is_developer, true)"))

    if options.exclude_internal_emails:
        filters.append(
            Predicate(
                f"notILike(toString(person.properties.email), '%{INTERNAL_EMAIL_DOMAIN}%')"
            )
        )

    if options.exclude_developer_cohort:
        filters.append(
            Predicate(
                "notIn(person_id, (SELECT person_id FROM raw_cohort_people WHERE "
                f"and(equals(cohort_id, {DEVELOPER_COHORT_ID}), "
                f"equals(version, {DEVELOPER_COHORT_VERSION}))))"
            )
        )

    return filters


def event_filter(name: str) -> Predicate:
    return Predicate(f"equals(event, {quote(name)})")


def exclude_deleted_actions_filter() -> Predicate:
    """Drop webhook events whose action is a deletion (e.g. an unstarred repo)."""
    return Predicate("notEquals(properties.action, 'deleted')")


def deleted_actions_filter() -> Predicate:
    return Predicate("equals(properties.action, 'deleted')")


def product_group_filter(
    products: Iterable[str],
    group_key: str = "properties_group_custom",
    group_index: str = "%(hogql_val_2)s",
) -> Predicate:
    """Match events whose custom product group is one of ``products``."""
    product_tuple = ", ".join(quote(p) for p in products)
    return Predicate(f"in(e.{group_key}[{group_index}], tuple({product_tuple}))")


def build_where_clause(
    start: str | datetime,
    end: str | datetime,
    event_name: str | None = None,
    options: FilterOptions | None = None,
    extra: Iterable[Expr] = (),
    internal_ips: Iterable[str] = DEFAULT_INTERNAL_IPS,
    end_inclusive: bool = True,
) -> str:
    """Build a complete WHERE clause.

    Order: date range, event name, internal-traffic exclusions, extra filters.
    """
    filters: list[Expr] = [*date_range_filter(start, end, end_inclusive=end_inclusive)]
    if event_name:
        filters.append(event_filter(event_name))
    filters.extend(internal_traffic_filters(options, internal_ips))
    filters.extend(extra)
    return render(conjunction(filters))
