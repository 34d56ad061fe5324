"""Dashboard metrics computed from the analytics warehouse."""

import logging
from collections.abc import Iterable

from common.errors import NotFoundError, ValidationError
from common.settings import DEFAULT_INTERNAL_IPS
from db.warehouse import WarehouseService
from rest.config.journeys import event_label, get_journey
from rest.config.metrics import (
    CommandMetrics,
    ConversionFunnel,
    CumulativeInstallMetrics,
    CumulativeProjectsMetrics,
    DeploymentMetrics,
    EventSummary,
    FunnelStep,
    GitHubStarMetrics,
    PageStat,
    QueryKind,
    RecentDeployment,
    ReferrerStat,
    SeriesPoint,
    TimeWindow,
    TrafficPoint,
    TrafficSourceMetrics,
    UtmStat,
    WebTrafficMetrics,
)
from rest.utils.filters import (
    FilterOptions,
    Predicate,
    build_where_clause,
    conjunction,
    date_range_filter,
    deleted_actions_filter,
    exclude_deleted_actions_filter,
    product_group_filter,
    quote,
    render,
)
from rest.utils.results import (
    aggregate_by_period,
    breakdown_for_chart,
    first_row,
    growth_rate,
    is_unknown_breakdown,
    parse_breakdown,
    parse_cumulative,
    parse_cumulative_rows,
    percentage_change,
    to_number,
    top_n_with_other,
)
from rest.utils.timeseries import (
    CumulativeBreakdownQuery,
    CumulativeRowsQuery,
    check_interval,
    date_buckets,
    fill_forward,
)

logger = logging.getLogger(__name__)

INSTALL_EVENT = "fiveonefour_cli_install_script_run"
COMMAND_EVENT = "moose_cli_command"
STAR_EVENT = "GitHub Star"
PAGEVIEW_EVENT = "$pageview"
DEFAULT_PRODUCTS = ("moose", "aurora", "sloan")
DEFAULT_TOP_N = 25

_DEPLOYS_SOURCE = """(
                    SELECT
                      d.deploy_id,
                      d.status,
                      d.created_at,
                      p.org_id
                    FROM postgres.deploys AS d
                    JOIN postgres.projects AS p ON equals(d.project_id, p.project_id)
                  ) AS e"""


class MetricsService:
    """Compose warehouse queries and decode them into metric schemas."""

    def __init__(
        self,
        warehouse: WarehouseService,
        internal_ips: Iterable[str] = DEFAULT_INTERNAL_IPS,
    ):
        self.warehouse = warehouse
        self.internal_ips = tuple(internal_ips)

    def _where(self, window: TimeWindow, event_name: str | None = None, extra=()) -> str:
        return build_where_clause(
            window.start_date,
            window.end_date,
            event_name=event_name,
            extra=extra,
            internal_ips=self.internal_ips,
        )

    async def cumulative_projects(
        self,
        window: TimeWindow,
        breakdown_property: str = "org_id",
        interval: str = "month",
        top_n: int = DEFAULT_TOP_N,
    ) -> CumulativeProjectsMetrics:
        """Cumulative projects created per breakdown (organization by default)."""
        check_interval(interval)
        query = CumulativeRowsQuery(
            source="postgres.projects AS e",
            breakdown_field=breakdown_property,
            where=conjunction(
                date_range_filter(window.start_date, window.end_date, field="created_at")
            ),
            timestamp_field="created_at",
            interval=interval,
        )
        result = await self.warehouse.query(query.render())
        points, series = parse_cumulative_rows(
            result.results, date_buckets(window.start_date, window.end_date, interval)
        )

        total_projects = sum(s.total for s in series)
        total_organizations = sum(1 for s in series if not is_unknown_breakdown(s.breakdown))
        logger.info(
            f"Cumulative projects: {total_projects} projects across "
            f"{total_organizations} organizations"
        )
        return CumulativeProjectsMetrics(
            time_window=window,
            total_projects=total_projects,
            total_organizations=total_organizations,
            data_points=points,
            breakdown_series=top_n_with_other(series, top_n),
        )

    async def cumulative_oss_installs(
        self,
        window: TimeWindow,
        breakdown_property: str = "properties.cli_name",
        products: Iterable[str] = DEFAULT_PRODUCTS,
        interval: str = "day",
        top_n: int = DEFAULT_TOP_N,
        exclude_developers: bool = True,
    ) -> CumulativeInstallMetrics:
        """Cumulative distinct installers per breakdown, internal traffic excluded."""
        check_interval(interval)
        options = FilterOptions(
            exclude_developers=exclude_developers,
            exclude_developer_cohort=exclude_developers,
        )
        where = build_where_clause(
            window.start_date,
            window.end_date,
            event_name=INSTALL_EVENT,
            options=options,
            extra=[product_group_filter(products)],
            internal_ips=self.internal_ips,
        )
        query = CumulativeRowsQuery(
            source="events AS e",
            breakdown_field=breakdown_property,
            where=Predicate(where),
            interval=interval,
            distinct_on="e.person_id",
        )
        result = await self.warehouse.query(query.render())
        points, series = parse_cumulative_rows(
            result.results, date_buckets(window.start_date, window.end_date, interval)
        )
        return CumulativeInstallMetrics(
            time_window=window,
            total_installs=sum(s.total for s in series),
            data_points=points,
            breakdown_series=top_n_with_other(series, top_n),
        )

    async def deployment_metrics(
        self,
        window: TimeWindow,
        top_n: int = DEFAULT_TOP_N,
        interval: str = "month",
        statuses: Iterable[str] = (),
    ) -> DeploymentMetrics:
        """Deployments per organization and bucket, plus the latest deployments.

        The breakdown query folds organizations past ``top_n`` into one row, so
        the organization total comes from a separate distinct count.
        """
        filters = date_range_filter(window.start_date, window.end_date, field="created_at")
        statuses = list(statuses)
        if statuses:
            filters.append(Predicate(f"in(status, tuple({', '.join(quote(s) for s in statuses)}))"))

        query = CumulativeBreakdownQuery(
            start=window.start_date,
            end=window.end_date,
            source=_DEPLOYS_SOURCE,
            breakdown_field="org_id",
            where=conjunction(filters),
            timestamp_field="created_at",
            interval=interval,
            top_n=top_n,
            is_array=False,
            cumulative=False,
        )
        result = await self.warehouse.query(query.render())
        series = top_n_with_other(parse_breakdown(result.results, QueryKind.TIME_SERIES), top_n)

        known_org = Predicate("notEquals(ifNull(toString(org_id), ''), '')")
        organizations = await self.warehouse.query(f"""
            SELECT uniqExact(org_id) AS organizations
            FROM {_DEPLOYS_SOURCE}
            WHERE {render(conjunction([*filters, known_org]))}
        """)
        (total_organizations,) = first_row(organizations.results, 1)

        recent = await self.recent_deployments(window)
        return DeploymentMetrics(
            time_window=window,
            total_deployments=sum(s.total for s in series),
            total_organizations=int(total_organizations),
            breakdown_series=series,
            recent_deployments=recent,
        )

    async def recent_deployments(self, window: TimeWindow, limit: int = 20) -> list[RecentDeployment]:
        where = render(
            conjunction(date_range_filter(window.start_date, window.end_date, field="d.created_at"))
        )
        query = f"""
            SELECT
                d.deploy_id,
                p.name AS project_name,
                p.repo_url,
                d.status,
                d.created_at,
                p.org_id
            FROM postgres.deploys AS d
            JOIN postgres.projects AS p ON equals(d.project_id, p.project_id)
            WHERE {where}
            ORDER BY d.created_at DESC
            LIMIT {int(limit)}
        """
        result = await self.warehouse.query(query)
        deployments = []
        for row in result.results:
            if not isinstance(row, (list, tuple)) or len(row) < 6:
                continue
            deployments.append(
                RecentDeployment(
                    deploy_id=str(row[0]),
                    project_name=str(row[1]),
                    repo_url=str(row[2]) if row[2] else None,
                    status=str(row[3]),
                    created_at=str(row[4]),
                    org_id=str(row[5]),
                )
            )
        return deployments

    async def _daily_counts(
        self, window: TimeWindow, event_name: str, end_inclusive: bool = True
    ) -> list[SeriesPoint]:
        where = build_where_clause(
            window.start_date,
            window.end_date,
            event_name=event_name,
            internal_ips=self.internal_ips,
            end_inclusive=end_inclusive,
        )
        query = f"""
            SELECT
                toStartOfDay(timestamp) AS day,
                count() AS total
            FROM events
            WHERE {where}
            GROUP BY day
            ORDER BY day ASC
        """
        result = await self.warehouse.query(query)
        points = []
        for row in result.results:
            if isinstance(row, (list, tuple)) and len(row) >= 2:
                points.append(SeriesPoint(date=str(row[0]), value=to_number(row[1])))
        return points

    async def event_summary(
        self, window: TimeWindow, event_name: str, interval: str = "day"
    ) -> EventSummary:
        """Event volume compared with the previous window of equal length."""
        check_interval(interval)
        current = await self._daily_counts(window, event_name)
        previous = await self._daily_counts(window.previous(), event_name, end_inclusive=False)

        total = sum(p.value for p in current)
        previous_total = sum(p.value for p in previous)
        series = aggregate_by_period(current, interval)
        return EventSummary(
            time_window=window,
            event=event_name,
            total=total,
            previous_total=previous_total,
            percentage_change=percentage_change(total, previous_total),
            growth_rate=growth_rate([p.value for p in series]),
            time_series=series,
        )

    async def command_metrics(
        self, window: TimeWindow, interval: str = "week", top_n: int = DEFAULT_TOP_N
    ) -> CommandMetrics:
        """CLI command invocations per command name and bucket."""
        check_interval(interval)
        where = self._where(window, COMMAND_EVENT)
        query = CumulativeBreakdownQuery(
            start=window.start_date,
            end=window.end_date,
            source="events AS e",
            breakdown_field="properties.command",
            where=Predicate(where),
            interval=interval,
            top_n=top_n,
            cumulative=False,
        )
        result = await self.warehouse.query(query.render())
        parsed = parse_breakdown(result.results, QueryKind.TIME_SERIES)
        return CommandMetrics(
            time_window=window,
            total_commands=sum(s.total for s in parsed),
            breakdown_series=top_n_with_other(parsed, top_n),
            chart=breakdown_for_chart(parsed),
        )

    async def _cumulative_star_counts(
        self, window: TimeWindow, action: Predicate, buckets: list[str]
    ) -> list[float]:
        where = self._where(window, STAR_EVENT, [action])
        query = CumulativeBreakdownQuery(
            start=window.start_date,
            end=window.end_date,
            source="events AS e",
            breakdown_field="event",
            where=Predicate(where),
            interval="day",
            top_n=1,
        )
        result = await self.warehouse.query(query.render())
        by_day: dict[str, float] = {}
        for point in parse_cumulative(result.results):
            by_day[point.date[:10]] = by_day.get(point.date[:10], 0) + point.value
        return fill_forward([by_day.get(day) for day in buckets])

    async def github_star_metrics(self, window: TimeWindow) -> GitHubStarMetrics:
        """Stars added and removed, from the repository's star webhook events."""
        buckets = date_buckets(window.start_date, window.end_date, "day")
        added = await self._cumulative_star_counts(
            window, exclude_deleted_actions_filter(), buckets
        )
        removed = await self._cumulative_star_counts(window, deleted_actions_filter(), buckets)

        stars_added = added[-1] if added else 0
        stars_removed = removed[-1] if removed else 0
        net = stars_added - stars_removed
        return GitHubStarMetrics(
            time_window=window,
            total_stars=net,
            stars_added=stars_added,
            stars_removed=stars_removed,
            net_stars=net,
            time_series=[
                SeriesPoint(date=day, value=a - r) for day, a, r in zip(buckets, added, removed)
            ],
        )

    async def web_traffic(self, window: TimeWindow, top_pages: int = 10) -> WebTrafficMetrics:
        """Pageviews, visitors, sessions, bounce rate and the busiest pages."""
        pageviews = self._where(window, PAGEVIEW_EVENT)

        overall = await self.warehouse.query(f"""
            SELECT
                count() AS total_pageviews,
                count(DISTINCT person_id) AS unique_visitors,
                count(DISTINCT properties.$session_id) AS total_sessions
            FROM events
            WHERE {pageviews}
        """)
        total_pageviews, unique_visitors, total_sessions = first_row(overall.results, 3)

        # A bounced session has exactly one event of any kind
        sessions_where = self._where(window, extra=[Predicate("isNotNull(properties.$session_id)")])
        bounce = await self.warehouse.query(f"""
            SELECT
                countIf(event_count = 1) AS bounced_sessions,
                count() AS total_sessions
            FROM (
                SELECT
                    properties.$session_id AS session_id,
                    count() AS event_count
                FROM events
                WHERE {sessions_where}
                GROUP BY session_id
            )
        """)
        bounced, sessions = first_row(bounce.results, 2)

        pages = await self.warehouse.query(f"""
            SELECT
                properties.$current_url AS pathname,
                count() AS views,
                count(DISTINCT person_id) AS unique_visitors
            FROM events
            WHERE {pageviews}
            GROUP BY pathname
            ORDER BY views DESC
            LIMIT {int(top_pages)}
        """)
        daily = await self.warehouse.query(f"""
            SELECT
                toStartOfDay(timestamp) AS day,
                count() AS pageviews,
                count(DISTINCT person_id) AS visitors,
                count(DISTINCT properties.$session_id) AS sessions
            FROM events
            WHERE {pageviews}
            GROUP BY day
            ORDER BY day ASC
        """)

        return WebTrafficMetrics(
            time_window=window,
            total_pageviews=total_pageviews,
            unique_visitors=unique_visitors,
            total_sessions=total_sessions,
            bounce_rate=bounced / sessions * 100 if sessions else 0,
            top_pages=[
                PageStat(
                    pathname=str(row[0]),
                    views=to_number(row[1]),
                    unique_visitors=to_number(row[2]),
                )
                for row in _rows(pages.results, 3)
            ],
            time_series=[
                TrafficPoint(
                    date=str(row[0]),
                    pageviews=to_number(row[1]),
                    visitors=to_number(row[2]),
                    sessions=to_number(row[3]),
                )
                for row in _rows(daily.results, 4)
            ],
        )

    async def traffic_sources(self, window: TimeWindow, limit: int = 10) -> TrafficSourceMetrics:
        """Visitors by referring domain and UTM campaign, and pageviews by traffic type."""
        referred = self._where(
            window, PAGEVIEW_EVENT, [Predicate("notEquals(properties.$referring_domain, '')")]
        )
        tagged = self._where(window, PAGEVIEW_EVENT, [Predicate("isNotNull(properties.utm_source)")])
        pageviews = self._where(window, PAGEVIEW_EVENT)

        referrers = await self.warehouse.query(f"""
            SELECT
                properties.$referring_domain AS referrer,
                count(DISTINCT person_id) AS visitors
            FROM events
            WHERE {referred}
            GROUP BY referrer
            ORDER BY visitors DESC
            LIMIT {int(limit)}
        """)
        campaigns = await self.warehouse.query(f"""
            SELECT
                properties.utm_source AS source,
                properties.utm_medium AS medium,
                properties.utm_campaign AS campaign,
                count(DISTINCT person_id) AS visitors
            FROM events
            WHERE {tagged}
            GROUP BY source, medium, campaign
            ORDER BY visitors DESC
            LIMIT {int(limit)}
        """)
        kinds = await self.warehouse.query(f"""
            SELECT
                countIf(or(equals(properties.$referring_domain, ''), isNull(properties.$referring_domain))) AS direct,
                countIf(and(notEquals(properties.$referring_domain, ''), isNull(properties.utm_source))) AS organic,
                countIf(isNotNull(properties.utm_source)) AS paid
            FROM events
            WHERE {pageviews}
        """)
        direct, organic, paid = first_row(kinds.results, 3)

        return TrafficSourceMetrics(
            time_window=window,
            by_referrer=[
                ReferrerStat(referrer=str(row[0]), visitors=to_number(row[1]))
                for row in _rows(referrers.results, 2)
            ],
            by_utm_source=[
                UtmStat(
                    source=str(row[0]),
                    medium=str(row[1]) if row[1] else None,
                    campaign=str(row[2]) if row[2] else None,
                    visitors=to_number(row[3]),
                )
                for row in _rows(campaigns.results, 4)
            ],
            direct_traffic=direct,
            organic_traffic=organic,
            paid_traffic=paid,
        )

    async def conversion_funnel(
        self,
        window: TimeWindow,
        events: list[str],
        name: str = "Conversion funnel",
        step_names: list[str] | None = None,
    ) -> ConversionFunnel:
        """Distinct persons per step of ``events``.

        Each step is counted independently over the window; conversion is the
        ratio to the previous step's count.
        """
        if not events:
            raise ValidationError("events must name at least one funnel step")
        step_names = step_names or [f"Step {i + 1}" for i in range(len(events))]

        steps: list[FunnelStep] = []
        previous_users = None
        for step_name, event_name in zip(step_names, events):
            result = await self.warehouse.query(f"""
                SELECT count(DISTINCT person_id) AS user_count
                FROM events
                WHERE {self._where(window, event_name)}
            """)
            (users,) = first_row(result.results, 1)
            if previous_users is None:
                previous_users = users
            rate = users / previous_users * 100 if previous_users else 0
            steps.append(
                FunnelStep(
                    step_name=step_name,
                    event_name=event_name,
                    user_count=users,
                    conversion_rate=rate,
                    drop_off_rate=100 - rate,
                )
            )
            previous_users = users

        in_funnel = Predicate(f"in(event, tuple({', '.join(quote(e) for e in events)}))")
        timing = await self.warehouse.query(f"""
            SELECT avg(dateDiff('second', first_seen, last_seen)) AS avg_time
            FROM (
                SELECT
                    person_id,
                    min(timestamp) AS first_seen,
                    max(timestamp) AS last_seen
                FROM events
                WHERE {self._where(window, extra=[in_funnel])}
                GROUP BY person_id
                HAVING equals(count(DISTINCT event), {len(set(events))})
            )
        """)
        (average_time,) = first_row(timing.results, 1)

        entered = steps[0].user_count
        completed = steps[-1].user_count
        logger.info(f"Funnel {name!r}: {completed}/{entered} persons completed {len(steps)} steps")
        return ConversionFunnel(
            time_window=window,
            funnel_name=name,
            total_entered=entered,
            total_completed=completed,
            overall_conversion_rate=completed / entered * 100 if entered else 0,
            average_time_to_convert=average_time,
            steps=steps,
        )

    async def journey_funnel(self, window: TimeWindow, journey_id: str) -> ConversionFunnel:
        """Conversion funnel over a cataloged journey's events."""
        journey = get_journey(journey_id)
        if journey is None:
            raise NotFoundError(f"Unknown journey: {journey_id}")
        return await self.conversion_funnel(
            window,
            journey.events,
            name=journey.name,
            step_names=[event_label(e) for e in journey.events],
        )


def _rows(results: list | None, width: int) -> list[list]:
    """Rows with at least ``width`` cells; anything else is skipped."""
    return [
        list(row)
        for row in results or []
        if isinstance(row, (list, tuple)) and len(row) >= width
    ]
