"""Analytics metric schemas."""

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field

from common.errors import ValidationError
from rest.utils.filters import parse_datetime


class QueryKind(str, Enum):
    """Row shape returned by a breakdown query."""

    TIME_SERIES = "time_series"  # (dates[], values[], breakdown)
    AGGREGATE = "aggregate"  # (breakdown, value)


class TimeWindow(BaseModel):
    """Validated query window (naive inputs are UTC)."""

    start_date: datetime
    end_date: datetime

    @classmethod
    def parse(cls, start_date: str | None, end_date: str | None) -> "TimeWindow":
        """Parse ISO-8601 bounds, raising ValidationError before any query runs."""
        if not start_date or not end_date:
            raise ValidationError("startDate and endDate are required")
        start = parse_datetime(start_date)
        end = parse_datetime(end_date)
        if start > end:
            raise ValidationError("startDate must be before or equal to endDate")
        return cls(start_date=start, end_date=end)

    def previous(self) -> "TimeWindow":
        """The equal-length window ending where this one's query range starts.

        Queries widen the lower bound to the start of its day, so the previous
        window ends at that midnight. Callers query it with an exclusive end.
        """
        boundary = self.start_date.replace(hour=0, minute=0, second=0, microsecond=0)
        length = self.end_date - self.start_date
        return TimeWindow(start_date=boundary - length, end_date=boundary)


class DataPoint(BaseModel):
    """One value of one breakdown at one date."""

    date: str
    value: float
    breakdown: str | None = None


class SeriesPoint(BaseModel):
    date: str
    value: float


class BreakdownSeries(BaseModel):
    """A breakdown bucket with its total and time series."""

    breakdown: str
    total: float
    time_series: list[SeriesPoint] = Field(default_factory=list)


class CumulativeProjectsMetrics(BaseModel):
    """Cumulative projects per organization."""

    time_window: TimeWindow
    total_projects: float
    total_organizations: int
    data_points: list[DataPoint]
    breakdown_series: list[BreakdownSeries]


class CumulativeInstallMetrics(BaseModel):
    """Cumulative OSS installs per breakdown (CLI name by default)."""

    time_window: TimeWindow
    total_installs: float
    data_points: list[DataPoint]
    breakdown_series: list[BreakdownSeries]


class RecentDeployment(BaseModel):
    deploy_id: str
    project_name: str
    repo_url: str | None = None
    status: str
    created_at: str
    org_id: str


class DeploymentMetrics(BaseModel):
    """Deployments per organization."""

    time_window: TimeWindow
    total_deployments: float
    total_organizations: int
    breakdown_series: list[BreakdownSeries]
    recent_deployments: list[RecentDeployment]


class EventSummary(BaseModel):
    """Event totals for a window compared with the previous window."""

    time_window: TimeWindow
    event: str
    total: float
    previous_total: float
    percentage_change: float
    growth_rate: float
    time_series: list[SeriesPoint]


class ChartSlice(BaseModel):
    name: str
    value: float


class CommandMetrics(BaseModel):
    """CLI command usage per command name."""

    time_window: TimeWindow
    total_commands: float
    breakdown_series: list[BreakdownSeries]
    chart: list[ChartSlice]


class GitHubStarMetrics(BaseModel):
    """Repository stars gained and lost over the window.

    ``time_series`` holds the running net count per day.
    """

    time_window: TimeWindow
    total_stars: float
    stars_added: float
    stars_removed: float
    net_stars: float
    time_series: list[SeriesPoint]


class PageStat(BaseModel):
    pathname: str
    views: float
    unique_visitors: float


class TrafficPoint(BaseModel):
    date: str
    pageviews: float
    visitors: float
    sessions: float


class WebTrafficMetrics(BaseModel):
    """Pageview, visitor and session totals with the busiest pages."""

    time_window: TimeWindow
    total_pageviews: float
    unique_visitors: float
    total_sessions: float
    bounce_rate: float
    top_pages: list[PageStat]
    time_series: list[TrafficPoint]


class ReferrerStat(BaseModel):
    referrer: str
    visitors: float


class UtmStat(BaseModel):
    source: str
    medium: str | None = None
    campaign: str | None = None
    visitors: float


class TrafficSourceMetrics(BaseModel):
    """Where pageviews come from: referrers, UTM campaigns and traffic type."""

    time_window: TimeWindow
    by_referrer: list[ReferrerStat]
    by_utm_source: list[UtmStat]
    direct_traffic: float
    organic_traffic: float
    paid_traffic: float


class FunnelStep(BaseModel):
    step_name: str
    event_name: str
    user_count: float
    conversion_rate: float
    drop_off_rate: float


class ConversionFunnel(BaseModel):
    """Distinct persons reaching each step of an ordered event list.

    ``conversion_rate`` of a step is relative to the step before it;
    ``average_time_to_convert`` is in seconds, over persons who fired every step.
    """

    time_window: TimeWindow
    funnel_name: str
    total_entered: float
    total_completed: float
    overall_conversion_rate: float
    average_time_to_convert: float
    steps: list[FunnelStep]


class JourneyDefinition(BaseModel):
    id: str
    name: str
    description: str
    product: Literal["boreal", "moosestack"]
    events: list[str]
    expected_duration: str | None = None
    success_criteria: str | None = None
