"""
Tests for MetricsService with a stubbed warehouse.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from common.errors import ExternalAPIError, NotFoundError, ValidationError
from db.warehouse import QueryResult
from rest.config.metrics import TimeWindow
from rest.services.metrics import COMMAND_EVENT, INSTALL_EVENT, STAR_EVENT, MetricsService
from rest.utils.timeseries import BREAKDOWN_NULL, BREAKDOWN_OTHER


def make_warehouse(*results):
    warehouse = MagicMock()
    warehouse.query = AsyncMock(side_effect=[QueryResult(results=r) for r in results])
    return warehouse


def sent_queries(warehouse) -> list[str]:
    return [call.args[0] for call in warehouse.query.await_args_list]


class TestTimeWindow:
    def test_parse(self):
        window = TimeWindow.parse("2024-01-01T00:00:00Z", "2024-01-31T00:00:00Z")
        assert window.start_date.isoformat() == "2024-01-01T00:00:00+00:00"

    @pytest.mark.parametrize("start,end", [(None, "2024-01-01"), ("2024-01-01", ""), (None, None)])
    def test_missing_bounds(self, start, end):
        with pytest.raises(ValidationError) as exc:
            TimeWindow.parse(start, end)
        assert exc.value.message == "startDate and endDate are required"

    def test_start_after_end(self):
        with pytest.raises(ValidationError):
            TimeWindow.parse("2024-02-01", "2024-01-01")

    def test_invalid_date(self):
        with pytest.raises(ValidationError):
            TimeWindow.parse("yesterday", "2024-01-01")

    def test_previous(self):
        window = TimeWindow.parse("2024-01-11", "2024-01-21")
        previous = window.previous()
        assert previous.end_date == window.start_date
        assert (previous.end_date - previous.start_date).days == 10

    def test_previous_ends_at_start_of_first_day(self):
        window = TimeWindow.parse("2024-01-10T12:00:00Z", "2024-01-20T12:00:00Z")
        previous = window.previous()
        assert previous.end_date.isoformat() == "2024-01-10T00:00:00+00:00"
        assert previous.start_date.isoformat() == "2023-12-31T00:00:00+00:00"


class TestCumulativeProjects:
    """Test cumulative projects per organization."""

    @pytest.mark.asyncio
    async def test_totals_and_folding(self):
        warehouse = make_warehouse(
            [
                ["2024-01-01", "org_a", 2],
                ["2024-02-01", "org_a", 5],
                ["2024-01-01", "org_b", 1],
                ["2024-02-01", "org_c", 1],
                ["2024-02-01", BREAKDOWN_NULL, 3],
            ]
        )
        service = MetricsService(warehouse)
        window = TimeWindow.parse("2024-01-15", "2024-02-20")

        result = await service.cumulative_projects(window, top_n=1)

        assert result.total_projects == 10
        assert result.total_organizations == 3
        assert [s.breakdown for s in result.breakdown_series] == ["org_a", "other"]
        assert [p.value for p in result.breakdown_series[0].time_series] == [2, 5]
        assert len(result.data_points) == 5

        [sql] = sent_queries(warehouse)
        assert "FROM postgres.projects AS e" in sql
        assert "toStartOfMonth(created_at)" in sql
        assert "'2024-01-15 00:00:00'" in sql

    @pytest.mark.asyncio
    async def test_empty_result(self):
        service = MetricsService(make_warehouse([]))
        result = await service.cumulative_projects(TimeWindow.parse("2024-01-01", "2024-01-31"))
        assert result.total_projects == 0
        assert result.total_organizations == 0
        assert result.breakdown_series == []

    @pytest.mark.asyncio
    async def test_invalid_interval_rejected_before_query(self):
        warehouse = make_warehouse()
        service = MetricsService(warehouse)
        with pytest.raises(ValidationError):
            await service.cumulative_projects(
                TimeWindow.parse("2024-01-01", "2024-01-31"), interval="year"
            )
        warehouse.query.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_warehouse_failure_propagates(self):
        warehouse = MagicMock()
        warehouse.query = AsyncMock(side_effect=ExternalAPIError("PostHog", "boom"))
        service = MetricsService(warehouse)
        with pytest.raises(ExternalAPIError):
            await service.cumulative_projects(TimeWindow.parse("2024-01-01", "2024-01-31"))


class TestCumulativeInstalls:
    """Test cumulative OSS installs."""

    @pytest.mark.asyncio
    async def test_query_filters(self):
        warehouse = make_warehouse([["2024-01-01", "moose-cli", 4]])
        service = MetricsService(warehouse, internal_ips=["10.0.0.1"])

        result = await service.cumulative_oss_installs(
            TimeWindow.parse("2024-01-01", "2024-01-02"), products=["moose"]
        )

        assert result.total_installs == 4
        assert [p.value for p in result.breakdown_series[0].time_series] == [4, 4]
        [sql] = sent_queries(warehouse)
        assert f"equals(event, '{INSTALL_EVENT}')" in sql
        assert "tuple('10.0.0.1')" in sql
        assert "tuple('moose')" in sql
        assert "raw_cohort_people" in sql
        assert "e.person_id AS entity" in sql

    @pytest.mark.asyncio
    async def test_developers_included_when_asked(self):
        warehouse = make_warehouse([])
        service = MetricsService(warehouse)

        await service.cumulative_oss_installs(
            TimeWindow.parse("2024-01-01", "2024-01-02"), exclude_developers=False
        )

        [sql] = sent_queries(warehouse)
        assert "is_developer" not in sql
        assert "raw_cohort_people" not in sql
        assert "localhost" in sql


class TestDeploymentMetrics:
    """Test deployments per organization."""

    @pytest.mark.asyncio
    async def test_breakdown_and_recent(self):
        dates = ["2024-01-01", "2024-02-01"]
        warehouse = make_warehouse(
            [
                [dates, [3, 1], "org_a"],
                [dates, [0, 2], "org_b"],
                [dates, [1, 1], BREAKDOWN_OTHER],
            ],
            [[5]],
            [
                ["d1", "proj", "https://git/x", "ok", "2024-02-01 10:00:00", "org_a"],
                ["broken"],
            ],
        )
        service = MetricsService(warehouse)

        result = await service.deployment_metrics(
            TimeWindow.parse("2024-01-01", "2024-02-28"), statuses=["ok"]
        )

        assert result.total_deployments == 8
        assert result.total_organizations == 5
        assert [s.breakdown for s in result.breakdown_series] == ["org_a", "org_b", "other"]
        assert len(result.recent_deployments) == 1
        assert result.recent_deployments[0].deploy_id == "d1"

        breakdown_sql, count_sql, recent_sql = sent_queries(warehouse)
        assert "in(status, tuple('ok'))" in breakdown_sql
        assert "in(status, tuple('ok'))" in count_sql
        assert "postgres.deploys" in breakdown_sql
        assert "ORDER BY d.created_at DESC" in recent_sql

    @pytest.mark.asyncio
    async def test_folded_organizations_are_counted(self):
        dates = ["2024-01-01"]
        warehouse = make_warehouse(
            [
                [dates, [5], "org_a"],
                [dates, [4], "org_b"],
                [dates, [1], BREAKDOWN_OTHER],
            ],
            [[3]],
            [],
        )
        service = MetricsService(warehouse)

        result = await service.deployment_metrics(
            TimeWindow.parse("2024-01-01", "2024-01-31"), top_n=2
        )

        assert result.total_organizations == 3
        breakdown_sql, count_sql, _ = sent_queries(warehouse)
        assert "greaterOrEquals(row_number, 2)" in breakdown_sql
        assert "uniqExact(org_id)" in count_sql
        assert "notEquals(ifNull(toString(org_id), ''), '')" in count_sql

    @pytest.mark.asyncio
    async def test_malformed_count_is_zero(self):
        service = MetricsService(make_warehouse([], [["n/a"]], []))
        result = await service.deployment_metrics(TimeWindow.parse("2024-01-01", "2024-01-31"))
        assert result.total_organizations == 0


class TestEventSummary:
    """Test event totals against the previous window."""

    @pytest.mark.asyncio
    async def test_change_and_growth(self):
        warehouse = make_warehouse(
            [["2024-01-02", 10], ["2024-01-03", 20]],
            [["2023-12-30", 15]],
        )
        service = MetricsService(warehouse)

        result = await service.event_summary(
            TimeWindow.parse("2024-01-02", "2024-01-04"), "signup"
        )

        assert result.total == 30
        assert result.previous_total == 15
        assert result.percentage_change == 100
        assert result.growth_rate == 100
        assert [p.date for p in result.time_series] == ["2024-01-02", "2024-01-03"]
        current_sql, previous_sql = sent_queries(warehouse)
        assert "equals(event, 'signup')" in current_sql
        assert "'2023-12-31 00:00:00'" in previous_sql

    @pytest.mark.asyncio
    async def test_no_previous_data(self):
        service = MetricsService(make_warehouse([["2024-01-02", 5]], []))
        result = await service.event_summary(TimeWindow.parse("2024-01-02", "2024-01-03"), "x")
        assert result.percentage_change == 100
        assert result.growth_rate == 0

    @pytest.mark.asyncio
    async def test_previous_window_does_not_overlap(self):
        warehouse = make_warehouse([], [])
        service = MetricsService(warehouse)

        await service.event_summary(
            TimeWindow.parse("2024-01-10T12:00:00Z", "2024-01-20T12:00:00Z"), "signup"
        )

        current_sql, previous_sql = sent_queries(warehouse)
        assert "toStartOfInterval(assumeNotNull(toDateTime('2024-01-10 12:00:00'))" in current_sql
        assert "less(timestamp, assumeNotNull(toDateTime('2024-01-10 00:00:00')))" in previous_sql
        assert "lessOrEquals" not in previous_sql
        assert "'2023-12-31 00:00:00'" in previous_sql


class TestCommandMetrics:
    """Test CLI command usage per command."""

    @pytest.mark.asyncio
    async def test_breakdown_and_chart(self):
        dates = ["2024-01-07", "2024-01-14"]
        warehouse = make_warehouse(
            [
                [dates, [3, 1], ["init"]],
                [dates, [0, 2], ["dev"]],
                [dates, [1, 0], [BREAKDOWN_NULL]],
            ]
        )
        service = MetricsService(warehouse)

        result = await service.command_metrics(
            TimeWindow.parse("2024-01-07", "2024-01-20"), top_n=1
        )

        assert result.total_commands == 7
        assert [s.breakdown for s in result.breakdown_series] == ["init", "other"]
        assert result.breakdown_series[1].total == 3
        assert [(c.name, c.value) for c in result.chart] == [
            ("init", 4),
            ("dev", 2),
            ("Unknown", 1),
        ]
        [sql] = sent_queries(warehouse)
        assert f"equals(event, '{COMMAND_EVENT}')" in sql
        assert "properties.command" in sql
        assert "toStartOfWeek(timestamp)" in sql
        assert "sum(count) OVER" not in sql


class TestGitHubStarMetrics:
    """Test stars added and removed."""

    @pytest.mark.asyncio
    async def test_net_stars(self):
        dates = ["2024-01-01 00:00:00", "2024-01-02 00:00:00", "2024-01-03 00:00:00"]
        warehouse = make_warehouse(
            [[dates, [2, 2, 5], [STAR_EVENT]]],
            [[dates, [0, 1, 1], [STAR_EVENT]]],
        )
        service = MetricsService(warehouse)

        result = await service.github_star_metrics(TimeWindow.parse("2024-01-01", "2024-01-03"))

        assert result.stars_added == 5
        assert result.stars_removed == 1
        assert result.net_stars == 4
        assert result.total_stars == 4
        assert [(p.date, p.value) for p in result.time_series] == [
            ("2024-01-01", 2),
            ("2024-01-02", 1),
            ("2024-01-03", 4),
        ]
        added_sql, removed_sql = sent_queries(warehouse)
        assert "notEquals(properties.action, 'deleted')" in added_sql
        assert "equals(properties.action, 'deleted')" in removed_sql
        assert "notEquals(properties.action" not in removed_sql

    @pytest.mark.asyncio
    async def test_no_stars(self):
        service = MetricsService(make_warehouse([], []))
        result = await service.github_star_metrics(TimeWindow.parse("2024-01-01", "2024-01-02"))
        assert result.net_stars == 0
        assert [p.value for p in result.time_series] == [0, 0]


class TestWebMetrics:
    """Test web traffic and traffic source metrics."""

    @pytest.mark.asyncio
    async def test_web_traffic(self):
        warehouse = make_warehouse(
            [[100, 40, 50]],
            [[10, 40]],
            [["/docs", 60, 30], ["broken"]],
            [["2024-01-01", 100, 40, 50]],
        )
        service = MetricsService(warehouse)

        result = await service.web_traffic(TimeWindow.parse("2024-01-01", "2024-01-01T23:59:59"))

        assert result.total_pageviews == 100
        assert result.unique_visitors == 40
        assert result.total_sessions == 50
        assert result.bounce_rate == 25
        assert [p.pathname for p in result.top_pages] == ["/docs"]
        assert result.time_series[0].sessions == 50

        overall_sql, bounce_sql, _, _ = sent_queries(warehouse)
        assert "equals(event, '$pageview')" in overall_sql
        assert "isNotNull(properties.$session_id)" in bounce_sql
        assert "equals(event, '$pageview')" not in bounce_sql

    @pytest.mark.asyncio
    async def test_web_traffic_empty(self):
        service = MetricsService(make_warehouse([], [], [], []))
        result = await service.web_traffic(TimeWindow.parse("2024-01-01", "2024-01-02"))
        assert result.total_pageviews == 0
        assert result.bounce_rate == 0
        assert result.top_pages == []

    @pytest.mark.asyncio
    async def test_traffic_sources(self):
        warehouse = make_warehouse(
            [["google.com", 12]],
            [["newsletter", None, "spring", 5]],
            [[7, 3, 2]],
        )
        service = MetricsService(warehouse)

        result = await service.traffic_sources(TimeWindow.parse("2024-01-01", "2024-01-31"))

        assert result.by_referrer[0].referrer == "google.com"
        assert result.by_referrer[0].visitors == 12
        utm = result.by_utm_source[0]
        assert (utm.source, utm.medium, utm.campaign, utm.visitors) == ("newsletter", None, "spring", 5)
        assert (result.direct_traffic, result.organic_traffic, result.paid_traffic) == (7, 3, 2)


class TestConversionFunnel:
    """Test funnels over ad hoc and cataloged event lists."""

    @pytest.mark.asyncio
    async def test_step_rates(self):
        warehouse = make_warehouse([[100]], [[40]], [[10]], [[3600.5]])
        service = MetricsService(warehouse)

        result = await service.conversion_funnel(
            TimeWindow.parse("2024-01-01", "2024-01-31"), ["a", "b", "c"], name="Signup"
        )

        assert result.funnel_name == "Signup"
        assert [s.step_name for s in result.steps] == ["Step 1", "Step 2", "Step 3"]
        assert [s.conversion_rate for s in result.steps] == [100, 40, 25]
        assert [s.drop_off_rate for s in result.steps] == [0, 60, 75]
        assert result.total_entered == 100
        assert result.total_completed == 10
        assert result.overall_conversion_rate == 10
        assert result.average_time_to_convert == 3600.5

        queries = sent_queries(warehouse)
        assert "equals(event, 'b')" in queries[1]
        assert "in(event, tuple('a', 'b', 'c'))" in queries[3]
        assert "equals(count(DISTINCT event), 3)" in queries[3]

    @pytest.mark.asyncio
    async def test_nobody_entered(self):
        service = MetricsService(make_warehouse([[0]], [[0]], []))
        result = await service.conversion_funnel(
            TimeWindow.parse("2024-01-01", "2024-01-31"), ["a", "b"]
        )
        assert result.overall_conversion_rate == 0
        assert [s.conversion_rate for s in result.steps] == [0, 0]

    @pytest.mark.asyncio
    async def test_requires_events(self):
        warehouse = make_warehouse()
        with pytest.raises(ValidationError):
            await MetricsService(warehouse).conversion_funnel(
                TimeWindow.parse("2024-01-01", "2024-01-31"), []
            )
        warehouse.query.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_journey_uses_catalog_labels(self):
        warehouse = make_warehouse([[4]], [[2]], [[2]], [[1]], [])
        service = MetricsService(warehouse)

        result = await service.journey_funnel(
            TimeWindow.parse("2024-01-01", "2024-01-31"), "moosestack-discovery"
        )

        assert result.funnel_name == "Moosestack Discovery"
        assert [s.step_name for s in result.steps] == [
            "Docs Landing",
            "Docs Read",
            "Install Viewed",
            "Installed",
        ]
        assert result.average_time_to_convert == 0

    @pytest.mark.asyncio
    async def test_unknown_journey(self):
        warehouse = make_warehouse()
        with pytest.raises(NotFoundError):
            await MetricsService(warehouse).journey_funnel(
                TimeWindow.parse("2024-01-01", "2024-01-31"), "nope"
            )
        warehouse.query.assert_not_awaited()
