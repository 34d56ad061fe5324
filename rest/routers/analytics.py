"""Analytics metric endpoints.

Every endpoint accepts an API key or a dashboard session, validates the time
window before any warehouse query runs and answers ``{"data": ..., "meta": ...}``.
"""

from typing import Annotated, Literal

from fastapi import APIRouter, Query

from rest.config.common import DataResponse
from rest.config.journeys import list_journeys
from rest.config.metrics import TimeWindow
from rest.routers.deps import AuthenticatedSubject, Metrics
from rest.services.metrics import DEFAULT_PRODUCTS, DEFAULT_TOP_N
from rest.utils.filters import validate_identifier
from rest.utils.timeseries import check_interval

router = APIRouter(prefix="/analytics", tags=["Analytics"])

StartDate = Annotated[str | None, Query(alias="startDate")]
EndDate = Annotated[str | None, Query(alias="endDate")]
IntervalUnit = Annotated[str | None, Query(alias="intervalUnit")]
BreakdownProperty = Annotated[str | None, Query(alias="breakdownProperty")]
TopN = Annotated[int, Query(alias="topN", ge=1, le=1000)]


def _meta(window: TimeWindow, **extra) -> dict:
    return {
        "start_date": window.start_date.isoformat(),
        "end_date": window.end_date.isoformat(),
        **extra,
    }


def _csv(value: str | None) -> list[str]:
    return [v.strip() for v in value.split(",") if v.strip()] if value else []


@router.get("/metrics/projects", response_model=DataResponse)
async def cumulative_projects(
    subject_id: AuthenticatedSubject,
    metrics: Metrics,
    start_date: StartDate = None,
    end_date: EndDate = None,
    breakdown_property: BreakdownProperty = None,
    interval_unit: IntervalUnit = None,
    top_n: TopN = DEFAULT_TOP_N,
):
    """Cumulative projects per organization."""
    window = TimeWindow.parse(start_date, end_date)
    interval = check_interval(interval_unit or "month")
    breakdown = validate_identifier(breakdown_property or "org_id")

    result = await metrics.cumulative_projects(
        window, breakdown_property=breakdown, interval=interval, top_n=top_n
    )
    return DataResponse(
        data=result.model_dump(mode="json"),
        meta=_meta(window, interval=interval, breakdown_property=breakdown, top_n=top_n),
    )


@router.get("/metrics/oss-installs", response_model=DataResponse)
async def cumulative_oss_installs(
    subject_id: AuthenticatedSubject,
    metrics: Metrics,
    start_date: StartDate = None,
    end_date: EndDate = None,
    breakdown_property: BreakdownProperty = None,
    interval_unit: IntervalUnit = None,
    top_n: TopN = DEFAULT_TOP_N,
    products: Annotated[str | None, Query()] = None,
    exclude_developers: Annotated[bool, Query(alias="excludeDevelopers")] = True,
):
    """Cumulative OSS installs per CLI (or another breakdown property)."""
    window = TimeWindow.parse(start_date, end_date)
    interval = check_interval(interval_unit or "day")
    breakdown = validate_identifier(breakdown_property or "properties.cli_name")
    product_list = _csv(products) or list(DEFAULT_PRODUCTS)

    result = await metrics.cumulative_oss_installs(
        window,
        breakdown_property=breakdown,
        products=product_list,
        interval=interval,
        top_n=top_n,
        exclude_developers=exclude_developers,
    )
    return DataResponse(
        data=result.model_dump(mode="json"),
        meta=_meta(
            window,
            interval=interval,
            breakdown_property=breakdown,
            products=product_list,
            top_n=top_n,
        ),
    )


@router.get("/metrics/deployments", response_model=DataResponse)
async def deployment_metrics(
    subject_id: AuthenticatedSubject,
    metrics: Metrics,
    start_date: StartDate = None,
    end_date: EndDate = None,
    interval_unit: IntervalUnit = None,
    top_n: TopN = DEFAULT_TOP_N,
    status: Annotated[str | None, Query()] = None,
):
    """Deployments per organization with the most recent deployments."""
    window = TimeWindow.parse(start_date, end_date)
    interval = check_interval(interval_unit or "month")
    statuses = _csv(status)

    result = await metrics.deployment_metrics(
        window, top_n=top_n, interval=interval, statuses=statuses
    )
    return DataResponse(
        data=result.model_dump(mode="json"),
        meta=_meta(window, interval=interval, top_n=top_n),
    )


@router.get("/events/summary", response_model=DataResponse)
async def event_summary(
    subject_id: AuthenticatedSubject,
    metrics: Metrics,
    event: Annotated[str, Query(min_length=1, max_length=200)],
    start_date: StartDate = None,
    end_date: EndDate = None,
    interval_unit: IntervalUnit = None,
):
    """Totals for one event compared with the previous window."""
    window = TimeWindow.parse(start_date, end_date)
    interval = check_interval(interval_unit or "day")

    result = await metrics.event_summary(window, event, interval=interval)
    return DataResponse(
        data=result.model_dump(mode="json"),
        meta=_meta(window, interval=interval),
    )


@router.get("/metrics/commands", response_model=DataResponse)
async def command_metrics(
    subject_id: AuthenticatedSubject,
    metrics: Metrics,
    start_date: StartDate = None,
    end_date: EndDate = None,
    interval_unit: IntervalUnit = None,
    top_n: TopN = DEFAULT_TOP_N,
):
    """CLI command usage per command name."""
    window = TimeWindow.parse(start_date, end_date)
    interval = check_interval(interval_unit or "week")

    result = await metrics.command_metrics(window, interval=interval, top_n=top_n)
    return DataResponse(
        data=result.model_dump(mode="json"),
        meta=_meta(window, interval=interval, top_n=top_n),
    )


@router.get("/metrics/github-stars", response_model=DataResponse)
async def github_star_metrics(
    subject_id: AuthenticatedSubject,
    metrics: Metrics,
    start_date: StartDate = None,
    end_date: EndDate = None,
):
    window = TimeWindow.parse(start_date, end_date)
    result = await metrics.github_star_metrics(window)
    return DataResponse(data=result.model_dump(mode="json"), meta=_meta(window))


@router.get("/web/traffic", response_model=DataResponse)
async def web_traffic(
    subject_id: AuthenticatedSubject,
    metrics: Metrics,
    start_date: StartDate = None,
    end_date: EndDate = None,
):
    """Pageviews, visitors, sessions and bounce rate."""
    window = TimeWindow.parse(start_date, end_date)
    result = await metrics.web_traffic(window)
    return DataResponse(data=result.model_dump(mode="json"), meta=_meta(window))


@router.get("/web/sources", response_model=DataResponse)
async def traffic_sources(
    subject_id: AuthenticatedSubject,
    metrics: Metrics,
    start_date: StartDate = None,
    end_date: EndDate = None,
):
    """Visitors by referrer and UTM campaign."""
    window = TimeWindow.parse(start_date, end_date)
    result = await metrics.traffic_sources(window)
    return DataResponse(data=result.model_dump(mode="json"), meta=_meta(window))


@router.get("/funnel", response_model=DataResponse)
async def conversion_funnel(
    subject_id: AuthenticatedSubject,
    metrics: Metrics,
    events: Annotated[str, Query(min_length=1)],
    name: Annotated[str, Query(max_length=200)] = "Conversion funnel",
    start_date: StartDate = None,
    end_date: EndDate = None,
):
    """Conversion through a comma-separated list of events."""
    window = TimeWindow.parse(start_date, end_date)
    steps = _csv(events)

    result = await metrics.conversion_funnel(window, steps, name=name)
    return DataResponse(data=result.model_dump(mode="json"), meta=_meta(window, events=steps))


@router.get("/journeys", response_model=DataResponse)
async def journeys(
    subject_id: AuthenticatedSubject,
    product: Annotated[Literal["boreal", "moosestack"] | None, Query()] = None,
):
    """Cataloged product journeys."""
    found = list_journeys(product)
    return DataResponse(
        data=[j.model_dump(mode="json") for j in found],
        meta={"total": len(found), "product": product},
    )


@router.get("/journeys/{journey_id}", response_model=DataResponse)
async def journey_funnel(
    journey_id: str,
    subject_id: AuthenticatedSubject,
    metrics: Metrics,
    start_date: StartDate = None,
    end_date: EndDate = None,
):
    """Conversion funnel for one cataloged journey."""
    window = TimeWindow.parse(start_date, end_date)
    result = await metrics.journey_funnel(window, journey_id)
    return DataResponse(
        data=result.model_dump(mode="json"), meta=_meta(window, journey_id=journey_id)
    )
