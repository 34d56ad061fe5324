from .api_keys import (
    ApiKeyCreate,
    ApiKeyCreatedEnvelope,
    ApiKeyCreatedResponse,
    ApiKeyListResponse,
    ApiKeyResponse,
)
from .common import ERROR_RESPONSES, DataResponse, ErrorBody, ErrorResponse, ListMeta
from .journeys import event_label, get_journey, list_journeys
from .metrics import (
    BreakdownSeries,
    ChartSlice,
    CommandMetrics,
    ConversionFunnel,
    CumulativeInstallMetrics,
    CumulativeProjectsMetrics,
    DataPoint,
    DeploymentMetrics,
    EventSummary,
    FunnelStep,
    GitHubStarMetrics,
    JourneyDefinition,
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

__all__ = [
    "ApiKeyCreate",
    "ApiKeyCreatedEnvelope",
    "ApiKeyCreatedResponse",
    "ApiKeyListResponse",
    "ApiKeyResponse",
    "ERROR_RESPONSES",
    "DataResponse",
    "ErrorBody",
    "ErrorResponse",
    "ListMeta",
    "event_label",
    "get_journey",
    "list_journeys",
    "BreakdownSeries",
    "ChartSlice",
    "CommandMetrics",
    "ConversionFunnel",
    "CumulativeInstallMetrics",
    "CumulativeProjectsMetrics",
    "DataPoint",
    "DeploymentMetrics",
    "EventSummary",
    "FunnelStep",
    "GitHubStarMetrics",
    "JourneyDefinition",
    "PageStat",
    "QueryKind",
    "RecentDeployment",
    "ReferrerStat",
    "SeriesPoint",
    "TimeWindow",
    "TrafficPoint",
    "TrafficSourceMetrics",
    "UtmStat",
    "WebTrafficMetrics",
]
