"""Pydantic models for salesmetrics."""

from salesmetrics.models.compare import (
    INBOUND,
    ActivityEvent,
    CompareEntity,
    CompareResult,
    CompareScope,
    CompareSettings,
    EventType,
    LinkedSession,
    PairMetrics,
    RepMetrics,
    SetterMetrics,
)
from salesmetrics.models.metric import (
    AttributionContext,
    AttributionMode,
    AverageMetricParams,
    CountMetricParams,
    MetricDefinition,
    MetricOptions,
    MetricUnit,
    RatioMetricParams,
    SumMetricParams,
)
from salesmetrics.models.period import (
    Period,
    PeriodMetric,
    PeriodType,
    TimeSeriesResponse,
    UserPeriodMatrix,
    UserPeriodRow,
)
from salesmetrics.models.request import (
    AggregateParts,
    DateRange,
    ExecuteOptions,
    MetricFilters,
    MetricRequest,
    MetricResult,
    QueryResult,
    SeriesPoint,
    SeriesResult,
    TimeFormat,
    TotalData,
    TotalResult,
    VizType,
    WidgetSettings,
)
from salesmetrics.models.source import ActivitySource, BreakdownType, TimeGrain
from salesmetrics.models.user_metrics import (
    RoleBreakdown,
    UserMetricOptions,
    UserMetricResult,
    UserMetricsRequest,
    UserMetricsResponse,
    UserRole,
)

__all__ = [
    "INBOUND",
    "ActivityEvent",
    "ActivitySource",
    "AggregateParts",
    "AttributionContext",
    "AttributionMode",
    "AverageMetricParams",
    "BreakdownType",
    "CompareEntity",
    "CompareResult",
    "CompareScope",
    "CompareSettings",
    "CountMetricParams",
    "DateRange",
    "EventType",
    "ExecuteOptions",
    "LinkedSession",
    "MetricDefinition",
    "MetricFilters",
    "MetricOptions",
    "MetricRequest",
    "MetricResult",
    "MetricUnit",
    "PairMetrics",
    "Period",
    "PeriodMetric",
    "PeriodType",
    "QueryResult",
    "RatioMetricParams",
    "RepMetrics",
    "RoleBreakdown",
    "SeriesPoint",
    "SeriesResult",
    "SetterMetrics",
    "SumMetricParams",
    "TimeFormat",
    "TimeGrain",
    "TimeSeriesResponse",
    "TotalData",
    "TotalResult",
    "UserMetricOptions",
    "UserMetricResult",
    "UserMetricsRequest",
    "UserMetricsResponse",
    "UserPeriodMatrix",
    "UserPeriodRow",
    "UserRole",
    "VizType",
    "WidgetSettings",
]
