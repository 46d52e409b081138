"""Pydantic models for metric requests and results.

request models capture what the caller wants, not how to compute it. the
compiler turns them into sql; the engine shapes the rows back into results.
"""

from datetime import date, timedelta
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from salesmetrics.models.source import BreakdownType, TimeGrain

# acquisition filters live on the contact an activity row belongs to
ACQUISITION_FIELDS: tuple[str, ...] = (
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_content",
    "utm_term",
    "utm_id",
    "source_category",
    "specific_source",
    "session_source",
    "referrer",
    "fbclid",
    "fbc",
    "fbp",
    "gclid",
)


class DateRange(BaseModel):
    """Inclusive range of calendar dates.

    ordering is checked by the engine (InvalidRange) rather than here so the
    caller gets our error type instead of a pydantic ValidationError.
    """

    model_config = ConfigDict(frozen=True)

    start: date
    end: date

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def previous(self) -> "DateRange":
        """The equal-length window immediately before this one."""
        prev_end = self.start - timedelta(days=1)
        return DateRange(start=prev_end - (self.end - self.start), end=prev_end)

    def __str__(self) -> str:
        return f"{self.start.isoformat()}..{self.end.isoformat()}"


class MetricFilters(BaseModel):
    """Filters applied to every query of a request. all families are ANDed."""

    date_range: DateRange
    account_id: str = Field(min_length=1)
    rep_ids: list[str] | None = None
    setter_ids: list[str] | None = None

    utm_source: list[str] | None = None
    utm_medium: list[str] | None = None
    utm_campaign: list[str] | None = None
    utm_content: list[str] | None = None
    utm_term: list[str] | None = None
    utm_id: list[str] | None = None
    source_category: list[str] | None = None
    specific_source: list[str] | None = None
    session_source: list[str] | None = None
    referrer: list[str] | None = None
    fbclid: list[str] | None = None
    fbc: list[str] | None = None
    fbp: list[str] | None = None
    gclid: list[str] | None = None

    def acquisition_filters(self) -> dict[str, list[str]]:
        """Non-empty acquisition filters, in a stable order."""
        found = {}
        for field_name in ACQUISITION_FIELDS:
            values = getattr(self, field_name)
            if values:
                found[field_name] = values
        return found


class MetricRequest(BaseModel):
    metric_name: str
    filters: MetricFilters


class VizType(str, Enum):
    KPI = "kpi"
    TABLE = "table"
    BAR = "bar"
    LINE = "line"
    AREA = "area"


class TimeFormat(str, Enum):
    """Display options for seconds-unit metrics."""

    MINUTES = "minutes"
    HOURS = "hours"
    HUMAN_READABLE = "human_readable"


class WidgetSettings(BaseModel):
    time_grain: TimeGrain = TimeGrain.DAY
    compare_previous: bool = True
    time_format: TimeFormat | None = None


class ExecuteOptions(BaseModel):
    viz_type: VizType | None = None
    dynamic_breakdown: BreakdownType | None = None
    widget_settings: WidgetSettings = Field(default_factory=WidgetSettings)
    strict_breakdown: bool = False  # raise UnsupportedBreakdown instead of falling back


# results - tagged on "type" so callers never guess the shape by field presence


class TotalData(BaseModel):
    value: float
    change: float | None = None  # percent change vs the preceding equal-length window


class TotalResult(BaseModel):
    type: Literal["total"] = "total"
    data: TotalData


class SeriesPoint(BaseModel):
    period_key: str
    period_label: str
    value: float


class SeriesResult(BaseModel):
    type: Literal["series"] = "series"
    breakdown: BreakdownType
    data: list[SeriesPoint] = Field(default_factory=list)


MetricResult = Annotated[TotalResult | SeriesResult, Field(discriminator="type")]


class AggregateParts(BaseModel):
    """One aggregated row, with the parts needed to recombine it.

    numerator/denominator are only set for average and ratio metrics.
    row_count is the number of rows that passed the request filters.
    """

    value: float = 0.0
    numerator: float | None = None
    denominator: float | None = None
    row_count: int = 0


class QueryResult(BaseModel):
    """Raw result of one executed statement.

    returning the sql alongside the rows makes debugging a wrong number a lot
    less painful.
    """

    sql: str
    params: list[Any] = Field(default_factory=list)
    columns: list[str]
    data: list[dict]
    row_count: int
    execution_time_ms: float
