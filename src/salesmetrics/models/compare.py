"""Pydantic models for compare mode.

compare mode answers "who gets credit": activity is linked into sessions,
de-duplicated, and each booking is attributed to one or more setters before
any per-entity numbers are computed.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Literal

from pydantic import BaseModel, Field

from salesmetrics.models.metric import AttributionMode

# bucket for bookings that no setter touched
INBOUND = "inbound"


class CompareScope(str, Enum):
    SETTER = "setter"
    REP = "rep"
    PAIR = "pair"


class EventType(str, Enum):
    DIAL = "dial"
    DISCOVERY = "discovery"
    APPOINTMENT = "appointment"


class CompareEntity(BaseModel):
    """A UI selection of something to compare. not persisted."""

    id: str
    type: Literal["setter", "rep"]
    name: str | None = None
    color: str | None = None


class CompareSettings(BaseModel):
    scope: CompareScope = CompareScope.SETTER
    attribution_mode: AttributionMode = AttributionMode.PRIMARY
    exclude_in_call_dials: bool = True
    exclude_rep_dials: bool = True
    time_window_days: int = Field(default=14, ge=0)  # lookback for touches
    same_call_window_minutes: int = Field(default=30, ge=0)


class ActivityEvent(BaseModel):
    """One row of activity in a shape common to every source.

    seq is the load order (occurred_at, then insertion order) and breaks ties
    between events with identical timestamps.
    """

    id: str
    type: EventType
    contact_id: str | None = None
    setter_id: str | None = None
    rep_id: str | None = None
    call_sid: str | None = None
    occurred_at: datetime
    seq: int = 0

    # appointment outcome fields
    showed: bool = False
    closed: bool = False
    revenue: float = 0.0
    cash_collected: float = 0.0


class LinkedSession(BaseModel):
    session_id: str
    events: list[ActivityEvent]
    primary_event: ActivityEvent | None = None
    is_inferred: bool = False


class AttributedBooking(BaseModel):
    """A booking (appointment or discovery) with the setters credited for it."""

    booking: ActivityEvent
    setter_ids: list[str]
    rep_id: str | None = None
    first_touch_at: datetime


class SetterMetrics(BaseModel):
    setter_id: str
    setter_name: str
    color: str | None = None
    outbound_dials: int = 0
    unique_contacts_reached: int = 0
    discoveries_set: int = 0
    sales_calls_booked: int = 0
    show_rate: float = 0.0
    setter_win_rate: float = 0.0
    attributed_revenue: float = 0.0


class RepMetrics(BaseModel):
    rep_id: str
    rep_name: str
    color: str | None = None
    sales_calls_booked: int = 0
    sales_calls_held: int = 0
    win_rate: float = 0.0
    revenue: float = 0.0
    cash_collected: float = 0.0
    avg_order_value: float = 0.0
    avg_sales_cycle_days: float = 0.0


class PairStats(BaseModel):
    appointments: int = 0
    show_rate: float = 0.0
    win_rate: float = 0.0
    revenue: float = 0.0
    cash_collected: float = 0.0
    avg_deal_size: float = 0.0


class PairMetrics(BaseModel):
    setter_id: str
    setter_name: str
    rep_id: str
    rep_name: str
    metrics: PairStats = Field(default_factory=PairStats)


class SetterCompareResult(BaseModel):
    type: Literal["setter"] = "setter"
    attribution_mode: AttributionMode
    data: list[SetterMetrics]


class RepCompareResult(BaseModel):
    type: Literal["rep"] = "rep"
    attribution_mode: AttributionMode
    data: list[RepMetrics]


class PairCompareResult(BaseModel):
    type: Literal["pair"] = "pair"
    attribution_mode: AttributionMode
    data: list[PairMetrics]


CompareResult = Annotated[
    SetterCompareResult | RepCompareResult | PairCompareResult,
    Field(discriminator="type"),
]
