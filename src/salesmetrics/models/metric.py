"""Pydantic models for metric definitions.

a metric is a named aggregate over one activity source. the type decides how
values combine: count/sum are additive, average/ratio carry a numerator and a
denominator so they can be recombined (per role, per period) without ever
averaging averages.
"""

from enum import Enum
from typing import Literal, Self

from pydantic import BaseModel, ConfigDict, Field, model_validator

from salesmetrics.models.source import BreakdownType


class MetricUnit(str, Enum):
    COUNT = "count"
    CURRENCY = "currency"
    PERCENT = "percent"  # stored as a fraction, formatted x100
    SECONDS = "seconds"
    DAYS = "days"


class AttributionMode(str, Enum):
    """How compare mode credits a booking to a setter."""

    PRIMARY = "primary"
    LAST_TOUCH = "last-touch"
    ASSIST = "assist"


class AttributionContext(str, Enum):
    """Which user column a metric variant credits."""

    ASSIGNED = "assigned"  # the rep the outcome is assigned to
    BOOKED = "booked"  # the setter who booked it
    DIALER = "dialer"  # the setter who made the dial


# type params - one class per metric type, same shape as the yaml


class CountMetricParams(BaseModel):
    model_config = ConfigDict(frozen=True)

    expr: str = "*"
    distinct: bool = False


class SumMetricParams(BaseModel):
    model_config = ConfigDict(frozen=True)

    expr: str


class AverageMetricParams(BaseModel):
    """Average of expr. computed as SUM/COUNT so the parts can be recombined."""

    model_config = ConfigDict(frozen=True)

    expr: str


class RatioMetricParams(BaseModel):
    """numerator / denominator, both count or sum metrics on the same source."""

    model_config = ConfigDict(frozen=True)

    numerator: str
    denominator: str


MetricTypeParams = CountMetricParams | SumMetricParams | AverageMetricParams | RatioMetricParams

TYPE_PARAMS: dict[str, type[BaseModel]] = {
    "count": CountMetricParams,
    "sum": SumMetricParams,
    "average": AverageMetricParams,
    "ratio": RatioMetricParams,
}

ADDITIVE_TYPES = frozenset({"count", "sum"})


class MetricOptions(BaseModel):
    """Optional capabilities a metric declares beyond its native breakdown."""

    model_config = ConfigDict(frozen=True)

    breakdowns: tuple[BreakdownType, ...] = ()
    attribution_modes: tuple[AttributionMode, ...] = ()


class MetricDefinition(BaseModel):
    """A sales metric.

    immutable once loaded. name is the registry key; label is what a UI shows.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    label: str | None = None
    description: str = ""
    unit: MetricUnit = MetricUnit.COUNT
    breakdown_type: BreakdownType = BreakdownType.TOTAL
    source: str
    type: Literal["count", "sum", "average", "ratio"]
    type_params: MetricTypeParams = Field(default_factory=CountMetricParams)
    filter: str | None = None  # sql boolean fragment, applied inside the aggregate
    options: MetricOptions = Field(default_factory=MetricOptions)
    attribution_context: AttributionContext | None = None

    @model_validator(mode="after")
    def validate_type_params(self) -> Self:
        """Make sure type_params matches type.

        pydantic picks the first union member that validates, so a count params
        object with default expr can sneak in for a sum metric - catch it here.
        """
        expected = TYPE_PARAMS[self.type]
        if not isinstance(self.type_params, expected):
            raise ValueError(f"Metric type '{self.type}' requires {expected.__name__}")
        return self

    @property
    def display_name(self) -> str:
        return self.label or self.name

    @property
    def is_additive(self) -> bool:
        """Whether values of disjoint populations can simply be added."""
        return self.type in ADDITIVE_TYPES

    def supports_breakdown(self, breakdown: BreakdownType) -> bool:
        return breakdown == self.breakdown_type or breakdown in self.options.breakdowns
