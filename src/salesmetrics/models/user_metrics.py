"""Pydantic models for per-user metric batches."""

from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, Field

from salesmetrics.errors import PartialBatchFailure
from salesmetrics.models.request import TimeFormat


class UserRole(str, Enum):
    SETTER = "setter"
    REP = "rep"
    BOTH = "both"
    NONE = "none"  # no qualifying rows in the window


class RoleBreakdown(BaseModel):
    as_setter: float
    as_rep: float


class UserMetricOptions(BaseModel):
    time_format: TimeFormat | None = None


class UserMetricsRequest(BaseModel):
    metric_name: str
    account_id: str = Field(min_length=1)
    start_date: date
    end_date: date
    user_ids: list[str]
    options: UserMetricOptions = Field(default_factory=UserMetricOptions)


class UserMetricResult(BaseModel):
    """One user's value.

    error is only set when this unit failed and fell back to zero, so a real
    zero and a failed zero are never confused.
    """

    user_id: str
    value: float
    role: UserRole
    breakdown: RoleBreakdown | None = None
    display_value: str = "0"
    error: str | None = None


class UserMetricsResponse(BaseModel):
    metric_name: str
    results: list[UserMetricResult]
    execution_time_ms: float
    executed_at: datetime

    @property
    def failures(self) -> dict[str, str]:
        return {r.user_id: r.error for r in self.results if r.error is not None}

    def raise_for_failures(self) -> None:
        """Raise PartialBatchFailure if any user fell back to zero."""
        failures = self.failures
        if failures:
            raise PartialBatchFailure(
                f"{len(failures)} of {len(self.results)} users failed for '{self.metric_name}'",
                failures,
                metric_name=self.metric_name,
            )
