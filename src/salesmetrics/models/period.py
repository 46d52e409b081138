"""Pydantic models for period buckets and the series/matrices built from them."""

from datetime import date
from enum import Enum

from pydantic import BaseModel, Field

from salesmetrics.errors import PartialBatchFailure


class PeriodType(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"  # monday start
    MONTHLY = "monthly"


class Period(BaseModel):
    key: str
    label: str
    start_date: date
    end_date: date


class PeriodMetric(BaseModel):
    period_key: str
    period_label: str
    value: float
    display_value: str = "0"
    error: str | None = None  # set when this period fell back to zero


class TimeSeriesResponse(BaseModel):
    metric_name: str
    period_type: PeriodType
    periods: list[Period]
    period_metrics: list[PeriodMetric]
    total: float
    execution_time_ms: float

    @property
    def failures(self) -> dict[str, str]:
        return {p.period_key: p.error for p in self.period_metrics if p.error is not None}

    def raise_for_failures(self) -> None:
        failures = self.failures
        if failures:
            raise PartialBatchFailure(
                f"{len(failures)} of {len(self.period_metrics)} periods failed "
                f"for '{self.metric_name}'",
                failures,
                metric_name=self.metric_name,
            )


class UserPeriodRow(BaseModel):
    user_id: str
    periods: list[PeriodMetric] = Field(default_factory=list)
    total: float = 0.0


class UserPeriodMatrix(BaseModel):
    metric_name: str
    period_type: PeriodType
    periods: list[Period]
    rows: list[UserPeriodRow]
    execution_time_ms: float

    @property
    def failures(self) -> dict[str, str]:
        return {
            f"{row.user_id}@{p.period_key}": p.error
            for row in self.rows
            for p in row.periods
            if p.error is not None
        }

    def raise_for_failures(self) -> None:
        failures = self.failures
        if failures:
            raise PartialBatchFailure(
                f"{len(failures)} user-period cells failed for '{self.metric_name}'",
                failures,
                metric_name=self.metric_name,
            )
