"""Pydantic models for activity sources.

a source is one activity table (dials, appointments, ...) and the handful of
columns the engine needs to know about: which date the window applies to and
who the setter/rep are. every metric is bound to exactly one source - keeps
filter validation and role detection simple.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict


class BreakdownType(str, Enum):
    """Dimensions a metric can be grouped by."""

    TOTAL = "total"
    REP = "rep"
    SETTER = "setter"
    LINK = "link"  # setter -> rep pairs
    TIME = "time"


class TimeGrain(str, Enum):
    """Truncation grains for time breakdowns.

    map straight onto duckdb's date_trunc. week truncation is ISO (monday).
    """

    DAY = "day"
    WEEK = "week"
    MONTH = "month"


class ActivitySource(BaseModel):
    """An activity table the engine can aggregate over."""

    model_config = ConfigDict(frozen=True)

    name: str
    table: str
    date_column: str  # calendar date of this column is what the window filters on
    setter_column: str | None = None
    rep_column: str | None = None
    contact_column: str = "contact_id"  # "id" for the contacts table itself
    description: str | None = None

    def supports(self, breakdown: BreakdownType) -> bool:
        """Whether this source has the columns needed for a breakdown."""
        if breakdown == BreakdownType.REP:
            return self.rep_column is not None
        if breakdown == BreakdownType.SETTER:
            return self.setter_column is not None
        if breakdown == BreakdownType.LINK:
            return self.setter_column is not None and self.rep_column is not None
        return True

    @property
    def has_user_columns(self) -> bool:
        return self.setter_column is not None or self.rep_column is not None
