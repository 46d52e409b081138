"""Split a date range into daily, weekly or monthly periods.

periods are contiguous, never overlap and cover the whole range. the first
and last period are clipped to the range, so a weekly split of a range
starting on a wednesday begins with a short wednesday-to-sunday week.
"""

from datetime import date, timedelta

from salesmetrics.errors import InvalidRange
from salesmetrics.models.period import Period, PeriodType
from salesmetrics.models.request import DateRange


def generate_periods(date_range: DateRange, period_type: PeriodType | str) -> list[Period]:
    """Periods covering date_range, in order.

    >>> window = DateRange(start=date(2024, 1, 1), end=date(2024, 1, 10))
    >>> [p.key for p in generate_periods(window, "weekly")]
    ['2024-01-01', '2024-01-08']
    """
    period_type = PeriodType(period_type)
    if date_range.start > date_range.end:
        raise InvalidRange(
            f"Start date {date_range.start} is after end date {date_range.end}",
            date_range=date_range,
        )

    periods = []
    cursor = date_range.start
    while cursor <= date_range.end:
        natural_end = _period_end(cursor, period_type)
        end = min(natural_end, date_range.end)
        periods.append(
            Period(
                key=cursor.isoformat(),
                label=period_label(cursor, period_type),
                start_date=cursor,
                end_date=end,
            )
        )
        cursor = end + timedelta(days=1)
    return periods


def _period_end(day: date, period_type: PeriodType) -> date:
    """Last day of the natural period containing day."""
    if period_type == PeriodType.DAILY:
        return day
    if period_type == PeriodType.WEEKLY:
        # weeks run monday..sunday
        return day + timedelta(days=6 - day.weekday())
    if day.month == 12:
        return date(day.year, 12, 31)
    return date(day.year, day.month + 1, 1) - timedelta(days=1)


def period_label(day: date, period_type: PeriodType) -> str:
    """Human label for a period starting on day: 'Jan 5', 'Week of Jan 1', 'Jan 2024'."""
    if period_type == PeriodType.DAILY:
        return f"{day:%b} {day.day}"
    if period_type == PeriodType.WEEKLY:
        return f"Week of {day:%b} {day.day}"
    return f"{day:%b %Y}"
