"""Display formatting for metric values.

values are stored raw (percent as a fraction, durations in seconds); this is
the only place they get turned into strings for people.
"""

import math

from salesmetrics.models.metric import MetricUnit
from salesmetrics.models.request import TimeFormat


def format_value(
    value: float,
    unit: MetricUnit | str,
    time_format: TimeFormat | str | None = None,
) -> str:
    """Format a raw value for display.

    >>> format_value(1234.56, "currency")
    '$1,235'
    >>> format_value(0.4567, "percent")
    '45.7%'
    >>> format_value(3725, "seconds", "human_readable")
    '1h 2m 5s'
    """
    unit = MetricUnit(unit)
    if value is None or math.isnan(value):
        value = 0.0

    if unit == MetricUnit.SECONDS and time_format:
        return _format_duration(value, TimeFormat(time_format))

    if unit == MetricUnit.CURRENCY:
        return f"${_whole(value):,}"
    if unit == MetricUnit.PERCENT:
        return f"{value * 100:.1f}%"
    if unit == MetricUnit.SECONDS:
        if value < 60:
            return f"{value:.0f}s"
        if value < 3600:
            return f"{value / 60:.1f}m"
        return f"{value / 3600:.1f}h"
    if unit == MetricUnit.DAYS:
        return f"{value:.1f}d"
    return f"{_whole(value):,}"


def _format_duration(seconds: float, time_format: TimeFormat) -> str:
    if time_format == TimeFormat.MINUTES:
        return f"{seconds / 60:.1f}m"
    if time_format == TimeFormat.HOURS:
        return f"{seconds / 3600:.2f}h"

    total = int(seconds)
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours > 0:
        return f"{hours}h {minutes}m {secs}s"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def _whole(value: float) -> int:
    # half away from zero, like most dashboards; round() would give banker's rounding
    return int(math.floor(abs(value) + 0.5)) * (1 if value >= 0 else -1)
