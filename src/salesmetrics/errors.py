"""Error taxonomy for the metrics engine.

every error carries enough context (metric, account, window) for the calling
layer to log it and show something useful to an end user. caller errors
(unknown metric, bad range, bad filter) are never retried and datasource errors
are surfaced as-is.
"""

from typing import Any


class MetricsError(Exception):
    """Base class for everything the engine raises on purpose."""

    def __init__(
        self,
        message: str,
        *,
        metric_name: str | None = None,
        account_id: str | None = None,
        date_range: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.metric_name = metric_name
        self.account_id = account_id
        self.date_range = date_range

    @property
    def context(self) -> dict[str, Any]:
        return {
            "metric_name": self.metric_name,
            "account_id": self.account_id,
            "date_range": str(self.date_range) if self.date_range is not None else None,
        }

    def __str__(self) -> str:
        return self.message


class MetricNotFound(MetricsError, KeyError):
    """Unknown metric name. Also a KeyError so dict-style callers keep working."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown metric: {name}", metric_name=name)


class InvalidRange(MetricsError):
    """Date range is malformed or inverted."""


class InvalidFilter(MetricsError):
    """A filter references a column the metric's source doesn't have."""


class UnsupportedBreakdown(MetricsError):
    """Requested breakdown isn't declared by the metric.

    only raised in strict mode - normally the engine logs this and falls back
    to the metric's native breakdown.
    """


class DataSourceError(MetricsError):
    """The underlying query failed."""

    def __init__(self, message: str, *, detail: str | None = None, **context: Any) -> None:
        super().__init__(message, **context)
        self.detail = detail


class PartialBatchFailure(MetricsError):
    """Some units of a per-user / per-period batch failed.

    batches never raise this themselves - units fall back to zero and carry an
    error string. callers who want all-or-nothing call raise_for_failures().
    """

    def __init__(self, message: str, failures: dict[str, str], **context: Any) -> None:
        super().__init__(message, **context)
        self.failures = failures


class BatchCancelled(MetricsError):
    """Caller cancelled a batch; partial results are discarded."""
