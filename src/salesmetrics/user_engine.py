"""Per-user metrics with setter/rep role detection.

for every user the metric is evaluated once per role the metric can credit:
as setter (setter_ids=[user]) and as rep (rep_ids=[user]). whichever roles
actually have rows decide the user's role, and the per-role parts are
recombined - summed for counts and sums, ratio-of-sums for averages and
ratios. never an average of the two values.
"""

import logging
import time
from datetime import datetime, timezone

from salesmetrics.batch import CancellationToken, run_batch
from salesmetrics.engine import MetricsEngine
from salesmetrics.errors import InvalidFilter, InvalidRange
from salesmetrics.formatting import format_value
from salesmetrics.models.metric import AttributionContext, MetricDefinition
from salesmetrics.models.request import AggregateParts, DateRange, MetricFilters
from salesmetrics.models.source import ActivitySource
from salesmetrics.models.user_metrics import (
    RoleBreakdown,
    UserMetricResult,
    UserMetricsRequest,
    UserMetricsResponse,
    UserRole,
)
from salesmetrics.parser.loader import MetricRegistry

logger = logging.getLogger(__name__)


def combine_parts(metric: MetricDefinition, parts: list[AggregateParts]) -> float:
    """Combine disjoint aggregates of the same metric into one value."""
    if metric.is_additive:
        return sum(p.value for p in parts)
    numerator = sum(p.numerator or 0.0 for p in parts)
    denominator = sum(p.denominator or 0.0 for p in parts)
    return numerator / denominator if denominator else 0.0


def roles_for(metric: MetricDefinition, source: ActivitySource) -> list[UserRole]:
    """Roles a metric can credit, narrowed by its attribution context."""
    context = metric.attribution_context
    roles = []
    if source.setter_column and context in (
        None,
        AttributionContext.BOOKED,
        AttributionContext.DIALER,
    ):
        roles.append(UserRole.SETTER)
    if source.rep_column and context in (None, AttributionContext.ASSIGNED):
        roles.append(UserRole.REP)
    return roles


class UserMetricsEngine:
    """Computes one metric for many users, concurrently.

    a failing user comes back as value 0, role none and an error string; the
    rest of the batch is unaffected.
    """

    def __init__(self, engine: MetricsEngine, max_workers: int = 8) -> None:
        self.engine = engine
        self.max_workers = max_workers

    @property
    def registry(self) -> MetricRegistry:
        return self.engine.registry

    def calculate_for_users(
        self,
        request: UserMetricsRequest,
        cancel: CancellationToken | None = None,
    ) -> UserMetricsResponse:
        """Compute request.metric_name for each of request.user_ids.

        results are in the same order as user_ids.

        Raises:
            MetricNotFound: unknown metric.
            InvalidRange: start after end.
            InvalidFilter: the metric's source has no user columns at all.
            BatchCancelled: cancel was set before the batch finished.
        """
        start = time.perf_counter()
        metric = self.registry.get_metric(request.metric_name)
        source = self.registry.source_for(metric)
        date_range = DateRange(start=request.start_date, end=request.end_date)
        context = {
            "metric_name": metric.name,
            "account_id": request.account_id,
            "date_range": date_range,
        }

        if date_range.start > date_range.end:
            raise InvalidRange(
                f"Start date {date_range.start} is after end date {date_range.end}", **context
            )
        roles = roles_for(metric, source)
        if not roles:
            raise InvalidFilter(
                f"Metric '{metric.name}' is on source '{source.name}' which has no "
                f"setter or rep column",
                **context,
            )

        def _calculate(user_id: str) -> UserMetricResult:
            return self._calculate_user(metric, roles, request, date_range, user_id)

        def _fallback(user_id: str, error: Exception) -> UserMetricResult:
            return UserMetricResult(
                user_id=user_id, value=0.0, role=UserRole.NONE, error=str(error)
            )

        results = run_batch(
            request.user_ids,
            _calculate,
            _fallback,
            max_workers=self.max_workers,
            cancel=cancel,
            label="user",
        )

        return UserMetricsResponse(
            metric_name=metric.name,
            results=results,
            execution_time_ms=round((time.perf_counter() - start) * 1000, 2),
            executed_at=datetime.now(timezone.utc),
        )

    def _calculate_user(
        self,
        metric: MetricDefinition,
        roles: list[UserRole],
        request: UserMetricsRequest,
        date_range: DateRange,
        user_id: str,
    ) -> UserMetricResult:
        parts: dict[UserRole, AggregateParts] = {}
        for role in roles:
            filters = MetricFilters(
                date_range=date_range,
                account_id=request.account_id,
                setter_ids=[user_id] if role == UserRole.SETTER else None,
                rep_ids=[user_id] if role == UserRole.REP else None,
            )
            parts[role] = self.engine.compute_parts(metric.name, filters)

        # a role only counts if the user actually has rows in it
        active = {role: p for role, p in parts.items() if p.row_count > 0}

        breakdown = None
        if not active:
            role = UserRole.NONE
            value = 0.0
        elif len(active) == 1:
            role, only = next(iter(active.items()))
            value = only.value
        else:
            role = UserRole.BOTH
            value = combine_parts(metric, list(active.values()))
            breakdown = RoleBreakdown(
                as_setter=active[UserRole.SETTER].value,
                as_rep=active[UserRole.REP].value,
            )

        logger.debug("%s for user %s: role=%s value=%s", metric.name, user_id, role.value, value)

        return UserMetricResult(
            user_id=user_id,
            value=value,
            role=role,
            breakdown=breakdown,
            display_value=format_value(value, metric.unit, request.options.time_format),
        )
