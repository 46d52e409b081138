"""Drive the engines once per period.

every period is computed from scratch with its own query (or one query per
user and role for the matrix). that's O(periods) / O(periods x users) queries,
which is fine for dashboard-sized ranges and keeps the numbers identical to
what a single-period request would return.

totals: additive metrics sum their periods; averages and ratios are
recomputed over the whole range, since adding up period ratios is wrong.
"""

import logging
import time
from datetime import date

from salesmetrics.batch import CancellationToken, run_batch
from salesmetrics.engine import MetricsEngine
from salesmetrics.formatting import format_value
from salesmetrics.models.metric import MetricDefinition
from salesmetrics.models.period import (
    Period,
    PeriodMetric,
    PeriodType,
    TimeSeriesResponse,
    UserPeriodMatrix,
    UserPeriodRow,
)
from salesmetrics.models.request import (
    DateRange,
    ExecuteOptions,
    MetricFilters,
    MetricRequest,
    WidgetSettings,
)
from salesmetrics.models.source import BreakdownType
from salesmetrics.models.user_metrics import UserMetricOptions, UserMetricsRequest
from salesmetrics.periods import generate_periods
from salesmetrics.user_engine import UserMetricsEngine

logger = logging.getLogger(__name__)


class PeriodMetricsRunner:
    """Account-level time series and user x period matrices."""

    def __init__(
        self,
        engine: MetricsEngine,
        user_engine: UserMetricsEngine | None = None,
        max_workers: int = 8,
    ) -> None:
        self.engine = engine
        self.user_engine = user_engine or UserMetricsEngine(engine, max_workers=max_workers)
        self.max_workers = max_workers

    def account_time_series(
        self,
        metric_name: str,
        account_id: str,
        date_range: DateRange,
        period_type: PeriodType | str = PeriodType.WEEKLY,
        options: ExecuteOptions | None = None,
        cancel: CancellationToken | None = None,
    ) -> TimeSeriesResponse:
        """One total per period for the whole account.

        a period whose query fails comes back as 0 with its error set.
        """
        start = time.perf_counter()
        metric = self.engine.registry.get_metric(metric_name)
        period_type = PeriodType(period_type)
        periods = generate_periods(date_range, period_type)
        time_format = options.widget_settings.time_format if options else None

        def _compute(period: Period) -> PeriodMetric:
            value = self._total(metric, account_id, period.start_date, period.end_date)
            return PeriodMetric(
                period_key=period.key,
                period_label=period.label,
                value=value,
                display_value=format_value(value, metric.unit, time_format),
            )

        def _fallback(period: Period, error: Exception) -> PeriodMetric:
            return PeriodMetric(
                period_key=period.key,
                period_label=period.label,
                value=0.0,
                error=str(error),
            )

        period_metrics = run_batch(
            periods,
            _compute,
            _fallback,
            max_workers=self.max_workers,
            cancel=cancel,
            label="period",
        )

        if metric.is_additive:
            total = sum(p.value for p in period_metrics)
        else:
            total = self._total(metric, account_id, date_range.start, date_range.end)

        return TimeSeriesResponse(
            metric_name=metric.name,
            period_type=period_type,
            periods=periods,
            period_metrics=period_metrics,
            total=total,
            execution_time_ms=round((time.perf_counter() - start) * 1000, 2),
        )

    def user_period_matrix(
        self,
        metric_name: str,
        account_id: str,
        user_ids: list[str],
        date_range: DateRange,
        period_type: PeriodType | str = PeriodType.WEEKLY,
        options: UserMetricOptions | None = None,
        cancel: CancellationToken | None = None,
    ) -> UserPeriodMatrix:
        """One value per user per period, plus a per-user total.

        periods run one after another; inside a period the users fan out over
        the user engine's pool, so concurrency stays bounded by max_workers.
        """
        start = time.perf_counter()
        metric = self.engine.registry.get_metric(metric_name)
        period_type = PeriodType(period_type)
        periods = generate_periods(date_range, period_type)
        options = options or UserMetricOptions()
        user_ids = list(dict.fromkeys(user_ids))  # duplicates would double up rows

        rows = {user_id: UserPeriodRow(user_id=user_id) for user_id in user_ids}
        for period in periods:
            response = self.user_engine.calculate_for_users(
                self._user_request(
                    metric, account_id, user_ids, period.start_date, period.end_date, options
                ),
                cancel=cancel,
            )
            for result in response.results:
                rows[result.user_id].periods.append(
                    PeriodMetric(
                        period_key=period.key,
                        period_label=period.label,
                        value=result.value,
                        display_value=result.display_value,
                        error=result.error,
                    )
                )

        if metric.is_additive:
            for row in rows.values():
                row.total = sum(p.value for p in row.periods)
        else:
            response = self.user_engine.calculate_for_users(
                self._user_request(
                    metric, account_id, user_ids, date_range.start, date_range.end, options
                ),
                cancel=cancel,
            )
            for result in response.results:
                rows[result.user_id].total = result.value

        logger.info("%s matrix: %d users x %d periods", metric.name, len(user_ids), len(periods))

        return UserPeriodMatrix(
            metric_name=metric.name,
            period_type=period_type,
            periods=periods,
            rows=[rows[user_id] for user_id in user_ids],
            execution_time_ms=round((time.perf_counter() - start) * 1000, 2),
        )

    def _total(
        self,
        metric: MetricDefinition,
        account_id: str,
        start_date: date,
        end_date: date,
    ) -> float:
        request = MetricRequest(
            metric_name=metric.name,
            filters=MetricFilters(
                date_range=DateRange(start=start_date, end=end_date),
                account_id=account_id,
            ),
        )
        result = self.engine.execute(
            request,
            ExecuteOptions(
                dynamic_breakdown=BreakdownType.TOTAL,
                widget_settings=WidgetSettings(compare_previous=False),
            ),
        )
        return result.data.value

    @staticmethod
    def _user_request(
        metric: MetricDefinition,
        account_id: str,
        user_ids: list[str],
        start_date: date,
        end_date: date,
        options: UserMetricOptions,
    ) -> UserMetricsRequest:
        return UserMetricsRequest(
            metric_name=metric.name,
            account_id=account_id,
            start_date=start_date,
            end_date=end_date,
            user_ids=user_ids,
            options=options,
        )
