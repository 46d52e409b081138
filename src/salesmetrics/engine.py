"""Execution engine: metric request in, typed result out.

the engine owns the decisions that aren't sql: which breakdown a request
really gets, whether to compare against the previous window, and how rows
are shaped into a TotalResult or SeriesResult.
"""

import logging
from datetime import date, datetime

from salesmetrics.compiler.sql_builder import (
    INBOUND_KEY,
    UNASSIGNED_KEY,
    CompiledQuery,
    SQLCompiler,
)
from salesmetrics.errors import DataSourceError, UnsupportedBreakdown
from salesmetrics.executor.base import QueryExecutor
from salesmetrics.models.metric import MetricDefinition
from salesmetrics.models.period import PeriodType
from salesmetrics.models.request import (
    AggregateParts,
    ExecuteOptions,
    MetricFilters,
    MetricRequest,
    MetricResult,
    QueryResult,
    SeriesPoint,
    SeriesResult,
    TotalData,
    TotalResult,
    VizType,
)
from salesmetrics.models.source import BreakdownType, TimeGrain
from salesmetrics.parser.loader import MetricRegistry
from salesmetrics.periods import period_label

logger = logging.getLogger(__name__)

DEFAULT_LABELS = {INBOUND_KEY: "Inbound", UNASSIGNED_KEY: "Unassigned"}

_GRAIN_PERIODS = {
    TimeGrain.DAY: PeriodType.DAILY,
    TimeGrain.WEEK: PeriodType.WEEKLY,
    TimeGrain.MONTH: PeriodType.MONTHLY,
}


def calc_change(current: float, previous: float) -> float | None:
    """Percent change from previous to current. None when there's no baseline."""
    if previous == 0:
        return None
    return (current - previous) / previous * 100


class MetricsEngine:
    """Runs metric requests against a QueryExecutor.

    holds no per-request state, so one engine can be shared by every worker
    thread of a batch.
    """

    def __init__(
        self,
        registry: MetricRegistry,
        executor: QueryExecutor,
        compiler: SQLCompiler | None = None,
    ) -> None:
        self.registry = registry
        self.executor = executor
        self.compiler = compiler or SQLCompiler(registry)

    def execute(
        self,
        request: MetricRequest,
        options: ExecuteOptions | None = None,
    ) -> MetricResult:
        """Compute one metric.

        Raises:
            MetricNotFound: unknown metric name.
            InvalidRange: start after end.
            InvalidFilter: rep/setter filter on a source without the column.
            UnsupportedBreakdown: only when options.strict_breakdown is set.
            DataSourceError: the query itself failed.
        """
        options = options or ExecuteOptions()
        metric = self.registry.get_metric(request.metric_name)
        breakdown = self.resolve_breakdown(metric, options)
        grain = options.widget_settings.time_grain

        compiled = self.compiler.compile(metric, request.filters, breakdown, grain)
        result = self._run(compiled, metric, request.filters)

        if breakdown == BreakdownType.TOTAL:
            value = _total_value(result)
            change = None
            if options.widget_settings.compare_previous:
                previous = self.compute_parts(
                    metric.name,
                    request.filters.model_copy(
                        update={"date_range": request.filters.date_range.previous()}
                    ),
                )
                change = calc_change(value, previous.value)
            return TotalResult(data=TotalData(value=value, change=change))

        window_start = request.filters.date_range.start
        points = [_series_point(row, breakdown, grain, window_start) for row in result.data]
        points.sort(key=lambda p: p.period_key)
        return SeriesResult(breakdown=breakdown, data=points)

    def explain(self, request: MetricRequest, options: ExecuteOptions | None = None) -> str:
        """The SQL execute() would run for this request."""
        options = options or ExecuteOptions()
        metric = self.registry.get_metric(request.metric_name)
        breakdown = self.resolve_breakdown(metric, options)
        compiled = self.compiler.compile(
            metric, request.filters, breakdown, options.widget_settings.time_grain
        )
        return compiled.sql

    def compute_parts(self, metric_name: str, filters: MetricFilters) -> AggregateParts:
        """Ungrouped value plus the parts needed to recombine it.

        the user engine adds these up across roles; the period runner across
        periods.
        """
        metric = self.registry.get_metric(metric_name)
        compiled = self.compiler.compile(metric, filters, BreakdownType.TOTAL)
        result = self._run(compiled, metric, filters)
        if not result.data:
            return AggregateParts()

        row = result.data[0]
        return AggregateParts(
            value=_as_float(row.get("value")),
            numerator=_as_float(row["numerator"]) if "numerator" in row else None,
            denominator=_as_float(row["denominator"]) if "denominator" in row else None,
            row_count=int(row.get("row_count") or 0),
        )

    def resolve_breakdown(
        self,
        metric: MetricDefinition,
        options: ExecuteOptions,
    ) -> BreakdownType:
        """Pick the breakdown a request actually gets.

        a dynamic breakdown wins if the metric declares it; otherwise we fall
        back to the metric's native breakdown (or raise, in strict mode).
        """
        native = metric.breakdown_type
        requested = options.dynamic_breakdown

        if requested is None:
            # line/area charts of a single number make no sense - plot it over time
            if native == BreakdownType.TOTAL and options.viz_type in (VizType.LINE, VizType.AREA):
                return BreakdownType.TIME
            return native

        # collapsing to one number is always possible
        if requested == BreakdownType.TOTAL or metric.supports_breakdown(requested):
            return requested

        error = UnsupportedBreakdown(
            f"Metric '{metric.name}' does not support a {requested.value} breakdown",
            metric_name=metric.name,
        )
        if options.strict_breakdown:
            raise error
        logger.warning(
            "%s; falling back to %s", error, native.value, extra={"metric_name": metric.name}
        )
        return native

    def _run(
        self,
        compiled: CompiledQuery,
        metric: MetricDefinition,
        filters: MetricFilters,
    ) -> QueryResult:
        context = {"metric_name": metric.name, "account_id": filters.account_id}
        logger.debug(
            "running %s:\n%s\nparams=%s", metric.name, compiled.sql, compiled.params, extra=context
        )
        try:
            return self.executor.execute(compiled.sql, compiled.params)
        except Exception as e:
            # executors other than duckdb raise their own driver errors
            detail = e.detail if isinstance(e, DataSourceError) else None
            raise DataSourceError(
                f"Query for metric '{metric.name}' failed",
                detail=detail or str(e),
                metric_name=metric.name,
                account_id=filters.account_id,
                date_range=filters.date_range,
            ) from e


def _as_float(value) -> float:
    return float(value) if value is not None else 0.0


def _total_value(result: QueryResult) -> float:
    if not result.data:
        return 0.0
    return _as_float(result.data[0].get("value"))


def _user_label(key: str, name: str | None) -> str:
    return name or DEFAULT_LABELS.get(key, key)


def _series_point(
    row: dict,
    breakdown: BreakdownType,
    grain: TimeGrain,
    window_start: date,
) -> SeriesPoint:
    value = _as_float(row.get("value"))

    if breakdown == BreakdownType.TIME:
        day = row["time_key"]
        if isinstance(day, datetime):
            day = day.date()
        elif isinstance(day, str):
            day = date.fromisoformat(day[:10])
        # the first bucket is clipped to the window, as generate_periods does
        day = max(day, window_start)
        return SeriesPoint(
            period_key=day.isoformat(),
            period_label=period_label(day, _GRAIN_PERIODS[grain]),
            value=value,
        )

    if breakdown == BreakdownType.LINK:
        setter_key, rep_key = row["setter_key"], row["rep_key"]
        setter_label = _user_label(setter_key, row.get("setter_label"))
        rep_label = _user_label(rep_key, row.get("rep_label"))
        return SeriesPoint(
            period_key=f"{setter_key}->{rep_key}",
            period_label=f"{setter_label} -> {rep_label}",
            value=value,
        )

    key = row["group_key"]
    return SeriesPoint(
        period_key=key,
        period_label=_user_label(key, row.get("group_label")),
        value=value,
    )
