"""Tests for the execution engine against the fixture dataset."""

import logging
from datetime import date

import pytest

from salesmetrics.engine import MetricsEngine, calc_change
from salesmetrics.errors import (
    DataSourceError,
    InvalidFilter,
    InvalidRange,
    MetricNotFound,
    UnsupportedBreakdown,
)
from salesmetrics.executor.duckdb_executor import DuckDBExecutor
from salesmetrics.models import (
    BreakdownType,
    DateRange,
    ExecuteOptions,
    MetricRequest,
    PeriodType,
    SeriesResult,
    TimeGrain,
    TotalResult,
    VizType,
    WidgetSettings,
)
from salesmetrics.parser.loader import MetricRegistry
from salesmetrics.periods import generate_periods


class BrokenExecutor:
    def execute(self, sql, params=None):
        raise RuntimeError("connection reset")


def _request(make_filters, metric_name: str, **filters) -> MetricRequest:
    return MetricRequest(metric_name=metric_name, filters=make_filters(**filters))


def _options(breakdown=None, grain=TimeGrain.DAY, compare=False, **kwargs) -> ExecuteOptions:
    return ExecuteOptions(
        dynamic_breakdown=breakdown,
        widget_settings=WidgetSettings(time_grain=grain, compare_previous=compare),
        **kwargs,
    )


def _points(result) -> dict[str, float]:
    assert isinstance(result, SeriesResult)
    return {p.period_key: p.value for p in result.data}


class TestCalcChange:
    def test_percent_change(self):
        assert calc_change(150, 100) == 50.0
        assert calc_change(50, 100) == -50.0

    def test_no_baseline(self):
        assert calc_change(10, 0) is None


class TestTotals:
    def test_total_appointments_scoped_to_account(self, engine: MetricsEngine, make_filters):
        """Only the requested account's rows count."""
        result = engine.execute(_request(make_filters, "total_appointments"), _options())
        assert isinstance(result, TotalResult)
        assert result.data.value == 10

        other = engine.execute(
            _request(make_filters, "total_appointments", account_id="acct_b"), _options()
        )
        assert other.data.value == 5

    def test_change_vs_previous_window(self, engine: MetricsEngine, make_filters):
        """dec 18..31 has one appointment, so 10 is +900%."""
        result = engine.execute(
            _request(make_filters, "total_appointments"), _options(compare=True)
        )
        assert result.data.change == pytest.approx(900.0)

    def test_change_is_none_without_baseline(self, engine: MetricsEngine, make_filters):
        result = engine.execute(
            _request(make_filters, "total_appointments", account_id="acct_b"),
            _options(compare=True),
        )
        assert result.data.change is None

    def test_change_skipped_when_disabled(self, engine: MetricsEngine, make_filters):
        result = engine.execute(_request(make_filters, "total_appointments"), _options())
        assert result.data.change is None

    @pytest.mark.parametrize(
        ("metric_name", "expected"),
        [
            ("shows", 7),
            ("show_rate", 0.7),
            ("wins", 4),
            ("close_rate", 4 / 7),
            ("cash_collected", 6500),
            ("total_sales_value", 7500),
            ("average_order_value", 1625),
            ("days_to_appointment", 1.2),
            ("total_discoveries", 2),
            ("discovery_show_rate", 0.5),
            ("total_dials", 6),
            ("answered_dials", 4),
            ("answer_rate", 4 / 6),
            ("meaningful_conversations", 3),
            ("dial_bookings", 2),
            ("average_call_duration", 240),
            ("total_talk_time", 985),
            ("deals_closed", 4),
            ("deals_won", 3),
            ("deal_win_rate", 0.75),
            ("won_revenue", 5500),
            ("average_deal_size", 5500 / 3),
            ("total_payments", 3),
            ("payments_collected", 4500),
            ("total_leads", 12),
        ],
    )
    def test_catalog_values(self, engine: MetricsEngine, make_filters, metric_name, expected):
        result = engine.execute(_request(make_filters, metric_name), _options())
        assert result.data.value == pytest.approx(expected)

    def test_empty_window_is_zero(self, engine: MetricsEngine, make_filters):
        window = DateRange(start=date(2025, 1, 1), end=date(2025, 1, 31))
        for name in ("total_appointments", "show_rate", "average_call_duration"):
            result = engine.execute(_request(make_filters, name, date_range=window), _options())
            assert result.data.value == 0

    def test_rep_filter(self, engine: MetricsEngine, make_filters):
        result = engine.execute(
            _request(make_filters, "total_appointments", rep_ids=["r1"]), _options()
        )
        assert result.data.value == 4

    def test_setter_filter(self, engine: MetricsEngine, make_filters):
        result = engine.execute(
            _request(make_filters, "total_appointments", setter_ids=["s1", "s2"]), _options()
        )
        assert result.data.value == 8

    def test_acquisition_filter(self, engine: MetricsEngine, make_filters):
        """c1..c3 came from facebook, so a1..a3 match."""
        result = engine.execute(
            _request(make_filters, "total_appointments", utm_source=["facebook"]), _options()
        )
        assert result.data.value == 3

    def test_acquisition_filter_on_leads(self, engine: MetricsEngine, make_filters):
        result = engine.execute(
            _request(make_filters, "total_leads", utm_source=["google"]), _options()
        )
        # c4, c5, c20, c21
        assert result.data.value == 4


class TestBreakdowns:
    def test_rep_breakdown(self, engine: MetricsEngine, make_filters):
        result = engine.execute(
            _request(make_filters, "total_appointments"), _options(BreakdownType.REP)
        )
        assert result.breakdown == BreakdownType.REP
        assert _points(result) == {"r1": 4, "r2": 4, "u_both": 2}
        labels = {p.period_key: p.period_label for p in result.data}
        assert labels["r1"] == "Rita Rep"
        assert labels["u_both"] == "Bo Both"

    def test_setter_breakdown_has_inbound_bucket(self, engine: MetricsEngine, make_filters):
        """Appointments with no setter are grouped as inbound."""
        result = engine.execute(
            _request(make_filters, "total_appointments_setters"), _options()
        )
        assert _points(result) == {"inbound": 1, "s1": 4, "s2": 4, "u_both": 1}
        labels = {p.period_key: p.period_label for p in result.data}
        assert labels["inbound"] == "Inbound"
        assert labels["s1"] == "Sam Setter"

    def test_breakdown_sums_to_total(self, engine: MetricsEngine, make_filters):
        for breakdown in (BreakdownType.REP, BreakdownType.SETTER, BreakdownType.LINK):
            result = engine.execute(
                _request(make_filters, "total_appointments"), _options(breakdown)
            )
            assert sum(_points(result).values()) == 10

    def test_link_breakdown(self, engine: MetricsEngine, make_filters):
        result = engine.execute(_request(make_filters, "appointments_link"), _options())
        points = _points(result)

        assert len(points) == 8
        assert points["s1->r1"] == 2
        assert points["s2->r2"] == 2
        labels = {p.period_key: p.period_label for p in result.data}
        assert labels["s1->r1"] == "Sam Setter -> Rita Rep"
        assert labels["inbound->r2"] == "Inbound -> Rob Rep"

    def test_ratio_breakdown(self, engine: MetricsEngine, make_filters):
        result = engine.execute(_request(make_filters, "show_rate_reps"), _options())
        points = _points(result)
        assert points["r1"] == pytest.approx(1.0)
        assert points["r2"] == pytest.approx(0.5)
        assert points["u_both"] == pytest.approx(0.5)

    def test_time_breakdown_weekly(self, engine: MetricsEngine, make_filters):
        result = engine.execute(
            _request(make_filters, "total_appointments"),
            _options(BreakdownType.TIME, grain=TimeGrain.WEEK),
        )
        assert [(p.period_key, p.period_label, p.value) for p in result.data] == [
            ("2024-01-01", "Week of Jan 1", 5),
            ("2024-01-08", "Week of Jan 8", 5),
        ]

    def test_time_breakdown_clips_first_week(self, engine: MetricsEngine, make_filters):
        """a window starting on a wednesday keys its first week on that wednesday."""
        window = DateRange(start=date(2024, 1, 3), end=date(2024, 1, 14))
        result = engine.execute(
            _request(make_filters, "total_appointments", date_range=window),
            _options(BreakdownType.TIME, grain=TimeGrain.WEEK),
        )

        assert [(p.period_key, p.period_label, p.value) for p in result.data] == [
            ("2024-01-03", "Week of Jan 3", 3),
            ("2024-01-08", "Week of Jan 8", 5),
        ]
        periods = generate_periods(window, PeriodType.WEEKLY)
        assert [p.period_key for p in result.data] == [p.key for p in periods]

    def test_time_breakdown_daily_skips_empty_days(self, engine: MetricsEngine, make_filters):
        result = engine.execute(_request(make_filters, "appointments_over_time"), _options())
        keys = [p.period_key for p in result.data]
        assert len(keys) == 10
        assert keys == sorted(keys)
        assert "2024-01-06" not in keys

    def test_line_viz_turns_total_into_series(self, engine: MetricsEngine, make_filters):
        result = engine.execute(
            _request(make_filters, "total_appointments"), _options(viz_type=VizType.LINE)
        )
        assert isinstance(result, SeriesResult)
        assert result.breakdown == BreakdownType.TIME

    def test_dynamic_total_always_allowed(self, engine: MetricsEngine, make_filters):
        result = engine.execute(
            _request(make_filters, "total_appointments_reps"), _options(BreakdownType.TOTAL)
        )
        assert isinstance(result, TotalResult)
        assert result.data.value == 10

    def test_unsupported_breakdown_falls_back(
        self, engine: MetricsEngine, make_filters, caplog
    ):
        """total_dials has no rep breakdown: warn and use the native one."""
        with caplog.at_level(logging.WARNING, logger="salesmetrics"):
            result = engine.execute(
                _request(make_filters, "total_dials"), _options(BreakdownType.REP)
            )
        assert isinstance(result, TotalResult)
        assert result.data.value == 6
        assert any("falling back" in r.getMessage() for r in caplog.records)
        warning = next(r for r in caplog.records if "falling back" in r.getMessage())
        assert warning.metric_name == "total_dials"

    def test_unsupported_breakdown_strict(self, engine: MetricsEngine, make_filters):
        with pytest.raises(UnsupportedBreakdown):
            engine.execute(
                _request(make_filters, "total_dials"),
                _options(BreakdownType.REP, strict_breakdown=True),
            )


class TestComputeParts:
    def test_ratio_parts(self, engine: MetricsEngine, make_filters):
        parts = engine.compute_parts("show_rate", make_filters())
        assert parts.numerator == 7
        assert parts.denominator == 10
        assert parts.value == pytest.approx(0.7)
        assert parts.row_count == 10

    def test_row_count_respects_metric_filter(self, engine: MetricsEngine, make_filters):
        parts = engine.compute_parts("shows", make_filters())
        assert parts.value == 7
        assert parts.row_count == 7
        assert parts.numerator is None

    def test_average_parts(self, engine: MetricsEngine, make_filters):
        parts = engine.compute_parts("average_call_duration", make_filters())
        assert parts.numerator == 960
        assert parts.denominator == 4


class TestErrors:
    def test_unknown_metric(self, engine: MetricsEngine, make_filters):
        with pytest.raises(MetricNotFound):
            engine.execute(_request(make_filters, "nope"))

    def test_inverted_range(self, engine: MetricsEngine, make_filters):
        window = DateRange(start=date(2024, 2, 1), end=date(2024, 1, 1))
        with pytest.raises(InvalidRange):
            engine.execute(_request(make_filters, "total_appointments", date_range=window))

    def test_rep_filter_on_dials(self, engine: MetricsEngine, make_filters):
        with pytest.raises(InvalidFilter):
            engine.execute(_request(make_filters, "total_dials", rep_ids=["r1"]))

    def test_datasource_error_carries_context(self, registry: MetricRegistry, make_filters):
        """A missing table surfaces as DataSourceError with metric and account."""
        empty = DuckDBExecutor()
        engine = MetricsEngine(registry, empty)
        with pytest.raises(DataSourceError) as exc_info:
            engine.execute(_request(make_filters, "total_appointments"), _options())

        error = exc_info.value
        assert error.metric_name == "total_appointments"
        assert error.context["account_id"] == "acct_a"
        assert error.context["date_range"] == "2024-01-01..2024-01-14"
        assert error.detail
        empty.close()


    def test_foreign_executor_error_is_wrapped(self, registry: MetricRegistry, make_filters):
        """executors that raise their own errors still surface as DataSourceError."""
        engine = MetricsEngine(registry, BrokenExecutor())
        with pytest.raises(DataSourceError) as exc_info:
            engine.execute(_request(make_filters, "total_appointments"), _options())

        error = exc_info.value
        assert error.detail == "connection reset"
        assert error.metric_name == "total_appointments"
        assert error.context["account_id"] == "acct_a"
        assert isinstance(error.__cause__, RuntimeError)


class TestLogging:
    def test_query_log_carries_context(self, engine: MetricsEngine, make_filters, caplog):
        with caplog.at_level(logging.DEBUG, logger="salesmetrics.engine"):
            engine.execute(_request(make_filters, "show_rate"), _options())

        record = next(r for r in caplog.records if r.getMessage().startswith("running"))
        assert record.metric_name == "show_rate"
        assert record.account_id == "acct_a"


class TestExplain:
    def test_explain_returns_sql(self, engine: MetricsEngine, make_filters):
        sql = engine.explain(
            _request(make_filters, "total_appointments"), _options(BreakdownType.REP)
        )
        assert "GROUP BY" in sql.upper()
