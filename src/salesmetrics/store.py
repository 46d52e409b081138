"""Main MetricStore interface for salesmetrics."""

from datetime import date
from pathlib import Path
from typing import Any

from salesmetrics.batch import CancellationToken
from salesmetrics.compare.resolver import CompareModeResolver
from salesmetrics.compiler.sql_builder import SQLCompiler
from salesmetrics.config import Settings, get_settings
from salesmetrics.engine import MetricsEngine
from salesmetrics.errors import InvalidFilter
from salesmetrics.executor.duckdb_executor import DuckDBExecutor
from salesmetrics.models.compare import (
    CompareEntity,
    CompareResult,
    CompareScope,
    CompareSettings,
)
from salesmetrics.models.metric import AttributionMode
from salesmetrics.models.period import PeriodType, TimeSeriesResponse, UserPeriodMatrix
from salesmetrics.models.request import (
    ACQUISITION_FIELDS,
    DateRange,
    ExecuteOptions,
    MetricFilters,
    MetricRequest,
    MetricResult,
    TimeFormat,
    VizType,
    WidgetSettings,
)
from salesmetrics.models.source import BreakdownType, TimeGrain
from salesmetrics.models.user_metrics import (
    UserMetricOptions,
    UserMetricsRequest,
    UserMetricsResponse,
)
from salesmetrics.parser.loader import MetricRegistry
from salesmetrics.timeseries import PeriodMetricsRunner
from salesmetrics.user_engine import UserMetricsEngine


class MetricStore:
    """Main interface for salesmetrics.

    wires the registry, executor and engines together and takes plain
    arguments (strings for dates and enums) so scripts and the cli don't have
    to build request models by hand.
    """

    def __init__(
        self,
        catalog_dir: str | Path | None = None,
        database_path: str | Path | None = None,
        settings: Settings | None = None,
        registry: MetricRegistry | None = None,
        executor: DuckDBExecutor | None = None,
    ) -> None:
        """Initialize the metric store.

        Args:
            catalog_dir: Directory of metric YAML files. falls back to
                settings.catalog_dir, then the packaged catalog.
            database_path: Path to DuckDB file. falls back to
                settings.database_path, then in-memory.
            settings: Overrides get_settings().
            registry: Prebuilt registry, mostly for tests.
            executor: Prebuilt executor, mostly for tests.
        """
        self.settings = settings or get_settings()

        # load and validate the catalog upfront - fail fast if there are problems
        if registry is None:
            catalog_dir = catalog_dir or self.settings.catalog_dir
            registry = (
                MetricRegistry.from_directory(catalog_dir)
                if catalog_dir
                else MetricRegistry.default()
            )
        self.registry = registry
        self.executor = executor or DuckDBExecutor(database_path or self.settings.database_path)

        workers = self.settings.max_workers
        self.compiler = SQLCompiler(self.registry)
        self.engine = MetricsEngine(self.registry, self.executor, self.compiler)
        self.user_engine = UserMetricsEngine(self.engine, max_workers=workers)
        self.periods = PeriodMetricsRunner(self.engine, self.user_engine, max_workers=workers)
        self.resolver = CompareModeResolver(self.executor)

    # --- metrics ---

    def query(
        self,
        metric_name: str,
        account_id: str,
        start_date: str | date,
        end_date: str | date,
        breakdown: BreakdownType | str | None = None,
        time_grain: TimeGrain | str = TimeGrain.DAY,
        viz_type: VizType | str | None = None,
        compare_previous: bool = True,
        strict: bool = False,
        rep_ids: list[str] | None = None,
        setter_ids: list[str] | None = None,
        **acquisition: list[str],
    ) -> MetricResult:
        """Compute one metric for an account.

        Args:
            metric_name: Registry name, e.g. "show_rate".
            account_id: Tenant to compute for.
            start_date: First day (inclusive), ISO string or date.
            end_date: Last day (inclusive), ISO string or date.
            breakdown: Dynamic breakdown override (total, rep, setter, link, time).
            time_grain: Bucket size for time breakdowns.
            viz_type: Chart the result is for; line/area turn totals into series.
            compare_previous: Add percent change vs the preceding window to totals.
            strict: Raise UnsupportedBreakdown instead of falling back.
            rep_ids: Only rows assigned to these reps.
            setter_ids: Only rows booked by these setters.
            **acquisition: utm_source=[...] and friends, matched on the contact.

        Returns:
            TotalResult or SeriesResult.
        """
        request, options = self._build_request(
            metric_name,
            account_id,
            start_date,
            end_date,
            breakdown,
            time_grain,
            viz_type,
            compare_previous,
            strict,
            rep_ids,
            setter_ids,
            acquisition,
        )
        return self.engine.execute(request, options)

    def get_sql(
        self,
        metric_name: str,
        account_id: str,
        start_date: str | date,
        end_date: str | date,
        breakdown: BreakdownType | str | None = None,
        time_grain: TimeGrain | str = TimeGrain.DAY,
        rep_ids: list[str] | None = None,
        setter_ids: list[str] | None = None,
        **acquisition: list[str],
    ) -> str:
        """Get the SQL without executing it."""
        request, options = self._build_request(
            metric_name,
            account_id,
            start_date,
            end_date,
            breakdown,
            time_grain,
            None,
            False,
            False,
            rep_ids,
            setter_ids,
            acquisition,
        )
        return self.engine.explain(request, options)

    def user_metrics(
        self,
        metric_name: str,
        account_id: str,
        start_date: str | date,
        end_date: str | date,
        user_ids: list[str],
        time_format: TimeFormat | str | None = None,
        cancel: CancellationToken | None = None,
    ) -> UserMetricsResponse:
        """One value per user, with setter/rep role detection."""
        request = UserMetricsRequest(
            metric_name=metric_name,
            account_id=account_id,
            start_date=self._parse_date(start_date),
            end_date=self._parse_date(end_date),
            user_ids=user_ids,
            options=UserMetricOptions(time_format=time_format),
        )
        return self.user_engine.calculate_for_users(request, cancel=self._watch(cancel))

    def time_series(
        self,
        metric_name: str,
        account_id: str,
        start_date: str | date,
        end_date: str | date,
        period_type: PeriodType | str | None = None,
        time_format: TimeFormat | str | None = None,
        cancel: CancellationToken | None = None,
    ) -> TimeSeriesResponse:
        """Account-level value per period. period_type defaults to the settings."""
        options = ExecuteOptions(widget_settings=WidgetSettings(time_format=time_format))
        return self.periods.account_time_series(
            metric_name,
            account_id,
            self._date_range(start_date, end_date),
            period_type or self.settings.default_period_type,
            options=options,
            cancel=self._watch(cancel),
        )

    def user_matrix(
        self,
        metric_name: str,
        account_id: str,
        user_ids: list[str],
        start_date: str | date,
        end_date: str | date,
        period_type: PeriodType | str | None = None,
        time_format: TimeFormat | str | None = None,
        cancel: CancellationToken | None = None,
    ) -> UserPeriodMatrix:
        """User x period values, plus a total per user."""
        return self.periods.user_period_matrix(
            metric_name,
            account_id,
            user_ids,
            self._date_range(start_date, end_date),
            period_type or self.settings.default_period_type,
            options=UserMetricOptions(time_format=time_format),
            cancel=self._watch(cancel),
        )

    def compare(
        self,
        account_id: str,
        start_date: str | date,
        end_date: str | date,
        scope: CompareScope | str = CompareScope.SETTER,
        attribution_mode: AttributionMode | str = AttributionMode.PRIMARY,
        entities: list[CompareEntity] | None = None,
        exclude_in_call_dials: bool = True,
        exclude_rep_dials: bool = True,
    ) -> CompareResult:
        """Compare-mode table; lookback windows come from the settings."""
        settings = CompareSettings(
            scope=scope,
            attribution_mode=attribution_mode,
            exclude_in_call_dials=exclude_in_call_dials,
            exclude_rep_dials=exclude_rep_dials,
            time_window_days=self.settings.compare_time_window_days,
            same_call_window_minutes=self.settings.same_call_window_minutes,
        )
        return self.resolver.compare(
            account_id,
            self._date_range(start_date, end_date),
            settings,
            entities,
        )

    # --- catalog ---

    def list_metrics(self) -> list[dict]:
        """List all available metrics."""
        return [
            {
                "name": m.name,
                "label": m.display_name,
                "type": m.type,
                "unit": m.unit.value,
                "source": m.source,
                "breakdown": m.breakdown_type.value,
                "description": m.description,
            }
            for m in self.registry.metrics.values()
        ]

    def list_sources(self) -> list[dict]:
        """List all activity sources and the breakdowns they allow."""
        return [
            {
                "name": s.name,
                "table": s.table,
                "date_column": s.date_column,
                "breakdowns": [b.value for b in BreakdownType if s.supports(b)],
            }
            for s in self.registry.sources.values()
        ]

    def validate(self) -> list[str]:
        """Compile every metric in every breakdown it declares. Returns list of errors."""
        errors = []
        probe = MetricFilters(
            date_range=DateRange(start=date(2024, 1, 1), end=date(2024, 1, 31)),
            account_id="validate",
        )

        for metric in self.registry.metrics.values():
            for breakdown in dict.fromkeys(
                (BreakdownType.TOTAL, metric.breakdown_type, *metric.options.breakdowns)
            ):
                try:
                    self.compiler.compile(metric, probe, breakdown)
                except Exception as e:
                    errors.append(f"Metric '{metric.name}' ({breakdown.value}): {e}")

        return errors

    # --- data ---

    def create_schema(self) -> None:
        self.executor.create_schema()

    def load_file(self, table_name: str, path: str | Path) -> None:
        """Load a .parquet or .csv export into table_name, replacing it."""
        suffix = Path(path).suffix.lower()
        if suffix == ".parquet":
            self.executor.load_parquet(table_name, path)
        elif suffix == ".csv":
            self.executor.load_csv(table_name, path)
        else:
            raise ValueError(f"Unsupported file type '{suffix}', expected .parquet or .csv")

    def seed(self, seed: int = 42, **kwargs: Any) -> dict[str, int]:
        """Create the schema and load the deterministic sample dataset.

        Returns:
            Rows inserted per table.
        """
        # deferred so importing the store doesn't pull in the generator
        from salesmetrics.sample_data import load_sample_data

        self.create_schema()
        return load_sample_data(self.executor, seed=seed, **kwargs)

    # --- helpers ---

    def _watch(self, cancel: CancellationToken | None) -> CancellationToken | None:
        """Have the token interrupt queries that are already running."""
        if cancel is not None:
            cancel.add_callback(self.executor.interrupt)
        return cancel

    def _build_request(
        self,
        metric_name: str,
        account_id: str,
        start_date: str | date,
        end_date: str | date,
        breakdown: BreakdownType | str | None,
        time_grain: TimeGrain | str,
        viz_type: VizType | str | None,
        compare_previous: bool,
        strict: bool,
        rep_ids: list[str] | None,
        setter_ids: list[str] | None,
        acquisition: dict[str, list[str]],
    ) -> tuple[MetricRequest, ExecuteOptions]:
        unknown = sorted(set(acquisition) - set(ACQUISITION_FIELDS))
        if unknown:
            raise InvalidFilter(
                f"Unknown acquisition filter(s): {', '.join(unknown)}",
                metric_name=metric_name,
                account_id=account_id,
            )

        filters = MetricFilters(
            date_range=self._date_range(start_date, end_date),
            account_id=account_id,
            rep_ids=rep_ids,
            setter_ids=setter_ids,
            **acquisition,
        )
        options = ExecuteOptions(
            viz_type=viz_type,
            dynamic_breakdown=breakdown,
            widget_settings=WidgetSettings(
                time_grain=time_grain,
                compare_previous=compare_previous,
            ),
            strict_breakdown=strict,
        )
        return MetricRequest(metric_name=metric_name, filters=filters), options

    def _date_range(self, start_date: str | date, end_date: str | date) -> DateRange:
        return DateRange(start=self._parse_date(start_date), end=self._parse_date(end_date))

    def _parse_date(self, value: str | date) -> date:
        """Parse ISO date string or return date object as-is."""
        if isinstance(value, date):
            return value
        return date.fromisoformat(value)

    def close(self) -> None:
        """Close database connection."""
        self.executor.close()

    def __enter__(self) -> "MetricStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
