"""SQL compiler for metric requests.

turns (metric, filters, breakdown) into one parameterized statement.

the basic flow:
  1. validate the filters against the metric's source
  2. resolve the metric to aggregate expressions (value, and for
     average/ratio the numerator and denominator)
  3. build the filtered, grouped aggregate as a CTE
  4. join team member names onto the group keys for labels
  5. format with sqlglot

metric filters go inside the aggregate (CASE WHEN) rather than the WHERE
clause, which lets a ratio's numerator and denominator come out of one scan.
"""

from dataclasses import dataclass, field

import sqlglot

from salesmetrics.compiler.filters import build_where, validate_filters
from salesmetrics.models.metric import (
    AverageMetricParams,
    CountMetricParams,
    MetricDefinition,
    RatioMetricParams,
    SumMetricParams,
)
from salesmetrics.models.request import MetricFilters
from salesmetrics.models.source import ActivitySource, BreakdownType, TimeGrain
from salesmetrics.parser.loader import MetricRegistry

TEAM_MEMBERS_TABLE = "team_members"

# group keys for rows with no setter / no rep
INBOUND_KEY = "inbound"
UNASSIGNED_KEY = "unassigned"


@dataclass
class ResolvedAggregate:
    """A metric resolved to its SQL aggregate expressions."""

    value: str
    numerator: str | None = None  # only for average / ratio
    denominator: str | None = None
    row_count: str = "COUNT(*)"


@dataclass(frozen=True)
class CompiledQuery:
    """Parameterized statement plus what the engine needs to read it back."""

    sql: str
    params: list = field(default_factory=list)
    breakdown: BreakdownType = BreakdownType.TOTAL
    key_columns: tuple[str, ...] = ()


class SQLCompiler:
    """Compiles metric requests into SQL.

    stateless - holds a registry reference for resolving ratio parts and
    sources but never changes it, so one compiler can serve every thread.
    """

    def __init__(self, registry: MetricRegistry, dialect: str = "duckdb") -> None:
        self.registry = registry
        self.dialect = dialect  # passed to sqlglot for formatting

    def compile(
        self,
        metric: MetricDefinition | str,
        filters: MetricFilters,
        breakdown: BreakdownType = BreakdownType.TOTAL,
        time_grain: TimeGrain = TimeGrain.DAY,
    ) -> CompiledQuery:
        """Compile one metric under the given filters and breakdown.

        the breakdown must already be resolved - fallbacks for unsupported
        breakdowns are the engine's call, not ours.
        """
        if isinstance(metric, str):
            metric = self.registry.get_metric(metric)
        source = self.registry.source_for(metric)
        validate_filters(filters, source, metric_name=metric.name)

        if not source.supports(breakdown):
            raise ValueError(
                f"Source '{source.name}' has no column for a {breakdown.value} breakdown"
            )

        aggregate = self._resolve(metric)
        conditions, params = build_where(filters, source, alias="t")
        key_exprs = self._group_key_exprs(source, breakdown, time_grain)

        select_exprs = [f"{expr} AS {alias}" for alias, expr in key_exprs]
        select_exprs.append(f"{aggregate.value} AS value")
        if aggregate.numerator is not None:
            select_exprs.append(f"{aggregate.numerator} AS numerator")
            select_exprs.append(f"{aggregate.denominator} AS denominator")
        select_exprs.append(f"{aggregate.row_count} AS row_count")

        inner = self._assemble_query(
            select_exprs=select_exprs,
            from_clause=f"{source.table} AS t",
            where_conditions=conditions,
            group_by_exprs=[str(i) for i in range(1, len(key_exprs) + 1)],
        )

        key_columns = tuple(alias for alias, _ in key_exprs)
        sql, label_joins = self._wrap_with_labels(inner, breakdown, key_columns)
        params.extend([filters.account_id] * label_joins)

        return CompiledQuery(
            sql=self._format_sql(sql),
            params=params,
            breakdown=breakdown,
            key_columns=key_columns,
        )

    # --- metric resolution ---

    def _resolve(self, metric: MetricDefinition) -> ResolvedAggregate:
        """Convert a metric definition to aggregate expressions."""
        params = metric.type_params
        row_count = self._count_rows(metric.filter)

        if metric.type in ("count", "sum"):
            return ResolvedAggregate(
                value=self._additive_expr(metric, extra_filter=None),
                row_count=row_count,
            )

        if metric.type == "average":
            assert isinstance(params, AverageMetricParams)
            numerator = self._sum_expr(params.expr, metric.filter)
            denominator = self._count_expr(params.expr, metric.filter)
        elif metric.type == "ratio":
            assert isinstance(params, RatioMetricParams)
            # a filter on the ratio itself narrows both parts
            numerator = self._additive_expr(
                self.registry.get_metric(params.numerator), extra_filter=metric.filter
            )
            denominator = self._additive_expr(
                self.registry.get_metric(params.denominator), extra_filter=metric.filter
            )
        else:
            raise ValueError(f"Unknown metric type: {metric.type}")

        # zero denominator means zero, not null - callers add these up
        value = f"COALESCE(({numerator}) * 1.0 / NULLIF({denominator}, 0), 0)"
        return ResolvedAggregate(
            value=value,
            numerator=numerator,
            denominator=denominator,
            row_count=row_count,
        )

    def _additive_expr(self, metric: MetricDefinition, extra_filter: str | None) -> str:
        filter_expr = _and_filters(metric.filter, extra_filter)
        params = metric.type_params
        if isinstance(params, CountMetricParams):
            return self._count_expr(params.expr, filter_expr, distinct=params.distinct)
        if isinstance(params, SumMetricParams):
            return self._sum_expr(params.expr, filter_expr)
        raise ValueError(f"Metric '{metric.name}' is not a count or sum metric")

    def _count_expr(self, expr: str, filter_expr: str | None, distinct: bool = False) -> str:
        """COUNT with the filter applied via CASE WHEN - nulls don't get counted."""
        if expr == "*":
            # count(distinct *) means distinct rows
            expr = "t.id" if distinct else ("1" if filter_expr else "*")
        distinct_kw = "DISTINCT " if distinct else ""
        if filter_expr:
            return f"COUNT({distinct_kw}CASE WHEN {filter_expr} THEN {expr} END)"
        return f"COUNT({distinct_kw}{expr})"

    def _sum_expr(self, expr: str, filter_expr: str | None) -> str:
        if filter_expr:
            return f"COALESCE(SUM(CASE WHEN {filter_expr} THEN {expr} END), 0)"
        return f"COALESCE(SUM({expr}), 0)"

    def _count_rows(self, filter_expr: str | None) -> str:
        return self._count_expr("*", filter_expr)

    # --- grouping ---

    def _group_key_exprs(
        self,
        source: ActivitySource,
        breakdown: BreakdownType,
        time_grain: TimeGrain,
    ) -> list[tuple[str, str]]:
        """(alias, expression) pairs for the GROUP BY columns."""
        setter_key = f"COALESCE(t.{source.setter_column}, '{INBOUND_KEY}')"
        rep_key = f"COALESCE(t.{source.rep_column}, '{UNASSIGNED_KEY}')"

        if breakdown == BreakdownType.SETTER:
            return [("group_key", setter_key)]
        if breakdown == BreakdownType.REP:
            return [("group_key", rep_key)]
        if breakdown == BreakdownType.LINK:
            return [("setter_key", setter_key), ("rep_key", rep_key)]
        if breakdown == BreakdownType.TIME:
            # duckdb truncates weeks to monday
            trunc = f"DATE_TRUNC('{time_grain.value}', t.{source.date_column})"
            return [("time_key", f"CAST({trunc} AS DATE)")]
        return []

    def _wrap_with_labels(
        self,
        inner: str,
        breakdown: BreakdownType,
        key_columns: tuple[str, ...],
    ) -> tuple[str, int]:
        """Join team member names onto user group keys.

        returns the sql and how many account_id params the label joins add,
        since they are scoped to the same account as the aggregate.
        """
        if breakdown in (BreakdownType.SETTER, BreakdownType.REP):
            sql = (
                f"WITH agg AS (\n{inner}\n)\n"
                f"SELECT agg.*, m.full_name AS group_label\n"
                f"FROM agg\n"
                f"LEFT JOIN {TEAM_MEMBERS_TABLE} AS m "
                f"ON m.id = agg.group_key AND m.account_id = ?\n"
                f"ORDER BY agg.group_key"
            )
            return sql, 1

        if breakdown == BreakdownType.LINK:
            sql = (
                f"WITH agg AS (\n{inner}\n)\n"
                f"SELECT agg.*, s.full_name AS setter_label, r.full_name AS rep_label\n"
                f"FROM agg\n"
                f"LEFT JOIN {TEAM_MEMBERS_TABLE} AS s "
                f"ON s.id = agg.setter_key AND s.account_id = ?\n"
                f"LEFT JOIN {TEAM_MEMBERS_TABLE} AS r "
                f"ON r.id = agg.rep_key AND r.account_id = ?\n"
                f"ORDER BY agg.setter_key, agg.rep_key"
            )
            return sql, 2

        if key_columns:
            return f"{inner}\nORDER BY {', '.join(key_columns)}", 0
        return inner, 0

    def _assemble_query(
        self,
        select_exprs: list[str],
        from_clause: str,
        where_conditions: list[str],
        group_by_exprs: list[str],
    ) -> str:
        """Assemble the aggregate query.

        plain string building - sqlglot handles formatting afterwards.
        """
        select_sql = ",\n  ".join(select_exprs)
        parts = [f"SELECT\n  {select_sql}"]
        parts.append(f"FROM {from_clause}")

        if where_conditions:
            parts.append(f"WHERE {' AND '.join(where_conditions)}")

        if group_by_exprs:
            parts.append(f"GROUP BY {', '.join(group_by_exprs)}")

        return "\n".join(parts)

    def _format_sql(self, sql: str) -> str:
        """Format SQL using sqlglot.

        if our generated sql trips up the parser we still return something the
        user can debug.
        """
        try:
            parsed = sqlglot.parse_one(sql, dialect=self.dialect)
            return parsed.sql(dialect=self.dialect, pretty=True)
        except sqlglot.errors.SqlglotError:
            return sql


def _and_filters(*filters: str | None) -> str | None:
    present = [f for f in filters if f]
    if not present:
        return None
    if len(present) == 1:
        return present[0]
    return " AND ".join(f"({f})" for f in present)
