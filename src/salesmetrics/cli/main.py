"""CLI for salesmetrics."""

import json
from datetime import date
from pathlib import Path
from typing import Annotated

import typer
from pydantic import BaseModel
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

from salesmetrics.config import get_settings
from salesmetrics.errors import MetricsError
from salesmetrics.formatting import format_value
from salesmetrics.logging_config import configure_logging
from salesmetrics.models.compare import CompareEntity
from salesmetrics.models.request import SeriesResult
from salesmetrics.sample_data import DEFAULT_ACCOUNT
from salesmetrics.store import MetricStore

app = typer.Typer(
    name="salesmetrics",
    help="salesmetrics - sales performance metrics CLI",
    no_args_is_help=True,
)
console = Console()

CatalogOption = Annotated[
    Path | None, typer.Option("--catalog", "-c", help="Metric catalog directory")
]
DbOption = Annotated[str | None, typer.Option("--db", help="DuckDB database path")]
AccountOption = Annotated[str, typer.Option("--account", "-a", help="Account id")]
StartOption = Annotated[str, typer.Option("--start", help="Start date (YYYY-MM-DD)")]
EndOption = Annotated[str, typer.Option("--end", help="End date (YYYY-MM-DD)")]
OutputOption = Annotated[
    str, typer.Option("--output", "-o", help="Output format: table, json")
]
PeriodOption = Annotated[
    str | None, typer.Option("--period", "-p", help="Period: daily, weekly, monthly")
]


@app.callback()
def main(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Debug logging")] = False,
    json_logs: Annotated[bool, typer.Option("--json-logs", help="Log as json lines")] = False,
) -> None:
    """Compute sales metrics from a DuckDB activity database."""
    level = "DEBUG" if verbose else get_settings().log_level
    configure_logging(level, json_format=json_logs)


def get_store(catalog_dir: Path | None = None, db_path: str | None = None) -> MetricStore:
    return MetricStore(catalog_dir, db_path)


def _open_store(catalog_dir: Path | None, db_path: str | None = None) -> MetricStore:
    try:
        return get_store(catalog_dir, db_path)
    except Exception as e:
        console.print(f"[red]Error loading metrics: {e}[/red]")
        raise typer.Exit(1)


def _split(value: str | None) -> list[str] | None:
    """Comma-separated option to a list; None/empty stays None."""
    if not value:
        return None
    return [v.strip() for v in value.split(",") if v.strip()]


def _echo_json(payload) -> None:
    # plain echo, rich would wrap long lines
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(mode="json")
    typer.echo(json.dumps(payload, indent=2, default=str))


@app.command("list")
def list_items(
    item_type: Annotated[str, typer.Argument(help="Type: metrics or sources")],
    catalog_dir: CatalogOption = None,
) -> None:
    """List metrics or activity sources."""
    store = _open_store(catalog_dir)

    if item_type == "metrics":
        _list_metrics(store)
    elif item_type == "sources":
        _list_sources(store)
    else:
        console.print(f"[red]Unknown type: {item_type}. Use: metrics, sources[/red]")
        raise typer.Exit(1)


def _list_metrics(store: MetricStore) -> None:
    metrics = store.list_metrics()

    if not metrics:
        console.print("[yellow]No metrics defined[/yellow]")
        return

    table = Table(title="Metrics")
    table.add_column("Name", style="cyan")
    table.add_column("Type", style="green")
    table.add_column("Unit")
    table.add_column("Source", style="yellow")
    table.add_column("Description")

    for metric in metrics:
        table.add_row(
            metric["name"],
            metric["type"],
            metric["unit"],
            metric["source"],
            metric["description"] or "-",
        )

    console.print(table)


def _list_sources(store: MetricStore) -> None:
    table = Table(title="Sources")
    table.add_column("Name", style="cyan")
    table.add_column("Table", style="green")
    table.add_column("Date column")
    table.add_column("Breakdowns", style="yellow")

    for source in store.list_sources():
        table.add_row(
            source["name"],
            source["table"],
            source["date_column"],
            ", ".join(source["breakdowns"]),
        )

    console.print(table)


@app.command()
def query(
    metric: Annotated[str, typer.Argument(help="Metric name")],
    account: AccountOption = DEFAULT_ACCOUNT,
    start_date: StartOption = "2024-01-01",
    end_date: EndOption = "2024-01-31",
    catalog_dir: CatalogOption = None,
    db_path: DbOption = None,
    breakdown: Annotated[
        str | None, typer.Option("--breakdown", "-b", help="total, rep, setter, link, time")
    ] = None,
    time_grain: Annotated[
        str, typer.Option("--grain", "-t", help="Time grain: day, week, month")
    ] = "day",
    viz: Annotated[str | None, typer.Option("--viz", help="kpi, table, bar, line, area")] = None,
    reps: Annotated[str | None, typer.Option("--reps", help="Comma-separated rep ids")] = None,
    setters: Annotated[
        str | None, typer.Option("--setters", help="Comma-separated setter ids")
    ] = None,
    utm_source: Annotated[
        str | None, typer.Option("--utm-source", help="Comma-separated utm sources")
    ] = None,
    strict: Annotated[
        bool, typer.Option("--strict", help="Fail on unsupported breakdowns")
    ] = False,
    show_sql: Annotated[bool, typer.Option("--sql", "-s", help="Show generated SQL")] = False,
    output: OutputOption = "table",
) -> None:
    """Compute one metric for an account and date range."""
    store = _open_store(catalog_dir, db_path)
    acquisition = {"utm_source": _split(utm_source)} if utm_source else {}

    try:
        if show_sql:
            sql = store.get_sql(
                metric,
                account,
                start_date,
                end_date,
                breakdown=breakdown,
                time_grain=time_grain,
                rep_ids=_split(reps),
                setter_ids=_split(setters),
                **acquisition,
            )
            console.print(Syntax(sql, "sql", theme="monokai", line_numbers=True))
            console.print()

        result = store.query(
            metric,
            account,
            start_date,
            end_date,
            breakdown=breakdown,
            time_grain=time_grain,
            viz_type=viz,
            strict=strict,
            rep_ids=_split(reps),
            setter_ids=_split(setters),
            **acquisition,
        )
        unit = store.registry.get_metric(metric).unit
    except (MetricsError, ValueError) as e:
        console.print(f"[red]Query error: {e}[/red]")
        raise typer.Exit(1)
    finally:
        store.close()

    if output == "json":
        _echo_json(result)
        return

    if isinstance(result, SeriesResult):
        table = Table(title=f"{metric} by {result.breakdown.value}")
        table.add_column("Key", style="cyan")
        table.add_column("Label")
        table.add_column("Value", justify="right", style="green")
        for point in result.data:
            table.add_row(point.period_key, point.period_label, format_value(point.value, unit))
        console.print(table)
        return

    change = result.data.change
    change_text = "-" if change is None else f"{change:+.1f}%"
    console.print(
        f"[cyan]{metric}[/cyan]: [green]{format_value(result.data.value, unit)}[/green] "
        f"(vs previous period: {change_text})"
    )


@app.command("show-sql")
def show_sql(
    metric: Annotated[str, typer.Argument(help="Metric name")],
    account: AccountOption = DEFAULT_ACCOUNT,
    start_date: StartOption = "2024-01-01",
    end_date: EndOption = "2024-01-31",
    catalog_dir: CatalogOption = None,
    breakdown: Annotated[
        str | None, typer.Option("--breakdown", "-b", help="total, rep, setter, link, time")
    ] = None,
    time_grain: Annotated[
        str, typer.Option("--grain", "-t", help="Time grain: day, week, month")
    ] = "day",
) -> None:
    """Show generated SQL without executing."""
    store = _open_store(catalog_dir)

    try:
        sql = store.get_sql(
            metric, account, start_date, end_date, breakdown=breakdown, time_grain=time_grain
        )
    except (MetricsError, ValueError) as e:
        console.print(f"[red]Error generating SQL: {e}[/red]")
        raise typer.Exit(1)

    syntax = Syntax(sql, "sql", theme="monokai", line_numbers=True)
    console.print(syntax)


@app.command()
def users(
    metric: Annotated[str, typer.Argument(help="Metric name")],
    user_ids: Annotated[str, typer.Option("--users", "-u", help="Comma-separated user ids")],
    account: AccountOption = DEFAULT_ACCOUNT,
    start_date: StartOption = "2024-01-01",
    end_date: EndOption = "2024-01-31",
    catalog_dir: CatalogOption = None,
    db_path: DbOption = None,
    time_format: Annotated[
        str | None, typer.Option("--time-format", help="minutes, hours, human_readable")
    ] = None,
    output: OutputOption = "table",
) -> None:
    """Compute a metric per user, detecting setter/rep roles."""
    store = _open_store(catalog_dir, db_path)
    try:
        response = store.user_metrics(
            metric, account, start_date, end_date, _split(user_ids) or [], time_format
        )
    except (MetricsError, ValueError) as e:
        console.print(f"[red]Query error: {e}[/red]")
        raise typer.Exit(1)
    finally:
        store.close()

    if output == "json":
        _echo_json(response)
        return

    table = Table(title=f"{metric} per user ({response.execution_time_ms}ms)")
    table.add_column("User", style="cyan")
    table.add_column("Role", style="yellow")
    table.add_column("Value", justify="right", style="green")
    table.add_column("As setter / as rep")
    table.add_column("Error", style="red")
    for result in response.results:
        split = (
            f"{result.breakdown.as_setter:g} / {result.breakdown.as_rep:g}"
            if result.breakdown
            else "-"
        )
        table.add_row(
            result.user_id, result.role.value, result.display_value, split, result.error or ""
        )
    console.print(table)


@app.command()
def series(
    metric: Annotated[str, typer.Argument(help="Metric name")],
    account: AccountOption = DEFAULT_ACCOUNT,
    start_date: StartOption = "2024-01-01",
    end_date: EndOption = "2024-01-31",
    period: PeriodOption = None,
    catalog_dir: CatalogOption = None,
    db_path: DbOption = None,
    output: OutputOption = "table",
) -> None:
    """Account-level value per period."""
    store = _open_store(catalog_dir, db_path)
    try:
        response = store.time_series(metric, account, start_date, end_date, period)
        unit = store.registry.get_metric(metric).unit
    except (MetricsError, ValueError) as e:
        console.print(f"[red]Query error: {e}[/red]")
        raise typer.Exit(1)
    finally:
        store.close()

    if output == "json":
        _echo_json(response)
        return

    table = Table(title=f"{metric} ({response.period_type.value})")
    table.add_column("Period", style="cyan")
    table.add_column("Value", justify="right", style="green")
    for point in response.period_metrics:
        table.add_row(point.period_label, point.error or point.display_value)
    table.add_row("[bold]Total[/bold]", f"[bold]{format_value(response.total, unit)}[/bold]")
    console.print(table)


@app.command()
def matrix(
    metric: Annotated[str, typer.Argument(help="Metric name")],
    user_ids: Annotated[str, typer.Option("--users", "-u", help="Comma-separated user ids")],
    account: AccountOption = DEFAULT_ACCOUNT,
    start_date: StartOption = "2024-01-01",
    end_date: EndOption = "2024-01-31",
    period: PeriodOption = None,
    catalog_dir: CatalogOption = None,
    db_path: DbOption = None,
    output: OutputOption = "table",
) -> None:
    """User x period values."""
    store = _open_store(catalog_dir, db_path)
    try:
        response = store.user_matrix(
            metric, account, _split(user_ids) or [], start_date, end_date, period
        )
        unit = store.registry.get_metric(metric).unit
    except (MetricsError, ValueError) as e:
        console.print(f"[red]Query error: {e}[/red]")
        raise typer.Exit(1)
    finally:
        store.close()

    if output == "json":
        _echo_json(response)
        return

    table = Table(title=f"{metric} per user ({response.period_type.value})")
    table.add_column("User", style="cyan")
    for p in response.periods:
        table.add_column(p.label, justify="right")
    table.add_column("Total", justify="right", style="green")
    for row in response.rows:
        cells = [cell.display_value if cell.error is None else "err" for cell in row.periods]
        table.add_row(row.user_id, *cells, format_value(row.total, unit))
    console.print(table)


@app.command()
def compare(
    account: AccountOption = DEFAULT_ACCOUNT,
    start_date: StartOption = "2024-01-01",
    end_date: EndOption = "2024-01-31",
    scope: Annotated[str, typer.Option("--scope", help="setter, rep or pair")] = "setter",
    mode: Annotated[
        str, typer.Option("--mode", "-m", help="primary, last-touch or assist")
    ] = "primary",
    setters: Annotated[
        str | None, typer.Option("--setters", help="Comma-separated setter ids to compare")
    ] = None,
    reps: Annotated[
        str | None, typer.Option("--reps", help="Comma-separated rep ids to compare")
    ] = None,
    include_in_call_dials: Annotated[
        bool, typer.Option("--include-in-call-dials", help="Count dials that booked")
    ] = False,
    include_rep_dials: Annotated[
        bool, typer.Option("--include-rep-dials", help="Count dials made by reps")
    ] = False,
    catalog_dir: CatalogOption = None,
    db_path: DbOption = None,
    output: OutputOption = "table",
) -> None:
    """Setter / rep / pair comparison under an attribution mode."""
    entities = [CompareEntity(id=s, type="setter") for s in _split(setters) or []]
    entities += [CompareEntity(id=r, type="rep") for r in _split(reps) or []]

    store = _open_store(catalog_dir, db_path)
    try:
        result = store.compare(
            account,
            start_date,
            end_date,
            scope=scope,
            attribution_mode=mode,
            entities=entities,
            exclude_in_call_dials=not include_in_call_dials,
            exclude_rep_dials=not include_rep_dials,
        )
    except (MetricsError, ValueError) as e:
        console.print(f"[red]Compare error: {e}[/red]")
        raise typer.Exit(1)
    finally:
        store.close()

    if output == "json":
        _echo_json(result)
        return

    rows = result.model_dump(mode="json")["data"]
    if not rows:
        console.print("[yellow]No activity in range[/yellow]")
        return

    # pair rows nest their numbers under "metrics"
    flat = []
    for row in rows:
        stats = row.pop("metrics", {})
        flat.append({**row, **stats})
    columns = [c for c in flat[0] if c != "color"]
    table = Table(title=f"Compare by {result.type} ({result.attribution_mode.value})")
    for col in columns:
        table.add_column(col)
    for row in flat:
        table.add_row(*[_cell(row[c]) for c in columns])
    console.print(table)


def _cell(value) -> str:
    if isinstance(value, float):
        return f"{value:,.2f}"
    return str(value)


@app.command()
def validate(
    catalog_dir: CatalogOption = None,
) -> None:
    """Validate all metric definitions."""
    store = _open_store(catalog_dir)

    errors = store.validate()

    if errors:
        console.print("[red]Validation failed:[/red]")
        for error in errors:
            console.print(f"  - {error}")
        raise typer.Exit(1)
    else:
        metric_count = len(store.registry.metrics)
        source_count = len(store.registry.sources)
        console.print(
            f"[green]Validated {metric_count} metrics across "
            f"{source_count} sources successfully![/green]"
        )


@app.command()
def seed(
    db_path: Annotated[str, typer.Option("--db", help="DuckDB database path")],
    account: AccountOption = DEFAULT_ACCOUNT,
    start_date: StartOption = "2024-01-01",
    end_date: EndOption = "2024-03-31",
    random_seed: Annotated[int, typer.Option("--seed", help="Random seed")] = 42,
) -> None:
    """Create the schema and load deterministic sample data."""
    store = _open_store(None, db_path)
    try:
        counts = store.seed(
            seed=random_seed,
            account_id=account,
            start_date=date.fromisoformat(start_date),
            end_date=date.fromisoformat(end_date),
        )
    except (MetricsError, ValueError) as e:
        console.print(f"[red]Seed error: {e}[/red]")
        raise typer.Exit(1)
    finally:
        store.close()

    table = Table(title=f"Sample data for {account}")
    table.add_column("Table", style="cyan")
    table.add_column("Rows", justify="right", style="green")
    for name, count in counts.items():
        table.add_row(name, str(count))
    console.print(table)


@app.command()
def load(
    table_name: Annotated[str, typer.Argument(help="Table to create or replace")],
    path: Annotated[Path, typer.Argument(help="A .parquet or .csv file")],
    db_path: Annotated[str, typer.Option("--db", help="DuckDB database path")],
) -> None:
    """Load a Parquet or CSV export into a table."""
    store = _open_store(None, db_path)
    try:
        store.load_file(table_name, path)
        rows = store.executor.execute(f"SELECT COUNT(*) AS n FROM {table_name}").data[0]["n"]
    except (MetricsError, ValueError) as e:
        console.print(f"[red]Load error: {e}[/red]")
        raise typer.Exit(1)
    finally:
        store.close()

    console.print(f"[green]Loaded {rows} rows into {table_name}[/green]")

if __name__ == "__main__":
    app()
