"""Integration tests for MetricStore."""

from datetime import date
from pathlib import Path

import pytest

from salesmetrics.batch import CancellationToken
from salesmetrics.config import Settings
from salesmetrics.errors import BatchCancelled, InvalidFilter, MetricNotFound
from salesmetrics.models import SeriesResult, TotalResult, UserRole
from salesmetrics.sample_data import DEFAULT_ACCOUNT
from salesmetrics.store import MetricStore


class TestMetricStoreSetup:
    def test_default_catalog(self, settings: Settings):
        """Without a catalog dir the packaged catalog is used."""
        with MetricStore(settings=settings) as store:
            assert "show_rate" in store.registry.metrics
            assert store.executor.database_path is None

    def test_catalog_dir(self, catalog_dir: Path, settings: Settings):
        store = MetricStore(catalog_dir, settings=settings)
        assert len(store.registry.metrics) == 6
        store.close()

    def test_catalog_dir_from_settings(self, catalog_dir: Path, settings: Settings):
        store = MetricStore(settings=settings.model_copy(update={"catalog_dir": catalog_dir}))
        assert "total_calls" in store.registry.metrics
        store.close()

    def test_missing_catalog_dir(self, tmp_path: Path, settings: Settings):
        with pytest.raises(FileNotFoundError):
            MetricStore(tmp_path / "nope", settings=settings)

    def test_list_metrics(self, store: MetricStore):
        metrics = {m["name"]: m for m in store.list_metrics()}

        assert metrics["show_rate"]["unit"] == "percent"
        assert metrics["show_rate"]["type"] == "ratio"
        assert metrics["show_rate"]["source"] == "appointments"
        # attribution variants are listed alongside the base metric
        assert "show_rate_assigned" in metrics
        assert all("description" in m for m in metrics.values())

    def test_list_sources(self, catalog_dir: Path, settings: Settings):
        store = MetricStore(catalog_dir, settings=settings)
        sources = {s["name"]: s for s in store.list_sources()}

        assert sources["calls"]["breakdowns"] == ["total", "rep", "setter", "link", "time"]
        assert sources["leads"]["breakdowns"] == ["total", "time"]
        assert sources["leads"]["date_column"] == "created_at"
        store.close()

    def test_validate(self, store: MetricStore):
        assert store.validate() == []


class TestMetricStoreQuery:
    def test_query_total(self, store: MetricStore):
        result = store.query("total_appointments", "acct_a", "2024-01-01", "2024-01-14")

        assert isinstance(result, TotalResult)
        assert result.data.value == 10
        assert result.data.change == pytest.approx(900.0)

    def test_query_accepts_dates(self, store: MetricStore):
        result = store.query(
            "total_appointments", "acct_a", date(2024, 1, 1), date(2024, 1, 14),
            compare_previous=False,
        )
        assert result.data.value == 10
        assert result.data.change is None

    def test_query_breakdown(self, store: MetricStore):
        result = store.query(
            "show_rate", "acct_a", "2024-01-01", "2024-01-14", breakdown="rep"
        )
        assert isinstance(result, SeriesResult)
        assert {p.period_key: p.value for p in result.data}["r1"] == pytest.approx(1.0)

    def test_query_time_grain(self, store: MetricStore):
        result = store.query(
            "total_appointments", "acct_a", "2024-01-01", "2024-01-14",
            breakdown="time", time_grain="week",
        )
        assert [p.value for p in result.data] == [5, 5]

    def test_query_line_viz(self, store: MetricStore):
        result = store.query(
            "total_appointments", "acct_a", "2024-01-01", "2024-01-14", viz_type="line"
        )
        assert isinstance(result, SeriesResult)

    def test_query_filters(self, store: MetricStore):
        by_rep = store.query(
            "total_appointments", "acct_a", "2024-01-01", "2024-01-14", rep_ids=["r1"]
        )
        by_source = store.query(
            "total_appointments", "acct_a", "2024-01-01", "2024-01-14",
            utm_source=["facebook"],
        )
        assert by_rep.data.value == 4
        assert by_source.data.value == 3

    def test_unknown_acquisition_filter(self, store: MetricStore):
        with pytest.raises(InvalidFilter, match="utm_flavour"):
            store.query(
                "total_appointments", "acct_a", "2024-01-01", "2024-01-14",
                utm_flavour=["x"],
            )

    def test_unknown_metric(self, store: MetricStore):
        with pytest.raises(MetricNotFound):
            store.query("nope", "acct_a", "2024-01-01", "2024-01-14")

    def test_bad_date_string(self, store: MetricStore):
        with pytest.raises(ValueError):
            store.query("total_appointments", "acct_a", "01/01/2024", "2024-01-14")

    def test_get_sql(self, store: MetricStore):
        sql = store.get_sql(
            "cash_collected", "acct_a", "2024-01-01", "2024-01-14", breakdown="setter"
        )
        assert "SUM" in sql.upper()
        assert "GROUP BY" in sql.upper()
        assert "acct_a" not in sql


class TestMetricStoreBatches:
    def test_user_metrics(self, store: MetricStore):
        response = store.user_metrics(
            "total_appointments", "acct_a", "2024-01-01", "2024-01-14", ["s1", "u_both"]
        )
        assert [(r.user_id, r.role, r.value) for r in response.results] == [
            ("s1", UserRole.SETTER, 4),
            ("u_both", UserRole.BOTH, 3),
        ]

    def test_time_series_uses_default_period(self, store: MetricStore):
        response = store.time_series("total_appointments", "acct_a", "2024-01-01", "2024-01-14")
        assert response.period_type.value == "weekly"
        assert response.total == 10

    def test_time_series_period_override(self, store: MetricStore):
        response = store.time_series(
            "total_appointments", "acct_a", "2024-01-01", "2024-01-14", period_type="monthly"
        )
        assert [p.label for p in response.periods] == ["Jan 2024"]

    def test_user_matrix(self, store: MetricStore):
        matrix = store.user_matrix(
            "total_appointments", "acct_a", ["s1", "r1"], "2024-01-01", "2024-01-14"
        )
        assert [row.total for row in matrix.rows] == [4, 4]

    def test_compare(self, store: MetricStore):
        result = store.compare("acct_a", "2024-01-01", "2024-01-14", scope="rep")
        assert result.type == "rep"
        assert [row.rep_id for row in result.data] == ["r1", "r2", "u_both"]

    def test_compare_uses_settings_windows(
        self, registry, executor, settings: Settings
    ):
        """with no lookback, d2 (dec 30) is no longer a touch on a1."""
        narrow = settings.model_copy(update={"compare_time_window_days": 0})
        store = MetricStore(settings=narrow, registry=registry, executor=executor)

        result = store.compare(
            "acct_a", "2024-01-01", "2024-01-14", scope="rep", attribution_mode="assist"
        )
        r1 = {row.rep_id: row for row in result.data}["r1"]
        assert r1.avg_sales_cycle_days == 0


    def test_cancel_interrupts_running_queries(self, store: MetricStore, monkeypatch):
        interrupts = []
        monkeypatch.setattr(store.executor, "interrupt", lambda: interrupts.append(True))
        token = CancellationToken()
        token.cancel()

        with pytest.raises(BatchCancelled):
            store.time_series(
                "total_appointments", "acct_a", "2024-01-01", "2024-01-14", cancel=token
            )
        assert interrupts == [True]


class TestMetricStoreLoad:
    def test_load_csv(self, store: MetricStore, tmp_path: Path):
        csv_path = tmp_path / "targets.csv"
        csv_path.write_text("rep_id,target\nr1,10\nr2,8\n")

        store.load_file("targets", csv_path)
        result = store.executor.execute("SELECT SUM(target) AS total FROM targets")
        assert result.data[0]["total"] == 18

    def test_load_parquet(self, store: MetricStore, tmp_path: Path):
        parquet_path = tmp_path / "targets.parquet"
        store.executor.execute(
            f"COPY (SELECT 'r1' AS rep_id, 10 AS target) TO '{parquet_path}' (FORMAT PARQUET)"
        )

        store.load_file("targets", parquet_path)
        assert store.executor.table_exists("targets")

    def test_unsupported_file_type(self, store: MetricStore, tmp_path: Path):
        with pytest.raises(ValueError, match="xlsx"):
            store.load_file("targets", tmp_path / "targets.xlsx")


class TestMetricStoreSeed:
    def test_seed_loads_sample_data(self, settings: Settings):
        with MetricStore(settings=settings) as store:
            counts = store.seed(
                seed=7, start_date=date(2024, 1, 1), end_date=date(2024, 1, 31)
            )
            assert counts["team_members"] == 6
            assert counts["contacts"] > 0
            assert counts["appointments"] > 0

            # bookings can land a few days after the last dial day
            result = store.query(
                "total_appointments", DEFAULT_ACCOUNT, "2023-12-01", "2024-12-31",
                compare_previous=False,
            )
            assert result.data.value == counts["appointments"]

    def test_seed_to_file(self, tmp_path: Path, settings: Settings):
        db_path = tmp_path / "sales.duckdb"
        with MetricStore(database_path=db_path, settings=settings) as store:
            store.seed(start_date=date(2024, 1, 1), end_date=date(2024, 1, 7))

        with MetricStore(database_path=db_path, settings=settings) as store:
            assert store.executor.table_exists("appointments")
            assert store.validate() == []
