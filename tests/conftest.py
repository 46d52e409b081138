"""Pytest fixtures for salesmetrics tests.

the dataset is small and hand written so expected numbers can be worked out
on paper. the main window is 2024-01-01..2024-01-14 (two monday-start weeks)
for account acct_a; acct_b has its own rows in the same window.

acct_a appointments in the window (setter -> rep):

    a1   s1 -> r1      jan 1   show, won   cash 1000  value 2000  sid1
    a2   s1 -> r1      jan 2   show, lost
    a3   s1 -> r2      jan 3   no_show
    a4   s2 -> r1      jan 4   show, won   cash 500   value 500
    a5   s2 -> r2      jan 5   show, follow_up
    a6   (none) -> r2  jan 8   show, won   cash 3000  value 3000
    a7   s2 -> r2      jan 9   cancelled
    a8   u_both -> r1  jan 10  show, won   cash 2000  value 2000
    a9   s1 -> u_both  jan 11  show, lost
    a10  s2 -> u_both  jan 12  no_show

plus a11 (dec 28, previous window, won, cash 400) and a12 (jan 20, after).
"""

import logging
from collections.abc import Callable, Generator
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

from salesmetrics.compare.resolver import CompareModeResolver
from salesmetrics.config import Settings
from salesmetrics.engine import MetricsEngine
from salesmetrics.executor.duckdb_executor import DuckDBExecutor
from salesmetrics.logging_config import ROOT_LOGGER
from salesmetrics.models.request import ACQUISITION_FIELDS, DateRange, MetricFilters
from salesmetrics.parser.loader import MetricRegistry
from salesmetrics.store import MetricStore
from salesmetrics.timeseries import PeriodMetricsRunner
from salesmetrics.user_engine import UserMetricsEngine

ACCOUNT = "acct_a"
OTHER_ACCOUNT = "acct_b"
WINDOW = DateRange(start=date(2024, 1, 1), end=date(2024, 1, 14))


def _at(day: str, time: str = "10:00") -> datetime:
    return datetime.fromisoformat(f"{day} {time}")


def _team() -> list[dict[str, Any]]:
    members = [
        ("s1", ACCOUNT, "Sam Setter", "setter"),
        ("s2", ACCOUNT, "Sue Setter", "setter"),
        ("r1", ACCOUNT, "Rita Rep", "rep"),
        ("r2", ACCOUNT, "Rob Rep", "rep"),
        ("u_both", ACCOUNT, "Bo Both", "rep"),
        ("s9", OTHER_ACCOUNT, "Other Setter", "setter"),
        ("r9", OTHER_ACCOUNT, "Other Rep", "rep"),
    ]
    return [
        {"id": i, "account_id": a, "full_name": n, "role": r} for i, a, n, r in members
    ]


def _contacts() -> list[dict[str, Any]]:
    specs = [
        ("c1", ACCOUNT, "2023-12-20", "facebook"),
        ("c2", ACCOUNT, "2024-01-02", "facebook"),
        ("c3", ACCOUNT, "2024-01-03", "facebook"),
        ("c4", ACCOUNT, "2024-01-04", "google"),
        ("c5", ACCOUNT, "2024-01-05", "google"),
        ("c6", ACCOUNT, "2024-01-06", "organic"),
        ("c7", ACCOUNT, "2024-01-07", "organic"),
        ("c8", ACCOUNT, "2024-01-08", "organic"),
        ("c9", ACCOUNT, "2024-01-09", "organic"),
        ("c10", ACCOUNT, "2024-01-10", "organic"),
        ("c20", ACCOUNT, "2024-01-05", "google"),
        ("c21", ACCOUNT, "2024-01-06", "google"),
        ("c99", ACCOUNT, "2024-01-09", None),
        ("cb1", OTHER_ACCOUNT, "2024-01-02", "facebook"),
        ("cb2", OTHER_ACCOUNT, "2024-01-03", "facebook"),
    ]
    rows = []
    for contact_id, account, day, utm_source in specs:
        row: dict[str, Any] = {field: None for field in ACQUISITION_FIELDS}
        row.update(
            {
                "id": contact_id,
                "account_id": account,
                "name": f"Contact {contact_id}",
                "created_at": _at(day, "08:00"),
                "utm_source": utm_source,
            }
        )
        rows.append(row)
    return rows


def _appointment(
    appt_id: str,
    setter: str | None,
    rep: str | None,
    booked_at: datetime,
    call_outcome: str,
    show_outcome: str | None = None,
    cash: float = 0.0,
    value: float = 0.0,
    contact: str | None = None,
    call_sid: str | None = None,
    days_out: int = 1,
    account: str = ACCOUNT,
) -> dict[str, Any]:
    return {
        "id": appt_id,
        "account_id": account,
        "contact_id": contact,
        "setter_user_id": setter,
        "sales_rep_user_id": rep,
        "call_sid": call_sid,
        "booked_at": booked_at,
        "date_booked_for": (booked_at + timedelta(days=days_out)).date(),
        "call_outcome": call_outcome,
        "show_outcome": show_outcome,
        "cash_collected": cash,
        "total_sales_value": value,
    }


def _appointments() -> list[dict[str, Any]]:
    rows = [
        _appointment("a1", "s1", "r1", _at("2024-01-01"), "show", "won", 1000, 2000,
                     contact="c1", call_sid="sid1", days_out=3),
        _appointment("a2", "s1", "r1", _at("2024-01-02", "11:00"), "show", "lost",
                     contact="c2"),
        _appointment("a3", "s1", "r2", _at("2024-01-03", "09:00"), "no_show", contact="c3"),
        _appointment("a4", "s2", "r1", _at("2024-01-04", "14:00"), "show", "won", 500, 500,
                     contact="c4", call_sid="sid4"),
        _appointment("a5", "s2", "r2", _at("2024-01-05", "15:00"), "show", "follow_up",
                     contact="c5"),
        _appointment("a6", None, "r2", _at("2024-01-08"), "show", "won", 3000, 3000,
                     contact="c6"),
        _appointment("a7", "s2", "r2", _at("2024-01-09"), "cancelled", contact="c7"),
        _appointment("a8", "u_both", "r1", _at("2024-01-10"), "show", "won", 2000, 2000,
                     contact="c8"),
        _appointment("a9", "s1", "u_both", _at("2024-01-11"), "show", "lost", contact="c9"),
        _appointment("a10", "s2", "u_both", _at("2024-01-12"), "no_show", contact="c10"),
        # outside the window
        _appointment("a11", "s1", "r1", _at("2023-12-28"), "show", "won", 400, 400,
                     contact="c1"),
        _appointment("a12", "s1", "r1", _at("2024-01-20"), "no_show", contact="c10"),
    ]
    # same window, other tenant
    for n in range(1, 6):
        rows.append(
            _appointment(f"b{n}", "s9", "r9", _at(f"2024-01-0{n + 1}"), "show", "won", 100, 100,
                         contact="cb1", account=OTHER_ACCOUNT)
        )
    return rows


def _dials() -> list[dict[str, Any]]:
    specs = [
        # id, setter, contact, ended_at, answered, duration, mc, booked, sid
        ("d1", "s1", "c1", _at("2024-01-01", "09:59"), True, 300, True, True, "sid1"),
        ("d2", "s2", "c1", _at("2023-12-30", "12:00"), True, 120, False, False, None),
        ("d3", "s2", "c2", _at("2024-01-02", "10:50"), True, 200, True, True, None),
        ("d4", "s1", "c3", _at("2024-01-03", "08:00"), False, 10, False, False, None),
        ("d5", "r1", "c5", _at("2024-01-05", "09:00"), True, 60, False, False, None),
        ("d6", "s1", "c6", _at("2024-01-07", "16:00"), True, 400, True, False, None),
        ("d7", "s2", "c99", _at("2024-01-09", "12:00"), False, 15, False, False, None),
    ]
    rows = [
        {
            "id": d,
            "account_id": ACCOUNT,
            "contact_id": contact,
            "setter_user_id": setter,
            "call_sid": sid,
            "ended_at": ended_at,
            "duration": duration,
            "answered": answered,
            "meaningful_conversation": mc,
            "booked": booked,
        }
        for d, setter, contact, ended_at, answered, duration, mc, booked, sid in specs
    ]
    rows.append(
        {
            "id": "db1",
            "account_id": OTHER_ACCOUNT,
            "contact_id": "cb1",
            "setter_user_id": "s9",
            "call_sid": None,
            "ended_at": _at("2024-01-02"),
            "duration": 90,
            "answered": True,
            "meaningful_conversation": False,
            "booked": False,
        }
    )
    return rows


def _discoveries() -> list[dict[str, Any]]:
    specs = [
        ("disc1", "s1", "r1", "c20", _at("2024-01-06"), "show"),
        ("disc2", "s2", "r2", "c21", _at("2024-01-10", "11:00"), "no_show"),
    ]
    return [
        {
            "id": disc_id,
            "account_id": ACCOUNT,
            "contact_id": contact,
            "setter_user_id": setter,
            "sales_rep_user_id": rep,
            "call_sid": None,
            "booked_at": booked_at,
            "call_outcome": outcome,
        }
        for disc_id, setter, rep, contact, booked_at, outcome in specs
    ]


def _deals() -> list[dict[str, Any]]:
    specs = [
        ("deal1", "s1", "r1", "c1", _at("2024-01-03"), "won", 2000),
        ("deal2", "s2", "r1", "c4", _at("2024-01-06"), "won", 500),
        ("deal3", "s2", "r2", "c5", _at("2024-01-09"), "lost", 0),
        ("deal4", None, "r2", "c6", _at("2024-01-10"), "won", 3000),
    ]
    return [
        {
            "id": deal_id,
            "account_id": ACCOUNT,
            "contact_id": contact,
            "setter_user_id": setter,
            "sales_rep_user_id": rep,
            "created_at": closed_at,
            "closed_at": closed_at,
            "status": status,
            "amount": amount,
        }
        for deal_id, setter, rep, contact, closed_at, status, amount in specs
    ]


def _payments() -> list[dict[str, Any]]:
    specs = [
        ("p1", "deal1", "s1", "r1", "c1", _at("2024-01-04"), 1000),
        ("p2", "deal2", "s2", "r1", "c4", _at("2024-01-07"), 500),
        ("p3", "deal4", None, "r2", "c6", _at("2024-01-12"), 3000),
    ]
    return [
        {
            "id": pay_id,
            "account_id": ACCOUNT,
            "contact_id": contact,
            "deal_id": deal_id,
            "setter_user_id": setter,
            "sales_rep_user_id": rep,
            "paid_at": paid_at,
            "amount": amount,
        }
        for pay_id, deal_id, setter, rep, contact, paid_at, amount in specs
    ]


def load_fixture_data(executor: DuckDBExecutor) -> None:
    executor.create_schema()
    executor.insert_rows("team_members", _team())
    executor.insert_rows("contacts", _contacts())
    executor.insert_rows("appointments", _appointments())
    executor.insert_rows("dials", _dials())
    executor.insert_rows("discoveries", _discoveries())
    executor.insert_rows("deals", _deals())
    executor.insert_rows("payments", _payments())


@pytest.fixture(autouse=True)
def reset_package_logger() -> Generator[None, None, None]:
    """Undo configure_logging (the cli calls it) so caplog keeps working."""
    yield
    logger = logging.getLogger(ROOT_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def executor() -> Generator[DuckDBExecutor, None, None]:
    """In-memory DuckDB with the fixture dataset loaded."""
    executor = DuckDBExecutor()
    load_fixture_data(executor)
    yield executor
    executor.close()


@pytest.fixture
def registry() -> MetricRegistry:
    """The packaged catalog."""
    return MetricRegistry.default()


@pytest.fixture
def engine(registry: MetricRegistry, executor: DuckDBExecutor) -> MetricsEngine:
    return MetricsEngine(registry, executor)


@pytest.fixture
def user_engine(engine: MetricsEngine) -> UserMetricsEngine:
    return UserMetricsEngine(engine, max_workers=4)


@pytest.fixture
def runner(engine: MetricsEngine, user_engine: UserMetricsEngine) -> PeriodMetricsRunner:
    return PeriodMetricsRunner(engine, user_engine, max_workers=4)


@pytest.fixture
def resolver(executor: DuckDBExecutor) -> CompareModeResolver:
    return CompareModeResolver(executor)


@pytest.fixture
def settings() -> Settings:
    """Settings with every field pinned, so env vars can't leak in."""
    return Settings(
        database_path=None,
        catalog_dir=None,
        max_workers=4,
        log_level="INFO",
        default_period_type="weekly",
        compare_time_window_days=14,
        same_call_window_minutes=30,
    )


@pytest.fixture
def store(
    registry: MetricRegistry, executor: DuckDBExecutor, settings: Settings
) -> Generator[MetricStore, None, None]:
    """A MetricStore over the fixture dataset."""
    store = MetricStore(settings=settings, registry=registry, executor=executor)
    yield store
    store.close()


@pytest.fixture
def make_filters() -> Callable[..., MetricFilters]:
    """Build MetricFilters for acct_a over the main window, with overrides."""

    def _make(**overrides: Any) -> MetricFilters:
        values: dict[str, Any] = {"date_range": WINDOW, "account_id": ACCOUNT}
        values.update(overrides)
        return MetricFilters(**values)

    return _make


@pytest.fixture
def sample_catalog_yaml() -> str:
    """A small catalog for parser tests."""
    return """
sources:
  - name: calls
    table: calls
    date_column: called_at
    setter_column: setter_id
    rep_column: rep_id

  - name: leads
    table: leads
    date_column: created_at
    contact_column: id

metrics:
  - name: total_calls
    label: "Total Calls"
    description: "All calls"
    source: calls
    type: count
    attribution_variants: true
    options:
      breakdowns: [rep, setter, time]

  - name: good_calls
    source: calls
    type: count
    filter: "outcome = 'good'"

  - name: good_call_rate
    source: calls
    type: ratio
    unit: percent
    type_params:
      numerator: good_calls
      denominator: total_calls

  - name: call_value
    source: calls
    type: sum
    unit: currency
    type_params:
      expr: amount

  - name: avg_call_length
    source: calls
    type: average
    unit: seconds
    type_params:
      expr: duration

  - name: total_leads
    source: leads
    type: count
    options:
      breakdowns: [time]
"""


@pytest.fixture
def catalog_dir(tmp_path: Path, sample_catalog_yaml: str) -> Path:
    """Temporary catalog directory with the small catalog."""
    path = tmp_path / "catalog"
    path.mkdir()
    (path / "calls.yaml").write_text(sample_catalog_yaml)
    return path
