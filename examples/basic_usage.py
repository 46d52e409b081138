"""Basic usage example for salesmetrics."""

import sys
from datetime import date
from pathlib import Path

# Add parent to path for development
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from salesmetrics.formatting import format_value
from salesmetrics.sample_data import DEFAULT_ACCOUNT
from salesmetrics.store import MetricStore

START = "2024-01-01"
END = "2024-01-31"


def main():
    """Walk through the main salesmetrics features on generated data."""
    # in-memory database with one month of sample activity
    store = MetricStore()
    counts = store.seed(start_date=date(2024, 1, 1), end_date=date(2024, 1, 31))

    print("=" * 60)
    print("salesmetrics demo")
    print("=" * 60)
    print(f"\nLoaded: {', '.join(f'{n} {t}' for t, n in counts.items())}")

    # 1. Simple totals
    print("\n1. January totals:")
    for name in ("total_appointments", "show_rate", "close_rate", "cash_collected"):
        result = store.query(name, DEFAULT_ACCOUNT, START, END)
        unit = store.registry.get_metric(name).unit
        print(f"   {name}: {format_value(result.data.value, unit)}")

    # 2. Breakdown by rep
    print("\n2. Show rate by rep:")
    result = store.query("show_rate", DEFAULT_ACCOUNT, START, END, breakdown="rep")
    for point in result.data:
        print(f"   {point.period_label}: {format_value(point.value, 'percent')}")

    # 3. Setter -> rep pairs
    print("\n3. Appointments by setter -> rep:")
    result = store.query("total_appointments", DEFAULT_ACCOUNT, START, END, breakdown="link")
    for point in result.data:
        print(f"   {point.period_label}: {point.value:.0f}")

    # 4. Per-user metrics with role detection
    print("\n4. Appointments per user:")
    response = store.user_metrics(
        "total_appointments",
        DEFAULT_ACCOUNT,
        START,
        END,
        ["setter_ava", "setter_ben", "rep_dan", "rep_fay"],
    )
    for user in response.results:
        print(f"   {user.user_id} ({user.role.value}): {user.display_value}")

    # 5. Weekly time series
    print("\n5. Weekly close rate:")
    series = store.time_series("close_rate", DEFAULT_ACCOUNT, START, END, period_type="weekly")
    for point in series.period_metrics:
        print(f"   {point.period_label}: {point.display_value}")
    print(f"   Total: {format_value(series.total, 'percent')}")

    # 6. Compare setters under two attribution modes
    print("\n6. Sales calls booked per setter (primary vs assist):")
    primary = store.compare(DEFAULT_ACCOUNT, START, END, attribution_mode="primary")
    assist = store.compare(DEFAULT_ACCOUNT, START, END, attribution_mode="assist")
    assisted = {row.setter_id: row.sales_calls_booked for row in assist.data}
    for row in primary.data:
        print(
            f"   {row.setter_name}: {row.sales_calls_booked} "
            f"(assist: {assisted.get(row.setter_id, 0)})"
        )

    # 7. Show generated SQL
    print("\n7. Generated SQL for show rate by setter:")
    print(store.get_sql("show_rate", DEFAULT_ACCOUNT, START, END, breakdown="setter"))

    store.close()


if __name__ == "__main__":
    main()
