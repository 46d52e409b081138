"""Generate sample sales activity for salesmetrics demos and local testing.

the data is fake but shaped like the real thing: setters dial contacts,
some dials book a discovery or an appointment (sharing the dial's call_sid,
or a few minutes after it with no sid), reps run the appointments, and won
appointments turn into deals and payments. the same seed always produces the
same rows.
"""

import random
from datetime import date, datetime, timedelta
from typing import Any

from salesmetrics.executor.duckdb_executor import DuckDBExecutor
from salesmetrics.models.request import ACQUISITION_FIELDS

DEFAULT_ACCOUNT = "acct_demo"

TEAM = [
    ("setter_ava", "Ava Setter", "setter"),
    ("setter_ben", "Ben Setter", "setter"),
    ("setter_cleo", "Cleo Setter", "setter"),
    ("rep_dan", "Dan Closer", "rep"),
    ("rep_eve", "Eve Closer", "rep"),
    # sets her own calls now and then, so shows up in both roles
    ("rep_fay", "Fay Closer", "rep"),
]

UTM_SOURCES = ["facebook", "facebook", "google", "youtube", "organic"]
SOURCE_CATEGORIES = {"facebook": "paid", "google": "paid", "youtube": "paid", "organic": "organic"}


def generate_sample_data(
    account_id: str = DEFAULT_ACCOUNT,
    start_date: date = date(2024, 1, 1),
    end_date: date = date(2024, 3, 31),
    seed: int = 42,
) -> dict[str, list[dict[str, Any]]]:
    """Generate rows for every table, keyed by table name.

    Args:
        account_id: Tenant the rows belong to.
        start_date: First day with activity.
        end_date: Last day with activity.
        seed: Random seed, so runs are reproducible.
    """
    rng = random.Random(seed)
    setters = [member_id for member_id, _, role in TEAM if role == "setter"]
    reps = [member_id for member_id, _, role in TEAM if role == "rep"]

    tables: dict[str, list[dict[str, Any]]] = {
        "team_members": [
            {"id": member_id, "account_id": account_id, "full_name": name, "role": role}
            for member_id, name, role in TEAM
        ],
        "contacts": [],
        "dials": [],
        "discoveries": [],
        "appointments": [],
        "deals": [],
        "payments": [],
    }

    day = start_date
    while day <= end_date:
        for _ in range(rng.randint(2, 5)):
            contact = _contact(rng, account_id, len(tables["contacts"]) + 1, day)
            tables["contacts"].append(contact)
            _work_contact(rng, tables, account_id, contact, setters, reps)
        day += timedelta(days=1)

    return tables


def _contact(rng: random.Random, account_id: str, n: int, day: date) -> dict[str, Any]:
    created_at = datetime.combine(day, datetime.min.time()) + timedelta(
        hours=rng.randint(7, 18), minutes=rng.randint(0, 59)
    )
    utm_source = rng.choice(UTM_SOURCES)
    row: dict[str, Any] = {field: None for field in ACQUISITION_FIELDS}
    row.update(
        {
            "id": f"contact_{n:05d}",
            "account_id": account_id,
            "name": f"Lead {n}",
            "created_at": created_at,
            "utm_source": utm_source,
            "utm_medium": "cpc" if SOURCE_CATEGORIES[utm_source] == "paid" else None,
            "utm_campaign": f"{utm_source}_q1" if utm_source != "organic" else None,
            "source_category": SOURCE_CATEGORIES[utm_source],
        }
    )
    return row


def _work_contact(
    rng: random.Random,
    tables: dict[str, list[dict[str, Any]]],
    account_id: str,
    contact: dict[str, Any],
    setters: list[str],
    reps: list[str],
) -> None:
    """Dial a contact a few times; maybe book, show, close and collect."""
    setter = rng.choice(setters)
    at = contact["created_at"] + timedelta(minutes=rng.randint(5, 120))
    booked_after = None

    for attempt in range(rng.randint(1, 3)):
        if attempt:
            # follow-ups are sometimes made by another setter
            if rng.random() < 0.3:
                setter = rng.choice(setters)
            at += timedelta(days=rng.randint(0, 2), hours=rng.randint(1, 5))
        answered = rng.random() < 0.45
        booked = answered and rng.random() < 0.4
        duration = rng.randint(60, 900) if answered else rng.randint(5, 40)
        dial = {
            "id": f"dial_{len(tables['dials']) + 1:06d}",
            "account_id": account_id,
            "contact_id": contact["id"],
            "setter_user_id": setter,
            "call_sid": f"CA{rng.getrandbits(48):012x}",
            "ended_at": at + timedelta(seconds=duration),
            "duration": duration,
            "answered": answered,
            "meaningful_conversation": answered and duration >= 180,
            "booked": booked,
        }
        tables["dials"].append(dial)
        if booked:
            booked_after = dial
            break

    if booked_after is None:
        return

    # half the bookings carry the dial's sid, the rest land a few minutes later
    shares_sid = rng.random() < 0.5
    call_sid = booked_after["call_sid"] if shares_sid else None
    delay = timedelta(minutes=0 if shares_sid else rng.randint(1, 20))
    booked_at = booked_after["ended_at"] + delay
    # rep_fay occasionally books for herself
    setter_id = "rep_fay" if rng.random() < 0.05 else booked_after["setter_user_id"]
    rep_id = rng.choice(reps)

    if rng.random() < 0.35:
        tables["discoveries"].append(
            {
                "id": f"disc_{len(tables['discoveries']) + 1:05d}",
                "account_id": account_id,
                "contact_id": contact["id"],
                "setter_user_id": setter_id,
                "sales_rep_user_id": rep_id,
                "call_sid": call_sid,
                "booked_at": booked_at,
                "call_outcome": rng.choice(["show", "show", "no_show"]),
            }
        )
        return

    showed = rng.random() < 0.7
    won = showed and rng.random() < 0.35
    sales_value = round(rng.choice([2000, 3500, 5000, 8000]) * rng.uniform(0.9, 1.1), 2)
    cash = round(sales_value * rng.choice([0.5, 1.0]), 2) if won else 0.0
    show_outcome = None
    if showed:
        show_outcome = "won" if won else rng.choice(["lost", "follow_up"])
    appointment_id = f"appt_{len(tables['appointments']) + 1:05d}"
    tables["appointments"].append(
        {
            "id": appointment_id,
            "account_id": account_id,
            "contact_id": contact["id"],
            "setter_user_id": setter_id,
            "sales_rep_user_id": rep_id,
            "call_sid": call_sid,
            "booked_at": booked_at,
            "date_booked_for": (booked_at + timedelta(days=rng.randint(0, 7))).date(),
            "call_outcome": "show" if showed else rng.choice(["no_show", "cancelled"]),
            "show_outcome": show_outcome,
            "cash_collected": cash,
            "total_sales_value": sales_value if won else 0.0,
        }
    )
    if not showed:
        return

    closed_at = booked_at + timedelta(days=rng.randint(1, 10))
    deal_id = f"deal_{len(tables['deals']) + 1:05d}"
    tables["deals"].append(
        {
            "id": deal_id,
            "account_id": account_id,
            "contact_id": contact["id"],
            "setter_user_id": setter_id,
            "sales_rep_user_id": rep_id,
            "created_at": booked_at,
            "closed_at": closed_at,
            "status": "won" if won else "lost",
            "amount": sales_value if won else 0.0,
        }
    )
    if won:
        tables["payments"].append(
            {
                "id": f"pay_{len(tables['payments']) + 1:05d}",
                "account_id": account_id,
                "contact_id": contact["id"],
                "deal_id": deal_id,
                "setter_user_id": setter_id,
                "sales_rep_user_id": rep_id,
                "paid_at": closed_at + timedelta(hours=rng.randint(0, 48)),
                "amount": cash,
            }
        )


def load_sample_data(
    executor: DuckDBExecutor,
    account_id: str = DEFAULT_ACCOUNT,
    start_date: date = date(2024, 1, 1),
    end_date: date = date(2024, 3, 31),
    seed: int = 42,
) -> dict[str, int]:
    """Generate sample data and insert it. tables must already exist.

    Returns:
        Rows inserted per table.
    """
    tables = generate_sample_data(account_id, start_date, end_date, seed)
    return {name: executor.insert_rows(name, rows) for name, rows in tables.items()}
