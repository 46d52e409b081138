"""Request filter validation and WHERE clause building.

every value goes through a bound parameter - ids and utm values come from
callers and are never spliced into the sql text. conditions and params are
built side by side so their order always lines up.
"""

from salesmetrics.errors import InvalidFilter, InvalidRange
from salesmetrics.models.request import MetricFilters
from salesmetrics.models.source import ActivitySource

CONTACTS_TABLE = "contacts"


def validate_filters(
    filters: MetricFilters,
    source: ActivitySource,
    *,
    metric_name: str | None = None,
) -> None:
    """Reject filters that can't be applied to this source.

    raises InvalidRange for an inverted window and InvalidFilter for rep/setter
    filters on a source that has no such column.
    """
    context = {
        "metric_name": metric_name,
        "account_id": filters.account_id,
        "date_range": filters.date_range,
    }
    date_range = filters.date_range
    if date_range.start > date_range.end:
        raise InvalidRange(
            f"Start date {date_range.start} is after end date {date_range.end}", **context
        )
    if filters.rep_ids and source.rep_column is None:
        raise InvalidFilter(f"Source '{source.name}' has no rep column to filter on", **context)
    if filters.setter_ids and source.setter_column is None:
        raise InvalidFilter(
            f"Source '{source.name}' has no setter column to filter on", **context
        )


def _placeholders(values: list) -> str:
    return ", ".join("?" for _ in values)


def build_where(
    filters: MetricFilters,
    source: ActivitySource,
    alias: str = "t",
) -> tuple[list[str], list]:
    """Build the AND-combined conditions for one source.

    returns (conditions, params). account scoping and the inclusive date
    window are always present; the rest only when the filter is non-empty.
    """
    date_col = f"{alias}.{source.date_column}"
    conditions = [
        f"{alias}.account_id = ?",
        f"CAST({date_col} AS DATE) >= ?",
        f"CAST({date_col} AS DATE) <= ?",
    ]
    params: list = [filters.account_id, filters.date_range.start, filters.date_range.end]

    if filters.rep_ids and source.rep_column:
        conditions.append(f"{alias}.{source.rep_column} IN ({_placeholders(filters.rep_ids)})")
        params.extend(filters.rep_ids)

    if filters.setter_ids and source.setter_column:
        conditions.append(
            f"{alias}.{source.setter_column} IN ({_placeholders(filters.setter_ids)})"
        )
        params.extend(filters.setter_ids)

    acquisition = filters.acquisition_filters()
    if acquisition:
        # acquisition data lives on the contact, so match through a sub-select
        # that is itself scoped to the account
        sub_conditions = ["c.account_id = ?"]
        params.append(filters.account_id)
        for field_name, values in acquisition.items():
            sub_conditions.append(f"c.{field_name} IN ({_placeholders(values)})")
            params.extend(values)
        conditions.append(
            f"{alias}.{source.contact_column} IN ("
            f"SELECT c.id FROM {CONTACTS_TABLE} AS c WHERE {' AND '.join(sub_conditions)})"
        )

    return conditions, params
