"""Compare mode: per-setter, per-rep and per-pair numbers under an attribution model.

unlike the metrics engine this works on individual events rather than sql
aggregates, since attribution needs to see every touch on a contact before
it can decide who gets credit. flow:

  load events -> link into sessions -> de-duplicate -> attribute -> scope

events are loaded from time_window_days before the range so touches from
just before the range still count; only bookings and dials inside the range
are counted.
"""

import logging
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import timedelta

from salesmetrics.compare.linking import attribute_bookings, deduplicate, link_sessions
from salesmetrics.errors import DataSourceError, InvalidRange
from salesmetrics.executor.base import QueryExecutor
from salesmetrics.models.compare import (
    INBOUND,
    ActivityEvent,
    AttributedBooking,
    CompareEntity,
    CompareResult,
    CompareScope,
    CompareSettings,
    EventType,
    PairCompareResult,
    PairMetrics,
    PairStats,
    RepCompareResult,
    RepMetrics,
    SetterCompareResult,
    SetterMetrics,
)
from salesmetrics.models.request import DateRange

logger = logging.getLogger(__name__)

# one query per event type, all shaped the same so they can be merged.
# rowid keeps insertion order for events with identical timestamps.
EVENT_QUERIES: dict[EventType, str] = {
    EventType.DIAL: """
        SELECT id, contact_id, setter_user_id AS setter_id, NULL AS rep_id, call_sid,
               ended_at AS occurred_at, FALSE AS showed, FALSE AS closed,
               0 AS revenue, 0 AS cash_collected
        FROM dials
        WHERE account_id = ? AND CAST(ended_at AS DATE) >= ? AND CAST(ended_at AS DATE) <= ?
        ORDER BY ended_at, rowid
    """,
    EventType.DISCOVERY: """
        SELECT id, contact_id, setter_user_id AS setter_id, sales_rep_user_id AS rep_id,
               call_sid, booked_at AS occurred_at,
               COALESCE(LOWER(call_outcome) = 'show', FALSE) AS showed, FALSE AS closed,
               0 AS revenue, 0 AS cash_collected
        FROM discoveries
        WHERE account_id = ? AND CAST(booked_at AS DATE) >= ? AND CAST(booked_at AS DATE) <= ?
        ORDER BY booked_at, rowid
    """,
    EventType.APPOINTMENT: """
        SELECT id, contact_id, setter_user_id AS setter_id, sales_rep_user_id AS rep_id,
               call_sid, booked_at AS occurred_at,
               COALESCE(LOWER(call_outcome) = 'show', FALSE) AS showed,
               COALESCE(LOWER(call_outcome) = 'show' AND show_outcome = 'won', FALSE) AS closed,
               COALESCE(total_sales_value, 0) AS revenue,
               COALESCE(cash_collected, 0) AS cash_collected
        FROM appointments
        WHERE account_id = ? AND CAST(booked_at AS DATE) >= ? AND CAST(booked_at AS DATE) <= ?
        ORDER BY booked_at, rowid
    """,
}

TEAM_QUERY = "SELECT id, full_name, role FROM team_members WHERE account_id = ?"

# dials sort before bookings at the same instant; a dial and the booking it
# produced can share a timestamp
_TYPE_ORDER = {EventType.DIAL: 0, EventType.DISCOVERY: 1, EventType.APPOINTMENT: 2}


@dataclass
class _Tally:
    """Running counts for one setter, rep or pair."""

    dials: int = 0
    contacts: set = field(default_factory=set)
    discoveries: int = 0
    booked: int = 0
    showed: int = 0
    closed: int = 0
    revenue: float = 0.0
    cash: float = 0.0
    cycle_days: float = 0.0

    def add_appointment(self, attributed: AttributedBooking) -> None:
        booking = attributed.booking
        self.booked += 1
        if booking.contact_id:
            self.contacts.add(booking.contact_id)
        if booking.showed:
            self.showed += 1
        if booking.closed:
            self.closed += 1
            self.revenue += booking.revenue
            self.cash += booking.cash_collected
            cycle = booking.occurred_at - attributed.first_touch_at
            self.cycle_days += cycle.total_seconds() / 86400

    @property
    def show_rate(self) -> float:
        return self.showed / self.booked if self.booked else 0.0

    @property
    def win_rate(self) -> float:
        return self.closed / self.showed if self.showed else 0.0

    @property
    def avg_deal(self) -> float:
        return self.revenue / self.closed if self.closed else 0.0

    @property
    def avg_cycle(self) -> float:
        return self.cycle_days / self.closed if self.closed else 0.0


@dataclass
class _Team:
    names: dict[str, str]
    rep_ids: frozenset[str]

    def name(self, user_id: str) -> str:
        if user_id == INBOUND:
            return "Inbound"
        return self.names.get(user_id) or user_id


class CompareModeResolver:
    """Computes compare-mode tables for one account and date range."""

    def __init__(self, executor: QueryExecutor) -> None:
        self.executor = executor

    def compare(
        self,
        account_id: str,
        date_range: DateRange,
        settings: CompareSettings | None = None,
        entities: list[CompareEntity] | None = None,
    ) -> CompareResult:
        """Build the compare table for settings.scope.

        entities selected by the caller always get a row (zero-filled if they
        had no activity) and keep their name and color. with no selection
        every entity seen in the data is listed. rows are ordered by id.
        """
        settings = settings or CompareSettings()
        entities = entities or []
        if date_range.start > date_range.end:
            raise InvalidRange(
                f"Start date {date_range.start} is after end date {date_range.end}",
                account_id=account_id,
                date_range=date_range,
            )

        team = self._load_team(account_id, date_range)
        events = self.load_events(account_id, date_range, settings.time_window_days)
        sessions = link_sessions(
            events,
            same_call_window_minutes=settings.same_call_window_minutes,
            time_window_days=settings.time_window_days,
        )
        sessions = deduplicate(
            sessions,
            exclude_in_call_dials=settings.exclude_in_call_dials,
            exclude_rep_dials=settings.exclude_rep_dials,
            rep_ids=team.rep_ids,
        )

        in_range = [e for s in sessions for e in s.events if _in_range(e, date_range)]
        attributed = attribute_bookings(
            sessions, settings.attribution_mode, settings.time_window_days
        )
        bookings = [b for b in attributed if _in_range(b.booking, date_range)]
        logger.debug(
            "compare %s for %s: %d events in range, %d bookings",
            settings.scope.value,
            account_id,
            len(in_range),
            len(bookings),
        )

        if settings.scope == CompareScope.SETTER:
            data = self._setter_rows(in_range, bookings, team, entities)
            return SetterCompareResult(attribution_mode=settings.attribution_mode, data=data)
        if settings.scope == CompareScope.REP:
            data = self._rep_rows(bookings, team, entities)
            return RepCompareResult(attribution_mode=settings.attribution_mode, data=data)
        data = self._pair_rows(bookings, team, entities)
        return PairCompareResult(attribution_mode=settings.attribution_mode, data=data)

    # --- loading ---

    def load_events(
        self,
        account_id: str,
        date_range: DateRange,
        lookback_days: int = 0,
    ) -> list[ActivityEvent]:
        """Dials, discoveries and appointments for the account, in load order."""
        load_range = DateRange(
            start=date_range.start - timedelta(days=lookback_days),
            end=date_range.end,
        )
        loaded: list[tuple[tuple, ActivityEvent]] = []
        for event_type, sql in EVENT_QUERIES.items():
            result = self._execute(sql, [account_id, load_range.start, load_range.end], account_id)
            for position, row in enumerate(result.data):
                event = ActivityEvent(
                    id=str(row["id"]),
                    type=event_type,
                    contact_id=row["contact_id"],
                    setter_id=row["setter_id"],
                    rep_id=row["rep_id"],
                    call_sid=row["call_sid"],
                    occurred_at=row["occurred_at"],
                    showed=bool(row["showed"]),
                    closed=bool(row["closed"]),
                    revenue=float(row["revenue"] or 0),
                    cash_collected=float(row["cash_collected"] or 0),
                )
                loaded.append(((event.occurred_at, _TYPE_ORDER[event_type], position), event))

        loaded.sort(key=lambda pair: pair[0])
        return [event.model_copy(update={"seq": seq}) for seq, (_, event) in enumerate(loaded)]

    def _load_team(self, account_id: str, date_range: DateRange) -> _Team:
        result = self._execute(TEAM_QUERY, [account_id], account_id, date_range)
        names = {row["id"]: row["full_name"] for row in result.data}
        rep_ids = frozenset(
            row["id"] for row in result.data if (row["role"] or "").lower() == "rep"
        )
        return _Team(names=names, rep_ids=rep_ids)

    def _execute(self, sql: str, params: list, account_id: str, date_range=None):
        try:
            return self.executor.execute(sql, params)
        except Exception as e:
            detail = e.detail if isinstance(e, DataSourceError) else None
            raise DataSourceError(
                "Compare mode query failed",
                detail=detail or str(e),
                account_id=account_id,
                date_range=date_range,
            ) from e

    # --- scopes ---

    def _setter_rows(
        self,
        events: list[ActivityEvent],
        bookings: list[AttributedBooking],
        team: _Team,
        entities: list[CompareEntity],
    ) -> list[SetterMetrics]:
        tallies: dict[str, _Tally] = defaultdict(_Tally)
        for event in events:
            if event.type == EventType.DIAL and event.setter_id:
                tally = tallies[event.setter_id]
                tally.dials += 1
                if event.contact_id:
                    tally.contacts.add(event.contact_id)

        for attributed in bookings:
            for setter_id in attributed.setter_ids:
                tally = tallies[setter_id]
                if attributed.booking.type == EventType.DISCOVERY:
                    tally.discoveries += 1
                    if attributed.booking.contact_id:
                        tally.contacts.add(attributed.booking.contact_id)
                else:
                    tally.add_appointment(attributed)

        rows = []
        for setter_id, entity in _select(tallies, entities, "setter"):
            tally = tallies.get(setter_id, _Tally())
            rows.append(
                SetterMetrics(
                    setter_id=setter_id,
                    setter_name=_entity_name(entity, team, setter_id),
                    color=entity.color if entity else None,
                    outbound_dials=tally.dials,
                    unique_contacts_reached=len(tally.contacts),
                    discoveries_set=tally.discoveries,
                    sales_calls_booked=tally.booked,
                    show_rate=tally.show_rate,
                    setter_win_rate=tally.win_rate,
                    attributed_revenue=tally.revenue,
                )
            )
        return rows

    def _rep_rows(
        self,
        bookings: list[AttributedBooking],
        team: _Team,
        entities: list[CompareEntity],
    ) -> list[RepMetrics]:
        # rep credit comes from the booking itself, attribution mode only moves setters
        tallies: dict[str, _Tally] = defaultdict(_Tally)
        for attributed in bookings:
            if attributed.booking.type == EventType.APPOINTMENT and attributed.rep_id:
                tallies[attributed.rep_id].add_appointment(attributed)

        rows = []
        for rep_id, entity in _select(tallies, entities, "rep"):
            tally = tallies.get(rep_id, _Tally())
            rows.append(
                RepMetrics(
                    rep_id=rep_id,
                    rep_name=_entity_name(entity, team, rep_id),
                    color=entity.color if entity else None,
                    sales_calls_booked=tally.booked,
                    sales_calls_held=tally.showed,
                    win_rate=tally.win_rate,
                    revenue=tally.revenue,
                    cash_collected=tally.cash,
                    avg_order_value=tally.avg_deal,
                    avg_sales_cycle_days=tally.avg_cycle,
                )
            )
        return rows

    def _pair_rows(
        self,
        bookings: list[AttributedBooking],
        team: _Team,
        entities: list[CompareEntity],
    ) -> list[PairMetrics]:
        tallies: dict[tuple[str, str], _Tally] = defaultdict(_Tally)
        for attributed in bookings:
            if attributed.booking.type != EventType.APPOINTMENT or not attributed.rep_id:
                continue
            for setter_id in attributed.setter_ids:
                tallies[(setter_id, attributed.rep_id)].add_appointment(attributed)

        setters = {e.id: e for e in entities if e.type == "setter"}
        reps = {e.id: e for e in entities if e.type == "rep"}
        if entities:
            # cross product of the selection; no setters selected means the
            # implicit inbound bucket
            setter_ids = sorted(setters) or [INBOUND]
            keys = [(s, r) for s in setter_ids for r in sorted(reps)]
        else:
            keys = sorted(tallies)

        rows = []
        for setter_id, rep_id in keys:
            tally = tallies.get((setter_id, rep_id), _Tally())
            rows.append(
                PairMetrics(
                    setter_id=setter_id,
                    setter_name=_entity_name(setters.get(setter_id), team, setter_id),
                    rep_id=rep_id,
                    rep_name=_entity_name(reps.get(rep_id), team, rep_id),
                    metrics=PairStats(
                        appointments=tally.booked,
                        show_rate=tally.show_rate,
                        win_rate=tally.win_rate,
                        revenue=tally.revenue,
                        cash_collected=tally.cash,
                        avg_deal_size=tally.avg_deal,
                    ),
                )
            )
        return rows


def _in_range(event: ActivityEvent, date_range: DateRange) -> bool:
    return date_range.start <= event.occurred_at.date() <= date_range.end


def _select(
    tallies: dict[str, _Tally],
    entities: Iterable[CompareEntity],
    entity_type: str,
) -> list[tuple[str, CompareEntity | None]]:
    """(id, entity) pairs to report, ordered by id."""
    selected = {e.id: e for e in entities if e.type == entity_type}
    if selected:
        return sorted(selected.items())
    return [(entity_id, None) for entity_id in sorted(tallies)]


def _entity_name(entity: CompareEntity | None, team: _Team, entity_id: str) -> str:
    if entity is not None and entity.name:
        return entity.name
    return team.name(entity_id)
