"""Session linking, de-duplication and booking attribution.

pure functions over ActivityEvent lists - no database access here, which
keeps the attribution rules easy to test in isolation.

events must carry a seq (load order). everything that needs "latest" sorts
on (occurred_at, seq), so two events with the same timestamp always resolve
the same way: the one loaded later wins.
"""

from collections.abc import Iterable
from datetime import datetime, timedelta

from salesmetrics.models.compare import (
    INBOUND,
    ActivityEvent,
    AttributedBooking,
    EventType,
    LinkedSession,
)
from salesmetrics.models.metric import AttributionMode

BOOKING_TYPES = (EventType.APPOINTMENT, EventType.DISCOVERY)
TOUCH_TYPES = (EventType.DIAL, EventType.DISCOVERY)


def _order(event: ActivityEvent) -> tuple[datetime, int]:
    return (event.occurred_at, event.seq)


def _primary(events: list[ActivityEvent]) -> ActivityEvent | None:
    """The conversion of a session if it has one, else its first event."""
    for event in events:
        if event.type in BOOKING_TYPES:
            return event
    return events[0] if events else None


def link_sessions(
    events: Iterable[ActivityEvent],
    same_call_window_minutes: int = 30,
    time_window_days: int = 14,
) -> list[LinkedSession]:
    """Group events into sessions.

    events sharing a call_sid form one session. a booking without a call_sid
    joins the session of the latest earlier dial (or discovery, for an
    appointment) on the same contact, if that happened within
    same_call_window_minutes. everything else is a session of its own.
    """
    ordered = sorted(events, key=_order)
    same_call = timedelta(minutes=same_call_window_minutes)
    lookback = timedelta(days=time_window_days)

    sessions: dict[str, LinkedSession] = {}
    session_of: dict[tuple[EventType, str], str] = {}  # (type, id) -> session id
    by_contact: dict[str, list[ActivityEvent]] = {}

    for event in ordered:
        session_id = None
        inferred = False

        if event.call_sid:
            session_id = f"sid_{event.call_sid}"
        elif event.type in BOOKING_TYPES and event.contact_id:
            prior = _closest_prior(event, by_contact.get(event.contact_id, []), lookback)
            if prior is not None and event.occurred_at - prior.occurred_at <= same_call:
                session_id = session_of[(prior.type, prior.id)]
                inferred = True

        if session_id is None:
            session_id = f"standalone_{event.type.value}_{event.id}"

        session = sessions.get(session_id)
        if session is None:
            session = LinkedSession(session_id=session_id, events=[])
            sessions[session_id] = session
        session.events.append(event)
        session.is_inferred = session.is_inferred or inferred
        session_of[(event.type, event.id)] = session_id

        if event.contact_id:
            by_contact.setdefault(event.contact_id, []).append(event)

    for session in sessions.values():
        session.primary_event = _primary(session.events)
    return list(sessions.values())


def _closest_prior(
    booking: ActivityEvent,
    contact_events: list[ActivityEvent],
    lookback: timedelta,
) -> ActivityEvent | None:
    """Latest dial (or discovery, for appointments) strictly before booking."""
    if booking.type == EventType.APPOINTMENT:
        allowed = (EventType.DIAL, EventType.DISCOVERY)
    else:
        allowed = (EventType.DIAL,)
    window_start = booking.occurred_at - lookback
    # contact_events is already in (occurred_at, seq) order
    for candidate in reversed(contact_events):
        if candidate.type not in allowed:
            continue
        if candidate.occurred_at >= booking.occurred_at:
            continue
        if candidate.occurred_at < window_start:
            return None
        return candidate
    return None


def deduplicate(
    sessions: list[LinkedSession],
    exclude_in_call_dials: bool = True,
    exclude_rep_dials: bool = True,
    rep_ids: set[str] | frozenset[str] = frozenset(),
) -> list[LinkedSession]:
    """Drop dials that would double count.

    exclude_in_call_dials: a dial that shares a session with a booking is the
    booking call itself, not an extra outbound dial.
    exclude_rep_dials: dials made by known reps aren't setter activity.
    sessions left with no events are dropped.
    """
    result = []
    for session in sessions:
        events = list(session.events)
        if exclude_in_call_dials and any(e.type in BOOKING_TYPES for e in events):
            events = [e for e in events if e.type != EventType.DIAL]
        if exclude_rep_dials and rep_ids:
            events = [
                e for e in events if not (e.type == EventType.DIAL and e.setter_id in rep_ids)
            ]
        if not events:
            continue
        result.append(
            session.model_copy(update={"events": events, "primary_event": _primary(events)})
        )
    return result


def attribute_booking(
    booking: ActivityEvent,
    touches: list[ActivityEvent],
    mode: AttributionMode,
    time_window_days: int = 14,
) -> AttributedBooking:
    """Decide which setters get credit for a booking.

    touches are candidate events on the booking's contact, in any order; only
    dials/discoveries with a setter, strictly before the booking and inside
    the lookback window count.
    """
    window_start = booking.occurred_at - timedelta(days=time_window_days)
    prior = sorted(
        (
            t
            for t in touches
            if t.type in TOUCH_TYPES
            and t.setter_id
            and window_start <= t.occurred_at < booking.occurred_at
        ),
        key=_order,
    )
    stamped = booking.setter_id

    if mode == AttributionMode.PRIMARY:
        setter_ids = [stamped or INBOUND]
    elif mode == AttributionMode.LAST_TOUCH:
        setter_ids = [prior[-1].setter_id] if prior else [stamped or INBOUND]
    else:
        setter_ids = []
        for touch in prior:
            if touch.setter_id not in setter_ids:
                setter_ids.append(touch.setter_id)
        if stamped and stamped not in setter_ids:
            setter_ids.append(stamped)
        if not setter_ids:
            setter_ids = [INBOUND]

    return AttributedBooking(
        booking=booking,
        setter_ids=setter_ids,
        rep_id=booking.rep_id,
        first_touch_at=prior[0].occurred_at if prior else booking.occurred_at,
    )


def attribute_bookings(
    sessions: list[LinkedSession],
    mode: AttributionMode,
    time_window_days: int = 14,
) -> list[AttributedBooking]:
    """Attribute every booking in the (de-duplicated) sessions.

    touches are looked up across all sessions for the same contact, not just
    the booking's own session - a dial from last week is a touch even though
    it was a separate call.
    """
    events = [e for s in sessions for e in s.events]
    by_contact: dict[str, list[ActivityEvent]] = {}
    for event in events:
        if event.contact_id:
            by_contact.setdefault(event.contact_id, []).append(event)

    bookings = sorted((e for e in events if e.type in BOOKING_TYPES), key=_order)
    return [
        attribute_booking(
            booking,
            by_contact.get(booking.contact_id, []) if booking.contact_id else [],
            mode,
            time_window_days,
        )
        for booking in bookings
    ]
