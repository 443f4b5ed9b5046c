"""Presence normalizer — raw swipe/check-in events to distinct present dates.

Timezone-aware timestamps are bucketed by their UTC calendar date; naive
timestamps are taken as already UTC.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Iterable, Optional, Union

from compliance_engine.compliance.records import PresenceRecord
from compliance_engine.compliance.window import DateWindow

RawPresence = Union[date, datetime, PresenceRecord]


def utc_date(moment: datetime) -> date:
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.date()


def _event_date(event: RawPresence) -> date:
    if isinstance(event, PresenceRecord):
        return event.date
    # datetime is a date subclass; check it first
    if isinstance(event, datetime):
        return utc_date(event)
    if isinstance(event, date):
        return event
    raise TypeError(f"unsupported presence event: {event!r}")


def normalize_presence(
    events: Iterable[RawPresence],
    window: Optional[DateWindow] = None,
) -> frozenset[date]:
    """Collapse events to one present flag per calendar date.

    Dates without an event are absent. Events outside *window* are dropped
    when a window is given.
    """
    present = {_event_date(e) for e in events}
    if window is not None:
        present = {d for d in present if d in window}
    return frozenset(present)
