"""
Overlap layout for calendar views.

Bookings of one rendering unit are packed into display columns so that no two
overlapping bookings share a column. Greedy first-fit over start-sorted
intervals is optimal for interval graphs: the column count equals the largest
number of bookings running at the same instant.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Hashable, Iterable, Mapping

from backend.core import config
from backend.scheduling.errors import InvalidRangeError


@dataclass(frozen=True)
class CalendarEvent:
    id: Hashable
    start: datetime
    end: datetime
    payload: Any = field(default=None, compare=False)


@dataclass(frozen=True)
class LayoutAssignment:
    column: int
    total_columns: int


def overlaps(first: CalendarEvent, second: CalendarEvent) -> bool:
    return not (first.end <= second.start or first.start >= second.end)


def layout(events: Iterable[CalendarEvent]) -> dict[Hashable, LayoutAssignment]:
    ordered = list(events)
    seen: set[Hashable] = set()
    for event in ordered:
        if event.end < event.start:
            raise InvalidRangeError(f'Event {event.id!r} ends before it starts.')
        if event.id in seen:
            raise ValueError(f'Duplicate event id {event.id!r}.')
        seen.add(event.id)

    columns: list[list[CalendarEvent]] = []
    placement: dict[Hashable, int] = {}

    # sorted() is stable, ties keep input order
    for event in sorted(ordered, key=lambda item: item.start):
        for index, column in enumerate(columns):
            # every member, not only the last: a long event placed earlier can still overlap
            if all(not overlaps(event, existing) for existing in column):
                column.append(event)
                placement[event.id] = index
                break
        else:
            columns.append([event])
            placement[event.id] = len(columns) - 1

    total_columns = len(columns)
    return {
        event_id: LayoutAssignment(column=column, total_columns=total_columns)
        for event_id, column in placement.items()
    }


def read_field(source: Any, key: str):
    """Read ``key`` from a mapping or an object attribute."""
    if isinstance(source, Mapping):
        return source.get(key)
    return getattr(source, key, None)


def event_from_booking(booking, default_duration_minutes: int | None = None) -> CalendarEvent:
    """Build an event from a booking mapping or object with ``id``, ``scheduled_at`` and ``duration_minutes``."""
    if default_duration_minutes is None:
        default_duration_minutes = config.DEFAULT_BOOKING_DURATION_MINUTES

    duration = read_field(booking, 'duration_minutes') or default_duration_minutes
    start = read_field(booking, 'scheduled_at')
    return CalendarEvent(
        id=read_field(booking, 'id'),
        start=start,
        end=start + timedelta(minutes=duration),
        payload=booking,
    )


def events_from_bookings(bookings: Iterable, default_duration_minutes: int | None = None) -> list[CalendarEvent]:
    return [event_from_booking(booking, default_duration_minutes) for booking in bookings]
