"""
Calendar cell assembly.

Groups bookings into the cells of a month, week, week-hour or day view, packs
each cell with the overlap layout and truncates to the number of events a
cell can show. Every view goes through the same ``layout`` call.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Hashable, Iterable

from backend.core import config
from backend.scheduling.layout import CalendarEvent, LayoutAssignment, events_from_bookings, layout, read_field


class BookingStatus(str, Enum):
    PENDING = 'pending'
    CONFIRMED = 'confirmed'
    CANCELLED = 'cancelled'
    COMPLETED = 'completed'


@dataclass(frozen=True)
class Booking:
    id: Hashable
    scheduled_at: datetime
    duration_minutes: int | None = None
    status: BookingStatus = BookingStatus.PENDING
    professional_id: str | None = None
    slot_id: int | None = None


def holds_slot(booking) -> bool:
    """A cancelled booking releases its slot."""
    return read_field(booking, 'status') != BookingStatus.CANCELLED


class CalendarViewKind(str, Enum):
    MONTH = 'month'
    WEEK = 'week'
    WEEK_HOUR = 'week_hour'
    DAY = 'day'


def visible_limit(view: CalendarViewKind) -> int | None:
    if view == CalendarViewKind.MONTH:
        return config.MONTH_CELL_VISIBLE_EVENTS
    if view == CalendarViewKind.WEEK:
        return config.WEEK_CELL_VISIBLE_EVENTS
    if view == CalendarViewKind.WEEK_HOUR:
        return config.WEEK_HOUR_CELL_VISIBLE_EVENTS
    return None


@dataclass(frozen=True)
class PlacedEvent:
    event: CalendarEvent
    assignment: LayoutAssignment


@dataclass
class CalendarCell:
    date: date
    hour: int | None = None
    events: list[PlacedEvent] = field(default_factory=list)
    hidden_count: int = 0

    @property
    def more_label(self) -> str | None:
        if not self.hidden_count:
            return None
        return f'+{self.hidden_count} more'

    @property
    def drilldown_view(self) -> CalendarViewKind | None:
        # the "+K more" indicator opens the day view instead of expanding in place
        return CalendarViewKind.DAY if self.hidden_count else None


def visible_events(events: Iterable[CalendarEvent], limit: int | None) -> tuple[list[CalendarEvent], int]:
    """Earliest ``limit`` events by start, plus how many were left out."""
    ordered = sorted(events, key=lambda event: event.start)
    if limit is None or len(ordered) <= limit:
        return ordered, 0
    return ordered[:limit], len(ordered) - limit


def _cell_key(event: CalendarEvent, view: CalendarViewKind) -> tuple[date, int | None]:
    if view == CalendarViewKind.WEEK_HOUR:
        return event.start.date(), event.start.hour
    return event.start.date(), None


def build_cells(
    bookings: Iterable,
    view: CalendarViewKind,
    include_cancelled: bool = False,
    limit: int | None = None,
) -> list[CalendarCell]:
    """Assemble the non-empty cells of a view, ordered by date and hour."""
    if limit is None:
        limit = visible_limit(view)

    selected = [
        booking for booking in bookings
        if include_cancelled or holds_slot(booking)
    ]

    grouped: dict[tuple[date, int | None], list[CalendarEvent]] = defaultdict(list)
    for event in events_from_bookings(selected):
        grouped[_cell_key(event, view)].append(event)

    cells: list[CalendarCell] = []
    for (cell_date, hour) in sorted(grouped, key=lambda key: (key[0], key[1] or 0)):
        cell_events = grouped[(cell_date, hour)]
        assignments = layout(cell_events)
        shown, hidden_count = visible_events(cell_events, limit)
        cells.append(
            CalendarCell(
                date=cell_date,
                hour=hour,
                events=[PlacedEvent(event, assignments[event.id]) for event in shown],
                hidden_count=hidden_count,
            )
        )

    return cells
