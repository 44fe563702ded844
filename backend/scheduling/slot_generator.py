from dataclasses import dataclass
from datetime import time

from backend.scheduling.errors import InvalidRangeError


@dataclass(frozen=True)
class Slot:
    """One fixed-duration interval of a working day."""

    start_time: time
    end_time: time
    is_active: bool = True

    @property
    def label(self) -> str:
        return f'{format_time(self.start_time)}-{format_time(self.end_time)}'


def to_time(value: time | str) -> time:
    """Accept ``datetime.time`` or an ``HH:MM`` / ``HH:MM:SS`` string."""
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)

    if isinstance(value, str):
        parts = value.strip().split(':')
        if (
            len(parts) in (2, 3)
            and all(part.isdigit() for part in parts)
            and len(parts[0]) in (1, 2)
            and all(len(part) == 2 for part in parts[1:])
        ):
            hour, minute = int(parts[0]), int(parts[1])
            second = int(parts[2]) if len(parts) == 3 else 0
            if 0 <= hour < 24 and 0 <= minute < 60 and 0 <= second < 60:
                return time(hour, minute)

    raise InvalidRangeError(f'Invalid time value: {value!r}. Expected HH:MM.')


def format_time(value: time) -> str:
    return value.strftime('%H:%M')


def to_minutes(value: time | str) -> int:
    parsed = to_time(value)
    return parsed.hour * 60 + parsed.minute


def from_minutes(minutes: int) -> time:
    return time(minutes // 60, minutes % 60)


def validate_window(
    start_time: time | str,
    end_time: time | str,
    slot_duration_minutes: int,
    break_start: time | str | None = None,
    break_end: time | str | None = None,
) -> tuple[int, int, tuple[int, int] | None]:
    start = to_minutes(start_time)
    end = to_minutes(end_time)

    if start >= end:
        raise InvalidRangeError('End time must be later than start time.')

    if slot_duration_minutes <= 0:
        raise InvalidRangeError('Slot duration must be a positive number of minutes.')

    if (break_start is None) != (break_end is None):
        raise InvalidRangeError('Break start and break end must be provided together.')

    break_window = None
    if break_start is not None:
        break_window = (to_minutes(break_start), to_minutes(break_end))
        if break_window[0] >= break_window[1]:
            raise InvalidRangeError('Break end must be later than break start.')

    return start, end, break_window


def generate_slots(
    start_time: time | str,
    end_time: time | str,
    slot_duration_minutes: int,
    break_start: time | str | None = None,
    break_end: time | str | None = None,
) -> list[Slot]:
    """Split a working window into consecutive slots of ``slot_duration_minutes``.

    A trailing period shorter than the duration produces no slot. Slots that
    intersect the break window are kept but marked inactive; a slot that only
    touches the break boundary stays active.
    """
    start, end, break_window = validate_window(
        start_time, end_time, slot_duration_minutes, break_start, break_end
    )

    slots: list[Slot] = []
    cursor = start

    while cursor + slot_duration_minutes <= end:
        slot_end = cursor + slot_duration_minutes
        is_active = True
        if break_window is not None:
            is_active = not (cursor < break_window[1] and slot_end > break_window[0])

        slots.append(Slot(from_minutes(cursor), from_minutes(slot_end), is_active))
        cursor = slot_end

    return slots
