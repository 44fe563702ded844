"""Availability rules declared by administrators."""

import datetime as dt
from datetime import date, time

from pydantic import BaseModel, Field, field_validator

from backend.scheduling.errors import AmbiguousRuleError, InvalidRangeError
from backend.scheduling.slot_generator import Slot, generate_slots, to_time, validate_window

WEEKDAY_NAMES = ('Sunday', 'Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday')


def weekday_index(value: date) -> int:
    """Weekday with Sunday as 0 and Saturday as 6."""
    return value.isoweekday() % 7


def validate_weekdays(weekdays) -> frozenset[int]:
    normalized = frozenset(weekdays)
    invalid = sorted(day for day in normalized if not isinstance(day, int) or not 0 <= day <= 6)
    if invalid:
        raise InvalidRangeError(f'Weekdays must be between 0 (Sunday) and 6 (Saturday), got {invalid}.')
    return normalized


class AvailabilityRule(BaseModel):
    id: int | None = None
    professional_id: str
    service_id: str | None = None
    date: dt.date | None = None
    day_of_week: int | None = Field(default=None, ge=0, le=6)
    start_time: time
    end_time: time
    slot_duration_minutes: int
    break_start: time | None = None
    break_end: time | None = None
    is_active: bool = True

    class Config:
        from_attributes = True
        frozen = True

    @field_validator('professional_id')
    @classmethod
    def validate_professional_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Professional is required.')
        return normalized

    @field_validator('start_time', 'end_time', 'break_start', 'break_end', mode='before')
    @classmethod
    def parse_clock_time(cls, value):
        if value is None or value == '':
            return None
        try:
            return to_time(value)
        except InvalidRangeError as exc:
            raise ValueError(str(exc)) from exc

    @property
    def is_recurring(self) -> bool:
        return self.day_of_week is not None

    def slots(self) -> list[Slot]:
        return generate_slots(
            self.start_time,
            self.end_time,
            self.slot_duration_minutes,
            self.break_start,
            self.break_end,
        )


def validate_rule(rule: AvailabilityRule) -> AvailabilityRule:
    """Reject rules that cannot be projected instead of letting them yield no slots."""
    if (rule.date is None) == (rule.day_of_week is None):
        raise AmbiguousRuleError('Exactly one of date or day_of_week must be set.')

    validate_window(
        rule.start_time,
        rule.end_time,
        rule.slot_duration_minutes,
        rule.break_start,
        rule.break_end,
    )
    return rule
