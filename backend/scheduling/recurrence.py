"""
Recurrence projection.

Turns weekly availability rules into concrete dated slot lists over a horizon
of calendar months. Weekdays use 0 for Sunday through 6 for Saturday.
"""

import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable

from backend.core import config
from backend.scheduling.errors import InvalidRangeError
from backend.scheduling.rules import AvailabilityRule, validate_rule, validate_weekdays, weekday_index
from backend.scheduling.slot_generator import Slot


@dataclass(frozen=True)
class DatedSlots:
    date: date
    slots: tuple[Slot, ...]
    rule: AvailabilityRule | None = None


def add_months(value: date, months: int) -> date:
    """Shift by calendar months, clamping to the last day of the target month."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def first_day_of_next_month(reference_date: date) -> date:
    return add_months(reference_date.replace(day=1), 1)


def next_month_window(reference_date: date) -> tuple[date, date]:
    """The calendar month after ``reference_date`` as a half-open ``[start, end)`` range."""
    start = first_day_of_next_month(reference_date)
    return start, add_months(start, 1)


def future_window(reference_date: date, months: int) -> tuple[date, date]:
    """``months`` full calendar months starting with the month after ``reference_date``."""
    if months not in config.FUTURE_HORIZON_OPTIONS:
        options = ', '.join(str(option) for option in config.FUTURE_HORIZON_OPTIONS)
        raise InvalidRangeError(f'Horizon must be one of {options} months.')

    start = first_day_of_next_month(reference_date)
    return start, add_months(start, months)


def iterate_dates(start: date, end: date) -> Iterable[date]:
    current = start
    while current < end:
        yield current
        current += timedelta(days=1)


def project_recurring(
    rule: AvailabilityRule,
    weekdays: Iterable[int] | None,
    horizon_months: int,
    reference_date: date,
) -> list[DatedSlots]:
    """Instantiate the rule's slot template on every matching date of the horizon.

    The horizon is ``[reference_date, reference_date + horizon_months)``. One-off
    rules ignore the horizon and yield their own date only.
    """
    validate_rule(rule)

    if horizon_months < 1:
        raise InvalidRangeError('Horizon must be at least one month.')

    template = tuple(rule.slots())

    if rule.date is not None:
        return [DatedSlots(rule.date, template, rule)]

    selected = validate_weekdays(weekdays if weekdays is not None else {rule.day_of_week})
    horizon_end = add_months(reference_date, horizon_months)

    return [
        DatedSlots(current, template, rule)
        for current in iterate_dates(reference_date, horizon_end)
        if weekday_index(current) in selected
    ]


def project_rules(rules: Iterable[AvailabilityRule], start: date, months: int) -> list[DatedSlots]:
    """Project every active rule of a professional over ``[start, start + months)``.

    One-off rules are kept only when their date falls inside the window.
    """
    end = add_months(start, months)
    projected: list[DatedSlots] = []

    for rule in rules:
        if not rule.is_active:
            continue

        for dated in project_recurring(rule, None, months, start):
            if start <= dated.date < end:
                projected.append(dated)

    projected.sort(key=lambda dated: dated.date)
    return projected
