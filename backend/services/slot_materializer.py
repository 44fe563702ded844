"""
Persist projected slots.

Each slot is written with its own commit: a batch is a set of independent
writes, so one rejected slot never rolls back the others. Every outcome is
reported back in a ``BatchResult``.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, time, timedelta
from enum import Enum
from typing import Iterable

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from backend.core import config
from backend.models.appointment import Appointment
from backend.models.availability import ProfessionalAvailability
from backend.models.slot import AvailabilitySlot
from backend.scheduling.calendar_view import BookingStatus
from backend.scheduling.errors import ConflictError, PartialBatchFailure
from backend.scheduling.recurrence import DatedSlots, future_window, next_month_window, project_rules
from backend.scheduling.rules import AvailabilityRule
from backend.scheduling.slot_generator import format_time, to_time, validate_window

logger = logging.getLogger(__name__)


class RegenerationPolicy(str, Enum):
    SKIP_EXISTING = 'skip'
    REPLACE = 'replace'


class OutcomeStatus(str, Enum):
    CREATED = 'created'
    SKIPPED = 'skipped'
    REPLACED = 'replaced'
    REMOVED = 'removed'
    FAILED = 'failed'


def default_policy() -> RegenerationPolicy:
    return RegenerationPolicy(config.SLOT_REGENERATION_POLICY)


@dataclass(frozen=True)
class SlotWrite:
    date: date
    start_time: time
    end_time: time
    is_active: bool = True
    rule_id: int | None = None
    service_id: str | None = None

    @property
    def key(self) -> tuple[date, time]:
        return self.date, self.start_time


@dataclass(frozen=True)
class SlotOutcome:
    date: date
    start_time: time
    end_time: time
    status: OutcomeStatus
    error: str | None = None


@dataclass
class BatchResult:
    items: list[SlotOutcome] = field(default_factory=list)
    month: int | None = None
    year: int | None = None
    months: int | None = None

    def _count(self, status: OutcomeStatus) -> int:
        return sum(1 for item in self.items if item.status == status)

    @property
    def created(self) -> int:
        return self._count(OutcomeStatus.CREATED)

    @property
    def failed(self) -> int:
        return self._count(OutcomeStatus.FAILED)

    @property
    def skipped(self) -> int:
        return self._count(OutcomeStatus.SKIPPED)

    @property
    def replaced(self) -> int:
        return self._count(OutcomeStatus.REPLACED)

    @property
    def removed(self) -> int:
        return self._count(OutcomeStatus.REMOVED)

    @property
    def total_created(self) -> int:
        return self.created

    @property
    def message(self) -> str:
        return f'{self.created} slots created, {self.failed} failed'

    def raise_for_failures(self) -> None:
        if self.failed:
            raise PartialBatchFailure(self)


def writes_from_projection(projection: Iterable[DatedSlots], service_id: str | None = None) -> list[SlotWrite]:
    writes = []
    for dated in projection:
        rule = dated.rule
        for slot in dated.slots:
            writes.append(
                SlotWrite(
                    date=dated.date,
                    start_time=slot.start_time,
                    end_time=slot.end_time,
                    is_active=slot.is_active,
                    rule_id=rule.id if rule is not None else None,
                    service_id=service_id or (rule.service_id if rule is not None else None),
                )
            )
    return writes


def _load_existing(db: Session, professional_id: str, first_date: date, last_date: date) -> dict:
    rows = db.query(AvailabilitySlot).filter(
        AvailabilitySlot.professional_id == professional_id,
        AvailabilitySlot.date >= first_date,
        AvailabilitySlot.date <= last_date,
    ).all()
    return {(row.date, row.start_time): row for row in rows}


def _find_slot(db: Session, professional_id: str, write: SlotWrite) -> AvailabilitySlot | None:
    return db.query(AvailabilitySlot).filter(
        AvailabilitySlot.professional_id == professional_id,
        AvailabilitySlot.date == write.date,
        AvailabilitySlot.start_time == write.start_time,
    ).first()


def _commit(db: Session, description: str) -> None:
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError(f'{description} already exists.') from exc
    except SQLAlchemyError:
        db.rollback()
        raise


def _insert_slot(db: Session, professional_id: str, write: SlotWrite) -> AvailabilitySlot:
    slot = AvailabilitySlot(
        professional_id=professional_id,
        rule_id=write.rule_id,
        service_id=write.service_id,
        date=write.date,
        start_time=write.start_time,
        end_time=write.end_time,
        is_active=write.is_active,
    )
    db.add(slot)
    _commit(db, f'Slot {write.date.isoformat()} {format_time(write.start_time)}')
    return slot


def _update_slot(db: Session, slot: AvailabilitySlot, write: SlotWrite) -> AvailabilitySlot:
    slot.end_time = write.end_time
    slot.is_active = write.is_active
    slot.rule_id = write.rule_id
    slot.service_id = write.service_id
    _commit(db, f'Slot {write.date.isoformat()} {format_time(write.start_time)}')
    return slot


def _delete_slot(db: Session, slot: AvailabilitySlot) -> None:
    db.delete(slot)
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise


def booked_slot_ids(db: Session, slot_ids: list[int]) -> set[int]:
    """Slots held by a booking that is not cancelled."""
    if not slot_ids:
        return set()
    rows = db.query(Appointment.slot_id).filter(
        Appointment.slot_id.in_(slot_ids),
        Appointment.status != BookingStatus.CANCELLED.value,
    ).all()
    return {row[0] for row in rows}


def _write_one(
    db: Session,
    professional_id: str,
    write: SlotWrite,
    current: AvailabilitySlot | None,
    policy: RegenerationPolicy,
) -> tuple[OutcomeStatus, AvailabilitySlot | None, str | None]:
    if current is not None:
        if policy == RegenerationPolicy.SKIP_EXISTING:
            return OutcomeStatus.SKIPPED, current, None
        return OutcomeStatus.REPLACED, _update_slot(db, current, write), None

    try:
        return OutcomeStatus.CREATED, _insert_slot(db, professional_id, write), None
    except ConflictError as exc:
        # another writer created the slot after existing slots were loaded
        if policy == RegenerationPolicy.SKIP_EXISTING:
            return OutcomeStatus.SKIPPED, None, str(exc)

        concurrent = _find_slot(db, professional_id, write)
        if concurrent is None:
            raise
        return OutcomeStatus.REPLACED, _update_slot(db, concurrent, write), None


def _remove_stale(
    db: Session,
    existing: dict,
    writes: list[SlotWrite],
    result: BatchResult,
    rule_ids: set[int] | None = None,
) -> None:
    written_keys = {write.key for write in writes}

    if rule_ids is None:
        # explicit batches only touch the dates they list
        projected_dates = {write.date for write in writes}
        rule_ids = {write.rule_id for write in writes if write.rule_id is not None}
        candidates = [
            slot for key, slot in existing.items()
            if key not in written_keys and key[0] in projected_dates
        ]
    else:
        candidates = [slot for key, slot in existing.items() if key not in written_keys]

    stale = [slot for slot in candidates if slot.rule_id in rule_ids]
    booked = booked_slot_ids(db, [slot.id for slot in stale])

    for slot in stale:
        if slot.id in booked:
            continue
        slot_date, start_time, end_time = slot.date, slot.start_time, slot.end_time
        try:
            _delete_slot(db, slot)
        except SQLAlchemyError as exc:
            logger.warning('Could not remove stale slot %s %s: %s', slot_date, start_time, exc)
            result.items.append(SlotOutcome(slot_date, start_time, end_time, OutcomeStatus.FAILED, str(exc)))
            continue
        result.items.append(SlotOutcome(slot_date, start_time, end_time, OutcomeStatus.REMOVED))


def materialize(
    db: Session,
    professional_id: str,
    writes: list[SlotWrite],
    policy: RegenerationPolicy | None = None,
    window: tuple[date, date] | None = None,
    rule_ids: set[int] | None = None,
) -> BatchResult:
    """Persist ``writes`` for one professional and report every outcome.

    With the skip policy a slot already stored for the same date and start
    time is left alone, so re-running a projection never duplicates slots.
    With the replace policy stored slots are updated from the new template and
    unbooked slots of the same rules that the template no longer produces are
    removed.

    ``window`` is the inclusive ``(first, last)`` date range being regenerated
    and ``rule_ids`` every rule of the professional, active or not. When both
    are given, replace regenerates the whole window even if ``writes`` is
    empty; otherwise only the dates and rules present in ``writes`` are
    touched.
    """
    policy = policy or default_policy()
    result = BatchResult()

    if window is None:
        if not writes:
            return result
        dates = [write.date for write in writes]
        window = (min(dates), max(dates))

    existing = _load_existing(db, professional_id, window[0], window[1])

    for write in writes:
        try:
            status, slot, error = _write_one(db, professional_id, write, existing.get(write.key), policy)
        except (ConflictError, SQLAlchemyError) as exc:
            logger.warning(
                'Slot %s %s for professional %s failed: %s',
                write.date, format_time(write.start_time), professional_id, exc,
            )
            result.items.append(SlotOutcome(write.date, write.start_time, write.end_time, OutcomeStatus.FAILED, str(exc)))
            continue

        if slot is not None:
            existing[write.key] = slot
        result.items.append(SlotOutcome(write.date, write.start_time, write.end_time, status, error))

    if policy == RegenerationPolicy.REPLACE:
        _remove_stale(db, existing, writes, result, rule_ids)

    logger.info(
        'Materialized slots for professional %s (%s): %d created, %d skipped, %d replaced, %d removed, %d failed',
        professional_id, policy.value, result.created, result.skipped, result.replaced, result.removed, result.failed,
    )
    return result


def load_rules(db: Session, professional_id: str, include_inactive: bool = False) -> list[AvailabilityRule]:
    query = db.query(ProfessionalAvailability).filter(
        ProfessionalAvailability.professional_id == professional_id,
    )
    if not include_inactive:
        query = query.filter(ProfessionalAvailability.is_active.is_(True))
    return [row.to_rule() for row in query.order_by(ProfessionalAvailability.id.asc()).all()]


def _regenerate(
    db: Session,
    professional_id: str,
    start: date,
    end: date,
    months: int,
    policy: RegenerationPolicy | None,
) -> BatchResult:
    # inactive rules project nothing but their slots in the window are still theirs
    rules = load_rules(db, professional_id, include_inactive=True)
    projection = project_rules(rules, start, months)
    return materialize(
        db,
        professional_id,
        writes_from_projection(projection),
        policy,
        window=(start, end - timedelta(days=1)),
        rule_ids={rule.id for rule in rules},
    )


def generate_next_month(
    db: Session,
    professional_id: str,
    reference_date: date,
    policy: RegenerationPolicy | None = None,
) -> BatchResult:
    start, end = next_month_window(reference_date)
    result = _regenerate(db, professional_id, start, end, 1, policy)
    result.month = start.month
    result.year = start.year
    return result


def generate_future(
    db: Session,
    professional_id: str,
    months: int,
    reference_date: date,
    policy: RegenerationPolicy | None = None,
) -> BatchResult:
    start, end = future_window(reference_date, months)
    result = _regenerate(db, professional_id, start, end, months, policy)
    result.months = months
    return result


def submit_batch(
    db: Session,
    professional_id: str,
    writes: list[SlotWrite],
    policy: RegenerationPolicy | None = None,
) -> BatchResult:
    """Single submit for explicitly listed slots, validated before anything is written."""
    normalized = []
    for write in writes:
        start_time, end_time = to_time(write.start_time), to_time(write.end_time)
        validate_window(start_time, end_time, 1)
        normalized.append(
            SlotWrite(
                date=write.date,
                start_time=start_time,
                end_time=end_time,
                is_active=write.is_active,
                rule_id=write.rule_id,
                service_id=write.service_id,
            )
        )
    return materialize(db, professional_id, normalized, policy)
