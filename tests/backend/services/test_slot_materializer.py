import os
from datetime import date, datetime, time

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from backend.database import Base  # noqa: E402
from backend.models.appointment import Appointment  # noqa: E402
from backend.models.availability import ProfessionalAvailability  # noqa: E402
from backend.models.slot import AvailabilitySlot  # noqa: E402
from backend.scheduling.errors import InvalidRangeError, PartialBatchFailure  # noqa: E402
from backend.scheduling.recurrence import project_recurring  # noqa: E402
from backend.services import slot_materializer  # noqa: E402
from backend.services.slot_materializer import (  # noqa: E402
    OutcomeStatus,
    RegenerationPolicy,
    SlotWrite,
    generate_future,
    generate_next_month,
    load_rules,
    submit_batch,
    writes_from_projection,
)

REFERENCE_DATE = date(2026, 2, 10)
MARCH_MONDAYS = [date(2026, 3, day) for day in (2, 9, 16, 23, 30)]
TABLES = [ProfessionalAvailability.__table__, AvailabilitySlot.__table__, Appointment.__table__]


@pytest.fixture
def slot_db():
    engine = create_engine('sqlite:///:memory:')
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine, tables=TABLES)

    db = testing_session_local()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine, tables=TABLES)


def _add_rule(db, **overrides) -> ProfessionalAvailability:
    values = {
        'professional_id': 'pro-1',
        'service_id': 'consulta',
        'day_of_week': 1,
        'start_time': time(9, 0),
        'end_time': time(12, 0),
        'slot_duration_minutes': 60,
        'is_active': True,
    }
    values.update(overrides)
    rule = ProfessionalAvailability(**values)
    db.add(rule)
    db.commit()
    db.refresh(rule)
    return rule


def _stored_slots(db, professional_id: str = 'pro-1') -> list[AvailabilitySlot]:
    return db.query(AvailabilitySlot).filter(
        AvailabilitySlot.professional_id == professional_id,
    ).order_by(AvailabilitySlot.date.asc(), AvailabilitySlot.start_time.asc()).all()


def _slot_at(db, slot_date: date, start_time: time) -> AvailabilitySlot:
    return db.query(AvailabilitySlot).filter(
        AvailabilitySlot.professional_id == 'pro-1',
        AvailabilitySlot.date == slot_date,
        AvailabilitySlot.start_time == start_time,
    ).one()


def test_generate_next_month_creates_slots_for_every_matching_date(slot_db) -> None:
    rule = _add_rule(slot_db)

    result = generate_next_month(slot_db, 'pro-1', REFERENCE_DATE, RegenerationPolicy.SKIP_EXISTING)

    assert (result.month, result.year) == (3, 2026)
    assert result.created == 15
    assert result.failed == 0
    assert result.message == '15 slots created, 0 failed'

    stored = _stored_slots(slot_db)
    assert sorted({slot.date for slot in stored}) == MARCH_MONDAYS
    assert {slot.rule_id for slot in stored} == {rule.id}
    assert {slot.service_id for slot in stored} == {'consulta'}


def test_generate_next_month_twice_does_not_duplicate_slots(slot_db) -> None:
    _add_rule(slot_db)

    generate_next_month(slot_db, 'pro-1', REFERENCE_DATE, RegenerationPolicy.SKIP_EXISTING)
    second = generate_next_month(slot_db, 'pro-1', REFERENCE_DATE, RegenerationPolicy.SKIP_EXISTING)

    assert second.created == 0
    assert second.skipped == 15
    assert len(_stored_slots(slot_db)) == 15


def test_generate_next_month_persists_break_slots_as_inactive(slot_db) -> None:
    _add_rule(slot_db, break_start=time(10, 0), break_end=time(11, 0))

    generate_next_month(slot_db, 'pro-1', REFERENCE_DATE)

    first_monday = [slot for slot in _stored_slots(slot_db) if slot.date == MARCH_MONDAYS[0]]
    assert [(slot.start_time, slot.is_active) for slot in first_monday] == [
        (time(9, 0), True),
        (time(10, 0), False),
        (time(11, 0), True),
    ]


def test_generate_next_month_ignores_inactive_rules_and_other_professionals(slot_db) -> None:
    _add_rule(slot_db)
    _add_rule(slot_db, day_of_week=3, is_active=False)
    _add_rule(slot_db, professional_id='pro-2', day_of_week=2)

    result = generate_next_month(slot_db, 'pro-1', REFERENCE_DATE)

    assert result.created == 15
    assert _stored_slots(slot_db, 'pro-2') == []


def test_generate_next_month_includes_one_off_rules_inside_month(slot_db) -> None:
    _add_rule(slot_db, day_of_week=None, date=date(2026, 3, 14), start_time=time(8, 0), end_time=time(9, 0))
    _add_rule(slot_db, day_of_week=None, date=date(2026, 4, 14), start_time=time(8, 0), end_time=time(9, 0))

    result = generate_next_month(slot_db, 'pro-1', REFERENCE_DATE)

    assert result.created == 1
    assert _stored_slots(slot_db)[0].date == date(2026, 3, 14)


def test_generate_future_covers_each_month_of_horizon(slot_db) -> None:
    _add_rule(slot_db)

    result = generate_future(slot_db, 'pro-1', 3, REFERENCE_DATE)

    assert result.months == 3
    assert result.created == 39
    assert result.total_created == 39
    stored_dates = {slot.date for slot in _stored_slots(slot_db)}
    assert min(stored_dates) == date(2026, 3, 2)
    assert max(stored_dates) == date(2026, 5, 25)


def test_generate_future_rejects_unknown_horizon(slot_db) -> None:
    _add_rule(slot_db)

    with pytest.raises(InvalidRangeError):
        generate_future(slot_db, 'pro-1', 2, REFERENCE_DATE)

    assert _stored_slots(slot_db) == []


def test_replace_policy_updates_template_and_keeps_booked_slots(slot_db) -> None:
    rule = _add_rule(slot_db)
    generate_next_month(slot_db, 'pro-1', REFERENCE_DATE)

    booked_slot = _slot_at(slot_db, date(2026, 3, 2), time(11, 0))
    released_slot = _slot_at(slot_db, date(2026, 3, 9), time(11, 0))
    slot_db.add_all([
        Appointment(
            professional_id='pro-1',
            slot_id=booked_slot.id,
            scheduled_at=datetime(2026, 3, 2, 11, 0),
            status='confirmed',
        ),
        Appointment(
            professional_id='pro-1',
            slot_id=released_slot.id,
            scheduled_at=datetime(2026, 3, 9, 11, 0),
            status='cancelled',
        ),
    ])
    rule.end_time = time(11, 0)
    rule.break_start = time(10, 0)
    rule.break_end = time(11, 0)
    slot_db.commit()

    result = generate_next_month(slot_db, 'pro-1', REFERENCE_DATE, RegenerationPolicy.REPLACE)

    assert result.replaced == 10
    assert result.removed == 4
    assert result.created == 0
    assert result.failed == 0

    stored = _stored_slots(slot_db)
    assert len(stored) == 11
    assert [(slot.date, slot.start_time) for slot in stored if slot.start_time == time(11, 0)] == [
        (date(2026, 3, 2), time(11, 0)),
    ]
    assert {slot.is_active for slot in stored if slot.start_time == time(10, 0)} == {False}


def test_replace_policy_clears_slots_when_template_becomes_empty(slot_db) -> None:
    rule = _add_rule(slot_db)
    generate_next_month(slot_db, 'pro-1', REFERENCE_DATE)
    rule.slot_duration_minutes = 240
    slot_db.commit()

    result = generate_next_month(slot_db, 'pro-1', REFERENCE_DATE, RegenerationPolicy.REPLACE)

    assert result.created == 0
    assert result.removed == 15
    assert _stored_slots(slot_db) == []


def test_replace_policy_clears_slots_of_deactivated_rule(slot_db) -> None:
    monday = _add_rule(slot_db)
    generate_next_month(slot_db, 'pro-1', REFERENCE_DATE)
    monday.is_active = False
    slot_db.commit()
    _add_rule(slot_db, day_of_week=2)

    result = generate_next_month(slot_db, 'pro-1', REFERENCE_DATE, RegenerationPolicy.REPLACE)

    assert result.created == 15
    assert result.removed == 15
    assert {slot.date.strftime('%A') for slot in _stored_slots(slot_db)} == {'Tuesday'}


def test_skip_policy_keeps_slots_of_deactivated_rule(slot_db) -> None:
    monday = _add_rule(slot_db)
    generate_next_month(slot_db, 'pro-1', REFERENCE_DATE)
    monday.is_active = False
    slot_db.commit()

    result = generate_next_month(slot_db, 'pro-1', REFERENCE_DATE, RegenerationPolicy.SKIP_EXISTING)

    assert result.removed == 0
    assert len(_stored_slots(slot_db)) == 15


def test_replace_policy_leaves_slots_outside_window_and_manual_slots(slot_db) -> None:
    monday = _add_rule(slot_db)
    generate_future(slot_db, 'pro-1', 3, REFERENCE_DATE)
    submit_batch(slot_db, 'pro-1', [SlotWrite(date=date(2026, 3, 3), start_time=time(15, 0), end_time=time(16, 0))])
    monday.is_active = False
    slot_db.commit()

    result = generate_next_month(slot_db, 'pro-1', REFERENCE_DATE, RegenerationPolicy.REPLACE)

    assert result.removed == 15
    remaining = _stored_slots(slot_db)
    assert (date(2026, 3, 3), time(15, 0)) in {(slot.date, slot.start_time) for slot in remaining}
    assert min(slot.date for slot in remaining if slot.rule_id is not None) == date(2026, 4, 6)


def test_skip_policy_treats_concurrent_insert_as_existing(slot_db, monkeypatch: pytest.MonkeyPatch) -> None:
    _add_rule(slot_db)
    generate_next_month(slot_db, 'pro-1', REFERENCE_DATE)
    monkeypatch.setattr(slot_materializer, '_load_existing', lambda *args: {})

    result = generate_next_month(slot_db, 'pro-1', REFERENCE_DATE, RegenerationPolicy.SKIP_EXISTING)

    assert result.created == 0
    assert result.failed == 0
    assert result.skipped == 15
    assert all(item.error for item in result.items)
    assert len(_stored_slots(slot_db)) == 15


def test_replace_policy_updates_slot_inserted_concurrently(slot_db, monkeypatch: pytest.MonkeyPatch) -> None:
    _add_rule(slot_db)
    generate_next_month(slot_db, 'pro-1', REFERENCE_DATE)
    monkeypatch.setattr(slot_materializer, '_load_existing', lambda *args: {})

    result = generate_next_month(slot_db, 'pro-1', REFERENCE_DATE, RegenerationPolicy.REPLACE)

    assert result.replaced == 15
    assert result.failed == 0
    assert len(_stored_slots(slot_db)) == 15


def test_failed_writes_do_not_roll_back_other_slots(slot_db, monkeypatch: pytest.MonkeyPatch) -> None:
    _add_rule(slot_db)
    original_insert = slot_materializer._insert_slot

    def flaky_insert(db, professional_id, write):
        if write.date == date(2026, 3, 9):
            raise SQLAlchemyError('database is locked')
        return original_insert(db, professional_id, write)

    monkeypatch.setattr(slot_materializer, '_insert_slot', flaky_insert)

    result = generate_next_month(slot_db, 'pro-1', REFERENCE_DATE)

    assert result.created == 12
    assert result.failed == 3
    assert {item.date for item in result.items if item.status == OutcomeStatus.FAILED} == {date(2026, 3, 9)}
    assert len(_stored_slots(slot_db)) == 12

    with pytest.raises(PartialBatchFailure) as exception_info:
        result.raise_for_failures()

    assert str(exception_info.value) == '12 slots created, 3 failed'


def test_submit_batch_skips_duplicate_entries(slot_db) -> None:
    writes = [
        SlotWrite(date=date(2026, 3, 3), start_time=time(9, 0), end_time=time(9, 30)),
        SlotWrite(date=date(2026, 3, 3), start_time=time(9, 0), end_time=time(9, 30)),
        SlotWrite(date=date(2026, 3, 3), start_time=time(9, 30), end_time=time(10, 0), is_active=False),
    ]

    result = submit_batch(slot_db, 'pro-1', writes)

    assert [item.status for item in result.items] == [
        OutcomeStatus.CREATED,
        OutcomeStatus.SKIPPED,
        OutcomeStatus.CREATED,
    ]
    assert len(_stored_slots(slot_db)) == 2


def test_submit_batch_validates_every_slot_before_writing(slot_db) -> None:
    writes = [
        SlotWrite(date=date(2026, 3, 3), start_time=time(9, 0), end_time=time(9, 30)),
        SlotWrite(date=date(2026, 3, 3), start_time=time(11, 0), end_time=time(10, 0)),
    ]

    with pytest.raises(InvalidRangeError):
        submit_batch(slot_db, 'pro-1', writes)

    assert _stored_slots(slot_db) == []


def test_writes_from_projection_carries_rule_and_service(slot_db) -> None:
    _add_rule(slot_db)
    rule = load_rules(slot_db, 'pro-1')[0]

    writes = writes_from_projection(project_recurring(rule, None, 1, date(2026, 3, 1)))

    assert len(writes) == 15
    assert {write.rule_id for write in writes} == {rule.id}
    assert {write.service_id for write in writes} == {'consulta'}
    assert writes[0].key == (date(2026, 3, 2), time(9, 0))
