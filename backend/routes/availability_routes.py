import logging
import datetime as dt
from datetime import date, time

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, field_serializer, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.core import config
from backend.database import (
    SessionLocal,
    ensure_appointment_schema,
    ensure_availability_schema,
    ensure_slot_schema,
)
from backend.models.availability import ProfessionalAvailability
from backend.models.slot import AvailabilitySlot
from backend.scheduling.errors import AmbiguousRuleError, ConflictError, PartialBatchFailure, SchedulingError
from backend.scheduling.rules import AvailabilityRule, validate_rule, validate_weekdays
from backend.scheduling.slot_generator import format_time, generate_slots, to_time
from backend.services.slot_materializer import (
    BatchResult,
    RegenerationPolicy,
    SlotWrite,
    booked_slot_ids,
    generate_future,
    generate_next_month,
    submit_batch,
)

router = APIRouter(tags=['availability'])
logger = logging.getLogger(__name__)

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'


def _normalize_clock(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    if not normalized:
        return None
    try:
        return format_time(to_time(normalized))
    except SchedulingError as exc:
        raise ValueError(str(exc)) from exc


def _normalize_professional_id(value: str) -> str:
    normalized = value.strip()
    if not normalized:
        raise ValueError('Professional is required.')
    return normalized


class SlotWindowRequest(BaseModel):
    start_time: str
    end_time: str
    slot_duration_minutes: int = config.DEFAULT_SLOT_DURATION_MINUTES
    break_start: str | None = None
    break_end: str | None = None

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_clock(cls, value: str) -> str:
        normalized = _normalize_clock(value)
        if normalized is None:
            raise ValueError('Time is required.')
        return normalized

    @field_validator('break_start', 'break_end')
    @classmethod
    def validate_optional_clock(cls, value: str | None) -> str | None:
        return _normalize_clock(value)


class CreateRuleRequest(SlotWindowRequest):
    professional_id: str
    service_id: str | None = None
    date: dt.date | None = None
    days_of_week: list[int] | None = None
    is_active: bool = True

    @field_validator('professional_id')
    @classmethod
    def validate_professional_id(cls, value: str) -> str:
        return _normalize_professional_id(value)

    @field_validator('days_of_week')
    @classmethod
    def validate_days_of_week(cls, value: list[int] | None) -> list[int] | None:
        if value is None:
            return None
        try:
            return sorted(validate_weekdays(value))
        except SchedulingError as exc:
            raise ValueError(str(exc)) from exc


class RuleResponse(BaseModel):
    id: int
    professional_id: str
    service_id: str | None = None
    date: dt.date | None = None
    day_of_week: int | None = None
    start_time: time
    end_time: time
    slot_duration_minutes: int
    break_start: time | None = None
    break_end: time | None = None
    is_active: bool

    class Config:
        from_attributes = True

    @field_serializer('start_time', 'end_time', 'break_start', 'break_end')
    def serialize_clock(self, value: time | None) -> str | None:
        return format_time(value) if value is not None else None


class SlotPreviewResponse(BaseModel):
    start_time: str
    end_time: str
    is_active: bool


class PreviewResponse(BaseModel):
    slots: list[SlotPreviewResponse]
    total: int
    active: int


class GenerateNextMonthRequest(BaseModel):
    professional_id: str
    reference_date: date | None = None
    policy: RegenerationPolicy | None = None

    @field_validator('professional_id')
    @classmethod
    def validate_professional_id(cls, value: str) -> str:
        return _normalize_professional_id(value)


class GenerateFutureRequest(GenerateNextMonthRequest):
    months: int


class BatchSlotRequest(BaseModel):
    date: date
    start_time: str
    end_time: str
    is_active: bool = True

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_clock(cls, value: str) -> str:
        normalized = _normalize_clock(value)
        if normalized is None:
            raise ValueError('Time is required.')
        return normalized


class SubmitBatchRequest(BaseModel):
    professional_id: str
    service_id: str | None = None
    policy: RegenerationPolicy | None = None
    slots: list[BatchSlotRequest]

    @field_validator('professional_id')
    @classmethod
    def validate_professional_id(cls, value: str) -> str:
        return _normalize_professional_id(value)


class SlotOutcomeResponse(BaseModel):
    date: date
    start_time: str
    end_time: str
    status: str
    error: str | None = None


class BatchResultResponse(BaseModel):
    created: int
    failed: int
    skipped: int
    replaced: int
    removed: int
    message: str
    month: int | None = None
    year: int | None = None
    months: int | None = None
    total_created: int | None = None
    items: list[SlotOutcomeResponse]


class ProfessionalSlotResponse(BaseModel):
    id: int
    professional_id: str
    service_id: str | None = None
    date: date
    start_time: time
    end_time: time
    is_active: bool
    is_booked: bool

    @field_serializer('start_time', 'end_time')
    def serialize_clock(self, value: time) -> str:
        return format_time(value)


def ensure_database_ready() -> None:
    try:
        ensure_availability_schema()
        ensure_slot_schema()
        ensure_appointment_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def scheduling_http_error(exc: SchedulingError) -> HTTPException:
    if isinstance(exc, ConflictError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


def build_rules(data: CreateRuleRequest) -> list[AvailabilityRule]:
    """One rule per selected weekday, or a single rule for a specific date."""
    if data.date is not None and data.days_of_week:
        raise AmbiguousRuleError('Choose either a specific date or days of the week, not both.')
    if data.date is None and not data.days_of_week:
        raise AmbiguousRuleError('A specific date or at least one day of the week is required.')

    common = {
        'professional_id': data.professional_id,
        'service_id': data.service_id,
        'start_time': data.start_time,
        'end_time': data.end_time,
        'slot_duration_minutes': data.slot_duration_minutes,
        'break_start': data.break_start,
        'break_end': data.break_end,
        'is_active': data.is_active,
    }

    if data.date is not None:
        rules = [AvailabilityRule(date=data.date, **common)]
    else:
        rules = [AvailabilityRule(day_of_week=day, **common) for day in data.days_of_week]

    return [validate_rule(rule) for rule in rules]


def batch_response(result: BatchResult, response: Response) -> BatchResultResponse:
    try:
        result.raise_for_failures()
    except PartialBatchFailure as exc:
        logger.warning('Slot batch finished with failures: %s', exc)
        response.status_code = status.HTTP_207_MULTI_STATUS

    return BatchResultResponse(
        created=result.created,
        failed=result.failed,
        skipped=result.skipped,
        replaced=result.replaced,
        removed=result.removed,
        message=result.message,
        month=result.month,
        year=result.year,
        months=result.months,
        total_created=result.total_created if result.months is not None else None,
        items=[
            SlotOutcomeResponse(
                date=item.date,
                start_time=format_time(item.start_time),
                end_time=format_time(item.end_time),
                status=item.status.value,
                error=item.error,
            )
            for item in result.items
        ],
    )


@router.post('/rules', response_model=list[RuleResponse], status_code=status.HTTP_201_CREATED)
def create_rules(data: CreateRuleRequest, db: Session = Depends(get_db)):
    try:
        rules = build_rules(data)
    except SchedulingError as exc:
        raise scheduling_http_error(exc) from exc

    ensure_database_ready()

    try:
        rows = [ProfessionalAvailability(**rule.model_dump(exclude={'id'})) for rule in rules]
        db.add_all(rows)
        db.commit()
        for row in rows:
            db.refresh(row)

        logger.info('Created %d availability rule(s) for professional %s', len(rows), data.professional_id)
        return rows
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


@router.get('/rules', response_model=list[RuleResponse])
def list_rules(professional_id: str = Query(...), db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        return db.query(ProfessionalAvailability).filter(
            ProfessionalAvailability.professional_id == professional_id.strip(),
        ).order_by(
            ProfessionalAvailability.day_of_week.asc(),
            ProfessionalAvailability.date.asc(),
            ProfessionalAvailability.start_time.asc(),
        ).all()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


@router.post('/preview', response_model=PreviewResponse)
def preview_slots(data: SlotWindowRequest):
    try:
        slots = generate_slots(
            data.start_time,
            data.end_time,
            data.slot_duration_minutes,
            data.break_start,
            data.break_end,
        )
    except SchedulingError as exc:
        raise scheduling_http_error(exc) from exc

    return PreviewResponse(
        slots=[
            SlotPreviewResponse(
                start_time=format_time(slot.start_time),
                end_time=format_time(slot.end_time),
                is_active=slot.is_active,
            )
            for slot in slots
        ],
        total=len(slots),
        active=sum(1 for slot in slots if slot.is_active),
    )


@router.post('/generate-next-month', response_model=BatchResultResponse)
def generate_next_month_slots(
    data: GenerateNextMonthRequest,
    response: Response,
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        result = generate_next_month(
            db,
            data.professional_id,
            data.reference_date or date.today(),
            data.policy,
        )
    except SchedulingError as exc:
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc

    return batch_response(result, response)


@router.post('/generate-future', response_model=BatchResultResponse)
def generate_future_slots(
    data: GenerateFutureRequest,
    response: Response,
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        result = generate_future(
            db,
            data.professional_id,
            data.months,
            data.reference_date or date.today(),
            data.policy,
        )
    except SchedulingError as exc:
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc

    return batch_response(result, response)


@router.post('/slots/batch', response_model=BatchResultResponse)
def submit_slot_batch(
    data: SubmitBatchRequest,
    response: Response,
    db: Session = Depends(get_db),
):
    writes = [
        SlotWrite(
            date=item.date,
            start_time=to_time(item.start_time),
            end_time=to_time(item.end_time),
            is_active=item.is_active,
            service_id=data.service_id,
        )
        for item in data.slots
    ]

    ensure_database_ready()

    try:
        result = submit_batch(db, data.professional_id, writes, data.policy)
    except SchedulingError as exc:
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc

    return batch_response(result, response)


@router.get('/professionals/{professional_id}/slots', response_model=list[ProfessionalSlotResponse])
def list_professional_slots(
    professional_id: str,
    slot_date: date = Query(..., alias='date'),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        slots = db.query(AvailabilitySlot).filter(
            AvailabilitySlot.professional_id == professional_id,
            AvailabilitySlot.date == slot_date,
        ).order_by(AvailabilitySlot.start_time.asc()).all()
        booked = booked_slot_ids(db, [slot.id for slot in slots])

        return [
            ProfessionalSlotResponse(
                id=slot.id,
                professional_id=slot.professional_id,
                service_id=slot.service_id,
                date=slot.date,
                start_time=slot.start_time,
                end_time=slot.end_time,
                is_active=bool(slot.is_active),
                is_booked=slot.id in booked,
            )
            for slot in slots
        ]
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc
