import logging
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, ValidationError, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking.auth.dependencies import AuthenticatedUser, get_current_user
from booking.cache import cache
from booking.core import config
from booking.database import ensure_appointment_schema, get_db
from booking.models.appointment import Appointment, AppointmentStatus
from booking.models.consultant import Consultant
from booking.rate_limiter import enforce_rate_limit

logger = logging.getLogger(__name__)

router = APIRouter(tags=['appointments'], dependencies=[Depends(enforce_rate_limit)])

MAX_APPOINTMENT_NOTES_LENGTH = 600
DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'
ALLOWED_STATUS_TRANSITIONS = {
    AppointmentStatus.SCHEDULED: {AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED},
    AppointmentStatus.COMPLETED: set(),
    AppointmentStatus.CANCELLED: set(),
}


def normalize_timestamp(value: datetime) -> datetime:
    """Store everything as naive UTC."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class CreateAppointmentRequest(BaseModel):
    consultant_id: int
    start_time: datetime
    end_time: datetime | None = None
    notes: str | None = None

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_timestamps(cls, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        return normalize_timestamp(value)

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > MAX_APPOINTMENT_NOTES_LENGTH:
            raise ValueError(f'Notes must be {MAX_APPOINTMENT_NOTES_LENGTH} characters or fewer.')

        return normalized


class RescheduleAppointmentRequest(BaseModel):
    start_time: datetime
    end_time: datetime | None = None

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_timestamps(cls, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        return normalize_timestamp(value)


class UpdateAppointmentStatusRequest(BaseModel):
    status: AppointmentStatus


class AppointmentResponse(BaseModel):
    id: str
    consultant_id: int
    start_time: datetime
    end_time: datetime
    status: AppointmentStatus
    notes: str | None = None
    booked_by: str | None = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


def appointment_cache_key(appointment_id: str) -> str:
    return f'appointment:{appointment_id}'


def database_unavailable(exc: SQLAlchemyError) -> HTTPException:
    logger.error('Database error while handling appointment request: %s', exc)
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE_DETAIL,
    )


def ensure_database_ready() -> None:
    try:
        ensure_appointment_schema()
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


def resolve_time_range(start_time: datetime, end_time: datetime | None) -> tuple[datetime, datetime]:
    if end_time is None:
        end_time = start_time + timedelta(minutes=config.DEFAULT_APPOINTMENT_DURATION_MINUTES)

    if start_time >= end_time:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Appointment start time must be before its end time.',
        )

    return start_time, end_time


def validate_status_transition(current: AppointmentStatus, target: AppointmentStatus) -> None:
    if target not in ALLOWED_STATUS_TRANSITIONS[current]:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f'Cannot change appointment status from {current.value} to {target.value}.',
        )


def find_overlapping_appointment(
    db: Session,
    consultant_id: int,
    start_time: datetime,
    end_time: datetime,
    exclude_id: str | None = None,
) -> Appointment | None:
    query = db.query(Appointment).filter(
        Appointment.consultant_id == consultant_id,
        Appointment.status == AppointmentStatus.SCHEDULED,
        Appointment.start_time < end_time,
        Appointment.end_time > start_time,
    )
    if exclude_id is not None:
        query = query.filter(Appointment.id != exclude_id)
    return query.first()


def get_consultant_or_404(db: Session, consultant_id: int) -> Consultant:
    consultant = db.get(Consultant, consultant_id)
    if consultant is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail='Consultant not found.',
        )
    return consultant


def get_appointment_or_404(db: Session, appointment_id: str) -> Appointment:
    appointment = db.get(Appointment, appointment_id)
    if appointment is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail='Appointment not found.',
        )
    return appointment


def ensure_no_overlap(
    db: Session,
    consultant_id: int,
    start_time: datetime,
    end_time: datetime,
    exclude_id: str | None = None,
) -> None:
    if find_overlapping_appointment(db, consultant_id, start_time, end_time, exclude_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail='This consultant is already booked for that time.',
        )


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    response: Response,
    db: Session = Depends(get_db),
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    start_time, end_time = resolve_time_range(data.start_time, data.end_time)

    ensure_database_ready()

    try:
        get_consultant_or_404(db, data.consultant_id)
        ensure_no_overlap(db, data.consultant_id, start_time, end_time)

        appointment = Appointment(
            consultant_id=data.consultant_id,
            start_time=start_time,
            end_time=end_time,
            status=AppointmentStatus.SCHEDULED,
            notes=data.notes,
            booked_by=current_user.subject,
        )
        db.add(appointment)
        db.commit()
        db.refresh(appointment)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    logger.info(
        'Appointment %s booked with consultant %s by %s',
        appointment.id,
        appointment.consultant_id,
        current_user.subject,
    )
    response.headers['Location'] = f'/api/appointments/{appointment.id}'
    return appointment


@router.get('', response_model=list[AppointmentResponse])
def list_appointments(
    consultant_id: int | None = Query(default=None),
    appointment_status: AppointmentStatus | None = Query(default=None, alias='status'),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        query = db.query(Appointment)
        if consultant_id is not None:
            query = query.filter(Appointment.consultant_id == consultant_id)
        if appointment_status is not None:
            query = query.filter(Appointment.status == appointment_status)
        return query.order_by(Appointment.start_time.asc()).all()
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(appointment_id: str, db: Session = Depends(get_db)):
    cache_key = appointment_cache_key(appointment_id)
    cached = cache.get(cache_key)
    if cached is not None:
        try:
            return AppointmentResponse.model_validate(cached)
        except ValidationError:
            logger.warning('Discarding cached appointment %s that no longer matches the response shape', appointment_id)
            cache.delete(cache_key)

    ensure_database_ready()

    try:
        appointment = get_appointment_or_404(db, appointment_id)
        result = AppointmentResponse.model_validate(appointment)
        cache.set(cache_key, result.model_dump(mode='json'))

        # A write that committed before the set above would have had its
        # invalidation overwritten; any later write deletes the key itself.
        current_version = db.query(Appointment.updated_at).filter(Appointment.id == appointment_id).scalar()
        if current_version != result.updated_at:
            cache.delete(cache_key)
    except SQLAlchemyError as exc:
        cache.delete(cache_key)
        raise database_unavailable(exc) from exc

    return result


@router.put('/{appointment_id}', response_model=AppointmentResponse)
def reschedule_appointment(
    appointment_id: str,
    data: RescheduleAppointmentRequest,
    db: Session = Depends(get_db),
):
    start_time, end_time = resolve_time_range(data.start_time, data.end_time)

    ensure_database_ready()

    try:
        appointment = get_appointment_or_404(db, appointment_id)
        if appointment.status != AppointmentStatus.SCHEDULED:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail='Only scheduled appointments can be rescheduled.',
            )

        ensure_no_overlap(db, appointment.consultant_id, start_time, end_time, exclude_id=appointment.id)

        appointment.start_time = start_time
        appointment.end_time = end_time
        db.commit()
        db.refresh(appointment)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    cache.delete(appointment_cache_key(appointment_id))
    logger.info('Appointment %s rescheduled to %s - %s', appointment.id, start_time, end_time)
    return appointment


@router.patch('/{appointment_id}/status', response_model=AppointmentResponse)
def update_appointment_status(
    appointment_id: str,
    data: UpdateAppointmentStatusRequest,
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appointment = get_appointment_or_404(db, appointment_id)
        previous_status = appointment.status
        validate_status_transition(previous_status, data.status)

        appointment.status = data.status
        db.commit()
        db.refresh(appointment)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    cache.delete(appointment_cache_key(appointment_id))
    logger.info('Appointment %s moved from %s to %s', appointment.id, previous_status.value, data.status.value)
    return appointment


@router.delete('/{appointment_id}', status_code=status.HTTP_204_NO_CONTENT)
def cancel_appointment(appointment_id: str, db: Session = Depends(get_db)):
    update_appointment_status(
        appointment_id=appointment_id,
        data=UpdateAppointmentStatusRequest(status=AppointmentStatus.CANCELLED),
        db=db,
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
