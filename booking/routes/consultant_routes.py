import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from booking.database import get_db
from booking.models.consultant import Consultant
from booking.rate_limiter import enforce_rate_limit
from booking.routes.appointment_routes import database_unavailable, ensure_database_ready, get_consultant_or_404

logger = logging.getLogger(__name__)

router = APIRouter(tags=['consultants'], dependencies=[Depends(enforce_rate_limit)])


class CreateConsultantRequest(BaseModel):
    name: str
    email: str | None = None

    @field_validator('name')
    @classmethod
    def validate_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Consultant name is required.')
        return normalized

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip().lower()
        if not normalized:
            return None
        if '@' not in normalized:
            raise ValueError('Invalid email address.')
        return normalized


class ConsultantResponse(BaseModel):
    id: int
    name: str
    email: str | None = None
    created_at: datetime

    class Config:
        from_attributes = True


def _duplicate_email() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail='A consultant with this email already exists.',
    )


@router.post('', response_model=ConsultantResponse, status_code=status.HTTP_201_CREATED)
def create_consultant(data: CreateConsultantRequest, response: Response, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        if data.email and db.query(Consultant).filter(Consultant.email == data.email).first():
            raise _duplicate_email()

        consultant = Consultant(name=data.name, email=data.email)
        db.add(consultant)
        db.commit()
        db.refresh(consultant)
    except IntegrityError as exc:
        db.rollback()
        raise _duplicate_email() from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    logger.info('Consultant %s created', consultant.id)
    response.headers['Location'] = f'/api/consultants/{consultant.id}'
    return consultant


@router.get('', response_model=list[ConsultantResponse])
def list_consultants(db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        return db.query(Consultant).order_by(Consultant.name.asc(), Consultant.id.asc()).all()
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('/{consultant_id}', response_model=ConsultantResponse)
def get_consultant(consultant_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        return get_consultant_or_404(db, consultant_id)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc
