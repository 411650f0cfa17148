"""Consultant model definitions."""

from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.orm import relationship

from booking.database import Base
from booking.models.appointment import utcnow


class Consultant(Base):
    """Represents a design consultant who can be booked."""
    __tablename__ = "consultants"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    appointments = relationship("Appointment", back_populates="consultant")
