"""Appointment model definitions."""

from sqlalchemy import Column, Integer, DateTime, ForeignKey, String
from backend.database import Base


class Appointment(Base):
    """Represents a booking of one slot."""
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True)
    professional_id = Column(String, index=True)
    slot_id = Column(Integer, ForeignKey("availability_slots.id"))
    scheduled_at = Column(DateTime)
    duration_minutes = Column(Integer)
    status = Column(String, default="pending")  # pending/confirmed/cancelled/completed
