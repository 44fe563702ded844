"""Availability rule model definitions."""

from sqlalchemy import Column, Integer, Date, DateTime, Time, Boolean, String, func
from backend.database import Base
from backend.scheduling.rules import AvailabilityRule


class ProfessionalAvailability(Base):
    """Declared working hours of a professional, by weekday or for one date."""
    __tablename__ = "professional_availability"

    id = Column(Integer, primary_key=True)
    professional_id = Column(String, nullable=False, index=True)
    service_id = Column(String)
    date = Column(Date)
    day_of_week = Column(Integer)  # 0 = Sunday .. 6 = Saturday
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    slot_duration_minutes = Column(Integer, nullable=False)
    break_start = Column(Time)
    break_end = Column(Time)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, server_default=func.now())

    def to_rule(self) -> AvailabilityRule:
        return AvailabilityRule.model_validate(self)
