"""Materialized slot model definitions."""

from sqlalchemy import Column, Integer, Date, Time, Boolean, String, ForeignKey, Index
from backend.database import Base


class AvailabilitySlot(Base):
    """One bookable slot of a professional on a concrete date."""
    __tablename__ = "availability_slots"
    __table_args__ = (
        Index(
            "uq_availability_slots_professional_date_start",
            "professional_id",
            "date",
            "start_time",
            unique=True,
        ),
    )

    id = Column(Integer, primary_key=True)
    professional_id = Column(String, nullable=False)
    rule_id = Column(Integer, ForeignKey("professional_availability.id", ondelete="SET NULL"))
    service_id = Column(String)
    date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_active = Column(Boolean, default=True)
