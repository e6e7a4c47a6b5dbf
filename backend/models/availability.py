"""Availability model definitions."""

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from backend.database import Base


class Availability(Base):
    """Weekly recurring window in which a tutor accepts bookings."""
    __tablename__ = "availability"

    id = Column(Integer, primary_key=True)
    tutor_id = Column(Integer, ForeignKey("tutor_profiles.id"), nullable=False)
    day_of_week = Column(Integer, nullable=False)  # 0 = Sunday
    start_time = Column(String(5), nullable=False)  # HH:MM
    end_time = Column(String(5), nullable=False)
    timezone = Column(String, default="UTC", nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    tutor = relationship("TutorProfile", back_populates="availability")
