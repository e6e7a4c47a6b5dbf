"""Booking model definitions."""

import enum
from datetime import timedelta

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from backend.core.clock import utc_now
from backend.database import Base


class BookingStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


INACTIVE_BOOKING_STATUSES = (BookingStatus.CANCELLED.value, BookingStatus.REFUNDED.value)


class Booking(Base):
    """A scheduled session between a student and a tutor."""
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True)
    student_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    tutor_id = Column(Integer, ForeignKey("tutor_profiles.id"), nullable=False)
    scheduled_at = Column(DateTime, nullable=False)
    duration = Column(Integer, nullable=False)  # minutes
    status = Column(String, default=BookingStatus.PENDING.value, nullable=False)
    price = Column(Float, nullable=False, default=0.0)
    notes = Column(Text)
    payment_id = Column(String)
    video_session_id = Column(String)
    cancelled_at = Column(DateTime)
    cancelled_by = Column(Integer, ForeignKey("users.id"))
    is_late_cancellation = Column(Boolean, default=False, nullable=False)
    call_ended_at = Column(DateTime)
    created_at = Column(DateTime, default=utc_now)

    student = relationship("User", foreign_keys=[student_id])
    tutor = relationship("TutorProfile")

    @property
    def ends_at(self):
        return self.scheduled_at + timedelta(minutes=self.duration)
