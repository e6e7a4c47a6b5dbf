"""Cancellation appeal model definitions."""

import enum

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from backend.core.clock import utc_now
from backend.database import Base


class AppealStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class CancellationAppeal(Base):
    """A student's request to lift a late-cancellation penalty."""
    __tablename__ = "cancellation_appeals"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    booking_id = Column(Integer, ForeignKey("bookings.id"))
    reason = Column(Text, nullable=False)
    status = Column(String, default=AppealStatus.PENDING.value, nullable=False)
    admin_notes = Column(Text)
    reviewed_by = Column(Integer, ForeignKey("users.id"))
    reviewed_at = Column(DateTime)
    created_at = Column(DateTime, default=utc_now)

    user = relationship("User", foreign_keys=[user_id])
