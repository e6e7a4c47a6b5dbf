"""Tutor and student profile model definitions."""

import enum

from sqlalchemy import JSON, Boolean, Column, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from backend.core.clock import utc_now
from backend.database import Base


class ApprovalStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class TutorProfile(Base):
    """Public-facing tutor profile with approval state and aggregate stats."""
    __tablename__ = "tutor_profiles"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    bio = Column(Text)
    specialties = Column(JSON, default=list)
    hourly_rate = Column(Float, default=0.0, nullable=False)
    rating = Column(Float, default=0.0, nullable=False)
    total_sessions = Column(Integer, default=0, nullable=False)
    total_reviews = Column(Integer, default=0, nullable=False)
    approval_status = Column(String, default=ApprovalStatus.PENDING.value, nullable=False)
    rejection_reason = Column(String)
    is_active = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    user = relationship("User", back_populates="tutor_profile")
    availability = relationship(
        "Availability",
        back_populates="tutor",
        cascade="all, delete-orphan",
    )

    @property
    def is_bookable(self) -> bool:
        return bool(self.is_active) and self.approval_status == ApprovalStatus.APPROVED.value


class StudentProfile(Base):
    """Learning preferences captured during student onboarding."""
    __tablename__ = "student_profiles"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    learning_goal = Column(String)
    current_level = Column(String)
    preferred_schedule = Column(String)
    motivation = Column(Text)

    user = relationship("User", back_populates="student_profile")
