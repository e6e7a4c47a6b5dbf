"""User model definitions."""

import enum

from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.orm import relationship

from backend.core.clock import utc_now
from backend.database import Base


class Role(str, enum.Enum):
    STUDENT = "STUDENT"
    TUTOR = "TUTOR"
    ADMIN = "ADMIN"


class User(Base):
    """Represents an application user."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    name = Column(String)
    hashed_password = Column(String)
    role = Column(String, default=Role.STUDENT.value, nullable=False)
    image = Column(String)
    penalty_until = Column(DateTime)  # late-cancellation penalty end, UTC
    created_at = Column(DateTime, default=utc_now)

    tutor_profile = relationship("TutorProfile", back_populates="user", uselist=False)
    student_profile = relationship("StudentProfile", back_populates="user", uselist=False)
