import os
from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from backend.auth.passwords import hash_password  # noqa: E402
from backend.database import Base  # noqa: E402
from backend.models.availability import Availability  # noqa: E402
from backend.models.booking import Booking, BookingStatus  # noqa: E402
from backend.models import appeal, review  # noqa: E402,F401
from backend.models.tutor_profile import ApprovalStatus, StudentProfile, TutorProfile  # noqa: E402
from backend.models.user import Role, User  # noqa: E402

# Monday 2026-03-02 08:00 UTC.
NOW = datetime(2026, 3, 2, 8, 0)


@pytest.fixture(autouse=True)
def skip_schema_check(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr('backend.database.ensure_schema', lambda: None)


@pytest.fixture
def db():
    engine = create_engine('sqlite:///:memory:')
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


def create_user(db, email: str, role: Role = Role.STUDENT, name: str = 'Test User', password: str = 'password123'):
    user = User(email=email, name=name, role=role.value, hashed_password=hash_password(password))
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def create_tutor(
    db,
    email: str = 'tutor@example.com',
    name: str = 'Tina Tutor',
    hourly_rate: float = 40.0,
    specialties: list[str] | None = None,
    approval_status: ApprovalStatus = ApprovalStatus.APPROVED,
    is_active: bool = True,
    bio: str = 'Experienced English tutor focused on conversation and grammar.',
):
    user = create_user(db, email, role=Role.TUTOR, name=name)
    tutor_profile = TutorProfile(
        user_id=user.id,
        bio=bio,
        specialties=specialties if specialties is not None else ['Conversation Practice'],
        hourly_rate=hourly_rate,
        approval_status=approval_status.value,
        is_active=is_active,
    )
    db.add(tutor_profile)
    db.commit()
    db.refresh(tutor_profile)
    return user, tutor_profile


def create_student_profile(db, user, learning_goal: str | None = None):
    student_profile = StudentProfile(user_id=user.id, learning_goal=learning_goal, current_level='intermediate')
    db.add(student_profile)
    db.commit()
    db.refresh(student_profile)
    return student_profile


def create_rule(db, tutor_profile, day_of_week: int, start_time: str, end_time: str, timezone: str = 'UTC'):
    rule = Availability(
        tutor_id=tutor_profile.id,
        day_of_week=day_of_week,
        start_time=start_time,
        end_time=end_time,
        timezone=timezone,
        is_active=True,
    )
    db.add(rule)
    db.commit()
    db.refresh(rule)
    return rule


def create_booking(
    db,
    student,
    tutor_profile,
    scheduled_at: datetime,
    duration: int = 60,
    booking_status: BookingStatus = BookingStatus.PENDING,
    **fields,
):
    booking = Booking(
        student_id=student.id,
        tutor_id=tutor_profile.id,
        scheduled_at=scheduled_at,
        duration=duration,
        status=booking_status.value,
        price=tutor_profile.hourly_rate * duration / 60,
        **fields,
    )
    db.add(booking)
    db.commit()
    db.refresh(booking)
    return booking
