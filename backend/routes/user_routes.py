import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth.dependencies import get_current_user, get_tutor_profile_for, require_role
from backend.core.clock import utc_now
from backend.database import database_unavailable, ensure_database_ready, get_db
from backend.models.tutor_profile import StudentProfile
from backend.models.user import Role, User
from backend.routes.auth_routes import UserResponse
from backend.scheduling.policies import is_user_penalized

router = APIRouter(tags=['user'])
logger = logging.getLogger(__name__)

MIN_BIO_LENGTH = 50
MAX_BIO_LENGTH = 1000
MIN_HOURLY_RATE = 5
MAX_HOURLY_RATE = 1000
MAX_MOTIVATION_LENGTH = 1000


class PenaltyStatusResponse(BaseModel):
    penalty_until: datetime | None = None
    is_penalized: bool


class UpdateProfileRequest(BaseModel):
    name: str | None = None
    image: str | None = None

    @field_validator('name')
    @classmethod
    def validate_name(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        if not normalized:
            raise ValueError('Name is required.')
        if len(normalized) > 100:
            raise ValueError('Name is too long.')
        return normalized


class UpdateTutorProfileRequest(BaseModel):
    bio: str | None = None
    specialties: list[str] | None = None
    hourly_rate: float | None = None

    @field_validator('bio')
    @classmethod
    def validate_bio(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        if len(normalized) < MIN_BIO_LENGTH:
            raise ValueError(f'Bio must be at least {MIN_BIO_LENGTH} characters.')
        if len(normalized) > MAX_BIO_LENGTH:
            raise ValueError('Bio is too long.')
        return normalized

    @field_validator('specialties')
    @classmethod
    def validate_specialties(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            return None
        cleaned = [specialty.strip() for specialty in value if specialty.strip()]
        if not cleaned:
            raise ValueError('At least one specialty is required.')
        return cleaned

    @field_validator('hourly_rate')
    @classmethod
    def validate_hourly_rate(cls, value: float | None) -> float | None:
        if value is None:
            return None
        if value < MIN_HOURLY_RATE:
            raise ValueError(f'Hourly rate must be at least ${MIN_HOURLY_RATE}.')
        if value > MAX_HOURLY_RATE:
            raise ValueError('Hourly rate is too high.')
        return value


class UpdateStudentProfileRequest(BaseModel):
    learning_goal: str | None = None
    current_level: str | None = None
    preferred_schedule: str | None = None
    motivation: str | None = None

    @field_validator('motivation')
    @classmethod
    def validate_motivation(cls, value: str | None) -> str | None:
        if value is not None and len(value) > MAX_MOTIVATION_LENGTH:
            raise ValueError('Motivation is too long.')
        return value


class TutorProfileResponse(BaseModel):
    id: int
    user_id: int
    bio: str | None = None
    specialties: list[str] = []
    hourly_rate: float
    rating: float
    total_sessions: int
    total_reviews: int
    approval_status: str
    rejection_reason: str | None = None
    is_active: bool

    class Config:
        from_attributes = True


class StudentProfileResponse(BaseModel):
    id: int
    user_id: int
    learning_goal: str | None = None
    current_level: str | None = None
    preferred_schedule: str | None = None
    motivation: str | None = None

    class Config:
        from_attributes = True


@router.get('/penalty-status', response_model=PenaltyStatusResponse)
def get_penalty_status(current_user: User = Depends(get_current_user)):
    return PenaltyStatusResponse(
        penalty_until=current_user.penalty_until,
        is_penalized=is_user_penalized(current_user, utc_now()),
    )


@router.patch('/profile', response_model=UserResponse)
def update_profile(
    data: UpdateProfileRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        if data.name is not None:
            current_user.name = data.name
        if data.image is not None:
            current_user.image = data.image or None

        db.commit()
        db.refresh(current_user)
        return current_user
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Failed to update profile for user %s.', current_user.id)
        raise database_unavailable() from exc


@router.patch('/tutor-profile', response_model=TutorProfileResponse)
def update_tutor_profile(
    data: UpdateTutorProfileRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        tutor_profile = get_tutor_profile_for(current_user, db)

        if data.bio is not None:
            tutor_profile.bio = data.bio
        if data.specialties is not None:
            tutor_profile.specialties = data.specialties
        if data.hourly_rate is not None:
            tutor_profile.hourly_rate = data.hourly_rate

        db.commit()
        db.refresh(tutor_profile)
        return tutor_profile
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Failed to update tutor profile for user %s.', current_user.id)
        raise database_unavailable() from exc


@router.patch('/student-profile', response_model=StudentProfileResponse)
def update_student_profile(
    data: UpdateStudentProfileRequest,
    current_user: User = Depends(require_role(Role.STUDENT)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        student_profile = db.query(StudentProfile).filter(StudentProfile.user_id == current_user.id).first()
        if student_profile is None:
            student_profile = StudentProfile(user_id=current_user.id)
            db.add(student_profile)

        for field_name, value in data.model_dump(exclude_unset=True).items():
            setattr(student_profile, field_name, value)

        db.commit()
        db.refresh(student_profile)
        return student_profile
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Failed to update student profile for user %s.', current_user.id)
        raise database_unavailable() from exc


@router.get('/student-profile', response_model=StudentProfileResponse)
def get_student_profile(
    current_user: User = Depends(require_role(Role.STUDENT)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        student_profile = db.query(StudentProfile).filter(StudentProfile.user_id == current_user.id).first()
    except SQLAlchemyError as exc:
        logger.exception('Failed to fetch student profile for user %s.', current_user.id)
        raise database_unavailable() from exc

    if student_profile is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail='Student profile not found. Please complete onboarding first.',
        )
    return student_profile
