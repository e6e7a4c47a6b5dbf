import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth.dependencies import require_role
from backend.database import database_unavailable, ensure_database_ready, get_db
from backend.models.booking import Booking
from backend.models.tutor_profile import ApprovalStatus, TutorProfile
from backend.models.user import Role, User

router = APIRouter(tags=['admin'])
logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
MAX_REJECTION_REASON_LENGTH = 500


class RejectTutorRequest(BaseModel):
    reason: str | None = None

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > MAX_REJECTION_REASON_LENGTH:
            raise ValueError(f'Reason must be less than {MAX_REJECTION_REASON_LENGTH} characters.')

        return normalized


class AdminTutorResponse(BaseModel):
    user_id: int
    tutor_profile_id: int
    name: str | None = None
    email: str
    specialties: list[str] = []
    hourly_rate: float
    rating: float
    total_sessions: int
    approval_status: str
    rejection_reason: str | None = None
    is_active: bool
    created_at: datetime | None = None


class AdminTutorListResponse(BaseModel):
    tutors: list[AdminTutorResponse]
    pagination: dict


class TutorDecisionResponse(BaseModel):
    message: str
    tutor: AdminTutorResponse


def serialize_admin_tutor(user: User, tutor_profile: TutorProfile) -> AdminTutorResponse:
    return AdminTutorResponse(
        user_id=user.id,
        tutor_profile_id=tutor_profile.id,
        name=user.name,
        email=user.email,
        specialties=list(tutor_profile.specialties or []),
        hourly_rate=tutor_profile.hourly_rate or 0.0,
        rating=tutor_profile.rating or 0.0,
        total_sessions=tutor_profile.total_sessions or 0,
        approval_status=tutor_profile.approval_status,
        rejection_reason=tutor_profile.rejection_reason,
        is_active=bool(tutor_profile.is_active),
        created_at=tutor_profile.created_at,
    )


def get_tutor_user_or_404(db: Session, user_id: int) -> tuple[User, TutorProfile]:
    user = db.query(User).filter(User.id == user_id).first()
    if user is None or user.role != Role.TUTOR.value:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail='Tutor not found.',
        )

    if user.tutor_profile is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Tutor profile not found. Tutor must complete onboarding first.',
        )

    return user, user.tutor_profile


@router.get('/tutors', response_model=AdminTutorListResponse)
def list_tutors_for_review(
    status_filter: str | None = Query(default=None, alias='status'),
    search: str | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    _admin: User = Depends(require_role(Role.ADMIN)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        query = db.query(User, TutorProfile).join(TutorProfile, TutorProfile.user_id == User.id).filter(
            User.role == Role.TUTOR.value,
        )

        if status_filter:
            query = query.filter(TutorProfile.approval_status == status_filter.strip().upper())
        if search and search.strip():
            pattern = f'%{search.strip()}%'
            query = query.filter(or_(User.name.ilike(pattern), User.email.ilike(pattern)))

        total = query.count()
        rows = query.order_by(TutorProfile.created_at.desc(), TutorProfile.id.desc()).offset(
            (page - 1) * limit,
        ).limit(limit).all()
    except SQLAlchemyError as exc:
        logger.exception('Failed to list tutors for admin review.')
        raise database_unavailable() from exc

    return AdminTutorListResponse(
        tutors=[serialize_admin_tutor(user, tutor_profile) for user, tutor_profile in rows],
        pagination={
            'page': page,
            'limit': limit,
            'total': total,
            'total_pages': (total + limit - 1) // limit,
        },
    )


@router.post('/tutors/{user_id}/approve', response_model=TutorDecisionResponse)
def approve_tutor(
    user_id: int,
    admin: User = Depends(require_role(Role.ADMIN)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        user, tutor_profile = get_tutor_user_or_404(db, user_id)

        if tutor_profile.approval_status == ApprovalStatus.APPROVED.value:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail='Tutor is already approved.',
            )

        tutor_profile.approval_status = ApprovalStatus.APPROVED.value
        tutor_profile.rejection_reason = None
        tutor_profile.is_active = True
        db.commit()
        db.refresh(tutor_profile)

        logger.info('Tutor approved: user=%s admin=%s', user.id, admin.id)
        return TutorDecisionResponse(
            message='Tutor approved successfully.',
            tutor=serialize_admin_tutor(user, tutor_profile),
        )
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Failed to approve tutor %s.', user_id)
        raise database_unavailable() from exc


@router.post('/tutors/{user_id}/reject', response_model=TutorDecisionResponse)
def reject_tutor(
    user_id: int,
    data: RejectTutorRequest,
    admin: User = Depends(require_role(Role.ADMIN)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        user, tutor_profile = get_tutor_user_or_404(db, user_id)

        tutor_profile.approval_status = ApprovalStatus.REJECTED.value
        tutor_profile.rejection_reason = data.reason
        tutor_profile.is_active = False
        db.commit()
        db.refresh(tutor_profile)

        logger.info('Tutor rejected: user=%s admin=%s', user.id, admin.id)
        return TutorDecisionResponse(
            message='Tutor rejected.',
            tutor=serialize_admin_tutor(user, tutor_profile),
        )
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Failed to reject tutor %s.', user_id)
        raise database_unavailable() from exc


@router.get('/stats')
def get_admin_stats(
    _admin: User = Depends(require_role(Role.ADMIN)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        users_by_role = dict(db.query(User.role, func.count(User.id)).group_by(User.role).all())
        tutors_by_status = dict(
            db.query(TutorProfile.approval_status, func.count(TutorProfile.id)).group_by(
                TutorProfile.approval_status,
            ).all()
        )
        bookings_by_status = dict(db.query(Booking.status, func.count(Booking.id)).group_by(Booking.status).all())
    except SQLAlchemyError as exc:
        logger.exception('Failed to load admin stats.')
        raise database_unavailable() from exc

    return {
        'users': {
            'total': sum(users_by_role.values()),
            'students': users_by_role.get(Role.STUDENT.value, 0),
            'tutors': users_by_role.get(Role.TUTOR.value, 0),
            'admins': users_by_role.get(Role.ADMIN.value, 0),
        },
        'tutors': {approval.value: tutors_by_status.get(approval.value, 0) for approval in ApprovalStatus},
        'bookings': bookings_by_status,
    }
