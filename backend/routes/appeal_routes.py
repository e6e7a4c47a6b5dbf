import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth.dependencies import get_current_user, require_role
from backend.core.clock import utc_now
from backend.database import database_unavailable, ensure_database_ready, get_db
from backend.models.booking import Booking
from backend.models.appeal import AppealStatus, CancellationAppeal
from backend.models.user import Role, User

router = APIRouter(tags=['appeals'])
logger = logging.getLogger(__name__)

MIN_REASON_LENGTH = 10
MAX_REASON_LENGTH = 1000
REVIEW_DECISIONS = {AppealStatus.APPROVED.value, AppealStatus.REJECTED.value}


class CreateAppealRequest(BaseModel):
    booking_id: int | None = None
    reason: str

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str) -> str:
        normalized = value.strip()
        if len(normalized) < MIN_REASON_LENGTH:
            raise ValueError(f'Reason must be at least {MIN_REASON_LENGTH} characters.')
        if len(normalized) > MAX_REASON_LENGTH:
            raise ValueError(f'Reason must be less than {MAX_REASON_LENGTH} characters.')
        return normalized


class ReviewAppealRequest(BaseModel):
    status: str
    admin_notes: str | None = None

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in REVIEW_DECISIONS:
            raise ValueError('Status must be APPROVED or REJECTED.')
        return normalized


class AppealResponse(BaseModel):
    id: int
    user_id: int
    booking_id: int | None = None
    reason: str
    status: str
    admin_notes: str | None = None
    reviewed_by: int | None = None
    reviewed_at: datetime | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class AppealActionResponse(BaseModel):
    message: str
    appeal: AppealResponse


@router.post('', response_model=AppealActionResponse, status_code=status.HTTP_201_CREATED)
def submit_appeal(
    data: CreateAppealRequest,
    current_user: User = Depends(require_role(Role.STUDENT)),
    db: Session = Depends(get_db),
):
    if current_user.penalty_until is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You don't have an active penalty to appeal.",
        )

    if utc_now() >= current_user.penalty_until:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Your penalty has already expired.',
        )

    ensure_database_ready()

    try:
        pending_appeal = db.query(CancellationAppeal).filter(
            CancellationAppeal.user_id == current_user.id,
            CancellationAppeal.status == AppealStatus.PENDING.value,
        ).first()
        if pending_appeal:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail='You already have a pending appeal. Please wait for admin review.',
            )

        if data.booking_id is not None:
            booking = db.query(Booking).filter(Booking.id == data.booking_id).first()
            if booking is None or booking.student_id != current_user.id:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail="Booking not found or doesn't belong to you.",
                )

        appeal = CancellationAppeal(
            user_id=current_user.id,
            booking_id=data.booking_id,
            reason=data.reason,
            status=AppealStatus.PENDING.value,
        )
        db.add(appeal)
        db.commit()
        db.refresh(appeal)

        logger.info('Appeal submitted: id=%s user=%s', appeal.id, current_user.id)
        return AppealActionResponse(
            message='Appeal submitted successfully. An admin will review it shortly.',
            appeal=AppealResponse.model_validate(appeal),
        )
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Failed to submit appeal.')
        raise database_unavailable() from exc


@router.get('', response_model=list[AppealResponse])
def list_appeals(
    status_filter: str | None = Query(default=None, alias='status'),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        query = db.query(CancellationAppeal)
        if current_user.role != Role.ADMIN.value:
            query = query.filter(CancellationAppeal.user_id == current_user.id)
        if status_filter:
            query = query.filter(CancellationAppeal.status == status_filter.strip().upper())

        return query.order_by(CancellationAppeal.created_at.desc(), CancellationAppeal.id.desc()).all()
    except SQLAlchemyError as exc:
        logger.exception('Failed to list appeals.')
        raise database_unavailable() from exc


def get_appeal_or_404(db: Session, appeal_id: int) -> CancellationAppeal:
    appeal = db.query(CancellationAppeal).filter(CancellationAppeal.id == appeal_id).first()
    if appeal is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail='Appeal not found.',
        )
    return appeal


@router.get('/{appeal_id}', response_model=AppealResponse)
def get_appeal(
    appeal_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appeal = get_appeal_or_404(db, appeal_id)
    except SQLAlchemyError as exc:
        logger.exception('Failed to fetch appeal %s.', appeal_id)
        raise database_unavailable() from exc

    if current_user.role != Role.ADMIN.value and appeal.user_id != current_user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You don't have access to this appeal.",
        )

    return appeal


@router.patch('/{appeal_id}', response_model=AppealActionResponse)
def review_appeal(
    appeal_id: int,
    data: ReviewAppealRequest,
    admin: User = Depends(require_role(Role.ADMIN)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appeal = get_appeal_or_404(db, appeal_id)

        if appeal.status != AppealStatus.PENDING.value:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail='Appeal has already been reviewed.',
            )

        appeal.status = data.status
        appeal.admin_notes = data.admin_notes
        appeal.reviewed_by = admin.id
        appeal.reviewed_at = utc_now()

        if data.status == AppealStatus.APPROVED.value and appeal.user is not None:
            appeal.user.penalty_until = None

        db.commit()
        db.refresh(appeal)

        logger.info('Appeal %s: id=%s user=%s admin=%s', data.status.lower(), appeal.id, appeal.user_id, admin.id)
        return AppealActionResponse(
            message=f'Appeal {data.status.lower()} successfully.',
            appeal=AppealResponse.model_validate(appeal),
        )
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Failed to review appeal %s.', appeal_id)
        raise database_unavailable() from exc
