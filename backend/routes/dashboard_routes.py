import logging

from fastapi import APIRouter, Depends
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth.dependencies import get_tutor_profile_for, require_role
from backend.core.clock import utc_now
from backend.database import database_unavailable, ensure_database_ready, get_db
from backend.models.booking import INACTIVE_BOOKING_STATUSES, Booking, BookingStatus
from backend.models.user import Role, User
from backend.routes.booking_routes import serialize_booking
from backend.scheduling.policies import is_user_penalized

router = APIRouter(tags=['dashboard'])
logger = logging.getLogger(__name__)

RECENT_LIMIT = 10


@router.get('/student')
def get_student_dashboard(
    current_user: User = Depends(require_role(Role.STUDENT)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()
    now = utc_now()

    try:
        student_bookings = db.query(Booking).filter(Booking.student_id == current_user.id)

        upcoming = student_bookings.filter(
            Booking.scheduled_at >= now,
            Booking.status.notin_(INACTIVE_BOOKING_STATUSES),
        ).order_by(Booking.scheduled_at.asc()).limit(RECENT_LIMIT).all()

        past = student_bookings.filter(
            Booking.scheduled_at < now,
        ).order_by(Booking.scheduled_at.desc()).limit(RECENT_LIMIT).all()

        completed_count = student_bookings.filter(Booking.status == BookingStatus.COMPLETED.value).count()
        total_count = student_bookings.count()
    except SQLAlchemyError as exc:
        logger.exception('Failed to load student dashboard for user %s.', current_user.id)
        raise database_unavailable() from exc

    return {
        'upcoming_bookings': [serialize_booking(booking) for booking in upcoming],
        'past_bookings': [serialize_booking(booking) for booking in past],
        'stats': {
            'total_bookings': total_count,
            'completed_sessions': completed_count,
        },
        'penalty_until': current_user.penalty_until,
        'is_penalized': is_user_penalized(current_user, now),
    }


@router.get('/tutor')
def get_tutor_dashboard(
    current_user: User = Depends(require_role(Role.TUTOR)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()
    now = utc_now()

    try:
        tutor_profile = get_tutor_profile_for(current_user, db)
        tutor_bookings = db.query(Booking).filter(Booking.tutor_id == tutor_profile.id)

        pending = tutor_bookings.filter(
            Booking.status == BookingStatus.PENDING.value,
            Booking.scheduled_at >= now,
        ).order_by(Booking.scheduled_at.asc()).all()

        upcoming = tutor_bookings.filter(
            Booking.status == BookingStatus.CONFIRMED.value,
            Booking.scheduled_at >= now,
        ).order_by(Booking.scheduled_at.asc()).limit(RECENT_LIMIT).all()

        completed_count = tutor_bookings.filter(Booking.status == BookingStatus.COMPLETED.value).count()
        earnings = db.query(func.coalesce(func.sum(Booking.price), 0.0)).filter(
            Booking.tutor_id == tutor_profile.id,
            Booking.status == BookingStatus.COMPLETED.value,
        ).scalar()
    except SQLAlchemyError as exc:
        logger.exception('Failed to load tutor dashboard for user %s.', current_user.id)
        raise database_unavailable() from exc

    return {
        'pending_requests': [serialize_booking(booking) for booking in pending],
        'upcoming_sessions': [serialize_booking(booking) for booking in upcoming],
        'stats': {
            'completed_sessions': completed_count,
            'total_earnings': round(float(earnings or 0.0), 2),
            'rating': tutor_profile.rating or 0.0,
            'total_reviews': tutor_profile.total_reviews or 0,
        },
        'approval_status': tutor_profile.approval_status,
        'is_active': bool(tutor_profile.is_active),
    }
