from datetime import datetime, timedelta

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from backend.models.booking import Booking, BookingStatus
from backend.models.user import User

VALID_DURATIONS = (30, 60, 90)
DEFAULT_DURATION_MINUTES = 60
MIN_ADVANCE_BOOKING_HOURS = 24
MAX_ADVANCE_BOOKING_DAYS = 90
LATE_CANCELLATION_HOURS = 12
RESCHEDULE_CUTOFF_HOURS = 4
LATE_CANCELLATION_WINDOW_DAYS = 30
LATE_CANCELLATION_LIMIT = 2
PENALTY_DAYS = 7
MAX_AVAILABILITY_RANGE_DAYS = 30
DEFAULT_AVAILABILITY_RANGE_DAYS = 7

STATUS_TRANSITIONS = {
    BookingStatus.PENDING.value: (BookingStatus.CONFIRMED.value, BookingStatus.CANCELLED.value),
    BookingStatus.CONFIRMED.value: (BookingStatus.COMPLETED.value, BookingStatus.CANCELLED.value),
    BookingStatus.COMPLETED.value: (),
    BookingStatus.CANCELLED.value: (),
    BookingStatus.REFUNDED.value: (),
}


def calculate_price(duration: int, hourly_rate: float) -> float:
    return round(hourly_rate * (duration / 60), 2)


def hours_until(moment: datetime, now: datetime) -> float:
    return (moment - now).total_seconds() / 3600


def validate_booking_time(scheduled_at: datetime, now: datetime) -> None:
    if scheduled_at <= now + timedelta(hours=MIN_ADVANCE_BOOKING_HOURS):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f'Booking must be at least {MIN_ADVANCE_BOOKING_HOURS} hours in advance.',
        )

    if scheduled_at > now + timedelta(days=MAX_ADVANCE_BOOKING_DAYS):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f'Booking cannot be more than {MAX_ADVANCE_BOOKING_DAYS} days in advance.',
        )


def get_valid_status_transitions(current_status: str) -> tuple[str, ...]:
    return STATUS_TRANSITIONS.get(current_status, ())


def validate_status_transition(current_status: str, new_status: str) -> None:
    if new_status not in get_valid_status_transitions(current_status):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f'Cannot transition from {current_status} to {new_status}.',
        )


def ensure_can_cancel(booking: Booking) -> None:
    blocked_reasons = {
        BookingStatus.CANCELLED.value: 'Booking is already cancelled.',
        BookingStatus.COMPLETED.value: 'Cannot cancel a completed booking.',
        BookingStatus.REFUNDED.value: 'Booking has already been refunded.',
    }
    if booking.status in blocked_reasons:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=blocked_reasons[booking.status],
        )


def ensure_can_reschedule(booking: Booking, now: datetime) -> None:
    if booking.status == BookingStatus.CANCELLED.value:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Cannot reschedule a cancelled booking.',
        )

    if booking.status == BookingStatus.COMPLETED.value:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Cannot reschedule a completed booking.',
        )

    if booking.status == BookingStatus.REFUNDED.value:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Cannot reschedule a refunded booking.',
        )

    if hours_until(booking.scheduled_at, now) < RESCHEDULE_CUTOFF_HOURS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f'Cannot reschedule booking less than {RESCHEDULE_CUTOFF_HOURS} hours before start time.',
        )


def is_late_cancellation(booking: Booking, now: datetime) -> bool:
    return hours_until(booking.scheduled_at, now) < LATE_CANCELLATION_HOURS


def is_user_penalized(user: User | None, now: datetime) -> bool:
    if user is None or user.penalty_until is None:
        return False
    return now < user.penalty_until


def count_late_cancellations(db: Session, user_id: int, since: datetime) -> int:
    return db.query(Booking).filter(
        Booking.student_id == user_id,
        Booking.status == BookingStatus.CANCELLED.value,
        Booking.is_late_cancellation.is_(True),
        Booking.cancelled_at >= since,
    ).count()


def apply_late_cancellation_penalty(db: Session, user: User, now: datetime) -> datetime | None:
    """Penalize ``user`` once their recent late cancellations exceed the limit.

    Expects the triggering cancellation to be flushed already so it is counted.
    Returns the new penalty end, or None when no penalty applies.
    """
    since = now - timedelta(days=LATE_CANCELLATION_WINDOW_DAYS)
    if count_late_cancellations(db, user.id, since) <= LATE_CANCELLATION_LIMIT:
        return None

    user.penalty_until = now + timedelta(days=PENALTY_DAYS)
    return user.penalty_until


def mark_completed(booking: Booking) -> None:
    booking.status = BookingStatus.COMPLETED.value
    if booking.tutor is not None:
        booking.tutor.total_sessions = (booking.tutor.total_sessions or 0) + 1
