import logging
from datetime import date, datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth.dependencies import get_current_user, require_role
from backend.core.clock import to_naive_utc, utc_now
from backend.database import database_unavailable, ensure_database_ready, get_db
from backend.models.availability import Availability
from backend.models.booking import INACTIVE_BOOKING_STATUSES, Booking, BookingStatus
from backend.models.tutor_profile import ApprovalStatus, TutorProfile
from backend.models.user import Role, User
from backend.scheduling import policies
from backend.scheduling.slots import (
    find_conflicting_booking,
    find_covering_rule,
    get_available_dates,
    get_available_time_slots,
)

router = APIRouter(tags=['bookings'])
logger = logging.getLogger(__name__)

MAX_NOTES_LENGTH = 1000
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
# Longest booking that can spill into a queried day from the previous one.
BOOKING_LOOKBACK = timedelta(days=1)


class CreateBookingRequest(BaseModel):
    tutor_id: int
    scheduled_at: datetime
    duration: int = policies.DEFAULT_DURATION_MINUTES
    notes: str | None = None

    @field_validator('scheduled_at')
    @classmethod
    def validate_scheduled_at(cls, value: datetime) -> datetime:
        return to_naive_utc(value).replace(second=0, microsecond=0)

    @field_validator('duration')
    @classmethod
    def validate_duration(cls, value: int) -> int:
        if value not in policies.VALID_DURATIONS:
            raise ValueError('Duration must be 30, 60, or 90 minutes.')
        return value

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > MAX_NOTES_LENGTH:
            raise ValueError(f'Notes must be less than {MAX_NOTES_LENGTH} characters.')

        return normalized


class UpdateBookingRequest(BaseModel):
    scheduled_at: datetime | None = None
    status: str | None = None

    @field_validator('scheduled_at')
    @classmethod
    def validate_scheduled_at(cls, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        return to_naive_utc(value).replace(second=0, microsecond=0)

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip().upper()
        if normalized not in {booking_status.value for booking_status in BookingStatus}:
            raise ValueError('Invalid booking status.')
        return normalized


class ParticipantResponse(BaseModel):
    id: int
    name: str | None = None
    email: str
    image: str | None = None


class BookingTutorResponse(BaseModel):
    id: int
    user_id: int
    name: str | None = None
    email: str | None = None
    hourly_rate: float


class BookingResponse(BaseModel):
    id: int
    student_id: int
    tutor_id: int
    scheduled_at: datetime
    ends_at: datetime
    duration: int
    status: str
    price: float
    notes: str | None = None
    payment_id: str | None = None
    video_session_id: str | None = None
    cancelled_at: datetime | None = None
    cancelled_by: int | None = None
    is_late_cancellation: bool = False
    call_ended_at: datetime | None = None
    created_at: datetime | None = None
    student: ParticipantResponse | None = None
    tutor: BookingTutorResponse | None = None


class BookingActionResponse(BaseModel):
    message: str
    booking: BookingResponse


class PaginationResponse(BaseModel):
    total: int
    limit: int
    offset: int
    has_more: bool


class BookingListResponse(BaseModel):
    bookings: list[BookingResponse]
    pagination: PaginationResponse


def serialize_booking(booking: Booking) -> BookingResponse:
    student = None
    if booking.student is not None:
        student = ParticipantResponse(
            id=booking.student.id,
            name=booking.student.name,
            email=booking.student.email,
            image=booking.student.image,
        )

    tutor = None
    if booking.tutor is not None:
        tutor_user = booking.tutor.user
        tutor = BookingTutorResponse(
            id=booking.tutor.id,
            user_id=booking.tutor.user_id,
            name=tutor_user.name if tutor_user else None,
            email=tutor_user.email if tutor_user else None,
            hourly_rate=booking.tutor.hourly_rate or 0.0,
        )

    return BookingResponse(
        id=booking.id,
        student_id=booking.student_id,
        tutor_id=booking.tutor_id,
        scheduled_at=booking.scheduled_at,
        ends_at=booking.ends_at,
        duration=booking.duration,
        status=booking.status,
        price=booking.price,
        notes=booking.notes,
        payment_id=booking.payment_id,
        video_session_id=booking.video_session_id,
        cancelled_at=booking.cancelled_at,
        cancelled_by=booking.cancelled_by,
        is_late_cancellation=bool(booking.is_late_cancellation),
        call_ended_at=booking.call_ended_at,
        created_at=booking.created_at,
        student=student,
        tutor=tutor,
    )


def parse_date_param(value: str | None) -> date | None:
    if not value:
        return None

    try:
        return date.fromisoformat(value)
    except ValueError:
        pass

    try:
        return to_naive_utc(datetime.fromisoformat(value.replace('Z', '+00:00'))).date()
    except ValueError:
        return None


def get_active_rules(db: Session, tutor_id: int) -> list[Availability]:
    return db.query(Availability).filter(
        Availability.tutor_id == tutor_id,
        Availability.is_active.is_(True),
    ).all()


def get_blocking_bookings(
    db: Session,
    tutor_id: int,
    range_start: datetime | None = None,
    range_end: datetime | None = None,
) -> list[Booking]:
    query = db.query(Booking).filter(
        Booking.tutor_id == tutor_id,
        Booking.status.notin_(INACTIVE_BOOKING_STATUSES),
    )
    if range_start is not None:
        query = query.filter(Booking.scheduled_at >= range_start - BOOKING_LOOKBACK)
    if range_end is not None:
        query = query.filter(Booking.scheduled_at < range_end)
    return query.all()


def get_booking_or_404(db: Session, booking_id: int) -> Booking:
    booking = db.query(Booking).filter(Booking.id == booking_id).first()
    if booking is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail='Booking not found.',
        )
    return booking


def get_participation(booking: Booking, user: User) -> tuple[bool, bool, bool]:
    is_student = booking.student_id == user.id
    is_tutor = booking.tutor is not None and booking.tutor.user_id == user.id
    is_admin = user.role == Role.ADMIN.value

    if not (is_student or is_tutor or is_admin):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You don't have access to this booking.",
        )

    return is_student, is_tutor, is_admin


def validate_requested_slot(
    db: Session,
    tutor_profile: TutorProfile,
    scheduled_at: datetime,
    duration: int,
    now: datetime,
    exclude_booking_id: int | None = None,
) -> None:
    policies.validate_booking_time(scheduled_at, now)

    rules = get_active_rules(db, tutor_profile.id)
    if not rules:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Tutor has no available time slots.',
        )

    if find_covering_rule(scheduled_at, duration, rules) is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Booking time is outside the tutor's availability.",
        )

    slot_end = scheduled_at + timedelta(minutes=duration)
    existing_bookings = get_blocking_bookings(db, tutor_profile.id, scheduled_at, slot_end)
    if find_conflicting_booking(scheduled_at, duration, existing_bookings, exclude_booking_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail='This time slot is already booked. Please choose another time.',
        )


@router.get('/availability')
def get_booking_availability(
    tutor_id: int = Query(...),
    day: str | None = Query(default=None, alias='date'),
    start_date: str | None = Query(default=None),
    end_date: str | None = Query(default=None),
    duration: int = Query(default=policies.DEFAULT_DURATION_MINUTES),
    db: Session = Depends(get_db),
):
    if duration not in policies.VALID_DURATIONS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Duration must be 30, 60, or 90 minutes.',
        )

    ensure_database_ready()

    try:
        tutor_profile = db.query(TutorProfile).filter(TutorProfile.id == tutor_id).first()
        if tutor_profile is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Tutor not found.',
            )

        if not tutor_profile.is_bookable:
            return {
                'available': False,
                'reason': 'Tutor is not available for bookings.',
                'slots': [],
                'dates': [],
            }

        now = utc_now()

        if day is not None:
            requested_day = parse_date_param(day)
            if requested_day is None:
                return {'tutor_id': tutor_id, 'date': day, 'duration': duration, 'slots': []}

            day_start = datetime.combine(requested_day, datetime.min.time())
            slots = get_available_time_slots(
                requested_day,
                duration,
                get_active_rules(db, tutor_id),
                get_blocking_bookings(db, tutor_id, day_start, day_start + timedelta(days=2)),
                now,
            )
            return {
                'tutor_id': tutor_id,
                'date': requested_day.isoformat(),
                'duration': duration,
                'slots': [{'start': slot.start.isoformat(), 'end': slot.end.isoformat()} for slot in slots],
            }

        if start_date is not None or end_date is not None:
            range_start = parse_date_param(start_date)
            range_end = parse_date_param(end_date)
            if range_start is None or range_end is None:
                return {
                    'tutor_id': tutor_id,
                    'duration': duration,
                    'start_date': start_date,
                    'end_date': end_date,
                    'available_dates': [],
                }

            if range_start > range_end:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail='Start date must be before end date.',
                )

            if (range_end - range_start).days > policies.MAX_AVAILABILITY_RANGE_DAYS:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=f'Date range cannot exceed {policies.MAX_AVAILABILITY_RANGE_DAYS} days.',
                )
        else:
            range_start = now.date()
            range_end = range_start + timedelta(days=policies.DEFAULT_AVAILABILITY_RANGE_DAYS)

        window_start = datetime.combine(range_start, datetime.min.time())
        window_end = datetime.combine(range_end, datetime.min.time()) + timedelta(days=2)
        available_dates = get_available_dates(
            range_start,
            range_end,
            get_active_rules(db, tutor_id),
            get_blocking_bookings(db, tutor_id, window_start, window_end),
            duration,
            now,
        )
        return {
            'tutor_id': tutor_id,
            'duration': duration,
            'start_date': range_start.isoformat(),
            'end_date': range_end.isoformat(),
            'available_dates': [available_date.isoformat() for available_date in available_dates],
        }
    except SQLAlchemyError as exc:
        logger.exception('Failed to fetch availability for tutor %s.', tutor_id)
        raise database_unavailable() from exc


@router.get('', response_model=BookingListResponse)
def list_bookings(
    status_filter: str | None = Query(default=None, alias='status'),
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(default=0, ge=0),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        query = db.query(Booking)

        if current_user.role == Role.STUDENT.value:
            query = query.filter(Booking.student_id == current_user.id)
        elif current_user.role == Role.TUTOR.value:
            tutor_profile = db.query(TutorProfile).filter(TutorProfile.user_id == current_user.id).first()
            if tutor_profile is None:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail='Tutor profile not found.',
                )
            query = query.filter(Booking.tutor_id == tutor_profile.id)

        if status_filter:
            query = query.filter(Booking.status == status_filter.strip().upper())

        total = query.count()
        bookings = query.order_by(Booking.scheduled_at.desc()).offset(offset).limit(limit).all()

        return BookingListResponse(
            bookings=[serialize_booking(booking) for booking in bookings],
            pagination=PaginationResponse(
                total=total,
                limit=limit,
                offset=offset,
                has_more=offset + len(bookings) < total,
            ),
        )
    except SQLAlchemyError as exc:
        logger.exception('Failed to list bookings.')
        raise database_unavailable() from exc


@router.post('', response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def create_booking(
    data: CreateBookingRequest,
    current_user: User = Depends(require_role(Role.STUDENT)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        now = utc_now()

        if policies.is_user_penalized(current_user, now):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=(
                    'You are currently penalized and cannot create new bookings. '
                    'Please submit an appeal if you believe this is an error.'
                ),
            )

        tutor_profile = db.query(TutorProfile).filter(TutorProfile.id == data.tutor_id).first()
        if tutor_profile is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Tutor not found.',
            )

        if not tutor_profile.is_active:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail='Tutor profile is not active.',
            )

        if tutor_profile.approval_status != ApprovalStatus.APPROVED.value:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail='Tutor profile is not approved.',
            )

        validate_requested_slot(db, tutor_profile, data.scheduled_at, data.duration, now)

        booking = Booking(
            student_id=current_user.id,
            tutor_id=tutor_profile.id,
            scheduled_at=data.scheduled_at,
            duration=data.duration,
            status=BookingStatus.PENDING.value,
            price=policies.calculate_price(data.duration, tutor_profile.hourly_rate),
            notes=data.notes,
        )
        db.add(booking)
        db.commit()
        db.refresh(booking)

        logger.info(
            'Booking created: id=%s student=%s tutor=%s scheduled_at=%s',
            booking.id,
            current_user.id,
            tutor_profile.id,
            booking.scheduled_at.isoformat(),
        )
        return serialize_booking(booking)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Failed to create booking.')
        raise database_unavailable() from exc


@router.get('/{booking_id}', response_model=BookingResponse)
def get_booking(
    booking_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        booking = get_booking_or_404(db, booking_id)
        get_participation(booking, current_user)
        return serialize_booking(booking)
    except SQLAlchemyError as exc:
        logger.exception('Failed to fetch booking %s.', booking_id)
        raise database_unavailable() from exc


@router.patch('/{booking_id}', response_model=BookingActionResponse)
def update_booking(
    booking_id: int,
    data: UpdateBookingRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        booking = get_booking_or_404(db, booking_id)
        is_student, is_tutor, is_admin = get_participation(booking, current_user)
        now = utc_now()

        if data.scheduled_at is not None:
            if not is_student:
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail='Only students can reschedule bookings.',
                )

            policies.ensure_can_reschedule(booking, now)
            validate_requested_slot(
                db,
                booking.tutor,
                data.scheduled_at,
                booking.duration,
                now,
                exclude_booking_id=booking.id,
            )

            previous_start = booking.scheduled_at
            booking.scheduled_at = data.scheduled_at
            booking.status = BookingStatus.PENDING.value
            db.commit()
            db.refresh(booking)

            logger.info(
                'Booking rescheduled: id=%s from=%s to=%s',
                booking.id,
                previous_start.isoformat(),
                booking.scheduled_at.isoformat(),
            )
            return BookingActionResponse(message='Booking rescheduled successfully.', booking=serialize_booking(booking))

        if data.status is not None:
            if not (is_tutor or is_admin):
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail='Only tutors can change booking status.',
                )

            previous_status = booking.status
            policies.validate_status_transition(previous_status, data.status)

            if data.status == BookingStatus.COMPLETED.value:
                policies.mark_completed(booking)
            else:
                booking.status = data.status

            if data.status == BookingStatus.CANCELLED.value:
                booking.cancelled_at = now
                booking.cancelled_by = current_user.id

            db.commit()
            db.refresh(booking)

            logger.info('Booking status updated: id=%s %s -> %s', booking.id, previous_status, booking.status)
            return BookingActionResponse(message='Booking status updated successfully.', booking=serialize_booking(booking))

        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='No valid update fields provided.',
        )
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Failed to update booking %s.', booking_id)
        raise database_unavailable() from exc


@router.delete('/{booking_id}', response_model=BookingActionResponse)
def cancel_booking(
    booking_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        booking = get_booking_or_404(db, booking_id)
        is_student, _, _ = get_participation(booking, current_user)
        now = utc_now()

        policies.ensure_can_cancel(booking)

        if is_student and policies.is_user_penalized(current_user, now):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=(
                    'You are currently penalized and cannot cancel bookings. '
                    'Please submit an appeal if you believe this is an error.'
                ),
            )

        # Only the student's own late cancellations count toward a penalty.
        is_late = is_student and policies.is_late_cancellation(booking, now)

        booking.status = BookingStatus.CANCELLED.value
        booking.cancelled_at = now
        booking.cancelled_by = current_user.id
        booking.is_late_cancellation = is_late
        db.flush()

        if is_late:
            penalty_until = policies.apply_late_cancellation_penalty(db, current_user, now)
            if penalty_until is not None:
                logger.warning(
                    'Penalty applied for late cancellations: user=%s until=%s',
                    current_user.id,
                    penalty_until.isoformat(),
                )

        db.commit()
        db.refresh(booking)

        logger.info('Booking cancelled: id=%s by=%s late=%s', booking.id, current_user.id, is_late)
        return BookingActionResponse(message='Booking cancelled successfully.', booking=serialize_booking(booking))
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Failed to cancel booking %s.', booking_id)
        raise database_unavailable() from exc


@router.post('/{booking_id}/end-call', response_model=BookingActionResponse)
def end_call(
    booking_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        booking = get_booking_or_404(db, booking_id)

        if booking.tutor is None or booking.tutor.user_id != current_user.id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail='Only tutors can end calls.',
            )

        if booking.call_ended_at is not None:
            return BookingActionResponse(message='Call has already ended.', booking=serialize_booking(booking))

        booking.call_ended_at = utc_now()
        if booking.status == BookingStatus.CONFIRMED.value:
            policies.mark_completed(booking)

        db.commit()
        db.refresh(booking)

        logger.info('Call ended: booking=%s tutor=%s', booking.id, current_user.id)
        return BookingActionResponse(message='Call ended successfully.', booking=serialize_booking(booking))
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Failed to end call for booking %s.', booking_id)
        raise database_unavailable() from exc
