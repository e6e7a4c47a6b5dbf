import logging
import re
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfoNotFoundError

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth.dependencies import get_current_user, get_tutor_profile_for
from backend.database import database_unavailable, ensure_database_ready, get_db
from backend.models.availability import Availability
from backend.models.user import User
from backend.scheduling.slots import intervals_overlap, resolve_timezone, rule_window

router = APIRouter(tags=['availability'])
logger = logging.getLogger(__name__)

CLOCK_PATTERN = re.compile(r'^([0-1][0-9]|2[0-3]):[0-5][0-9]$')

# Sundays in January and July, so zones with daylight saving are checked
# under both of their offsets.
REFERENCE_WEEKS = (date(2026, 1, 4), date(2026, 7, 5))


def validate_clock(value: str) -> str:
    normalized = value.strip()
    if not CLOCK_PATTERN.match(normalized):
        raise ValueError('Times must use the HH:MM 24-hour format.')
    return normalized


def validate_timezone_name(value: str) -> str:
    normalized = value.strip() or 'UTC'
    try:
        resolve_timezone(normalized)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError('Unknown timezone.') from exc
    return normalized


def clock_minutes(value: str) -> int:
    hours, minutes = value.split(':')
    return int(hours) * 60 + int(minutes)


class CreateAvailabilityRequest(BaseModel):
    day_of_week: int
    start_time: str
    end_time: str
    timezone: str = 'UTC'
    is_active: bool = True

    @field_validator('day_of_week')
    @classmethod
    def validate_day_of_week(cls, value: int) -> int:
        if not 0 <= value <= 6:
            raise ValueError('Day of week must be between 0 (Sunday) and 6 (Saturday).')
        return value

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_times(cls, value: str) -> str:
        return validate_clock(value)

    @field_validator('timezone')
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        return validate_timezone_name(value)


class UpdateAvailabilityRequest(BaseModel):
    day_of_week: int | None = None
    start_time: str | None = None
    end_time: str | None = None
    timezone: str | None = None
    is_active: bool | None = None

    @field_validator('day_of_week')
    @classmethod
    def validate_day_of_week(cls, value: int | None) -> int | None:
        if value is not None and not 0 <= value <= 6:
            raise ValueError('Day of week must be between 0 (Sunday) and 6 (Saturday).')
        return value

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_times(cls, value: str | None) -> str | None:
        return None if value is None else validate_clock(value)

    @field_validator('timezone')
    @classmethod
    def validate_timezone(cls, value: str | None) -> str | None:
        return None if value is None else validate_timezone_name(value)


class AvailabilityResponse(BaseModel):
    id: int
    tutor_id: int
    day_of_week: int
    start_time: str
    end_time: str
    timezone: str
    is_active: bool

    class Config:
        from_attributes = True


def validate_time_range(start_time: str, end_time: str) -> None:
    if clock_minutes(end_time) <= clock_minutes(start_time):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='End time must be after start time.',
        )


def weekly_windows(rule, week_start: date) -> list[tuple[datetime, datetime]]:
    day = week_start + timedelta(days=rule.day_of_week)
    return [rule_window(rule, day + timedelta(days=offset)) for offset in (-7, 0, 7)]


def find_overlapping_rule(
    db: Session,
    tutor_id: int,
    candidate: Availability,
    exclude_id: int | None = None,
) -> Availability | None:
    # Rules in different timezones can overlap across weekdays, so every
    # active rule is compared by its UTC window in each reference week.
    query = db.query(Availability).filter(
        Availability.tutor_id == tutor_id,
        Availability.is_active.is_(True),
    )
    if exclude_id is not None:
        query = query.filter(Availability.id != exclude_id)

    existing_rules = query.all()
    for week_start in REFERENCE_WEEKS:
        candidate_start, candidate_end = rule_window(
            candidate, week_start + timedelta(days=candidate.day_of_week)
        )
        for existing in existing_rules:
            for existing_start, existing_end in weekly_windows(existing, week_start):
                if intervals_overlap(candidate_start, candidate_end, existing_start, existing_end):
                    return existing
    return None


def get_owned_rule(db: Session, rule_id: int, tutor_id: int) -> Availability:
    rule = db.query(Availability).filter(Availability.id == rule_id).first()
    if rule is None or rule.tutor_id != tutor_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail='Availability not found.',
        )
    return rule


@router.get('', response_model=list[AvailabilityResponse])
def list_my_availability(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        tutor_profile = get_tutor_profile_for(current_user, db)
        return db.query(Availability).filter(
            Availability.tutor_id == tutor_profile.id,
        ).order_by(Availability.day_of_week.asc(), Availability.start_time.asc()).all()
    except SQLAlchemyError as exc:
        logger.exception('Failed to list availability.')
        raise database_unavailable() from exc


@router.post('', response_model=AvailabilityResponse, status_code=status.HTTP_201_CREATED)
def create_availability(
    data: CreateAvailabilityRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    validate_time_range(data.start_time, data.end_time)
    ensure_database_ready()

    try:
        tutor_profile = get_tutor_profile_for(current_user, db)

        rule = Availability(
            tutor_id=tutor_profile.id,
            day_of_week=data.day_of_week,
            start_time=data.start_time,
            end_time=data.end_time,
            timezone=data.timezone,
            is_active=data.is_active,
        )

        if rule.is_active and find_overlapping_rule(db, tutor_profile.id, rule):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail='Availability slot overlaps with existing slot.',
            )

        db.add(rule)
        db.commit()
        db.refresh(rule)

        return rule
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Failed to create availability.')
        raise database_unavailable() from exc


@router.put('/{rule_id}', response_model=AvailabilityResponse)
def update_availability(
    rule_id: int,
    data: UpdateAvailabilityRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        tutor_profile = get_tutor_profile_for(current_user, db)
        rule = get_owned_rule(db, rule_id, tutor_profile.id)

        start_time = data.start_time or rule.start_time
        end_time = data.end_time or rule.end_time
        day_of_week = data.day_of_week if data.day_of_week is not None else rule.day_of_week
        is_active = data.is_active if data.is_active is not None else rule.is_active
        timezone_name = data.timezone or rule.timezone

        validate_time_range(start_time, end_time)

        candidate = Availability(
            day_of_week=day_of_week,
            start_time=start_time,
            end_time=end_time,
            timezone=timezone_name,
        )
        if is_active and find_overlapping_rule(db, tutor_profile.id, candidate, exclude_id=rule.id):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail='Availability slot overlaps with existing slot.',
            )

        rule.day_of_week = day_of_week
        rule.start_time = start_time
        rule.end_time = end_time
        rule.timezone = timezone_name
        rule.is_active = is_active

        db.commit()
        db.refresh(rule)

        return rule
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Failed to update availability %s.', rule_id)
        raise database_unavailable() from exc


@router.delete('/{rule_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_availability(
    rule_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        tutor_profile = get_tutor_profile_for(current_user, db)
        rule = get_owned_rule(db, rule_id, tutor_profile.id)

        db.delete(rule)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Failed to delete availability %s.', rule_id)
        raise database_unavailable() from exc
