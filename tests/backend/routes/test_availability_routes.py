import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from backend.models.availability import Availability
from backend.routes.availability_routes import (
    CreateAvailabilityRequest,
    UpdateAvailabilityRequest,
    create_availability,
    delete_availability,
    list_my_availability,
    update_availability,
)
from conftest import create_rule, create_tutor, create_user


def test_create_availability_request_normalizes_times() -> None:
    request = CreateAvailabilityRequest(day_of_week=1, start_time=' 09:00 ', end_time='12:30', timezone='Europe/London')

    assert request.start_time == '09:00'
    assert request.timezone == 'Europe/London'


@pytest.mark.parametrize(
    'overrides',
    [
        {'day_of_week': 7},
        {'start_time': '9:00'},
        {'end_time': '24:00'},
        {'timezone': 'Mars/Olympus_Mons'},
    ],
)
def test_create_availability_request_rejects_invalid_fields(overrides: dict) -> None:
    payload = {'day_of_week': 1, 'start_time': '09:00', 'end_time': '12:00', **overrides}

    with pytest.raises(ValidationError):
        CreateAvailabilityRequest(**payload)


def test_create_availability_rejects_inverted_range(db) -> None:
    tutor_user, _ = create_tutor(db)

    with pytest.raises(HTTPException) as exception_info:
        create_availability(
            data=CreateAvailabilityRequest(day_of_week=1, start_time='12:00', end_time='09:00'),
            current_user=tutor_user,
            db=db,
        )

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == 'End time must be after start time.'


def test_create_availability_rejects_students(db) -> None:
    student = create_user(db, 'student@example.com')

    with pytest.raises(HTTPException) as exception_info:
        create_availability(
            data=CreateAvailabilityRequest(day_of_week=1, start_time='09:00', end_time='12:00'),
            current_user=student,
            db=db,
        )

    assert exception_info.value.status_code == 403


def test_create_availability_persists_rule(db) -> None:
    tutor_user, tutor_profile = create_tutor(db)

    rule = create_availability(
        data=CreateAvailabilityRequest(day_of_week=1, start_time='09:00', end_time='12:00'),
        current_user=tutor_user,
        db=db,
    )

    assert rule.tutor_id == tutor_profile.id
    assert rule.timezone == 'UTC'
    assert db.query(Availability).count() == 1


def test_create_availability_rejects_overlap_but_allows_adjacent(db) -> None:
    tutor_user, tutor_profile = create_tutor(db)
    create_rule(db, tutor_profile, 1, '09:00', '12:00')

    with pytest.raises(HTTPException) as exception_info:
        create_availability(
            data=CreateAvailabilityRequest(day_of_week=1, start_time='11:00', end_time='13:00'),
            current_user=tutor_user,
            db=db,
        )

    assert exception_info.value.status_code == 409
    assert exception_info.value.detail == 'Availability slot overlaps with existing slot.'

    adjacent = create_availability(
        data=CreateAvailabilityRequest(day_of_week=1, start_time='12:00', end_time='14:00'),
        current_user=tutor_user,
        db=db,
    )
    assert adjacent.start_time == '12:00'


@pytest.mark.parametrize(
    ('existing', 'requested'),
    [
        # 18:30 in New York is 22:30 UTC while daylight saving is in effect.
        ((1, '22:00', '23:00'), (1, '18:30', '19:30', 'America/New_York')),
        # Monday 08:00 in Tokyo is still Sunday 23:00 UTC.
        ((0, '22:00', '23:30'), (1, '08:00', '09:00', 'Asia/Tokyo')),
        # Sunday 08:00 in Tokyo falls on the previous Saturday in UTC.
        ((6, '22:00', '23:30'), (0, '08:00', '09:00', 'Asia/Tokyo')),
    ],
)
def test_create_availability_rejects_overlap_across_timezones(db, existing: tuple, requested: tuple) -> None:
    tutor_user, tutor_profile = create_tutor(db)
    create_rule(db, tutor_profile, *existing)
    day_of_week, start_time, end_time, timezone = requested

    with pytest.raises(HTTPException) as exception_info:
        create_availability(
            data=CreateAvailabilityRequest(
                day_of_week=day_of_week,
                start_time=start_time,
                end_time=end_time,
                timezone=timezone,
            ),
            current_user=tutor_user,
            db=db,
        )

    assert exception_info.value.status_code == 409


def test_create_availability_allows_same_clock_times_in_other_timezone(db) -> None:
    tutor_user, tutor_profile = create_tutor(db)
    create_rule(db, tutor_profile, 1, '09:00', '10:00')

    rule = create_availability(
        data=CreateAvailabilityRequest(day_of_week=1, start_time='09:00', end_time='10:00', timezone='Asia/Tokyo'),
        current_user=tutor_user,
        db=db,
    )

    assert rule.timezone == 'Asia/Tokyo'
    assert db.query(Availability).count() == 2


def test_list_my_availability_orders_by_day_and_time(db) -> None:
    tutor_user, tutor_profile = create_tutor(db)
    create_rule(db, tutor_profile, 3, '09:00', '10:00')
    create_rule(db, tutor_profile, 1, '14:00', '15:00')
    create_rule(db, tutor_profile, 1, '08:00', '09:00')

    rules = list_my_availability(current_user=tutor_user, db=db)

    assert [(rule.day_of_week, rule.start_time) for rule in rules] == [(1, '08:00'), (1, '14:00'), (3, '09:00')]


def test_update_availability_changes_window(db) -> None:
    tutor_user, tutor_profile = create_tutor(db)
    rule = create_rule(db, tutor_profile, 1, '09:00', '12:00')

    updated = update_availability(
        rule_id=rule.id,
        data=UpdateAvailabilityRequest(end_time='13:00', timezone='Asia/Tokyo'),
        current_user=tutor_user,
        db=db,
    )

    assert updated.start_time == '09:00'
    assert updated.end_time == '13:00'
    assert updated.timezone == 'Asia/Tokyo'


def test_update_availability_hides_other_tutors_rules(db) -> None:
    _, owner_profile = create_tutor(db, email='owner@example.com')
    other_user, _ = create_tutor(db, email='other@example.com')
    rule = create_rule(db, owner_profile, 1, '09:00', '12:00')

    with pytest.raises(HTTPException) as exception_info:
        update_availability(
            rule_id=rule.id,
            data=UpdateAvailabilityRequest(end_time='13:00'),
            current_user=other_user,
            db=db,
        )

    assert exception_info.value.status_code == 404
    assert exception_info.value.detail == 'Availability not found.'


def test_delete_availability_removes_rule(db) -> None:
    tutor_user, tutor_profile = create_tutor(db)
    rule = create_rule(db, tutor_profile, 1, '09:00', '12:00')

    delete_availability(rule_id=rule.id, current_user=tutor_user, db=db)

    assert db.query(Availability).count() == 0


def test_update_availability_checks_overlap_in_stored_timezone(db) -> None:
    tutor_user, tutor_profile = create_tutor(db)
    create_rule(db, tutor_profile, 1, '00:00', '02:00')
    tokyo_rule = create_rule(db, tutor_profile, 1, '12:00', '13:00', timezone='Asia/Tokyo')

    with pytest.raises(HTTPException) as exception_info:
        update_availability(
            rule_id=tokyo_rule.id,
            data=UpdateAvailabilityRequest(start_time='09:30', end_time='10:30'),
            current_user=tutor_user,
            db=db,
        )

    assert exception_info.value.status_code == 409
    db.refresh(tokyo_rule)
    assert tokyo_rule.start_time == '12:00'
