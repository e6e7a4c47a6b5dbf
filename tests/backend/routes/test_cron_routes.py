from datetime import timedelta

import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from backend.models.booking import Booking, BookingStatus
from backend.routes.cron_routes import complete_past_bookings, verify_cron_secret
from conftest import NOW, create_booking, create_tutor, create_user


@pytest.fixture(autouse=True)
def fixed_clock(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr('backend.routes.cron_routes.utc_now', lambda: NOW)


def test_verify_cron_secret_rejects_wrong_token(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr('backend.core.config.CRON_SECRET', 'expected')

    with pytest.raises(HTTPException) as exception_info:
        verify_cron_secret(credentials=HTTPAuthorizationCredentials(scheme='Bearer', credentials='guess'))

    assert exception_info.value.status_code == 401


def test_verify_cron_secret_accepts_matching_token(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr('backend.core.config.CRON_SECRET', 'expected')

    verify_cron_secret(credentials=HTTPAuthorizationCredentials(scheme='Bearer', credentials='expected'))


def test_verify_cron_secret_requires_secret_in_production(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr('backend.core.config.CRON_SECRET', '')
    monkeypatch.setattr('backend.core.config.APP_ENV', 'production')

    with pytest.raises(HTTPException):
        verify_cron_secret(credentials=None)


def test_complete_past_bookings_only_finishes_ended_confirmed_sessions(db) -> None:
    student = create_user(db, 'student@example.com')
    _, tutor_profile = create_tutor(db)
    finished = create_booking(db, student, tutor_profile, NOW - timedelta(hours=2), booking_status=BookingStatus.CONFIRMED)
    in_progress = create_booking(db, student, tutor_profile, NOW - timedelta(minutes=30), booking_status=BookingStatus.CONFIRMED)
    pending = create_booking(db, student, tutor_profile, NOW - timedelta(hours=5))

    response = complete_past_bookings(_authorized=None, db=db)

    assert response == {'completed': 1}
    assert db.get(Booking, finished.id).status == 'COMPLETED'
    assert db.get(Booking, in_progress.id).status == 'CONFIRMED'
    assert db.get(Booking, pending.id).status == 'PENDING'
    assert tutor_profile.total_sessions == 1
