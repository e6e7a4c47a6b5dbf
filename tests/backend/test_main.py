from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from backend.database import Base, get_db
from backend.main import app
from conftest import NOW, create_booking, create_rule, create_tutor, create_user


@pytest.fixture
def http_db():
    # Requests run on the test client's worker thread, so every session
    # shares one in-memory connection.
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(http_db):
    def override_get_db():
        yield http_db

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app, raise_server_exceptions=False)
    finally:
        app.dependency_overrides.clear()


def test_invalid_query_parameter_returns_bad_request(client) -> None:
    response = client.get('/bookings/availability', params={'tutor_id': 'abc'})

    assert response.status_code == 400
    assert 'valid integer' in response.json()['detail']


def test_validator_message_is_returned_without_prefix(client) -> None:
    response = client.post(
        '/auth/register',
        json={'email': 'student@example.com', 'password': 'short', 'name': 'Sam Student'},
    )

    assert response.status_code == 400
    assert response.json() == {'detail': 'Password must be at least 8 characters.'}


def test_missing_bearer_token_is_unauthorized(client) -> None:
    response = client.get('/auth/me')

    assert response.status_code == 401
    assert response.json() == {'detail': 'Please sign in to continue.'}


def test_registered_user_can_log_in_and_fetch_profile(client) -> None:
    credentials = {'email': 'student@example.com', 'password': 'password123'}

    registered = client.post('/auth/register', json={**credentials, 'name': 'Sam Student'})
    token = client.post('/auth/login', json=credentials).json()['access_token']
    profile = client.get('/auth/me', headers={'Authorization': f'Bearer {token}'})

    assert registered.status_code == 201
    assert profile.status_code == 200
    assert profile.json()['email'] == 'student@example.com'


def test_database_failure_returns_service_unavailable(client, monkeypatch: pytest.MonkeyPatch) -> None:
    def fail_schema_check() -> None:
        raise SQLAlchemyError('connection refused')

    monkeypatch.setattr('backend.database.ensure_schema', fail_schema_check)

    response = client.get('/tutors')

    assert response.status_code == 503
    assert response.json() == {'detail': 'Database unavailable.'}


def test_unexpected_error_returns_generic_server_error(client) -> None:
    def broken_session():
        raise RuntimeError('session factory misconfigured')

    app.dependency_overrides[get_db] = broken_session

    response = client.get('/tutors')

    assert response.status_code == 500
    assert response.json() == {'detail': 'Internal server error.'}


def test_availability_over_http_skips_booked_slot(client, http_db, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr('backend.routes.booking_routes.utc_now', lambda: NOW)
    student = create_user(http_db, 'student@example.com')
    _, tutor_profile = create_tutor(http_db)
    create_rule(http_db, tutor_profile, 1, '09:00', '12:00')
    create_booking(http_db, student, tutor_profile, datetime(2026, 3, 9, 10, 0))

    response = client.get(
        '/bookings/availability',
        params={'tutor_id': tutor_profile.id, 'date': '2026-03-09', 'duration': 60},
    )

    assert response.status_code == 200
    assert response.json()['slots'] == [
        {'start': '2026-03-09T09:00:00', 'end': '2026-03-09T10:00:00'},
        {'start': '2026-03-09T11:00:00', 'end': '2026-03-09T12:00:00'},
    ]
