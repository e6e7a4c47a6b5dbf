import pytest
from fastapi import HTTPException

from backend.models.tutor_profile import ApprovalStatus
from backend.models.user import Role
from backend.routes.admin_routes import (
    RejectTutorRequest,
    approve_tutor,
    get_admin_stats,
    list_tutors_for_review,
    reject_tutor,
)
from conftest import NOW, create_booking, create_tutor, create_user


@pytest.fixture
def admin(db):
    return create_user(db, 'admin@example.com', role=Role.ADMIN, name='Ada Admin')


def _list(db, admin, status_filter=None, search=None, page: int = 1, limit: int = 20):
    return list_tutors_for_review(
        status_filter=status_filter,
        search=search,
        page=page,
        limit=limit,
        _admin=admin,
        db=db,
    )


def test_list_tutors_filters_by_status_and_search(db, admin) -> None:
    create_tutor(db, email='approved@example.com', name='Alice Approved')
    create_tutor(db, email='pending@example.com', name='Paul Pending', approval_status=ApprovalStatus.PENDING)

    pending = _list(db, admin, status_filter='pending')
    searched = _list(db, admin, search='ALICE')

    assert [tutor.email for tutor in pending.tutors] == ['pending@example.com']
    assert [tutor.name for tutor in searched.tutors] == ['Alice Approved']
    assert pending.pagination['total'] == 1


def test_approve_tutor_activates_profile(db, admin) -> None:
    tutor_user, tutor_profile = create_tutor(db, approval_status=ApprovalStatus.PENDING, is_active=False)

    response = approve_tutor(user_id=tutor_user.id, admin=admin, db=db)

    assert response.tutor.approval_status == 'APPROVED'
    assert response.tutor.is_active is True
    assert tutor_profile.is_bookable


def test_approve_tutor_rejects_already_approved(db, admin) -> None:
    tutor_user, _ = create_tutor(db)

    with pytest.raises(HTTPException) as exception_info:
        approve_tutor(user_id=tutor_user.id, admin=admin, db=db)

    assert exception_info.value.status_code == 400


def test_reject_tutor_records_reason_and_deactivates(db, admin) -> None:
    tutor_user, _ = create_tutor(db)

    response = reject_tutor(
        user_id=tutor_user.id,
        data=RejectTutorRequest(reason=' Incomplete credentials '),
        admin=admin,
        db=db,
    )

    assert response.tutor.approval_status == 'REJECTED'
    assert response.tutor.rejection_reason == 'Incomplete credentials'
    assert response.tutor.is_active is False


def test_approve_unknown_or_non_tutor_returns_not_found(db, admin) -> None:
    student = create_user(db, 'student@example.com')

    for user_id in (student.id, 999):
        with pytest.raises(HTTPException) as exception_info:
            approve_tutor(user_id=user_id, admin=admin, db=db)

        assert exception_info.value.status_code == 404


def test_admin_stats_counts_users_tutors_and_bookings(db, admin) -> None:
    student = create_user(db, 'student@example.com')
    _, tutor_profile = create_tutor(db)
    create_tutor(db, email='pending@example.com', approval_status=ApprovalStatus.PENDING)
    create_booking(db, student, tutor_profile, NOW)

    stats = get_admin_stats(_admin=admin, db=db)

    assert stats['users'] == {'total': 4, 'students': 1, 'tutors': 2, 'admins': 1}
    assert stats['tutors'] == {'PENDING': 1, 'APPROVED': 1, 'REJECTED': 0}
    assert stats['bookings'] == {'PENDING': 1}
