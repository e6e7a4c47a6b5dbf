import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth.dependencies import require_role
from backend.database import database_unavailable, ensure_database_ready, get_db
from backend.models.availability import Availability
from backend.models.booking import Booking, BookingStatus
from backend.models.review import Review
from backend.models.tutor_profile import ApprovalStatus, StudentProfile, TutorProfile
from backend.models.user import Role, User

router = APIRouter(tags=['tutors'])
logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 12
MAX_PAGE_SIZE = 50
RECOMMENDED_LIMIT = 12
MAX_COMMENT_LENGTH = 1000

SORT_ORDERS = {
    'rating': (TutorProfile.rating.desc(), TutorProfile.total_reviews.desc()),
    'price_low': (TutorProfile.hourly_rate.asc(),),
    'price_high': (TutorProfile.hourly_rate.desc(),),
    'sessions': (TutorProfile.total_sessions.desc(),),
}

LEARNING_GOAL_SPECIALTIES = {
    'conversation': ['Conversation Practice', 'Conversational English', 'Speaking'],
    'business': ['Business English', 'Business', 'Professional English'],
    'academic': ['Academic English', 'Academic', 'Writing'],
    'travel': ['Travel & Tourism', 'Travel English', 'Tourism'],
    'exam': ['IELTS Prep', 'TOEFL Prep', 'Exam Preparation', 'IELTS', 'TOEFL'],
}


class TutorSummaryResponse(BaseModel):
    id: int
    user_id: int
    name: str | None = None
    image: str | None = None
    bio: str | None = None
    specialties: list[str] = []
    hourly_rate: float
    rating: float
    total_sessions: int
    total_reviews: int


class TutorPaginationResponse(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class TutorListResponse(BaseModel):
    tutors: list[TutorSummaryResponse]
    pagination: TutorPaginationResponse


class RecommendedTutorResponse(TutorSummaryResponse):
    is_recommended: bool


class StudentPreferencesResponse(BaseModel):
    learning_goal: str | None = None
    current_level: str | None = None
    preferred_schedule: str | None = None


class RecommendedTutorsResponse(BaseModel):
    tutors: list[RecommendedTutorResponse]
    has_recommendations: bool
    student_preferences: StudentPreferencesResponse


class WeeklyAvailabilityResponse(BaseModel):
    day_of_week: int
    start_time: str
    end_time: str
    timezone: str

    class Config:
        from_attributes = True


class TutorDetailResponse(TutorSummaryResponse):
    availability: list[WeeklyAvailabilityResponse]


class CreateReviewRequest(BaseModel):
    booking_id: int
    rating: int
    comment: str | None = None

    @field_validator('rating')
    @classmethod
    def validate_rating(cls, value: int) -> int:
        if value < 1 or value > 5:
            raise ValueError('Rating must be between 1 and 5.')
        return value

    @field_validator('comment')
    @classmethod
    def validate_comment(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > MAX_COMMENT_LENGTH:
            raise ValueError(f'Comment must be less than {MAX_COMMENT_LENGTH} characters.')

        return normalized


class ReviewResponse(BaseModel):
    id: int
    booking_id: int
    student_id: int
    student_name: str | None = None
    tutor_id: int
    rating: int
    comment: str | None = None
    created_at: datetime | None = None


def serialize_tutor(tutor_profile: TutorProfile) -> dict:
    user = tutor_profile.user
    return {
        'id': tutor_profile.id,
        'user_id': tutor_profile.user_id,
        'name': user.name if user else None,
        'image': user.image if user else None,
        'bio': tutor_profile.bio,
        'specialties': list(tutor_profile.specialties or []),
        'hourly_rate': tutor_profile.hourly_rate or 0.0,
        'rating': tutor_profile.rating or 0.0,
        'total_sessions': tutor_profile.total_sessions or 0,
        'total_reviews': tutor_profile.total_reviews or 0,
    }


def serialize_review(review: Review) -> ReviewResponse:
    return ReviewResponse(
        id=review.id,
        booking_id=review.booking_id,
        student_id=review.student_id,
        student_name=review.student.name if review.student else None,
        tutor_id=review.tutor_id,
        rating=review.rating,
        comment=review.comment,
        created_at=review.created_at,
    )


def bookable_tutors_query(db: Session):
    return db.query(TutorProfile).join(User, TutorProfile.user_id == User.id).filter(
        TutorProfile.is_active.is_(True),
        TutorProfile.approval_status == ApprovalStatus.APPROVED.value,
    )


def specialty_matches(specialties: list[str] | None, wanted: list[str]) -> bool:
    for specialty in specialties or []:
        specialty_lower = specialty.lower()
        for match in wanted:
            match_lower = match.lower()
            if match_lower in specialty_lower or specialty_lower in match_lower:
                return True
    return False


def get_bookable_tutor_or_404(db: Session, tutor_id: int) -> TutorProfile:
    tutor_profile = bookable_tutors_query(db).filter(TutorProfile.id == tutor_id).first()
    if tutor_profile is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail='Tutor not found.',
        )
    return tutor_profile


@router.get('', response_model=TutorListResponse)
def list_tutors(
    search: str | None = Query(default=None),
    specialty: str | None = Query(default=None),
    min_rate: float | None = Query(default=None, ge=0),
    max_rate: float | None = Query(default=None, ge=0),
    sort: str = Query(default='rating'),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    db: Session = Depends(get_db),
):
    if sort not in SORT_ORDERS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Sort must be one of: rating, price_low, price_high, sessions.',
        )

    ensure_database_ready()

    try:
        query = bookable_tutors_query(db)

        if search and search.strip():
            pattern = f'%{search.strip()}%'
            query = query.filter(or_(User.name.ilike(pattern), TutorProfile.bio.ilike(pattern)))
        if min_rate is not None:
            query = query.filter(TutorProfile.hourly_rate >= min_rate)
        if max_rate is not None:
            query = query.filter(TutorProfile.hourly_rate <= max_rate)

        tutor_profiles = query.order_by(*SORT_ORDERS[sort], TutorProfile.id.asc()).all()
    except SQLAlchemyError as exc:
        logger.exception('Failed to list tutors.')
        raise database_unavailable() from exc

    # Specialties are stored as JSON, so matching happens after the query.
    if specialty and specialty.strip():
        tutor_profiles = [
            tutor_profile for tutor_profile in tutor_profiles
            if specialty_matches(tutor_profile.specialties, [specialty.strip()])
        ]

    total = len(tutor_profiles)
    offset = (page - 1) * limit
    page_items = tutor_profiles[offset:offset + limit]

    return TutorListResponse(
        tutors=[TutorSummaryResponse(**serialize_tutor(tutor_profile)) for tutor_profile in page_items],
        pagination=TutorPaginationResponse(
            page=page,
            limit=limit,
            total=total,
            total_pages=(total + limit - 1) // limit,
        ),
    )


@router.get('/recommended', response_model=RecommendedTutorsResponse)
def get_recommended_tutors(
    current_user: User = Depends(require_role(Role.STUDENT)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        student_profile = db.query(StudentProfile).filter(StudentProfile.user_id == current_user.id).first()
        if student_profile is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Student profile not found. Please complete onboarding first.',
            )

        tutor_profiles = bookable_tutors_query(db).order_by(
            TutorProfile.rating.desc(),
            TutorProfile.id.asc(),
        ).all()
    except SQLAlchemyError as exc:
        logger.exception('Failed to fetch recommended tutors for user %s.', current_user.id)
        raise database_unavailable() from exc

    wanted = LEARNING_GOAL_SPECIALTIES.get((student_profile.learning_goal or '').lower(), [])
    matched = [
        tutor_profile for tutor_profile in tutor_profiles
        if wanted and specialty_matches(tutor_profile.specialties, wanted)
    ]
    # Fall back to the top-rated tutors when nothing matches the goal.
    selected = (matched or tutor_profiles)[:RECOMMENDED_LIMIT]

    tutors = [
        RecommendedTutorResponse(
            **serialize_tutor(tutor_profile),
            is_recommended=bool(wanted) and specialty_matches(tutor_profile.specialties, wanted),
        )
        for tutor_profile in selected
        if tutor_profile.user is not None and tutor_profile.user.name
    ]

    return RecommendedTutorsResponse(
        tutors=tutors,
        has_recommendations=any(tutor.is_recommended for tutor in tutors),
        student_preferences=StudentPreferencesResponse(
            learning_goal=student_profile.learning_goal,
            current_level=student_profile.current_level,
            preferred_schedule=student_profile.preferred_schedule,
        ),
    )


@router.get('/{tutor_id}', response_model=TutorDetailResponse)
def get_tutor(tutor_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        tutor_profile = get_bookable_tutor_or_404(db, tutor_id)
        rules = db.query(Availability).filter(
            Availability.tutor_id == tutor_profile.id,
            Availability.is_active.is_(True),
        ).order_by(Availability.day_of_week.asc(), Availability.start_time.asc()).all()
    except SQLAlchemyError as exc:
        logger.exception('Failed to fetch tutor %s.', tutor_id)
        raise database_unavailable() from exc

    return TutorDetailResponse(
        **serialize_tutor(tutor_profile),
        availability=[WeeklyAvailabilityResponse.model_validate(rule) for rule in rules],
    )


@router.get('/{tutor_id}/reviews', response_model=list[ReviewResponse])
def list_tutor_reviews(tutor_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        tutor_profile = db.query(TutorProfile).filter(TutorProfile.id == tutor_id).first()
        if tutor_profile is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Tutor not found.',
            )

        reviews = db.query(Review).filter(Review.tutor_id == tutor_id).order_by(
            Review.created_at.desc(),
            Review.id.desc(),
        ).all()
        return [serialize_review(review) for review in reviews]
    except SQLAlchemyError as exc:
        logger.exception('Failed to list reviews for tutor %s.', tutor_id)
        raise database_unavailable() from exc


@router.post('/{tutor_id}/reviews', response_model=ReviewResponse, status_code=status.HTTP_201_CREATED)
def create_tutor_review(
    tutor_id: int,
    data: CreateReviewRequest,
    current_user: User = Depends(require_role(Role.STUDENT)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        tutor_profile = db.query(TutorProfile).filter(TutorProfile.id == tutor_id).first()
        if tutor_profile is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Tutor not found.',
            )

        booking = db.query(Booking).filter(
            Booking.id == data.booking_id,
            Booking.student_id == current_user.id,
            Booking.tutor_id == tutor_id,
        ).first()
        if booking is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Booking not found.',
            )

        if booking.status != BookingStatus.COMPLETED.value:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail='Only completed sessions can be reviewed.',
            )

        existing_review = db.query(Review).filter(Review.booking_id == booking.id).first()
        if existing_review:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail='This session has already been reviewed.',
            )

        review = Review(
            booking_id=booking.id,
            student_id=current_user.id,
            tutor_id=tutor_id,
            rating=data.rating,
            comment=data.comment,
        )
        db.add(review)
        db.flush()

        average_rating, review_count = db.query(func.avg(Review.rating), func.count(Review.id)).filter(
            Review.tutor_id == tutor_id,
        ).one()
        tutor_profile.rating = round(float(average_rating or 0.0), 2)
        tutor_profile.total_reviews = review_count

        db.commit()
        db.refresh(review)

        logger.info('Review created: id=%s tutor=%s rating=%s', review.id, tutor_id, review.rating)
        return serialize_review(review)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Failed to create review for tutor %s.', tutor_id)
        raise database_unavailable() from exc
