import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth import jwt_handler
from backend.auth.dependencies import get_current_user
from backend.auth.passwords import hash_password, verify_password
from backend.database import database_unavailable, ensure_database_ready, get_db
from backend.models.tutor_profile import ApprovalStatus, TutorProfile
from backend.models.user import Role, User

router = APIRouter(tags=['auth'])
logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8
SELF_SERVICE_ROLES = {Role.STUDENT.value, Role.TUTOR.value}


def normalize_email(value: str) -> str:
    normalized = value.strip().lower()
    if not normalized or '@' not in normalized:
        raise ValueError('A valid email address is required.')
    return normalized


class RegisterRequest(BaseModel):
    email: str
    password: str
    name: str
    role: str = Role.STUDENT.value

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        return normalize_email(value)

    @field_validator('password')
    @classmethod
    def validate_password(cls, value: str) -> str:
        if len(value) < MIN_PASSWORD_LENGTH:
            raise ValueError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters.')
        return value

    @field_validator('name')
    @classmethod
    def validate_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Name is required.')
        if len(normalized) > 100:
            raise ValueError('Name is too long.')
        return normalized

    @field_validator('role')
    @classmethod
    def validate_role(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in SELF_SERVICE_ROLES:
            raise ValueError('Role must be STUDENT or TUTOR.')
        return normalized


class LoginRequest(BaseModel):
    email: str
    password: str

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        return normalize_email(value)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = 'bearer'


class UserResponse(BaseModel):
    id: int
    email: str
    name: str | None = None
    role: str
    image: str | None = None
    penalty_until: datetime | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True


@router.post('/register', response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def register(data: RegisterRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        if db.query(User).filter(User.email == data.email).first():
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail='An account with this email already exists.',
            )

        user = User(
            email=data.email,
            name=data.name,
            hashed_password=hash_password(data.password),
            role=data.role,
        )
        db.add(user)
        db.flush()

        if data.role == Role.TUTOR.value:
            db.add(TutorProfile(
                user_id=user.id,
                specialties=[],
                approval_status=ApprovalStatus.PENDING.value,
                is_active=False,
            ))

        db.commit()
        db.refresh(user)
        logger.info('User registered: id=%s role=%s', user.id, user.role)
        return user
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Failed to register user.')
        raise database_unavailable() from exc


@router.post('/login', response_model=TokenResponse)
def login(data: LoginRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        user = db.query(User).filter(User.email == data.email).first()
    except SQLAlchemyError as exc:
        logger.exception('Failed to load user for login.')
        raise database_unavailable() from exc

    if user is None or not verify_password(data.password, user.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail='Invalid email or password.',
        )

    return TokenResponse(access_token=jwt_handler.create_access_token(subject=user.email, role=user.role))


@router.get('/me', response_model=UserResponse)
def me(current_user: User = Depends(get_current_user)):
    return current_user
