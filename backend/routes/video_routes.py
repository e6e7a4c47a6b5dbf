import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth.dependencies import get_current_user
from backend.core import config
from backend.database import database_unavailable, ensure_database_ready, get_db
from backend.models.booking import Booking, BookingStatus
from backend.models.user import User
from backend.video import agora

router = APIRouter(tags=['video'])
logger = logging.getLogger(__name__)

CALLABLE_STATUSES = {BookingStatus.CONFIRMED.value, BookingStatus.COMPLETED.value}


class VideoTokenRequest(BaseModel):
    booking_id: int


class VideoTokenResponse(BaseModel):
    token: str
    channel_name: str
    uid: int
    app_id: str


@router.post('/token', response_model=VideoTokenResponse)
def issue_video_token(
    data: VideoTokenRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        booking = db.query(Booking).filter(Booking.id == data.booking_id).first()
    except SQLAlchemyError as exc:
        logger.exception('Failed to load booking %s for video token.', data.booking_id)
        raise database_unavailable() from exc

    if booking is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail='Booking not found.',
        )

    is_student = booking.student_id == current_user.id
    is_tutor = booking.tutor is not None and booking.tutor.user_id == current_user.id
    if not (is_student or is_tutor):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You don't have access to this booking.",
        )

    if booking.status not in CALLABLE_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Booking is not confirmed. Video calls are only available for confirmed bookings.',
        )

    channel_name = agora.generate_channel_name(booking.id)
    uid = agora.generate_uid(current_user.id)

    # Both participants publish audio and video.
    try:
        token = agora.generate_rtc_token(channel_name, uid, role=agora.PUBLISHER_ROLE)
    except agora.AgoraNotConfiguredError as exc:
        logger.error('Video token requested but Agora is not configured.')
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail='Failed to generate token.',
        ) from exc

    logger.info(
        'Video token issued: user=%s booking=%s channel=%s uid=%s',
        current_user.id,
        booking.id,
        channel_name,
        uid,
    )
    return VideoTokenResponse(token=token, channel_name=channel_name, uid=uid, app_id=config.AGORA_APP_ID)
