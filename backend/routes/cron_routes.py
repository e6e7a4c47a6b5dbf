import logging
import secrets

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth.dependencies import security
from backend.core import config
from backend.core.clock import utc_now
from backend.database import database_unavailable, ensure_database_ready, get_db
from backend.models.booking import Booking, BookingStatus
from backend.scheduling.policies import mark_completed

router = APIRouter(tags=['cron'])
logger = logging.getLogger(__name__)


def verify_cron_secret(credentials: HTTPAuthorizationCredentials | None = Depends(security)) -> None:
    if not config.CRON_SECRET:
        if config.is_production():
            logger.error('CRON_SECRET is not set; refusing maintenance request.')
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail='Unauthorized',
            )
        logger.warning('CRON_SECRET is not set; allowing maintenance request outside production.')
        return

    if credentials is None or not secrets.compare_digest(credentials.credentials, config.CRON_SECRET):
        logger.warning('Rejected maintenance request with missing or invalid secret.')
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail='Unauthorized',
        )


@router.post('/complete-bookings')
def complete_past_bookings(
    _authorized: None = Depends(verify_cron_secret),
    db: Session = Depends(get_db),
):
    ensure_database_ready()
    now = utc_now()

    try:
        confirmed = db.query(Booking).filter(
            Booking.status == BookingStatus.CONFIRMED.value,
            Booking.scheduled_at < now,
        ).all()

        completed = 0
        for booking in confirmed:
            if booking.ends_at <= now:
                mark_completed(booking)
                completed += 1

        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Failed to complete past bookings.')
        raise database_unavailable() from exc

    logger.info('Bookings auto-completed: count=%s', completed)
    return {'completed': completed}
