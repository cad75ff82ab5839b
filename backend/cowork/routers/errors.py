import logging
from datetime import datetime

from fastapi import HTTPException, status
from sqlalchemy.exc import IntegrityError

from ..domain.errors import (
    BookingConflictError,
    BookingLockedError,
    DomainError,
    IdempotencyKeyReusedError,
    InvalidIntervalError,
    InvalidStatusTransitionError,
    NotFoundError,
    StorageUnavailableError,
)
from ..utils.time import to_utc_naive

logger = logging.getLogger(__name__)

RETRY_AFTER_SECONDS = "1"
IDEMPOTENCY_CONSTRAINT = "uq_bookings_idempotency_key"


def storage_unavailable(detail: str = "storage temporarily unavailable, retry later") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=detail,
        headers={"Retry-After": RETRY_AFTER_SECONDS},
    )


def domain_error_to_http(exc: DomainError) -> HTTPException:
    if isinstance(exc, BookingConflictError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "message": "Booking conflict: the space is already booked during this time period",
                "conflicting_booking_ids": exc.conflicting_ids,
            },
        )
    if isinstance(exc, InvalidIntervalError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, (InvalidStatusTransitionError, BookingLockedError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, IdempotencyKeyReusedError):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    if isinstance(exc, StorageUnavailableError):
        return storage_unavailable(str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


def require_utc(dt: datetime, field: str) -> datetime:
    try:
        return to_utc_naive(dt)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"{field} must have timezone") from exc


def booking_integrity_error(exc: IntegrityError) -> HTTPException:
    # The idempotency key was committed by a concurrent request on another space.
    if IDEMPOTENCY_CONSTRAINT in str(exc.orig):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail="duplicate booking request")
    logger.error("booking rejected by the database: %s", exc.orig)
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="booking violates a data constraint")
