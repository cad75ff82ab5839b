from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Path, Query, Response, status
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_activity_sink, get_current_user_id, get_session
from ..domain.errors import DomainError
from ..infrastructure.repositories import (
    SqlAlchemyBookingRepository,
    SqlAlchemyMemberRepository,
    SqlAlchemyPaymentRepository,
    SqlAlchemySpaceRepository,
)
from ..models import BookingStatus
from ..schemas import BookingCreate, BookingRead, BookingUpdate, PaymentRead
from ..usecases import bookings as booking_usecase
from ..usecases import payments as payment_usecase
from ..utils.activity_log import ActivitySink
from .errors import booking_integrity_error, domain_error_to_http, require_utc, storage_unavailable

router = APIRouter(prefix="/bookings", tags=["bookings"], dependencies=[Depends(get_current_user_id)])


@router.post("", response_model=BookingRead, status_code=status.HTTP_201_CREATED)
async def create_booking(
    payload: BookingCreate,
    response: Response,
    idempotency_key: Optional[str] = Header(default=None, max_length=255),
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
    activity: ActivitySink = Depends(get_activity_sink),
) -> BookingRead:
    start_time = require_utc(payload.start_time, "start_time")
    end_time = require_utc(payload.end_time, "end_time")

    member_repo = SqlAlchemyMemberRepository(session)
    space_repo = SqlAlchemySpaceRepository(session)
    booking_repo = SqlAlchemyBookingRepository(session)
    try:
        async with session.begin():
            booking, created = await booking_usecase.propose_booking(
                member_repo,
                space_repo,
                booking_repo,
                member_id=payload.member_id,
                space_id=payload.space_id,
                start_time=start_time,
                end_time=end_time,
                booking_type=payload.booking_type,
                notes=payload.notes,
                idempotency_key=idempotency_key,
            )
    except DomainError as exc:
        raise domain_error_to_http(exc) from exc
    except IntegrityError as exc:
        raise booking_integrity_error(exc) from exc
    except OperationalError as exc:
        raise storage_unavailable() from exc

    if created:
        await activity.record(
            actor_id=user_id,
            action="CREATE",
            entity_type="booking",
            entity_id=booking.id,
            details=f"Created booking #{booking.id} for space {booking.space_id}",
        )
    else:
        response.status_code = status.HTTP_200_OK
    return BookingRead.from_db(booking=booking)


@router.get("", response_model=List[BookingRead])
async def list_bookings(
    space_id: Optional[int] = Query(default=None, ge=1),
    member_id: Optional[int] = Query(default=None, ge=1),
    status_filter: Optional[BookingStatus] = Query(default=None, alias="status"),
    session: AsyncSession = Depends(get_session),
) -> list[BookingRead]:
    booking_repo = SqlAlchemyBookingRepository(session)
    rows = await booking_usecase.list_bookings(
        booking_repo,
        space_id=space_id,
        member_id=member_id,
        status=status_filter,
    )
    return [BookingRead.from_db(booking=booking) for booking in rows]


@router.get("/{booking_id}", response_model=BookingRead)
async def get_booking(
    booking_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
) -> BookingRead:
    booking_repo = SqlAlchemyBookingRepository(session)
    try:
        booking = await booking_usecase.get_booking(booking_repo, booking_id=booking_id)
    except DomainError as exc:
        raise domain_error_to_http(exc) from exc
    return BookingRead.from_db(booking=booking)


@router.patch("/{booking_id}", response_model=BookingRead)
async def amend_booking(
    payload: BookingUpdate,
    booking_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
    activity: ActivitySink = Depends(get_activity_sink),
) -> BookingRead:
    changes = payload.changes()
    for field in ("start_time", "end_time"):
        if changes.get(field) is not None:
            changes[field] = require_utc(changes[field], field)

    try:
        async with session.begin():
            booking, changed = await booking_usecase.amend_booking(
                SqlAlchemyMemberRepository(session),
                SqlAlchemySpaceRepository(session),
                SqlAlchemyBookingRepository(session),
                SqlAlchemyPaymentRepository(session),
                booking_id=booking_id,
                changes=changes,
            )
    except DomainError as exc:
        raise domain_error_to_http(exc) from exc
    except OperationalError as exc:
        raise storage_unavailable() from exc

    if changed:
        await activity.record(
            actor_id=user_id,
            action="UPDATE",
            entity_type="booking",
            entity_id=booking.id,
            details=f"Updated booking #{booking.id}",
            extra={"fields": sorted(changes)},
        )
    return BookingRead.from_db(booking=booking)


@router.post("/{booking_id}/cancel", response_model=BookingRead)
async def cancel_booking(
    booking_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
    activity: ActivitySink = Depends(get_activity_sink),
) -> BookingRead:
    try:
        async with session.begin():
            booking, changed = await booking_usecase.cancel_booking(
                SqlAlchemyMemberRepository(session),
                SqlAlchemySpaceRepository(session),
                SqlAlchemyBookingRepository(session),
                SqlAlchemyPaymentRepository(session),
                booking_id=booking_id,
            )
    except DomainError as exc:
        raise domain_error_to_http(exc) from exc
    except OperationalError as exc:
        raise storage_unavailable() from exc

    if changed:
        await activity.record(
            actor_id=user_id,
            action="UPDATE",
            entity_type="booking",
            entity_id=booking.id,
            details=f"Cancelled booking #{booking.id}",
        )
    return BookingRead.from_db(booking=booking)


@router.get("/{booking_id}/payments", response_model=List[PaymentRead])
async def list_booking_payments(
    booking_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
) -> list[PaymentRead]:
    try:
        rows = await payment_usecase.list_booking_payments(
            SqlAlchemyBookingRepository(session),
            SqlAlchemyPaymentRepository(session),
            booking_id=booking_id,
        )
    except DomainError as exc:
        raise domain_error_to_http(exc) from exc
    return [PaymentRead.from_db(payment=payment) for payment in rows]
