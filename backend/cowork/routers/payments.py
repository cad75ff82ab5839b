from typing import List

from fastapi import APIRouter, Depends, HTTPException, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_activity_sink, get_current_user_id, get_session
from ..domain.errors import DomainError
from ..infrastructure.repositories import SqlAlchemyBookingRepository, SqlAlchemyPaymentRepository
from ..schemas import PaymentCreate, PaymentRead, PaymentUpdate
from ..usecases import payments as payment_usecase
from ..utils.activity_log import ActivitySink
from .errors import domain_error_to_http, require_utc

router = APIRouter(prefix="/payments", tags=["payments"], dependencies=[Depends(get_current_user_id)])


@router.get("", response_model=List[PaymentRead])
async def list_payments(session: AsyncSession = Depends(get_session)) -> list[PaymentRead]:
    rows = await payment_usecase.list_payments(SqlAlchemyPaymentRepository(session))
    return [PaymentRead.from_db(payment=payment) for payment in rows]


@router.post("", response_model=PaymentRead, status_code=status.HTTP_201_CREATED)
async def create_payment(
    payload: PaymentCreate,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
    activity: ActivitySink = Depends(get_activity_sink),
) -> PaymentRead:
    payment_date = require_utc(payload.payment_date, "payment_date") if payload.payment_date else None
    try:
        async with session.begin():
            payment = await payment_usecase.create_payment(
                SqlAlchemyBookingRepository(session),
                SqlAlchemyPaymentRepository(session),
                booking_id=payload.booking_id,
                amount=payload.amount,
                payment_method=payload.payment_method,
                payment_status=payload.payment_status,
                payment_date=payment_date,
                notes=payload.notes,
            )
    except DomainError as exc:
        raise domain_error_to_http(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    await activity.record(
        actor_id=user_id,
        action="CREATE",
        entity_type="payment",
        entity_id=payment.id,
        details=f"Recorded payment #{payment.id} for booking #{payment.booking_id}",
    )
    return PaymentRead.from_db(payment=payment)


@router.get("/{payment_id}", response_model=PaymentRead)
async def get_payment(
    payment_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
) -> PaymentRead:
    try:
        payment = await payment_usecase.get_payment(SqlAlchemyPaymentRepository(session), payment_id=payment_id)
    except DomainError as exc:
        raise domain_error_to_http(exc) from exc
    return PaymentRead.from_db(payment=payment)


@router.patch("/{payment_id}", response_model=PaymentRead)
async def update_payment(
    payload: PaymentUpdate,
    payment_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
    activity: ActivitySink = Depends(get_activity_sink),
) -> PaymentRead:
    changes = payload.changes()
    if changes.get("payment_date") is not None:
        changes["payment_date"] = require_utc(changes["payment_date"], "payment_date")
    try:
        async with session.begin():
            payment = await payment_usecase.update_payment(
                SqlAlchemyBookingRepository(session),
                SqlAlchemyPaymentRepository(session),
                payment_id=payment_id,
                changes=changes,
            )
    except DomainError as exc:
        raise domain_error_to_http(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    await activity.record(
        actor_id=user_id,
        action="UPDATE",
        entity_type="payment",
        entity_id=payment.id,
        details=f"Updated payment #{payment.id}",
    )
    return PaymentRead.from_db(payment=payment)
