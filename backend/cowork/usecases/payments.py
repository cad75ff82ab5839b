from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping

from ..domain.errors import NotFoundError
from ..domain.repositories import BookingRepository, PaymentRepository
from ..models import Payment, PaymentMethod, PaymentStatus


async def list_payments(payment_repo: PaymentRepository) -> list[Payment]:
    return await payment_repo.list_all()


async def list_booking_payments(
    booking_repo: BookingRepository,
    payment_repo: PaymentRepository,
    *,
    booking_id: int,
) -> list[Payment]:
    if await booking_repo.get(booking_id) is None:
        raise NotFoundError("booking", booking_id)
    return await payment_repo.list_by_booking(booking_id)


async def get_payment(payment_repo: PaymentRepository, *, payment_id: int) -> Payment:
    payment = await payment_repo.get(payment_id)
    if payment is None:
        raise NotFoundError("payment", payment_id)
    return payment


async def create_payment(
    booking_repo: BookingRepository,
    payment_repo: PaymentRepository,
    *,
    booking_id: int,
    amount: Decimal,
    payment_method: PaymentMethod,
    payment_status: PaymentStatus = PaymentStatus.PENDING,
    payment_date: datetime | None = None,
    notes: str | None = None,
) -> Payment:
    if amount <= 0:
        raise ValueError("amount must be positive")
    # Same row lock as amend_booking, so a booking cannot be paid while it is being re-timed.
    if await booking_repo.get_for_update(booking_id) is None:
        raise NotFoundError("booking", booking_id)
    return await payment_repo.create(
        booking_id=booking_id,
        amount=amount,
        payment_method=payment_method,
        payment_status=payment_status,
        payment_date=payment_date,
        notes=notes,
    )


async def update_payment(
    booking_repo: BookingRepository,
    payment_repo: PaymentRepository,
    *,
    payment_id: int,
    changes: Mapping[str, Any],
) -> Payment:
    if "amount" in changes and changes["amount"] <= 0:
        raise ValueError("amount must be positive")
    payment = await get_payment(payment_repo, payment_id=payment_id)
    if changes.get("payment_status") == PaymentStatus.PAID and payment.payment_status != PaymentStatus.PAID:
        await booking_repo.get_for_update(payment.booking_id)
    for field, value in changes.items():
        setattr(payment, field, value)
    return await payment_repo.update(payment)
