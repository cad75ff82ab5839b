from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Mapping

from ..domain.errors import BookingLockedError, IdempotencyKeyReusedError, NotFoundError, UnknownSpaceError
from ..domain.pricing import calculate_total_amount
from ..domain.repositories import BookingRepository, MemberRepository, PaymentRepository, SpaceRepository
from ..domain.services import (
    BookedInterval,
    ensure_no_conflicts,
    validate_interval,
    validate_status_transition,
)
from ..models import Booking, BookingStatus, BookingType, PaymentStatus

logger = logging.getLogger(__name__)

AMENDABLE_FIELDS = frozenset(
    {"member_id", "space_id", "start_time", "end_time", "booking_type", "status", "notes"}
)
_SLOT_FIELDS = ("space_id", "start_time", "end_time")


def _intervals(bookings: Iterable[Booking]) -> list[BookedInterval]:
    return [BookedInterval(booking_id=b.id, start=b.start_time, end=b.end_time) for b in bookings]


def _matches_request(
    booking: Booking,
    *,
    member_id: int,
    space_id: int,
    start_time: datetime,
    end_time: datetime,
    booking_type: BookingType,
) -> bool:
    return (
        booking.member_id == member_id
        and booking.space_id == space_id
        and booking.start_time == start_time
        and booking.end_time == end_time
        and booking.booking_type == booking_type
    )


async def quote_booking(
    space_repo: SpaceRepository,
    *,
    space_id: int,
    booking_type: BookingType,
    start_time: datetime,
    end_time: datetime,
) -> Decimal:
    space = await space_repo.get(space_id)
    if space is None:
        raise UnknownSpaceError(space_id)
    return calculate_total_amount(
        hourly_rate=space.hourly_rate,
        daily_rate=space.daily_rate,
        booking_type=booking_type,
        start=start_time,
        end=end_time,
    )


async def propose_booking(
    member_repo: MemberRepository,
    space_repo: SpaceRepository,
    booking_repo: BookingRepository,
    *,
    member_id: int,
    space_id: int,
    start_time: datetime,
    end_time: datetime,
    booking_type: BookingType,
    notes: str | None = None,
    idempotency_key: str | None = None,
) -> tuple[Booking, bool]:
    """
    Admit a new booking or reject it.

    Must run inside a transaction: the space row lock taken here is what
    keeps two concurrent proposals for the same space from both passing
    the conflict check. Returns (booking, created); created is False when
    an idempotent replay returned the booking stored for the same key.
    """
    validate_interval(start_time, end_time)

    # The space lock is the first statement of the transaction; every read below sees the latest commits.
    space = await space_repo.get_for_update(space_id)
    if space is None:
        raise UnknownSpaceError(space_id)

    member = await member_repo.get(member_id)
    if member is None:
        raise NotFoundError("member", member_id)

    if idempotency_key is not None:
        existing = await booking_repo.get_by_idempotency_key(idempotency_key)
        if existing is not None:
            if not _matches_request(
                existing,
                member_id=member_id,
                space_id=space_id,
                start_time=start_time,
                end_time=end_time,
                booking_type=booking_type,
            ):
                raise IdempotencyKeyReusedError("idempotency key was already used for a different booking")
            logger.info("idempotent replay of booking %s", existing.id)
            return existing, False

    overlapping = await booking_repo.list_confirmed_overlapping(space.id, start_time, end_time)
    ensure_no_conflicts(_intervals(overlapping), start=start_time, end=end_time)

    total_amount = calculate_total_amount(
        hourly_rate=space.hourly_rate,
        daily_rate=space.daily_rate,
        booking_type=booking_type,
        start=start_time,
        end=end_time,
    )
    booking = await booking_repo.create(
        member_id=member.id,
        space_id=space.id,
        start_time=start_time,
        end_time=end_time,
        booking_type=booking_type,
        total_amount=total_amount,
        status=BookingStatus.CONFIRMED,
        notes=notes,
        idempotency_key=idempotency_key,
    )
    return booking, True


async def amend_booking(
    member_repo: MemberRepository,
    space_repo: SpaceRepository,
    booking_repo: BookingRepository,
    payment_repo: PaymentRepository,
    *,
    booking_id: int,
    changes: Mapping[str, Any],
) -> tuple[Booking, bool]:
    """
    Apply a partial update to a booking. Nothing is mutated unless every
    check passes. Returns (booking, changed).
    """
    unknown = set(changes) - AMENDABLE_FIELDS
    if unknown:
        raise ValueError(f"fields cannot be amended: {', '.join(sorted(unknown))}")

    # Booking row first, then space row; nothing locks in the opposite order.
    booking = await booking_repo.get_for_update(booking_id)
    if booking is None:
        raise NotFoundError("booking", booking_id)

    target_status: BookingStatus = changes.get("status") or booking.status
    validate_status_transition(booking.status, target_status)

    member_id: int = changes.get("member_id") or booking.member_id
    space_id: int = changes.get("space_id") or booking.space_id
    start_time: datetime = changes.get("start_time") or booking.start_time
    end_time: datetime = changes.get("end_time") or booking.end_time
    booking_type: BookingType = changes.get("booking_type") or booking.booking_type

    touches_slot = (space_id, start_time, end_time) != (booking.space_id, booking.start_time, booking.end_time)
    reprices = touches_slot or booking_type != booking.booking_type

    if reprices:
        if booking.status != BookingStatus.CONFIRMED:
            raise BookingLockedError(f"booking is {booking.status}; timing, space and type can no longer change")
        if await payment_repo.has_status(booking.id, PaymentStatus.PAID):
            raise BookingLockedError("booking has been paid; timing, space and type can no longer change")
        validate_interval(start_time, end_time)

    if member_id != booking.member_id and await member_repo.get(member_id) is None:
        raise NotFoundError("member", member_id)

    total_amount = booking.total_amount
    if reprices:
        needs_admission = touches_slot and target_status == BookingStatus.CONFIRMED
        space = await (space_repo.get_for_update(space_id) if needs_admission else space_repo.get(space_id))
        if space is None:
            raise UnknownSpaceError(space_id)
        if needs_admission:
            overlapping = await booking_repo.list_confirmed_overlapping(
                space.id, start_time, end_time, exclude_booking_id=booking.id
            )
            ensure_no_conflicts(
                _intervals(overlapping),
                start=start_time,
                end=end_time,
                exclude_booking_id=booking.id,
            )
        total_amount = calculate_total_amount(
            hourly_rate=space.hourly_rate,
            daily_rate=space.daily_rate,
            booking_type=booking_type,
            start=start_time,
            end=end_time,
        )

    notes = changes["notes"] if "notes" in changes else booking.notes
    new_values = {
        "member_id": member_id,
        "space_id": space_id,
        "start_time": start_time,
        "end_time": end_time,
        "booking_type": booking_type,
        "total_amount": total_amount,
        "status": target_status,
        "notes": notes,
    }
    diff = {field: value for field, value in new_values.items() if getattr(booking, field) != value}
    if not diff:
        return booking, False

    for field, value in diff.items():
        setattr(booking, field, value)
    updated = await booking_repo.update(booking)
    return updated, True


async def cancel_booking(
    member_repo: MemberRepository,
    space_repo: SpaceRepository,
    booking_repo: BookingRepository,
    payment_repo: PaymentRepository,
    *,
    booking_id: int,
) -> tuple[Booking, bool]:
    # Idempotent: an already cancelled booking comes back with changed=False.
    return await amend_booking(
        member_repo,
        space_repo,
        booking_repo,
        payment_repo,
        booking_id=booking_id,
        changes={"status": BookingStatus.CANCELLED},
    )


async def list_bookings(
    booking_repo: BookingRepository,
    *,
    space_id: int | None = None,
    member_id: int | None = None,
    status: BookingStatus | None = None,
) -> list[Booking]:
    return await booking_repo.list_filtered(space_id=space_id, member_id=member_id, status=status)


async def get_booking(booking_repo: BookingRepository, *, booking_id: int) -> Booking:
    booking = await booking_repo.get(booking_id)
    if booking is None:
        raise NotFoundError("booking", booking_id)
    return booking
