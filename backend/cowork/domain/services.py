from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from ..models import BookingStatus
from .errors import BookingConflictError, InvalidIntervalError, InvalidStatusTransitionError

# Terminal statuses have no outgoing transitions.
_ALLOWED_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.CONFIRMED: frozenset({BookingStatus.CANCELLED, BookingStatus.COMPLETED}),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.COMPLETED: frozenset(),
}


@dataclass(frozen=True)
class BookedInterval:
    booking_id: int
    start: datetime
    end: datetime


def validate_interval(start: datetime, end: datetime) -> None:
    if start >= end:
        raise InvalidIntervalError("start_time must be earlier than end_time")


def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """
    Inclusive on both bounds: a booking ending at 10:00 and one starting at
    10:00 overlap.
    """
    return a_start <= b_end and b_start <= a_end


def find_conflicts(
    existing: Iterable[BookedInterval],
    *,
    start: datetime,
    end: datetime,
    exclude_booking_id: int | None = None,
) -> list[int]:
    return [
        item.booking_id
        for item in existing
        if item.booking_id != exclude_booking_id and intervals_overlap(item.start, item.end, start, end)
    ]


def ensure_no_conflicts(
    existing: Iterable[BookedInterval],
    *,
    start: datetime,
    end: datetime,
    exclude_booking_id: int | None = None,
) -> None:
    """
    Pure admission check. `existing` must hold the confirmed bookings of a
    single space. Raises BookingConflictError listing every overlapping id.
    """
    conflicts = find_conflicts(existing, start=start, end=end, exclude_booking_id=exclude_booking_id)
    if conflicts:
        raise BookingConflictError(conflicts)


def validate_status_transition(current: BookingStatus, target: BookingStatus) -> bool:
    """Return True when the status actually changes; re-applying the current status is a no-op."""
    if current == target:
        return False
    if target not in _ALLOWED_TRANSITIONS[current]:
        raise InvalidStatusTransitionError(f"cannot change booking status from {current} to {target}")
    return True
