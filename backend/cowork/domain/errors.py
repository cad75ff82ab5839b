from __future__ import annotations

from typing import Sequence


class DomainError(Exception):
    """Base class for errors raised by the booking domain."""


class InvalidIntervalError(DomainError):
    pass


class NotFoundError(DomainError):
    def __init__(self, entity: str, entity_id: int | None = None) -> None:
        self.entity = entity
        self.entity_id = entity_id
        if entity_id is None:
            super().__init__(f"{entity} not found")
        else:
            super().__init__(f"{entity} {entity_id} not found")


class UnknownSpaceError(NotFoundError):
    def __init__(self, space_id: int | None = None) -> None:
        super().__init__("space", space_id)


class BookingConflictError(DomainError):
    """The interval overlaps one or more confirmed bookings on the same space."""

    def __init__(self, conflicting_ids: Sequence[int]) -> None:
        self.conflicting_ids = sorted(conflicting_ids)
        super().__init__(
            "space is already booked during this time period: "
            + ", ".join(str(i) for i in self.conflicting_ids)
        )


class InvalidStatusTransitionError(DomainError):
    pass


class BookingLockedError(DomainError):
    pass


class IdempotencyKeyReusedError(DomainError):
    pass


class StorageUnavailableError(DomainError):
    """Transient storage failure (lock wait timeout, deadlock, lost connection). Retryable."""
