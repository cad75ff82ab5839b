from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Protocol

from ..models import (
    ActivityLog,
    Booking,
    BookingStatus,
    BookingType,
    Member,
    Payment,
    PaymentMethod,
    PaymentStatus,
    Space,
)


class MemberRepository(Protocol):
    async def get(self, member_id: int) -> Member | None: ...

    async def list_all(self) -> list[Member]: ...

    async def create(self, **fields: Any) -> Member: ...

    async def update(self, member: Member) -> Member: ...


class SpaceRepository(Protocol):
    async def get(self, space_id: int) -> Space | None: ...

    async def get_for_update(self, space_id: int) -> Space | None:
        """Load the space and hold its row lock until the transaction ends."""
        ...

    async def list_all(self) -> list[Space]: ...

    async def create(self, **fields: Any) -> Space: ...

    async def update(self, space: Space) -> Space: ...


class BookingRepository(Protocol):
    async def get(self, booking_id: int) -> Booking | None: ...

    async def get_for_update(self, booking_id: int) -> Booking | None: ...

    async def get_by_idempotency_key(self, key: str) -> Booking | None: ...

    async def list_filtered(
        self,
        *,
        space_id: int | None = None,
        member_id: int | None = None,
        status: BookingStatus | None = None,
    ) -> list[Booking]: ...

    async def list_confirmed_overlapping(
        self,
        space_id: int,
        start: datetime,
        end: datetime,
        exclude_booking_id: int | None = None,
    ) -> list[Booking]: ...

    async def create(
        self,
        *,
        member_id: int,
        space_id: int,
        start_time: datetime,
        end_time: datetime,
        booking_type: BookingType,
        total_amount: Decimal,
        status: BookingStatus,
        notes: str | None,
        idempotency_key: str | None,
    ) -> Booking: ...

    async def update(self, booking: Booking) -> Booking: ...


class PaymentRepository(Protocol):
    async def get(self, payment_id: int) -> Payment | None: ...

    async def list_all(self) -> list[Payment]: ...

    async def list_by_booking(self, booking_id: int) -> list[Payment]: ...

    async def has_status(self, booking_id: int, status: PaymentStatus) -> bool: ...

    async def create(
        self,
        *,
        booking_id: int,
        amount: Decimal,
        payment_method: PaymentMethod,
        payment_status: PaymentStatus,
        payment_date: datetime | None,
        notes: str | None,
    ) -> Payment: ...

    async def update(self, payment: Payment) -> Payment: ...


class ActivityLogRepository(Protocol):
    async def create(
        self,
        *,
        user_id: int,
        action: str,
        entity_type: str,
        entity_id: int | None,
        details: str | None,
    ) -> ActivityLog: ...

    async def list_recent(self, limit: int) -> list[ActivityLog]: ...
