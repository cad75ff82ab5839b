from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from itertools import count
from typing import Any

import pytest
from cowork.models import (
    Booking,
    BookingStatus,
    BookingType,
    Member,
    MembershipType,
    Payment,
    PaymentMethod,
    PaymentStatus,
    Space,
    SpaceStatus,
    SpaceType,
)

NOW = datetime(2025, 1, 1, 0, 0)


@dataclass
class InMemoryStore:
    members: dict[int, Member] = field(default_factory=dict)
    spaces: dict[int, Space] = field(default_factory=dict)
    bookings: dict[int, Booking] = field(default_factory=dict)
    payments: dict[int, Payment] = field(default_factory=dict)
    row_locks: dict[tuple[str, int], asyncio.Lock] = field(default_factory=dict)
    journal: list[str] = field(default_factory=list)
    ids: Any = field(default_factory=lambda: count(1))

    def add_member(self, member_id: int | None = None) -> Member:
        member_id = member_id or next(self.ids)
        member = Member(
            id=member_id,
            full_name=f"Member {member_id}",
            email=f"member{member_id}@example.com",
            phone="0123456789",
            membership_type=MembershipType.MONTHLY,
            is_active=True,
            joined_at=NOW,
            created_at=NOW,
            updated_at=NOW,
        )
        self.members[member_id] = member
        return member

    def add_space(
        self,
        space_id: int | None = None,
        *,
        hourly_rate: str = "10.00",
        daily_rate: str = "80.00",
    ) -> Space:
        space_id = space_id or next(self.ids)
        space = Space(
            id=space_id,
            name=f"Room {space_id}",
            type=SpaceType.MEETING_ROOM,
            capacity=6,
            hourly_rate=Decimal(hourly_rate),
            daily_rate=Decimal(daily_rate),
            status=SpaceStatus.AVAILABLE,
            created_at=NOW,
            updated_at=NOW,
        )
        self.spaces[space_id] = space
        return space

    def add_booking(
        self,
        *,
        space: Space,
        member: Member,
        start: datetime,
        end: datetime,
        status: BookingStatus = BookingStatus.CONFIRMED,
        booking_type: BookingType = BookingType.HOURLY,
    ) -> Booking:
        booking = Booking(
            id=next(self.ids),
            member_id=member.id,
            space_id=space.id,
            start_time=start,
            end_time=end,
            booking_type=booking_type,
            total_amount=Decimal("0.00"),
            status=status,
            notes=None,
            idempotency_key=None,
            created_at=NOW,
            updated_at=NOW,
        )
        self.bookings[booking.id] = booking
        return booking

    def add_payment(self, booking: Booking, status: PaymentStatus) -> Payment:
        payment = Payment(
            id=next(self.ids),
            booking_id=booking.id,
            amount=Decimal("20.00"),
            payment_method=PaymentMethod.CASH,
            payment_status=status,
            payment_date=None,
            notes=None,
            created_at=NOW,
            updated_at=NOW,
        )
        self.payments[payment.id] = payment
        return payment


class FakeTransaction:
    """
    Holds row locks the way a database transaction does: `get_for_update`
    blocks while another transaction holds the row, and every lock is
    released when the transaction exits.
    """

    def __init__(self, store: InMemoryStore) -> None:
        self.store = store
        self._held: list[asyncio.Lock] = []
        self.members = FakeMemberRepo(store)
        self.spaces = FakeSpaceRepo(store, self)
        self.bookings = FakeBookingRepo(store, self)
        self.payments = FakePaymentRepo(store)

    async def lock_row(self, table: str, row_id: int) -> None:
        lock = self.store.row_locks.setdefault((table, row_id), asyncio.Lock())
        if lock in self._held:
            return
        await lock.acquire()
        self._held.append(lock)

    async def __aenter__(self) -> "FakeTransaction":
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> bool:
        for lock in reversed(self._held):
            lock.release()
        self._held.clear()
        return False

    @property
    def repos(self) -> tuple["FakeMemberRepo", "FakeSpaceRepo", "FakeBookingRepo"]:
        return self.members, self.spaces, self.bookings

    @property
    def amend_repos(self) -> tuple["FakeMemberRepo", "FakeSpaceRepo", "FakeBookingRepo", "FakePaymentRepo"]:
        return self.members, self.spaces, self.bookings, self.payments


class FakeMemberRepo:
    def __init__(self, store: InMemoryStore) -> None:
        self.store = store

    async def get(self, member_id: int) -> Member | None:
        self.store.journal.append(f"read member {member_id}")
        return self.store.members.get(member_id)

    async def list_all(self) -> list[Member]:
        return list(self.store.members.values())

    async def create(self, **fields: Any) -> Member:
        member = Member(id=next(self.store.ids), joined_at=NOW, created_at=NOW, updated_at=NOW, **fields)
        self.store.members[member.id] = member
        return member

    async def update(self, member: Member) -> Member:
        return member


class FakeSpaceRepo:
    def __init__(self, store: InMemoryStore, tx: FakeTransaction | None = None) -> None:
        self.store = store
        self.tx = tx
        self.locked: list[int] = []

    async def get(self, space_id: int) -> Space | None:
        return self.store.spaces.get(space_id)

    async def get_for_update(self, space_id: int) -> Space | None:
        space = self.store.spaces.get(space_id)
        if space is not None and self.tx is not None:
            await self.tx.lock_row("spaces", space_id)
        self.store.journal.append(f"lock space {space_id}")
        self.locked.append(space_id)
        return space

    async def list_all(self) -> list[Space]:
        return list(self.store.spaces.values())

    async def create(self, **fields: Any) -> Space:
        space = Space(id=next(self.store.ids), created_at=NOW, updated_at=NOW, **fields)
        self.store.spaces[space.id] = space
        return space

    async def update(self, space: Space) -> Space:
        return space


class FakeBookingRepo:
    def __init__(self, store: InMemoryStore, tx: FakeTransaction | None = None) -> None:
        self.store = store
        self.tx = tx
        self.updated: list[int] = []
        self.overlap_queries: list[tuple[int, datetime, datetime, int | None]] = []

    async def get(self, booking_id: int) -> Booking | None:
        return self.store.bookings.get(booking_id)

    async def get_for_update(self, booking_id: int) -> Booking | None:
        booking = self.store.bookings.get(booking_id)
        if booking is not None and self.tx is not None:
            await self.tx.lock_row("bookings", booking_id)
        self.store.journal.append(f"lock booking {booking_id}")
        return booking

    async def get_by_idempotency_key(self, key: str) -> Booking | None:
        return next((b for b in self.store.bookings.values() if b.idempotency_key == key), None)

    async def list_filtered(
        self,
        *,
        space_id: int | None = None,
        member_id: int | None = None,
        status: BookingStatus | None = None,
    ) -> list[Booking]:
        return [
            b
            for b in self.store.bookings.values()
            if (space_id is None or b.space_id == space_id)
            and (member_id is None or b.member_id == member_id)
            and (status is None or b.status == status)
        ]

    async def list_confirmed_overlapping(
        self,
        space_id: int,
        start: datetime,
        end: datetime,
        exclude_booking_id: int | None = None,
    ) -> list[Booking]:
        self.overlap_queries.append((space_id, start, end, exclude_booking_id))
        # Yield so concurrent proposals interleave between the read and the write.
        await asyncio.sleep(0)
        return [
            b
            for b in self.store.bookings.values()
            if b.space_id == space_id
            and b.status == BookingStatus.CONFIRMED
            and b.id != exclude_booking_id
            and b.start_time <= end
            and b.end_time >= start
        ]

    async def create(self, **fields: Any) -> Booking:
        await asyncio.sleep(0)
        booking = Booking(id=next(self.store.ids), created_at=NOW, updated_at=NOW, **fields)
        self.store.bookings[booking.id] = booking
        return booking

    async def update(self, booking: Booking) -> Booking:
        self.updated.append(booking.id)
        self.store.journal.append(f"update booking {booking.id}")
        return booking


class FakePaymentRepo:
    def __init__(self, store: InMemoryStore) -> None:
        self.store = store

    async def get(self, payment_id: int) -> Payment | None:
        return self.store.payments.get(payment_id)

    async def list_all(self) -> list[Payment]:
        return list(self.store.payments.values())

    async def list_by_booking(self, booking_id: int) -> list[Payment]:
        return [p for p in self.store.payments.values() if p.booking_id == booking_id]

    async def has_status(self, booking_id: int, status: PaymentStatus) -> bool:
        return any(p.booking_id == booking_id and p.payment_status == status for p in self.store.payments.values())

    async def create(self, **fields: Any) -> Payment:
        payment = Payment(id=next(self.store.ids), created_at=NOW, updated_at=NOW, **fields)
        self.store.payments[payment.id] = payment
        self.store.journal.append(f"create payment for booking {payment.booking_id}")
        return payment

    async def update(self, payment: Payment) -> Payment:
        return payment


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def make_tx(store: InMemoryStore) -> Any:
    def _make() -> FakeTransaction:
        return FakeTransaction(store)

    return _make
