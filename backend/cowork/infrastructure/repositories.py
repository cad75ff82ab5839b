from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, List, Optional

from sqlalchemy import Select, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.errors import StorageUnavailableError
from ..domain.repositories import (
    ActivityLogRepository,
    BookingRepository,
    MemberRepository,
    PaymentRepository,
    SpaceRepository,
)
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

logger = logging.getLogger(__name__)


def _utc_now_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SqlAlchemyMemberRepository(MemberRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, member_id: int) -> Member | None:
        return await self.session.get(Member, member_id)

    async def list_all(self) -> List[Member]:
        rows = await self.session.scalars(select(Member).order_by(Member.created_at.desc(), Member.id.desc()))
        return list(rows.all())

    async def create(self, **fields: Any) -> Member:
        now = _utc_now_naive()
        member = Member(joined_at=now, created_at=now, updated_at=now, **fields)
        self.session.add(member)
        await self.session.flush()
        return member

    async def update(self, member: Member) -> Member:
        member.updated_at = _utc_now_naive()
        self.session.add(member)
        await self.session.flush()
        return member


class SqlAlchemySpaceRepository(SpaceRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, space_id: int) -> Space | None:
        return await self.session.get(Space, space_id)

    async def get_for_update(self, space_id: int) -> Space | None:
        try:
            result = await self.session.scalar(select(Space).where(Space.id == space_id).with_for_update())
        except OperationalError as exc:
            logger.warning("space %s lock not acquired: %s", space_id, exc.orig)
            raise StorageUnavailableError(f"space {space_id} is busy, retry later") from exc
        return result if isinstance(result, Space) else None

    async def list_all(self) -> List[Space]:
        rows = await self.session.scalars(select(Space).order_by(Space.created_at.desc(), Space.id.desc()))
        return list(rows.all())

    async def create(self, **fields: Any) -> Space:
        now = _utc_now_naive()
        space = Space(created_at=now, updated_at=now, **fields)
        self.session.add(space)
        await self.session.flush()
        return space

    async def update(self, space: Space) -> Space:
        space.updated_at = _utc_now_naive()
        self.session.add(space)
        await self.session.flush()
        return space


class SqlAlchemyBookingRepository(BookingRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, booking_id: int) -> Booking | None:
        return await self.session.get(Booking, booking_id)

    async def get_for_update(self, booking_id: int) -> Booking | None:
        try:
            result = await self.session.scalar(select(Booking).where(Booking.id == booking_id).with_for_update())
        except OperationalError as exc:
            logger.warning("booking %s lock not acquired: %s", booking_id, exc.orig)
            raise StorageUnavailableError(f"booking {booking_id} is busy, retry later") from exc
        return result if isinstance(result, Booking) else None

    async def get_by_idempotency_key(self, key: str) -> Booking | None:
        return await self.session.scalar(select(Booking).where(Booking.idempotency_key == key))

    async def list_filtered(
        self,
        *,
        space_id: int | None = None,
        member_id: int | None = None,
        status: BookingStatus | None = None,
    ) -> List[Booking]:
        stmt: Select[tuple[Booking]] = select(Booking).order_by(Booking.created_at.desc(), Booking.id.desc())
        if space_id is not None:
            stmt = stmt.where(Booking.space_id == space_id)
        if member_id is not None:
            stmt = stmt.where(Booking.member_id == member_id)
        if status is not None:
            stmt = stmt.where(Booking.status == status)
        rows = await self.session.scalars(stmt)
        return list(rows.all())

    async def list_confirmed_overlapping(
        self,
        space_id: int,
        start: datetime,
        end: datetime,
        exclude_booking_id: int | None = None,
    ) -> List[Booking]:
        # Inclusive bounds: touching endpoints count as overlap.
        stmt: Select[tuple[Booking]] = select(Booking).where(
            Booking.space_id == space_id,
            Booking.status == BookingStatus.CONFIRMED,
            Booking.start_time <= end,
            Booking.end_time >= start,
        )
        if exclude_booking_id is not None:
            stmt = stmt.where(Booking.id != exclude_booking_id)
        rows = await self.session.scalars(stmt.order_by(Booking.start_time))
        return list(rows.all())

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
    ) -> Booking:
        now = _utc_now_naive()
        booking = Booking(
            member_id=member_id,
            space_id=space_id,
            start_time=start_time,
            end_time=end_time,
            booking_type=booking_type,
            total_amount=total_amount,
            status=status,
            notes=notes,
            idempotency_key=idempotency_key,
            created_at=now,
            updated_at=now,
        )
        self.session.add(booking)
        await self.session.flush()
        return booking

    async def update(self, booking: Booking) -> Booking:
        booking.updated_at = _utc_now_naive()
        self.session.add(booking)
        await self.session.flush()
        return booking


class SqlAlchemyPaymentRepository(PaymentRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, payment_id: int) -> Payment | None:
        return await self.session.get(Payment, payment_id)

    async def list_all(self) -> List[Payment]:
        rows = await self.session.scalars(select(Payment).order_by(Payment.created_at.desc(), Payment.id.desc()))
        return list(rows.all())

    async def list_by_booking(self, booking_id: int) -> List[Payment]:
        rows = await self.session.scalars(
            select(Payment).where(Payment.booking_id == booking_id).order_by(Payment.created_at)
        )
        return list(rows.all())

    async def has_status(self, booking_id: int, status: PaymentStatus) -> bool:
        stmt = select(Payment.id).where(Payment.booking_id == booking_id, Payment.payment_status == status).limit(1)
        return await self.session.scalar(stmt) is not None

    async def create(
        self,
        *,
        booking_id: int,
        amount: Decimal,
        payment_method: PaymentMethod,
        payment_status: PaymentStatus,
        payment_date: datetime | None,
        notes: str | None,
    ) -> Payment:
        now = _utc_now_naive()
        payment = Payment(
            booking_id=booking_id,
            amount=amount,
            payment_method=payment_method,
            payment_status=payment_status,
            payment_date=payment_date,
            notes=notes,
            created_at=now,
            updated_at=now,
        )
        self.session.add(payment)
        await self.session.flush()
        return payment

    async def update(self, payment: Payment) -> Payment:
        payment.updated_at = _utc_now_naive()
        self.session.add(payment)
        await self.session.flush()
        return payment


class SqlAlchemyActivityLogRepository(ActivityLogRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(
        self,
        *,
        user_id: int,
        action: str,
        entity_type: str,
        entity_id: Optional[int],
        details: Optional[str],
    ) -> ActivityLog:
        log = ActivityLog(
            user_id=user_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            details=details,
            timestamp=_utc_now_naive(),
        )
        self.session.add(log)
        await self.session.flush()
        return log

    async def list_recent(self, limit: int) -> List[ActivityLog]:
        rows = await self.session.scalars(
            select(ActivityLog).order_by(ActivityLog.timestamp.desc(), ActivityLog.id.desc()).limit(limit)
        )
        return list(rows.all())
