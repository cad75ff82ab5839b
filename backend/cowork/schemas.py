from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, ClassVar, Optional

from pydantic import BaseModel, Field, field_serializer

from .domain.pricing import CENT
from .models import (
    ActivityLog,
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
from .utils.time import utc_naive_to_aware

_EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


def _money(value: Decimal) -> str:
    return str(Decimal(value).quantize(CENT))


def _iso_utc(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat()


class PartialUpdate(BaseModel):
    """PATCH body. Only fields the client sent are applied; null clears nullable columns only."""

    nullable_fields: ClassVar[frozenset[str]] = frozenset()

    def changes(self) -> dict[str, Any]:
        sent = self.model_dump(exclude_unset=True)
        return {k: v for k, v in sent.items() if v is not None or k in self.nullable_fields}


class MemberCreate(BaseModel):
    full_name: str = Field(min_length=2, max_length=255)
    email: str = Field(pattern=_EMAIL_PATTERN, max_length=255)
    phone: str = Field(min_length=10, max_length=50)
    membership_type: MembershipType
    is_active: bool = True


class MemberUpdate(PartialUpdate):
    full_name: Optional[str] = Field(default=None, min_length=2, max_length=255)
    email: Optional[str] = Field(default=None, pattern=_EMAIL_PATTERN, max_length=255)
    phone: Optional[str] = Field(default=None, min_length=10, max_length=50)
    membership_type: Optional[MembershipType] = None
    is_active: Optional[bool] = None


class MemberRead(BaseModel):
    member_id: int
    full_name: str
    email: str
    phone: str
    membership_type: MembershipType
    is_active: bool
    joined_at: datetime

    @field_serializer("joined_at")
    def _ser_datetime(self, dt: datetime) -> str:
        return _iso_utc(dt)

    @classmethod
    def from_db(cls, *, member: Member) -> "MemberRead":
        return cls(
            member_id=member.id,
            full_name=member.full_name,
            email=member.email,
            phone=member.phone,
            membership_type=member.membership_type,
            is_active=member.is_active,
            joined_at=utc_naive_to_aware(member.joined_at),
        )


class SpaceCreate(BaseModel):
    name: str = Field(min_length=2, max_length=255)
    type: SpaceType
    capacity: int = Field(ge=1)
    hourly_rate: Decimal = Field(gt=0, max_digits=10, decimal_places=2)
    daily_rate: Decimal = Field(gt=0, max_digits=10, decimal_places=2)
    status: SpaceStatus = SpaceStatus.AVAILABLE
    description: Optional[str] = None
    amenities: Optional[list[str]] = None


class SpaceUpdate(PartialUpdate):
    nullable_fields: ClassVar[frozenset[str]] = frozenset({"description", "amenities"})

    name: Optional[str] = Field(default=None, min_length=2, max_length=255)
    type: Optional[SpaceType] = None
    capacity: Optional[int] = Field(default=None, ge=1)
    hourly_rate: Optional[Decimal] = Field(default=None, gt=0, max_digits=10, decimal_places=2)
    daily_rate: Optional[Decimal] = Field(default=None, gt=0, max_digits=10, decimal_places=2)
    status: Optional[SpaceStatus] = None
    description: Optional[str] = None
    amenities: Optional[list[str]] = None


class SpaceRead(BaseModel):
    space_id: int
    name: str
    type: SpaceType
    capacity: int
    hourly_rate: Decimal
    daily_rate: Decimal
    status: SpaceStatus
    description: Optional[str]
    amenities: list[str]

    @field_serializer("hourly_rate", "daily_rate")
    def _ser_money(self, value: Decimal) -> str:
        return _money(value)

    @classmethod
    def from_db(cls, *, space: Space) -> "SpaceRead":
        return cls(
            space_id=space.id,
            name=space.name,
            type=space.type,
            capacity=space.capacity,
            hourly_rate=space.hourly_rate,
            daily_rate=space.daily_rate,
            status=space.status,
            description=space.description,
            amenities=list(space.amenities or []),
        )


class QuoteRead(BaseModel):
    space_id: int
    booking_type: BookingType
    start_time: datetime
    end_time: datetime
    total_amount: Decimal

    @field_serializer("start_time", "end_time")
    def _ser_datetime(self, dt: datetime) -> str:
        return _iso_utc(dt)

    @field_serializer("total_amount")
    def _ser_money(self, value: Decimal) -> str:
        return _money(value)


class BookingCreate(BaseModel):
    member_id: int = Field(ge=1)
    space_id: int = Field(ge=1)
    start_time: datetime
    end_time: datetime
    booking_type: BookingType
    notes: Optional[str] = None


class BookingUpdate(PartialUpdate):
    nullable_fields: ClassVar[frozenset[str]] = frozenset({"notes"})

    member_id: Optional[int] = Field(default=None, ge=1)
    space_id: Optional[int] = Field(default=None, ge=1)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    booking_type: Optional[BookingType] = None
    status: Optional[BookingStatus] = None
    notes: Optional[str] = None


class BookingRead(BaseModel):
    booking_id: int
    member_id: int
    space_id: int
    start_time: datetime
    end_time: datetime
    booking_type: BookingType
    total_amount: Decimal
    status: BookingStatus
    notes: Optional[str]

    @field_serializer("start_time", "end_time")
    def _ser_datetime(self, dt: datetime) -> str:
        return _iso_utc(dt)

    @field_serializer("total_amount")
    def _ser_money(self, value: Decimal) -> str:
        return _money(value)

    @classmethod
    def from_db(cls, *, booking: Booking) -> "BookingRead":
        return cls(
            booking_id=booking.id,
            member_id=booking.member_id,
            space_id=booking.space_id,
            start_time=utc_naive_to_aware(booking.start_time),
            end_time=utc_naive_to_aware(booking.end_time),
            booking_type=booking.booking_type,
            total_amount=booking.total_amount,
            status=booking.status,
            notes=booking.notes,
        )


class PaymentCreate(BaseModel):
    booking_id: int = Field(ge=1)
    amount: Decimal = Field(gt=0, max_digits=10, decimal_places=2)
    payment_method: PaymentMethod
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_date: Optional[datetime] = None
    notes: Optional[str] = None


class PaymentUpdate(PartialUpdate):
    nullable_fields: ClassVar[frozenset[str]] = frozenset({"payment_date", "notes"})

    amount: Optional[Decimal] = Field(default=None, gt=0, max_digits=10, decimal_places=2)
    payment_method: Optional[PaymentMethod] = None
    payment_status: Optional[PaymentStatus] = None
    payment_date: Optional[datetime] = None
    notes: Optional[str] = None


class PaymentRead(BaseModel):
    payment_id: int
    booking_id: int
    amount: Decimal
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    payment_date: Optional[datetime]
    notes: Optional[str]

    @field_serializer("payment_date")
    def _ser_datetime(self, dt: Optional[datetime]) -> Optional[str]:
        return _iso_utc(dt) if dt is not None else None

    @field_serializer("amount")
    def _ser_money(self, value: Decimal) -> str:
        return _money(value)

    @classmethod
    def from_db(cls, *, payment: Payment) -> "PaymentRead":
        return cls(
            payment_id=payment.id,
            booking_id=payment.booking_id,
            amount=payment.amount,
            payment_method=payment.payment_method,
            payment_status=payment.payment_status,
            payment_date=utc_naive_to_aware(payment.payment_date) if payment.payment_date else None,
            notes=payment.notes,
        )


class ActivityLogRead(BaseModel):
    activity_id: int
    user_id: int
    action: str
    entity_type: str
    entity_id: Optional[int]
    details: Optional[str]
    timestamp: datetime

    @field_serializer("timestamp")
    def _ser_datetime(self, dt: datetime) -> str:
        return _iso_utc(dt)

    @classmethod
    def from_db(cls, *, log: ActivityLog) -> "ActivityLogRead":
        return cls(
            activity_id=log.id,
            user_id=log.user_id,
            action=log.action,
            entity_type=log.entity_type,
            entity_id=log.entity_id,
            details=log.details,
            timestamp=utc_naive_to_aware(log.timestamp),
        )
