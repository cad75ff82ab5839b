from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import StrEnum
from typing import Optional

from sqlalchemy import JSON, CheckConstraint, Enum, ForeignKey, Index, Numeric, UniqueConstraint
from sqlalchemy.dialects import mysql
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql.sqltypes import BigInteger, Boolean, DateTime, Integer, String, Text


# Naive UTC with microseconds; plain MySQL DATETIME would round to whole seconds.
INSTANT = DateTime(timezone=False).with_variant(mysql.DATETIME(fsp=6), "mysql")


class Base(DeclarativeBase):
    pass


class UserRole(StrEnum):
    ADMIN = "admin"
    STAFF = "staff"


class MembershipType(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    ANNUAL = "annual"


class SpaceType(StrEnum):
    DESK = "desk"
    PRIVATE_OFFICE = "private_office"
    MEETING_ROOM = "meeting_room"
    CONFERENCE_ROOM = "conference_room"


class SpaceStatus(StrEnum):
    AVAILABLE = "available"
    OCCUPIED = "occupied"
    MAINTENANCE = "maintenance"


class BookingType(StrEnum):
    HOURLY = "hourly"
    DAILY = "daily"


class BookingStatus(StrEnum):
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class PaymentMethod(StrEnum):
    CASH = "cash"
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    BANK_TRANSFER = "bank_transfer"


class PaymentStatus(StrEnum):
    PAID = "paid"
    PENDING = "pending"
    OVERDUE = "overdue"
    REFUNDED = "refunded"


def _enum(enum_cls: type[StrEnum]) -> Enum:
    return Enum(
        enum_cls,
        values_callable=lambda cls: [e.value for e in cls],
        native_enum=False,
    )


class User(Base):
    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("email", name="uq_users_email"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[UserRole] = mapped_column(_enum(UserRole), nullable=False, default=UserRole.STAFF)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(INSTANT, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(INSTANT, nullable=False)


class Member(Base):
    __tablename__ = "members"
    __table_args__ = (UniqueConstraint("email", name="uq_members_email"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str] = mapped_column(String(50), nullable=False)
    membership_type: Mapped[MembershipType] = mapped_column(_enum(MembershipType), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    joined_at: Mapped[datetime] = mapped_column(INSTANT, nullable=False)
    created_at: Mapped[datetime] = mapped_column(INSTANT, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(INSTANT, nullable=False)

    bookings: Mapped[list["Booking"]] = relationship(back_populates="member")


class Space(Base):
    __tablename__ = "spaces"
    __table_args__ = (
        CheckConstraint("capacity >= 1", name="chk_spaces_capacity"),
        CheckConstraint("hourly_rate > 0", name="chk_spaces_hourly_rate"),
        CheckConstraint("daily_rate > 0", name="chk_spaces_daily_rate"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[SpaceType] = mapped_column(_enum(SpaceType), nullable=False)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    hourly_rate: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    daily_rate: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    status: Mapped[SpaceStatus] = mapped_column(
        _enum(SpaceStatus),
        nullable=False,
        default=SpaceStatus.AVAILABLE,
    )
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    amenities: Mapped[Optional[list[str]]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(INSTANT, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(INSTANT, nullable=False)

    bookings: Mapped[list["Booking"]] = relationship(back_populates="space")


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint("start_time < end_time", name="chk_bookings_time"),
        UniqueConstraint("idempotency_key", name="uq_bookings_idempotency_key"),
        Index("idx_bookings_space_status_time", "space_id", "status", "start_time", "end_time"),
        Index("idx_bookings_member", "member_id"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    member_id: Mapped[int] = mapped_column(ForeignKey("members.id"), nullable=False)
    space_id: Mapped[int] = mapped_column(ForeignKey("spaces.id"), nullable=False)
    start_time: Mapped[datetime] = mapped_column(INSTANT, nullable=False)
    end_time: Mapped[datetime] = mapped_column(INSTANT, nullable=False)
    booking_type: Mapped[BookingType] = mapped_column(_enum(BookingType), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    status: Mapped[BookingStatus] = mapped_column(
        _enum(BookingStatus),
        nullable=False,
        default=BookingStatus.CONFIRMED,
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    idempotency_key: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(INSTANT, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(INSTANT, nullable=False)

    member: Mapped["Member"] = relationship(back_populates="bookings")
    space: Mapped["Space"] = relationship(back_populates="bookings")
    payments: Mapped[list["Payment"]] = relationship(back_populates="booking")


class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint("amount > 0", name="chk_payments_amount"),
        Index("idx_payments_booking", "booking_id"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    booking_id: Mapped[int] = mapped_column(ForeignKey("bookings.id"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    payment_method: Mapped[PaymentMethod] = mapped_column(_enum(PaymentMethod), nullable=False)
    payment_status: Mapped[PaymentStatus] = mapped_column(
        _enum(PaymentStatus),
        nullable=False,
        default=PaymentStatus.PENDING,
    )
    payment_date: Mapped[Optional[datetime]] = mapped_column(INSTANT, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(INSTANT, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(INSTANT, nullable=False)

    booking: Mapped["Booking"] = relationship(back_populates="payments")


class ActivityLog(Base):
    __tablename__ = "activity_logs"
    __table_args__ = (Index("idx_activity_logs_timestamp", "timestamp"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(INSTANT, nullable=False)
