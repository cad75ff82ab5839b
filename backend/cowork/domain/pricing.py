"""Booking price computation.

Amounts are ``Decimal`` end to end. Durations are measured in whole
microseconds so an interval of any length converts to hours without
float rounding.
"""

from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

from ..models import BookingType
from .errors import InvalidIntervalError

CENT = Decimal("0.01")
_MICROSECOND = timedelta(microseconds=1)
_US_PER_HOUR = 3_600_000_000
_US_PER_DAY = 24 * _US_PER_HOUR


def duration_hours(start: datetime, end: datetime) -> Decimal:
    if end <= start:
        raise InvalidIntervalError("end_time must be later than start_time")
    return Decimal((end - start) // _MICROSECOND) / Decimal(_US_PER_HOUR)


def billable_days(start: datetime, end: datetime) -> int:
    """Number of started 24h periods; partial days round up."""
    if end <= start:
        raise InvalidIntervalError("end_time must be later than start_time")
    micros = (end - start) // _MICROSECOND
    return -(-micros // _US_PER_DAY)


def calculate_total_amount(
    *,
    hourly_rate: Decimal,
    daily_rate: Decimal,
    booking_type: BookingType,
    start: datetime,
    end: datetime,
) -> Decimal:
    if booking_type == BookingType.HOURLY:
        amount = duration_hours(start, end) * Decimal(hourly_rate)
    elif booking_type == BookingType.DAILY:
        amount = billable_days(start, end) * Decimal(daily_rate)
    else:
        raise ValueError(f"unsupported booking type: {booking_type!r}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)
