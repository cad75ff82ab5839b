from datetime import datetime, timezone, timedelta
from decimal import Decimal
from typing import Any

import pytest
from cowork.domain.errors import StorageUnavailableError
from cowork.models import BookingStatus, BookingType
from cowork.routers import bookings as bookings_router
from cowork.schemas import BookingCreate, BookingUpdate
from cowork.utils.activity_log import ActivitySink
from fastapi import HTTPException, Response
from sqlalchemy.exc import IntegrityError, OperationalError

UTC = timezone.utc


class DummySession:
    """Stands in for AsyncSession; begin() is the in-memory transaction."""

    def __init__(self, tx: Any) -> None:
        self.tx = tx

    def begin(self) -> Any:
        return self.tx


class RecordingSink:
    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []

    async def record(self, **kwargs: Any) -> None:
        self.calls.append(kwargs)


@pytest.fixture
def wire_repos(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(bookings_router, "SqlAlchemyMemberRepository", lambda session: session.tx.members)
    monkeypatch.setattr(bookings_router, "SqlAlchemySpaceRepository", lambda session: session.tx.spaces)
    monkeypatch.setattr(bookings_router, "SqlAlchemyBookingRepository", lambda session: session.tx.bookings)
    monkeypatch.setattr(bookings_router, "SqlAlchemyPaymentRepository", lambda session: session.tx.payments)


def _payload(member_id: int, space_id: int, start_hour: int, end_hour: int, **kwargs: Any) -> BookingCreate:
    return BookingCreate(
        member_id=member_id,
        space_id=space_id,
        start_time=datetime(2025, 3, 10, start_hour, tzinfo=UTC),
        end_time=datetime(2025, 3, 10, end_hour, tzinfo=UTC),
        booking_type=BookingType.HOURLY,
        **kwargs,
    )


async def _create(make_tx: Any, payload: BookingCreate, sink: Any, idempotency_key: str | None = None) -> tuple[Any, Response]:
    response = Response()
    # FastAPI hands routes a sub-response with no status until one is set.
    response.status_code = None  # type: ignore[assignment]
    result = await bookings_router.create_booking(
        payload,
        response,
        idempotency_key=idempotency_key,
        session=DummySession(make_tx()),  # type: ignore[arg-type]
        user_id=42,
        activity=sink,
    )
    return result, response


@pytest.mark.asyncio
async def test_create_booking_returns_priced_booking_and_records_activity(store, make_tx, wire_repos) -> None:
    member = store.add_member()
    space = store.add_space(hourly_rate="12.50")
    sink = RecordingSink()

    result, response = await _create(make_tx, _payload(member.id, space.id, 10, 12), sink)

    assert result.status == BookingStatus.CONFIRMED
    assert result.total_amount == Decimal("25.00")
    assert result.start_time == datetime(2025, 3, 10, 10, tzinfo=UTC)
    assert response.status_code is None
    assert len(sink.calls) == 1
    assert sink.calls[0]["actor_id"] == 42
    assert sink.calls[0]["action"] == "CREATE"
    assert sink.calls[0]["entity_id"] == result.booking_id


@pytest.mark.asyncio
async def test_create_booking_converts_offsets_to_utc(store, make_tx, wire_repos) -> None:
    member = store.add_member()
    space = store.add_space()
    plus_two = timezone(timedelta(hours=2))
    payload = BookingCreate(
        member_id=member.id,
        space_id=space.id,
        start_time=datetime(2025, 3, 10, 12, tzinfo=plus_two),
        end_time=datetime(2025, 3, 10, 13, tzinfo=plus_two),
        booking_type=BookingType.HOURLY,
    )

    result, _ = await _create(make_tx, payload, RecordingSink())

    stored = store.bookings[result.booking_id]
    assert stored.start_time == datetime(2025, 3, 10, 10)


@pytest.mark.asyncio
async def test_create_booking_conflict_lists_blocking_ids(store, make_tx, wire_repos) -> None:
    member = store.add_member()
    space = store.add_space()
    first, _ = await _create(make_tx, _payload(member.id, space.id, 10, 12), RecordingSink())
    sink = RecordingSink()

    with pytest.raises(HTTPException) as excinfo:
        await _create(make_tx, _payload(member.id, space.id, 12, 13), sink)

    assert excinfo.value.status_code == 409
    assert excinfo.value.detail["conflicting_booking_ids"] == [first.booking_id]
    assert sink.calls == []


@pytest.mark.asyncio
async def test_create_booking_replay_returns_200_without_new_activity(store, make_tx, wire_repos) -> None:
    member = store.add_member()
    space = store.add_space()
    payload = _payload(member.id, space.id, 9, 10)
    first, _ = await _create(make_tx, payload, RecordingSink(), idempotency_key="desk-req-1")
    sink = RecordingSink()

    replay, response = await _create(make_tx, payload, sink, idempotency_key="desk-req-1")

    assert replay.booking_id == first.booking_id
    assert response.status_code == 200
    assert sink.calls == []
    assert len(store.bookings) == 1


@pytest.mark.asyncio
async def test_create_booking_key_reuse_is_422(store, make_tx, wire_repos) -> None:
    member = store.add_member()
    space = store.add_space()
    await _create(make_tx, _payload(member.id, space.id, 9, 10), RecordingSink(), idempotency_key="desk-req-2")

    with pytest.raises(HTTPException) as excinfo:
        await _create(make_tx, _payload(member.id, space.id, 14, 15), RecordingSink(), idempotency_key="desk-req-2")
    assert excinfo.value.status_code == 422


@pytest.mark.asyncio
async def test_create_booking_rejects_naive_datetimes(store, make_tx, wire_repos) -> None:
    payload = BookingCreate(
        member_id=1,
        space_id=2,
        start_time=datetime(2025, 3, 10, 10),
        end_time=datetime(2025, 3, 10, 11),
        booking_type=BookingType.HOURLY,
    )
    with pytest.raises(HTTPException) as excinfo:
        await _create(make_tx, payload, RecordingSink())
    assert excinfo.value.status_code == 400


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "failure",
    [
        StorageUnavailableError("lock wait timeout exceeded"),
        OperationalError("SELECT ... FOR UPDATE", None, Exception("connection lost")),
    ],
)
async def test_create_booking_storage_failure_is_retryable_503(store, make_tx, wire_repos, monkeypatch, failure) -> None:
    member = store.add_member()
    space = store.add_space()

    async def failing_lock(self: Any, space_id: int) -> Any:
        raise failure

    monkeypatch.setattr(type(make_tx().spaces), "get_for_update", failing_lock)

    with pytest.raises(HTTPException) as excinfo:
        await _create(make_tx, _payload(member.id, space.id, 10, 11), RecordingSink())
    assert excinfo.value.status_code == 503
    assert excinfo.value.headers["Retry-After"] == "1"
    assert store.bookings == {}


@pytest.mark.asyncio
async def test_create_booking_survives_broken_activity_store(store, make_tx, wire_repos) -> None:
    member = store.add_member()
    space = store.add_space()

    def broken_factory() -> Any:
        raise ConnectionError("activity database unavailable")

    result, _ = await _create(make_tx, _payload(member.id, space.id, 10, 11), ActivitySink(broken_factory))  # type: ignore[arg-type]

    assert result.booking_id in store.bookings


@pytest.mark.asyncio
async def test_amend_records_changed_fields(store, make_tx, wire_repos) -> None:
    member = store.add_member()
    space = store.add_space()
    booking = store.add_booking(
        space=space, member=member, start=datetime(2025, 3, 10, 10), end=datetime(2025, 3, 10, 11)
    )
    sink = RecordingSink()

    result = await bookings_router.amend_booking(
        BookingUpdate(end_time=datetime(2025, 3, 10, 12, tzinfo=UTC)),
        booking_id=booking.id,
        session=DummySession(make_tx()),  # type: ignore[arg-type]
        user_id=42,
        activity=sink,
    )

    assert result.end_time == datetime(2025, 3, 10, 12, tzinfo=UTC)
    assert result.total_amount == Decimal("20.00")
    assert sink.calls[0]["extra"] == {"fields": ["end_time"]}


@pytest.mark.asyncio
async def test_amend_unchanged_booking_records_nothing(store, make_tx, wire_repos) -> None:
    member = store.add_member()
    space = store.add_space()
    booking = store.add_booking(
        space=space, member=member, start=datetime(2025, 3, 10, 10), end=datetime(2025, 3, 10, 11)
    )
    sink = RecordingSink()

    await bookings_router.amend_booking(
        BookingUpdate(start_time=datetime(2025, 3, 10, 10, tzinfo=UTC)),
        booking_id=booking.id,
        session=DummySession(make_tx()),  # type: ignore[arg-type]
        user_id=42,
        activity=sink,
    )
    assert sink.calls == []


@pytest.mark.asyncio
async def test_cancel_twice_records_once(store, make_tx, wire_repos) -> None:
    member = store.add_member()
    space = store.add_space()
    booking = store.add_booking(
        space=space, member=member, start=datetime(2025, 3, 10, 10), end=datetime(2025, 3, 10, 11)
    )
    sink = RecordingSink()

    for _ in range(2):
        result = await bookings_router.cancel_booking(
            booking_id=booking.id,
            session=DummySession(make_tx()),  # type: ignore[arg-type]
            user_id=42,
            activity=sink,
        )
        assert result.status == BookingStatus.CANCELLED
    assert len(sink.calls) == 1


@pytest.mark.asyncio
async def test_cancel_missing_booking_is_404(store, make_tx, wire_repos) -> None:
    with pytest.raises(HTTPException) as excinfo:
        await bookings_router.cancel_booking(
            booking_id=999,
            session=DummySession(make_tx()),  # type: ignore[arg-type]
            user_id=42,
            activity=RecordingSink(),
        )
    assert excinfo.value.status_code == 404


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "db_error,expected_status",
    [
        ("(1062, \"Duplicate entry 'desk-req-9' for key 'bookings.uq_bookings_idempotency_key'\")", 409),
        ("(3819, \"Check constraint 'chk_bookings_time' is violated.\")", 400),
        ("(1452, 'Cannot add or update a child row: a foreign key constraint fails')", 400),
    ],
)
async def test_create_booking_integrity_errors_are_told_apart(
    store, make_tx, wire_repos, monkeypatch, db_error, expected_status
) -> None:
    member = store.add_member()
    space = store.add_space()

    async def failing_insert(self: Any, **fields: Any) -> Any:
        raise IntegrityError("INSERT INTO bookings ...", None, Exception(db_error))

    monkeypatch.setattr(type(make_tx().bookings), "create", failing_insert)

    with pytest.raises(HTTPException) as excinfo:
        await _create(make_tx, _payload(member.id, space.id, 10, 11), RecordingSink(), idempotency_key="desk-req-9")
    assert excinfo.value.status_code == expected_status
