from datetime import datetime
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_activity_sink, get_current_user_id, get_session
from ..domain.errors import DomainError
from ..infrastructure.repositories import SqlAlchemySpaceRepository
from ..models import BookingType
from ..schemas import QuoteRead, SpaceCreate, SpaceRead, SpaceUpdate
from ..usecases import bookings as booking_usecase
from ..usecases import spaces as space_usecase
from ..utils.activity_log import ActivitySink
from ..utils.time import utc_naive_to_aware
from .errors import domain_error_to_http, require_utc

router = APIRouter(prefix="/spaces", tags=["spaces"], dependencies=[Depends(get_current_user_id)])


@router.get("", response_model=List[SpaceRead])
async def list_spaces(session: AsyncSession = Depends(get_session)) -> list[SpaceRead]:
    rows = await space_usecase.list_spaces(SqlAlchemySpaceRepository(session))
    return [SpaceRead.from_db(space=space) for space in rows]


@router.post("", response_model=SpaceRead, status_code=status.HTTP_201_CREATED)
async def create_space(
    payload: SpaceCreate,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
    activity: ActivitySink = Depends(get_activity_sink),
) -> SpaceRead:
    space_repo = SqlAlchemySpaceRepository(session)
    try:
        async with session.begin():
            space = await space_usecase.create_space(space_repo, fields=payload.model_dump())
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    await activity.record(
        actor_id=user_id,
        action="CREATE",
        entity_type="space",
        entity_id=space.id,
        details=f"Created space {space.name}",
    )
    return SpaceRead.from_db(space=space)


@router.get("/{space_id}", response_model=SpaceRead)
async def get_space(
    space_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
) -> SpaceRead:
    try:
        space = await space_usecase.get_space(SqlAlchemySpaceRepository(session), space_id=space_id)
    except DomainError as exc:
        raise domain_error_to_http(exc) from exc
    return SpaceRead.from_db(space=space)


@router.patch("/{space_id}", response_model=SpaceRead)
async def update_space(
    payload: SpaceUpdate,
    space_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
    activity: ActivitySink = Depends(get_activity_sink),
) -> SpaceRead:
    space_repo = SqlAlchemySpaceRepository(session)
    try:
        async with session.begin():
            space = await space_usecase.update_space(
                space_repo,
                space_id=space_id,
                changes=payload.changes(),
            )
    except DomainError as exc:
        raise domain_error_to_http(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    await activity.record(
        actor_id=user_id,
        action="UPDATE",
        entity_type="space",
        entity_id=space.id,
        details=f"Updated space {space.name}",
    )
    return SpaceRead.from_db(space=space)


@router.get("/{space_id}/quote", response_model=QuoteRead)
async def quote_space(
    space_id: int = Path(..., ge=1),
    booking_type: BookingType = Query(...),
    start_time: datetime = Query(..., description="start instant (ISO 8601 with offset)"),
    end_time: datetime = Query(..., description="end instant (ISO 8601 with offset)"),
    session: AsyncSession = Depends(get_session),
) -> QuoteRead:
    utc_start = require_utc(start_time, "start_time")
    utc_end = require_utc(end_time, "end_time")
    try:
        total = await booking_usecase.quote_booking(
            SqlAlchemySpaceRepository(session),
            space_id=space_id,
            booking_type=booking_type,
            start_time=utc_start,
            end_time=utc_end,
        )
    except DomainError as exc:
        raise domain_error_to_http(exc) from exc
    return QuoteRead(
        space_id=space_id,
        booking_type=booking_type,
        start_time=utc_naive_to_aware(utc_start),
        end_time=utc_naive_to_aware(utc_end),
        total_amount=total,
    )
