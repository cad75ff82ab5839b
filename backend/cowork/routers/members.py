from typing import List

from fastapi import APIRouter, Depends, HTTPException, Path, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_activity_sink, get_current_user_id, get_session
from ..domain.errors import DomainError
from ..infrastructure.repositories import SqlAlchemyMemberRepository
from ..schemas import MemberCreate, MemberRead, MemberUpdate
from ..usecases import members as member_usecase
from ..utils.activity_log import ActivitySink
from .errors import domain_error_to_http

router = APIRouter(prefix="/members", tags=["members"], dependencies=[Depends(get_current_user_id)])


@router.get("", response_model=List[MemberRead])
async def list_members(session: AsyncSession = Depends(get_session)) -> list[MemberRead]:
    rows = await member_usecase.list_members(SqlAlchemyMemberRepository(session))
    return [MemberRead.from_db(member=member) for member in rows]


@router.post("", response_model=MemberRead, status_code=status.HTTP_201_CREATED)
async def create_member(
    payload: MemberCreate,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
    activity: ActivitySink = Depends(get_activity_sink),
) -> MemberRead:
    member_repo = SqlAlchemyMemberRepository(session)
    try:
        async with session.begin():
            member = await member_usecase.create_member(member_repo, fields=payload.model_dump())
    except IntegrityError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="email already registered") from exc

    await activity.record(
        actor_id=user_id,
        action="CREATE",
        entity_type="member",
        entity_id=member.id,
        details=f"Created member {member.full_name}",
    )
    return MemberRead.from_db(member=member)


@router.get("/{member_id}", response_model=MemberRead)
async def get_member(
    member_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
) -> MemberRead:
    try:
        member = await member_usecase.get_member(SqlAlchemyMemberRepository(session), member_id=member_id)
    except DomainError as exc:
        raise domain_error_to_http(exc) from exc
    return MemberRead.from_db(member=member)


@router.patch("/{member_id}", response_model=MemberRead)
async def update_member(
    payload: MemberUpdate,
    member_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
    activity: ActivitySink = Depends(get_activity_sink),
) -> MemberRead:
    member_repo = SqlAlchemyMemberRepository(session)
    try:
        async with session.begin():
            member = await member_usecase.update_member(
                member_repo,
                member_id=member_id,
                changes=payload.changes(),
            )
    except DomainError as exc:
        raise domain_error_to_http(exc) from exc
    except IntegrityError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="email already registered") from exc

    await activity.record(
        actor_id=user_id,
        action="UPDATE",
        entity_type="member",
        entity_id=member.id,
        details=f"Updated member {member.full_name}",
    )
    return MemberRead.from_db(member=member)
