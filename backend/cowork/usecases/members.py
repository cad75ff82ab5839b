from typing import Any, Mapping

from ..domain.errors import NotFoundError
from ..domain.repositories import MemberRepository
from ..models import Member


async def list_members(member_repo: MemberRepository) -> list[Member]:
    return await member_repo.list_all()


async def get_member(member_repo: MemberRepository, *, member_id: int) -> Member:
    member = await member_repo.get(member_id)
    if member is None:
        raise NotFoundError("member", member_id)
    return member


async def create_member(member_repo: MemberRepository, *, fields: Mapping[str, Any]) -> Member:
    return await member_repo.create(**fields)


async def update_member(member_repo: MemberRepository, *, member_id: int, changes: Mapping[str, Any]) -> Member:
    member = await get_member(member_repo, member_id=member_id)
    for field, value in changes.items():
        setattr(member, field, value)
    return await member_repo.update(member)
