from decimal import Decimal
from typing import Any, Mapping

from ..domain.errors import UnknownSpaceError
from ..domain.repositories import SpaceRepository
from ..models import Space


def _validate_rates(fields: Mapping[str, Any]) -> None:
    for name in ("hourly_rate", "daily_rate"):
        if name in fields and Decimal(fields[name]) <= 0:
            raise ValueError(f"{name} must be positive")


async def list_spaces(space_repo: SpaceRepository) -> list[Space]:
    return await space_repo.list_all()


async def get_space(space_repo: SpaceRepository, *, space_id: int) -> Space:
    space = await space_repo.get(space_id)
    if space is None:
        raise UnknownSpaceError(space_id)
    return space


async def create_space(space_repo: SpaceRepository, *, fields: Mapping[str, Any]) -> Space:
    _validate_rates(fields)
    if fields.get("capacity", 1) < 1:
        raise ValueError("capacity must be >= 1")
    return await space_repo.create(**fields)


async def update_space(space_repo: SpaceRepository, *, space_id: int, changes: Mapping[str, Any]) -> Space:
    """Rate changes apply to future pricing only; existing bookings keep their total."""
    _validate_rates(changes)
    space = await get_space(space_repo, space_id=space_id)
    for field, value in changes.items():
        setattr(space, field, value)
    return await space_repo.update(space)
