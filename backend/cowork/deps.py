import logging
from typing import AsyncIterator

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .config import get_settings
from .database import async_session
from .models import User, UserRole
from .utils.activity_log import ActivitySink
from .utils.auth import bearer_token, decode_access_token

logger = logging.getLogger(__name__)

_BEARER_CHALLENGE = {"WWW-Authenticate": "Bearer"}


async def get_session() -> AsyncIterator[AsyncSession]:
    async with async_session() as session:
        yield session


def get_activity_sink() -> ActivitySink:
    return ActivitySink(async_session)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail, headers=_BEARER_CHALLENGE)


async def get_current_user_id(
    authorization: str | None = Header(default=None),
    session: AsyncSession = Depends(get_session),
) -> int:
    token = bearer_token(authorization)
    if token is None:
        raise _unauthorized("bearer token required")

    settings = get_settings()
    try:
        user_id = decode_access_token(token, secret=settings.auth_secret, algorithms=[settings.auth_algorithm])
    except ValueError as exc:
        raise _unauthorized("invalid or expired token") from exc

    try:
        found = await session.scalar(select(User.id).where(User.id == user_id, User.is_active.is_(True)))
    except SQLAlchemyError as exc:
        logger.exception("user lookup failed")
        await session.rollback()
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="user lookup failed") from exc
    # End the implicit read transaction so the route can open its own with session.begin().
    await session.rollback()
    if found is None:
        raise _unauthorized("unknown or inactive user")
    return user_id


async def require_admin(
    user_id: int = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> int:
    role = await session.scalar(select(User.role).where(User.id == user_id))
    await session.rollback()
    if role != UserRole.ADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="admin access required")
    return user_id
