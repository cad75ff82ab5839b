from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..deps import get_session, require_admin
from ..infrastructure.repositories import SqlAlchemyActivityLogRepository
from ..schemas import ActivityLogRead

router = APIRouter(prefix="/activity-logs", tags=["activity"], dependencies=[Depends(require_admin)])


@router.get("", response_model=List[ActivityLogRead])
async def list_recent_activity(
    limit: Optional[int] = Query(default=None, ge=1, le=500),
    session: AsyncSession = Depends(get_session),
) -> list[ActivityLogRead]:
    repo = SqlAlchemyActivityLogRepository(session)
    rows = await repo.list_recent(limit or get_settings().activity_log_default_limit)
    return [ActivityLogRead.from_db(log=log) for log in rows]
