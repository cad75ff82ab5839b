from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Literal, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..infrastructure.repositories import SqlAlchemyActivityLogRepository
from .request_id import get_request_id

ActivityAction = Literal["CREATE", "UPDATE"]
EntityType = Literal["member", "space", "booking", "payment"]

logger = logging.getLogger(__name__)

_audit_logger = logging.getLogger("audit")
_audit_logger.setLevel(logging.INFO)
if not _audit_logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    _audit_logger.addHandler(handler)
_audit_logger.propagate = False


def emit_audit_log(
    *,
    actor_id: int,
    action: ActivityAction,
    entity_type: EntityType,
    entity_id: Optional[int],
    details: Optional[str] = None,
    extra: Optional[dict[str, Any]] = None,
) -> None:
    """Emit structured JSON audit log. Raises RuntimeError if logging fails."""
    payload: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": "info",
        "action": action,
        "actor_id": actor_id,
        "request_id": get_request_id(),
        "entity_type": entity_type,
        "entity_id": entity_id,
        "details": details,
    }
    if extra:
        payload.update(extra)

    # Drop None values to keep the log compact.
    compact_payload = {k: v for k, v in payload.items() if v is not None}
    try:
        _audit_logger.info(json.dumps(compact_payload, ensure_ascii=True, default=str))
    except Exception as exc:
        raise RuntimeError("failed to emit audit log") from exc


class ActivitySink:
    """
    Records who changed what, after the change has been committed.

    Recording is best-effort: every failure is logged here and never
    reaches the caller, so a broken activity store cannot undo or fail a
    successful booking. Rows are written in a session of their own.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def record(
        self,
        *,
        actor_id: int,
        action: ActivityAction,
        entity_type: EntityType,
        entity_id: Optional[int],
        details: Optional[str] = None,
        extra: Optional[dict[str, Any]] = None,
    ) -> None:
        try:
            emit_audit_log(
                actor_id=actor_id,
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                details=details,
                extra=extra,
            )
        except RuntimeError:
            logger.exception("audit log emission failed for %s %s %s", action, entity_type, entity_id)

        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await SqlAlchemyActivityLogRepository(session).create(
                        user_id=actor_id,
                        action=action,
                        entity_type=entity_type,
                        entity_id=entity_id,
                        details=details,
                    )
        except Exception:
            logger.exception("failed to store activity %s %s %s", action, entity_type, entity_id)
