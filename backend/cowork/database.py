from typing import Any

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from .config import get_settings

settings = get_settings()


def _engine_options(database_url: str, lock_wait_timeout_seconds: int) -> dict[str, Any]:
    options: dict[str, Any] = {}
    if make_url(database_url).get_backend_name() == "mysql":
        # Every statement after the space lock must see rows committed while we waited for it.
        options["isolation_level"] = "READ COMMITTED"
        # Bounds how long a booking request waits on another request's space lock.
        options["connect_args"] = {
            "init_command": f"SET SESSION innodb_lock_wait_timeout = {int(lock_wait_timeout_seconds)}"
        }
    return options


engine = create_async_engine(
    settings.database_url,
    echo=settings.echo_sql,
    pool_pre_ping=True,
    pool_recycle=3600,
    **_engine_options(settings.database_url, settings.lock_wait_timeout_seconds),
)

async_session = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
