"""Database engine and async session factory for workspace settings."""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from psi_agenda.config import get_settings
from psi_agenda.core.models import Base

logger = logging.getLogger(__name__)


def get_database_url() -> str:
    return get_settings().database_url


def _ensure_sqlite_directory(url: str) -> None:
    """SQLite will not create missing parent directories for a file database."""
    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite" or parsed.database in (None, "", ":memory:"):
        return
    Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)


@lru_cache
def _get_engine():
    url = get_database_url()
    _ensure_sqlite_directory(url)
    return create_async_engine(url, pool_pre_ping=True, echo=False)


@lru_cache
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(_get_engine(), class_=AsyncSession, expire_on_commit=False)


async def init_db() -> None:
    """Create the settings table if it does not exist."""
    engine = _get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Workspace settings store ready at %s", engine.url.render_as_string(hide_password=True))


async def close_db() -> None:
    """Dispose of pooled connections."""
    await _get_engine().dispose()
