# botqueue/db.py
from __future__ import annotations

import os
import pathlib
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncEngine,
    async_sessionmaker,
    AsyncSession,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from botqueue.config import settings

logger = logging.getLogger("uvicorn.error")

_engine: Optional[AsyncEngine] = None
_sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None
_dsn_override: Optional[str] = None


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    """Naive UTC timestamp; every datetime column in this service is naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _resolve_dsn() -> str:
    """
    Prefer an explicit override (tests), then settings.DATABASE_URL,
    then env var DATABASE_URL, else a local SQLite database under ./data/.
    """
    dsn = (
        _dsn_override
        or getattr(settings, "DATABASE_URL", None)
        or os.getenv("DATABASE_URL")
        or "sqlite+aiosqlite:///./data/botqueue.db"
    )

    # If using SQLite, make sure the folder exists so SQLAlchemy can create the file.
    if dsn.startswith("sqlite"):
        try:
            sep = "///" if "///" in dsn else "//"
            path_part = dsn.split(sep, 1)[1] if sep in dsn else ""
            if path_part:
                path = pathlib.Path(path_part).resolve()
                path.parent.mkdir(parents=True, exist_ok=True)
        except Exception as e:
            logger.warning("[DB] Could not ensure SQLite directory exists: %s", e)

    return dsn


def get_engine() -> AsyncEngine:
    """
    Lazily create a global AsyncEngine and sessionmaker.
    """
    global _engine, _sessionmaker
    if _engine is None:
        dsn = _resolve_dsn()
        kwargs = {"echo": settings.DB_ECHO, "pool_pre_ping": True}
        if dsn.startswith("sqlite"):
            # each trigger may run on its own event loop; don't keep aiosqlite
            # connections around between them
            kwargs["poolclass"] = NullPool
        _engine = create_async_engine(dsn, **kwargs)
        _sessionmaker = async_sessionmaker(_engine, expire_on_commit=False)
        logger.info("[DB] engine initialized for %s", dsn.split("@")[-1])
    return _engine


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    """
    Get the global async session factory.
    """
    if _sessionmaker is None:
        get_engine()
    return _sessionmaker  # type: ignore[return-value]


async def configure_engine(dsn: Optional[str]) -> None:
    """Drop the current engine and point the next get_engine() at `dsn`."""
    global _engine, _sessionmaker, _dsn_override
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _sessionmaker = None
    _dsn_override = dsn


async def init_db() -> None:
    """
    Create tables for the job store, bot scheduling state and content buffer.
    """
    # register models on Base.metadata
    from botqueue.models import bots, jobs  # noqa: F401

    eng = get_engine()
    try:
        async with eng.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    except Exception as e:
        logger.error("[DB] initial connect failed: %s", e)
        raise
