# app/core/db.py
"""
Database engine and session management (async).

- Lazy engine creation: no connections at import time.
- URL comes from settings.sqlalchemy_async_url (postgresql+asyncpg or sqlite+aiosqlite).
- get_db(): FastAPI dependency yielding an AsyncSession.
- init_db_async()/close_db_async()/health_check_db_async() for the app lifespan.
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Optional

from sqlalchemy import event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.core.config import settings
from app.core.logging import get_logger
from app.models import Base

logger = get_logger(__name__)

_ASYNC_ENGINE: Optional[AsyncEngine] = None
_ASYNC_SESSION_MAKER: Optional[async_sessionmaker[AsyncSession]] = None


def install_sqlite_pragmas(engine: AsyncEngine) -> None:
    """
    pysqlite по умолчанию сам управляет транзакциями и ломает SAVEPOINT.
    Отдаём BEGIN под контроль SQLAlchemy и включаем внешние ключи.
    """
    sync_engine = engine.sync_engine

    @event.listens_for(sync_engine, "connect")
    def _on_connect(dbapi_connection, _record):  # pragma: no cover - driver hook
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(sync_engine, "begin")
    def _on_begin(conn):  # pragma: no cover - driver hook
        conn.exec_driver_sql("BEGIN")


def _get_async_engine() -> AsyncEngine:
    """Создаёт и кэширует async engine лениво (без подключения)."""
    global _ASYNC_ENGINE, _ASYNC_SESSION_MAKER
    if _ASYNC_ENGINE is not None:
        return _ASYNC_ENGINE

    url = settings.sqlalchemy_async_url
    _ASYNC_ENGINE = create_async_engine(url, **settings.sqlalchemy_engine_options_effective())
    if _ASYNC_ENGINE.dialect.name == "sqlite":
        install_sqlite_pragmas(_ASYNC_ENGINE)
    _ASYNC_SESSION_MAKER = async_sessionmaker(
        bind=_ASYNC_ENGINE,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    logger.info("db_engine_created", dialect=_ASYNC_ENGINE.dialect.name)
    return _ASYNC_ENGINE


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    _get_async_engine()
    assert _ASYNC_SESSION_MAKER is not None
    return _ASYNC_SESSION_MAKER


async def get_db() -> AsyncIterator[AsyncSession]:
    """
    FastAPI dependency (async).
    Создаёт сессию при входе и закрывает при выходе.
    """
    session = get_sessionmaker()()
    try:
        yield session
    finally:
        await session.close()


async def init_db_async(drop_all: bool = False) -> None:
    eng = _get_async_engine()
    async with eng.begin() as conn:
        if drop_all:
            await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)


async def close_db_async() -> None:
    global _ASYNC_ENGINE, _ASYNC_SESSION_MAKER
    if _ASYNC_ENGINE is not None:
        await _ASYNC_ENGINE.dispose()
    _ASYNC_ENGINE = None
    _ASYNC_SESSION_MAKER = None


async def health_check_db_async(timeout_seconds: int = 2) -> dict:
    eng = _get_async_engine()
    try:
        async with eng.connect() as conn:
            await asyncio.wait_for(conn.execute(text("SELECT 1")), timeout=timeout_seconds)
        return {"ok": True, "dialect": eng.dialect.name}
    except (SQLAlchemyError, asyncio.TimeoutError, OSError) as e:
        logger.warning("db_health_check_failed", error=str(e))
        return {"ok": False, "dialect": eng.dialect.name, "error": str(e)}


__all__ = [
    "get_db",
    "get_sessionmaker",
    "init_db_async",
    "close_db_async",
    "health_check_db_async",
    "install_sqlite_pragmas",
]
