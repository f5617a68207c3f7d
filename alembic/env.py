from __future__ import annotations

import asyncio
import logging
import os
from logging.config import fileConfig
from typing import Any

from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.engine.url import make_url
from sqlalchemy.ext.asyncio import create_async_engine

from alembic import context

from app.core.config import get_settings
from app.models.base import Base, ensure_models_loaded

# =============================================================================
# Alembic config и логирование
# =============================================================================
config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = logging.getLogger("alembic.env")

ensure_models_loaded()
target_metadata = Base.metadata


# =============================================================================
# Определение URL БД
# =============================================================================
def get_database_url() -> str:
    """
    Приоритет:
      1) ALEMBIC_DATABASE_URL
      2) Settings.sqlalchemy_async_url (DATABASE_URL или локальный sqlite)
    """
    url = (os.getenv("ALEMBIC_DATABASE_URL") or "").strip()
    if url:
        return url
    return get_settings().sqlalchemy_async_url


def _detect_sqlite(url: str) -> bool:
    return make_url(url).get_backend_name().startswith("sqlite")


def make_context_kwargs(url: str, connection: Connection | None = None) -> dict[str, Any]:
    kwargs: dict[str, Any] = {
        "target_metadata": target_metadata,
        "compare_type": True,
        "compare_server_default": True,
        # ALTER TABLE в sqlite ограничен, нужен batch-режим
        "render_as_batch": _detect_sqlite(url),
    }
    if connection is not None:
        kwargs["connection"] = connection
    return kwargs


def process_revision_directives(context_: Any, revision: Any, directives: list[Any]) -> None:
    """Удаляем «пустые» ревизии при autogenerate."""
    if getattr(config.cmd_opts, "autogenerate", False):
        script = directives[0]
        if script.upgrade_ops.is_empty():
            directives[:] = []
            logger.info("No schema changes detected; skipping empty revision.")


# =============================================================================
# Offline
# =============================================================================
def run_migrations_offline() -> None:
    url = get_database_url()
    context.configure(
        url=url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        process_revision_directives=process_revision_directives,
        **make_context_kwargs(url),
    )
    with context.begin_transaction():
        context.run_migrations()


# =============================================================================
# Online (async engine: asyncpg / aiosqlite)
# =============================================================================
def _run_migrations_sync(connection: Connection, url: str) -> None:
    context.configure(
        process_revision_directives=process_revision_directives,
        **make_context_kwargs(url, connection),
    )
    with context.begin_transaction():
        context.run_migrations()


async def _run_migrations_async(url: str) -> None:
    engine = create_async_engine(url, poolclass=pool.NullPool)
    try:
        async with engine.connect() as connection:
            logger.info("Connected to database: %s", make_url(url).render_as_string(hide_password=True))
            await connection.run_sync(_run_migrations_sync, url)
            await connection.commit()
    finally:
        await engine.dispose()


def run_migrations_online() -> None:
    asyncio.run(_run_migrations_async(get_database_url()))


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
