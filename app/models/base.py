# app/models/base.py
"""
Base model with common fields and async helpers (SQLAlchemy 2.x, DeclarativeBase).

- Base с naming conventions (единые имена ограничений/индексов для alembic).
- BaseModel: int id + created_at/updated_at (naive UTC).
- Блокировки: SELECT ... FOR UPDATE и advisory locks (pg_advisory_xact_lock).
  На SQLite (тесты) advisory-lock это no-op, FOR UPDATE компилируется в пустоту.
- Кросс-диалектный INSERT ... ON CONFLICT (PostgreSQL / SQLite).
"""

from __future__ import annotations

import hashlib
from collections.abc import Sequence
from datetime import datetime
from importlib import import_module
from typing import Any, Optional, TypeVar

from sqlalchemy import DateTime, Integer, MetaData, select, text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from app.core.logging import get_logger

logger = get_logger(__name__)


def utc_now() -> datetime:
    """naive UTC "сейчас" (все DateTime-колонки без timezone=True)."""
    return datetime.utcnow()


# --------------------------------------------------------------------------------------
# SQLAlchemy naming conventions (для alembic и единых имён ограничений/индексов)
# --------------------------------------------------------------------------------------
NAMING_CONVENTIONS: dict[str, str] = {
    "ix": "ix__%(table_name)s__%(column_0_N_name)s",
    "uq": "uq__%(table_name)s__%(column_0_N_name)s",
    "ck": "ck__%(table_name)s__%(constraint_name)s",
    "fk": "fk__%(table_name)s__%(column_0_N_name)s__%(referred_table_name)s",
    "pk": "pk__%(table_name)s",
}


class Base(DeclarativeBase):
    """Root declarative base (SQLAlchemy 2.x) с naming conventions."""

    metadata = MetaData(naming_convention=NAMING_CONVENTIONS)

    def __repr__(self) -> str:  # pragma: no cover
        cols = []
        for k in self.__mapper__.c.keys():
            v = getattr(self, k, None)
            if isinstance(v, str) and len(v) > 64:
                v = v[:64] + "…"
            cols.append(f"{k}={v!r}")
        return f"<{self.__class__.__name__}({', '.join(cols)})>"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utc_now, nullable=False, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utc_now, onupdate=utc_now, nullable=False
    )

    def touch(self) -> None:
        self.updated_at = utc_now()


class BaseModel(TimestampMixin, Base):
    """Общий базовый класс для моделей с целочисленным id."""

    __abstract__ = True

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)

    def to_dict(self) -> dict[str, Any]:
        return {col.name: getattr(self, col.name) for col in self.__table__.columns}


T = TypeVar("T", bound=Base)


# --------------------------------------------------------------------------------------
# Async lock helpers
# --------------------------------------------------------------------------------------
def dialect_name(session: AsyncSession) -> str:
    bind = session.get_bind()
    return getattr(getattr(bind, "dialect", None), "name", "") or ""


def advisory_key(namespace: str, value: Any) -> int:
    """Стабильный signed 64-bit ключ для pg_advisory_xact_lock из строки."""
    digest = hashlib.blake2b(f"{namespace}:{value}".encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


async def apg_advisory_xact_lock(session: AsyncSession, key: int) -> bool:
    """
    Транзакционная advisory-блокировка (держится до конца транзакции).
    Возвращает False, если диалект её не поддерживает.
    """
    if dialect_name(session) != "postgresql":
        return False
    await session.execute(text("SELECT pg_advisory_xact_lock(:k)"), {"k": int(key)})
    return True


async def afor_update_by_id(
    session: AsyncSession,
    model: type[T],
    obj_id: Any,
    *,
    nowait: bool = False,
    skip_locked: bool = False,
) -> Optional[T]:
    q = (
        select(model)
        .where(model.id == obj_id)  # type: ignore[attr-defined]
        .with_for_update(nowait=nowait, skip_locked=skip_locked)
        .execution_options(populate_existing=True)
    )
    res = await session.execute(q)
    return res.scalars().first()


# --------------------------------------------------------------------------------------
# INSERT ... ON CONFLICT (PostgreSQL / SQLite)
# --------------------------------------------------------------------------------------
def _insert_for(session: AsyncSession, table):
    name = dialect_name(session)
    if name == "postgresql":
        return pg_insert(table)
    if name == "sqlite":
        return sqlite_insert(table)
    raise NotImplementedError(f"ON CONFLICT is not supported for dialect {name!r}")


async def ainsert_ignore(
    session: AsyncSession,
    table,
    values: dict[str, Any],
    *,
    conflict_cols: Sequence[str],
) -> bool:
    """
    INSERT .. ON CONFLICT DO NOTHING для одной строки.
    :return: True, если строка вставлена; False, если уже существовала.
    """
    stmt = _insert_for(session, table).values(**values)
    stmt = stmt.on_conflict_do_nothing(index_elements=list(conflict_cols))
    pk = list(table.primary_key.columns)[0]
    res = await session.execute(stmt.returning(pk))
    return res.first() is not None


async def aupsert(
    session: AsyncSession,
    table,
    values: dict[str, Any],
    *,
    conflict_cols: Sequence[str],
    update_values: dict[str, Any],
) -> None:
    """INSERT .. ON CONFLICT DO UPDATE для одной строки (коммит на вызывающем)."""
    stmt = _insert_for(session, table).values(**values)
    stmt = stmt.on_conflict_do_update(index_elements=list(conflict_cols), set_=update_values)
    await session.execute(stmt)


# --------------------------------------------------------------------------------------
# Загрузка доменных моделей (metadata.create_all / alembic)
# --------------------------------------------------------------------------------------
_DOMAIN_MODULES: tuple[str, ...] = (
    "app.models.product",
    "app.models.order",
    "app.models.sale",
    "app.models.stock_debit",
    "app.models.webhook_event",
)


def ensure_models_loaded() -> None:
    """Идемпотентно импортирует все домены, чтобы Base.metadata была полной."""
    for mod in _DOMAIN_MODULES:
        import_module(mod)


__all__ = [
    "Base",
    "BaseModel",
    "TimestampMixin",
    "NAMING_CONVENTIONS",
    "utc_now",
    "dialect_name",
    "advisory_key",
    "apg_advisory_xact_lock",
    "afor_update_by_id",
    "ainsert_ignore",
    "aupsert",
    "ensure_models_loaded",
]
