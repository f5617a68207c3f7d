# app/models/types.py
from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Iterable, Optional, Sequence

from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB
from sqlalchemy.types import JSON, DateTime, String, TypeDecorator


# ======================================================================
# JSONBCompat: кросс-СУБД совместимый JSONB
# ======================================================================


class JSONBCompat(TypeDecorator):
    """
    Кросс-СУБД тип "JSONB":
    - В PostgreSQL → настоящий JSONB
    - В SQLite (тесты) → обычный JSON

    Использование:
        raw: Mapped[dict | None] = mapped_column(JSONBCompat)
    """

    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_JSONB())
        return dialect.type_descriptor(JSON())


# ======================================================================
# UTCDateTime: хранение и возврат времени в UTC
# ======================================================================


class UTCDateTime(TypeDecorator):
    """
    Приводит datetime к UTC при записи и возвращает aware-дату в UTC при чтении.

    - naive-дата считается UTC;
    - aware-дата конвертируется к UTC;
    - в хранилище кладём naive UTC (совместимо с SQLite).
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)


# ======================================================================
# TrimmedString / LowercaseString: нормализация строк
# ======================================================================


class TrimmedString(TypeDecorator):
    """
    Строковый тип: обрезает пробелы, пустую строку превращает в NULL,
    опционально приводит к нижнему регистру (слаги).
    """

    impl = String
    cache_ok = True

    def __init__(self, length: Optional[int] = None, *, lowercase: bool = False) -> None:
        super().__init__(length)
        self._lowercase = bool(lowercase)

    def process_bind_param(self, value: Optional[str], dialect) -> Optional[str]:
        if value is None:
            return None
        v = value.strip()
        if not v:
            return None
        if self._lowercase:
            v = v.lower()
        return v


class LowercaseString(TrimmedString):
    """TrimmedString(..., lowercase=True)"""

    cache_ok = True

    def __init__(self, length: Optional[int] = None) -> None:
        super().__init__(length, lowercase=True)


# ======================================================================
# CurrencyCode: ISO 4217 (MXN, USD, ...)
# ======================================================================


class CurrencyCode(TypeDecorator):
    impl = String(10)
    cache_ok = True
    _re = re.compile(r"^[A-Z]{3}$")

    def process_bind_param(self, value: Optional[str], dialect) -> Optional[str]:
        if value is None:
            return None
        v = value.strip().upper()
        if not v:
            return None
        if not self._re.match(v):
            raise ValueError(f"Invalid currency code: {value!r}")
        return v


# ======================================================================
# ChoiceString: статусы/каналы без нативных ENUM
# ======================================================================


class ChoiceString(TypeDecorator):
    """
    Ограничивает значение набором допустимых строк.

    Использование:
        status: Mapped[str] = mapped_column(ChoiceString(choices=ORDER_STATUSES, length=16))
    """

    impl = String
    cache_ok = True

    def __init__(self, *, choices: Iterable[str], length: int = 32) -> None:
        super().__init__(length)
        self._choices: Sequence[str] = tuple(choices)

    def process_bind_param(self, value: Optional[str], dialect) -> Optional[str]:
        if value is None:
            return None
        v = str(getattr(value, "value", value)).strip().lower()
        if v not in self._choices:
            allowed = ", ".join(sorted(self._choices))
            raise ValueError(f"Invalid choice: {value!r}. Allowed: {allowed}")
        return v


__all__ = [
    "JSONBCompat",
    "UTCDateTime",
    "TrimmedString",
    "LowercaseString",
    "CurrencyCode",
    "ChoiceString",
]
