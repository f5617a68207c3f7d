from __future__ import annotations

import json
import logging
import os
import platform
import sys
from functools import lru_cache
from pathlib import Path, PurePosixPath
from typing import Annotated, Any, Dict, List, Optional
from urllib.parse import urlparse

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


# ================================
# ВСПОМОГАТЕЛЬНЫЕ ХЕЛПЕРЫ
# ================================
def _under_pytest() -> bool:
    return "PYTEST_CURRENT_TEST" in os.environ


def _mask_secret(val: Optional[str]) -> Optional[str]:
    if val is None:
        return None
    s = str(val)
    if not s:
        return s
    if len(s) <= 6:
        return "***"
    return s[:3] + "***" + s[-3:]


def _project_root() -> Path:
    here = Path(__file__).resolve()
    return here.parent.parent.parent


def _parse_list_like(v):
    if isinstance(v, str):
        v = v.strip()
        if v.startswith("[") and v.endswith("]"):
            try:
                parsed = json.loads(v)
            except ValueError:
                parsed = None
            if isinstance(parsed, list):
                return [str(i).strip() for i in parsed if str(i).strip()]
        return [i.strip() for i in v.split(",") if i.strip()]
    return v


def _is_secret_key_name(key: str) -> bool:
    lk = key.lower()
    if any(s in lk for s in ("secret", "password", "token", "dsn")):
        return True
    if "key" in lk and "public" not in lk:
        return True
    return False


def _mask_nested(obj: Any, key_hint: Optional[str] = None) -> Any:
    """
    Рекурсивная маскировка секретов в dict/list/tuple.
    """
    if isinstance(obj, dict):
        out: Dict[str, Any] = {}
        for k, v in obj.items():
            if isinstance(k, str) and _is_secret_key_name(k):
                if isinstance(v, (dict, list, tuple)):
                    out[k] = _mask_nested(v, key_hint=k)
                else:
                    out[k] = _mask_secret(v)
            else:
                out[k] = _mask_nested(v, key_hint=None)
        return out
    if isinstance(obj, list):
        return [_mask_nested(v, key_hint=key_hint) for v in obj]
    if isinstance(obj, tuple):
        return tuple(_mask_nested(v, key_hint=key_hint) for v in obj)
    if key_hint and _is_secret_key_name(key_hint):
        return _mask_secret(obj)
    return obj


# ================================
# НАСТРОЙКИ ПРИЛОЖЕНИЯ (Pydantic v2)
# ================================
class Settings(BaseSettings):
    """
    Конфиг-прослойка магазина сувениров.
    - В продакшене разрешён ТОЛЬКО PostgreSQL.
    - В девелопменте и тестах fallback на SQLite (aiosqlite).
    - Глубокая маскировка секретов в дампах.
    """

    model_config = SettingsConfigDict(
        env_file=(".env.test", ".env"),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
        env_ignore_empty=True,
    )

    # ---- базовые
    APP_NAME: str = Field(default="SouvenirShop", description="Application name")
    PROJECT_NAME: str = Field(default="SouvenirShop", description="Project name")
    VERSION: str = Field(default="0.1.0", description="Application version")
    DEBUG: bool = Field(default=False, description="Debug mode")
    ENVIRONMENT: str = Field(default="development", description="Environment")
    TESTING: bool = Field(default=False, description="Testing mode")
    API_PREFIX: str = Field(default="/api", description="API prefix")
    PUBLIC_BASE_URL: Optional[str] = Field(default=None, description="Public storefront URL")

    # ---- БД
    DATABASE_URL: Optional[str] = Field(default=None, description="Database URL")
    SQLALCHEMY_POOL_SIZE: int = Field(default=10, description="Pool size")
    SQLALCHEMY_MAX_OVERFLOW: int = Field(default=20, description="Max overflow")
    SQLALCHEMY_POOL_RECYCLE: int = Field(default=1800, description="Pool recycle (s)")
    AUTO_CREATE_TABLES: bool = Field(default=False, description="create_all on startup (dev only)")

    # ---- CORS
    CORS_ORIGINS: Annotated[List[str], NoDecode] = Field(default=["*"], description="CORS origins")

    # ---- логи
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: str = Field(default="json", description="Logging format (json|text)")

    # ---- Mercado Pago
    MP_ACCESS_TOKEN: Optional[str] = Field(default=None, description="Mercado Pago access token")
    MP_API_URL: str = Field(default="https://api.mercadopago.com", description="Mercado Pago API URL")
    MP_WEBHOOK_URL: Optional[str] = Field(default=None, description="Notification URL sent with preferences")
    MP_TIMEOUT_SECONDS: float = Field(default=15.0, description="Mercado Pago HTTP timeout (s)")
    MP_PROVIDER_TAG: str = Field(default="MP", description="Provider tag used in sale dedup keys")

    # ---- WhatsApp / витрина
    WHATSAPP_BUSINESS_NUMBER: Optional[str] = Field(default=None, description="wa.me business number")
    CURRENCY: str = Field(default="MXN", description="Store currency")
    SALES_TIMEZONE: str = Field(default="America/Mexico_City", description="Local zone for manual sale dates")

    # ---- админка
    ADMIN_API_KEY: Optional[str] = Field(default=None, description="Shared admin API key (X-Admin-Key)")

    # --------- валидаторы ---------
    @field_validator("CORS_ORIGINS", mode="before")
    def _cors(cls, v):
        return _parse_list_like(v)

    @field_validator("PUBLIC_BASE_URL", "MP_API_URL", mode="before")
    def _strip_trailing_slash(cls, v):
        if isinstance(v, str):
            v = v.strip().rstrip("/")
            return v or None
        return v

    @field_validator("WHATSAPP_BUSINESS_NUMBER", mode="before")
    def _digits_only(cls, v):
        if isinstance(v, str):
            digits = "".join(ch for ch in v if ch.isdigit())
            return digits or None
        return v

    # --------- удобные свойства ---------
    @property
    def base_dir(self) -> Path:
        return _project_root()

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_testing(self) -> bool:
        return bool(self.TESTING or _under_pytest())

    @property
    def build_info(self) -> dict:
        return {
            "project": self.PROJECT_NAME,
            "version": self.VERSION,
            "environment": self.ENVIRONMENT,
        }

    def _is_postgres_url(self, url: str) -> bool:
        scheme = (urlparse(url).scheme or "").lower()
        return scheme in {"postgres", "postgresql"} or scheme.startswith("postgresql+")

    def check_database_url(self) -> None:
        if self.is_production:
            if not self.DATABASE_URL:
                raise ValueError("DATABASE_URL must be set in production!")
            if not self._is_postgres_url(self.DATABASE_URL):
                raise ValueError("In production, only PostgreSQL is allowed for DATABASE_URL!")

    @property
    def sqlalchemy_async_url(self) -> str:
        """
        Async-DSN: postgresql+asyncpg://... либо sqlite+aiosqlite://...
        Без DATABASE_URL в dev используется файл app.db в корне проекта.
        """
        url = (self.DATABASE_URL or "").strip()
        if not url:
            path = "/" + PurePosixPath(self.base_dir / "app.db").as_posix()
            return f"sqlite+aiosqlite://{path}"

        scheme, sep, rest = url.partition("://")
        if not sep:
            return url
        scheme = scheme.lower()
        if scheme.startswith("sqlite"):
            return "sqlite+aiosqlite://" + rest
        if scheme in {"postgres", "postgresql"} or scheme.startswith("postgresql+"):
            return "postgresql+asyncpg://" + rest
        return url

    @property
    def is_sqlite(self) -> bool:
        return self.sqlalchemy_async_url.startswith("sqlite")

    def sqlalchemy_engine_options_effective(self) -> Dict[str, Any]:
        opts: Dict[str, Any] = {"echo": bool(self.DEBUG), "pool_pre_ping": True}
        if not self.is_sqlite:
            opts.update(
                pool_size=self.SQLALCHEMY_POOL_SIZE,
                max_overflow=self.SQLALCHEMY_MAX_OVERFLOW,
                pool_recycle=self.SQLALCHEMY_POOL_RECYCLE,
            )
        return opts

    # --------- диагностика/дампы ---------
    def health_check(self) -> dict:
        errors: list[str] = []
        if self.is_production and not self.DATABASE_URL:
            errors.append("Missing DATABASE_URL in production")
        if not self.MP_ACCESS_TOKEN:
            errors.append("MP_ACCESS_TOKEN is not set")
        if not self.ADMIN_API_KEY:
            errors.append("ADMIN_API_KEY is not set")

        result = {
            "ok": not errors,
            "errors": errors,
            "system": {"python": sys.version.split()[0], "platform": platform.platform()},
            "build": self.build_info,
        }
        if errors:
            logging.getLogger(__name__).warning("Health check errors: %s", errors)
        return result

    def dump_settings_safe(self) -> dict:
        return _mask_nested(self.model_dump())


# Глобальный объект настроек
@lru_cache
def get_settings() -> Settings:
    s = Settings()
    if not s.is_testing:
        s.check_database_url()
    return s


settings = get_settings()

__all__ = ["Settings", "get_settings", "settings"]
