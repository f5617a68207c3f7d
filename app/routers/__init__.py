# app/routers/__init__.py
from __future__ import annotations
"""
Routers package initialization.

- Явный список роутеров через ROUTER_SPECS (порядок = порядок подключения).
- Единый API-префикс из settings.API_PREFIX (по умолчанию /api).
- Вебхук Mercado Pago дополнительно доступен без префикса: так его
  обычно регистрируют в кабинете провайдера.
- Фильтрация через ENV: ROUTERS_EXCLUDE (поддержка масок `*`).
"""

import fnmatch
import importlib
import os
from dataclasses import dataclass
from typing import Iterable, List, Tuple

from fastapi import APIRouter, FastAPI

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)


# -------------------------------------------------------------------------
# Спецификация подключений
# -------------------------------------------------------------------------
@dataclass(frozen=True)
class RouterSpec:
    module: str                 # e.g. "app.routers.orders"
    attr: str = "router"        # имя APIRouter в модуле
    mount_at_root: bool = False # дублировать без API-префикса (скрыто из схемы)
    enabled: bool = True


ROUTER_SPECS: Tuple[RouterSpec, ...] = (
    RouterSpec("app.routers.webhooks", mount_at_root=True),
    RouterSpec("app.routers.orders"),
    RouterSpec("app.routers.checkout"),
    RouterSpec("app.routers.admin"),
)


# -------------------------------------------------------------------------
# Utility: API base prefix
# -------------------------------------------------------------------------
def _api_prefix() -> str:
    base = (settings.API_PREFIX or "").strip()
    if not base:
        return ""
    if not base.startswith("/"):
        base = "/" + base
    return base.rstrip("/")


def _parse_csv_env(name: str) -> List[str]:
    raw = os.getenv(name, "").strip()
    return [x.strip() for x in raw.split(",") if x.strip()]


def _match_any(name: str, patterns: Iterable[str]) -> bool:
    return any(fnmatch.fnmatch(name, p) for p in patterns)


# -------------------------------------------------------------------------
# Загрузка и монтирование
# -------------------------------------------------------------------------
def _load_router(spec: RouterSpec) -> APIRouter:
    # ошибки импорта не глушим: без роутера приложение неполноценно
    mod = importlib.import_module(spec.module)
    router = getattr(mod, spec.attr, None)
    if not isinstance(router, APIRouter):
        raise RuntimeError(f"No APIRouter attr={spec.attr} in {spec.module}")
    return router


def load_all_routers() -> List[Tuple[RouterSpec, APIRouter]]:
    excludes = _parse_csv_env("ROUTERS_EXCLUDE")
    loaded: List[Tuple[RouterSpec, APIRouter]] = []
    for spec in ROUTER_SPECS:
        if not spec.enabled:
            continue
        if excludes and _match_any(spec.module, excludes):
            logger.info("router_excluded", module=spec.module)
            continue
        loaded.append((spec, _load_router(spec)))
    return loaded


def mount_routers(app: FastAPI) -> None:
    """Подключает все роутеры к приложению под API-префиксом."""
    prefix = _api_prefix()
    for spec, router in load_all_routers():
        app.include_router(router, prefix=prefix)
        if spec.mount_at_root and prefix:
            app.include_router(router, include_in_schema=False)
        logger.debug("router_mounted", module=spec.module, prefix=prefix or "/")


__all__ = ["RouterSpec", "ROUTER_SPECS", "load_all_routers", "mount_routers"]
