from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.db import close_db_async, health_check_db_async, init_db_async
from app.core.exceptions import register_exception_handlers
from app.core.logging import LoggingContextMiddleware, get_logger, setup_logging
from app.routers import mount_routers

logger = get_logger(__name__)

_STARTED_AT = time.time()


# ======================================================================================
# LIFESPAN (startup → yield → shutdown)
# ======================================================================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    # ---- Startup
    setup_logging()
    logger.info("app_startup", environment=settings.ENVIRONMENT, version=settings.VERSION)

    if settings.AUTO_CREATE_TABLES:
        # только для dev/демо; в проде схема ведётся через alembic
        await init_db_async()
        logger.info("db_tables_created")

    try:
        yield
    finally:
        # ---- Shutdown
        await close_db_async()
        logger.info("app_shutdown")


# ======================================================================================
# APP FACTORY
# ======================================================================================
async def _safe_settings_health_check() -> dict[str, Any]:
    """Безопасный враппер для settings.health_check()."""
    try:
        return await asyncio.to_thread(settings.health_check)
    except Exception as e:
        logger.warning("settings_health_error", error=str(e))
        return {"ok": False, "detail": f"settings_health_error:{e!s}"}


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.VERSION,
        debug=settings.DEBUG,
        lifespan=lifespan,
    )

    cors_origins = settings.CORS_ORIGINS or ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        # credentials с "*" браузеры не принимают
        allow_credentials=cors_origins != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
        max_age=86400,
    )
    app.add_middleware(LoggingContextMiddleware)

    register_exception_handlers(app)
    mount_routers(app)

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------
    @app.get("/health", tags=["health"])
    async def health() -> dict[str, Any]:
        settings_report = await _safe_settings_health_check()
        return {
            "status": "healthy" if settings_report.get("ok", True) else "degraded",
            "version": settings.VERSION,
            "uptime_seconds": int(time.time() - _STARTED_AT),
            "checks": {"settings": settings_report},
        }

    @app.get("/ready", tags=["health"])
    async def readiness() -> JSONResponse:
        db = await health_check_db_async()
        code = 200 if db.get("ok") else 503
        return JSONResponse(status_code=code, content={"ready": code == 200, "checks": {"db": db}})

    return app


app = create_app()


if __name__ == "__main__":  # pragma: no cover
    import uvicorn

    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, reload=settings.DEBUG)
