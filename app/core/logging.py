# app/core/logging.py
"""
Centralized logging for the shop backend.

Features:
- Stdlib logging (dictConfig) + structlog (JSON in prod, dev console otherwise).
- Sensitive fields redaction (access tokens, admin key, ...).
- Context (request_id, client_ip, order_id) via contextvars.
- ASGI middleware for request context, X-Request-ID and access logs.

Env knobs (via settings):
  LOG_LEVEL=INFO
  LOG_FORMAT=json|text
  ENVIRONMENT=production|development|test
"""

from __future__ import annotations

import logging
import logging.config
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import Any, Dict, Optional, Tuple

import structlog

from app.core.config import settings

# ---------- Context vars ----------
_ctx_request_id: ContextVar[str] = ContextVar("request_id", default="")
_ctx_client_ip: ContextVar[str] = ContextVar("client_ip", default="")
_ctx_order_id: ContextVar[str] = ContextVar("order_id", default="")

_CONFIGURED = False

# ---------- Secrets redaction ----------
_SECRET_KEYS = ("secret", "password", "token", "dsn", "api_key", "access_key", "x-admin-key")


def _mask_secret_value(v: Any) -> Any:
    s = str(v)
    if len(s) <= 6:
        return "***"
    return s[:3] + "***" + s[-3:]


def redact_secrets(data: Any) -> Any:
    if isinstance(data, dict):
        out: Dict[str, Any] = {}
        for k, v in data.items():
            lk = str(k).lower()
            if any(x in lk for x in _SECRET_KEYS) and "public" not in lk:
                out[k] = _mask_secret_value(v)
            else:
                out[k] = redact_secrets(v)
        return out
    if isinstance(data, list):
        return [redact_secrets(v) for v in data]
    if isinstance(data, tuple):
        return tuple(redact_secrets(v) for v in data)
    return data


# ---------- structlog processors ----------
def _inject_context(_, __, event_dict):
    rid = _ctx_request_id.get()
    cip = _ctx_client_ip.get()
    oid = _ctx_order_id.get()
    if rid:
        event_dict["request_id"] = rid
    if cip:
        event_dict["client_ip"] = cip
    if oid:
        event_dict.setdefault("order_id", oid)
    return event_dict


def _redact_processor(_, __, event_dict):
    return redact_secrets(event_dict)


def _add_app(_, __, event_dict):
    event_dict["app"] = settings.PROJECT_NAME
    event_dict["version"] = settings.VERSION
    return event_dict


def _build_stdlib_dict_config() -> dict:
    level = (settings.LOG_LEVEL or "INFO").upper()
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "plain": {"format": "%(message)s"},
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stdout",
                "formatter": "plain",
            },
        },
        "root": {"handlers": ["console"], "level": level},
        "loggers": {
            "uvicorn.access": {"level": "WARNING", "propagate": True},
            "sqlalchemy.engine": {"level": "WARNING", "propagate": True},
            "httpx": {"level": "WARNING", "propagate": True},
        },
    }


# ---------- structlog configure ----------
def _configure_structlog() -> None:
    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        _inject_context,
        _redact_processor,
        _add_app,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    use_json = settings.is_production or (settings.LOG_FORMAT or "").lower() == "json"
    renderer = (
        structlog.processors.JSONRenderer()
        if use_json and not settings.is_testing
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    processors.append(renderer)

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


# ---------- Public API ----------
def setup_logging() -> None:
    """
    Centralized logging setup:
    - stdlib dictConfig (console)
    - structlog (JSON/console)
    """
    global _CONFIGURED
    if _CONFIGURED:
        return

    logging.config.dictConfig(_build_stdlib_dict_config())
    _configure_structlog()

    lg = get_logger(__name__)
    lg.info("logging_initialized", level=settings.LOG_LEVEL, format=settings.LOG_FORMAT)
    lg.debug("settings", **settings.dump_settings_safe())

    _CONFIGURED = True


def get_logger(name: str):
    return structlog.get_logger(name)


# ---------- Context helpers ----------
@contextmanager
def bound_context(
    request_id: Optional[str] = None,
    client_ip: Optional[str] = None,
    order_id: Optional[str] = None,
):
    """Scoped binding with automatic reset."""
    tokens: list[Tuple[ContextVar[str], Token]] = []
    if request_id is not None:
        tokens.append((_ctx_request_id, _ctx_request_id.set(request_id)))
    if client_ip is not None:
        tokens.append((_ctx_client_ip, _ctx_client_ip.set(client_ip)))
    if order_id is not None:
        tokens.append((_ctx_order_id, _ctx_order_id.set(str(order_id))))
    try:
        yield
    finally:
        for var, tok in reversed(tokens):
            var.reset(tok)


# ---------- Middleware ----------
class LoggingContextMiddleware:
    """
    Pure ASGI middleware: request_id (из X-Request-ID или новый uuid4),
    client_ip в контексте логов, access-лог и X-Request-ID в ответе.
    """

    def __init__(self, app):
        self.app = app
        self.logger = get_logger("app.access")

    async def __call__(self, scope, receive, send):
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        headers = {k.decode("latin-1").lower(): v.decode("latin-1") for k, v in scope.get("headers") or []}
        request_id = headers.get("x-request-id") or uuid.uuid4().hex
        client = scope.get("client") or ("", 0)
        started = time.perf_counter()
        status_holder = {"code": 500}

        async def _send(message):
            if message["type"] == "http.response.start":
                status_holder["code"] = message["status"]
                raw = list(message.get("headers") or [])
                raw.append((b"x-request-id", request_id.encode("latin-1")))
                message["headers"] = raw
            await send(message)

        with bound_context(request_id=request_id, client_ip=client[0] or ""):
            try:
                await self.app(scope, receive, _send)
            finally:
                self.logger.info(
                    "http_request",
                    method=scope.get("method"),
                    path=scope.get("path"),
                    status=status_holder["code"],
                    duration_ms=int((time.perf_counter() - started) * 1000),
                )


__all__ = [
    "setup_logging",
    "get_logger",
    "bound_context",
    "redact_secrets",
    "LoggingContextMiddleware",
]
