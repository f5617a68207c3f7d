# app/core/exceptions.py
from __future__ import annotations

"""
Unified exceptions & handlers for the shop backend.

- Domain exceptions (NotFoundError, PaymentProviderError, ...)
- HTTP shortcuts (bad_request, not_found)
- Global FastAPI handlers with structured logging via app.core.logging
- RFC 7807-style JSON body (problem+json-compatible fields)
- IntegrityError parsing (duplicate/foreign key/not null/check) for PG/SQLite
"""

import re
from typing import Any, Dict, Mapping, Optional, Tuple

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from app.core.logging import bound_context, get_logger, redact_secrets

logger = get_logger(__name__)

# -----------------------------------------------------------------------------
# Custom domain exceptions
# -----------------------------------------------------------------------------


class ShopException(Exception):
    """Base domain exception."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        *,
        extra: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        http_status: Optional[int] = None,
    ):
        self.message = message
        self.code = code
        self.extra = extra or {}
        self.headers = headers or {}
        self.http_status = http_status
        super().__init__(self.message)


class AuthenticationError(ShopException):
    """Missing or wrong admin key."""


class ShopValidationError(ShopException):
    """Validation related errors."""


class NotFoundError(ShopException):
    """Resource not found errors."""


class ExternalServiceError(ShopException):
    """External service errors."""


class PaymentProviderError(ExternalServiceError):
    """Mercado Pago call failed (transport error or non-2xx answer)."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = "PAYMENT_PROVIDER_ERROR",
        *,
        upstream_status: Optional[int] = None,
        extra: Optional[Dict[str, Any]] = None,
    ):
        data = dict(extra or {})
        if upstream_status is not None:
            data["upstream_status"] = upstream_status
        super().__init__(message, code, extra=data)
        self.upstream_status = upstream_status


class ConfigurationError(ShopException):
    """A required setting (token, business number) is missing."""


# -----------------------------------------------------------------------------
# HTTP shortcuts (factory style, single point of truth)
# -----------------------------------------------------------------------------


def http_error(
    status_code: int,
    detail: Any,
    headers: Optional[Dict[str, str]] = None,
) -> HTTPException:
    """Single factory for HTTP errors (consistent style project-wide)."""
    return HTTPException(status_code=status_code, detail=detail, headers=headers)


def bad_request(detail: Any) -> HTTPException:
    return http_error(status.HTTP_400_BAD_REQUEST, detail)


def not_found(detail: str = "Not found") -> HTTPException:
    return http_error(status.HTTP_404_NOT_FOUND, detail)


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


def _problem_json(
    title: str,
    detail: Any,
    status_code: int,
    code: Optional[str] = None,
    instance: Optional[str] = None,
    extras: Optional[Dict[str, Any]] = None,
    request_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    RFC 7807 inspired body (application/problem+json compatible).
    """
    body: Dict[str, Any] = {
        "type": f"https://httpstatuses.com/{status_code}",
        "title": title,
        "status": status_code,
        "detail": detail,
        "code": code,
    }
    if instance:
        body["instance"] = instance
    if request_id:
        body["request_id"] = request_id
    if extras:
        body["extra"] = redact_secrets(extras)
    return {k: v for k, v in body.items() if v is not None}


def _extract_request_id(headers: Mapping[str, str]) -> str:
    for k in ("x-request-id", "x-correlation-id"):
        if k in headers:
            return headers.get(k, "")
    return ""


def _json_problem_response(
    status_code: int,
    content: Dict[str, Any],
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=content,
        headers=headers or {},
        media_type="application/problem+json",
    )


# -----------------------------------------------------------------------------
# IntegrityError parsing (Postgres/SQLite common patterns)
# -----------------------------------------------------------------------------

_DUP_RE = re.compile(r"duplicate key|unique constraint|unique violation", re.IGNORECASE)
_FK_RE = re.compile(r"foreign key", re.IGNORECASE)
_NOTNULL_RE = re.compile(r"not null", re.IGNORECASE)
_CHECK_RE = re.compile(r"check constraint|violates check constraint", re.IGNORECASE)


def _parse_integrity_error(exc: IntegrityError) -> Tuple[str, str]:
    """
    Returns (message, code) for user-friendly error mapping.
    """
    text = str(getattr(exc, "orig", exc))
    if _DUP_RE.search(text):
        return ("A record with this value already exists", "DUPLICATE_VALUE")
    if _FK_RE.search(text):
        return ("Referenced record does not exist", "FOREIGN_KEY_ERROR")
    if _NOTNULL_RE.search(text):
        return ("Required field is missing", "REQUIRED_FIELD")
    if _CHECK_RE.search(text):
        return ("Invalid value provided", "INVALID_VALUE")
    return ("A database constraint was violated", "INTEGRITY_ERROR")


def is_unique_violation(exc: IntegrityError) -> bool:
    return bool(_DUP_RE.search(str(getattr(exc, "orig", exc))))


# -----------------------------------------------------------------------------
# Exception Handlers (FastAPI)
# -----------------------------------------------------------------------------


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Fallback handler for uncaught exceptions.
    """
    rid = _extract_request_id(request.headers)
    with bound_context(request_id=rid):
        logger.error(
            "unhandled_exception",
            exc_info=exc,
            path=request.url.path,
            method=request.method,
        )

    body = _problem_json(
        title="Internal server error",
        detail="An unexpected error occurred. Please try again later.",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        code="INTERNAL_ERROR",
        instance=str(request.url),
        request_id=rid,
    )
    return _json_problem_response(status.HTTP_500_INTERNAL_SERVER_ERROR, body)


async def shop_exception_handler(request: Request, exc: ShopException) -> JSONResponse:
    """
    Handler for domain exceptions. Maps to appropriate HTTP status codes.
    """
    sc = exc.http_status or status.HTTP_400_BAD_REQUEST
    title = "Bad request"

    if isinstance(exc, AuthenticationError):
        sc = exc.http_status or status.HTTP_401_UNAUTHORIZED
        title = "Authentication error"
    elif isinstance(exc, NotFoundError):
        sc = exc.http_status or status.HTTP_404_NOT_FOUND
        title = "Resource not found"
    elif isinstance(exc, ExternalServiceError):
        sc = exc.http_status or status.HTTP_502_BAD_GATEWAY
        title = "Upstream service error"
    elif isinstance(exc, ConfigurationError):
        sc = exc.http_status or status.HTTP_500_INTERNAL_SERVER_ERROR
        title = "Service misconfigured"
    elif isinstance(exc, ShopValidationError):
        sc = exc.http_status or status.HTTP_400_BAD_REQUEST
        title = "Validation error"

    rid = _extract_request_id(request.headers)
    with bound_context(request_id=rid):
        logger.warning(
            "shop_exception",
            exception_type=type(exc).__name__,
            message=exc.message,
            code=exc.code,
            path=request.url.path,
            method=request.method,
            extra=redact_secrets(exc.extra),
        )

    body = _problem_json(
        title=title,
        detail=exc.message,
        status_code=sc,
        code=exc.code,
        instance=str(request.url),
        extras=exc.extra,
        request_id=rid,
    )
    return _json_problem_response(sc, body, headers=exc.headers)


async def integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    """
    Handler for DB integrity errors (duplicate, FK, not null, check).
    """
    rid = _extract_request_id(request.headers)
    msg, code = _parse_integrity_error(exc)

    with bound_context(request_id=rid):
        logger.warning(
            "db_integrity_error",
            error=str(getattr(exc, "orig", exc)),
            path=request.url.path,
            method=request.method,
            code=code,
        )

    body = _problem_json(
        title="Integrity error",
        detail=msg,
        status_code=status.HTTP_409_CONFLICT,
        code=code,
        instance=str(request.url),
        request_id=rid,
    )
    return _json_problem_response(status.HTTP_409_CONFLICT, body)


async def request_validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """
    Handler for FastAPI RequestValidationError (body/query/path validation).
    """
    errs = exc.errors()
    rid = _extract_request_id(request.headers)
    with bound_context(request_id=rid):
        logger.warning(
            "request_validation_error",
            errors=redact_secrets(list(errs)),
            path=request.url.path,
            method=request.method,
        )

    body = _problem_json(
        title="Validation error",
        detail="Request validation failed",
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        code="REQUEST_VALIDATION_ERROR",
        instance=str(request.url),
        extras={"errors": _jsonable_errors(errs)},
        request_id=rid,
    )
    return _json_problem_response(status.HTTP_422_UNPROCESSABLE_ENTITY, body)


async def validation_exception_handler(request: Request, exc: ValidationError) -> JSONResponse:
    """
    Handler for Pydantic validation errors raised inside services.
    """
    errs = exc.errors()
    rid = _extract_request_id(request.headers)
    with bound_context(request_id=rid):
        logger.warning("validation_error", path=request.url.path, method=request.method)

    body = _problem_json(
        title="Validation error",
        detail="One or more fields failed validation",
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        code="VALIDATION_ERROR",
        instance=str(request.url),
        extras={"errors": _jsonable_errors(errs)},
        request_id=rid,
    )
    return _json_problem_response(status.HTTP_422_UNPROCESSABLE_ENTITY, body)


def _jsonable_errors(errs) -> list:
    # pydantic v2 puts exception objects into ctx
    out = []
    for e in errs:
        item = {k: v for k, v in dict(e).items() if k != "ctx"}
        if "ctx" in e:
            item["ctx"] = {k: str(v) for k, v in e["ctx"].items()}
        out.append(item)
    return out


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """
    Handler for FastAPI HTTP exceptions (raised via http_error/shortcuts).

    A dict detail is merged into the problem body so callers can return
    extra fields (e.g. ``payment_status`` on a refused resync).
    """
    rid = _extract_request_id(request.headers)
    with bound_context(request_id=rid):
        logger.info(
            "http_exception",
            status_code=exc.status_code,
            detail=redact_secrets(exc.detail),
            path=request.url.path,
            method=request.method,
        )

    detail = exc.detail
    extra_fields: Dict[str, Any] = {}
    if isinstance(detail, dict):
        extra_fields = {k: v for k, v in detail.items() if k != "detail"}
        detail = detail.get("detail") or detail.get("error") or f"HTTP {exc.status_code}"

    body = _problem_json(
        title=f"HTTP {exc.status_code}",
        detail=str(detail),
        status_code=exc.status_code,
        code=f"HTTP_{exc.status_code}",
        instance=str(request.url),
        request_id=rid,
    )
    for k, v in extra_fields.items():
        body.setdefault(k, v)
    return _json_problem_response(exc.status_code, body, headers=exc.headers or {})


async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """
    Generic SQLAlchemy errors (not integrity).
    """
    rid = _extract_request_id(request.headers)
    with bound_context(request_id=rid):
        logger.error(
            "sqlalchemy_error",
            exc_info=exc,
            path=request.url.path,
            method=request.method,
        )

    body = _problem_json(
        title="Database error",
        detail="Database operation failed",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        code="DB_ERROR",
        instance=str(request.url),
        request_id=rid,
    )
    return _json_problem_response(status.HTTP_500_INTERNAL_SERVER_ERROR, body)


async def operational_error_handler(request: Request, exc: OperationalError) -> JSONResponse:
    """
    Operational DB errors (timeouts, connection issues).
    """
    rid = _extract_request_id(request.headers)
    with bound_context(request_id=rid):
        logger.error(
            "db_operational_error",
            exc_info=exc,
            path=request.url.path,
            method=request.method,
        )

    body = _problem_json(
        title="Database unavailable",
        detail="Database is temporarily unavailable. Please retry later.",
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        code="DB_UNAVAILABLE",
        instance=str(request.url),
        request_id=rid,
    )
    return _json_problem_response(status.HTTP_503_SERVICE_UNAVAILABLE, body)


# -----------------------------------------------------------------------------
# Registration
# -----------------------------------------------------------------------------


def register_exception_handlers(app: FastAPI) -> None:
    """
    Attach all exception handlers to FastAPI app.
    """
    app.add_exception_handler(ShopException, shop_exception_handler)

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
    app.add_exception_handler(ValidationError, validation_exception_handler)

    app.add_exception_handler(IntegrityError, integrity_error_handler)  # 409
    app.add_exception_handler(OperationalError, operational_error_handler)  # 503
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_exception_handler)  # 500

    app.add_exception_handler(Exception, global_exception_handler)


__all__ = [
    # Exceptions
    "ShopException",
    "AuthenticationError",
    "ShopValidationError",
    "NotFoundError",
    "ExternalServiceError",
    "PaymentProviderError",
    "ConfigurationError",
    # HTTP shortcuts
    "http_error",
    "bad_request",
    "not_found",
    "is_unique_violation",
    # Handlers registration
    "register_exception_handlers",
]
