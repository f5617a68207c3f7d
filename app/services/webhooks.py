"""
Mercado Pago notification handling.

- extract_notification(): topic/resource id from the JSON body or the query
  string (body wins; `type`/`action`/`topic`, `data.id`/`id`/`resource` checked).
- record_event(): audit upsert keyed by (provider, external_id).
- dispatch(): payment → fetch payment + reconcile; merchant_order → fetch
  merchant order + reconcile by preference id; anything else is ignored.
- handle_notification()/replay_event(): the webhook entry point and the admin
  dead-letter replay. Failures are stored on the event (status=failed).
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import NotFoundError
from app.core.logging import get_logger
from app.models.base import aupsert, utc_now
from app.models.webhook_event import WebhookEvent, WebhookEventStatus
from app.services.mercadopago_service import MercadoPagoService
from app.services.reconciliation import (
    ReconcileResult,
    parse_provider_datetime,
    payment_order_reference,
    reconcile_payment,
)

logger = get_logger(__name__)

TOPIC_PAYMENT = "payment"
TOPIC_MERCHANT_ORDER = "merchant_order"

_MAX_ERROR_LEN = 2000


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------
def normalize_topic(value: Any) -> Optional[str]:
    """``payment.updated`` → ``payment``; ``topic_merchant_order_wh`` → ``merchant_order``."""
    if value is None:
        return None
    t = str(value).strip().lower()
    if not t:
        return None
    if "merchant_order" in t:
        return TOPIC_MERCHANT_ORDER
    return t.split(".", 1)[0]


def _resource_id(resource: Any) -> Optional[str]:
    if isinstance(resource, Mapping):
        rid = resource.get("id")
        return str(rid) if rid not in (None, "") else None
    if isinstance(resource, (str, int)):
        s = str(resource).strip().rstrip("/")
        if not s:
            return None
        return s.rsplit("/", 1)[-1].split("?", 1)[0] or None
    return None


def extract_notification(
    body: Mapping[str, Any], query: Mapping[str, Any]
) -> tuple[Optional[str], Optional[str]]:
    """Return (topic, resource_id); either may be None."""
    body = body if isinstance(body, Mapping) else {}

    topic = (
        normalize_topic(body.get("type"))
        or normalize_topic(body.get("action"))
        or normalize_topic(body.get("topic"))
        or normalize_topic(query.get("type"))
        or normalize_topic(query.get("topic"))
    )

    data = body.get("data")
    candidates = [
        data.get("id") if isinstance(data, Mapping) else None,
        body.get("id"),
        _resource_id(body.get("resource")),
        query.get("data.id"),
        query.get("id"),
    ]
    resource_id = next((str(c) for c in candidates if c not in (None, "")), None)
    return topic, resource_id


def parse_body(raw: bytes) -> dict[str, Any]:
    """Lenient JSON parsing: empty/malformed/non-object bodies become ``{}``."""
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except ValueError:
        logger.info("webhook_body_unparseable", size=len(raw))
        return {}
    return data if isinstance(data, dict) else {}


def event_external_id(topic: Optional[str], resource_id: Optional[str], body: Mapping, query: Mapping) -> str:
    if resource_id:
        return f"{topic or 'unknown'}:{resource_id}"
    digest = hashlib.sha1(
        json.dumps({"body": body, "query": dict(query)}, sort_keys=True, default=str).encode("utf-8")
    ).hexdigest()
    return f"{topic or 'unknown'}:sha1:{digest}"


# ---------------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------------
async def record_event(
    session: AsyncSession,
    *,
    topic: Optional[str],
    resource_id: Optional[str],
    body: dict[str, Any],
    query: dict[str, Any],
    provider: Optional[str] = None,
) -> WebhookEvent:
    """Upsert the audit row; a redelivery bumps delivery_count and refreshes payload."""
    provider = provider or settings.MP_PROVIDER_TAG
    external_id = event_external_id(topic, resource_id, body, query)
    now = utc_now()
    table = WebhookEvent.__table__
    await aupsert(
        session,
        table,
        {
            "provider": provider,
            "external_id": external_id,
            "topic": topic,
            "resource_id": resource_id,
            "payload": body,
            "query": query,
            "delivery_count": 1,
            "status": WebhookEventStatus.RECEIVED.value,
            "created_at": now,
            "updated_at": now,
        },
        conflict_cols=["provider", "external_id"],
        update_values={
            "payload": body,
            "query": query,
            "topic": topic,
            "delivery_count": table.c.delivery_count + 1,
            "status": WebhookEventStatus.RECEIVED.value,
            "updated_at": now,
        },
    )
    await session.commit()
    event = await session.scalar(
        select(WebhookEvent)
        .where(WebhookEvent.provider == provider, WebhookEvent.external_id == external_id)
        .execution_options(populate_existing=True)
    )
    assert event is not None
    return event


async def mark_event(
    session: AsyncSession,
    event_id: int,
    status: WebhookEventStatus,
    *,
    error: Optional[str] = None,
) -> None:
    await session.execute(
        update(WebhookEvent)
        .where(WebhookEvent.id == event_id)
        .values(
            status=status.value,
            last_error=(error[:_MAX_ERROR_LEN] if error else None),
            processed_at=utc_now(),
            updated_at=utc_now(),
        )
    )
    await session.commit()


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------
async def process_payment(session: AsyncSession, mp: MercadoPagoService, payment_id: str) -> ReconcileResult:
    payment = await mp.get_payment(payment_id)
    return await reconcile_payment(
        session,
        status=payment.get("status"),
        external_reference=payment_order_reference(payment),
        preference_id=payment.get("preference_id"),
        payment_id=str(payment.get("id") or payment_id),
        raw=payment,
        paid_at=parse_provider_datetime(payment.get("date_approved")),
    )


async def process_merchant_order(
    session: AsyncSession, mp: MercadoPagoService, merchant_order_id: str
) -> ReconcileResult:
    mo = await mp.get_merchant_order(merchant_order_id)
    payments = mo.get("payments") or []
    first = payments[0] if payments else {}
    preference_id = mo.get("preference_id")
    if not preference_id:
        logger.warning("merchant_order_without_preference", merchant_order_id=merchant_order_id)
        return ReconcileResult(found=False)
    return await reconcile_payment(
        session,
        status=first.get("status"),
        preference_id=str(preference_id),
        payment_id=str(first["id"]) if first.get("id") else None,
        paid_at=parse_provider_datetime(first.get("date_approved")),
    )


async def dispatch(
    session: AsyncSession,
    mp: MercadoPagoService,
    topic: Optional[str],
    resource_id: Optional[str],
) -> WebhookEventStatus:
    """Run the handler for a topic; returns the status to store on the event."""
    if topic == TOPIC_PAYMENT and resource_id:
        await process_payment(session, mp, resource_id)
        return WebhookEventStatus.PROCESSED
    if topic == TOPIC_MERCHANT_ORDER and resource_id:
        await process_merchant_order(session, mp, resource_id)
        return WebhookEventStatus.PROCESSED
    logger.info("webhook_ignored", topic=topic, resource_id=resource_id)
    return WebhookEventStatus.IGNORED


async def _dispatch_and_mark(
    session: AsyncSession, mp: MercadoPagoService, event_id: int, topic: Optional[str], resource_id: Optional[str]
) -> bool:
    try:
        outcome = await dispatch(session, mp, topic, resource_id)
    except Exception as e:
        await session.rollback()
        logger.exception("webhook_processing_failed", event_id=event_id, topic=topic, resource_id=resource_id)
        await mark_event(session, event_id, WebhookEventStatus.FAILED, error=f"{type(e).__name__}: {e}")
        return False
    await mark_event(session, event_id, outcome)
    return True


async def handle_notification(
    session: AsyncSession,
    mp: MercadoPagoService,
    body: dict[str, Any],
    query: dict[str, Any],
) -> bool:
    """Webhook entry point. Returns False when processing failed (event kept as failed)."""
    topic, resource_id = extract_notification(body, query)
    event = await record_event(session, topic=topic, resource_id=resource_id, body=body, query=query)
    logger.info(
        "webhook_received",
        topic=topic,
        resource_id=resource_id,
        event_id=event.id,
        delivery_count=event.delivery_count,
    )
    return await _dispatch_and_mark(session, mp, event.id, topic, resource_id)


# ---------------------------------------------------------------------------
# Dead letters
# ---------------------------------------------------------------------------
async def list_events(
    session: AsyncSession,
    *,
    status: Optional[str] = WebhookEventStatus.FAILED.value,
    limit: int = 100,
) -> list[WebhookEvent]:
    q = select(WebhookEvent)
    if status:
        q = q.where(WebhookEvent.status == status)
    q = q.order_by(WebhookEvent.updated_at.desc(), WebhookEvent.id.desc()).limit(limit)
    return list((await session.scalars(q)).all())


async def replay_event(session: AsyncSession, mp: MercadoPagoService, event_id: int) -> tuple[bool, WebhookEvent]:
    """Re-run dispatch for a stored event using its topic/resource id."""
    event = await session.get(WebhookEvent, event_id)
    if event is None:
        raise NotFoundError(f"Webhook event {event_id} not found", "WEBHOOK_EVENT_NOT_FOUND")
    topic, resource_id = event.topic, event.resource_id
    await session.rollback()

    logger.info("webhook_replay", event_id=event_id, topic=topic, resource_id=resource_id)
    ok = await _dispatch_and_mark(session, mp, event_id, topic, resource_id)

    refreshed = await session.scalar(
        select(WebhookEvent).where(WebhookEvent.id == event_id).execution_options(populate_existing=True)
    )
    assert refreshed is not None
    return ok, refreshed


__all__ = [
    "normalize_topic",
    "extract_notification",
    "parse_body",
    "record_event",
    "mark_event",
    "dispatch",
    "handle_notification",
    "list_events",
    "replay_event",
]
