# app/routers/webhooks.py
from __future__ import annotations

"""
Mercado Pago notification endpoint.

Always answers 200: ``{"ok": true}`` when handled (or ignored),
``{"ok": false}`` when processing failed. Failures are logged and kept as
failed WebhookEvent rows for replay from the admin API.
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.core.logging import get_logger
from app.schemas.webhook import WebhookAck
from app.services.mercadopago_service import MercadoPagoService, get_mercadopago_service
from app.services.webhooks import handle_notification, parse_body

logger = get_logger(__name__)

router = APIRouter(tags=["webhooks"])


@router.post("/webhooks/mp", response_model=WebhookAck, summary="Mercado Pago webhook")
async def mercadopago_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    mp: MercadoPagoService = Depends(get_mercadopago_service),
) -> WebhookAck:
    body = parse_body(await request.body())
    query = dict(request.query_params)
    try:
        ok = await handle_notification(db, mp, body, query)
    except Exception:
        # провайдер ретраит всё, что не 200
        logger.exception("webhook_unhandled_error", query=query)
        await db.rollback()
        ok = False
    return WebhookAck(ok=ok)
