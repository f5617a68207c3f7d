# app/routers/orders.py
from __future__ import annotations

"""
Orders router (public):
- GET  /orders/{order_id}   order status page data
- POST /orders/sync-sale    manual resync of an approved payment
"""

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.db import get_db
from app.core.exceptions import PaymentProviderError, bad_request, not_found
from app.core.logging import bound_context, get_logger
from app.models.order import Order, OrderStatus
from app.schemas.order import OrderOut, SyncSaleRequest, SyncSaleResponse
from app.services.mercadopago_service import MercadoPagoService, get_mercadopago_service
from app.services.reconciliation import (
    parse_provider_datetime,
    payment_order_reference,
    reconcile_payment,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


async def _load_order(db: AsyncSession, order_id: str) -> Order | None:
    q = (
        select(Order)
        .where(Order.id == order_id)
        .options(
            selectinload(Order.items),
            selectinload(Order.shipment),
            selectinload(Order.invoice),
        )
    )
    return (await db.scalars(q)).first()


@router.post(
    "/sync-sale",
    response_model=SyncSaleResponse,
    summary="Resync an approved payment into sales",
)
async def sync_sale(
    payload: SyncSaleRequest,
    db: AsyncSession = Depends(get_db),
    mp: MercadoPagoService = Depends(get_mercadopago_service),
) -> SyncSaleResponse:
    payment_id = str(payload.payment_id).strip() if payload.payment_id is not None else ""
    if not payment_id:
        raise bad_request("paymentId is required")

    try:
        payment = await mp.get_payment(payment_id)
    except PaymentProviderError as e:
        if e.upstream_status != 404:
            raise
        logger.info("sync_sale_payment_not_found", payment_id=payment_id)
        raise bad_request({"detail": "Payment not found", "payment_id": payment_id})

    status = payment.get("status")
    if status != OrderStatus.APPROVED.value:
        logger.info("sync_sale_refused", payment_id=payment_id, status=status)
        raise bad_request({"detail": "Payment is not approved", "payment_status": status})

    reference = (payload.external_reference or "").strip() or payment_order_reference(payment)
    if not reference:
        raise bad_request("Payment has no external reference")

    paid_at = parse_provider_datetime(payment.get("date_approved"))
    with bound_context(order_id=reference):
        result = await reconcile_payment(
            db,
            status=status,
            external_reference=reference,
            payment_id=str(payment.get("id") or payment_id),
            raw=payment,
            paid_at=paid_at,
        )
    if not result.found:
        raise not_found("Order not found")

    return SyncSaleResponse(
        ok=True,
        sales_created=result.sales_created,
        order_id=result.order_id,
        payment_date=result.paid_at,
    )


@router.get("/{order_id}", response_model=OrderOut, summary="Order details")
async def get_order(order_id: str, db: AsyncSession = Depends(get_db)) -> Order:
    order = await _load_order(db, order_id)
    if order is None:
        raise not_found("Order not found")
    return order
