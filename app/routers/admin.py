# app/routers/admin.py
from __future__ import annotations

"""
Admin router (X-Admin-Key):
- orders: list / update shipment+invoice / delete
- products: list / upsert by slug / delete
- sales: list / create / update / delete
- webhooks: list dead letters / replay one event
"""

import datetime as dt
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.db import get_db
from app.core.dependencies import Pagination, pagination, require_admin
from app.core.exceptions import not_found
from app.core.logging import get_logger
from app.models.order import Invoice, Order, OrderStatus, Shipment
from app.models.sale import SaleChannel
from app.models.webhook_event import WebhookEventStatus
from app.schemas.base import OkResponse
from app.schemas.order import AdminOrderOut, OrderAdminUpdate
from app.schemas.product import ProductOut, ProductUpsert
from app.schemas.sale import SaleCreate, SaleOut, SaleUpdate
from app.schemas.webhook import ReplayResult, WebhookEventOut
from app.services import catalog, sales as sales_service, webhooks as webhook_service
from app.services.mercadopago_service import MercadoPagoService, get_mercadopago_service

logger = get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


# ---------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------
def _order_query():
    return select(Order).options(
        selectinload(Order.items),
        selectinload(Order.shipment),
        selectinload(Order.invoice),
    )


async def _get_order(db: AsyncSession, order_id: str) -> Order:
    order = (
        await db.scalars(
            _order_query().where(Order.id == order_id).execution_options(populate_existing=True)
        )
    ).first()
    if order is None:
        raise not_found("Order not found")
    return order


@router.get("/orders", response_model=list[AdminOrderOut], summary="List orders (newest first)")
async def list_orders(
    status_filter: Optional[OrderStatus] = Query(None, alias="status"),
    page: Pagination = Depends(pagination),
    db: AsyncSession = Depends(get_db),
) -> list[Order]:
    q = _order_query()
    if status_filter is not None:
        q = q.where(Order.status == OrderStatus(status_filter).value)
    q = q.order_by(Order.created_at.desc(), Order.id).limit(page.limit).offset(page.offset)
    return list((await db.scalars(q)).all())


@router.put("/orders/{order_id}", response_model=AdminOrderOut, summary="Update shipment / invoice")
async def update_order(
    order_id: str,
    payload: OrderAdminUpdate,
    db: AsyncSession = Depends(get_db),
) -> Order:
    order = await _get_order(db, order_id)

    if payload.shipment is not None:
        if order.shipment is None:
            order.shipment = Shipment()
        for k, v in payload.shipment.changes().items():
            setattr(order.shipment, k, v)
    if payload.invoice is not None:
        if order.invoice is None:
            order.invoice = Invoice()
        for k, v in payload.invoice.changes().items():
            setattr(order.invoice, k, v)

    order.touch()
    await db.commit()
    logger.info("admin_order_updated", order_id=order_id)
    return await _get_order(db, order_id)


@router.delete("/orders/{order_id}", response_model=OkResponse, summary="Delete order")
async def delete_order(order_id: str, db: AsyncSession = Depends(get_db)) -> OkResponse:
    order = await _get_order(db, order_id)
    await db.delete(order)
    await db.commit()
    logger.info("admin_order_deleted", order_id=order_id)
    return OkResponse(ok=True)


# ---------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------
@router.get("/products", response_model=list[ProductOut], summary="List products")
async def list_products(db: AsyncSession = Depends(get_db)):
    return await catalog.list_products(db)


@router.post("/products", response_model=ProductOut, summary="Create or update a product by slug")
async def upsert_product(payload: ProductUpsert, response: Response, db: AsyncSession = Depends(get_db)):
    product, created = await catalog.upsert_product(db, payload)
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return product


@router.delete("/products/{slug}", response_model=OkResponse, summary="Delete product")
async def delete_product(slug: str, db: AsyncSession = Depends(get_db)) -> OkResponse:
    await catalog.delete_product(db, slug)
    return OkResponse(ok=True)


# ---------------------------------------------------------------------
# Sales
# ---------------------------------------------------------------------
@router.get("/sales", response_model=list[SaleOut], summary="List sales (newest first)")
async def list_sales(
    date_from: Optional[dt.datetime] = Query(None, alias="from"),
    date_to: Optional[dt.datetime] = Query(None, alias="to"),
    channel: Optional[SaleChannel] = None,
    page: Pagination = Depends(pagination),
    db: AsyncSession = Depends(get_db),
):
    return await sales_service.list_sales(
        db,
        date_from=date_from,
        date_to=date_to,
        channel=SaleChannel(channel).value if channel else None,
        limit=page.limit,
        offset=page.offset,
    )


@router.post("/sales", response_model=SaleOut, status_code=status.HTTP_201_CREATED, summary="Record a manual sale")
async def create_sale(payload: SaleCreate, db: AsyncSession = Depends(get_db)):
    return await sales_service.create_manual_sale(db, payload.model_dump(exclude_unset=True))


@router.put("/sales/{sale_id}", response_model=SaleOut, summary="Update a sale")
async def update_sale(sale_id: int, payload: SaleUpdate, db: AsyncSession = Depends(get_db)):
    return await sales_service.update_sale(db, sale_id, payload.changes())


@router.delete("/sales/{sale_id}", response_model=OkResponse, summary="Delete a sale")
async def delete_sale(sale_id: int, db: AsyncSession = Depends(get_db)) -> OkResponse:
    await sales_service.delete_sale(db, sale_id)
    return OkResponse(ok=True)


# ---------------------------------------------------------------------
# Webhook dead letters
# ---------------------------------------------------------------------
@router.get("/webhooks/events", response_model=list[WebhookEventOut], summary="List webhook events (failed by default)")
async def list_webhook_events(
    status_filter: Optional[WebhookEventStatus] = Query(WebhookEventStatus.FAILED, alias="status"),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    value = WebhookEventStatus(status_filter).value if status_filter else None
    return await webhook_service.list_events(db, status=value, limit=limit)


@router.post("/webhooks/events/{event_id}/replay", response_model=ReplayResult, summary="Replay a webhook event")
async def replay_webhook_event(
    event_id: int,
    db: AsyncSession = Depends(get_db),
    mp: MercadoPagoService = Depends(get_mercadopago_service),
) -> ReplayResult:
    ok, event = await webhook_service.replay_event(db, mp, event_id)
    return ReplayResult(ok=ok, event=WebhookEventOut.model_validate(event))
