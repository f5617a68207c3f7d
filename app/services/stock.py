"""
Stock debit for paid orders.

One debit per order: the StockDebit row (order_id UNIQUE) is inserted with
ON CONFLICT DO NOTHING in the caller's transaction, so the decrements and
the marker commit or roll back together.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import get_logger
from app.models.base import afor_update_by_id, ainsert_ignore
from app.models.order import Order, OrderItem
from app.models.product import Product, ProductSku
from app.models.stock_debit import StockDebit

logger = get_logger(__name__)


async def resolve_sku(session: AsyncSession, item: OrderItem) -> Optional[ProductSku]:
    """
    SKU row for an order item, locked FOR UPDATE.

    Uses the item's SKU reference; without one, falls back to the product's
    SKU when the product has exactly one.
    """
    if item.sku_id is not None:
        return await afor_update_by_id(session, ProductSku, item.sku_id)

    q = (
        select(ProductSku.id)
        .join(Product, Product.id == ProductSku.product_id)
        .where(Product.slug == item.product_slug)
        .limit(2)
    )
    ids = list((await session.scalars(q)).all())
    if len(ids) != 1:
        return None
    return await afor_update_by_id(session, ProductSku, ids[0])


def _mark_debited(order: Order) -> None:
    raw = dict(order.raw or {})
    if not raw.get("stockDebited"):
        raw["stockDebited"] = True
        order.raw = raw


async def debit_stock(session: AsyncSession, order: Order) -> bool:
    """
    Decrement SKU stock by each item's quantity, floored at zero.

    :return: True if this call performed the debit, False if the order was
             already debited (StockDebit row or ``stockDebited`` in raw).
    """
    flagged = order.stock_debited
    inserted = await ainsert_ignore(
        session,
        StockDebit.__table__,
        {"order_id": order.id, "items_debited": 0},
        conflict_cols=["order_id"],
    )
    if flagged:
        # заказ списан до появления таблицы stock_debits: только фиксируем строку
        logger.info("stock_already_debited", order_id=order.id, legacy_flag=True, row_created=inserted)
        return False
    if not inserted:
        logger.info("stock_already_debited", order_id=order.id)
        _mark_debited(order)
        return False

    debited = 0
    for item in order.items:
        sku = await resolve_sku(session, item)
        if sku is None:
            logger.warning(
                "stock_sku_unresolved",
                order_id=order.id,
                order_item_id=item.id,
                slug=item.product_slug,
            )
            continue
        before = int(sku.stock or 0)
        sku.stock = max(0, before - int(item.quantity or 0))
        # следующий FOR UPDATE с populate_existing перечитает строку из БД
        await session.flush()
        debited += 1
        logger.debug("stock_debited", sku=sku.sku, before=before, after=sku.stock)

    await session.execute(
        update(StockDebit).where(StockDebit.order_id == order.id).values(items_debited=debited)
    )
    _mark_debited(order)
    logger.info("order_stock_debited", order_id=order.id, items=debited)
    return True


__all__ = ["debit_stock", "resolve_sku"]
