"""
Sale records: online sales materialized from paid orders, and the manual /
physical sales maintained from the admin panel.
"""

from __future__ import annotations

import datetime as dt
from decimal import Decimal, InvalidOperation
from typing import Any, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import NotFoundError, ShopValidationError, is_unique_violation
from app.core.logging import get_logger
from app.models.order import Order, OrderItem
from app.models.sale import Sale, SaleChannel, sale_key

logger = get_logger(__name__)


def sale_note(order_id: str, key: str) -> str:
    return f"Venta online MP - Orden #{order_id[:8]} | {key}"


async def sale_exists(session: AsyncSession, provider: str, order_id: str, item_id: int) -> bool:
    """Sale for this order item already recorded (dedup columns or legacy note key)."""
    key = sale_key(provider, order_id, item_id)
    q = (
        select(Sale.id)
        .where(
            or_(
                and_(
                    Sale.provider == provider,
                    Sale.order_id == order_id,
                    Sale.order_item_id == item_id,
                ),
                Sale.note.contains(key, autoescape=True),
            )
        )
        .limit(1)
    )
    return (await session.scalar(q)) is not None


def _online_sale(provider: str, order: Order, item: OrderItem, sold_at: dt.datetime) -> Sale:
    key = sale_key(provider, order.id, item.id)
    return Sale(
        name=item.name,
        quantity=int(item.quantity),
        cost=Decimal("0"),
        price=Decimal(item.unit_price),
        date=sold_at,
        note=sale_note(order.id, key),
        channel=SaleChannel.ONLINE.value,
        provider=provider,
        order_id=order.id,
        order_item_id=item.id,
    )


async def materialize_sales(
    session: AsyncSession,
    order: Order,
    *,
    paid_at: Optional[dt.datetime] = None,
    provider: Optional[str] = None,
) -> int:
    """
    Create one online Sale per order item that does not have one yet.

    Runs inside the caller's transaction; each insert gets its own SAVEPOINT so
    a concurrent duplicate (unique violation) only skips that item.
    Cost is recorded as 0 and backfilled by hand from the admin panel.
    """
    provider = provider or settings.MP_PROVIDER_TAG
    sold_at = paid_at or dt.datetime.now(dt.timezone.utc)
    created = 0

    for item in order.items:
        if await sale_exists(session, provider, order.id, item.id):
            continue
        sale = _online_sale(provider, order, item, sold_at)
        try:
            async with session.begin_nested():
                session.add(sale)
        except IntegrityError as e:
            if not is_unique_violation(e):
                raise
            logger.info("sale_already_recorded", order_id=order.id, order_item_id=item.id)
            continue
        created += 1

    if created:
        logger.info("sales_materialized", order_id=order.id, created=created)
    return created


# ---------------------------------------------------------------------------
# Manual / physical sales (admin)
# ---------------------------------------------------------------------------
def _to_decimal(v: Any, field: str) -> Decimal:
    if v is None or v == "":
        return Decimal("0")
    try:
        return Decimal(str(v))
    except InvalidOperation:
        raise ShopValidationError(f"{field} must be a number", "INVALID_SALE")


def _to_int(v: Any, field: str) -> int:
    d = _to_decimal(v, field)
    if d != d.to_integral_value():
        raise ShopValidationError(f"{field} must be an integer", "INVALID_SALE")
    return int(d)


def local_noon(value: Optional[dt.date | dt.datetime]) -> dt.datetime:
    """Calendar date pinned to 12:00 in the store's zone, returned in UTC."""
    tz = ZoneInfo(settings.SALES_TIMEZONE)
    if value is None:
        day = dt.datetime.now(tz).date()
    elif isinstance(value, dt.datetime):
        day = (value.astimezone(tz) if value.tzinfo else value).date()
    else:
        day = value
    return dt.datetime(day.year, day.month, day.day, 12, 0, tzinfo=tz).astimezone(dt.timezone.utc)


def normalize_sale_input(data: dict[str, Any]) -> dict[str, Any]:
    """
    Trim/convert a manual sale payload and validate it.
    Only keys present in ``data`` are returned (partial updates).
    """
    out: dict[str, Any] = {}
    if "name" in data:
        out["name"] = (data.get("name") or "").strip()
        if not out["name"]:
            raise ShopValidationError("name is required", "INVALID_SALE")
    if "quantity" in data:
        out["quantity"] = _to_int(data.get("quantity"), "quantity")
        if out["quantity"] <= 0:
            raise ShopValidationError("quantity must be greater than 0", "INVALID_SALE")
    for field in ("cost", "price"):
        if field in data:
            out[field] = _to_decimal(data.get(field), field)
            if out[field] < 0:
                raise ShopValidationError(f"{field} must be >= 0", "INVALID_SALE")
    if "date" in data:
        out["date"] = local_noon(data.get("date"))
    if "note" in data:
        out["note"] = (data.get("note") or "").strip() or None
    if "channel" in data and data.get("channel") is not None:
        out["channel"] = str(getattr(data["channel"], "value", data["channel"]))
    return out


async def list_sales(
    session: AsyncSession,
    *,
    date_from: Optional[dt.datetime] = None,
    date_to: Optional[dt.datetime] = None,
    channel: Optional[str] = None,
    limit: int = 200,
    offset: int = 0,
) -> list[Sale]:
    q = select(Sale)
    if date_from is not None:
        q = q.where(Sale.date >= date_from)
    if date_to is not None:
        q = q.where(Sale.date <= date_to)
    if channel:
        q = q.where(Sale.channel == channel)
    q = q.order_by(Sale.date.desc(), Sale.id.desc()).limit(limit).offset(offset)
    return list((await session.scalars(q)).all())


async def create_manual_sale(session: AsyncSession, data: dict[str, Any]) -> Sale:
    payload = {"cost": 0, "date": None, **data}
    for required in ("name", "quantity", "price"):
        payload.setdefault(required, None)
    values = normalize_sale_input(payload)
    values.setdefault("channel", SaleChannel.PHYSICAL.value)
    sale = Sale(**values)
    session.add(sale)
    await session.commit()
    await session.refresh(sale)
    logger.info("manual_sale_created", sale_id=sale.id, channel=sale.channel)
    return sale


async def update_sale(session: AsyncSession, sale_id: int, data: dict[str, Any]) -> Sale:
    sale = await session.get(Sale, sale_id)
    if sale is None:
        raise NotFoundError(f"Sale {sale_id} not found", "SALE_NOT_FOUND")
    for k, v in normalize_sale_input(data).items():
        setattr(sale, k, v)
    await session.commit()
    await session.refresh(sale)
    return sale


async def delete_sale(session: AsyncSession, sale_id: int) -> None:
    sale = await session.get(Sale, sale_id)
    if sale is None:
        raise NotFoundError(f"Sale {sale_id} not found", "SALE_NOT_FOUND")
    await session.delete(sale)
    await session.commit()
    logger.info("sale_deleted", sale_id=sale_id)


__all__ = [
    "materialize_sales",
    "sale_exists",
    "sale_note",
    "local_noon",
    "normalize_sale_input",
    "list_sales",
    "create_manual_sale",
    "update_sale",
    "delete_sale",
]
