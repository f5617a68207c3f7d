"""
Order reconciliation against the payment provider.

Given an authoritative payment status and a lookup key (order id from the
external reference, or the preference id), update the order and, for an
approved payment, materialize its sales and debit its stock. The whole
sequence runs in one transaction under a per-order lock (advisory lock plus
SELECT ... FOR UPDATE on PostgreSQL).
"""

from __future__ import annotations

import datetime as dt
from dataclasses import asdict, dataclass
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.logging import bound_context, get_logger
from app.models.base import advisory_key, apg_advisory_xact_lock
from app.models.order import Order, OrderStatus
from app.services.sales import materialize_sales
from app.services.stock import debit_stock

logger = get_logger(__name__)

ALLOWED_PAYMENT_STATUSES = frozenset(
    {
        OrderStatus.APPROVED.value,
        OrderStatus.REJECTED.value,
        OrderStatus.IN_PROCESS.value,
        OrderStatus.PENDING.value,
    }
)


def map_payment_status(status: Any) -> str:
    """Provider status -> internal order status; anything outside the allow-list is "unknown"."""
    if isinstance(status, str) and status in ALLOWED_PAYMENT_STATUSES:
        return status
    return OrderStatus.UNKNOWN.value


def parse_provider_datetime(value: Any) -> Optional[dt.datetime]:
    """ISO-8601 timestamp from the provider (``2024-05-01T10:00:00.000-04:00``) as aware UTC."""
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = dt.datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning("provider_datetime_unparseable", value=value)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.timezone.utc)
    return parsed.astimezone(dt.timezone.utc)


def payment_order_reference(payment: dict[str, Any]) -> Optional[str]:
    """Order id carried by a payment: external_reference, else metadata.order_id."""
    ref = payment.get("external_reference")
    if ref:
        return str(ref)
    metadata = payment.get("metadata") or {}
    ref = metadata.get("order_id") or metadata.get("orderId")
    return str(ref) if ref else None


@dataclass
class ReconcileResult:
    found: bool
    order_id: Optional[str] = None
    previous_status: Optional[str] = None
    status: Optional[str] = None
    transitioned: bool = False
    sales_created: int = 0
    stock_debited: bool = False
    # дата продажи: одобрение у провайдера или момент сверки
    paid_at: Optional[dt.datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


async def find_order_id(
    session: AsyncSession,
    *,
    external_reference: Optional[str] = None,
    preference_id: Optional[str] = None,
) -> Optional[str]:
    if external_reference:
        oid = await session.scalar(select(Order.id).where(Order.id == str(external_reference)))
        if oid:
            return oid
    if preference_id:
        return await session.scalar(
            select(Order.id)
            .where(Order.preference_id == str(preference_id))
            .order_by(Order.created_at.desc())
            .limit(1)
        )
    return None


async def _lock_order(session: AsyncSession, order_id: str) -> Optional[Order]:
    await apg_advisory_xact_lock(session, advisory_key("order", order_id))
    q = (
        select(Order)
        .where(Order.id == order_id)
        .options(selectinload(Order.items))
        .with_for_update(of=Order)
        .execution_options(populate_existing=True)
    )
    return (await session.scalars(q)).first()


def _merge_raw(current: Optional[dict[str, Any]], incoming: Optional[dict[str, Any]]) -> Optional[dict[str, Any]]:
    if incoming is None:
        return current
    merged = dict(incoming)
    if (current or {}).get("stockDebited"):
        merged["stockDebited"] = True
    return merged


async def reconcile_payment(
    session: AsyncSession,
    *,
    status: Any,
    external_reference: Optional[str] = None,
    preference_id: Optional[str] = None,
    payment_id: Optional[str] = None,
    raw: Optional[dict[str, Any]] = None,
    paid_at: Optional[dt.datetime] = None,
) -> ReconcileResult:
    """
    Apply a provider payment status to the matching order.

    A missing order is logged and reported as ``found=False``; it never raises.
    Side effects of an approved payment are idempotent, so calling this again
    for an already-approved order only fills in missing sales/stock debit.
    """
    new_status = map_payment_status(status)
    order_id = await find_order_id(
        session, external_reference=external_reference, preference_id=preference_id
    )
    if not order_id:
        logger.warning(
            "reconcile_order_not_found",
            external_reference=external_reference,
            preference_id=preference_id,
            payment_id=payment_id,
        )
        await session.rollback()
        return ReconcileResult(found=False, status=new_status)

    with bound_context(order_id=order_id):
        try:
            order = await _lock_order(session, order_id)
            if order is None:
                # удалён между поиском и блокировкой
                logger.warning("reconcile_order_vanished")
                await session.rollback()
                return ReconcileResult(found=False, status=new_status)

            previous = order.status
            order.status = new_status
            if payment_id:
                order.payment_id = str(payment_id)
            order.raw = _merge_raw(order.raw, raw)

            result = ReconcileResult(
                found=True,
                order_id=order.id,
                previous_status=previous,
                status=new_status,
                transitioned=(
                    new_status == OrderStatus.APPROVED.value
                    and previous != OrderStatus.APPROVED.value
                ),
            )

            if new_status == OrderStatus.APPROVED.value:
                result.paid_at = paid_at or dt.datetime.now(dt.timezone.utc)
                result.sales_created = await materialize_sales(session, order, paid_at=result.paid_at)
                result.stock_debited = await debit_stock(session, order)

            await session.commit()
        except Exception:
            await session.rollback()
            raise

        logger.info("order_reconciled", **result.to_dict())
        return result


__all__ = [
    "ALLOWED_PAYMENT_STATUSES",
    "map_payment_status",
    "parse_provider_datetime",
    "payment_order_reference",
    "find_order_id",
    "reconcile_payment",
    "ReconcileResult",
]
