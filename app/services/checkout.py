"""
Checkout: turns a cart into a pending Order.

- Mercado Pago: creates a checkout preference (external_reference = order id)
  and stores the order with preference id.
- WhatsApp: stores the order with preference id ``whatsapp:<orderId>`` and
  builds a wa.me link with the order summary.

Prices always come from the catalog, never from the client.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional
from urllib.parse import quote

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.config import settings
from app.core.exceptions import ConfigurationError, ShopValidationError
from app.core.logging import get_logger
from app.models.order import Order, OrderChannel, OrderItem, OrderStatus, new_order_id
from app.models.product import Product, ProductSku
from app.schemas.checkout import CartItem, CheckoutRequest
from app.services.mercadopago_service import MercadoPagoService

logger = get_logger(__name__)

CENTS = Decimal("0.01")


@dataclass
class PricedLine:
    slug: str
    name: str
    qty: int
    unit_price: Decimal
    sku_id: Optional[int] = None
    variants: Optional[dict[str, str]] = None

    @property
    def total(self) -> Decimal:
        return (self.unit_price * self.qty).quantize(CENTS)


def format_money(amount: Decimal | float) -> str:
    """``1234.5`` → ``$1,234.50`` (es-MX style)."""
    return f"${Decimal(amount):,.2f}"


def _match_sku(product: Product, variants: Optional[dict[str, str]]) -> Optional[ProductSku]:
    if len(product.skus) == 1:
        return product.skus[0]
    if variants and product.skus:
        label = " / ".join(str(v) for v in variants.values()).strip().lower()
        for sku in product.skus:
            if (sku.variant or "").strip().lower() == label:
                return sku
    return None


async def price_cart(session: AsyncSession, items: list[CartItem]) -> list[PricedLine]:
    if not items:
        raise ShopValidationError("No items", "EMPTY_CART")

    slugs = {it.slug.strip().lower() for it in items}
    rows = await session.scalars(
        select(Product)
        .where(Product.slug.in_(slugs), Product.is_active.is_(True))
        .options(selectinload(Product.skus))
    )
    by_slug = {p.slug: p for p in rows.all()}

    lines: list[PricedLine] = []
    for it in items:
        slug = it.slug.strip().lower()
        product = by_slug.get(slug)
        if product is None:
            raise ShopValidationError(f"Unknown product: {it.slug}", "UNKNOWN_PRODUCT", extra={"slug": it.slug})
        sku = _match_sku(product, it.variants)
        price = sku.price if sku is not None and sku.price is not None else product.price
        lines.append(
            PricedLine(
                slug=product.slug,
                name=product.name,
                qty=int(it.qty),
                unit_price=Decimal(price).quantize(CENTS),
                sku_id=sku.id if sku is not None else None,
                variants=it.variants or None,
            )
        )
    return lines


def _non_negative(pricing: Optional[dict[str, Any]], key: str) -> Decimal:
    try:
        value = Decimal(str((pricing or {}).get(key) or 0))
    except ArithmeticError:
        return Decimal("0")
    if not value.is_finite():
        return Decimal("0")
    return max(Decimal("0"), value).quantize(CENTS)


def _build_order(
    order_id: str,
    lines: list[PricedLine],
    *,
    channel: OrderChannel,
    preference_id: str,
    billing: Optional[dict[str, Any]],
    pricing: Optional[dict[str, Any]] = None,
    raw: Optional[dict[str, Any]] = None,
) -> Order:
    subtotal = sum((ln.total for ln in lines), Decimal("0"))
    discount = min(_non_negative(pricing, "discount"), subtotal)
    shipping = _non_negative(pricing, "shipping")
    order = Order(
        id=order_id,
        preference_id=preference_id,
        status=OrderStatus.PENDING.value,
        channel=channel.value,
        subtotal=subtotal,
        discount=discount,
        shipping=shipping,
        total=subtotal - discount + shipping,
        currency=settings.CURRENCY,
        billing=billing or None,
        raw=raw,
    )
    order.items = [
        OrderItem(
            product_slug=ln.slug,
            name=ln.name,
            unit_price=ln.unit_price,
            quantity=ln.qty,
            sku_id=ln.sku_id,
            variants=ln.variants,
        )
        for ln in lines
    ]
    return order


def _base_url(origin: str) -> str:
    return (settings.PUBLIC_BASE_URL or origin).rstrip("/")


def build_preference(
    order_id: str,
    lines: list[PricedLine],
    *,
    origin: str,
    billing: Optional[dict[str, Any]],
    pricing: Optional[dict[str, Any]],
) -> dict[str, Any]:
    base = _base_url(origin)
    result_url = f"{base}/checkout/result"
    billing = billing or {}
    return {
        "items": [
            {
                "id": ln.slug,
                "title": ln.name,
                "quantity": ln.qty,
                "currency_id": settings.CURRENCY,
                "unit_price": float(ln.unit_price),
            }
            for ln in lines
        ],
        "payer": {"name": billing.get("name"), "email": billing.get("email")},
        "back_urls": {"success": result_url, "failure": result_url, "pending": result_url},
        "auto_return": "approved",
        "binary_mode": True,
        "external_reference": order_id,
        "metadata": {"order_id": order_id, "billing": billing, "pricing_snapshot": pricing},
        "notification_url": settings.MP_WEBHOOK_URL or f"{base}{settings.API_PREFIX.rstrip('/')}/webhooks/mp",
    }


async def checkout_mercadopago(
    session: AsyncSession,
    mp: MercadoPagoService,
    request: CheckoutRequest,
    *,
    origin: str,
) -> dict[str, Any]:
    if not mp.configured:
        raise ConfigurationError("MP_ACCESS_TOKEN is not configured", "MP_NOT_CONFIGURED")

    lines = await price_cart(session, request.items)
    billing = request.billing.model_dump(exclude_none=True) if request.billing else None
    order_id = new_order_id()
    # заказ собирается до create_preference
    order = _build_order(
        order_id,
        lines,
        channel=OrderChannel.MERCADOPAGO,
        preference_id="",
        billing=billing,
        pricing=request.pricing,
    )

    pref = await mp.create_preference(
        build_preference(
            order_id,
            lines,
            origin=origin,
            billing=billing,
            pricing={"discount": float(order.discount), "shipping": float(order.shipping)},
        )
    )
    order.preference_id = str(pref.get("id"))
    session.add(order)
    await session.commit()
    logger.info("checkout_mp_created", order_id=order_id, preference_id=order.preference_id, total=str(order.total))
    return {
        "id": str(pref.get("id")),
        "init_point": pref.get("init_point"),
        "sandbox_init_point": pref.get("sandbox_init_point"),
        "order_id": order_id,
    }


def whatsapp_message(order: Order, lines: list[PricedLine], *, origin: str) -> str:
    billing = order.billing or {}
    out: list[str] = [f"*Nueva orden #{order.short_id}*"]
    if billing.get("name"):
        out.append(f"Cliente: {billing['name']}")
    if billing.get("email"):
        out.append(f"Email: {billing['email']}")
    out.append("")
    out.append("*Productos:*")
    for ln in lines:
        variants = ""
        if ln.variants:
            variants = " · " + ", ".join(f"{k}: {v}" for k, v in ln.variants.items())
        out.append(f"• {ln.name}{variants}\n  Cant: {ln.qty}  ·  {format_money(ln.unit_price)} c/u")
    out.append("")
    out.append(f"*Total:* {format_money(order.total)}")
    out.append("")
    out.append(f"Ver pedido: {_base_url(origin)}/order/{order.id}")
    out.append("")
    out.append("Hola 👋, me interesa confirmar la disponibilidad y finalizar el pedido.")
    return "\n".join(out)


async def checkout_whatsapp(
    session: AsyncSession,
    request: CheckoutRequest,
    *,
    origin: str,
) -> dict[str, str]:
    phone = settings.WHATSAPP_BUSINESS_NUMBER
    if not phone:
        raise ConfigurationError("WHATSAPP_BUSINESS_NUMBER is not configured", "WHATSAPP_NOT_CONFIGURED")

    lines = await price_cart(session, request.items)
    billing = request.billing.model_dump(exclude_none=True) if request.billing else {}
    order_id = new_order_id()
    order = _build_order(
        order_id,
        lines,
        channel=OrderChannel.WHATSAPP,
        preference_id=f"whatsapp:{order_id}",
        billing=billing,
        pricing=request.pricing,
        raw={"billing": billing, "channel": OrderChannel.WHATSAPP.value},
    )
    session.add(order)
    await session.commit()

    text = quote(whatsapp_message(order, lines, origin=origin), safe="")
    logger.info("checkout_wsp_created", order_id=order_id, total=str(order.total))
    return {"chat_url": f"https://wa.me/{phone}?text={text}", "order_id": order_id}


__all__ = [
    "price_cart",
    "build_preference",
    "checkout_mercadopago",
    "checkout_whatsapp",
    "whatsapp_message",
    "format_money",
]
