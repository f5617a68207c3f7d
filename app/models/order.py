# app/models/order.py
"""
Order / OrderItem / Shipment / Invoice: заказы витрины.

- id заказа: строковый uuid4; он же external_reference у Mercado Pago.
- статус меняет только сверка платежа (reconciliation); админка правит
  доставку, счёт и может удалить заказ.
- позиции заказа: неизменяемый снимок (slug, имя, цена, количество).
"""

from __future__ import annotations

import enum
import uuid
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import CheckConstraint, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base, BaseModel, TimestampMixin
from app.models.types import ChoiceString, CurrencyCode, JSONBCompat


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    IN_PROCESS = "in_process"
    UNKNOWN = "unknown"


class OrderChannel(str, enum.Enum):
    MERCADOPAGO = "mercadopago"
    WHATSAPP = "whatsapp"


class ShipmentStatus(str, enum.Enum):
    PENDING = "pending"
    SHIPPED = "shipped"
    DELIVERED = "delivered"


ORDER_STATUSES = tuple(s.value for s in OrderStatus)
ORDER_CHANNELS = tuple(c.value for c in OrderChannel)
SHIPMENT_STATUSES = tuple(s.value for s in ShipmentStatus)


def new_order_id() -> str:
    return str(uuid.uuid4())


class Order(TimestampMixin, Base):
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_order_id)
    preference_id: Mapped[Optional[str]] = mapped_column(String(128), index=True)
    payment_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    status: Mapped[str] = mapped_column(
        ChoiceString(choices=ORDER_STATUSES, length=16),
        nullable=False,
        default=OrderStatus.PENDING.value,
        index=True,
    )
    channel: Mapped[str] = mapped_column(
        ChoiceString(choices=ORDER_CHANNELS, length=16),
        nullable=False,
        default=OrderChannel.MERCADOPAGO.value,
        index=True,
    )

    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    discount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    shipping: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    currency: Mapped[str] = mapped_column(CurrencyCode(), nullable=False, default="MXN")

    billing: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONBCompat)
    raw: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONBCompat)

    items: Mapped[list[OrderItem]] = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )
    shipment: Mapped[Optional[Shipment]] = relationship(
        "Shipment", back_populates="order", uselist=False, cascade="all, delete-orphan"
    )
    invoice: Mapped[Optional[Invoice]] = relationship(
        "Invoice", back_populates="order", uselist=False, cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("total >= 0", name="total_nonneg"),
        CheckConstraint(
            "subtotal >= 0 AND discount >= 0 AND shipping >= 0", name="parts_nonneg"
        ),
    )

    @property
    def short_id(self) -> str:
        return (self.id or "")[:8]

    @property
    def stock_debited(self) -> bool:
        return bool((self.raw or {}).get("stockDebited"))


class OrderItem(BaseModel):
    __tablename__ = "order_items"

    order_id: Mapped[str] = mapped_column(
        ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_slug: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    sku_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("product_skus.id", ondelete="SET NULL"), index=True
    )
    variants: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONBCompat)

    order: Mapped[Order] = relationship("Order", back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="qty_positive"),
        CheckConstraint("unit_price >= 0", name="unit_price_nonneg"),
    )

    @property
    def line_total(self) -> Decimal:
        return Decimal(self.unit_price or 0) * int(self.quantity or 0)


class Shipment(BaseModel):
    __tablename__ = "shipments"

    order_id: Mapped[str] = mapped_column(
        ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    status: Mapped[str] = mapped_column(
        ChoiceString(choices=SHIPMENT_STATUSES, length=16),
        nullable=False,
        default=ShipmentStatus.PENDING.value,
    )
    carrier: Mapped[Optional[str]] = mapped_column(String(120))
    tracking: Mapped[Optional[str]] = mapped_column(String(255))

    order: Mapped[Order] = relationship("Order", back_populates="shipment")


class Invoice(BaseModel):
    __tablename__ = "invoices"

    order_id: Mapped[str] = mapped_column(
        ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    number: Mapped[Optional[str]] = mapped_column(String(64))
    url: Mapped[Optional[str]] = mapped_column(Text)

    order: Mapped[Order] = relationship("Order", back_populates="invoice")


__all__ = [
    "Order",
    "OrderItem",
    "Shipment",
    "Invoice",
    "OrderStatus",
    "OrderChannel",
    "ShipmentStatus",
    "ORDER_STATUSES",
    "new_order_id",
]
