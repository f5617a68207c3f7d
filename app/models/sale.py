# app/models/sale.py
"""
Sale: запись о продаже (онлайн из оплаченного заказа, либо ручная/физическая).

Онлайн-продажа однозначно определяется ключом (provider, order_id, order_item_id);
UNIQUE-ограничение держит инвариант «не больше одной продажи на позицию заказа».
Для ручных продаж эти колонки NULL (NULL-ы не конфликтуют).
"""

from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import CheckConstraint, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import BaseModel
from app.models.types import ChoiceString, UTCDateTime


class SaleChannel(str, enum.Enum):
    ONLINE = "online"
    PHYSICAL = "physical"
    MANUAL = "manual"


SALE_CHANNELS = tuple(c.value for c in SaleChannel)


def sale_key(provider: str, order_id: str, item_id: int | str) -> str:
    """Составной ключ, который также пишется в note: ``MP:<orderId>:<itemId>``."""
    return f"{provider}:{order_id}:{item_id}"


class Sale(BaseModel):
    __tablename__ = "sales"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    note: Mapped[Optional[str]] = mapped_column(Text)
    channel: Mapped[str] = mapped_column(
        ChoiceString(choices=SALE_CHANNELS, length=16),
        nullable=False,
        default=SaleChannel.MANUAL.value,
        index=True,
    )

    # ключ дедупликации онлайн-продаж
    provider: Mapped[Optional[str]] = mapped_column(String(16))
    order_id: Mapped[Optional[str]] = mapped_column(String(36), index=True)
    order_item_id: Mapped[Optional[int]] = mapped_column(Integer)

    __table_args__ = (
        UniqueConstraint("provider", "order_id", "order_item_id", name="uq_sales_provider_order_item"),
        CheckConstraint("quantity > 0", name="qty_positive"),
        CheckConstraint("cost >= 0 AND price >= 0", name="amounts_nonneg"),
    )

    @property
    def line_total(self) -> Decimal:
        return Decimal(self.price or 0) * int(self.quantity or 0)


__all__ = ["Sale", "SaleChannel", "SALE_CHANNELS", "sale_key"]
