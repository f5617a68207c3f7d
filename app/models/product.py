# app/models/product.py
"""
Product / ProductSku: каталог и складские остатки.

- Product: карточка товара (slug уникален, цена базовая, себестоимость опционально).
- ProductSku: вариант товара со своим остатком (`stock` никогда не уходит ниже 0).
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Integer, Numeric, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from app.models.base import BaseModel
from app.models.types import JSONBCompat, LowercaseString, TrimmedString


class Product(BaseModel):
    __tablename__ = "products"

    slug: Mapped[str] = mapped_column(LowercaseString(255), nullable=False, unique=True, index=True)
    name: Mapped[str] = mapped_column(TrimmedString(255), nullable=False, index=True)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    cost_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    category: Mapped[Optional[str]] = mapped_column(String(120), index=True)
    description: Mapped[Optional[str]] = mapped_column(Text)
    images: Mapped[Optional[list[Any]]] = mapped_column(JSONBCompat)
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=text("true"), index=True
    )

    skus: Mapped[list[ProductSku]] = relationship(
        "ProductSku",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="ProductSku.id",
    )

    __table_args__ = (
        CheckConstraint("price >= 0", name="price_nonneg"),
        CheckConstraint("(cost_price IS NULL OR cost_price >= 0)", name="cost_price_nonneg"),
    )

    @validates("slug")
    def _validate_slug(self, _k: str, v: str) -> str:
        v = (v or "").strip().lower()
        if not v:
            raise ValueError("slug must be non-empty")
        return v


class ProductSku(BaseModel):
    __tablename__ = "product_skus"

    product_id: Mapped[int] = mapped_column(
        ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sku: Mapped[str] = mapped_column(TrimmedString(100), nullable=False, unique=True, index=True)
    variant: Mapped[Optional[str]] = mapped_column(String(255))
    price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))

    product: Mapped[Product] = relationship("Product", back_populates="skus")

    __table_args__ = (
        CheckConstraint("stock >= 0", name="stock_nonneg"),
        CheckConstraint("(price IS NULL OR price >= 0)", name="sku_price_nonneg"),
    )


__all__ = ["Product", "ProductSku"]
