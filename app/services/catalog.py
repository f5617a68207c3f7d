"""
Catalog maintenance for the admin panel (products and their SKUs).
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.exceptions import NotFoundError
from app.core.logging import get_logger
from app.models.product import Product, ProductSku
from app.schemas.product import ProductUpsert

logger = get_logger(__name__)


async def get_product(session: AsyncSession, slug: str) -> Optional[Product]:
    q = (
        select(Product)
        .where(Product.slug == slug.strip().lower())
        .options(selectinload(Product.skus))
        .execution_options(populate_existing=True)
    )
    return (await session.scalars(q)).first()


async def list_products(session: AsyncSession, *, active_only: bool = False) -> list[Product]:
    q = select(Product).options(selectinload(Product.skus)).order_by(Product.name)
    if active_only:
        q = q.where(Product.is_active.is_(True))
    return list((await session.scalars(q)).all())


async def upsert_product(session: AsyncSession, data: ProductUpsert) -> tuple[Product, bool]:
    """
    Create or update a product by slug.

    When ``skus`` is sent, the SKU set is replaced: matched by sku code,
    missing codes are removed. ``skus=None`` leaves SKUs untouched.
    :return: (product, created)
    """
    product = await get_product(session, data.slug)
    created = product is None
    if product is None:
        product = Product(slug=data.slug)
        product.skus = []
        session.add(product)

    product.name = data.name
    product.price = data.price
    product.cost_price = data.cost_price
    product.category = data.category
    product.description = data.description
    product.images = list(data.images)
    product.is_active = data.is_active

    if data.skus is not None:
        existing = {s.sku: s for s in product.skus}
        keep: list[ProductSku] = []
        for item in data.skus:
            sku = existing.get(item.sku.strip())
            if sku is None:
                sku = ProductSku(sku=item.sku.strip())
            sku.variant = item.variant
            sku.price = item.price
            sku.stock = item.stock
            keep.append(sku)
        product.skus = keep

    await session.commit()
    product = await get_product(session, data.slug)
    assert product is not None
    logger.info("product_upserted", slug=product.slug, created=created, skus=len(product.skus))
    return product, created


async def delete_product(session: AsyncSession, slug: str) -> None:
    product = await get_product(session, slug)
    if product is None:
        raise NotFoundError(f"Product {slug} not found", "PRODUCT_NOT_FOUND")
    await session.delete(product)
    await session.commit()
    logger.info("product_deleted", slug=slug)


__all__ = ["get_product", "list_products", "upsert_product", "delete_product"]
