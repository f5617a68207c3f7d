"""
Product Pydantic schemas.
"""

from typing import Optional

from pydantic import Field, field_validator

from app.schemas.base import BaseCreateSchema, BaseResponseSchema, BaseSchema, Money


class SkuIn(BaseCreateSchema):
    sku: str = Field(..., min_length=1, max_length=100)
    variant: Optional[str] = Field(None, max_length=255)
    price: Optional[Money] = Field(None, ge=0)
    stock: int = Field(0, ge=0)


class ProductUpsert(BaseCreateSchema):
    """Create or replace a product by slug (with its SKUs)."""

    slug: str = Field(..., min_length=1, max_length=255)
    name: str = Field(..., min_length=1, max_length=255)
    price: Money = Field(..., ge=0)
    cost_price: Optional[Money] = Field(None, ge=0)
    category: Optional[str] = Field(None, max_length=120)
    description: Optional[str] = None
    images: list[str] = Field(default_factory=list)
    is_active: bool = True
    skus: Optional[list[SkuIn]] = None

    @field_validator("slug")
    @classmethod
    def _slug(cls, v: str) -> str:
        v = v.strip().lower()
        if not v:
            raise ValueError("slug must be non-empty")
        return v


class SkuOut(BaseSchema):
    id: int
    sku: str
    variant: Optional[str] = None
    price: Optional[Money] = None
    stock: int


class ProductOut(BaseResponseSchema):
    id: int
    slug: str
    name: str
    price: Money
    cost_price: Optional[Money] = None
    category: Optional[str] = None
    description: Optional[str] = None
    images: Optional[list[str]] = None
    is_active: bool
    skus: list[SkuOut] = Field(default_factory=list)
