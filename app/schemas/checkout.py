"""
Checkout Pydantic schemas (Mercado Pago preference and WhatsApp order).
"""

from typing import Any, Optional

from pydantic import ConfigDict, Field

from app.schemas.base import BaseCreateSchema, BaseSchema


class CartItem(BaseCreateSchema):
    slug: str = Field(..., min_length=1, max_length=255)
    qty: int = Field(1, ge=1, le=999)
    variants: Optional[dict[str, str]] = None


class BillingInfo(BaseCreateSchema):
    """Billing snapshot stored with the order. Extra keys are kept."""

    model_config = ConfigDict(extra="allow")

    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


class CheckoutRequest(BaseCreateSchema):
    items: list[CartItem] = Field(default_factory=list)
    billing: Optional[BillingInfo] = None
    pricing: Optional[dict[str, Any]] = None


class CheckoutMPResponse(BaseSchema):
    id: str
    init_point: Optional[str] = None
    sandbox_init_point: Optional[str] = None
    order_id: str


class CheckoutWspResponse(BaseSchema):
    chat_url: str = Field(..., serialization_alias="chatUrl")
    order_id: str = Field(..., serialization_alias="orderId")
