"""
Order Pydantic schemas (public lookup, admin updates, manual resync).
"""

from datetime import datetime
from typing import Any, Optional, Union

from pydantic import Field

from app.models.order import OrderChannel, OrderStatus, ShipmentStatus
from app.schemas.base import BaseResponseSchema, BaseSchema, BaseUpdateSchema, Money


class OrderItemOut(BaseSchema):
    id: int
    product_slug: str
    name: str
    unit_price: Money
    quantity: int
    sku_id: Optional[int] = None
    variants: Optional[dict[str, Any]] = None


class ShipmentOut(BaseSchema):
    status: ShipmentStatus
    carrier: Optional[str] = None
    tracking: Optional[str] = None


class InvoiceOut(BaseSchema):
    number: Optional[str] = None
    url: Optional[str] = None


class OrderOut(BaseResponseSchema):
    id: str
    status: OrderStatus
    channel: OrderChannel
    preference_id: Optional[str] = None
    payment_id: Optional[str] = None
    subtotal: Money
    discount: Money
    shipping: Money
    total: Money
    currency: str
    billing: Optional[dict[str, Any]] = None
    items: list[OrderItemOut] = Field(default_factory=list)
    shipment: Optional[ShipmentOut] = None
    invoice: Optional[InvoiceOut] = None


class AdminOrderOut(OrderOut):
    raw: Optional[dict[str, Any]] = None


class ShipmentUpdate(BaseUpdateSchema):
    status: Optional[ShipmentStatus] = None
    carrier: Optional[str] = Field(None, max_length=120)
    tracking: Optional[str] = Field(None, max_length=255)


class InvoiceUpdate(BaseUpdateSchema):
    number: Optional[str] = Field(None, max_length=64)
    url: Optional[str] = None


class OrderAdminUpdate(BaseUpdateSchema):
    shipment: Optional[ShipmentUpdate] = None
    invoice: Optional[InvoiceUpdate] = None


class SyncSaleRequest(BaseSchema):
    """Manual resync: ``{paymentId, externalReference?}``."""

    payment_id: Optional[Union[str, int]] = Field(None, alias="paymentId")
    external_reference: Optional[str] = Field(None, alias="externalReference")


class SyncSaleResponse(BaseSchema):
    ok: bool = True
    sales_created: int = Field(..., serialization_alias="salesCreated")
    order_id: str = Field(..., serialization_alias="orderId")
    payment_date: Optional[datetime] = Field(None, serialization_alias="paymentDate")
