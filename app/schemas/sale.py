"""
Sale Pydantic schemas.

Numeric fields are accepted loosely (strings included); range checks live in
app.services.sales.normalize_sale_input so the admin form gets a 400.
"""

import datetime as dt
from typing import Optional, Union

from pydantic import Field

from app.models.sale import SaleChannel
from app.schemas.base import BaseCreateSchema, BaseResponseSchema, BaseUpdateSchema, Money

Number = Union[int, float, str]


class SaleCreate(BaseCreateSchema):
    name: Optional[str] = None
    quantity: Optional[Number] = None
    cost: Optional[Number] = 0
    price: Optional[Number] = None
    date: Optional[Union[dt.datetime, dt.date]] = None
    note: Optional[str] = None
    channel: SaleChannel = SaleChannel.PHYSICAL


class SaleUpdate(BaseUpdateSchema):
    name: Optional[str] = None
    quantity: Optional[Number] = None
    cost: Optional[Number] = None
    price: Optional[Number] = None
    date: Optional[Union[dt.datetime, dt.date]] = None
    note: Optional[str] = None
    channel: Optional[SaleChannel] = None


class SaleOut(BaseResponseSchema):
    id: int
    name: str
    quantity: int
    cost: Money
    price: Money
    date: dt.datetime
    note: Optional[str] = None
    channel: SaleChannel
    order_id: Optional[str] = Field(None, description="Set for sales created from paid orders")
