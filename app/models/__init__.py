"""Database models package.

Единая точка импорта моделей: импорт пакета регистрирует все таблицы
в Base.metadata (нужно для create_all в тестах и для alembic autogenerate).
"""

from __future__ import annotations

from app.models.base import Base, BaseModel, ensure_models_loaded, utc_now
from app.models.order import (
    Invoice,
    Order,
    OrderChannel,
    OrderItem,
    OrderStatus,
    Shipment,
    ShipmentStatus,
)
from app.models.product import Product, ProductSku
from app.models.sale import Sale, SaleChannel, sale_key
from app.models.stock_debit import StockDebit
from app.models.webhook_event import WebhookEvent, WebhookEventStatus

__all__ = [
    "Base",
    "BaseModel",
    "ensure_models_loaded",
    "utc_now",
    "Product",
    "ProductSku",
    "Order",
    "OrderItem",
    "OrderStatus",
    "OrderChannel",
    "Shipment",
    "ShipmentStatus",
    "Invoice",
    "Sale",
    "SaleChannel",
    "sale_key",
    "StockDebit",
    "WebhookEvent",
    "WebhookEventStatus",
]
