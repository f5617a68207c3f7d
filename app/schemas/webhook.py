"""
Webhook Pydantic schemas.
"""

from datetime import datetime
from typing import Any, Optional

from app.models.webhook_event import WebhookEventStatus
from app.schemas.base import BaseResponseSchema, BaseSchema


class WebhookAck(BaseSchema):
    ok: bool


class WebhookEventOut(BaseResponseSchema):
    id: int
    provider: str
    external_id: str
    topic: Optional[str] = None
    resource_id: Optional[str] = None
    status: WebhookEventStatus
    delivery_count: int
    last_error: Optional[str] = None
    processed_at: Optional[datetime] = None
    payload: Optional[dict[str, Any]] = None
    query: Optional[dict[str, Any]] = None


class ReplayResult(BaseSchema):
    ok: bool
    event: WebhookEventOut
