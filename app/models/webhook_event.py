# app/models/webhook_event.py
"""
WebhookEvent: журнал входящих уведомлений платёжного провайдера.

- Ключ (provider, external_id) уникален: повторная доставка увеличивает
  delivery_count и обновляет payload.
- status: received → processed | ignored | failed.
- Строки со статусом failed образуют durable dead-letter лог, их можно переиграть из админки.
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import BaseModel
from app.models.types import ChoiceString, JSONBCompat


class WebhookEventStatus(str, enum.Enum):
    RECEIVED = "received"
    PROCESSED = "processed"
    IGNORED = "ignored"
    FAILED = "failed"


WEBHOOK_EVENT_STATUSES = tuple(s.value for s in WebhookEventStatus)


class WebhookEvent(BaseModel):
    __tablename__ = "webhook_events"

    provider: Mapped[str] = mapped_column(String(16), nullable=False)
    # "<topic>:<resource id>"; для уведомлений без id берём хэш тела
    external_id: Mapped[str] = mapped_column(String(255), nullable=False)
    topic: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    resource_id: Mapped[Optional[str]] = mapped_column(String(64))

    payload: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONBCompat)
    query: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONBCompat)

    delivery_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    status: Mapped[str] = mapped_column(
        ChoiceString(choices=WEBHOOK_EVENT_STATUSES, length=16),
        nullable=False,
        default=WebhookEventStatus.RECEIVED.value,
    )
    last_error: Mapped[Optional[str]] = mapped_column(Text)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        UniqueConstraint("provider", "external_id", name="uq_webhook_events_provider_external"),
        Index("ix_webhook_events_status_created", "status", "created_at"),
    )

    @property
    def is_failed(self) -> bool:
        return self.status == WebhookEventStatus.FAILED.value


__all__ = ["WebhookEvent", "WebhookEventStatus", "WEBHOOK_EVENT_STATUSES"]
