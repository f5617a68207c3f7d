# app/models/stock_debit.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, utc_now


class StockDebit(Base):
    """
    Отметка «остатки по заказу уже списаны».

    Пишется в той же транзакции, что и декременты остатков; UNIQUE по order_id
    гарантирует не более одного списания на заказ. Без FK: отметка переживает
    удаление заказа.
    """

    __tablename__ = "stock_debits"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[str] = mapped_column(String(36), nullable=False, unique=True)
    items_debited: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    note: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utc_now)


__all__ = ["StockDebit"]
