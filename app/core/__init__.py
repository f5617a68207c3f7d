# app/core/__init__.py
"""
Core package: settings, logging, database, exceptions and shared dependencies.

Подключение к приложению собрано в app.main.create_app().
"""

from app.core.config import settings
from app.core.logging import get_logger

__all__ = ["settings", "get_logger"]
