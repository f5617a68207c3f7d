# tests/conftest.py
"""
Pytest configuration and fixtures.

- In-memory SQLite (aiosqlite + StaticPool) with SAVEPOINT support; schema is
  rebuilt for every test.
- The FastAPI app talks to that engine through a get_db override.
- Mercado Pago is replaced by FakeMercadoPago (no network), injected through
  the get_mercadopago_service dependency override.
- Factories for products/SKUs and orders use short-lived sessions so they
  never hold a transaction open on the shared connection.
"""

from __future__ import annotations

import os

# окружение до импорта приложения
os.environ.setdefault("TESTING", "1")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ.setdefault("LOG_FORMAT", "text")

from collections.abc import AsyncIterator, Awaitable, Callable
from decimal import Decimal
from typing import Any, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.config import settings
from app.core.db import get_db, install_sqlite_pragmas
from app.core.exceptions import PaymentProviderError
from app.models import Base, Order, OrderItem, OrderStatus, Product, ProductSku
from app.services.mercadopago_service import MercadoPagoService, get_mercadopago_service

ADMIN_KEY = "test-admin-key"


# ======================================================================================
# Fake payment provider
# ======================================================================================
class FakeMercadoPago(MercadoPagoService):
    """In-memory stand-in for the Mercado Pago REST API."""

    def __init__(self) -> None:
        super().__init__(access_token="TEST-token", base_url="https://mp.invalid")
        self.payments: dict[str, dict[str, Any]] = {}
        self.merchant_orders: dict[str, dict[str, Any]] = {}
        self.preferences: list[dict[str, Any]] = []
        self.calls: list[tuple[str, str]] = []
        self.fail_with: Optional[Exception] = None

    def add_payment(self, payment_id: str | int, status: str, external_reference: Optional[str], **extra: Any) -> dict:
        payment = {
            "id": int(payment_id) if str(payment_id).isdigit() else payment_id,
            "status": status,
            "external_reference": external_reference,
            "date_approved": "2024-05-01T10:00:00.000-04:00" if status == "approved" else None,
            **extra,
        }
        self.payments[str(payment_id)] = payment
        return payment

    async def get_payment(self, payment_id: str) -> dict[str, Any]:
        self.calls.append(("payment", str(payment_id)))
        if self.fail_with is not None:
            raise self.fail_with
        if str(payment_id) not in self.payments:
            raise PaymentProviderError(f"payment {payment_id} not found", upstream_status=404)
        return dict(self.payments[str(payment_id)])

    async def get_merchant_order(self, merchant_order_id: str) -> dict[str, Any]:
        self.calls.append(("merchant_order", str(merchant_order_id)))
        if self.fail_with is not None:
            raise self.fail_with
        if str(merchant_order_id) not in self.merchant_orders:
            raise PaymentProviderError(f"merchant order {merchant_order_id} not found", upstream_status=404)
        return dict(self.merchant_orders[str(merchant_order_id)])

    async def create_preference(self, preference: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(("preference", str(preference.get("external_reference"))))
        if self.fail_with is not None:
            raise self.fail_with
        self.preferences.append(preference)
        pref_id = f"pref-{len(self.preferences)}"
        return {
            "id": pref_id,
            "init_point": f"https://mp.invalid/checkout?pref_id={pref_id}",
            "sandbox_init_point": f"https://sandbox.mp.invalid/checkout?pref_id={pref_id}",
        }


# ======================================================================================
# Settings
# ======================================================================================
@pytest.fixture(autouse=True)
def _test_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "ADMIN_API_KEY", ADMIN_KEY)
    monkeypatch.setattr(settings, "MP_ACCESS_TOKEN", "TEST-token")
    monkeypatch.setattr(settings, "MP_WEBHOOK_URL", None)
    monkeypatch.setattr(settings, "PUBLIC_BASE_URL", "https://shop.test")
    monkeypatch.setattr(settings, "WHATSAPP_BUSINESS_NUMBER", "5215512345678")


# ======================================================================================
# Database
# ======================================================================================
@pytest_asyncio.fixture
async def engine() -> AsyncIterator[AsyncEngine]:
    eng = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    install_sqlite_pragmas(eng)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield eng
    finally:
        await eng.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def fetch(session_factory: async_sessionmaker[AsyncSession]):
    """Run a read-only statement in a throwaway session (fresh view of the DB)."""

    class _Fetch:
        async def scalar(self, stmt):
            async with session_factory() as s:
                return await s.scalar(stmt)

        async def scalars(self, stmt) -> list:
            async with session_factory() as s:
                return list((await s.scalars(stmt)).all())

    return _Fetch()


# ======================================================================================
# App + client
# ======================================================================================
@pytest.fixture
def mp() -> FakeMercadoPago:
    return FakeMercadoPago()


@pytest_asyncio.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession], mp: FakeMercadoPago
) -> AsyncIterator[AsyncClient]:
    from app.main import app

    async def _override_get_db() -> AsyncIterator[AsyncSession]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_mercadopago_service] = lambda: mp
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        try:
            yield c
        finally:
            app.dependency_overrides.clear()


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"X-Admin-Key": ADMIN_KEY}


# ======================================================================================
# Factories
# ======================================================================================
@pytest.fixture
def make_product(session_factory: async_sessionmaker[AsyncSession]) -> Callable[..., Awaitable[Product]]:
    async def _make(
        slug: str,
        *,
        price: str | Decimal = "100.00",
        stock: int | None = 10,
        skus: Optional[list[dict[str, Any]]] = None,
        name: Optional[str] = None,
        is_active: bool = True,
    ) -> Product:
        product = Product(
            slug=slug,
            name=name or slug.replace("-", " ").title(),
            price=Decimal(str(price)),
            is_active=is_active,
        )
        if skus is not None:
            product.skus = [
                ProductSku(
                    sku=s["sku"],
                    variant=s.get("variant"),
                    price=Decimal(str(s["price"])) if s.get("price") is not None else None,
                    stock=int(s.get("stock", 0)),
                )
                for s in skus
            ]
        elif stock is not None:
            product.skus = [ProductSku(sku=f"{slug}-default", stock=stock)]
        async with session_factory() as s:
            s.add(product)
            await s.commit()
            await s.refresh(product, ["skus"])
        return product

    return _make


@pytest.fixture
def make_order(session_factory: async_sessionmaker[AsyncSession]) -> Callable[..., Awaitable[Order]]:
    async def _make(
        lines: list[tuple[Product, int]],
        *,
        status: str = OrderStatus.PENDING.value,
        preference_id: Optional[str] = None,
        raw: Optional[dict[str, Any]] = None,
    ) -> Order:
        items = []
        for product, qty in lines:
            sku = product.skus[0] if product.skus else None
            items.append(
                OrderItem(
                    product_slug=product.slug,
                    name=product.name,
                    unit_price=product.price,
                    quantity=qty,
                    sku_id=sku.id if sku is not None else None,
                )
            )
        subtotal = sum((Decimal(p.price) * q for p, q in lines), Decimal("0"))
        order = Order(
            preference_id=preference_id,
            status=status,
            subtotal=subtotal,
            total=subtotal,
            raw=raw,
        )
        order.items = items
        async with session_factory() as s:
            s.add(order)
            await s.commit()
            await s.refresh(order, ["items"])
        return order

    return _make
