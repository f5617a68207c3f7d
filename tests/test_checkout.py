from decimal import Decimal
from urllib.parse import parse_qs, urlparse

import pytest
from sqlalchemy import select
from sqlalchemy.orm import selectinload

from app.core.config import settings
from app.models import Order
from app.services.checkout import format_money


def test_format_money():
    assert format_money(Decimal("1234.5")) == "$1,234.50"
    assert format_money(0) == "$0.00"


@pytest.mark.asyncio
async def test_mp_checkout_creates_preference_and_pending_order(client, mp, make_product, session_factory):
    await make_product("taza", price="150.00")
    await make_product("iman", price="40.00")

    r = await client.post(
        "/api/checkout/mp",
        json={
            "items": [{"slug": "taza", "qty": 2}, {"slug": "IMAN", "qty": 1}],
            "billing": {"name": "Ana", "email": "ana@example.com"},
            "pricing": {"shipping": 99, "discount": 40},
        },
    )
    assert r.status_code == 200
    body = r.json()
    assert body["id"] == "pref-1"
    assert body["init_point"].startswith("https://mp.invalid/")
    order_id = body["order_id"]

    pref = mp.preferences[0]
    assert pref["external_reference"] == order_id
    assert pref["binary_mode"] is True
    assert pref["back_urls"]["success"] == "https://shop.test/checkout/result"
    assert pref["notification_url"] == "https://shop.test/api/webhooks/mp"
    assert [i["unit_price"] for i in pref["items"]] == [150.0, 40.0]

    async with session_factory() as s:
        order = await s.scalar(select(Order).where(Order.id == order_id).options(selectinload(Order.items)))
    assert order.status == "pending"
    assert order.channel == "mercadopago"
    assert order.preference_id == "pref-1"
    assert order.subtotal == Decimal("340.00")
    assert order.discount == Decimal("40.00")
    assert order.shipping == Decimal("99.00")
    assert order.total == Decimal("399.00")
    assert order.billing["email"] == "ana@example.com"
    assert [(i.product_slug, i.quantity) for i in order.items] == [("taza", 2), ("iman", 1)]


@pytest.mark.asyncio
async def test_client_prices_are_ignored(client, mp, make_product):
    await make_product("gorra", price="180.00")
    r = await client.post("/api/checkout/mp", json={"items": [{"slug": "gorra", "qty": 1, "price": 1}]})
    assert r.status_code == 200
    assert mp.preferences[0]["items"][0]["unit_price"] == 180.0


@pytest.mark.asyncio
async def test_checkout_rejects_empty_cart(client, mp):
    r = await client.post("/api/checkout/mp", json={"items": []})
    assert r.status_code == 400
    assert r.json()["code"] == "EMPTY_CART"
    assert mp.preferences == []


@pytest.mark.asyncio
async def test_checkout_rejects_unknown_slug(client, mp, make_product):
    await make_product("taza")
    r = await client.post("/api/checkout/mp", json={"items": [{"slug": "taza"}, {"slug": "nope"}]})
    assert r.status_code == 400
    assert r.json()["code"] == "UNKNOWN_PRODUCT"
    assert mp.preferences == []


@pytest.mark.asyncio
async def test_inactive_product_cannot_be_bought(client, make_product):
    await make_product("retirado", is_active=False)
    r = await client.post("/api/checkout/wsp", json={"items": [{"slug": "retirado"}]})
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_mp_checkout_without_token_is_500(client, mp, make_product):
    await make_product("taza")
    mp.access_token = None
    r = await client.post("/api/checkout/mp", json={"items": [{"slug": "taza"}]})
    assert r.status_code == 500
    assert r.json()["code"] == "MP_NOT_CONFIGURED"


@pytest.mark.asyncio
async def test_whatsapp_checkout(client, make_product, session_factory):
    await make_product(
        "playera",
        price="250.00",
        skus=[
            {"sku": "playera-m-rojo", "variant": "M / Rojo", "stock": 3},
            {"sku": "playera-l-azul", "variant": "L / Azul", "price": "270.00", "stock": 1},
        ],
    )

    r = await client.post(
        "/api/checkout/wsp",
        json={
            "items": [{"slug": "playera", "qty": 2, "variants": {"talla": "L", "color": "Azul"}}],
            "billing": {"name": "Luis"},
        },
    )
    assert r.status_code == 200
    body = r.json()
    order_id = body["orderId"]

    url = urlparse(body["chatUrl"])
    assert url.netloc == "wa.me"
    assert url.path == f"/{settings.WHATSAPP_BUSINESS_NUMBER}"
    text = parse_qs(url.query)["text"][0]
    assert f"#{order_id[:8]}" in text
    assert "Cliente: Luis" in text
    assert "$540.00" in text
    assert f"https://shop.test/order/{order_id}" in text

    async with session_factory() as s:
        order = await s.scalar(select(Order).where(Order.id == order_id).options(selectinload(Order.items)))
    assert order.channel == "whatsapp"
    assert order.preference_id == f"whatsapp:{order_id}"
    assert order.raw == {"billing": {"name": "Luis"}, "channel": "whatsapp"}
    assert order.items[0].unit_price == Decimal("270.00")
    assert order.items[0].sku_id is not None


@pytest.mark.asyncio
async def test_whatsapp_checkout_without_number_is_500(client, make_product, monkeypatch):
    await make_product("taza")
    monkeypatch.setattr(settings, "WHATSAPP_BUSINESS_NUMBER", None)
    r = await client.post("/api/checkout/wsp", json={"items": [{"slug": "taza"}]})
    assert r.status_code == 500


@pytest.mark.asyncio
@pytest.mark.parametrize("bad", ["NaN", "Infinity", "-Infinity", "sNaN"])
async def test_non_finite_pricing_is_treated_as_zero(client, make_product, session_factory, bad):
    await make_product("taza", price="150.00")
    r = await client.post(
        "/api/checkout/wsp",
        json={"items": [{"slug": "taza"}], "pricing": {"shipping": bad, "discount": bad}},
    )
    assert r.status_code == 200
    order_id = r.json()["orderId"]

    async with session_factory() as s:
        order = await s.get(Order, order_id)
    assert order.shipping == Decimal("0")
    assert order.discount == Decimal("0")
    assert order.total == Decimal("150.00")


@pytest.mark.asyncio
async def test_mp_checkout_sends_sanitized_pricing(client, mp, make_product):
    await make_product("taza", price="150.00")
    r = await client.post(
        "/api/checkout/mp",
        json={"items": [{"slug": "taza"}], "pricing": {"shipping": "Infinity", "discount": 10}},
    )
    assert r.status_code == 200
    assert mp.preferences[0]["metadata"]["pricing_snapshot"] == {"discount": 10.0, "shipping": 0.0}
