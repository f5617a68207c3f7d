import json

import pytest
from sqlalchemy import func, select

from app.core.exceptions import PaymentProviderError
from app.models import Order, ProductSku, Sale, WebhookEvent
from app.services.webhooks import event_external_id, extract_notification, normalize_topic, parse_body

WEBHOOK = "/api/webhooks/mp"


# ---------------------------------------------------------------------------
# Extraction (pure)
# ---------------------------------------------------------------------------
@pytest.mark.parametrize(
    "body, query, expected",
    [
        ({"type": "payment", "data": {"id": "42"}}, {}, ("payment", "42")),
        ({"action": "payment.updated", "data": {"id": 42}}, {}, ("payment", "42")),
        ({"topic": "merchant_order", "resource": "https://api.mercadopago.com/merchant_orders/77"}, {}, ("merchant_order", "77")),
        ({}, {"type": "payment", "data.id": "123"}, ("payment", "123")),
        ({}, {"topic": "payment", "id": "55"}, ("payment", "55")),
        ({"type": "payment", "data": {"id": "1"}}, {"type": "merchant_order", "data.id": "2"}, ("payment", "1")),
        ({}, {}, (None, None)),
    ],
)
def test_extract_notification(body, query, expected):
    assert extract_notification(body, query) == expected


def test_normalize_topic():
    assert normalize_topic("topic_merchant_order_wh") == "merchant_order"
    assert normalize_topic("PAYMENT.created") == "payment"
    assert normalize_topic("  ") is None


def test_parse_body_is_lenient():
    assert parse_body(b"") == {}
    assert parse_body(b"not json") == {}
    assert parse_body(b"[1, 2]") == {}
    assert parse_body(json.dumps({"type": "payment"}).encode()) == {"type": "payment"}


def test_event_external_id_without_resource_is_stable():
    a = event_external_id("unknown_event", None, {"x": 1}, {"y": "2"})
    b = event_external_id("unknown_event", None, {"x": 1}, {"y": "2"})
    assert a == b
    assert a.startswith("unknown_event:sha1:")
    assert event_external_id("payment", "9", {}, {}) == "payment:9"


# ---------------------------------------------------------------------------
# Endpoint
# ---------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_payment_webhook_approves_order(client, mp, make_product, make_order, fetch):
    p1 = await make_product("taza", price="150.00", stock=5)
    p2 = await make_product("iman", price="40.00", stock=3)
    order = await make_order([(p1, 2), (p2, 1)])
    mp.add_payment("1001", "approved", order.id)

    r = await client.post(WEBHOOK, json={"type": "payment", "data": {"id": "1001"}})
    assert r.status_code == 200
    assert r.json() == {"ok": True}

    assert await fetch.scalar(select(Order.status).where(Order.id == order.id)) == "approved"
    assert await fetch.scalar(select(Order.payment_id).where(Order.id == order.id)) == "1001"
    assert await fetch.scalar(select(func.count(Sale.id)).where(Sale.order_id == order.id)) == 2

    event = await fetch.scalar(select(WebhookEvent))
    assert event.status == "processed"
    assert event.external_id == "payment:1001"


@pytest.mark.asyncio
async def test_query_only_notification_fetches_payment(client, mp):
    r = await client.post(f"{WEBHOOK}?type=payment&data.id=123", content=b"")
    assert r.status_code == 200
    assert ("payment", "123") in mp.calls


@pytest.mark.asyncio
async def test_malformed_body_falls_back_to_query(client, mp):
    r = await client.post(
        f"{WEBHOOK}?topic=payment&id=321",
        content=b"{broken",
        headers={"content-type": "application/json"},
    )
    assert r.status_code == 200
    assert ("payment", "321") in mp.calls


@pytest.mark.asyncio
async def test_unknown_event_is_acknowledged_without_effects(client, mp, make_product, make_order, fetch):
    product = await make_product("llavero")
    order = await make_order([(product, 1)])

    r = await client.post(f"{WEBHOOK}?type=unknown_event", json={"type": "unknown_event", "data": {"id": "5"}})
    assert r.status_code == 200
    assert r.json() == {"ok": True}
    assert mp.calls == []

    events = await fetch.scalars(select(WebhookEvent))
    assert len(events) == 1
    assert events[0].status == "ignored"
    assert await fetch.scalar(select(Order.status).where(Order.id == order.id)) == "pending"
    assert await fetch.scalar(select(func.count(Sale.id))) == 0


@pytest.mark.asyncio
async def test_unknown_order_is_acknowledged(client, mp, fetch):
    mp.add_payment("404", "approved", "no-such-order")
    r = await client.post(WEBHOOK, json={"type": "payment", "data": {"id": "404"}})
    assert r.json() == {"ok": True}
    assert await fetch.scalar(select(func.count(Sale.id))) == 0


@pytest.mark.asyncio
async def test_redelivery_counts_and_stays_idempotent(client, mp, make_product, make_order, fetch):
    product = await make_product("playera", price="250.00", stock=10)
    order = await make_order([(product, 3)])
    mp.add_payment("77", "approved", order.id)

    for _ in range(3):
        r = await client.post(WEBHOOK, json={"type": "payment", "data": {"id": "77"}})
        assert r.json() == {"ok": True}

    event = await fetch.scalar(select(WebhookEvent))
    assert event.delivery_count == 3
    assert await fetch.scalar(select(func.count(Sale.id))) == 1
    sku_id = product.skus[0].id
    assert await fetch.scalar(select(ProductSku.stock).where(ProductSku.id == sku_id)) == 7


@pytest.mark.asyncio
async def test_merchant_order_uses_preference_id(client, mp, make_product, make_order, fetch):
    product = await make_product("gorra", price="180.00")
    order = await make_order([(product, 1)], preference_id="pref-abc")
    mp.merchant_orders["900"] = {
        "id": 900,
        "preference_id": "pref-abc",
        "payments": [{"id": 555, "status": "approved", "date_approved": "2024-06-01T12:00:00Z"}],
    }

    r = await client.post(WEBHOOK, json={"topic": "merchant_order", "resource": "https://api.mercadopago.com/merchant_orders/900"})
    assert r.json() == {"ok": True}
    assert await fetch.scalar(select(Order.status).where(Order.id == order.id)) == "approved"
    assert await fetch.scalar(select(Order.payment_id).where(Order.id == order.id)) == "555"
    assert await fetch.scalar(select(func.count(Sale.id))) == 1


@pytest.mark.asyncio
async def test_provider_failure_is_dead_lettered_and_replayable(
    client, mp, admin_headers, make_product, make_order, fetch
):
    product = await make_product("taza-grande", price="200.00", stock=4)
    order = await make_order([(product, 2)])
    mp.add_payment("2002", "approved", order.id)
    mp.fail_with = PaymentProviderError("Mercado Pago GET /v1/payments/2002 failed with 503", upstream_status=503)

    r = await client.post(WEBHOOK, json={"type": "payment", "data": {"id": "2002"}})
    assert r.status_code == 200
    assert r.json() == {"ok": False}

    event = await fetch.scalar(select(WebhookEvent))
    assert event.status == "failed"
    assert "PaymentProviderError" in event.last_error
    assert await fetch.scalar(select(Order.status).where(Order.id == order.id)) == "pending"

    r = await client.get("/api/admin/webhooks/events", headers=admin_headers)
    assert r.status_code == 200
    assert [e["id"] for e in r.json()] == [event.id]

    mp.fail_with = None
    r = await client.post(f"/api/admin/webhooks/events/{event.id}/replay", headers=admin_headers)
    assert r.status_code == 200
    body = r.json()
    assert body["ok"] is True
    assert body["event"]["status"] == "processed"
    assert body["event"]["last_error"] is None
    assert await fetch.scalar(select(Order.status).where(Order.id == order.id)) == "approved"

    r = await client.get("/api/admin/webhooks/events", headers=admin_headers)
    assert r.json() == []


@pytest.mark.asyncio
async def test_webhook_also_mounted_without_api_prefix(client, mp):
    r = await client.post("/webhooks/mp?type=payment&data.id=8")
    assert r.status_code == 200
    assert ("payment", "8") in mp.calls
