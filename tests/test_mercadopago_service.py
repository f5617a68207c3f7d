import json

import httpx
import pytest

from app.core.exceptions import ConfigurationError, PaymentProviderError
from app.services.mercadopago_service import MercadoPagoService


def _service(handler, token="APP_USR-token"):
    return MercadoPagoService(
        access_token=token,
        base_url="https://api.mp.test/",
        timeout=5,
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_get_payment_sends_bearer_token():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"id": 42, "status": "approved"})

    data = await _service(handler).get_payment("42")
    assert data["status"] == "approved"
    assert seen[0].method == "GET"
    assert seen[0].url.path == "/v1/payments/42"
    assert seen[0].headers["Authorization"] == "Bearer APP_USR-token"


@pytest.mark.asyncio
async def test_get_merchant_order_path():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/merchant_orders/77"
        return httpx.Response(200, json={"id": 77, "preference_id": "pref-1"})

    data = await _service(handler).get_merchant_order("77")
    assert data["preference_id"] == "pref-1"


@pytest.mark.asyncio
async def test_create_preference_posts_json():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "POST"
        assert request.url.path == "/checkout/preferences"
        body = json.loads(request.content)
        return httpx.Response(201, json={"id": "pref-9", "init_point": "https://mp/x", "echo": body})

    data = await _service(handler).create_preference({"external_reference": "order-1", "items": []})
    assert data["id"] == "pref-9"
    assert data["echo"]["external_reference"] == "order-1"


@pytest.mark.asyncio
async def test_http_error_becomes_provider_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"message": "boom"})

    with pytest.raises(PaymentProviderError) as ei:
        await _service(handler).get_payment("1")
    assert ei.value.upstream_status == 500
    assert "/v1/payments/1" in str(ei.value)


@pytest.mark.asyncio
async def test_transport_error_becomes_provider_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(PaymentProviderError) as ei:
        await _service(handler).get_payment("1")
    assert ei.value.upstream_status is None


@pytest.mark.asyncio
async def test_invalid_json_becomes_provider_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"<html>")

    with pytest.raises(PaymentProviderError):
        await _service(handler).get_payment("1")


@pytest.mark.asyncio
async def test_missing_token_is_configuration_error():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={})

    service = _service(handler, token="")
    assert not service.configured
    with pytest.raises(ConfigurationError):
        await service.get_payment("1")
    assert calls == []
