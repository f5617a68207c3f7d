"""
Mercado Pago API integration (payments, merchant orders, checkout preferences).
"""

from typing import Any, Optional

import httpx

from app.core.config import settings
from app.core.exceptions import ConfigurationError, PaymentProviderError
from app.core.logging import get_logger

logger = get_logger(__name__)


class MercadoPagoService:
    """Service for Mercado Pago REST API"""

    def __init__(
        self,
        access_token: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.access_token = access_token if access_token is not None else settings.MP_ACCESS_TOKEN
        self.base_url = (base_url or settings.MP_API_URL).rstrip("/")
        self.timeout = timeout or settings.MP_TIMEOUT_SECONDS
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.access_token)

    def _headers(self) -> dict[str, str]:
        if not self.access_token:
            raise ConfigurationError("MP_ACCESS_TOKEN is not configured", "MP_NOT_CONFIGURED")
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, path: str, json: Optional[dict] = None) -> dict[str, Any]:
        headers = self._headers()
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.request(method, path, headers=headers, json=json)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                "mp_http_error",
                method=method,
                path=path,
                status=e.response.status_code,
                body=e.response.text[:500],
            )
            raise PaymentProviderError(
                f"Mercado Pago {method} {path} failed with {e.response.status_code}",
                upstream_status=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            logger.error("mp_transport_error", method=method, path=path, error=str(e))
            raise PaymentProviderError(f"Mercado Pago {method} {path} failed: {e}") from e
        except ValueError as e:
            logger.error("mp_invalid_json", method=method, path=path)
            raise PaymentProviderError(f"Mercado Pago {method} {path} returned invalid JSON") from e

    async def get_payment(self, payment_id: str) -> dict[str, Any]:
        """GET /v1/payments/{id}"""
        data = await self._request("GET", f"/v1/payments/{payment_id}")
        logger.info("mp_payment_fetched", payment_id=payment_id, status=data.get("status"))
        return data

    async def get_merchant_order(self, merchant_order_id: str) -> dict[str, Any]:
        """GET /merchant_orders/{id}"""
        data = await self._request("GET", f"/merchant_orders/{merchant_order_id}")
        logger.info(
            "mp_merchant_order_fetched",
            merchant_order_id=merchant_order_id,
            preference_id=data.get("preference_id"),
        )
        return data

    async def create_preference(self, preference: dict[str, Any]) -> dict[str, Any]:
        """POST /checkout/preferences"""
        data = await self._request("POST", "/checkout/preferences", json=preference)
        logger.info(
            "mp_preference_created",
            preference_id=data.get("id"),
            external_reference=preference.get("external_reference"),
        )
        return data


def get_mercadopago_service() -> MercadoPagoService:
    """FastAPI dependency (overridden in tests with a fake)."""
    return MercadoPagoService()


__all__ = ["MercadoPagoService", "get_mercadopago_service"]
