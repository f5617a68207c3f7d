# app/routers/checkout.py
from __future__ import annotations

"""
Checkout router:
- POST /checkout/mp   Mercado Pago preference + pending order
- POST /checkout/wsp  WhatsApp order + wa.me link
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.core.dependencies import request_origin
from app.schemas.checkout import CheckoutMPResponse, CheckoutRequest, CheckoutWspResponse
from app.services.checkout import checkout_mercadopago, checkout_whatsapp
from app.services.mercadopago_service import MercadoPagoService, get_mercadopago_service

router = APIRouter(prefix="/checkout", tags=["checkout"])


@router.post(
    "/mp",
    response_model=CheckoutMPResponse,
    status_code=status.HTTP_200_OK,
    summary="Create a Mercado Pago checkout preference",
)
async def create_mp_checkout(
    payload: CheckoutRequest,
    origin: str = Depends(request_origin),
    db: AsyncSession = Depends(get_db),
    mp: MercadoPagoService = Depends(get_mercadopago_service),
) -> CheckoutMPResponse:
    data = await checkout_mercadopago(db, mp, payload, origin=origin)
    return CheckoutMPResponse(**data)


@router.post(
    "/wsp",
    response_model=CheckoutWspResponse,
    summary="Create a WhatsApp order",
)
async def create_wsp_checkout(
    payload: CheckoutRequest,
    origin: str = Depends(request_origin),
    db: AsyncSession = Depends(get_db),
) -> CheckoutWspResponse:
    data = await checkout_whatsapp(db, payload, origin=origin)
    return CheckoutWspResponse(**data)
