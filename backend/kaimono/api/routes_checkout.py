import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from kaimono.adapters.stripe_gateway import StripeGateway, get_payment_gateway
from kaimono.config import Settings
from kaimono.db import get_db
from kaimono.errors import WebhookNotConfiguredError
from kaimono.models.user import User
from kaimono.schemas.order_schema import OrderOut
from kaimono.security import get_current_user, get_settings
from kaimono.services.checkout_service import CheckoutService
from kaimono.services.webhook_service import WebhookService

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/checkout", tags=["checkout"])


class CreateSessionIn(BaseModel):
    shipping_address_id: int


def _checkout(db: Session, gateway: StripeGateway, settings: Settings) -> CheckoutService:
    return CheckoutService(db, gateway, settings)


@router.post("/create-session", summary="Create a Stripe checkout session for the cart")
def create_session(
    payload: CreateSessionIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_payment_gateway),
    settings: Settings = Depends(get_settings),
):
    result = _checkout(db, gateway, settings).create_session(user, payload.shipping_address_id)
    return {"success": True, **result}


@router.post("/validate-campaigns", summary="Check campaign limits before checkout")
def validate_campaigns(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_payment_gateway),
    settings: Settings = Depends(get_settings),
):
    return _checkout(db, gateway, settings).validate_campaigns(user)


@router.get("/verify-payment", summary="Confirm payment with Stripe and create the order if needed")
def verify_payment(
    session_id: str = Query(..., min_length=1),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_payment_gateway),
    settings: Settings = Depends(get_settings),
):
    order, created = _checkout(db, gateway, settings).verify_payment(user, session_id)
    return {"success": True, "created": created, "order": OrderOut.model_validate(order).model_dump()}


@router.get("/order-by-session", summary="Poll for the order created from a checkout session")
def order_by_session(
    session_id: str = Query(..., min_length=1),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_payment_gateway),
    settings: Settings = Depends(get_settings),
):
    order = _checkout(db, gateway, settings).order_by_session(user, session_id)
    if order is None:
        return {"success": True, "found": False, "order": None}
    return {"success": True, "found": True, "order": OrderOut.model_validate(order).model_dump()}


@router.post("/webhook", summary="Stripe webhook endpoint")
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header(None, alias="Stripe-Signature"),
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_payment_gateway),
):
    payload = await request.body()
    try:
        status_code, body = await run_in_threadpool(WebhookService(db, gateway).handle, payload, stripe_signature)
    except WebhookNotConfiguredError as e:
        log.error("webhook rejected: %s", e.message)
        raise HTTPException(status_code=500, detail=e.message)
    return JSONResponse(status_code=status_code, content=body)
