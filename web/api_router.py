"""
API router for pricing, checkout and order lifecycle.

Identity:
- X-User-Id header identifies the customer (authentication happens upstream)
- X-Admin-Key header authorizes fulfillment endpoints
- Stripe-Signature header authenticates payment webhooks

Prices sent by clients are never stored; every amount in a response comes from
the server-side PricingService.
"""

import json
import logging
import secrets
import uuid
from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

import config
from enums.order_event import OrderEvent
from exceptions import (
    CheckoutException,
    IllegalTransitionError,
    PaymentNotConfirmedException,
    UnknownProductError,
)
from models.actor import ActorDTO
from models.cart import CartInput
from models.order import OrderDTO
from services.order import OrderLifecycleService
from services.pricing import PricingService
from utils.error_handler import error_body, to_http_exception
from utils.webhook_signature import verify_stripe_signature

logger = logging.getLogger(__name__)

api_router = APIRouter(prefix="/api", tags=["api"])


def generate_correlation_id() -> str:
    """Generate unique correlation ID for request tracing."""
    return f"{datetime.now().strftime('%Y%m%d-%H%M%S')}-{uuid.uuid4().hex[:8]}"


def get_lifecycle(request: Request) -> OrderLifecycleService:
    return request.app.state.order_lifecycle


def get_user_id(x_user_id: str | None = Header(None, alias="X-User-Id")) -> str:
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-Id header")
    return x_user_id


def require_admin(x_admin_key: str | None = Header(None, alias="X-Admin-Key")) -> ActorDTO:
    if not config.ADMIN_API_KEY or not x_admin_key or not secrets.compare_digest(x_admin_key, config.ADMIN_API_KEY):
        logger.warning("Rejected admin request with missing or invalid X-Admin-Key")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin key required")
    return ActorDTO.admin()


def serialize_order(order: OrderDTO) -> dict:
    breakdown = order.breakdown
    return {
        "id": order.id,
        "user_id": order.user_id,
        "design_reference": order.design_reference,
        "status": order.status.value,
        "total_amount_minor": order.total_amount_minor,
        "currency": order.currency.value,
        "version": order.version,
        "cart": order.cart.model_dump(mode="json") if order.cart else None,
        "breakdown": breakdown.model_dump(mode="json") if breakdown else None,
        "display": PricingService.format_breakdown(breakdown, order.currency) if breakdown else None,
        "payment_ref": order.payment_ref,
        "payment_failure_reason": order.payment_failure_reason,
        "tracking_id": order.tracking_id,
        "cancellation_reason": order.cancellation_reason,
        "created_at": order.created_at.isoformat() if order.created_at else None,
        "updated_at": order.updated_at.isoformat() if order.updated_at else None,
    }


class EstimatePayload(BaseModel):
    cart: CartInput


class DraftPayload(BaseModel):
    cart: CartInput
    design_reference: str | None = Field(None, max_length=255)


class CheckoutPayload(BaseModel):
    cart: CartInput
    client_total_minor: int = Field(..., ge=0, description="Total displayed to the customer, minor units")
    design_reference: str | None = Field(None, max_length=255)


class SubmitPayload(BaseModel):
    client_total_minor: int | None = Field(None, ge=0)


class CancelPayload(BaseModel):
    reason: str | None = Field(None, max_length=500)


class AdminStatusPayload(BaseModel):
    event: Literal["start_processing", "ship", "complete", "cancel"]
    tracking_id: str | None = Field(None, max_length=255)
    reason: str | None = Field(None, max_length=500)


# ----------------------------------------------------------------------
# Catalog & pricing
# ----------------------------------------------------------------------

@api_router.get("/products")
async def list_products(lifecycle: OrderLifecycleService = Depends(get_lifecycle)):
    catalog = lifecycle.cart_normalizer.catalog
    return {
        "products": [product.model_dump(mode="json") for product in catalog.products.values()],
        "packages": catalog.packages,
    }


@api_router.get("/products/{sku}")
async def get_product(sku: str, lifecycle: OrderLifecycleService = Depends(get_lifecycle)):
    try:
        return lifecycle.cart_normalizer.catalog.get_product(sku).model_dump(mode="json")
    except UnknownProductError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=error_body(e))


@api_router.get("/price/rules")
async def get_pricing_rules(lifecycle: OrderLifecycleService = Depends(get_lifecycle)):
    return PricingService.get_pricing_rules(lifecycle.pricing_config)


@api_router.post("/price/estimate")
async def estimate_price(payload: EstimatePayload,
                         lifecycle: OrderLifecycleService = Depends(get_lifecycle),
                         x_user_id: str | None = Header(None, alias="X-User-Id")):
    """
    Display-only price estimate.

    The response is marked authoritative=false: the amount charged is always
    recomputed at submit/checkout.
    """
    try:
        is_subscriber = await lifecycle.subscription_resolver.is_subscriber(x_user_id) if x_user_id else False
        cart = lifecycle.cart_normalizer.normalize(
            payload.cart.items, payload.cart.add_ons, payload.cart.team_roster, is_subscriber=is_subscriber
        )
    except CheckoutException as e:
        raise to_http_exception(e)

    breakdown = PricingService.estimate(cart, lifecycle.pricing_config)
    return {
        "breakdown": breakdown.model_dump(mode="json"),
        "display": PricingService.format_breakdown(breakdown),
        "authoritative": False,
    }


# ----------------------------------------------------------------------
# Orders
# ----------------------------------------------------------------------

@api_router.post("/orders/drafts", status_code=status.HTTP_201_CREATED)
async def create_draft(payload: DraftPayload, user_id: str = Depends(get_user_id),
                       lifecycle: OrderLifecycleService = Depends(get_lifecycle)):
    try:
        order = await lifecycle.save_draft(user_id, payload.cart, payload.design_reference)
    except CheckoutException as e:
        raise to_http_exception(e)
    return serialize_order(order)


@api_router.put("/orders/drafts/{order_id}")
async def update_draft(order_id: int, payload: DraftPayload, user_id: str = Depends(get_user_id),
                       lifecycle: OrderLifecycleService = Depends(get_lifecycle)):
    try:
        order = await lifecycle.save_draft(user_id, payload.cart, payload.design_reference, order_id=order_id)
    except CheckoutException as e:
        raise to_http_exception(e)
    return serialize_order(order)


@api_router.post("/orders", status_code=status.HTTP_201_CREATED)
async def checkout(payload: CheckoutPayload, user_id: str = Depends(get_user_id),
                   lifecycle: OrderLifecycleService = Depends(get_lifecycle)):
    correlation_id = generate_correlation_id()
    logger.info(f"[{correlation_id}] Checkout for user {user_id}, client total {payload.client_total_minor}")
    try:
        order = await lifecycle.checkout(user_id, payload.cart, payload.client_total_minor, payload.design_reference)
    except CheckoutException as e:
        logger.warning(f"[{correlation_id}] Checkout rejected: {e}")
        raise to_http_exception(e)
    logger.info(f"[{correlation_id}] ✅ Order {order.id} pending, total {order.total_amount_minor}")
    return serialize_order(order)


@api_router.get("/orders")
async def list_orders(user_id: str = Depends(get_user_id),
                      lifecycle: OrderLifecycleService = Depends(get_lifecycle)):
    orders = await lifecycle.list_orders(user_id)
    return {"orders": [serialize_order(order) for order in orders]}


@api_router.get("/orders/{order_id}")
async def get_order(order_id: int, user_id: str = Depends(get_user_id),
                    lifecycle: OrderLifecycleService = Depends(get_lifecycle)):
    try:
        order = await lifecycle.get_order(order_id, ActorDTO.user(user_id))
    except CheckoutException as e:
        raise to_http_exception(e)
    return serialize_order(order)


@api_router.post("/orders/{order_id}/submit")
async def submit_order(order_id: int, payload: SubmitPayload, user_id: str = Depends(get_user_id),
                       lifecycle: OrderLifecycleService = Depends(get_lifecycle)):
    try:
        order = await lifecycle.submit_draft(order_id, ActorDTO.user(user_id), payload.client_total_minor)
    except CheckoutException as e:
        raise to_http_exception(e)
    return serialize_order(order)


@api_router.post("/orders/{order_id}/cancel")
async def cancel_order(order_id: int, payload: CancelPayload, user_id: str = Depends(get_user_id),
                       lifecycle: OrderLifecycleService = Depends(get_lifecycle)):
    try:
        order = await lifecycle.cancel(order_id, ActorDTO.user(user_id), payload.reason)
    except CheckoutException as e:
        raise to_http_exception(e)
    return serialize_order(order)


@api_router.post("/orders/{order_id}/retry-payment")
async def retry_payment(order_id: int, user_id: str = Depends(get_user_id),
                        lifecycle: OrderLifecycleService = Depends(get_lifecycle)):
    try:
        order = await lifecycle.retry_payment(order_id, ActorDTO.user(user_id))
    except CheckoutException as e:
        raise to_http_exception(e)
    return serialize_order(order)


@api_router.patch("/admin/orders/{order_id}/status")
async def admin_update_status(order_id: int, payload: AdminStatusPayload, admin: ActorDTO = Depends(require_admin),
                              lifecycle: OrderLifecycleService = Depends(get_lifecycle)):
    try:
        order = await lifecycle.transition(
            order_id, OrderEvent(payload.event), admin,
            tracking_id=payload.tracking_id, reason=payload.reason,
        )
    except CheckoutException as e:
        raise to_http_exception(e)
    return serialize_order(order)


# ----------------------------------------------------------------------
# Payments
# ----------------------------------------------------------------------

HANDLED_WEBHOOK_EVENTS = {
    "payment_intent.succeeded",
    "payment_intent.payment_failed",
    "checkout.session.completed",
}


@api_router.post("/payments/webhook")
async def payment_webhook(request: Request, lifecycle: OrderLifecycleService = Depends(get_lifecycle),
                          stripe_signature: str | None = Header(None, alias="Stripe-Signature")):
    """
    Stripe webhook.

    The event only tells which order and payment to look at. The outcome is
    always taken from the gateway's own record via confirm_payment(), so a
    forged or replayed payload cannot mark an order paid.

    Returns:
        200: Processed or ignored (duplicate delivery, unhandled event type)
        202: Payment still processing at the gateway
        400: Bad signature or payload
        503: Gateway unreachable (Stripe retries)
    """
    correlation_id = generate_correlation_id()
    payload = await request.body()

    try:
        verify_stripe_signature(
            payload, stripe_signature, config.STRIPE_WEBHOOK_SECRET, config.STRIPE_WEBHOOK_TOLERANCE_SECONDS
        )
    except CheckoutException as e:
        logger.warning(f"[{correlation_id}] Webhook rejected: {e}")
        raise to_http_exception(e)

    try:
        event = json.loads(payload)
        event_type = event["type"]
        payment_object = event["data"]["object"]
    except (ValueError, KeyError, TypeError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Malformed webhook payload")

    if event_type not in HANDLED_WEBHOOK_EVENTS:
        logger.info(f"[{correlation_id}] Ignoring webhook event {event_type}")
        return {"status": "ignored"}

    order_id = (payment_object.get("metadata") or {}).get("order_id") or payment_object.get("client_reference_id")
    payment_ref = payment_object.get("id")
    if not str(order_id or "").isdigit() or not payment_ref:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Webhook payload lacks order reference")

    logger.info(f"[{correlation_id}] {event_type} for order {order_id} ({payment_ref})")
    try:
        order = await lifecycle.confirm_payment(int(order_id), payment_ref)
    except IllegalTransitionError as e:
        # Duplicate delivery or order already settled
        logger.info(f"[{correlation_id}] Webhook ignored: {e}")
        return {"status": "ignored", "reason": str(e)}
    except PaymentNotConfirmedException as e:
        return JSONResponse(status_code=status.HTTP_202_ACCEPTED, content=error_body(e))
    except CheckoutException as e:
        raise to_http_exception(e)

    logger.info(f"[{correlation_id}] ✅ Order {order.id} is now {order.status.value}")
    return {"status": order.status.value, "order_id": order.id}
