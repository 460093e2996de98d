"""
HTTP API tests using FastAPI's TestClient.

The app runs with a fake payment gateway and recording notifier against a
temporary SQLite database; background jobs are disabled.
"""

import json
import time
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

import config
import db
from app import create_app
from conftest import FakePaymentGateway, RecordingNotifier
from enums.payment_verification_status import PaymentVerificationStatus
from models.price import PricingConfigDTO
from services.cart import CartNormalizer
from services.notification import NotificationDispatcher
from services.order import OrderLifecycleService
from services.payment import StripeApiError
from services.subscription import StaticSubscriptionResolver
from utils.webhook_signature import compute_signature

USER_HEADERS = {"X-User-Id": "user-1"}
ADMIN_HEADERS = {"X-Admin-Key": "test-admin-key-0123456789"}
CART = {"items": [{"product_id": "PFJS01", "quantity": 2, "size": "M"}]}
CART_TOTAL = 11000


@pytest.fixture
def lifecycle(db_url, catalog):
    db.configure_engine(db_url)
    return OrderLifecycleService(
        payment_gateway=FakePaymentGateway(),
        notification_dispatcher=NotificationDispatcher(RecordingNotifier(), max_retries=1, retry_delay_seconds=0),
        subscription_resolver=StaticSubscriptionResolver({"subscriber-1"}),
        cart_normalizer=CartNormalizer(catalog),
        pricing_config=PricingConfigDTO.full(),
        verification_retry_delay_seconds=0,
    )


@pytest.fixture
def client(lifecycle):
    app = create_app(lifecycle, run_background_jobs=False)
    with TestClient(app) as test_client:
        yield test_client


def signed_webhook(client: TestClient, event: dict, secret: str | None = None):
    body = json.dumps(event).encode()
    timestamp = int(time.time())
    signature = compute_signature(body, secret or config.STRIPE_WEBHOOK_SECRET, timestamp)
    return client.post(
        "/api/payments/webhook",
        content=body,
        headers={"Stripe-Signature": f"t={timestamp},v1={signature}", "Content-Type": "application/json"},
    )


def payment_event(order_id: int, event_type: str = "payment_intent.succeeded") -> dict:
    return {
        "id": "evt_1",
        "type": event_type,
        "data": {"object": {"id": "pi_123", "object": "payment_intent", "metadata": {"order_id": str(order_id)}}},
    }


def create_pending_order(client: TestClient) -> dict:
    response = client.post("/api/orders", json={"cart": CART, "client_total_minor": CART_TOTAL}, headers=USER_HEADERS)
    assert response.status_code == 201
    return response.json()


class TestCatalogAndPricing:

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "healthy"}

    def test_list_products(self, client):
        data = client.get("/api/products").json()

        assert {product["sku"] for product in data["products"]} >= {"PFJS01", "PFSC09"}
        assert data["packages"]["fullKit"] == ["PFJS01", "PFSS02", "PFSK07"]

    def test_unknown_product_is_404(self, client):
        response = client.get("/api/products/NOPE")

        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "unknown_product"

    def test_pricing_rules(self, client):
        rules = client.get("/api/price/rules").json()

        assert rules["mode"] == "full"
        assert rules["currency"] == "USD"

    def test_estimate_is_not_authoritative(self, client):
        response = client.post("/api/price/estimate", json={"cart": CART})

        assert response.status_code == 200
        data = response.json()
        assert data["authoritative"] is False
        assert data["breakdown"]["grand_total_minor"] == CART_TOTAL
        assert data["display"]["grand_total"] == "$110.00"

    def test_estimate_applies_subscriber_discount(self, client):
        response = client.post("/api/price/estimate", json={"cart": CART}, headers={"X-User-Id": "subscriber-1"})

        assert response.json()["breakdown"]["subscription_discount_minor"] == 800

    def test_estimate_rejects_invalid_quantity(self, client):
        response = client.post("/api/price/estimate", json={"cart": {"items": [{"product_id": "PFJS01", "quantity": 1.5}]}})

        assert response.status_code == 422
        assert response.json()["detail"]["error"] == "invalid_quantity"


class TestOrders:

    def test_checkout_creates_pending_order(self, client):
        order = create_pending_order(client)

        assert order["status"] == "pending"
        assert order["total_amount_minor"] == CART_TOTAL
        assert order["display"]["shipping"] == "$30.00"

    def test_checkout_mismatch_is_409(self, client):
        response = client.post("/api/orders", json={"cart": CART, "client_total_minor": 5000}, headers=USER_HEADERS)

        assert response.status_code == 409
        detail = response.json()["detail"]
        assert detail["error"] == "amount_mismatch"
        assert detail["details"]["server_computed_minor"] == CART_TOTAL

    def test_missing_user_header_is_401(self, client):
        response = client.post("/api/orders", json={"cart": CART, "client_total_minor": CART_TOTAL})

        assert response.status_code == 401

    def test_draft_save_and_submit(self, client):
        draft = client.post("/api/orders/drafts", json={"cart": CART, "design_reference": "d-1"}, headers=USER_HEADERS)
        assert draft.status_code == 201
        order_id = draft.json()["id"]

        updated = client.put(
            f"/api/orders/drafts/{order_id}",
            json={"cart": {"items": [{"product_id": "PFJS01", "quantity": 3}]}},
            headers=USER_HEADERS,
        )
        assert updated.json()["cart"]["lines"][0]["quantity"] == 3

        submitted = client.post(f"/api/orders/{order_id}/submit", json={}, headers=USER_HEADERS)
        assert submitted.status_code == 200
        assert submitted.json()["status"] == "pending"
        assert submitted.json()["design_reference"] == "d-1"

    def test_other_users_order_is_forbidden(self, client):
        order = create_pending_order(client)

        response = client.get(f"/api/orders/{order['id']}", headers={"X-User-Id": "user-2"})

        assert response.status_code == 403

    def test_list_orders(self, client):
        create_pending_order(client)

        orders = client.get("/api/orders", headers=USER_HEADERS).json()["orders"]

        assert len(orders) == 1
        assert client.get("/api/orders", headers={"X-User-Id": "user-2"}).json()["orders"] == []

    def test_user_cancel(self, client):
        order = create_pending_order(client)

        response = client.post(f"/api/orders/{order['id']}/cancel", json={"reason": "oops"}, headers=USER_HEADERS)

        assert response.json()["status"] == "cancelled"
        assert response.json()["cancellation_reason"] == "oops"


class TestPaymentWebhook:

    def test_succeeded_webhook_marks_order_paid(self, client):
        order = create_pending_order(client)

        response = signed_webhook(client, payment_event(order["id"]))

        assert response.status_code == 200
        assert response.json() == {"status": "paid", "order_id": order["id"]}

    def test_duplicate_webhook_is_ignored(self, client):
        order = create_pending_order(client)
        signed_webhook(client, payment_event(order["id"]))

        response = signed_webhook(client, payment_event(order["id"]))

        assert response.status_code == 200
        assert response.json()["status"] == "ignored"

    def test_bad_signature_is_400(self, client):
        order = create_pending_order(client)

        response = signed_webhook(client, payment_event(order["id"]), secret="whsec_forged")

        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "invalid_signature"
        current = client.get(f"/api/orders/{order['id']}", headers=USER_HEADERS).json()
        assert current["status"] == "pending"

    def test_unhandled_event_type(self, client):
        response = signed_webhook(client, {"id": "evt_2", "type": "customer.created", "data": {"object": {}}})

        assert response.json() == {"status": "ignored"}

    def test_still_processing_is_202(self, client, lifecycle):
        order = create_pending_order(client)
        lifecycle.payment_gateway = FakePaymentGateway(status=PaymentVerificationStatus.PENDING)

        response = signed_webhook(client, payment_event(order["id"]))

        assert response.status_code == 202
        assert response.json()["error"] == "payment_not_confirmed"

    def test_rate_limited_gateway_is_503(self, client, lifecycle):
        """Stripe gets a 5xx back and redelivers; the order is untouched."""
        order = create_pending_order(client)
        lifecycle.payment_gateway.verify = AsyncMock(side_effect=StripeApiError(429, "Too many requests"))
        lifecycle.verification_max_retries = 0

        response = signed_webhook(client, payment_event(order["id"]))

        assert response.status_code == 503
        assert response.json()["detail"]["error"] == "payment_verification_timeout"
        current = client.get(f"/api/orders/{order['id']}", headers=USER_HEADERS).json()
        assert current["status"] == "pending"

    def test_redelivery_after_failed_payment_marks_paid(self, client, lifecycle):
        order = create_pending_order(client)
        lifecycle.payment_gateway = FakePaymentGateway(
            status=PaymentVerificationStatus.FAILED, failure_reason="card declined"
        )
        assert signed_webhook(client, payment_event(order["id"])).json()["status"] == "payment_failed"

        lifecycle.payment_gateway = FakePaymentGateway()
        response = signed_webhook(client, payment_event(order["id"]))

        assert response.status_code == 200
        assert response.json() == {"status": "paid", "order_id": order["id"]}

    def test_missing_order_reference_is_400(self, client):
        event = {"id": "evt_3", "type": "payment_intent.succeeded", "data": {"object": {"id": "pi_1"}}}

        assert signed_webhook(client, event).status_code == 400


class TestAdmin:

    def test_admin_key_required(self, client):
        order = create_pending_order(client)

        response = client.patch(f"/api/admin/orders/{order['id']}/status", json={"event": "cancel"})

        assert response.status_code == 403

    def test_admin_fulfillment_flow(self, client):
        order = create_pending_order(client)
        signed_webhook(client, payment_event(order["id"]))
        url = f"/api/admin/orders/{order['id']}/status"

        assert client.patch(url, json={"event": "start_processing"}, headers=ADMIN_HEADERS).json()["status"] == "processing"
        shipped = client.patch(url, json={"event": "ship", "tracking_id": "TRK1"}, headers=ADMIN_HEADERS).json()
        assert shipped["status"] == "shipped"
        assert shipped["tracking_id"] == "TRK1"
        assert client.patch(url, json={"event": "complete"}, headers=ADMIN_HEADERS).json()["status"] == "completed"

        response = client.patch(url, json={"event": "cancel"}, headers=ADMIN_HEADERS)
        assert response.status_code == 409
        assert response.json()["detail"]["error"] == "illegal_transition"

    def test_user_cannot_cancel_paid_order(self, client):
        order = create_pending_order(client)
        signed_webhook(client, payment_event(order["id"]))

        response = client.post(f"/api/orders/{order['id']}/cancel", json={}, headers=USER_HEADERS)

        assert response.status_code == 403
        assert response.json()["detail"]["error"] == "transition_not_permitted"
