import hashlib
import hmac
import json
from itertools import count

import pytest
import razorpay
from fastapi.testclient import TestClient
from sqlmodel import select

from storyprint.database import get_session
from storyprint.dependencies.services import (
    get_cost_service,
    get_payment_service,
    get_print_order_service,
    get_webhook_monitor,
    get_webhook_service,
)
from storyprint.jobs.webhook_monitor import WebhookMonitor
from storyprint.main import app
from storyprint.models.credit_transaction import CreditTransaction
from storyprint.models.print_order import PrintOrder
from storyprint.services.credit_service import credit_service
from storyprint.services.payment_service import PaymentService
from storyprint.services.webhook_subscription_service import SIGNATURE_HEADER, WebhookSubscriptionService
from storyprint.utils.token import create_access_token

PROVIDER_SECRET = "test-webhook-secret"
PAYMENT_SECRET = "test-payment-secret"


class FakeGatewayOrders:
    def __init__(self):
        self.created = {}
        self._ids = count(1)

    def create(self, data):
        order = {"id": f"order_{next(self._ids)}", **data}
        self.created[order["id"]] = order
        return order

    def fetch(self, order_id):
        return self.created[order_id]


@pytest.fixture
def gateway():
    client = razorpay.Client(auth=("rzp_test_key", "rzp_test_secret"))
    client.order = FakeGatewayOrders()
    return client


@pytest.fixture
def payments(print_orders, gateway):
    return PaymentService(print_orders, client=gateway, webhook_secret=PAYMENT_SECRET)


@pytest.fixture
def webhooks(provider, alerts):
    return WebhookSubscriptionService(
        provider,
        alerts,
        url="https://api.storyprint.test/webhooks/provider/print-job-status",
        topics=["PRINT_JOB_STATUS_CHANGED"],
        sleep=lambda _: None,
    )


@pytest.fixture
def client(session, print_orders, cost_service, payments, webhooks):
    def override_session():
        yield session

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_print_order_service] = lambda: print_orders
    app.dependency_overrides[get_cost_service] = lambda: cost_service
    app.dependency_overrides[get_payment_service] = lambda: payments
    app.dependency_overrides[get_webhook_service] = lambda: webhooks
    app.dependency_overrides[get_webhook_monitor] = lambda: WebhookMonitor(webhooks)
    yield TestClient(app)
    app.dependency_overrides.clear()


def auth(user):
    return {"Authorization": f"Bearer {create_access_token({'user_id': user.id})}"}


def order_body(book, address, level="MAIL"):
    return {"book_id": book.id, "quantity": 1, "shipping_address": address, "shipping_level": level}


def provider_post(client, payload, secret=PROVIDER_SECRET):
    body = json.dumps(payload).encode()
    signature = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return client.post(
        "/webhooks/provider/print-job-status",
        content=body,
        headers={SIGNATURE_HEADER: signature, "Content-Type": "application/json"},
    )


def payment_post(client, payload, secret=PAYMENT_SECRET):
    body = json.dumps(payload).encode()
    signature = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return client.post(
        "/webhooks/payments",
        content=body,
        headers={"X-Razorpay-Signature": signature, "Content-Type": "application/json"},
    )


# =============================================================================
# PRINT ORDERS
# =============================================================================

def test_requests_without_token_are_unauthorized(client):
    assert client.get("/print-orders").status_code == 401
    assert client.get("/credits/balance").status_code == 401


def test_calculate_cost_returns_public_quote(client, user, book, address):
    response = client.post("/print-orders/calculate-cost", json=order_body(book, address), headers=auth(user))

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["total_cost_credits"] == 2420
    assert data["total_cost"] == "24.20"
    assert "provider_print_cost" not in data


def test_unavailable_tier_is_a_bad_request(client, user, book, address, provider):
    provider.levels = ["MAIL"]

    response = client.post(
        "/print-orders/calculate-cost", json=order_body(book, address, "EXPRESS"), headers=auth(user)
    )

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["details"]["available_levels"] == ["MAIL"]


def test_unknown_tier_fails_validation(client, user, book, address):
    response = client.post(
        "/print-orders/calculate-cost", json=order_body(book, address, "TELEPORT"), headers=auth(user)
    )

    assert response.status_code == 422


def test_shipping_options(client, user, book, address):
    response = client.post(
        "/print-orders/shipping-options",
        json={"book_id": book.id, "quantity": 1, "shipping_address": address},
        headers=auth(user),
    )

    assert response.status_code == 200
    assert [o["level"] for o in response.json()["data"]["options"]] == ["MAIL", "PRIORITY_MAIL", "EXPEDITED"]


def test_create_order_without_credits_is_payment_required(client, user, book, address):
    response = client.post("/print-orders", json=order_body(book, address), headers=auth(user))

    assert response.status_code == 402
    assert response.json()["details"]["shortfall"] == 2420


def test_create_get_list_and_cancel(client, session, user, book, address):
    credit_service.add_credits(session, user.id, 3000, "Pack")

    created = client.post("/print-orders", json=order_body(book, address), headers=auth(user))
    assert created.status_code == 201
    order = created.json()["data"]
    assert order["status"] == "submitted"
    assert "provider_cost" not in order
    assert "print_markup_percentage" not in order

    detail = client.get(f"/print-orders/{order['id']}", headers=auth(user)).json()["data"]
    assert [e["event_type"] for e in detail["timeline"]] == ["order_created", "preparing", "submitted"]

    listing = client.get("/print-orders", headers=auth(user)).json()["data"]
    assert listing["total_items"] == 1

    canceled = client.delete(f"/print-orders/{order['id']}", headers=auth(user))
    assert canceled.status_code == 200
    assert canceled.json()["data"]["credits_refunded"] == 2420
    assert client.get("/credits/balance", headers=auth(user)).json()["data"]["credits_balance"] == 3000

    again = client.delete(f"/print-orders/{order['id']}", headers=auth(user))
    assert again.status_code == 409


def test_orders_are_private(client, session, user, admin, book, address):
    credit_service.add_credits(session, user.id, 3000, "Pack")
    order_id = client.post("/print-orders", json=order_body(book, address), headers=auth(user)).json()["data"]["id"]

    assert client.get(f"/print-orders/{order_id}", headers=auth(admin)).status_code == 404


def test_credit_history(client, session, user):
    credit_service.add_credits(session, user.id, 100, "Pack")

    history = client.get("/credits/history", headers=auth(user)).json()["data"]

    assert history["results"][0]["amount"] == 100
    assert history["results"][0]["type"] == "purchase"


# =============================================================================
# PROVIDER WEBHOOK
# =============================================================================

@pytest.fixture
def submitted_order(session, print_orders, user, book, address):
    credit_service.add_credits(session, user.id, 3000, "Pack")
    return print_orders.create_order(session, user, book.id, 1, address, "MAIL")


def _status_payload(order, name, tracking_id=None):
    line_items = []
    if tracking_id:
        line_items = [{"messages": {"tracking_id": tracking_id, "tracking_urls": [], "carrier_name": "UPS"}}]
    return {
        "topic": "PRINT_JOB_STATUS_CHANGED",
        "data": {
            "id": order.provider_job_id,
            "status": {"name": name, "message": ""},
            "line_item_statuses": line_items,
        },
    }


def test_signed_status_webhook_is_applied(client, session, submitted_order):
    response = provider_post(client, _status_payload(submitted_order, "SHIPPED", tracking_id="TRK-9"))

    assert response.status_code == 200
    assert response.json()["outcome"] == "applied"
    session.refresh(submitted_order)
    assert submitted_order.status == "shipped"
    assert submitted_order.tracking_info["tracking_id"] == "TRK-9"


def test_bad_signature_is_rejected_before_any_change(client, session, submitted_order):
    response = provider_post(client, _status_payload(submitted_order, "CANCELED"), secret="wrong")

    assert response.status_code == 401
    session.refresh(submitted_order)
    assert submitted_order.status == "submitted"


def test_replayed_rejection_refunds_once(client, session, user, submitted_order):
    payload = _status_payload(submitted_order, "REJECTED")

    assert provider_post(client, payload).json()["outcome"] == "applied"
    assert provider_post(client, payload).json()["outcome"] == "duplicate"

    refunds = session.exec(
        select(CreditTransaction)
        .where(CreditTransaction.print_order_id == submitted_order.id)
        .where(CreditTransaction.type == "refund")
    ).all()
    assert len(refunds) == 1
    assert credit_service.get_balance(session, user.id) == 3000


def test_unknown_job_answers_not_found(client):
    payload = {"topic": "PRINT_JOB_STATUS_CHANGED", "data": {"id": 424242, "status": {"name": "SHIPPED"}}}

    assert provider_post(client, payload).status_code == 404


def test_malformed_webhook_is_bad_request(client):
    assert provider_post(client, {"topic": "PRINT_JOB_STATUS_CHANGED", "data": {}}).status_code == 400


def test_malformed_line_items_are_bad_request(client, session, submitted_order):
    payload = _status_payload(submitted_order, "SHIPPED")
    payload["data"]["line_item_statuses"] = ["x"]

    assert provider_post(client, payload).status_code == 400
    session.refresh(submitted_order)
    assert submitted_order.status == "submitted"


def test_other_topics_are_acknowledged_and_ignored(client):
    response = provider_post(client, {"topic": "SOMETHING_ELSE", "data": {}})

    assert response.status_code == 200
    assert response.json()["outcome"] == "ignored"


# =============================================================================
# PAYMENTS
# =============================================================================

def test_credit_checkout_and_capture(client, session, user, gateway):
    checkout = client.post("/credits/checkout", json={"credit_amount": 500}, headers=auth(user))
    assert checkout.status_code == 200
    data = checkout.json()["data"]
    assert data["amount"] == 500
    gateway_order = gateway.order.created[data["razorpay_order_id"]]
    assert gateway_order["notes"]["type"] == "credit_purchase"

    event = {
        "event": "payment.captured",
        "payload": {"payment": {"entity": {"id": "pay_1", "order_id": data["razorpay_order_id"], "notes": {}}}},
    }
    first = payment_post(client, event)
    second = payment_post(client, event)

    assert first.status_code == 200
    assert first.json()["credits_balance"] == 500
    assert second.json()["credits_balance"] == 500
    assert credit_service.get_balance(session, user.id) == 500


def test_small_credit_checkout_is_rejected(client, user):
    response = client.post("/credits/checkout", json={"credit_amount": 50}, headers=auth(user))

    assert response.status_code == 400


def test_print_checkout_creates_order_on_capture(client, session, user, book, address, gateway):
    checkout = client.post("/print-orders/checkout", json=order_body(book, address), headers=auth(user))
    data = checkout.json()["data"]
    assert data["amount"] == 2420
    notes = gateway.order.created[data["razorpay_order_id"]]["notes"]

    event = {
        "event": "order.paid",
        "payload": {
            "payment": {"entity": {"id": "pay_print_1", "order_id": data["razorpay_order_id"]}},
            "order": {"entity": {"id": data["razorpay_order_id"], "notes": notes}},
        },
    }
    response = payment_post(client, event)
    payment_post(client, event)

    assert response.status_code == 200
    assert response.json()["order"]["status"] == "submitted"
    orders = session.exec(select(PrintOrder).where(PrintOrder.payment_reference == "pay_print_1")).all()
    assert len(orders) == 1
    assert credit_service.get_balance(session, user.id) == 0


def test_unsigned_payment_webhook_is_rejected(client):
    response = client.post("/webhooks/payments", json={"event": "payment.captured"})

    assert response.status_code == 401


def test_unhandled_payment_event_is_acknowledged(client):
    response = payment_post(client, {"event": "refund.created", "payload": {}})

    assert response.status_code == 200
    assert response.json()["handled"] is False


# =============================================================================
# ADMIN
# =============================================================================

def test_admin_routes_require_admin_role(client, user):
    assert client.get("/admin/webhooks/status", headers=auth(user)).status_code == 403


def test_operator_refund(client, session, admin, user, submitted_order):
    response = client.post(
        f"/admin/print-orders/{submitted_order.id}/refund",
        json={"reason": "printer smudged the cover"},
        headers=auth(admin),
    )

    assert response.status_code == 200
    assert response.json()["data"]["credits_refunded"] == 2420
    assert credit_service.get_balance(session, user.id) == 3000


def test_webhook_admin_views(client, admin, webhooks, provider):
    assert client.get("/admin/webhooks/status", headers=auth(admin)).json()["data"]["registered"] is False

    registered = client.post("/admin/webhooks/register", headers=auth(admin)).json()["data"]
    assert registered["action"] == "registered"

    analytics = client.get("/admin/webhooks/analytics?timeRange=7d", headers=auth(admin))
    assert analytics.json()["data"]["time_range"] == "7d"

    bad_range = client.get("/admin/webhooks/analytics?timeRange=1y", headers=auth(admin))
    assert bad_range.status_code == 400

    config = client.get("/admin/webhooks/config", headers=auth(admin)).json()["data"]
    assert config["signature_header"] == SIGNATURE_HEADER
    assert config["monitor"]["running"] is False


def test_health_check(client):
    body = client.get("/health/check").json()

    assert body["database"] == "ok"
    assert body["webhook_monitor"] == "stopped"
