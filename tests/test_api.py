"""
Integration tests for the HTTP API

Tests cover:
- Plan catalog endpoints and id validation
- Checkout: success shape, validation errors, unknown plan, gateway failure, card-field scrubbing
- Payment status without sensitive fields
- Membership lookup, plan change and cancellation
- Webhook signature handling
"""
import json

import pytest
from fastapi.testclient import TestClient

from crud.memory_storage import MemoryStorage
from main import create_app
from tests.conftest import TEST_SIGNATURE


def checkout_body(**overrides):
    body = {
        "planId": 1,
        "amount": 9.99,
        "cardholderName": "Ada Traveller",
        "email": "ada@example.com",
        "cardNumber": "4242 4242 4242 4242",
        "expiryDate": "12/30",
        "cvv": "123",
        "terms": True,
    }
    body.update(overrides)
    return body


def test_list_membership_plans(client):
    response = client.get("/api/membership-plans")

    assert response.status_code == 200
    plans = response.json()
    assert [plan["id"] for plan in plans] == [1, 2]
    assert plans[0]["validityDays"] == 30
    assert plans[1]["price"] == "99.99"
    assert plans[1]["type"] == "annual"
    assert response.json() == client.get("/api/membership-plans").json()


def test_get_membership_plan(client):
    assert client.get("/api/membership-plans/2").json()["name"] == "Annual Membership"

    invalid = client.get("/api/membership-plans/abc")
    assert invalid.status_code == 400
    assert invalid.json()["message"] == "Invalid plan ID"

    missing = client.get("/api/membership-plans/99")
    assert missing.status_code == 404
    assert missing.json()["message"] == "Plan not found"


def test_checkout_success(client, storage):
    """
    Test a full checkout.

    This test verifies:
    - the response carries payment, plan and subscription details
    - the stored payment keeps no card data
    """
    response = client.post("/api/payments", json=checkout_body())

    assert response.status_code == 200, response.text
    result = response.json()
    assert result["success"] is True
    assert result["payment"]["planId"] == 1
    assert result["payment"]["amount"] == "9.99"
    assert result["payment"]["status"] == "active"
    assert result["payment"]["stripeSubscriptionId"] == result["subscription"]["id"]
    assert result["plan"] == {"name": "Monthly Membership", "type": "monthly", "validityDays": 30}
    assert result["subscription"]["clientSecret"].endswith("_secret")
    assert result["membership"]["status"] == "active"

    stored = storage._payments[result["payment"]["id"]].model_dump()
    serialized = json.dumps(stored, default=str)
    assert "4242" not in serialized
    assert "cvv" not in stored
    assert "card_number" not in stored


@pytest.mark.parametrize("overrides", [
    {"planId": 0},
    {"amount": -5},
    {"amount": 9.999},
    {"cardholderName": "   "},
    {"email": "not-an-email"},
])
def test_checkout_validation_errors(client, storage, gateway, overrides):
    response = client.post("/api/payments", json=checkout_body(**overrides))

    assert response.status_code == 400
    body = response.json()
    assert body["message"] == "Invalid payment data"
    assert body["errors"]
    # Submitted values are never echoed back
    assert "4242" not in response.text
    assert gateway.calls == []
    assert storage._payments == {}


def test_checkout_unknown_plan(client, storage, gateway):
    response = client.post("/api/payments", json=checkout_body(planId=42))

    assert response.status_code == 404
    assert response.json()["message"] == "Selected plan not found"
    assert gateway.calls == []
    assert storage._payments == {}


def test_checkout_gateway_failure(client, storage, gateway):
    gateway.fail_with = "Your card was declined."

    response = client.post("/api/payments", json=checkout_body())

    assert response.status_code == 400
    assert response.json()["message"] == "Subscription failed: Your card was declined."
    assert storage._payments == {}


def test_create_subscription(client, gateway):
    response = client.post(
        "/api/create-subscription",
        json={"planId": 2, "email": "ada@example.com", "cardholderName": "Ada Traveller"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["amount"] == "99.99"
    assert body["planName"] == "Annual Membership"
    assert body["customerId"].startswith("cus_")
    assert gateway.calls[1][3:] == (9999, "usd", "year")


def test_payment_status_hides_sensitive_fields(client):
    created = client.post("/api/payments", json=checkout_body()).json()

    response = client.get(f"/api/payments/{created['payment']['id']}")

    assert response.status_code == 200
    assert set(response.json()) == {"id", "planId", "amount", "status", "createdAt"}
    assert client.get("/api/payments/nope").status_code == 400
    assert client.get("/api/payments/999").status_code == 404


def test_membership_lookup(client):
    missing = client.get("/api/membership/ada@example.com")
    assert missing.status_code == 404
    assert "message" in missing.json()

    client.post("/api/payments", json=checkout_body())
    response = client.get("/api/membership/ada@example.com")

    assert response.status_code == 200
    body = response.json()
    assert body["membership"]["planId"] == 1
    assert body["membership"]["status"] == "active"
    assert body["plan"]["name"] == "Monthly Membership"


def test_change_plan_downgrade(client, gateway):
    created = client.post("/api/payments", json=checkout_body(planId=2, amount=99.99)).json()
    membership_id = created["membership"]["id"]

    response = client.post(f"/api/membership/{membership_id}/change-plan", json={"newPlanId": 1})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["proratedAmount"] == 0
    assert body["plan"]["id"] == 1
    assert body["membership"]["planId"] == 1
    assert "paymentIntentId" not in body
    assert [call for call in gateway.calls if call[0] == "one_off"] == []


def test_change_plan_errors(client):
    assert client.post("/api/membership/abc/change-plan", json={"newPlanId": 1}).status_code == 400
    assert client.post("/api/membership/77/change-plan", json={"newPlanId": 1}).status_code == 404

    created = client.post("/api/payments", json=checkout_body()).json()
    membership_id = created["membership"]["id"]
    assert client.post(f"/api/membership/{membership_id}/change-plan", json={"newPlanId": 9}).status_code == 404
    assert client.post(f"/api/membership/{membership_id}/change-plan", json={}).status_code == 400


def test_cancel_membership(client):
    created = client.post("/api/payments", json=checkout_body()).json()
    membership_id = created["membership"]["id"]

    response = client.post(f"/api/membership/{membership_id}/cancel")
    assert response.status_code == 200
    assert response.json()["membership"]["status"] == "cancelled"

    again = client.post(f"/api/membership/{membership_id}/cancel")
    assert again.status_code == 400
    assert client.get("/api/membership/ada@example.com").status_code == 404


def test_webhook_rejects_bad_signature(client):
    response = client.post(
        "/api/webhook",
        content=b'{"type": "invoice.payment_failed", "data": {"object": {}}}',
        headers={"stripe-signature": "t=1,v1=forged"},
    )

    assert response.status_code == 400
    assert "Webhook Error" in response.json()["message"]


def test_webhook_applies_verified_event(client, storage):
    created = client.post("/api/payments", json=checkout_body()).json()
    event = {
        "type": "customer.subscription.deleted",
        "data": {"object": {"id": created["subscription"]["id"]}},
    }

    response = client.post(
        "/api/webhook",
        content=json.dumps(event).encode(),
        headers={"stripe-signature": TEST_SIGNATURE},
    )

    assert response.status_code == 200
    assert response.json() == {"received": True}
    assert client.get(f"/api/payments/{created['payment']['id']}").json()["status"] == "cancelled"


def test_health_and_security_headers(client):
    response = client.get("/api/health")

    assert response.json() == {"ok": True}
    assert response.headers["X-Frame-Options"] == "DENY"
    assert response.headers["X-Content-Type-Options"] == "nosniff"


def test_checkout_rejects_non_finite_amount(client, storage, gateway):
    response = client.post(
        "/api/payments",
        content=json.dumps(checkout_body(amount=float("inf"))).encode(),
        headers={"content-type": "application/json"},
    )

    assert response.status_code == 400
    assert response.json()["message"] == "Invalid payment data"
    assert gateway.calls == []
    assert storage._payments == {}


def test_membership_lookup_with_mixed_case_email(client):
    created = client.post("/api/payments", json=checkout_body(email="Ada@Example.COM"))
    assert created.status_code == 200

    response = client.get("/api/membership/Ada@Example.COM")

    assert response.status_code == 200
    assert response.json()["membership"]["id"] == created.json()["membership"]["id"]


def test_client_config_exposes_publishable_key(test_settings, storage, gateway):
    config = test_settings.model_copy(update={"stripe_publishable_key": "pk_test_dummy"})
    app = create_app(config=config, storage=storage, gateway=gateway)

    with TestClient(app) as test_client:
        response = test_client.get("/api/config")

    assert response.status_code == 200
    assert response.json() == {"publishableKey": "pk_test_dummy", "currency": "usd"}
    assert "sk_test" not in response.text


class FailingCancelStorage(MemoryStorage):
    """Payment updates succeed, membership updates fail"""

    def __init__(self):
        super().__init__()
        self.rollbacks = 0

    async def update_user_membership(self, membership_id, updates):
        raise RuntimeError("database went away")

    async def rollback(self):
        self.rollbacks += 1


def test_webhook_failure_is_acknowledged_and_rolled_back(test_settings, gateway):
    storage = FailingCancelStorage()
    app = create_app(config=test_settings, storage=storage, gateway=gateway)

    with TestClient(app) as test_client:
        created = test_client.post("/api/payments", json=checkout_body()).json()
        event = {
            "type": "customer.subscription.deleted",
            "data": {"object": {"id": created["subscription"]["id"]}},
        }
        response = test_client.post(
            "/api/webhook",
            content=json.dumps(event).encode(),
            headers={"stripe-signature": TEST_SIGNATURE},
        )

    assert response.status_code == 200
    assert response.json() == {"received": True}
    assert storage.rollbacks == 1
