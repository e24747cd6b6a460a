"""
Integration tests for Razorpay billing routes.

Tests cover:
1. Plan listing (public)
2. Checkout creation persists a `created` subscription
3. Payment verification (checkout signature) activates it
4. Cancellation at cycle end
5. Tenant isolation for billing operations
"""

import hashlib
import hmac
import json
import time

import httpx
import pytest

from genbook.api.routes.billing import get_billing_service_factory
from genbook.config.settings import get_settings
from genbook.entitlements.loader import get_plan_catalog
from genbook.integrations.razorpay.client import RazorpayClient
from genbook.models.subscription import SubscriptionStatus, UserSubscription
from genbook.services.billing_service import BillingService

from conftest import KEY_SECRET, add_subscription, auth_headers, create_tenant


class FakeRazorpay:
    """In-memory stand-in for the Razorpay subscriptions API."""

    def __init__(self):
        self.subscriptions = {}
        self.requests = []
        self.fail_with = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append((request.method, request.url.path))
        if self.fail_with is not None:
            return httpx.Response(self.fail_with, json={"error": {"description": "Bad request"}})
        path = request.url.path
        if request.method == "POST" and path == "/v1/subscriptions":
            body = json.loads(request.content)
            sub_id = f"sub_{len(self.subscriptions) + 1:04d}"
            entity = {
                "id": sub_id,
                "plan_id": body["plan_id"],
                "status": "created",
                "short_url": f"https://rzp.io/i/{sub_id}",
                "notes": body["notes"],
            }
            self.subscriptions[sub_id] = entity
            return httpx.Response(200, json=entity)
        sub_id = path.split("/")[3]
        entity = self.subscriptions[sub_id]
        if request.method == "GET":
            return httpx.Response(200, json=entity)
        if path.endswith("/cancel"):
            entity["status"] = "cancelled"
            return httpx.Response(200, json=entity)
        return httpx.Response(404, json={"error": {"description": "not found"}})

    def activate(self, sub_id):
        now = int(time.time())
        self.subscriptions[sub_id].update(
            status="active", current_start=now, current_end=now + 30 * 86400,
        )


@pytest.fixture
def razorpay(app):
    fake = FakeRazorpay()

    def factory():
        def _build(db, tenant_id):
            return BillingService(
                db, tenant_id, get_plan_catalog(), get_settings(),
                client_factory=lambda: RazorpayClient(
                    "rzp_test_key", KEY_SECRET, transport=httpx.MockTransport(fake.handler)
                ),
            )
        return _build

    app.dependency_overrides[get_billing_service_factory] = factory
    return fake


def checkout_signature(payment_id, subscription_id, secret=KEY_SECRET):
    message = f"{payment_id}|{subscription_id}".encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


class TestPlans:
    def test_list_plans_is_public(self, client):
        response = client.get("/api/v1/billing/plans")

        assert response.status_code == 200
        plans = response.json()
        assert [p["id"] for p in plans] == ["free", "professional", "enterprise"]
        assert plans[1]["price_cents"] == 249900
        assert "voice_commands" in plans[1]["features"]
        assert plans[2]["limits"]["appointments_per_month"] is None


class TestCheckout:
    def test_creates_subscription_and_returns_url(self, client, db_session, razorpay, free_tenant):
        tenant_id, user_id = free_tenant

        response = client.post(
            "/api/v1/billing/subscriptions",
            json={"plan_id": "professional"},
            headers=auth_headers(user_id),
        )

        assert response.status_code == 200
        data = response.json()
        assert data["checkout_url"] == "https://rzp.io/i/sub_0001"
        assert data["plan_id"] == "professional"
        row = db_session.query(UserSubscription).filter_by(provider_subscription_id="sub_0001").one()
        assert row.status == "created"
        assert row.tenant_id == tenant_id
        assert razorpay.subscriptions["sub_0001"]["notes"]["tenant_id"] == tenant_id

    def test_created_subscription_does_not_unlock_features(self, client, razorpay, free_tenant):
        _, user_id = free_tenant
        headers = auth_headers(user_id)
        client.post("/api/v1/billing/subscriptions", json={"plan_id": "professional"}, headers=headers)

        current = client.get("/api/v1/tenants/current", headers=headers).json()

        assert current["plan"] == "free"
        assert current["status"] == "created"

    @pytest.mark.parametrize("plan_id", ["free", "gold"])
    def test_rejects_free_and_unknown_plans(self, client, razorpay, free_tenant, plan_id):
        _, user_id = free_tenant

        response = client.post(
            "/api/v1/billing/subscriptions",
            json={"plan_id": plan_id},
            headers=auth_headers(user_id),
        )

        assert response.status_code == 400
        assert razorpay.requests == []

    def test_provider_failure_is_502(self, client, razorpay, free_tenant):
        _, user_id = free_tenant
        razorpay.fail_with = 400

        response = client.post(
            "/api/v1/billing/subscriptions",
            json={"plan_id": "professional"},
            headers=auth_headers(user_id),
        )

        assert response.status_code == 502
        assert response.json()["code"] == "BILLING_PROVIDER_ERROR"

    def test_requires_session(self, client, razorpay):
        response = client.post("/api/v1/billing/subscriptions", json={"plan_id": "professional"})

        assert response.status_code == 402
        assert response.json()["code"] == "UNAUTHENTICATED"


class TestVerifyPayment:
    def _checkout(self, client, user_id, plan_id="professional"):
        return client.post(
            "/api/v1/billing/subscriptions",
            json={"plan_id": plan_id},
            headers=auth_headers(user_id),
        ).json()["subscription_id"]

    def _verify(self, client, user_id, sub_id, payment_id="pay_1"):
        return client.post(
            "/api/v1/billing/verify-payment",
            json={
                "razorpay_payment_id": payment_id,
                "razorpay_subscription_id": sub_id,
                "razorpay_signature": checkout_signature(payment_id, sub_id),
            },
            headers=auth_headers(user_id),
        )

    def test_valid_signature_activates(self, client, razorpay, free_tenant):
        _, user_id = free_tenant
        sub_id = self._checkout(client, user_id)
        razorpay.activate(sub_id)

        response = self._verify(client, user_id, sub_id)

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "active"
        assert data["current_period_end"] is not None
        current = client.get("/api/v1/tenants/current", headers=auth_headers(user_id)).json()
        assert current["plan"] == "professional"

    def test_upgrade_cancels_previous_plan_with_provider(self, client, db_session, razorpay, free_tenant):
        _, user_id = free_tenant
        old_id = self._checkout(client, user_id)
        razorpay.activate(old_id)
        self._verify(client, user_id, old_id)
        new_id = self._checkout(client, user_id, plan_id="enterprise")
        razorpay.activate(new_id)

        response = self._verify(client, user_id, new_id, payment_id="pay_2")

        assert response.status_code == 200
        assert ("POST", f"/v1/subscriptions/{old_id}/cancel") in razorpay.requests
        assert razorpay.subscriptions[old_id]["status"] == "cancelled"
        db_session.expire_all()
        old = db_session.query(UserSubscription).filter_by(provider_subscription_id=old_id).one()
        assert old.status == "canceled"
        current = client.get("/api/v1/tenants/current", headers=auth_headers(user_id)).json()
        assert current["plan"] == "enterprise"

    def test_upgrade_survives_provider_cancel_failure(self, client, db_session, razorpay, free_tenant):
        _, user_id = free_tenant
        old_id = self._checkout(client, user_id)
        razorpay.activate(old_id)
        self._verify(client, user_id, old_id)
        new_id = self._checkout(client, user_id, plan_id="enterprise")
        razorpay.activate(new_id)
        original = razorpay.handler

        def failing_cancel(request):
            if request.url.path.endswith("/cancel"):
                return httpx.Response(500, json={"error": {"description": "Server error"}})
            return original(request)

        razorpay.handler = failing_cancel

        response = self._verify(client, user_id, new_id, payment_id="pay_2")

        assert response.status_code == 200
        assert response.json()["status"] == "active"

    def test_bad_signature_rejected(self, client, razorpay, free_tenant):
        _, user_id = free_tenant
        sub_id = self._checkout(client, user_id)

        response = client.post(
            "/api/v1/billing/verify-payment",
            json={
                "razorpay_payment_id": "pay_1",
                "razorpay_subscription_id": sub_id,
                "razorpay_signature": checkout_signature("pay_1", sub_id, secret="wrong"),
            },
            headers=auth_headers(user_id),
        )

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid payment signature"

    def test_cannot_verify_another_tenants_subscription(self, client, db_session, razorpay, free_tenant):
        _, owner_user = free_tenant
        _, other_user = create_tenant(db_session)
        sub_id = self._checkout(client, owner_user)

        response = client.post(
            "/api/v1/billing/verify-payment",
            json={
                "razorpay_payment_id": "pay_1",
                "razorpay_subscription_id": sub_id,
                "razorpay_signature": checkout_signature("pay_1", sub_id),
            },
            headers=auth_headers(other_user),
        )

        assert response.status_code == 404


class TestCancel:
    def test_cancel_marks_cancel_at_period_end(self, client, db_session, razorpay, free_tenant):
        tenant_id, user_id = free_tenant
        sub_id = client.post(
            "/api/v1/billing/subscriptions",
            json={"plan_id": "professional"},
            headers=auth_headers(user_id),
        ).json()["subscription_id"]
        razorpay.activate(sub_id)
        client.post(
            "/api/v1/billing/verify-payment",
            json={
                "razorpay_payment_id": "pay_1",
                "razorpay_subscription_id": sub_id,
                "razorpay_signature": checkout_signature("pay_1", sub_id),
            },
            headers=auth_headers(user_id),
        )

        response = client.post("/api/v1/billing/subscription/cancel", headers=auth_headers(user_id))

        assert response.status_code == 200
        data = response.json()
        assert data["cancel_at_period_end"] is True
        assert data["status"] == "active"
        assert ("POST", f"/v1/subscriptions/{sub_id}/cancel") in razorpay.requests

    def test_cancel_without_active_subscription_is_404(self, client, razorpay, free_tenant):
        _, user_id = free_tenant

        response = client.post("/api/v1/billing/subscription/cancel", headers=auth_headers(user_id))

        assert response.status_code == 404


class TestGetSubscription:
    def test_returns_null_without_subscription(self, client, free_tenant):
        _, user_id = free_tenant

        response = client.get("/api/v1/billing/subscription", headers=auth_headers(user_id))

        assert response.status_code == 200
        assert response.json() is None

    def test_returns_own_subscription_only(self, client, db_session, pro_tenant):
        tenant_id, user_id = pro_tenant
        other_tenant, _ = create_tenant(db_session)
        add_subscription(db_session, other_tenant, plan_id="enterprise")

        data = client.get("/api/v1/billing/subscription", headers=auth_headers(user_id)).json()

        assert data["plan_id"] == "professional"
        assert data["status"] == "active"

    def test_prefers_active_subscription_over_pending_checkout(self, client, db_session, pro_tenant):
        tenant_id, user_id = pro_tenant
        add_subscription(db_session, tenant_id, plan_id="enterprise", status=SubscriptionStatus.CREATED)

        data = client.get("/api/v1/billing/subscription", headers=auth_headers(user_id)).json()

        assert data["plan_id"] == "professional"
        assert data["status"] == "active"

    def test_falls_back_to_latest_row(self, client, db_session, free_tenant):
        tenant_id, user_id = free_tenant
        add_subscription(db_session, tenant_id, plan_id="enterprise", status=SubscriptionStatus.CREATED)

        data = client.get("/api/v1/billing/subscription", headers=auth_headers(user_id)).json()

        assert data["status"] == "created"
