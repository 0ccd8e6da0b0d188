"""
Integration tests for API endpoints.

Runs the real routers against the in-memory record store and the Razorpay
stub; see conftest.py.
"""

import hashlib
import hmac
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient


ADMIN_HEADERS = {"X-Admin-Key": "test-admin-key"}


def _iso(moment: datetime) -> str:
    return moment.isoformat()


@pytest.fixture
def auth(make_token):
    def _auth(user_id: str = "u1") -> dict:
        return {"Authorization": f"Bearer {make_token(user_id)}"}
    return _auth


@pytest.fixture
def live_trial_user(store):
    now = datetime.now(timezone.utc)
    return store.seed(
        "users",
        {
            "id": "u1",
            "email": "gold@x.com",
            "role": "user",
            "subscription_status": "trial",
            "trial_start_date": _iso(now - timedelta(days=5)),
            "trial_end_date": _iso(now + timedelta(days=10, hours=1)),
            "is_locked": False,
        },
    )


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    def test_root_endpoint(self, client: TestClient):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["message"] == "Policy Manager Billing API"

    def test_health_endpoint(self, client: TestClient):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "service": "policy-manager-billing"}


class TestCreateSubscription:
    """POST /api/subscriptions/create"""

    def test_returns_payment_link(self, client: TestClient, store, gold_plan):
        response = client.post(
            "/api/subscriptions/create",
            json={"userId": "u1", "planName": "Gold", "userEmail": "gold@x.com"},
        )

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "subscription": {
                "id": "sub_abc",
                "status": "created",
                "paymentUrl": "https://rzp.io/i/abc",
                "planName": "Gold Plan",
                "amount": 999.0,
                "currency": "INR",
            },
        }
        assert store.rows("user_subscriptions")[0]["status"] == "created"

    def test_missing_fields(self, client: TestClient, razorpay):
        response = client.post("/api/subscriptions/create", json={"userId": "u1"})

        assert response.status_code == 400
        assert response.json()["details"]["missing_fields"] == ["planName", "userEmail"]
        assert razorpay.requests == []

    def test_badly_typed_body(self, client: TestClient, razorpay):
        response = client.post(
            "/api/subscriptions/create",
            json={"userId": 123, "planName": "Gold", "userEmail": "gold@x.com"},
        )

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "Invalid request body"
        assert body["details"]["errors"][0]["loc"] == ["body", "userId"]
        assert razorpay.requests == []

    def test_non_json_body(self, client: TestClient):
        response = client.post(
            "/api/payments/orders",
            content=b"not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request body"

    def test_unknown_plan(self, client: TestClient):
        response = client.post(
            "/api/subscriptions/create",
            json={"userId": "u1", "planName": "Platinum", "userEmail": "p@x.com"},
        )
        assert response.status_code == 404

    def test_plan_without_gateway_plan(self, client: TestClient, store):
        store.seed("subscription_plans", {"name": "Manual", "is_active": True})
        response = client.post(
            "/api/subscriptions/create",
            json={"userId": "u1", "planName": "Manual", "userEmail": "m@x.com"},
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Plan does not have Razorpay configuration"

    def test_gateway_failure(self, client: TestClient, razorpay, gold_plan):
        razorpay.fail("/v1/customers", 401, "Authentication failed")
        response = client.post(
            "/api/subscriptions/create",
            json={"userId": "u1", "planName": "Gold", "userEmail": "gold@x.com"},
        )
        assert response.status_code == 500
        assert response.json()["error"] == "Failed to create subscription"
        assert response.json()["details"]["gateway_message"] == "Authentication failed"


class TestPlans:
    def test_lists_active_plans_only(self, client: TestClient, store, gold_plan):
        store.seed("subscription_plans", {"name": "Retired", "price_inr": "10", "is_active": False})

        response = client.get("/api/subscriptions/plans")

        assert response.status_code == 200
        assert response.json()["plans"] == [
            {"name": "Gold", "display_name": "Gold Plan", "duration_days": 30, "price": 999.0, "currency": "INR"}
        ]


class TestEntitlementEndpoints:
    def test_status_requires_token(self, client: TestClient):
        assert client.get("/api/subscriptions/status").status_code == 401

    def test_status_for_trial_user(self, client: TestClient, auth, live_trial_user):
        response = client.get("/api/subscriptions/status", headers=auth())

        assert response.status_code == 200
        body = response.json()
        assert body["subscription_status"] == "trial"
        assert body["can_access"] is True
        assert body["days_remaining"] == 11
        assert body["unlimited"] is False

    def test_status_persists_expiry(self, client: TestClient, auth, store, live_trial_user):
        store.tables["users"]["u1"]["trial_end_date"] = _iso(datetime.now(timezone.utc) - timedelta(minutes=1))

        body = client.get("/api/subscriptions/status", headers=auth()).json()

        assert body["subscription_status"] == "expired"
        assert body["can_access"] is False
        assert body["days_remaining"] == 0
        assert store.row("users", "u1")["subscription_status"] == "expired"

    def test_status_for_admin(self, client: TestClient, auth, store):
        store.seed("users", {"id": "admin1", "role": "admin"})

        body = client.get("/api/subscriptions/status", headers=auth("admin1")).json()

        assert body["can_access"] is True
        assert body["unlimited"] is True

    def test_status_unknown_user(self, client: TestClient, auth):
        assert client.get("/api/subscriptions/status", headers=auth("ghost")).status_code == 404

    def test_trial_started_after_sign_up(self, client: TestClient, auth, store):
        store.seed("users", {"id": "u2", "email": "new@x.com", "role": "user"})

        response = client.post("/api/subscriptions/trial", headers=auth("u2"))

        assert response.status_code == 200
        body = response.json()
        assert body["subscription_status"] == "trial"
        assert body["can_access"] is True
        assert body["days_remaining"] == 15
        assert store.row("users", "u2")["trial_end_date"] is not None

    def test_trial_not_restarted(self, client: TestClient, auth, store, live_trial_user):
        response = client.post("/api/subscriptions/trial", headers=auth())

        assert response.status_code == 200
        assert response.json()["days_remaining"] == 11
        assert store.row("users", "u1")["trial_end_date"] == live_trial_user["trial_end_date"]

    def test_access_allowed(self, client: TestClient, auth, live_trial_user):
        response = client.get("/api/subscriptions/access", headers=auth())
        assert response.status_code == 200
        assert response.json()["allowed"] is True

    def test_access_after_trial_is_402(self, client: TestClient, auth, store, live_trial_user):
        store.tables["users"]["u1"]["trial_end_date"] = _iso(datetime.now(timezone.utc) - timedelta(days=1))

        response = client.get("/api/subscriptions/access", headers=auth())

        assert response.status_code == 402
        assert response.json()["details"]["redirect"] == "/subscription"

    def test_access_when_locked_is_403(self, client: TestClient, auth, store, live_trial_user):
        store.tables["users"]["u1"].update(is_locked=True, locked_reason="chargeback")

        response = client.get("/api/subscriptions/access", headers=auth())

        assert response.status_code == 403
        assert response.json()["details"] == {
            "reason": "locked",
            "redirect": "/account-locked",
            "locked_reason": "chargeback",
        }


class TestPayments:
    def test_create_order(self, client: TestClient, store, gold_plan):
        response = client.post("/api/payments/orders", json={"userId": "u1", "planName": "Gold"})

        assert response.status_code == 200
        body = response.json()
        assert body["order"]["id"] == "order_123"
        assert body["order"]["amount"] == 99900
        assert body["keyId"] == "rzp_test_key"
        assert store.rows("payment_history")[0]["status"] == "pending"

    def test_verify_payment(self, client: TestClient):
        signature = hmac.new(b"rzp_test_secret", b"order_123|pay_123", hashlib.sha256).hexdigest()
        response = client.post(
            "/api/payments/verify",
            json={"razorpay_order_id": "order_123", "razorpay_payment_id": "pay_123", "razorpay_signature": signature},
        )
        assert response.status_code == 200
        assert response.json() == {"success": True, "verified": True}

    def test_verify_payment_bad_signature(self, client: TestClient):
        response = client.post(
            "/api/payments/verify",
            json={"orderId": "order_123", "paymentId": "pay_123", "signature": "f" * 64},
        )
        assert response.status_code == 400


class TestAdminLocks:
    def test_lock_requires_admin_key(self, client: TestClient, live_trial_user):
        response = client.post(
            "/api/admin/users/u1/lock",
            json={"reason": "chargeback", "lockedBy": "ops@x.com"},
        )
        assert response.status_code == 403

    def test_wrong_admin_key(self, client: TestClient, live_trial_user):
        response = client.post(
            "/api/admin/users/u1/lock",
            json={"reason": "chargeback", "lockedBy": "ops@x.com"},
            headers={"X-Admin-Key": "guess"},
        )
        assert response.status_code == 403

    def test_unconfigured_admin_key(self, app, client: TestClient, settings, live_trial_user):
        from app.config.settings import get_settings

        app.dependency_overrides[get_settings] = lambda: settings.model_copy(update={"admin_api_key": None})
        response = client.post(
            "/api/admin/users/u1/lock",
            json={"reason": "chargeback", "lockedBy": "ops@x.com"},
            headers=ADMIN_HEADERS,
        )
        assert response.status_code == 503

    def test_lock_then_unlock(self, client: TestClient, auth, store, live_trial_user):
        locked = client.post(
            "/api/admin/users/u1/lock",
            json={"reason": "chargeback", "lockedBy": "ops@x.com"},
            headers=ADMIN_HEADERS,
        )
        assert locked.status_code == 200
        assert locked.json() == {"success": True, "user_id": "u1", "is_locked": True}
        assert client.get("/api/subscriptions/access", headers=auth()).status_code == 403

        unlocked = client.post("/api/admin/users/u1/unlock", headers=ADMIN_HEADERS)
        assert unlocked.status_code == 200
        assert store.row("users", "u1")["locked_reason"] is None
        assert client.get("/api/subscriptions/access", headers=auth()).status_code == 200

    def test_lock_requires_reason(self, client: TestClient, live_trial_user):
        response = client.post(
            "/api/admin/users/u1/lock",
            json={"reason": "", "lockedBy": "ops@x.com"},
            headers=ADMIN_HEADERS,
        )
        assert response.status_code == 400
        assert response.json()["details"]["errors"][0]["loc"] == ["body", "reason"]

    def test_lock_unknown_user(self, client: TestClient):
        response = client.post(
            "/api/admin/users/ghost/lock",
            json={"reason": "chargeback", "lockedBy": "ops@x.com"},
            headers=ADMIN_HEADERS,
        )
        assert response.status_code == 404
