"""
Integration Tests for Webhooks (Razorpay)

Verifies:
- Signature verification failure (400)
- Unknown events acknowledged (200)
- Successful event processing and the event ledger
- Idempotency (prevent double processing)
- Missing local records (404) and store failures (500)
"""

import json

import pytest


WEBHOOK_URL = "/api/webhooks/razorpay"


@pytest.fixture
def created_subscription(store, user_u1):
    return store.seed(
        "user_subscriptions",
        {
            "user_id": "u1",
            "razorpay_subscription_id": "sub_abc",
            "plan_name": "Gold",
            "status": "created",
        },
    )


@pytest.fixture
def deliver(client, signer):
    """POST a payload with a valid signature over the exact bytes sent."""
    def _deliver(payload, event_id=None, signature=None):
        body = json.dumps(payload).encode()
        headers = {
            "Content-Type": "application/json",
            "X-Razorpay-Signature": signature if signature is not None else signer(body),
        }
        if event_id:
            headers["X-Razorpay-Event-Id"] = event_id
        return client.post(WEBHOOK_URL, content=body, headers=headers)
    return _deliver


class TestRazorpayWebhookSignature:

    def test_webhook_missing_signature(self, client, store, make_subscription_event):
        """Webhook without signature header should fail 400."""
        response = client.post(WEBHOOK_URL, json=make_subscription_event("subscription.activated"))

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid signature"
        assert store.calls == []

    def test_webhook_invalid_signature(self, deliver, store, created_subscription, make_subscription_event):
        """Webhook with a wrong signature should fail 400 and change nothing."""
        response = deliver(make_subscription_event("subscription.activated"), signature="0" * 64)

        assert response.status_code == 400
        assert store.row("user_subscriptions", created_subscription["id"])["status"] == "created"

    def test_alternate_signature_header(self, client, signer, store, created_subscription, make_subscription_event):
        body = json.dumps(make_subscription_event("subscription.activated")).encode()

        response = client.post(
            WEBHOOK_URL,
            content=body,
            headers={"Content-Type": "application/json", "X-Signature": signer(body)},
        )

        assert response.status_code == 200

    def test_signed_garbage_body(self, client, signer):
        body = b"not json"
        response = client.post(WEBHOOK_URL, content=body, headers={"X-Razorpay-Signature": signer(body)})
        assert response.status_code == 400


class TestRazorpayWebhookProcessing:

    def test_unknown_event_acknowledged(self, deliver, store):
        response = deliver({"event": "refund.processed", "payload": {}})

        assert response.status_code == 200
        assert response.json()["status"] == "ignored"
        assert store.rows("subscription_events") == []

    def test_activation_processed_and_ledgered(self, deliver, store, created_subscription, make_subscription_event):
        response = deliver(make_subscription_event("subscription.activated"), event_id="evt_1")

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "status": "processed",
            "event": "subscription.activated",
        }
        assert store.row("users", "u1")["subscription_status"] == "active"

        ledger = store.rows("subscription_events")
        assert len(ledger) == 1
        assert ledger[0]["dedupe_key"] == "evt_1"
        assert ledger[0]["razorpay_subscription_id"] == "sub_abc"

    def test_webhook_idempotency(self, deliver, store, created_subscription, make_subscription_event):
        """A redelivered charge is acknowledged without being applied again."""
        payload = make_subscription_event("subscription.charged")
        first = deliver(payload)
        writes_after_first = len([c for c in store.calls if c[0] == "update"])

        second = deliver(payload)

        assert first.json()["status"] == "processed"
        assert second.status_code == 200
        assert second.json()["status"] == "already_processed"
        assert len([c for c in store.calls if c[0] == "update"]) == writes_after_first
        assert len(store.rows("subscription_events")) == 1

    def test_missing_subscription_record(self, deliver, user_u1, make_subscription_event):
        response = deliver(make_subscription_event("subscription.activated"))

        assert response.status_code == 404
        assert response.json()["details"]["key"] == "sub_abc"

    def test_charge_for_unknown_subscription_acknowledged(self, deliver, store, user_u1, make_subscription_event):
        response = deliver(make_subscription_event("subscription.charged"))

        assert response.status_code == 200
        assert response.json()["status"] == "ignored"
        assert store.rows("subscription_events") == []

    def test_store_failure_returns_500(self, deliver, store, created_subscription, make_subscription_event):
        """The gateway retries on 5xx, so nothing is ledgered."""
        store.fail("update", "users")

        response = deliver(make_subscription_event("subscription.activated"))

        assert response.status_code == 500
        assert store.rows("subscription_events") == []

    def test_retry_after_store_failure_applies(self, deliver, store, created_subscription, make_subscription_event):
        payload = make_subscription_event("subscription.activated")
        store.fail("update", "users")
        assert deliver(payload).status_code == 500

        store.failures.clear()
        response = deliver(payload)

        assert response.status_code == 200
        assert store.row("users", "u1")["subscription_status"] == "active"

    def test_payment_captured_grants_access(self, deliver, store, user_u1, make_payment_event):
        store.seed(
            "payment_history",
            {
                "user_id": "u1",
                "razorpay_order_id": "order_123",
                "status": "pending",
                "subscription_plan": "Gold",
                "subscription_days": 30,
            },
        )

        response = deliver(make_payment_event("payment.captured"))

        assert response.status_code == 200
        assert store.rows("payment_history")[0]["status"] == "success"
        assert store.row("users", "u1")["subscription_status"] == "active"
        assert store.rows("subscription_events")[0]["razorpay_order_id"] == "order_123"

    def test_payment_for_unknown_order(self, deliver, user_u1, make_payment_event):
        response = deliver(make_payment_event("payment.failed", order_id="order_missing"))
        assert response.status_code == 404
