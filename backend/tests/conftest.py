"""
Test configuration and fixtures for Policy Manager Billing.

Provides shared fixtures for unit and integration tests: an in-memory
record store, a Razorpay stub behind httpx.MockTransport, a fixed clock
and the FastAPI app wired to both.
"""

import hashlib
import hmac
import json
import os
import time
from collections import defaultdict
from copy import deepcopy
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

# Required configuration must exist before app.config.settings is imported
os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test-service-role-key")
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-jwt-secret-with-enough-length-for-hs256")
os.environ.setdefault("RAZORPAY_KEY_ID", "rzp_test_key")
os.environ.setdefault("RAZORPAY_KEY_SECRET", "rzp_test_secret")
os.environ.setdefault("RAZORPAY_WEBHOOK_SECRET", "whsec_test")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("ENVIRONMENT", "testing")

import httpx
import jwt
import pytest
from fastapi.testclient import TestClient

from app.config.settings import Settings, get_settings
from app.infrastructure.db.record_store import RecordStore
from app.infrastructure.exceptions import DatabaseError, DuplicateError
from app.infrastructure.payments import RazorpayService


# =============================================================================
# In-memory record store
# =============================================================================

class InMemoryRecordStore(RecordStore):
    """
    Dict-backed RecordStore.

    Mirrors the unique constraints of the real schema and can be told to
    fail specific (operation, collection) pairs.
    """

    UNIQUE = {
        "subscription_plans": ("name",),
        "user_subscriptions": ("razorpay_subscription_id",),
        "payment_history": ("razorpay_order_id",),
        "subscription_events": ("dedupe_key",),
    }

    def __init__(self):
        self.tables: Dict[str, Dict[str, Dict[str, Any]]] = defaultdict(dict)
        self.failures: set = set()
        self.calls: List[Tuple[str, str]] = []
        self._tick = 0

    def fail(self, operation: str, collection: str) -> None:
        self.failures.add((operation, collection))

    def _check(self, operation: str, collection: str) -> None:
        self.calls.append((operation, collection))
        if (operation, collection) in self.failures:
            raise DatabaseError(
                f"Simulated {operation} failure", operation=operation, table=collection
            )

    def _stamp(self) -> str:
        self._tick += 1
        base = datetime(2024, 1, 1, tzinfo=timezone.utc)
        return (base + timedelta(seconds=self._tick)).isoformat()

    def seed(self, collection: str, record: Dict[str, Any]) -> Dict[str, Any]:
        row = dict(record)
        row.setdefault("id", str(uuid4()))
        row.setdefault("created_at", self._stamp())
        self.tables[collection][row["id"]] = row
        return deepcopy(row)

    def rows(self, collection: str) -> List[Dict[str, Any]]:
        return [deepcopy(row) for row in self.tables[collection].values()]

    def row(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        row = self.tables[collection].get(record_id)
        return deepcopy(row) if row else None

    async def get(self, collection, record_id):
        self._check("get", collection)
        return self.row(collection, record_id)

    async def query(self, collection, filters=None, order_by=None, descending=False, limit=None):
        self._check("query", collection)
        rows = [
            row for row in self.tables[collection].values()
            if all(row.get(key) == value for key, value in (filters or {}).items())
        ]
        if order_by:
            rows.sort(
                key=lambda row: (row.get(order_by) is None, row.get(order_by)),
                reverse=descending,
            )
        if limit is not None:
            rows = rows[:limit]
        return [deepcopy(row) for row in rows]

    async def insert(self, collection, record):
        self._check("insert", collection)
        for column in self.UNIQUE.get(collection, ()):
            value = record.get(column)
            if value is not None and any(
                row.get(column) == value for row in self.tables[collection].values()
            ):
                raise DuplicateError(
                    f"Duplicate record in {collection}", operation="insert", table=collection
                )
        return self.seed(collection, record)

    async def update(self, collection, record_id, changes):
        self._check("update", collection)
        row = self.tables[collection].get(record_id)
        if row is None:
            return None
        row.update(deepcopy(changes))
        return deepcopy(row)


# =============================================================================
# Razorpay stub
# =============================================================================

class RazorpayStub:
    """Handler for httpx.MockTransport that imitates the Razorpay REST API."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.failures: Dict[str, Any] = {}
        self.subscription_id = "sub_abc"
        self.short_url = "https://rzp.io/i/abc"
        self.order_id = "order_123"

    def bodies(self, path: str) -> List[Dict[str, Any]]:
        return [json.loads(r.content) for r in self.requests if r.url.path == path]

    def fail(self, path: str, status_code: int = 400, description: str = "Bad request") -> None:
        self.failures[path] = (status_code, description)

    def timeout(self, path: str) -> None:
        self.failures[path] = "timeout"

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        body = json.loads(request.content) if request.content else {}

        failure = self.failures.get(path)
        if failure == "timeout":
            raise httpx.ReadTimeout("timed out", request=request)
        if failure:
            status_code, description = failure
            return httpx.Response(
                status_code,
                json={"error": {"code": "BAD_REQUEST_ERROR", "description": description}},
            )

        if path == "/v1/customers":
            return httpx.Response(
                200,
                json={"id": "cust_123", "entity": "customer", "email": body.get("email"), "name": body.get("name")},
            )
        if path == "/v1/subscriptions":
            return httpx.Response(
                200,
                json={
                    "id": self.subscription_id,
                    "entity": "subscription",
                    "plan_id": body.get("plan_id"),
                    "customer_id": body.get("customer_id"),
                    "status": "created",
                    "total_count": body.get("total_count"),
                    "short_url": self.short_url,
                    "notes": body.get("notes", {}),
                },
            )
        if path == "/v1/orders":
            return httpx.Response(
                200,
                json={
                    "id": self.order_id,
                    "entity": "order",
                    "amount": body.get("amount"),
                    "currency": body.get("currency"),
                    "receipt": body.get("receipt"),
                    "status": "created",
                },
            )
        return httpx.Response(404, json={"error": {"description": "Not found"}})


# =============================================================================
# Helpers
# =============================================================================

FIXED_NOW = datetime(2023, 11, 20, 12, 0, tzinfo=timezone.utc)


class Clock:
    """Settable clock for services."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


def sign(body: bytes, secret: str = "whsec_test") -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def subscription_event(
    event: str,
    subscription_id: str = "sub_abc",
    current_start: Optional[int] = 1700000000,
    current_end: Optional[int] = 1702592000,
    paid_count: Optional[int] = 1,
    notes: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    entity: Dict[str, Any] = {
        "id": subscription_id,
        "entity": "subscription",
        "status": event.split(".")[1],
        "current_start": current_start,
        "current_end": current_end,
        "paid_count": paid_count,
        "notes": notes if notes is not None else [],
    }
    return {
        "entity": "event",
        "event": event,
        "contains": ["subscription"],
        "payload": {"subscription": {"entity": entity}},
    }


def payment_event(
    event: str,
    order_id: Optional[str] = "order_123",
    payment_id: str = "pay_123",
    method: str = "upi",
    error_description: Optional[str] = None,
) -> Dict[str, Any]:
    entity: Dict[str, Any] = {
        "id": payment_id,
        "entity": "payment",
        "order_id": order_id,
        "method": method,
    }
    if error_description:
        entity["error_description"] = error_description
    return {
        "entity": "event",
        "event": event,
        "contains": ["payment"],
        "payload": {"payment": {"entity": entity}},
    }


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def settings() -> Settings:
    return get_settings()


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def razorpay() -> RazorpayStub:
    return RazorpayStub()


@pytest.fixture
def gateway(settings, razorpay) -> RazorpayService:
    return RazorpayService(settings, transport=httpx.MockTransport(razorpay))


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def gold_plan(store) -> Dict[str, Any]:
    return store.seed(
        "subscription_plans",
        {
            "name": "Gold",
            "display_name": "Gold Plan",
            "razorpay_plan_id": "plan_abc",
            "duration_days": 30,
            "price_inr": "999.00",
            "currency": "INR",
            "is_active": True,
        },
    )


@pytest.fixture
def user_u1(store) -> Dict[str, Any]:
    return store.seed(
        "users",
        {
            "id": "u1",
            "email": "gold@x.com",
            "role": "user",
            "subscription_status": "trial",
            "trial_start_date": "2023-11-10T00:00:00+00:00",
            "trial_end_date": "2023-11-25T00:00:00+00:00",
            "is_locked": False,
        },
    )


@pytest.fixture(autouse=True)
def no_jwks_network(monkeypatch):
    """JWKS lookups would hit the network; force the HS256 path."""
    def _reject(token, issuer):
        raise jwt.InvalidTokenError("JWKS disabled in tests")

    monkeypatch.setattr("app.api.dependencies._decode_with_jwks", _reject)


@pytest.fixture
def make_token(settings):
    def _make(user_id: str, expires_in: int = 3600) -> str:
        payload = {
            "sub": user_id,
            "aud": "authenticated",
            "iss": f"{settings.supabase_url}/auth/v1",
            "exp": int(time.time()) + expires_in,
        }
        return jwt.encode(payload, settings.supabase_jwt_secret, algorithm="HS256")
    return _make


@pytest.fixture
def app(store, gateway):
    """FastAPI application wired to the in-memory store and gateway stub."""
    from app.main import app
    from app.api import dependencies

    app.dependency_overrides[dependencies.get_record_store] = lambda: store
    app.dependency_overrides[dependencies.get_gateway] = lambda: gateway
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    """Get synchronous test client."""
    return TestClient(app)


@pytest.fixture
def make_subscription_event():
    return subscription_event


@pytest.fixture
def make_payment_event():
    return payment_event


@pytest.fixture
def signer():
    return sign
