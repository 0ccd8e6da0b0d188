"""
API Dependencies

FastAPI dependency injection for authentication, the record store, the
payment gateway and the billing services.

Security: JWT tokens are verified cryptographically using Supabase JWKS (ES256)
with HS256 fallback via the JWT secret. Never decode without verification.
"""

import logging
import secrets
from functools import lru_cache
from typing import Optional

import jwt
from jwt import PyJWKClient
from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from app.config.settings import Settings, get_settings
from app.infrastructure.db.record_store import RecordStore, SupabaseRecordStore
from app.infrastructure.db.repositories import (
    EventLedgerRepository,
    PaymentRepository,
    PlanRepository,
    SubscriptionRepository,
    UserRepository,
)
from app.infrastructure.payments import RazorpayService
from app.infrastructure.services.access_service import AccessService, Entitlement
from app.infrastructure.services.order_service import OrderService
from app.infrastructure.services.subscription_provisioner import SubscriptionProvisioner
from app.infrastructure.services.subscription_state_machine import SubscriptionStateMachine
from app.infrastructure.services.webhook_service import WebhookService


logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

# Cached JWKS client; keys are fetched once and reused.
# PyJWKClient caches keys internally and refreshes ~every 10 min.
_jwks_client: Optional[PyJWKClient] = None


def _get_jwks_client() -> PyJWKClient:
    """Return a singleton PyJWKClient for the Supabase JWKS endpoint."""
    global _jwks_client
    if _jwks_client is None:
        settings = get_settings()
        jwks_url = f"{settings.supabase_url}/auth/v1/.well-known/jwks.json"
        _jwks_client = PyJWKClient(jwks_url, cache_keys=True)
    return _jwks_client


def _decode_with_jwks(token: str, issuer: str) -> dict:
    """Verify JWT using Supabase JWKS endpoint (ES256 asymmetric keys)."""
    client = _get_jwks_client()
    signing_key = client.get_signing_key_from_jwt(token)
    return jwt.decode(
        token,
        signing_key.key,
        algorithms=["ES256"],
        issuer=issuer,
        audience="authenticated",
        options={"require": ["exp", "sub", "iss"]},
    )


def _decode_with_secret(token: str, secret: str, issuer: str) -> dict:
    """Verify JWT using HS256 symmetric secret (legacy Supabase signing)."""
    return jwt.decode(
        token,
        secret,
        algorithms=["HS256"],
        issuer=issuer,
        audience="authenticated",
        options={"require": ["exp", "sub", "iss"]},
    )


async def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    """
    Extract and verify user ID from a Supabase JWT.

    Verification strategy (in order):
      1. JWKS (ES256), preferred since it follows key rotation.
      2. HS256 with ``SUPABASE_JWT_SECRET``, fallback for legacy signing.

    Returns:
        Authenticated user ID (``sub`` claim).

    Raises:
        HTTPException 401: token missing, expired, or invalid.
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authorization token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token = credentials.credentials
    settings = get_settings()
    issuer = f"{settings.supabase_url}/auth/v1"

    payload: Optional[dict] = None

    # --- Strategy 1: JWKS (ES256) ---
    try:
        payload = _decode_with_jwks(token, issuer)
    except (jwt.exceptions.PyJWKClientError, jwt.InvalidTokenError) as jwks_err:
        logger.debug("JWKS verification failed, trying HS256 fallback: %s", jwks_err)

    # --- Strategy 2: HS256 fallback ---
    if payload is None and settings.supabase_jwt_secret:
        try:
            payload = _decode_with_secret(
                token, settings.supabase_jwt_secret, issuer
            )
        except jwt.ExpiredSignatureError:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Token has expired",
            )
        except jwt.InvalidTokenError as e:
            logger.warning("HS256 JWT verification also failed: %s", e)

    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or unverifiable token",
        )

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token: missing user ID",
        )

    return user_id


# =============================================================================
# Admin API Key Authentication
# =============================================================================

async def verify_admin_api_key(
    x_admin_key: Optional[str] = Header(None, description="Admin API key for protected operations"),
    settings: Settings = Depends(get_settings),
) -> bool:
    """
    Verify admin API key from header.

    The admin key is configured through ADMIN_API_KEY.
    """
    expected_key = settings.admin_api_key

    if not expected_key:
        logger.error("ADMIN_API_KEY is not configured")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin authentication not configured"
        )

    # Use secrets.compare_digest for timing-attack resistance
    if not x_admin_key or not secrets.compare_digest(
        x_admin_key.encode("utf-8"), expected_key.encode("utf-8")
    ):
        logger.warning("Invalid admin API key attempt")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid admin API key"
        )

    return True


# =============================================================================
# Infrastructure providers
# =============================================================================

@lru_cache
def get_record_store() -> RecordStore:
    """Process-wide Supabase-backed record store."""
    return SupabaseRecordStore(get_settings())


def get_gateway(settings: Settings = Depends(get_settings)) -> RazorpayService:
    return RazorpayService(settings)


def get_plan_repository(store: RecordStore = Depends(get_record_store)) -> PlanRepository:
    return PlanRepository(store)


def get_user_repository(store: RecordStore = Depends(get_record_store)) -> UserRepository:
    return UserRepository(store)


def get_subscription_repository(
    store: RecordStore = Depends(get_record_store),
) -> SubscriptionRepository:
    return SubscriptionRepository(store)


def get_event_ledger_repository(
    store: RecordStore = Depends(get_record_store),
) -> EventLedgerRepository:
    return EventLedgerRepository(store)


def get_payment_repository(store: RecordStore = Depends(get_record_store)) -> PaymentRepository:
    return PaymentRepository(store)


# =============================================================================
# Service providers
# =============================================================================

def get_provisioner(
    settings: Settings = Depends(get_settings),
    gateway: RazorpayService = Depends(get_gateway),
    plans: PlanRepository = Depends(get_plan_repository),
    subscriptions: SubscriptionRepository = Depends(get_subscription_repository),
) -> SubscriptionProvisioner:
    return SubscriptionProvisioner(settings, gateway, plans, subscriptions)


def get_order_service(
    settings: Settings = Depends(get_settings),
    gateway: RazorpayService = Depends(get_gateway),
    plans: PlanRepository = Depends(get_plan_repository),
    payments: PaymentRepository = Depends(get_payment_repository),
    users: UserRepository = Depends(get_user_repository),
) -> OrderService:
    return OrderService(settings, gateway, plans, payments, users)


def get_state_machine(
    settings: Settings = Depends(get_settings),
    subscriptions: SubscriptionRepository = Depends(get_subscription_repository),
    users: UserRepository = Depends(get_user_repository),
) -> SubscriptionStateMachine:
    return SubscriptionStateMachine(settings, subscriptions, users)


def get_webhook_service(
    gateway: RazorpayService = Depends(get_gateway),
    state_machine: SubscriptionStateMachine = Depends(get_state_machine),
    orders: OrderService = Depends(get_order_service),
    ledger: EventLedgerRepository = Depends(get_event_ledger_repository),
) -> WebhookService:
    return WebhookService(gateway, state_machine, orders, ledger)


def get_access_service(
    settings: Settings = Depends(get_settings),
    users: UserRepository = Depends(get_user_repository),
) -> AccessService:
    return AccessService(settings, users)


# =============================================================================
# Access gate
# =============================================================================

async def require_system_access(
    user_id: str = Depends(get_current_user_id),
    access: AccessService = Depends(get_access_service),
) -> Entitlement:
    """
    Gate for protected routes.

    Reconciles expiry on every call, then raises AccountLockedError (403) or
    SubscriptionRequiredError (402) unless the user may use the system.
    """
    return await access.require_access(user_id)
