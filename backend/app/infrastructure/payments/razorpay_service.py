"""
Razorpay Payment Service

Infrastructure service for the Razorpay REST API.
Handles customers, recurring subscriptions, one-time orders and
signature verification for webhooks and checkout callbacks.

Every outbound call is bounded by settings.gateway_timeout_seconds and
fails as GatewayError carrying the gateway's own message.
"""

import hashlib
import hmac
import logging
from typing import Any, Dict, Optional

import httpx

from app.config.settings import Settings
from app.infrastructure.exceptions import GatewayError


logger = logging.getLogger(__name__)


class RazorpayService:
    """
    Razorpay gateway client.

    Stateless apart from its configuration; a fresh httpx.AsyncClient is
    opened per call. Tests pass an httpx.MockTransport as transport.
    """

    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._settings = settings
        self._base_url = settings.razorpay_base_url.rstrip("/")
        self._auth = (settings.razorpay_key_id, settings.razorpay_key_secret)
        self._timeout = settings.gateway_timeout_seconds
        self._transport = transport

    # =========================================================================
    # HTTP plumbing
    # =========================================================================

    async def _post(self, path: str, body: Dict[str, Any], operation: str) -> Dict[str, Any]:
        """POST JSON to the gateway and return the decoded response."""
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url,
                auth=self._auth,
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                response = await client.post(path, json=body)
                response.raise_for_status()
                return response.json()

        except httpx.TimeoutException as e:
            logger.error(f"[RAZORPAY] {operation} timed out after {self._timeout}s")
            raise GatewayError(
                "Payment gateway timed out",
                operation=operation,
                gateway_message=str(e) or "timeout",
                original_error=e,
            ) from e
        except httpx.HTTPStatusError as e:
            message = self._error_description(e.response)
            logger.error(
                f"[RAZORPAY] {operation} failed with HTTP {e.response.status_code}: {message}"
            )
            raise GatewayError(
                "Payment gateway rejected the request",
                operation=operation,
                status_code=e.response.status_code,
                gateway_message=message,
                original_error=e,
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"[RAZORPAY] {operation} transport error: {e}")
            raise GatewayError(
                "Payment gateway unreachable",
                operation=operation,
                gateway_message=str(e),
                original_error=e,
            ) from e
        except ValueError as e:
            logger.error(f"[RAZORPAY] {operation} returned a non-JSON body")
            raise GatewayError(
                "Payment gateway returned an invalid response",
                operation=operation,
                original_error=e,
            ) from e

    @staticmethod
    def _error_description(response: httpx.Response) -> str:
        """Pull error.description out of a gateway error body."""
        try:
            body = response.json()
        except ValueError:
            return response.text[:200] or f"HTTP {response.status_code}"
        error = body.get("error") if isinstance(body, dict) else None
        if isinstance(error, dict) and error.get("description"):
            return str(error["description"])
        return f"HTTP {response.status_code}"

    # =========================================================================
    # Customers
    # =========================================================================

    async def create_customer(
        self,
        email: str,
        name: str,
        notes: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """
        Create a customer, or return the existing one for this email.

        fail_existing="0" makes the gateway return the existing customer
        instead of erroring, so repeated calls never duplicate customers.

        Returns:
            Gateway customer object (id, email, name, ...)
        """
        customer = await self._post(
            "/customers",
            {
                "name": name,
                "email": email,
                "fail_existing": "0",
                "notes": notes or {},
            },
            operation="create_customer",
        )
        logger.info(f"[RAZORPAY] Customer {customer.get('id')} ready")
        return customer

    # =========================================================================
    # Subscriptions
    # =========================================================================

    async def create_subscription(
        self,
        plan_id: str,
        customer_id: str,
        total_count: int,
        notes: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """
        Create a recurring subscription.

        Args:
            plan_id: Gateway plan id
            customer_id: Gateway customer id
            total_count: Number of billing cycles
            notes: Opaque metadata echoed back in webhooks

        Returns:
            Gateway subscription object (id, status, short_url, ...)
        """
        subscription = await self._post(
            "/subscriptions",
            {
                "plan_id": plan_id,
                "customer_id": customer_id,
                "total_count": total_count,
                "quantity": 1,
                "customer_notify": 1,
                "notes": notes or {},
            },
            operation="create_subscription",
        )
        logger.info(
            f"[RAZORPAY] Created subscription {subscription.get('id')} "
            f"on plan {plan_id} ({total_count} cycles)"
        )
        return subscription

    # =========================================================================
    # One-time orders
    # =========================================================================

    async def create_order(
        self,
        amount: int,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Create a one-time order.

        Args:
            amount: Amount in minor units (paise)
            currency: ISO currency code
            receipt: Merchant receipt, at most 40 characters

        Returns:
            Gateway order object (id, amount, currency, receipt, status)
        """
        order = await self._post(
            "/orders",
            {
                "amount": amount,
                "currency": currency,
                "receipt": receipt,
                "notes": notes or {},
            },
            operation="create_order",
        )
        logger.info(f"[RAZORPAY] Created order {order.get('id')} for receipt {receipt}")
        return order

    # =========================================================================
    # Signature Verification
    # =========================================================================

    @staticmethod
    def _hmac_hex(secret: str, message: bytes) -> str:
        return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()

    def verify_webhook_signature(self, payload: bytes, signature: Optional[str]) -> bool:
        """
        Check a webhook signature against the raw request body.

        Args:
            payload: Raw, unparsed request body
            signature: Value of the X-Razorpay-Signature header

        Returns:
            True only if the header is present and matches
            HMAC-SHA256(webhook_secret, payload) in constant time
        """
        if not signature:
            return False
        expected = self._hmac_hex(self._settings.razorpay_webhook_secret, payload)
        return hmac.compare_digest(expected.encode("utf-8"), signature.strip().encode("utf-8"))

    def verify_payment_signature(
        self,
        order_id: str,
        payment_id: str,
        signature: Optional[str],
    ) -> bool:
        """
        Check a checkout callback signature.

        The gateway signs "order_id|payment_id" with the API key secret.
        """
        if not order_id or not payment_id or not signature:
            return False
        message = f"{order_id}|{payment_id}".encode("utf-8")
        expected = self._hmac_hex(self._settings.razorpay_key_secret, message)
        return hmac.compare_digest(expected.encode("utf-8"), signature.strip().encode("utf-8"))
