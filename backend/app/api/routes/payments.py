"""
Payment API Routes

Legacy one-time order flow: order creation and manual signature
verification of the checkout callback.
"""

import logging

from fastapi import APIRouter, Depends

from app.api.dependencies import get_order_service
from app.config.settings import Settings, get_settings
from app.domain.subscription import CreateOrderRequest, VerifyPaymentRequest
from app.infrastructure.services.order_service import OrderService


logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/payments/orders")
async def create_order(
    request: CreateOrderRequest,
    orders: OrderService = Depends(get_order_service),
    settings: Settings = Depends(get_settings),
):
    """Create a one-time order for a plan; checkout completes it."""
    result = await orders.create_order(request.user_id, request.plan_name)
    return {
        "success": True,
        "order": {
            "id": result.order_id,
            "amount": result.amount,
            "currency": result.currency,
            "receipt": result.receipt,
        },
        "keyId": settings.razorpay_key_id,
    }


@router.post("/payments/verify")
async def verify_payment(
    request: VerifyPaymentRequest,
    orders: OrderService = Depends(get_order_service),
):
    """Verify the order|payment signature returned by checkout."""
    order_id, payment_id, signature = request.resolved()
    orders.verify_payment(order_id, payment_id, signature)
    return {"success": True, "verified": True}
