"""
Payments Infrastructure Module

Razorpay gateway client: customers, subscriptions, orders and signatures.
"""

from app.infrastructure.payments.razorpay_service import RazorpayService

__all__ = ["RazorpayService"]
