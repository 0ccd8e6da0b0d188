# API Routes Module
from app.api.routes import (
    admin,
    payments,
    subscriptions,
    webhooks,
)

__all__ = [
    "admin",
    "payments",
    "subscriptions",
    "webhooks",
]
