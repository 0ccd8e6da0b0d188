"""
Policy Manager Billing - FastAPI Application

Main entry point for the billing backend.
Provides endpoints for subscription provisioning, gateway webhooks, the
legacy one-time order flow, entitlement checks and admin account locks.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from app.config.settings import get_settings
from app.infrastructure.exceptions import (
    AccountLockedError,
    ConfigurationError,
    GatewayError,
    InvalidRequestError,
    InvalidSignatureError,
    NotFoundError,
    PlanMisconfiguredError,
    PolicyManagerError,
    SubscriptionRequiredError,
)


# Missing credentials are fatal: refuse to start rather than serve traffic
try:
    settings = get_settings()
except ValidationError as e:
    raise ConfigurationError(
        "Invalid configuration",
        missing_keys=[".".join(str(part) for part in err["loc"]) or err["msg"] for err in e.errors()],
        original_error=e,
    ) from e

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    logger.info(f"Policy Manager Billing starting in {settings.environment} mode...")
    if settings.webhook_recover_missing_records:
        logger.info("Webhook recovery of missing subscription records is enabled")
    if not settings.admin_api_key:
        logger.warning("ADMIN_API_KEY not set; admin lock routes will answer 503")

    yield

    logger.info("Policy Manager Billing shutting down...")


app = FastAPI(
    title="Policy Manager Billing",
    description="Subscription and access-control lifecycle for the policy manager",
    version="1.0.0",
    lifespan=lifespan,
    debug=settings.debug,
)

# CORS configuration from Settings
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Exception Handlers
# ============================================================================

@app.exception_handler(InvalidRequestError)
async def invalid_request_handler(request: Request, exc: InvalidRequestError):
    """Handle missing or malformed caller input."""
    return JSONResponse(status_code=400, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Badly typed or unparseable bodies answer like any other bad input."""
    error = InvalidRequestError(
        "Invalid request body",
        errors=[
            {"loc": [str(part) for part in err["loc"]], "msg": err["msg"], "type": err["type"]}
            for err in exc.errors()
        ],
    )
    return JSONResponse(status_code=400, content=error.to_dict())


@app.exception_handler(PlanMisconfiguredError)
async def plan_misconfigured_handler(request: Request, exc: PlanMisconfiguredError):
    """Handle plans that cannot be billed."""
    return JSONResponse(status_code=400, content=exc.to_dict())


@app.exception_handler(InvalidSignatureError)
async def invalid_signature_handler(request: Request, exc: InvalidSignatureError):
    """Handle webhook and payment signature failures."""
    return JSONResponse(status_code=400, content=exc.to_dict())


@app.exception_handler(NotFoundError)
async def not_found_error_handler(request: Request, exc: NotFoundError):
    """Handle not found errors."""
    return JSONResponse(status_code=404, content=exc.to_dict())


@app.exception_handler(SubscriptionRequiredError)
async def subscription_required_handler(request: Request, exc: SubscriptionRequiredError):
    """Trial or subscription ran out; the client redirects to billing."""
    return JSONResponse(status_code=402, content=exc.to_dict())


@app.exception_handler(AccountLockedError)
async def account_locked_handler(request: Request, exc: AccountLockedError):
    """Account locked by an administrator."""
    return JSONResponse(status_code=403, content=exc.to_dict())


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError):
    """Handle payment gateway failures."""
    return JSONResponse(status_code=500, content=exc.to_dict())


@app.exception_handler(PolicyManagerError)
async def general_error_handler(request: Request, exc: PolicyManagerError):
    """Handle all other application errors (store failures included)."""
    logger.error(f"Unhandled application error on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=500, content=exc.to_dict())


# ============================================================================
# Health Check
# ============================================================================

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "policy-manager-billing"}


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Policy Manager Billing API",
        "version": "1.0.0",
        "docs": "/docs",
    }


# ============================================================================
# Import and register routers
# ============================================================================

from app.api.routes import admin, payments, subscriptions, webhooks  # noqa: E402

app.include_router(subscriptions.router, prefix="/api", tags=["Subscriptions"])
app.include_router(payments.router, prefix="/api", tags=["Payments"])
app.include_router(webhooks.router, prefix="/api", tags=["Webhooks"])
app.include_router(admin.router)
