"""
Subscription API Routes

REST API endpoints for provisioning recurring subscriptions and reading
the caller's entitlement.
"""

import logging

from fastapi import APIRouter, Depends

from app.api.dependencies import (
    get_access_service,
    get_current_user_id,
    get_plan_repository,
    get_provisioner,
    require_system_access,
)
from app.domain.access import UNLIMITED_DAYS
from app.domain.subscription import (
    EntitlementResponse,
    PlanResponse,
    PlansResponse,
    ProvisionSubscriptionRequest,
    ProvisionSubscriptionResponse,
    SubscriptionSummary,
)
from app.infrastructure.db.repositories import PlanRepository
from app.infrastructure.services.access_service import AccessService, Entitlement
from app.infrastructure.services.subscription_provisioner import SubscriptionProvisioner


logger = logging.getLogger(__name__)

router = APIRouter()


def _entitlement_response(entitlement: Entitlement) -> EntitlementResponse:
    user = entitlement.user
    return EntitlementResponse(
        user_id=user.id,
        role=user.role,
        subscription_status=user.subscription_status,
        can_access=entitlement.can_access,
        days_remaining=entitlement.days_remaining,
        unlimited=entitlement.days_remaining == UNLIMITED_DAYS,
        is_locked=user.is_locked,
        locked_reason=user.locked_reason,
        trial_end_date=user.trial_end_date,
        subscription_end_date=user.subscription_end_date,
        subscription_plan=user.subscription_plan,
    )


# =============================================================================
# Provisioning
# =============================================================================

@router.post("/subscriptions/create", response_model=ProvisionSubscriptionResponse)
async def create_subscription(
    request: ProvisionSubscriptionRequest,
    provisioner: SubscriptionProvisioner = Depends(get_provisioner),
):
    """
    Provision a recurring Razorpay subscription.

    Returns the hosted payment link. The subscription becomes active once
    the gateway reports subscription.activated.
    """
    result = await provisioner.provision_subscription(
        user_id=request.user_id,
        plan_name=request.plan_name,
        user_email=request.user_email,
        user_name=request.user_name,
    )

    return ProvisionSubscriptionResponse(
        success=True,
        subscription=SubscriptionSummary(
            id=result.gateway_subscription_id,
            status=result.status,
            payment_url=result.payment_url,
            plan_name=result.plan.label,
            amount=float(result.plan.price),
            currency=result.plan.currency,
        ),
    )


@router.get("/subscriptions/plans", response_model=PlansResponse)
async def list_plans(plans: PlanRepository = Depends(get_plan_repository)):
    """List active plans."""
    active = await plans.list_active_plans()
    return PlansResponse(
        plans=[
            PlanResponse(
                name=plan.name,
                display_name=plan.label,
                duration_days=plan.duration_days,
                price=float(plan.price),
                currency=plan.currency,
            )
            for plan in active
        ]
    )


# =============================================================================
# Entitlement
# =============================================================================

@router.get("/subscriptions/status", response_model=EntitlementResponse)
async def get_subscription_status(
    user_id: str = Depends(get_current_user_id),
    access: AccessService = Depends(get_access_service),
):
    """
    Get the current user's entitlement.

    Runs expiry reconciliation first, so a trial that ran out is reported
    (and stored) as expired.
    """
    entitlement = await access.get_entitlement(user_id)
    return _entitlement_response(entitlement)


@router.post("/subscriptions/trial", response_model=EntitlementResponse)
async def start_trial(
    user_id: str = Depends(get_current_user_id),
    access: AccessService = Depends(get_access_service),
):
    """
    Initialise the caller's entitlement after sign-up.

    Idempotent: an account that already has a trial or subscription is
    returned unchanged.
    """
    entitlement = await access.start_trial(user_id)
    return _entitlement_response(entitlement)


@router.get("/subscriptions/access")
async def check_access(entitlement: Entitlement = Depends(require_system_access)):
    """Succeeds only for users who may use the system (402/403 otherwise)."""
    return {
        "allowed": True,
        "subscription_status": entitlement.user.subscription_status,
        "days_remaining": entitlement.days_remaining,
    }
