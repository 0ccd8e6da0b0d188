"""
Admin Routes for Account Locks

Locking is the only way to set is_locked; billing events never touch it.
Protected by API key authentication.
"""

import logging

from fastapi import APIRouter, Depends

from app.api.dependencies import get_access_service, verify_admin_api_key
from app.domain.subscription import LockUserRequest
from app.infrastructure.services.access_service import AccessService


logger = logging.getLogger(__name__)


router = APIRouter(
    prefix="/api/admin",
    tags=["admin"],
    dependencies=[Depends(verify_admin_api_key)]  # Protect ALL admin routes
)


@router.post("/users/{user_id}/lock")
async def lock_user(
    user_id: str,
    request: LockUserRequest,
    access: AccessService = Depends(get_access_service),
):
    """Lock an account with a reason."""
    await access.lock_user(user_id, request.reason, request.locked_by)
    logger.info(f"Admin lock applied to {user_id}")
    return {"success": True, "user_id": user_id, "is_locked": True}


@router.post("/users/{user_id}/unlock")
async def unlock_user(
    user_id: str,
    access: AccessService = Depends(get_access_service),
):
    """Unlock an account."""
    await access.unlock_user(user_id)
    logger.info(f"Admin lock removed from {user_id}")
    return {"success": True, "user_id": user_id, "is_locked": False}
