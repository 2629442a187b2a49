"""
Plans Router - read-only membership plan catalog
"""
import logging
from fastapi import APIRouter, Depends

from crud.storage import MembershipStorage
from dependencies import get_storage
from backend.utils.responses import error_response

logger = logging.getLogger(__name__)

plans_router = APIRouter(prefix="/api/membership-plans", tags=["plans"])


@plans_router.get("")
async def list_membership_plans(storage: MembershipStorage = Depends(get_storage)):
    """List every plan in catalog order"""
    try:
        plans = await storage.get_membership_plans()
    except Exception as e:
        logger.error(f"Failed to fetch membership plans: {e}", exc_info=True)
        return error_response("plans_unavailable", status=500, message="Failed to fetch membership plans")

    return [plan.to_api() for plan in plans]


@plans_router.get("/{plan_id}")
async def get_membership_plan(plan_id: str, storage: MembershipStorage = Depends(get_storage)):
    """Get a single plan by id"""
    try:
        parsed_id = int(plan_id)
    except ValueError:
        return error_response("invalid_id", status=400, message="Invalid plan ID")

    plan = await storage.get_membership_plan(parsed_id)
    if plan is None:
        return error_response("plan_not_found", status=404, message="Plan not found")

    return plan.to_api()
