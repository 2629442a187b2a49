"""
Membership Router - dashboard lookup, plan changes and cancellation
"""
import logging
from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from dependencies import get_membership_service
from services.errors import GatewayError
from services.membership_service import MembershipService
from backend.utils.responses import error_response

logger = logging.getLogger(__name__)

membership_router = APIRouter(prefix="/api/membership", tags=["membership"])


class ChangePlanRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    new_plan_id: int = Field(gt=0, alias="newPlanId")


def _parse_membership_id(membership_id: str):
    try:
        return int(membership_id)
    except ValueError:
        return None


@membership_router.get("/{email}")
async def get_membership_by_email(
    email: str,
    service: MembershipService = Depends(get_membership_service),
):
    """Look up the active membership behind an email address"""
    membership, plan = await service.lookup_by_email(email)
    return {"membership": membership.to_api(), "plan": plan.to_api()}


@membership_router.post("/{membership_id}/change-plan")
async def change_plan(
    membership_id: str,
    request: ChangePlanRequest,
    service: MembershipService = Depends(get_membership_service),
):
    """Upgrade or downgrade a membership; upgrades are charged the prorated difference"""
    parsed_id = _parse_membership_id(membership_id)
    if parsed_id is None:
        return error_response("invalid_id", status=400, message="Invalid membership ID")

    try:
        result = await service.change_plan(parsed_id, request.new_plan_id)
    except GatewayError as e:
        return error_response("gateway_error", status=400, message=f"Plan change failed: {e.message}")

    body = {
        "success": True,
        "membership": result.membership.to_api(),
        "plan": result.plan.to_api(),
        "proratedAmount": float(result.prorated_amount),
    }
    if result.charge is not None:
        body["paymentIntentId"] = result.charge.payment_intent_id
        body["clientSecret"] = result.charge.client_secret
    return body


@membership_router.post("/{membership_id}/cancel")
async def cancel_membership(
    membership_id: str,
    service: MembershipService = Depends(get_membership_service),
):
    """Cancel an active membership"""
    parsed_id = _parse_membership_id(membership_id)
    if parsed_id is None:
        return error_response("invalid_id", status=400, message="Invalid membership ID")

    membership = await service.cancel(parsed_id)
    return {"success": True, "membership": membership.to_api()}
