"""
Payments Router - checkout and payment status endpoints
"""

import logging
from decimal import Decimal
from typing import Annotated, Optional

from fastapi import APIRouter, Depends
from email_validator import EmailNotValidError, validate_email
from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator

from crud.storage import MembershipStorage
from dependencies import get_membership_service, get_storage
from services.errors import GatewayError
from services.membership_service import MembershipService
from backend.utils.responses import error_response

logger = logging.getLogger(__name__)

payments_router = APIRouter(prefix="/api", tags=["payments"])


def check_email(value: str) -> str:
    """
    Validate an email address and return it as submitted.
    Membership lookup matches the stored address exactly, so it is not normalised.
    """
    value = value.strip()
    try:
        validate_email(value, check_deliverability=False)
    except EmailNotValidError as e:
        raise ValueError(f"value is not a valid email address: {e}") from None
    return value


SubmittedEmail = Annotated[str, AfterValidator(check_email)]


class PaymentRequest(BaseModel):
    """
    Checkout form submission.

    The card fields are accepted so the form posts as-is; they are never
    passed on to the service, storage or billing provider.
    """
    model_config = ConfigDict(populate_by_name=True)

    plan_id: int = Field(gt=0, alias="planId")
    amount: float = Field(gt=0, allow_inf_nan=False)
    cardholder_name: str = Field(min_length=1, alias="cardholderName")
    email: SubmittedEmail

    card_number: Optional[str] = Field(default=None, alias="cardNumber")
    expiry_date: Optional[str] = Field(default=None, alias="expiryDate")
    cvv: Optional[str] = None
    terms: Optional[bool] = None

    @field_validator("cardholder_name")
    @classmethod
    def cardholder_name_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Cardholder name is required")
        return value

    @field_validator("amount")
    @classmethod
    def amount_has_cents_precision(cls, value: float) -> float:
        # Minor units are amount * 100; anything finer would be rounded away
        amount = Decimal(str(value))
        if not amount.is_finite() or amount.as_tuple().exponent < -2:
            raise ValueError("Amount must have at most two decimal places")
        return value


class SubscriptionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    plan_id: int = Field(gt=0, alias="planId")
    email: SubmittedEmail
    cardholder_name: str = Field(min_length=1, alias="cardholderName")


@payments_router.post("/payments")
async def create_payment(
    request: PaymentRequest,
    service: MembershipService = Depends(get_membership_service),
):
    """
    Process a subscription payment: charge the plan through Stripe, then
    record the payment and activate the membership.
    """
    try:
        result = await service.purchase(
            plan_id=request.plan_id,
            email=request.email,
            cardholder_name=request.cardholder_name,
            amount=request.amount,
        )
    except GatewayError as e:
        return error_response("gateway_error", status=400, message=f"Subscription failed: {e.message}")

    payment = result.payment
    return {
        "success": True,
        "payment": {
            "id": payment.id,
            "planId": payment.plan_id,
            "amount": payment.amount,
            "status": payment.status.value,
            "createdAt": payment.created_at.isoformat(),
            "stripeSubscriptionId": payment.stripe_subscription_id,
            "stripeCustomerId": payment.stripe_customer_id,
        },
        "plan": {
            "name": result.plan.name,
            "type": result.plan.type.value,
            "validityDays": result.plan.validity_days,
        },
        "subscription": {
            "id": result.subscription.subscription_id,
            "status": result.subscription.status,
            "clientSecret": result.subscription.client_secret,
        },
        "membership": result.membership.to_api(),
    }


@payments_router.post("/create-subscription")
async def create_subscription(
    request: SubscriptionRequest,
    service: MembershipService = Depends(get_membership_service),
):
    """Start a Stripe subscription at the catalog price; nothing is recorded until checkout"""
    try:
        result = await service.create_subscription(
            plan_id=request.plan_id,
            email=request.email,
            cardholder_name=request.cardholder_name,
        )
    except GatewayError as e:
        return error_response(
            "gateway_error", status=400, message=f"Subscription creation failed: {e.message}"
        )

    return {
        "subscriptionId": result.subscription.subscription_id,
        "clientSecret": result.subscription.client_secret,
        "customerId": result.customer.id,
        "amount": result.plan.price,
        "planName": result.plan.name,
    }


@payments_router.get("/payments/{payment_id}")
async def get_payment(payment_id: str, storage: MembershipStorage = Depends(get_storage)):
    """Get payment status without cardholder or provider details"""
    try:
        parsed_id = int(payment_id)
    except ValueError:
        return error_response("invalid_id", status=400, message="Invalid payment ID")

    payment = await storage.get_payment(parsed_id)
    if payment is None:
        return error_response("payment_not_found", status=404, message="Payment not found")

    return payment.public_view()
