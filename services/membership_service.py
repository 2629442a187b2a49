"""
Membership Service - purchase, lookup and plan changes with proration
"""

import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional, Tuple, Union

from pydantic import BaseModel

from crud.storage import MembershipStorage
from models.membership import (
    MembershipPlan,
    MembershipStatus,
    NewPayment,
    NewUser,
    NewUserMembership,
    Payment,
    PaymentStatus,
    UserMembership,
)
from services.errors import NotFoundError, PlanNotFoundError, ValidationError
from services.gateway import CustomerRef, OneOffCharge, PaymentGateway, RecurringCharge, to_minor_units
from services import proration
from utils.security_utils import mask_email

logger = logging.getLogger(__name__)

# Plan changes and cancellations for one membership run one at a time.
# Shared by every service instance in the process.
_membership_locks: Dict[int, asyncio.Lock] = defaultdict(asyncio.Lock)


class PurchaseResult(BaseModel):
    payment: Payment
    membership: UserMembership
    plan: MembershipPlan
    customer: CustomerRef
    subscription: RecurringCharge


class SubscriptionResult(BaseModel):
    plan: MembershipPlan
    customer: CustomerRef
    subscription: RecurringCharge
    amount_minor_units: int


class PlanChangeResult(BaseModel):
    membership: UserMembership
    plan: MembershipPlan
    prorated_amount: Decimal
    charge: Optional[OneOffCharge] = None


class MembershipService:
    """
    Service class for the membership lifecycle.

    State per membership: none -> active on purchase, active -> active on a
    plan change, active -> cancelled (terminal).
    """

    def __init__(
        self,
        storage: MembershipStorage,
        gateway: PaymentGateway,
        currency: str = "usd",
        locks: Optional[Dict[int, asyncio.Lock]] = None,
    ):
        """
        Initialize the membership service.

        Args:
            storage: Storage the service reads and writes through
            gateway: Billing provider adapter
            currency: ISO currency code for every charge
            locks: Per-membership lock registry (defaults to the process-wide one)
        """
        self.storage = storage
        self.gateway = gateway
        self.currency = currency
        self.locks = _membership_locks if locks is None else locks

    async def _require_plan(self, plan_id: int) -> MembershipPlan:
        plan = await self.storage.get_membership_plan(plan_id)
        if plan is None:
            raise PlanNotFoundError(plan_id)
        return plan

    async def purchase(
        self,
        plan_id: int,
        email: str,
        cardholder_name: str,
        amount: Union[Decimal, str, float],
        now: Optional[datetime] = None,
    ) -> PurchaseResult:
        """
        Charge a new subscription and record the payment and membership.

        Nothing is written if the provider rejects the charge. If the
        membership write fails after the charge went through, the payment
        record stays and the charge is not voided.

        Args:
            plan_id: Plan being bought
            email: Member email, also the billing customer key
            cardholder_name: Name on the card
            amount: Price in major units as submitted by the checkout form
            now: Clock override for the membership window

        Returns:
            PurchaseResult with the stored payment and membership
        """
        plan = await self._require_plan(plan_id)

        try:
            price = Decimal(str(amount))
        except InvalidOperation:
            raise ValidationError("Invalid payment amount") from None
        if price <= 0:
            raise ValidationError("Payment amount must be positive")

        customer = await self.gateway.find_or_create_customer(email, cardholder_name)
        subscription = await self.gateway.create_recurring_charge(
            customer_id=customer.id,
            plan_name=plan.name,
            plan_description=plan.description,
            amount_minor_units=to_minor_units(price),
            currency=self.currency,
            interval=plan.interval,
        )

        payment = await self.storage.create_payment(
            NewPayment(
                plan_id=plan.id,
                amount=str(price),
                cardholder_name=cardholder_name,
                email=email,
                status=PaymentStatus.ACTIVE,
                stripe_subscription_id=subscription.subscription_id,
                stripe_customer_id=customer.id,
            )
        )

        user = await self.storage.get_user_by_username(email)
        if user is None:
            user = await self.storage.create_user(NewUser(username=email))

        now = now or datetime.utcnow()
        membership = await self.storage.create_user_membership(
            NewUserMembership(
                user_id=user.id,
                plan_id=plan.id,
                status=MembershipStatus.ACTIVE,
                end_date=now + timedelta(days=plan.validity_days),
                stripe_subscription_id=subscription.subscription_id,
            )
        )

        logger.info(
            f"Membership {membership.id} created on plan {plan.id} for {mask_email(email)} "
            f"(payment {payment.id}, subscription {subscription.subscription_id})"
        )
        return PurchaseResult(
            payment=payment,
            membership=membership,
            plan=plan,
            customer=customer,
            subscription=subscription,
        )

    async def create_subscription(self, plan_id: int, email: str, cardholder_name: str) -> SubscriptionResult:
        """
        Start a subscription at the plan's catalog price without recording anything.
        The client confirms it with the returned client secret.
        """
        plan = await self._require_plan(plan_id)
        amount_minor_units = to_minor_units(plan.price)

        customer = await self.gateway.find_or_create_customer(email, cardholder_name)
        subscription = await self.gateway.create_recurring_charge(
            customer_id=customer.id,
            plan_name=plan.name,
            plan_description=plan.description,
            amount_minor_units=amount_minor_units,
            currency=self.currency,
            interval=plan.interval,
        )
        return SubscriptionResult(
            plan=plan,
            customer=customer,
            subscription=subscription,
            amount_minor_units=amount_minor_units,
        )

    async def lookup_by_email(self, email: str) -> Tuple[UserMembership, MembershipPlan]:
        membership = await self.storage.get_user_membership_by_email(email)
        if membership is None:
            raise NotFoundError("No active membership found for this email address")
        plan = await self.storage.get_membership_plan(membership.plan_id)
        if plan is None:
            raise NotFoundError("Membership plan not found")
        return membership, plan

    async def change_plan(
        self,
        membership_id: int,
        new_plan_id: int,
        now: Optional[datetime] = None,
    ) -> PlanChangeResult:
        """
        Move an active membership to another plan.

        Upgrades (higher total price) are charged the prorated difference for
        the days left; downgrades are free. The validity window restarts from
        now with the new plan's length, dropping whatever was left.

        Args:
            membership_id: Membership to change
            new_plan_id: Target plan
            now: Clock override for the proration and the new window

        Returns:
            PlanChangeResult with the updated membership and any charge made
        """
        async with self.locks[membership_id]:
            membership = await self.storage.get_user_membership_by_id(membership_id)
            if membership is None:
                raise NotFoundError("Membership not found")
            if membership.status != MembershipStatus.ACTIVE:
                raise ValidationError("Only active memberships can change plans")

            current_plan = await self._require_plan(membership.plan_id)
            new_plan = await self._require_plan(new_plan_id)

            now = now or datetime.utcnow()
            remaining = proration.days_remaining(membership.end_date, now)
            amount = proration.prorated_amount(current_plan, new_plan, remaining)

            charge = None
            if amount > 0:
                charge = await self.gateway.create_one_off_charge(
                    to_minor_units(amount),
                    self.currency,
                    metadata={
                        "membershipId": str(membership.id),
                        "fromPlanId": str(current_plan.id),
                        "toPlanId": str(new_plan.id),
                        "type": "proration",
                    },
                )

            updates: Dict[str, Any] = {
                "plan_id": new_plan.id,
                "end_date": now + timedelta(days=new_plan.validity_days),
            }
            if charge is not None:
                updates["stripe_subscription_id"] = charge.payment_intent_id

            updated = await self.storage.update_user_membership(membership.id, updates)

        logger.info(
            f"Membership {membership.id} changed plan {current_plan.id} -> {new_plan.id} "
            f"with {remaining} days remaining, prorated {amount}"
        )
        return PlanChangeResult(
            membership=updated,
            plan=new_plan,
            prorated_amount=amount,
            charge=charge,
        )

    async def cancel(self, membership_id: int) -> UserMembership:
        async with self.locks[membership_id]:
            membership = await self.storage.get_user_membership_by_id(membership_id)
            if membership is None:
                raise NotFoundError("Membership not found")
            if membership.status == MembershipStatus.CANCELLED:
                raise ValidationError("Membership is already cancelled")
            updated = await self.storage.update_user_membership(
                membership_id, {"status": MembershipStatus.CANCELLED}
            )
        logger.info(f"Membership {membership_id} cancelled")
        return updated

    async def handle_webhook_event(self, event: Any) -> str:
        """
        Apply a verified provider event to stored payments and memberships.

        Args:
            event: Verified Stripe event (or any mapping with the same shape)

        Returns:
            The event type
        """
        event_type = event["type"]
        obj = event["data"]["object"]

        if event_type in ("customer.subscription.created", "customer.subscription.updated"):
            logger.info(f"Subscription event {event_type}: {_field(obj, 'id')}")
        elif event_type == "customer.subscription.deleted":
            subscription_id = _field(obj, "id")
            logger.info(f"Subscription cancelled: {subscription_id}")
            await self._mark_subscription(subscription_id, PaymentStatus.CANCELLED, cancel_membership=True)
        elif event_type == "invoice.payment_succeeded":
            logger.info(f"Payment succeeded for subscription {_field(obj, 'subscription')}")
        elif event_type == "invoice.payment_failed":
            subscription_id = _field(obj, "subscription")
            logger.warning(f"Payment failed for subscription {subscription_id}")
            await self._mark_subscription(subscription_id, PaymentStatus.FAILED)
        else:
            logger.info(f"Unhandled event type {event_type}")

        return event_type

    async def _mark_subscription(
        self,
        subscription_id: Optional[str],
        status: PaymentStatus,
        cancel_membership: bool = False,
    ) -> None:
        if not subscription_id:
            return

        payment = await self.storage.get_payment_by_subscription_id(subscription_id)
        if payment is None:
            logger.warning(f"No payment recorded for subscription {subscription_id}")
        else:
            await self.storage.update_payment(payment.id, {"status": status})

        if cancel_membership:
            membership = await self.storage.get_user_membership_by_subscription_id(subscription_id)
            if membership is not None:
                await self.cancel(membership.id)


def _field(obj: Any, key: str) -> Any:
    try:
        return obj[key]
    except (KeyError, TypeError):
        return None
