"""
Payment Gateway - narrow contract over the billing provider, with the Stripe implementation
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Callable, Dict, Optional, Union

import stripe
from pydantic import BaseModel

from services.errors import GatewayError, WebhookSignatureError

logger = logging.getLogger(__name__)


class CustomerRef(BaseModel):
    id: str
    email: Optional[str] = None


class RecurringCharge(BaseModel):
    subscription_id: str
    client_secret: Optional[str] = None
    status: str


class OneOffCharge(BaseModel):
    payment_intent_id: str
    client_secret: Optional[str] = None


def to_minor_units(amount: Union[Decimal, str, float, int]) -> int:
    """
    Convert a currency amount to integer minor units (cents), rounding half up.

    Args:
        amount: Amount in major units, e.g. "9.99"

    Returns:
        Amount in minor units, e.g. 999
    """
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PaymentGateway(ABC):
    """
    Everything the membership service needs from the billing provider.
    Implementations raise GatewayError for any provider failure and never retry.
    """

    @abstractmethod
    async def find_or_create_customer(self, email: str, name: str) -> CustomerRef:
        ...

    @abstractmethod
    async def create_recurring_charge(
        self,
        customer_id: str,
        plan_name: str,
        plan_description: str,
        amount_minor_units: int,
        currency: str,
        interval: str,
    ) -> RecurringCharge:
        ...

    @abstractmethod
    async def create_one_off_charge(
        self,
        amount_minor_units: int,
        currency: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> OneOffCharge:
        ...

    @abstractmethod
    def construct_event(self, payload: bytes, signature: Optional[str]) -> Any:
        """Verify a webhook payload and return the provider event."""


class StripeGateway(PaymentGateway):
    """
    Stripe implementation of the gateway contract.

    SDK calls are blocking, so each one runs in a worker thread and is bounded
    by timeout_seconds. A call that times out is reported as a GatewayError but
    is not cancelled on Stripe's side.
    """

    def __init__(
        self,
        api_key: Optional[str],
        webhook_secret: Optional[str] = None,
        api_version: Optional[str] = None,
        timeout_seconds: float = 10.0,
    ):
        """
        Initialize the Stripe gateway.

        Args:
            api_key: Stripe secret key
            webhook_secret: Signing secret for webhook verification
            api_version: Pinned Stripe API version
            timeout_seconds: Upper bound for a single provider call
        """
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.api_version = api_version
        self.timeout_seconds = timeout_seconds

    async def _call(self, action: str, func: Callable[..., Any], /, **params) -> Any:
        if not self.api_key:
            logger.error(f"STRIPE_SECRET_KEY is not set. Cannot {action}.")
            raise GatewayError("Payment provider is not configured")

        params.setdefault("api_key", self.api_key)
        if self.api_version:
            params.setdefault("stripe_version", self.api_version)

        try:
            return await asyncio.wait_for(
                asyncio.to_thread(func, **params),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.error(f"Stripe call timed out after {self.timeout_seconds}s: {action}")
            raise GatewayError(f"Payment provider did not respond in time ({action})")
        except stripe.StripeError as e:
            logger.error(f"Stripe call failed ({action}): {e.user_message or e}")
            raise GatewayError(e.user_message or str(e)) from e

    async def find_or_create_customer(self, email: str, name: str) -> CustomerRef:
        customers = await self._call("list customers", stripe.Customer.list, email=email, limit=1)
        if customers.data:
            customer = customers.data[0]
        else:
            customer = await self._call("create customer", stripe.Customer.create, email=email, name=name)
            logger.info(f"Created Stripe customer {customer.id}")
        return CustomerRef(id=customer.id, email=getattr(customer, "email", None) or email)

    async def create_recurring_charge(
        self,
        customer_id: str,
        plan_name: str,
        plan_description: str,
        amount_minor_units: int,
        currency: str,
        interval: str,
    ) -> RecurringCharge:
        product = await self._call(
            "create product",
            stripe.Product.create,
            name=plan_name,
            description=plan_description or None,
        )
        price = await self._call(
            "create price",
            stripe.Price.create,
            unit_amount=amount_minor_units,
            currency=currency,
            recurring={"interval": interval},
            product=product.id,
        )
        subscription = await self._call(
            "create subscription",
            stripe.Subscription.create,
            customer=customer_id,
            items=[{"price": price.id}],
            payment_behavior="default_incomplete",
            payment_settings={"save_default_payment_method": "on_subscription"},
            expand=["latest_invoice.payment_intent"],
        )

        client_secret = None
        invoice = subscription.latest_invoice
        if invoice is not None and getattr(invoice, "payment_intent", None) is not None:
            client_secret = invoice.payment_intent.client_secret

        logger.info(f"Created Stripe subscription {subscription.id} ({subscription.status})")
        return RecurringCharge(
            subscription_id=subscription.id,
            client_secret=client_secret,
            status=subscription.status,
        )

    async def create_one_off_charge(
        self,
        amount_minor_units: int,
        currency: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> OneOffCharge:
        intent = await self._call(
            "create payment intent",
            stripe.PaymentIntent.create,
            amount=amount_minor_units,
            currency=currency,
            metadata=metadata or {},
            automatic_payment_methods={"enabled": True},
        )
        logger.info(f"Created Stripe payment intent {intent.id} for {amount_minor_units} {currency}")
        return OneOffCharge(payment_intent_id=intent.id, client_secret=intent.client_secret)

    def construct_event(self, payload: bytes, signature: Optional[str]) -> Any:
        if not self.webhook_secret:
            logger.error("STRIPE_WEBHOOK_SECRET environment variable is not set")
            raise WebhookSignatureError("Webhook secret not configured")
        if not signature:
            raise WebhookSignatureError("Missing Stripe-Signature header")

        try:
            return stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except stripe.SignatureVerificationError as e:
            logger.error(f"Stripe webhook signature verification failed: {e}")
            raise WebhookSignatureError(f"Webhook Error: {e}") from e
        except ValueError as e:
            logger.error(f"Invalid webhook payload: {e}")
            raise WebhookSignatureError(f"Webhook Error: {e}") from e
