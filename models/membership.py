from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class PlanType(str, Enum):
    MONTHLY = "monthly"
    ANNUAL = "annual"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class MembershipStatus(str, Enum):
    ACTIVE = "active"
    CANCELLED = "cancelled"


class StoredModel(BaseModel):
    # Accept snake_case in code, emit camelCase over the wire
    model_config = ConfigDict(populate_by_name=True)

    def to_api(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class User(StoredModel):
    id: int
    username: str
    password: Optional[str] = None


class NewUser(StoredModel):
    username: str
    password: Optional[str] = None


class MembershipPlan(StoredModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: int
    name: str
    type: PlanType
    price: str
    description: str = ""
    validity_days: int = Field(gt=0, alias="validityDays")
    features: List[str] = Field(default_factory=list)

    @property
    def interval(self) -> str:
        """Billing interval the provider expects for this plan type"""
        return "month" if self.type == PlanType.MONTHLY else "year"


class Payment(StoredModel):
    id: int
    user_id: Optional[int] = Field(default=None, alias="userId")
    plan_id: int = Field(alias="planId")
    amount: str
    cardholder_name: str = Field(alias="cardholderName")
    email: str
    status: PaymentStatus = PaymentStatus.PENDING
    created_at: datetime = Field(alias="createdAt")
    stripe_subscription_id: Optional[str] = Field(default=None, alias="stripeSubscriptionId")
    stripe_customer_id: Optional[str] = Field(default=None, alias="stripeCustomerId")

    def public_view(self) -> dict:
        """Non-sensitive fields exposed by the payment status endpoint"""
        return self.model_dump(
            by_alias=True,
            mode="json",
            include={"id", "plan_id", "amount", "status", "created_at"},
        )


class NewPayment(StoredModel):
    """Payment fields a caller may supply; card data has no place here"""

    plan_id: int = Field(alias="planId")
    amount: str
    cardholder_name: str = Field(alias="cardholderName")
    email: str
    status: Optional[PaymentStatus] = None
    stripe_subscription_id: Optional[str] = Field(default=None, alias="stripeSubscriptionId")
    stripe_customer_id: Optional[str] = Field(default=None, alias="stripeCustomerId")


class UserMembership(StoredModel):
    id: int
    user_id: int = Field(alias="userId")
    plan_id: int = Field(alias="planId")
    status: MembershipStatus = MembershipStatus.ACTIVE
    start_date: datetime = Field(alias="startDate")
    end_date: datetime = Field(alias="endDate")
    created_at: datetime = Field(alias="createdAt")
    stripe_subscription_id: Optional[str] = Field(default=None, alias="stripeSubscriptionId")


class NewUserMembership(StoredModel):
    user_id: int = Field(alias="userId")
    plan_id: int = Field(alias="planId")
    status: MembershipStatus = MembershipStatus.ACTIVE
    end_date: datetime = Field(alias="endDate")
    stripe_subscription_id: Optional[str] = Field(default=None, alias="stripeSubscriptionId")
