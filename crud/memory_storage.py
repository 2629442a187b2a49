"""
In-memory implementation of the storage contract
"""
import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional

from crud.storage import MembershipStorage
from models.membership import (
    MembershipPlan,
    MembershipStatus,
    NewPayment,
    NewUser,
    NewUserMembership,
    Payment,
    PaymentStatus,
    User,
    UserMembership,
)
from services.errors import NotFoundError
from services.plan_catalog import PlanCatalog


class MemoryStorage(MembershipStorage):
    """
    Dict-backed store with one id counter per entity.
    Counters start at 1 and are never rewound, so ids are never reused.
    """

    def __init__(self, catalog: Optional[PlanCatalog] = None):
        self.catalog = catalog or PlanCatalog()
        self._users: Dict[int, User] = {}
        self._payments: Dict[int, Payment] = {}
        self._memberships: Dict[int, UserMembership] = {}
        self._next_user_id = 1
        self._next_payment_id = 1
        self._next_membership_id = 1
        self._lock = asyncio.Lock()

    async def create_user(self, user: NewUser) -> User:
        async with self._lock:
            user_id = self._next_user_id
            self._next_user_id += 1
            stored = User(id=user_id, **user.model_dump())
            self._users[user_id] = stored
        return stored.model_copy()

    async def get_user(self, user_id: int) -> Optional[User]:
        user = self._users.get(user_id)
        return user.model_copy() if user else None

    async def get_user_by_username(self, username: str) -> Optional[User]:
        for user in self._users.values():
            if user.username == username:
                return user.model_copy()
        return None

    async def get_membership_plans(self) -> List[MembershipPlan]:
        return self.catalog.list_plans()

    async def get_membership_plan(self, plan_id: int) -> Optional[MembershipPlan]:
        return self.catalog.get_plan(plan_id)

    async def create_payment(self, payment: NewPayment) -> Payment:
        data = payment.model_dump()
        data["status"] = data["status"] or PaymentStatus.PENDING
        async with self._lock:
            payment_id = self._next_payment_id
            self._next_payment_id += 1
            stored = Payment(id=payment_id, user_id=None, created_at=datetime.utcnow(), **data)
            self._payments[payment_id] = stored
        return stored.model_copy()

    async def get_payment(self, payment_id: int) -> Optional[Payment]:
        payment = self._payments.get(payment_id)
        return payment.model_copy() if payment else None

    async def get_payment_by_subscription_id(self, subscription_id: str) -> Optional[Payment]:
        for payment in self._payments.values():
            if payment.stripe_subscription_id == subscription_id:
                return payment.model_copy()
        return None

    async def update_payment(self, payment_id: int, updates: Dict[str, Any]) -> Payment:
        async with self._lock:
            existing = self._payments.get(payment_id)
            if existing is None:
                raise NotFoundError("Payment not found")
            updated = Payment.model_validate({**existing.model_dump(), **updates})
            self._payments[payment_id] = updated
        return updated.model_copy()

    async def count_payments(self) -> int:
        return len(self._payments)

    async def create_user_membership(self, membership: NewUserMembership) -> UserMembership:
        now = datetime.utcnow()
        async with self._lock:
            membership_id = self._next_membership_id
            self._next_membership_id += 1
            stored = UserMembership(
                id=membership_id,
                start_date=now,
                created_at=now,
                **membership.model_dump(),
            )
            self._memberships[membership_id] = stored
        return stored.model_copy()

    async def get_user_membership(self, user_id: int) -> Optional[UserMembership]:
        for membership in self._memberships.values():
            if membership.user_id == user_id and membership.status == MembershipStatus.ACTIVE:
                return membership.model_copy()
        return None

    async def get_user_membership_by_id(self, membership_id: int) -> Optional[UserMembership]:
        membership = self._memberships.get(membership_id)
        return membership.model_copy() if membership else None

    async def get_user_membership_by_subscription_id(self, subscription_id: str) -> Optional[UserMembership]:
        for membership in self._memberships.values():
            if (
                membership.stripe_subscription_id == subscription_id
                and membership.status == MembershipStatus.ACTIVE
            ):
                return membership.model_copy()
        return None

    async def update_user_membership(self, membership_id: int, updates: Dict[str, Any]) -> UserMembership:
        async with self._lock:
            existing = self._memberships.get(membership_id)
            if existing is None:
                raise NotFoundError("Membership not found")
            updated = UserMembership.model_validate({**existing.model_dump(), **updates})
            self._memberships[membership_id] = updated
        return updated.model_copy()

    async def get_user_membership_by_email(self, email: str) -> Optional[UserMembership]:
        payment = next((p for p in self._payments.values() if p.email == email), None)
        if payment is None:
            return None
        for membership in self._memberships.values():
            if membership.plan_id == payment.plan_id and membership.status == MembershipStatus.ACTIVE:
                return membership.model_copy()
        return None
