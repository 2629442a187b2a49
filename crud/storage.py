"""
Storage contract for users, plans, payments and memberships
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from models.membership import (
    MembershipPlan,
    NewPayment,
    NewUser,
    NewUserMembership,
    Payment,
    User,
    UserMembership,
)


class MembershipStorage(ABC):
    """
    Every entity instance belongs to the storage. Callers get copies back and
    must go through the update methods to change anything.
    """

    # Users
    @abstractmethod
    async def create_user(self, user: NewUser) -> User:
        """Store a user and return it with its id populated. Usernames are not checked for uniqueness."""

    @abstractmethod
    async def get_user(self, user_id: int) -> Optional[User]:
        ...

    @abstractmethod
    async def get_user_by_username(self, username: str) -> Optional[User]:
        ...

    # Plans
    @abstractmethod
    async def get_membership_plans(self) -> List[MembershipPlan]:
        ...

    @abstractmethod
    async def get_membership_plan(self, plan_id: int) -> Optional[MembershipPlan]:
        ...

    # Payments
    @abstractmethod
    async def create_payment(self, payment: NewPayment) -> Payment:
        """
        Store a payment record.

        The stored record has no user, status "pending" unless one was given,
        and createdAt stamped to the current time.
        """

    @abstractmethod
    async def get_payment(self, payment_id: int) -> Optional[Payment]:
        ...

    @abstractmethod
    async def get_payment_by_subscription_id(self, subscription_id: str) -> Optional[Payment]:
        ...

    @abstractmethod
    async def update_payment(self, payment_id: int, updates: Dict[str, Any]) -> Payment:
        """Merge updates into a payment. Raises NotFoundError for an unknown id."""

    @abstractmethod
    async def count_payments(self) -> int:
        ...

    # Memberships
    @abstractmethod
    async def create_user_membership(self, membership: NewUserMembership) -> UserMembership:
        """Store a membership with startDate and createdAt stamped to the current time."""

    @abstractmethod
    async def get_user_membership(self, user_id: int) -> Optional[UserMembership]:
        """
        First active membership for a user, in storage order.

        Nothing prevents a user from holding two active memberships; if that
        happens the first one stored wins.
        """

    @abstractmethod
    async def get_user_membership_by_id(self, membership_id: int) -> Optional[UserMembership]:
        ...

    @abstractmethod
    async def get_user_membership_by_subscription_id(self, subscription_id: str) -> Optional[UserMembership]:
        """Active membership carrying this provider subscription id, if any."""

    @abstractmethod
    async def update_user_membership(self, membership_id: int, updates: Dict[str, Any]) -> UserMembership:
        """Merge updates into a membership. Raises NotFoundError for an unknown id."""

    @abstractmethod
    async def get_user_membership_by_email(self, email: str) -> Optional[UserMembership]:
        """
        Find a membership through the payments made with an email.

        Takes the first payment with this email, then the first active
        membership on the same plan. This is a heuristic join: another
        member's active membership on that plan can match instead.
        """

    # Transactions
    async def rollback(self) -> None:
        """Discard writes made since the last commit. Stores without transactions keep every write."""
