"""
SQLAlchemy implementation of the storage contract
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from crud.storage import MembershipStorage
from database_models import MembershipPlanRecord, PaymentRecord, UserMembershipRecord, UserRecord
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


async def seed_plans(db: AsyncSession, catalog: Optional[PlanCatalog] = None) -> None:
    """
    Insert catalog plans that are not in the table yet.

    Args:
        db: AsyncSession instance for database operations
        catalog: Plan catalog to mirror (defaults to the built-in plans)
    """
    catalog = catalog or PlanCatalog()
    for plan in catalog.list_plans():
        if await db.get(MembershipPlanRecord, plan.id) is None:
            db.add(
                MembershipPlanRecord(
                    id=plan.id,
                    name=plan.name,
                    type=plan.type.value,
                    price=plan.price,
                    description=plan.description,
                    validity_days=plan.validity_days,
                    features=list(plan.features),
                )
            )
    await db.flush()


class SqlStorage(MembershipStorage):
    """
    Storage backed by a database session.
    Ids come from the database's auto-increment; plans are read from the catalog.
    """

    def __init__(self, db: AsyncSession, catalog: Optional[PlanCatalog] = None):
        """
        Initialize the storage with a database session.

        Args:
            db: AsyncSession instance for database operations
            catalog: Plan catalog the plan rows were seeded from
        """
        self.db = db
        self.catalog = catalog or PlanCatalog()

    async def create_user(self, user: NewUser) -> User:
        record = UserRecord(username=user.username, password=user.password)
        self.db.add(record)
        await self.db.flush()  # Flush to get the ID without committing
        await self.db.refresh(record)
        return User.model_validate(record, from_attributes=True)

    async def get_user(self, user_id: int) -> Optional[User]:
        record = await self.db.get(UserRecord, user_id)
        return User.model_validate(record, from_attributes=True) if record else None

    async def get_user_by_username(self, username: str) -> Optional[User]:
        result = await self.db.execute(
            select(UserRecord).where(UserRecord.username == username).order_by(UserRecord.id).limit(1)
        )
        record = result.scalar_one_or_none()
        return User.model_validate(record, from_attributes=True) if record else None

    async def get_membership_plans(self) -> List[MembershipPlan]:
        return self.catalog.list_plans()

    async def get_membership_plan(self, plan_id: int) -> Optional[MembershipPlan]:
        return self.catalog.get_plan(plan_id)

    async def create_payment(self, payment: NewPayment) -> Payment:
        record = PaymentRecord(
            user_id=None,
            plan_id=payment.plan_id,
            amount=payment.amount,
            cardholder_name=payment.cardholder_name,
            email=payment.email,
            status=(payment.status or PaymentStatus.PENDING).value,
            created_at=datetime.utcnow(),
            stripe_subscription_id=payment.stripe_subscription_id,
            stripe_customer_id=payment.stripe_customer_id,
        )
        self.db.add(record)
        await self.db.flush()
        await self.db.refresh(record)
        return Payment.model_validate(record, from_attributes=True)

    async def get_payment(self, payment_id: int) -> Optional[Payment]:
        record = await self.db.get(PaymentRecord, payment_id)
        return Payment.model_validate(record, from_attributes=True) if record else None

    async def get_payment_by_subscription_id(self, subscription_id: str) -> Optional[Payment]:
        result = await self.db.execute(
            select(PaymentRecord)
            .where(PaymentRecord.stripe_subscription_id == subscription_id)
            .order_by(PaymentRecord.id)
            .limit(1)
        )
        record = result.scalar_one_or_none()
        return Payment.model_validate(record, from_attributes=True) if record else None

    async def update_payment(self, payment_id: int, updates: Dict[str, Any]) -> Payment:
        record = await self.db.get(PaymentRecord, payment_id)
        if record is None:
            raise NotFoundError("Payment not found")
        self._apply(record, updates)
        await self.db.flush()
        await self.db.refresh(record)
        return Payment.model_validate(record, from_attributes=True)

    async def count_payments(self) -> int:
        result = await self.db.execute(select(func.count(PaymentRecord.id)))
        return result.scalar_one()

    async def create_user_membership(self, membership: NewUserMembership) -> UserMembership:
        now = datetime.utcnow()
        record = UserMembershipRecord(
            user_id=membership.user_id,
            plan_id=membership.plan_id,
            status=membership.status.value,
            start_date=now,
            end_date=membership.end_date,
            created_at=now,
            stripe_subscription_id=membership.stripe_subscription_id,
        )
        self.db.add(record)
        await self.db.flush()
        await self.db.refresh(record)
        return UserMembership.model_validate(record, from_attributes=True)

    async def get_user_membership(self, user_id: int) -> Optional[UserMembership]:
        return await self._first_active_membership(UserMembershipRecord.user_id == user_id)

    async def get_user_membership_by_id(self, membership_id: int) -> Optional[UserMembership]:
        record = await self.db.get(UserMembershipRecord, membership_id)
        return UserMembership.model_validate(record, from_attributes=True) if record else None

    async def get_user_membership_by_subscription_id(self, subscription_id: str) -> Optional[UserMembership]:
        return await self._first_active_membership(
            UserMembershipRecord.stripe_subscription_id == subscription_id
        )

    async def update_user_membership(self, membership_id: int, updates: Dict[str, Any]) -> UserMembership:
        record = await self.db.get(UserMembershipRecord, membership_id)
        if record is None:
            raise NotFoundError("Membership not found")
        self._apply(record, updates)
        await self.db.flush()
        await self.db.refresh(record)
        return UserMembership.model_validate(record, from_attributes=True)

    async def rollback(self) -> None:
        await self.db.rollback()

    async def get_user_membership_by_email(self, email: str) -> Optional[UserMembership]:
        result = await self.db.execute(
            select(PaymentRecord).where(PaymentRecord.email == email).order_by(PaymentRecord.id).limit(1)
        )
        payment = result.scalar_one_or_none()
        if payment is None:
            return None
        return await self._first_active_membership(UserMembershipRecord.plan_id == payment.plan_id)

    async def _first_active_membership(self, condition) -> Optional[UserMembership]:
        result = await self.db.execute(
            select(UserMembershipRecord)
            .where(condition, UserMembershipRecord.status == MembershipStatus.ACTIVE.value)
            .order_by(UserMembershipRecord.id)
            .limit(1)
        )
        record = result.scalar_one_or_none()
        return UserMembership.model_validate(record, from_attributes=True) if record else None

    @staticmethod
    def _apply(record, updates: Dict[str, Any]) -> None:
        for key, value in updates.items():
            if hasattr(record, key):
                # Enum members are stored by value
                setattr(record, key, getattr(value, "value", value))
