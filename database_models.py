from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON
from datetime import datetime
from database import Base


class UserRecord(Base):
    """Checkout customer, one per distinct email."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String, nullable=False, index=True)
    password = Column(String, nullable=True)


class MembershipPlanRecord(Base):
    """
    Seeded plan rows.
    Mirrors the in-process catalog so payments and memberships can reference it.
    """
    __tablename__ = "membership_plans"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    type = Column(String, nullable=False)
    price = Column(String, nullable=False)
    description = Column(String, nullable=False, default="")
    validity_days = Column(Integer, nullable=False)
    features = Column(JSON, nullable=False, default=list)


class PaymentRecord(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    plan_id = Column(Integer, ForeignKey("membership_plans.id"), nullable=False)
    amount = Column(String, nullable=False)
    cardholder_name = Column(String, nullable=False)
    email = Column(String, nullable=False, index=True)
    status = Column(String, nullable=False, default="pending")
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    stripe_subscription_id = Column(String, nullable=True, index=True)
    stripe_customer_id = Column(String, nullable=True)


class UserMembershipRecord(Base):
    __tablename__ = "user_memberships"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    plan_id = Column(Integer, ForeignKey("membership_plans.id"), nullable=False)
    status = Column(String, nullable=False, default="active")
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    stripe_subscription_id = Column(String, nullable=True, index=True)
