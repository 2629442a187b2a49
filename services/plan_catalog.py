"""
Plan Catalog - seeded, read-only membership plans
"""
from typing import Dict, Iterable, List, Optional

from models.membership import MembershipPlan, PlanType

DEFAULT_PLANS = [
    {
        "name": "Monthly Membership",
        "type": PlanType.MONTHLY,
        "price": "9.99",
        "description": "Basic Plan - Valid for 30 days",
        "validity_days": 30,
        "features": [
            "Luggage protection coverage",
            "24/7 customer support",
            "Travel assistance",
        ],
    },
    {
        "name": "Annual Membership",
        "type": PlanType.ANNUAL,
        "price": "99.99",
        "description": "Premium Plan - Valid for 365 days",
        "validity_days": 365,
        "features": [
            "Everything in Basic Plan",
            "Priority customer support",
            "Extended coverage limits",
            "Exclusive travel perks",
        ],
    },
]


class PlanCatalog:
    """
    Immutable list of membership plans.
    Ids are assigned from 1 in seed order and never change for the process lifetime.
    """

    def __init__(self, seed: Optional[Iterable[dict]] = None):
        self._plans: Dict[int, MembershipPlan] = {}
        for plan_id, entry in enumerate(DEFAULT_PLANS if seed is None else seed, start=1):
            self._plans[plan_id] = MembershipPlan(id=plan_id, **entry)

    def list_plans(self) -> List[MembershipPlan]:
        return list(self._plans.values())

    def get_plan(self, plan_id: int) -> Optional[MembershipPlan]:
        return self._plans.get(plan_id)
