"""Subscription plan catalogue: read access and the seed upsert."""
from sqlalchemy.orm import Session
from typing import List, Tuple
from uuid import UUID
from app.core.config import settings
from app.core.exceptions import NotFoundError
from app.models.plan import SubscriptionPlan, LIMIT_UNLIMITED


def list_active_plans(db: Session) -> List[SubscriptionPlan]:
    return db.query(SubscriptionPlan).filter(
        SubscriptionPlan.is_active.is_(True)
    ).order_by(SubscriptionPlan.sort_order.asc()).all()


def get_plan(db: Session, plan_id: UUID, require_active: bool = False) -> SubscriptionPlan:
    plan = db.query(SubscriptionPlan).filter(SubscriptionPlan.id == plan_id).first()
    if plan is None:
        raise NotFoundError("Plan not found")
    if require_active and not plan.is_active:
        raise NotFoundError("Plan not found or not active")
    return plan


def get_plan_by_name(db: Session, name: str) -> SubscriptionPlan:
    plan = db.query(SubscriptionPlan).filter(SubscriptionPlan.name == name).first()
    if plan is None:
        raise NotFoundError(f"Plan '{name}' not found")
    return plan


def get_free_plan(db: Session) -> SubscriptionPlan:
    """The implicit default plan. Deactivating it does not hide it from existing subscribers."""
    try:
        return get_plan_by_name(db, settings.FREE_PLAN_NAME)
    except NotFoundError:
        raise NotFoundError("No plan configuration found")


def is_free_plan(plan: SubscriptionPlan) -> bool:
    return plan.name == settings.FREE_PLAN_NAME


# Standard catalogue; prices in kobo
STANDARD_PLANS = [
    {
        "name": "free",
        "display_name": "Free",
        "description": "For small cooperatives getting started",
        "monthly_price": 0,
        "yearly_price": 0,
        "max_members": 20,
        "max_contribution_plans": 1,
        "max_loans_per_month": 0,
        "max_group_buys": 0,
        "features": ["Up to 20 members", "1 contribution plan", "Basic reports"],
        "is_popular": False,
        "sort_order": 1,
    },
    {
        "name": "starter",
        "display_name": "Starter",
        "description": "For growing cooperatives",
        "monthly_price": 500000,
        "yearly_price": 4800000,
        "max_members": 100,
        "max_contribution_plans": 5,
        "max_loans_per_month": 10,
        "max_group_buys": 3,
        "features": ["Up to 100 members", "5 contribution plans", "10 loans per month", "3 active group buys"],
        "is_popular": True,
        "sort_order": 2,
    },
    {
        "name": "business",
        "display_name": "Business",
        "description": "For established cooperatives",
        "monthly_price": 1500000,
        "yearly_price": 14400000,
        "max_members": 500,
        "max_contribution_plans": 20,
        "max_loans_per_month": 50,
        "max_group_buys": 10,
        "features": ["Up to 500 members", "20 contribution plans", "50 loans per month", "10 active group buys"],
        "is_popular": False,
        "sort_order": 3,
    },
    {
        "name": "enterprise",
        "display_name": "Enterprise",
        "description": "For federations and large cooperatives",
        "monthly_price": 5000000,
        "yearly_price": 48000000,
        "max_members": LIMIT_UNLIMITED,
        "max_contribution_plans": LIMIT_UNLIMITED,
        "max_loans_per_month": LIMIT_UNLIMITED,
        "max_group_buys": LIMIT_UNLIMITED,
        "features": ["Unlimited members", "Unlimited contribution plans", "Unlimited loans", "Unlimited group buys"],
        "is_popular": False,
        "sort_order": 4,
    },
]


def upsert_plans(db: Session, plans: List[dict] = None) -> Tuple[int, int]:
    """Create or update plans by machine name. Returns (created, updated)."""
    created = updated = 0
    for values in plans if plans is not None else STANDARD_PLANS:
        plan = db.query(SubscriptionPlan).filter(SubscriptionPlan.name == values["name"]).first()
        if plan is None:
            db.add(SubscriptionPlan(is_active=True, **values))
            created += 1
        else:
            for key, value in values.items():
                setattr(plan, key, value)
            updated += 1
    db.commit()
    return created, updated
