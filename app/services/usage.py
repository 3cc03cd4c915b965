"""
Usage accounting.

Counts are recomputed from the owning tables on every call; nothing here is
cached or written. Entitlements are resolved the same way the lifecycle's
lazy period-end resolution would resolve them, without persisting anything.
"""
from sqlalchemy import func
from sqlalchemy.orm import Session
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID
from zoneinfo import ZoneInfo
from app.core.config import settings
from app.models.contribution_plan import ContributionPlan
from app.models.group_buy import GroupBuy
from app.models.loan import Loan
from app.models.member import Member, MemberStatus
from app.models.plan import SubscriptionPlan
from app.models.subscription import Subscription, SubscriptionStatus
from app.schemas.subscription import (
    UsageSnapshot, UsageBreakdown, UsageCounter, PlanLimits, PlanSummary, SubscriptionSummary,
)
from app.services.plan_catalog import get_free_plan

GROUP_BUY_ACTIVE = "active"


def month_start_utc(now: datetime, tz_name: Optional[str] = None) -> datetime:
    """First instant of now's calendar month in the billing timezone, as naive UTC."""
    tz_name = tz_name or settings.BILLING_TIMEZONE
    tz = timezone.utc if tz_name.upper() == "UTC" else ZoneInfo(tz_name)
    local = now.replace(tzinfo=timezone.utc).astimezone(tz)
    start = local.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    return start.astimezone(timezone.utc).replace(tzinfo=None)


def entitled_plan(db: Session, subscription: Optional[Subscription], now: datetime) -> SubscriptionPlan:
    """
    Plan whose limits apply right now.

    pending/cancelled/no subscription -> free plan
    elapsed cancel_at_period_end       -> free plan
    downgrade scheduled this period    -> the plan paid for (previous_plan)
    """
    if subscription is None or subscription.status in (SubscriptionStatus.PENDING, SubscriptionStatus.CANCELLED):
        return get_free_plan(db)
    if subscription.cancel_at_period_end and now >= subscription.current_period_end:
        return get_free_plan(db)
    if subscription.previous_plan_id and now < subscription.current_period_end:
        return subscription.previous_plan
    return subscription.plan


def count_active_members(db: Session, cooperative_id: UUID) -> int:
    return db.query(func.count(Member.id)).filter(
        Member.cooperative_id == cooperative_id,
        Member.status == MemberStatus.ACTIVE.value,
    ).scalar() or 0


def count_active_contribution_plans(db: Session, cooperative_id: UUID) -> int:
    return db.query(func.count(ContributionPlan.id)).filter(
        ContributionPlan.cooperative_id == cooperative_id,
        ContributionPlan.is_active.is_(True),
    ).scalar() or 0


def count_active_group_buys(db: Session, cooperative_id: UUID) -> int:
    return db.query(func.count(GroupBuy.id)).filter(
        GroupBuy.cooperative_id == cooperative_id,
        GroupBuy.status == GROUP_BUY_ACTIVE,
    ).scalar() or 0


def count_loans_this_month(db: Session, cooperative_id: UUID, now: datetime) -> int:
    return db.query(func.count(Loan.id)).filter(
        Loan.cooperative_id == cooperative_id,
        Loan.requested_at >= month_start_utc(now),
        Loan.requested_at <= now,
    ).scalar() or 0


def compute_usage(db: Session, cooperative_id: UUID, now: Optional[datetime] = None) -> UsageSnapshot:
    now = now or datetime.utcnow()
    subscription = db.query(Subscription).filter(Subscription.cooperative_id == cooperative_id).first()
    plan = entitled_plan(db, subscription, now)

    members = count_active_members(db, cooperative_id)
    contribution_plans = count_active_contribution_plans(db, cooperative_id)
    group_buys = count_active_group_buys(db, cooperative_id)
    loans = count_loans_this_month(db, cooperative_id, now)

    summary = None
    if subscription is not None:
        summary = SubscriptionSummary(
            status=subscription.status,
            current_period_end=subscription.current_period_end,
            cancel_at_period_end=subscription.cancel_at_period_end,
        )

    return UsageSnapshot(
        plan=PlanSummary(name=plan.name, display_name=plan.display_name),
        subscription=summary,
        usage=UsageBreakdown(
            members=UsageCounter(used=members, limit=plan.max_members),
            contribution_plans=UsageCounter(used=contribution_plans, limit=plan.max_contribution_plans),
            group_buys=UsageCounter(used=group_buys, limit=plan.max_group_buys),
            loans_this_month=UsageCounter(used=loans, limit=plan.max_loans_per_month),
        ),
        limits=PlanLimits(
            max_members=plan.max_members,
            max_contribution_plans=plan.max_contribution_plans,
            max_group_buys=plan.max_group_buys,
            max_loans_per_month=plan.max_loans_per_month,
        ),
    )
