"""
Plan limit enforcement.

Call check_limit synchronously before the create operation it protects.
It fails closed: when usage cannot be computed the action is denied.
"""
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from datetime import datetime
from typing import Optional
from uuid import UUID
import logging
from app.core.exceptions import BillingError
from app.models.plan import LIMIT_DISABLED, LIMIT_UNLIMITED
from app.schemas.subscription import LimitType, LimitCheckResult, UsageSnapshot
from app.services.usage import compute_usage

logger = logging.getLogger(__name__)

_DISABLED_MESSAGES = {
    LimitType.MEMBERS: "Members are not available on your current plan. Upgrade to enable this feature.",
    LimitType.CONTRIBUTION_PLANS: "Contribution plans are not available on your current plan. Upgrade to enable this feature.",
    LimitType.GROUP_BUYS: "Group buys are not available on your current plan. Upgrade to enable this feature.",
    LimitType.LOANS: "Loans are not available on your current plan. Upgrade to enable this feature.",
}

_REACHED_MESSAGES = {
    LimitType.MEMBERS: "Member limit reached ({limit}). Upgrade to add more members.",
    LimitType.CONTRIBUTION_PLANS: "Contribution plan limit reached ({limit}). Upgrade to add more plans.",
    LimitType.GROUP_BUYS: "Active group buy limit reached ({limit}). Upgrade to create more.",
    LimitType.LOANS: "Monthly loan limit reached ({limit}). Upgrade to process more loans.",
}

UNAVAILABLE_MESSAGE = "Unable to verify your plan limits right now. Please try again shortly."


def _counter(snapshot: UsageSnapshot, limit_type: LimitType):
    if limit_type == LimitType.MEMBERS:
        return snapshot.usage.members
    if limit_type == LimitType.CONTRIBUTION_PLANS:
        return snapshot.usage.contribution_plans
    if limit_type == LimitType.GROUP_BUYS:
        return snapshot.usage.group_buys
    return snapshot.usage.loans_this_month


def evaluate_limit(limit_type: LimitType, used: int, limit: int) -> LimitCheckResult:
    """Pure policy: unlimited always passes, 0 disables, otherwise deny when used >= limit."""
    limit_type = LimitType(limit_type)
    if limit == LIMIT_UNLIMITED:
        return LimitCheckResult(allowed=True, limit_type=limit_type, used=used, limit=limit)
    if limit == LIMIT_DISABLED:
        return LimitCheckResult(
            allowed=False, limit_type=limit_type, used=used, limit=limit,
            message=_DISABLED_MESSAGES[limit_type],
        )
    if used >= limit:
        return LimitCheckResult(
            allowed=False, limit_type=limit_type, used=used, limit=limit,
            message=_REACHED_MESSAGES[limit_type].format(limit=limit),
        )
    return LimitCheckResult(allowed=True, limit_type=limit_type, used=used, limit=limit)


def check_limit(
    db: Session,
    cooperative_id: UUID,
    limit_type: LimitType,
    now: Optional[datetime] = None,
) -> LimitCheckResult:
    limit_type = LimitType(limit_type)
    try:
        snapshot = compute_usage(db, cooperative_id, now=now)
    except (SQLAlchemyError, BillingError) as e:
        logger.error(f"[BILLING] Usage unavailable for cooperative {cooperative_id}, denying {limit_type.value}: {str(e)}")
        return LimitCheckResult(allowed=False, limit_type=limit_type, message=UNAVAILABLE_MESSAGE)

    counter = _counter(snapshot, limit_type)
    return evaluate_limit(limit_type, counter.used, counter.limit)
