from pydantic import BaseModel
from typing import List, Optional
from datetime import datetime
from uuid import UUID
import enum
from app.models.subscription import BillingCycle, SubscriptionStatus
from app.models.subscription_payment import PaymentStatus, TransactionType


class LimitType(str, enum.Enum):
    MEMBERS = "members"
    CONTRIBUTION_PLANS = "contributionPlans"
    GROUP_BUYS = "groupBuys"
    LOANS = "loans"


# Requests

class InitializeSubscriptionRequest(BaseModel):
    cooperative_id: UUID
    plan_id: UUID
    billing_cycle: BillingCycle = BillingCycle.MONTHLY
    callback_url: Optional[str] = None


class VerifyPaymentRequest(BaseModel):
    reference: str


class ChangePlanRequest(BaseModel):
    new_plan_id: UUID
    billing_cycle: Optional[BillingCycle] = None
    callback_url: Optional[str] = None


class CancelSubscriptionRequest(BaseModel):
    reason: Optional[str] = None
    cancel_immediately: bool = False


# Responses

class PlanResponse(BaseModel):
    id: UUID
    name: str
    display_name: str
    description: Optional[str] = None
    monthly_price: int  # Minor units
    yearly_price: int  # Minor units
    max_members: int
    max_contribution_plans: int
    max_loans_per_month: int
    max_group_buys: int
    features: Optional[List[str]] = None
    is_popular: bool = False
    sort_order: int = 0

    class Config:
        from_attributes = True


class PaymentResponse(BaseModel):
    id: UUID
    amount: int
    external_reference: str
    status: PaymentStatus
    transaction_type: TransactionType
    period_start: datetime
    period_end: datetime
    paid_at: Optional[datetime] = None
    channel: Optional[str] = None
    card_last4: Optional[str] = None
    card_brand: Optional[str] = None
    failure_reason: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class SubscriptionResponse(BaseModel):
    id: UUID
    cooperative_id: UUID
    status: SubscriptionStatus
    billing_cycle: BillingCycle
    current_period_start: datetime
    current_period_end: datetime
    cancel_at_period_end: bool
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    plan: PlanResponse
    previous_plan: Optional[PlanResponse] = None  # Still in effect until the period ends
    payments: List[PaymentResponse] = []

    class Config:
        from_attributes = True


class InitializeSubscriptionResponse(BaseModel):
    requires_payment: bool
    message: Optional[str] = None
    authorization_url: Optional[str] = None
    access_code: Optional[str] = None
    reference: Optional[str] = None
    amount: Optional[int] = None
    subscription: Optional[SubscriptionResponse] = None


class VerifiedPayment(BaseModel):
    amount: int
    reference: str
    paid_at: Optional[datetime] = None


class VerifyPaymentResponse(BaseModel):
    subscription: SubscriptionResponse
    payment: VerifiedPayment
    already_processed: bool = False


class PlanSummary(BaseModel):
    name: str
    display_name: str


class SubscriptionSummary(BaseModel):
    status: SubscriptionStatus
    current_period_end: datetime
    cancel_at_period_end: bool


class UsageCounter(BaseModel):
    used: int
    limit: int  # 0 = disabled, -1 = unlimited


class UsageBreakdown(BaseModel):
    members: UsageCounter
    contribution_plans: UsageCounter
    group_buys: UsageCounter
    loans_this_month: UsageCounter


class PlanLimits(BaseModel):
    max_members: int
    max_contribution_plans: int
    max_group_buys: int
    max_loans_per_month: int


class UsageSnapshot(BaseModel):
    plan: PlanSummary
    subscription: Optional[SubscriptionSummary] = None
    usage: UsageBreakdown
    limits: PlanLimits


class LimitCheckResult(BaseModel):
    allowed: bool
    limit_type: LimitType
    message: Optional[str] = None
    used: Optional[int] = None
    limit: Optional[int] = None
