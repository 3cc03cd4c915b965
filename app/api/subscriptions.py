"""
Cooperative subscription API.
Plan listing, checkout initialisation and verification, plan changes,
cancellation, usage and limit checks. Business errors are raised as
BillingError subclasses and rendered by the handler in app.main.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from uuid import UUID

from app.db.session import get_db
from app.api.deps import get_current_user, get_subscription_service
from app.core.rate_limit import rate_limit
from app.models.user import User
from app.schemas.subscription import (
    PlanResponse,
    SubscriptionResponse,
    InitializeSubscriptionRequest,
    VerifyPaymentRequest,
    ChangePlanRequest,
    CancelSubscriptionRequest,
    LimitType,
)
from app.services.cooperatives import require_cooperative_member
from app.services.limits import check_limit
from app.services.paystack import PaystackClient, get_paystack_client
from app.services.plan_catalog import list_active_plans
from app.services.subscription_lifecycle import SubscriptionService
from app.services.usage import compute_usage

router = APIRouter()

RECENT_PAYMENTS = 10


def _ok(data=None, message: str = None) -> dict:
    return {"success": True, "message": message, "data": data}


@router.get("/plans")
def get_plans(db: Session = Depends(get_db)):
    """Active plans, cheapest first. Public."""
    plans = [PlanResponse.model_validate(plan) for plan in list_active_plans(db)]
    return _ok(plans)


@router.get("/paystack/public-key")
def get_public_key(provider: PaystackClient = Depends(get_paystack_client)):
    return _ok({"public_key": provider.get_public_key()})


@router.get("/cooperative/{cooperative_id}")
def get_cooperative_subscription(
    cooperative_id: UUID,
    current_user: User = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
):
    """Current subscription with its most recent payments (admins only)."""
    subscription = service.get_subscription(cooperative_id, current_user.id)
    if subscription is None:
        return _ok(None, "No subscription found")
    response = SubscriptionResponse.model_validate(subscription)
    response.payments = response.payments[:RECENT_PAYMENTS]
    return _ok(response)


@router.get("/cooperative/{cooperative_id}/usage")
def get_usage(
    cooperative_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_cooperative_member(db, cooperative_id, current_user.id)
    return _ok(compute_usage(db, cooperative_id))


@router.get("/cooperative/{cooperative_id}/check-limit/{limit_type}")
def get_limit_check(
    cooperative_id: UUID,
    limit_type: LimitType,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_cooperative_member(db, cooperative_id, current_user.id)
    return _ok(check_limit(db, cooperative_id, limit_type))


@router.post("/initialize")
@rate_limit(max_requests=10, window_seconds=300)
def initialize_subscription(
    payload: InitializeSubscriptionRequest,
    current_user: User = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
):
    """
    Select a plan. Zero-price plans activate immediately; paid plans return a
    Paystack checkout URL and a pending payment reference.
    """
    result = service.initialize_subscription(
        cooperative_id=payload.cooperative_id,
        plan_id=payload.plan_id,
        user_id=current_user.id,
        billing_cycle=payload.billing_cycle,
        callback_url=payload.callback_url,
    )
    return _ok(result, result.message)


@router.post("/verify")
def verify_payment(
    payload: VerifyPaymentRequest,
    current_user: User = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
):
    """Confirm a payment after the checkout redirect. Safe to call repeatedly."""
    result = service.verify_payment(payload.reference, current_user.id)
    message = "Payment already processed" if result.already_processed else "Subscription activated successfully"
    return _ok(result, message)


@router.post("/cooperative/{cooperative_id}/change-plan")
@rate_limit(max_requests=10, window_seconds=300)
def change_plan(
    cooperative_id: UUID,
    payload: ChangePlanRequest,
    current_user: User = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
):
    result = service.change_plan(
        cooperative_id=cooperative_id,
        new_plan_id=payload.new_plan_id,
        user_id=current_user.id,
        billing_cycle=payload.billing_cycle,
        callback_url=payload.callback_url,
    )
    return _ok(result, result.get("message"))


@router.post("/cooperative/{cooperative_id}/cancel")
def cancel_subscription(
    cooperative_id: UUID,
    payload: CancelSubscriptionRequest,
    current_user: User = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
):
    result = service.cancel_subscription(
        cooperative_id=cooperative_id,
        user_id=current_user.id,
        reason=payload.reason,
        cancel_immediately=payload.cancel_immediately,
    )
    return _ok(result["subscription"], result["message"])
