from app.schemas.subscription import (
    LimitType,
    InitializeSubscriptionRequest, VerifyPaymentRequest, ChangePlanRequest, CancelSubscriptionRequest,
    PlanResponse, PaymentResponse, SubscriptionResponse,
    InitializeSubscriptionResponse, VerifyPaymentResponse,
    UsageSnapshot, LimitCheckResult,
)
from app.schemas.paystack import PaymentInitiation, ProviderTransaction

__all__ = [
    "LimitType",
    "InitializeSubscriptionRequest", "VerifyPaymentRequest", "ChangePlanRequest", "CancelSubscriptionRequest",
    "PlanResponse", "PaymentResponse", "SubscriptionResponse",
    "InitializeSubscriptionResponse", "VerifyPaymentResponse",
    "UsageSnapshot", "LimitCheckResult",
    "PaymentInitiation", "ProviderTransaction",
]
