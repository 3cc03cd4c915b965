"""
Payment initiation: builds the checkout request for a plan purchase and hands
it to the payment provider. Holds no state; callers persist the pending
payment in the same operation that uses the returned reference.
"""
from typing import Optional, Dict, Any
import secrets
import logging
from app.core.config import settings
from app.core.exceptions import ExternalServiceError
from app.schemas.paystack import PaymentInitiation

logger = logging.getLogger(__name__)

SUBSCRIPTION_REFERENCE_PREFIX = "sub"
UPGRADE_REFERENCE_PREFIX = "upgrade"


def generate_reference(prefix: str = SUBSCRIPTION_REFERENCE_PREFIX) -> str:
    """Unique payment reference, e.g. sub_3f9c...; the idempotency key across verify and webhooks."""
    return f"{prefix}_{secrets.token_hex(16)}"


def default_callback_url() -> str:
    return f"{settings.FRONTEND_URL.rstrip('/')}{settings.PAYMENT_CALLBACK_PATH}"


def format_amount(amount: int) -> str:
    """Format minor units for display without going through floats (500000 -> '5,000.00')."""
    return f"{amount // 100:,}.{amount % 100:02d}"


def initiate_payment(
    provider,
    email: str,
    amount: int,
    reference: str,
    metadata: Optional[Dict[str, Any]] = None,
    callback_url: Optional[str] = None,
    plan_code: Optional[str] = None,
) -> PaymentInitiation:
    """
    Ask the provider for a checkout URL.

    Raises ExternalServiceError (BadRequest-class) with the provider's message
    when available.
    """
    if provider is None:
        raise ExternalServiceError("Payment provider is not configured")
    if amount <= 0:
        raise ExternalServiceError("Payment amount must be greater than zero")

    try:
        initiation = provider.initialize_transaction(
            email=email,
            amount=amount,
            reference=reference,
            metadata=metadata or {},
            callback_url=callback_url or default_callback_url(),
            plan_code=plan_code,
        )
    except ExternalServiceError:
        raise
    except Exception as e:
        logger.error(f"[BILLING] Payment initiation failed for {reference}: {str(e)}")
        raise ExternalServiceError("Failed to initialize payment")

    logger.info(f"[BILLING] Initialized payment {reference} for {amount} minor units")
    return initiation
