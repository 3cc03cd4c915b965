"""
Subscription lifecycle for cooperatives.

States: pending -> active -> past_due / cancelled, plus cancel_at_period_end
on an active subscription. A cooperative has exactly one subscription row;
starting over (free plan after a cancellation, a new paid plan after a
provider disable) re-initialises that row.

Period-end handling is lazy. Every entry point that loads a subscription calls
resolve_period_end() first; there is no background sweep.

Payment confirmation goes through apply_payment_success() whether it comes
from the verify endpoint or a charge.success webhook. The payment row moves
out of `pending` with a conditional UPDATE and only the caller that wins that
update applies subscription side effects.

Public methods commit. apply_* / mark_* / record_* methods only flush so the
webhook reconciler can commit them together with the event row. Activity log
entries and notifications are queued and run after the commit.
"""
from sqlalchemy.orm import Session
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple
from uuid import UUID
import calendar
import logging
from app.core.activity import log_activity
from app.core.config import settings
from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.models.activity import ActivityAction
from app.models.cooperative import Cooperative
from app.models.plan import SubscriptionPlan
from app.models.subscription import Subscription, SubscriptionStatus, BillingCycle
from app.models.subscription_payment import SubscriptionPayment, PaymentStatus, TransactionType
from app.schemas.paystack import ProviderTransaction
from app.schemas.subscription import (
    InitializeSubscriptionResponse,
    SubscriptionResponse,
    VerifiedPayment,
    VerifyPaymentResponse,
)
from app.services.cooperatives import require_cooperative_admin, get_user
from app.services.notifications import notify_cooperative_admins
from app.services.payment_initiation import (
    generate_reference,
    initiate_payment,
    format_amount,
    SUBSCRIPTION_REFERENCE_PREFIX,
    UPGRADE_REFERENCE_PREFIX,
)
from app.services.plan_catalog import get_plan, get_free_plan, is_free_plan

logger = logging.getLogger(__name__)

# Provider statuses that end a transaction without payment
FAILED_TRANSACTION_STATUSES = ("failed", "abandoned", "reversed")

ENTITLED_STATUSES = (SubscriptionStatus.ACTIVE, SubscriptionStatus.PAST_DUE)


def _add_months(start: datetime, months: int) -> datetime:
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def calculate_period_end(start: datetime, billing_cycle) -> datetime:
    """One billing interval after start; month-end dates clamp (Jan 31 -> Feb 28/29)."""
    if BillingCycle(billing_cycle) == BillingCycle.YEARLY:
        return _add_months(start, 12)
    return _add_months(start, 1)


def free_plan_period_end() -> datetime:
    return datetime.fromisoformat(settings.FREE_PLAN_PERIOD_END)


def _ceil_days(delta: timedelta) -> int:
    days, remainder = divmod(delta, timedelta(days=1))
    return days + (1 if remainder else 0)


def prorate_upgrade(
    current_price: int,
    new_price: int,
    period_start: datetime,
    period_end: datetime,
    now: datetime,
) -> int:
    """
    ceil((new - current) * remaining_days / total_days), whole days rounded up,
    integer arithmetic only.
    """
    total_days = _ceil_days(period_end - period_start)
    remaining_days = min(_ceil_days(period_end - now), total_days)
    if total_days <= 0 or remaining_days <= 0:
        return 0
    difference = new_price - current_price
    return -(-(difference * remaining_days) // total_days)


class SubscriptionService:
    def __init__(self, db: Session, provider=None, clock: Optional[Callable[[], datetime]] = None):
        self.db = db
        self.provider = provider
        self.clock = clock or datetime.utcnow
        self._after_commit: List[Callable[[], object]] = []

    # Transactions

    def commit(self):
        """Commit, then run queued activity/notification side effects best-effort."""
        self.db.commit()
        effects, self._after_commit = self._after_commit, []
        for effect in effects:
            try:
                effect()
            except Exception as e:
                logger.warning(f"[BILLING] Post-commit side effect failed: {str(e)}")

    def rollback(self):
        self.db.rollback()
        self._after_commit = []

    def _log(self, user_id, action: ActivityAction, description: str, cooperative_id, metadata: Optional[dict] = None):
        self._after_commit.append(
            lambda: log_activity(self.db, user_id, action, description, cooperative_id, metadata)
        )

    def _notify(self, cooperative_id, kind: str, title: str, body: str, data: Optional[dict] = None):
        self._after_commit.append(
            lambda: notify_cooperative_admins(self.db, cooperative_id, kind, title, body, data)
        )

    # Lookups

    def _subscription_for_cooperative(self, cooperative_id: UUID, for_update: bool = False) -> Optional[Subscription]:
        query = self.db.query(Subscription).filter(Subscription.cooperative_id == cooperative_id)
        if for_update:
            query = query.with_for_update().populate_existing()
        return query.first()

    def _lock_subscription(self, subscription_id: UUID) -> Subscription:
        return self.db.query(Subscription).filter(
            Subscription.id == subscription_id
        ).with_for_update().populate_existing().one()

    def _payment_by_reference(self, reference: str, for_update: bool = False) -> Optional[SubscriptionPayment]:
        query = self.db.query(SubscriptionPayment).filter(SubscriptionPayment.external_reference == reference)
        if for_update:
            query = query.with_for_update().populate_existing()
        return query.first()

    def _subscription_by_code(self, subscription_code: str) -> Optional[Subscription]:
        if not subscription_code:
            return None
        return self.db.query(Subscription).filter(
            Subscription.external_subscription_code == subscription_code
        ).with_for_update().populate_existing().first()

    def _transition_payment(self, payment: SubscriptionPayment, from_status: PaymentStatus,
                            to_status: PaymentStatus, **values) -> bool:
        """Compare-and-set on payment status. True only for the caller that moved it."""
        values["status"] = to_status
        updated = self.db.query(SubscriptionPayment).filter(
            SubscriptionPayment.id == payment.id,
            SubscriptionPayment.status == from_status,
        ).update(values, synchronize_session=False)
        self.db.refresh(payment)
        return updated == 1

    # State helpers (flush only)

    def _cancel_now(self, subscription: Subscription, reason: Optional[str], cancelled_at: Optional[datetime] = None):
        subscription.status = SubscriptionStatus.CANCELLED
        subscription.cancelled_at = cancelled_at or self.clock()
        subscription.cancel_reason = reason
        subscription.cancel_at_period_end = False
        subscription.previous_plan = None
        self.db.flush()

    def _start_zero_price_subscription(self, subscription: Optional[Subscription], cooperative_id: UUID,
                                       plan: SubscriptionPlan, billing_cycle, user_id=None) -> Subscription:
        """
        Activate a plan that needs no payment, re-using the cooperative's row if it has one.
        cancelled_at / cancel_reason of the plan that just ended are left on the row.
        """
        now = self.clock()
        if subscription is None:
            subscription = Subscription(cooperative_id=cooperative_id, created_by=user_id)
            self.db.add(subscription)
        billing_cycle = BillingCycle(billing_cycle)
        subscription.plan = plan
        subscription.previous_plan = None
        subscription.status = SubscriptionStatus.ACTIVE
        subscription.billing_cycle = billing_cycle
        subscription.current_period_start = now
        if is_free_plan(plan):
            subscription.current_period_end = free_plan_period_end()
        else:
            subscription.current_period_end = calculate_period_end(now, billing_cycle)
        subscription.cancel_at_period_end = False
        self.db.flush()
        self._log(user_id, ActivityAction.SUBSCRIPTION_CREATED,
                  f"Activated {plan.display_name} subscription plan", cooperative_id,
                  {"planName": plan.display_name})
        return subscription

    def resolve_period_end(self, subscription: Optional[Subscription]) -> bool:
        """
        Apply transitions that became due when current_period_end passed:
        cancel_at_period_end -> cancelled, then a fresh free subscription;
        a scheduled downgrade stops granting the previous plan.
        Returns True if anything changed (caller commits).
        """
        if subscription is None:
            return False
        now = self.clock()
        if now < subscription.current_period_end:
            return False
        ending = subscription.cancel_at_period_end and subscription.status in ENTITLED_STATUSES
        if not ending and subscription.previous_plan is None:
            return False

        subscription = self._lock_subscription(subscription.id)
        if subscription.cancel_at_period_end and subscription.status in ENTITLED_STATUSES:
            free_plan = get_free_plan(self.db)
            ended_plan = subscription.plan.display_name
            self._cancel_now(subscription, subscription.cancel_reason, cancelled_at=subscription.current_period_end)
            self._log(None, ActivityAction.SUBSCRIPTION_CANCELLED,
                      f"{ended_plan} subscription ended at period end", subscription.cooperative_id,
                      {"reason": subscription.cancel_reason})
            self._start_zero_price_subscription(subscription, subscription.cooperative_id,
                                                free_plan, BillingCycle.MONTHLY)
            logger.info(f"[BILLING] Cooperative {subscription.cooperative_id} moved to free plan at period end")
            return True
        if subscription.previous_plan is not None:
            subscription.previous_plan = None
            self.db.flush()
            return True
        return False

    # Reads

    def get_subscription(self, cooperative_id: UUID, user_id: UUID) -> Optional[Subscription]:
        require_cooperative_admin(self.db, cooperative_id, user_id)
        subscription = self._subscription_for_cooperative(cooperative_id)
        if self.resolve_period_end(subscription):
            self.commit()
            subscription = self._subscription_for_cooperative(cooperative_id)
        return subscription

    # Select plan

    def initialize_subscription(
        self,
        cooperative_id: UUID,
        plan_id: UUID,
        user_id: UUID,
        billing_cycle=BillingCycle.MONTHLY,
        callback_url: Optional[str] = None,
    ) -> InitializeSubscriptionResponse:
        require_cooperative_admin(self.db, cooperative_id, user_id)
        plan = get_plan(self.db, plan_id, require_active=True)
        billing_cycle = BillingCycle(billing_cycle or BillingCycle.MONTHLY)

        subscription = self._subscription_for_cooperative(cooperative_id, for_update=True)
        self.resolve_period_end(subscription)
        amount = plan.price_for(billing_cycle.value)

        if amount == 0:
            return self._select_zero_price_plan(subscription, cooperative_id, plan, billing_cycle, user_id)

        if subscription is not None and subscription.status == SubscriptionStatus.ACTIVE:
            raise ConflictError("Cooperative already has an active subscription. Please upgrade or cancel first.")

        user = get_user(self.db, user_id)
        cooperative = self.db.query(Cooperative).filter(Cooperative.id == cooperative_id).first()
        reference = generate_reference(SUBSCRIPTION_REFERENCE_PREFIX)
        period_start = self.clock()
        period_end = calculate_period_end(period_start, billing_cycle)

        initiation = initiate_payment(
            self.provider,
            email=user.email,
            amount=amount,
            reference=reference,
            metadata={
                "cooperativeId": str(cooperative_id),
                "cooperativeName": cooperative.name if cooperative else None,
                "planId": str(plan.id),
                "planName": plan.name,
                "billingCycle": billing_cycle.value,
                "userId": str(user_id),
                "type": TransactionType.SUBSCRIPTION.value,
            },
            callback_url=callback_url,
            # Provider plan codes are priced monthly
            plan_code=plan.paystack_plan_code if billing_cycle == BillingCycle.MONTHLY else None,
        )

        # Subscription flips to pending in the same commit that records the payment attempt
        if subscription is None:
            subscription = Subscription(cooperative_id=cooperative_id, created_by=user_id)
            self.db.add(subscription)
        subscription.plan = plan
        subscription.previous_plan = None
        subscription.status = SubscriptionStatus.PENDING
        subscription.billing_cycle = billing_cycle
        subscription.current_period_start = period_start
        subscription.current_period_end = period_end
        subscription.cancel_at_period_end = False
        subscription.cancelled_at = None
        subscription.cancel_reason = None

        self.db.add(SubscriptionPayment(
            subscription=subscription,
            amount=amount,
            external_reference=reference,
            status=PaymentStatus.PENDING,
            transaction_type=TransactionType.SUBSCRIPTION,
            target_plan_id=plan.id,
            billing_cycle=billing_cycle.value,
            period_start=period_start,
            period_end=period_end,
            payment_metadata={"planName": plan.display_name, "billingCycle": billing_cycle.value},
        ))
        self.commit()

        return InitializeSubscriptionResponse(
            requires_payment=True,
            message="Payment initialized",
            authorization_url=initiation.authorization_url,
            access_code=initiation.access_code,
            reference=reference,
            amount=amount,
        )

    def _select_zero_price_plan(self, subscription, cooperative_id, plan, billing_cycle, user_id):
        if (subscription is not None and subscription.status == SubscriptionStatus.ACTIVE
                and subscription.plan_id == plan.id):
            return InitializeSubscriptionResponse(
                requires_payment=False,
                message=f"{plan.display_name} plan is already active",
                subscription=SubscriptionResponse.model_validate(subscription),
            )
        if subscription is not None and subscription.status != SubscriptionStatus.CANCELLED:
            # Leaving a paid or pending plan for a free one ends it right away
            self._cancel_now(subscription, f"Switched to {plan.display_name}")
            self._log(user_id, ActivityAction.SUBSCRIPTION_CANCELLED,
                      f"Cancelled subscription to switch to {plan.display_name}", cooperative_id)
        subscription = self._start_zero_price_subscription(subscription, cooperative_id, plan, billing_cycle, user_id)
        self.commit()
        return InitializeSubscriptionResponse(
            requires_payment=False,
            message="Free plan activated successfully",
            subscription=SubscriptionResponse.model_validate(subscription),
        )

    # Confirm / fail payments

    def apply_payment_success(self, transaction: ProviderTransaction, user_id: Optional[UUID] = None
                              ) -> Tuple[SubscriptionPayment, bool]:
        """
        Confirm a paid transaction. Safe to call repeatedly and from both the
        verify endpoint and charge.success webhooks; returns (payment, applied).
        Raises NotFoundError when no payment has this reference.
        """
        payment = self._payment_by_reference(transaction.reference, for_update=True)
        if payment is None:
            raise NotFoundError("Payment not found")
        if payment.status == PaymentStatus.SUCCESS:
            return payment, False
        if payment.status != PaymentStatus.PENDING:
            logger.warning(f"[BILLING] Ignoring success for {payment.external_reference}: payment is {payment.status.value}")
            return payment, False

        if transaction.amount != payment.amount:
            self._transition_payment(
                payment, PaymentStatus.PENDING, PaymentStatus.FAILED,
                failure_reason=f"Amount mismatch: expected {payment.amount}, received {transaction.amount}",
                external_transaction_id=transaction.transaction_id,
            )
            logger.warning(f"[BILLING] Amount mismatch on {payment.external_reference}: "
                           f"expected {payment.amount}, received {transaction.amount}")
            return payment, False

        won = self._transition_payment(
            payment, PaymentStatus.PENDING, PaymentStatus.SUCCESS,
            external_transaction_id=transaction.transaction_id,
            paid_at=transaction.paid_at or self.clock(),
            channel=transaction.channel,
            card_last4=transaction.card_last4,
            card_brand=transaction.card_brand,
            card_exp_month=transaction.card_exp_month,
            card_exp_year=transaction.card_exp_year,
            failure_reason=None,
        )
        if not won:
            return payment, False

        subscription = self._lock_subscription(payment.subscription_id)
        if payment.target_plan_id:
            subscription.plan = self.db.query(SubscriptionPlan).filter(
                SubscriptionPlan.id == payment.target_plan_id
            ).one()
        subscription.previous_plan = None
        if payment.billing_cycle:
            subscription.billing_cycle = BillingCycle(payment.billing_cycle)
        subscription.status = SubscriptionStatus.ACTIVE
        subscription.current_period_start = payment.period_start
        subscription.current_period_end = payment.period_end
        subscription.cancel_at_period_end = False
        subscription.cancelled_at = None
        subscription.cancel_reason = None
        if transaction.customer_code:
            subscription.external_customer_code = transaction.customer_code
        self.db.flush()

        plan_name = subscription.plan.display_name
        cooperative_id = subscription.cooperative_id
        if payment.transaction_type == TransactionType.UPGRADE:
            description = f"Subscription upgraded: {plan_name}"
        else:
            description = f"Subscription activated: {plan_name}"
        self._log(user_id, ActivityAction.SUBSCRIPTION_ACTIVATED, description, cooperative_id,
                  {"planName": plan_name, "amount": payment.amount, "reference": payment.external_reference})
        self._notify(
            cooperative_id,
            "subscription_activated",
            "Subscription Activated",
            f"Your {plan_name} subscription is now active until {subscription.current_period_end:%d %b %Y}.",
            {"subscriptionId": str(subscription.id)},
        )
        logger.info(f"[BILLING] Payment {payment.external_reference} confirmed; cooperative {cooperative_id} on {plan_name}")
        return payment, True

    def _funds_current_plan(self, payment: SubscriptionPayment, subscription: Subscription) -> bool:
        """True when a subscription payment pays for the plan and period the row is on now."""
        if payment.transaction_type != TransactionType.SUBSCRIPTION:
            return False
        if payment.target_plan_id != subscription.plan_id:
            return False
        if subscription.plan.price_for(subscription.billing_cycle.value) == 0:
            return False
        return payment.period_start == subscription.current_period_start

    def apply_payment_failure(self, reference: str, reason: str) -> Tuple[Optional[SubscriptionPayment], bool]:
        """
        Mark a pending payment failed. An active subscription goes past_due
        only when the failed payment funds its current plan and period; a
        failed upgrade leaves the current plan paid. Pending subscriptions
        stay pending. A payment the cooperative has since moved away from
        (another plan, a restarted checkout) only fails the payment row.
        """
        payment = self._payment_by_reference(reference, for_update=True)
        if payment is None:
            return None, False
        if not self._transition_payment(payment, PaymentStatus.PENDING, PaymentStatus.FAILED, failure_reason=reason):
            return payment, False

        subscription = self._lock_subscription(payment.subscription_id)
        if payment.transaction_type == TransactionType.UPGRADE:
            self._queue_payment_failed(subscription, reason, payment.external_reference)
        elif self._funds_current_plan(payment, subscription):
            self.mark_past_due(subscription)
            self._queue_payment_failed(subscription, reason, payment.external_reference)
        else:
            logger.info(f"[BILLING] Payment {payment.external_reference} failed after the cooperative "
                        f"moved off its plan; subscription left {subscription.status.value}")
        return payment, True

    def mark_past_due(self, subscription: Subscription) -> bool:
        if subscription.status != SubscriptionStatus.ACTIVE:
            return False
        subscription.status = SubscriptionStatus.PAST_DUE
        self.db.flush()
        return True

    def _queue_payment_failed(self, subscription: Subscription, reason: str, reference: Optional[str] = None):
        self._log(None, ActivityAction.SUBSCRIPTION_PAYMENT_FAILED, f"Subscription payment failed: {reason}",
                  subscription.cooperative_id, {"reference": reference})
        self._notify(
            subscription.cooperative_id,
            "payment_failed",
            "Subscription Payment Failed",
            "Your subscription payment failed. Please update your payment method to continue using premium features.",
            {"subscriptionId": str(subscription.id)},
        )

    def mark_payment_refunded(self, reference: str) -> bool:
        payment = self._payment_by_reference(reference, for_update=True)
        if payment is None:
            return False
        return self._transition_payment(payment, PaymentStatus.SUCCESS, PaymentStatus.REFUNDED)

    def verify_payment(self, reference: str, user_id: UUID) -> VerifyPaymentResponse:
        """Synchronous confirmation after the provider redirect."""
        payment = self._payment_by_reference(reference)
        if payment is None:
            raise NotFoundError("Payment not found")
        require_cooperative_admin(self.db, payment.subscription.cooperative_id, user_id)

        if payment.status == PaymentStatus.SUCCESS:
            return self._verify_response(payment, already_processed=True)
        if payment.status != PaymentStatus.PENDING:
            raise ConflictError(f"Payment is already {payment.status.value}")

        transaction = self.provider.verify_transaction(reference)
        if transaction.status != "success":
            if transaction.status in FAILED_TRANSACTION_STATUSES:
                self.apply_payment_failure(reference, transaction.gateway_response or f"Payment {transaction.status}")
                self.commit()
                raise ValidationError("Payment was not successful")
            raise ConflictError("Payment has not completed yet. Please try again shortly.")

        transaction.reference = reference
        payment, applied = self.apply_payment_success(transaction, user_id=user_id)
        self.commit()
        if payment.status == PaymentStatus.FAILED:
            raise ValidationError("Payment amount mismatch")
        return self._verify_response(payment, already_processed=not applied)

    def _verify_response(self, payment: SubscriptionPayment, already_processed: bool) -> VerifyPaymentResponse:
        subscription = self._subscription_for_cooperative(payment.subscription.cooperative_id)
        return VerifyPaymentResponse(
            subscription=SubscriptionResponse.model_validate(subscription),
            payment=VerifiedPayment(
                amount=payment.amount,
                reference=payment.external_reference,
                paid_at=payment.paid_at,
            ),
            already_processed=already_processed,
        )

    # Cancel

    def cancel_subscription(
        self,
        cooperative_id: UUID,
        user_id: UUID,
        reason: Optional[str] = None,
        cancel_immediately: bool = False,
    ) -> dict:
        require_cooperative_admin(self.db, cooperative_id, user_id)
        subscription = self._subscription_for_cooperative(cooperative_id, for_update=True)
        if subscription is None:
            raise NotFoundError("Subscription not found")
        self.resolve_period_end(subscription)
        if subscription.status == SubscriptionStatus.CANCELLED:
            raise ConflictError("Subscription is already cancelled")

        price = subscription.plan.price_for(subscription.billing_cycle.value)
        immediate = (cancel_immediately or price == 0
                     or subscription.status == SubscriptionStatus.PENDING)

        if immediate:
            free_plan = get_free_plan(self.db)
            cancelled_plan = subscription.plan.display_name
            self._cancel_now(subscription, reason)
            self._log(user_id, ActivityAction.SUBSCRIPTION_CANCELLED,
                      f"Cancelled {cancelled_plan} subscription", cooperative_id, {"reason": reason})
            self._start_zero_price_subscription(subscription, cooperative_id, free_plan,
                                                BillingCycle.MONTHLY, user_id)
            self._notify(cooperative_id, "subscription_cancelled", "Subscription Cancelled",
                         f"Your {cancelled_plan} subscription was cancelled. You are now on the {free_plan.display_name} plan.",
                         {"subscriptionId": str(subscription.id)})
            message = "Subscription cancelled successfully"
        else:
            subscription.cancel_at_period_end = True
            subscription.cancel_reason = reason
            self.db.flush()
            self._log(user_id, ActivityAction.SUBSCRIPTION_CANCELLED,
                      "Cancelled subscription (at period end)", cooperative_id, {"reason": reason})
            message = f"Subscription will be cancelled on {subscription.current_period_end:%d %b %Y}"

        self.commit()
        return {
            "message": message,
            "subscription": SubscriptionResponse.model_validate(
                self._subscription_for_cooperative(cooperative_id)
            ),
        }

    # Change plan

    def change_plan(
        self,
        cooperative_id: UUID,
        new_plan_id: UUID,
        user_id: UUID,
        billing_cycle=None,
        callback_url: Optional[str] = None,
    ) -> dict:
        require_cooperative_admin(self.db, cooperative_id, user_id)
        subscription = self._subscription_for_cooperative(cooperative_id, for_update=True)
        if subscription is None:
            raise NotFoundError("No active subscription found")
        self.resolve_period_end(subscription)
        if subscription.status != SubscriptionStatus.ACTIVE:
            raise ConflictError(
                f"Subscription is {subscription.status.value}. Select a plan to start a new subscription."
            )

        new_plan = get_plan(self.db, new_plan_id, require_active=True)
        if subscription.plan_id == new_plan.id:
            raise ConflictError("You are already on this plan")

        current_plan = subscription.plan
        billing_cycle = BillingCycle(billing_cycle or subscription.billing_cycle)
        current_amount = current_plan.price_for(billing_cycle.value)
        new_amount = new_plan.price_for(billing_cycle.value)

        if new_amount == 0:
            self._cancel_now(subscription, f"Changed to {new_plan.display_name}")
            self._log(user_id, ActivityAction.SUBSCRIPTION_CANCELLED,
                      f"Cancelled {current_plan.display_name} subscription", cooperative_id,
                      {"reason": f"Changed to {new_plan.display_name}"})
            subscription = self._start_zero_price_subscription(subscription, cooperative_id, new_plan,
                                                               billing_cycle, user_id)
            self.commit()
            return {
                "requires_payment": False,
                "message": f"Plan changed to {new_plan.display_name}",
                "subscription": SubscriptionResponse.model_validate(subscription),
            }

        if subscription.previous_plan is not None and subscription.previous_plan.id == new_plan.id:
            # Back to the plan already paid for this period: drop the scheduled downgrade
            subscription.plan = new_plan
            subscription.previous_plan = None
            subscription.billing_cycle = billing_cycle
            self.db.flush()
            self._log(user_id, ActivityAction.SUBSCRIPTION_PLAN_CHANGED,
                      f"Kept {new_plan.display_name} plan", cooperative_id,
                      {"fromPlan": current_plan.name, "toPlan": new_plan.name})
            self.commit()
            return {
                "requires_payment": False,
                "message": f"Scheduled downgrade cancelled. You remain on {new_plan.display_name}.",
                "subscription": SubscriptionResponse.model_validate(subscription),
            }

        if new_amount <= current_amount:
            # Downgrade: the paid-for plan stays in effect until the period ends
            if subscription.previous_plan is None:
                subscription.previous_plan = current_plan
            subscription.plan = new_plan
            subscription.billing_cycle = billing_cycle
            self.db.flush()
            self._log(user_id, ActivityAction.SUBSCRIPTION_PLAN_CHANGED,
                      f"Plan changed to {new_plan.display_name} from next billing period", cooperative_id,
                      {"fromPlan": current_plan.name, "toPlan": new_plan.name})
            self.commit()
            return {
                "requires_payment": False,
                "message": f"Plan changed to {new_plan.display_name}. Changes will apply at next billing period.",
                "subscription": SubscriptionResponse.model_validate(subscription),
            }

        return self._initiate_upgrade(subscription, current_plan, new_plan, billing_cycle,
                                      current_amount, new_amount, user_id, callback_url)

    def _initiate_upgrade(self, subscription, current_plan, new_plan, billing_cycle,
                          current_amount, new_amount, user_id, callback_url) -> dict:
        """Charge for an upgrade. The plan swap happens when this payment is confirmed."""
        now = self.clock()
        if current_amount == 0 or now >= subscription.current_period_end:
            # Nothing paid to credit: full price for a fresh period
            amount = new_amount
            period_start = now
            period_end = calculate_period_end(now, billing_cycle)
        else:
            amount = prorate_upgrade(current_amount, new_amount, subscription.current_period_start,
                                     subscription.current_period_end, now)
            period_start = subscription.current_period_start
            period_end = subscription.current_period_end

        user = get_user(self.db, user_id)
        reference = generate_reference(UPGRADE_REFERENCE_PREFIX)
        initiation = initiate_payment(
            self.provider,
            email=user.email,
            amount=amount,
            reference=reference,
            metadata={
                "cooperativeId": str(subscription.cooperative_id),
                "type": TransactionType.UPGRADE.value,
                "fromPlanId": str(current_plan.id),
                "toPlanId": str(new_plan.id),
                "billingCycle": billing_cycle.value,
                "userId": str(user_id),
            },
            callback_url=callback_url,
        )

        self.db.add(SubscriptionPayment(
            subscription_id=subscription.id,
            amount=amount,
            external_reference=reference,
            status=PaymentStatus.PENDING,
            transaction_type=TransactionType.UPGRADE,
            target_plan_id=new_plan.id,
            billing_cycle=billing_cycle.value,
            period_start=period_start,
            period_end=period_end,
            payment_metadata={
                "fromPlan": current_plan.name,
                "toPlan": new_plan.name,
                "billingCycle": billing_cycle.value,
            },
        ))
        self._log(user_id, ActivityAction.SUBSCRIPTION_UPGRADE_INITIATED,
                  f"Upgrade to {new_plan.display_name} initiated", subscription.cooperative_id,
                  {"fromPlan": current_plan.name, "toPlan": new_plan.name, "amount": amount})
        self.commit()

        return {
            "requires_payment": True,
            "authorization_url": initiation.authorization_url,
            "access_code": initiation.access_code,
            "reference": reference,
            "amount": amount,
            "message": f"Pay {settings.PAYSTACK_CURRENCY} {format_amount(amount)} to upgrade to {new_plan.display_name}",
        }

    # Provider-driven subscription events (flush only)

    def record_provider_subscription(self, customer_code: Optional[str], subscription_code: Optional[str],
                                     email_token: Optional[str] = None) -> bool:
        if not customer_code or not subscription_code:
            return False
        subscription = self.db.query(Subscription).filter(
            Subscription.external_customer_code == customer_code
        ).with_for_update().populate_existing().first()
        if subscription is None:
            logger.warning(f"[BILLING] No subscription for provider customer {customer_code}")
            return False
        subscription.external_subscription_code = subscription_code
        if email_token:
            subscription.external_email_token = email_token
        self.db.flush()
        return True

    def disable_by_subscription_code(self, subscription_code: str) -> bool:
        subscription = self._subscription_by_code(subscription_code)
        if subscription is None:
            logger.warning(f"[BILLING] No subscription with provider code {subscription_code}")
            return False
        if subscription.status == SubscriptionStatus.CANCELLED:
            return False
        self._cancel_now(subscription, subscription.cancel_reason or "Disabled by payment provider")
        self._log(None, ActivityAction.SUBSCRIPTION_CANCELLED, "Subscription disabled by payment provider",
                  subscription.cooperative_id, {"subscriptionCode": subscription_code})
        self._notify(subscription.cooperative_id, "subscription_cancelled", "Subscription Cancelled",
                     "Your subscription was cancelled by the payment provider.",
                     {"subscriptionId": str(subscription.id)})
        return True

    def schedule_cancellation_by_code(self, subscription_code: str) -> bool:
        subscription = self._subscription_by_code(subscription_code)
        if subscription is None or subscription.status not in ENTITLED_STATUSES:
            return False
        subscription.cancel_at_period_end = True
        self.db.flush()
        return True

    def mark_past_due_by_code(self, subscription_code: str, reason: str) -> bool:
        subscription = self._subscription_by_code(subscription_code)
        if subscription is None:
            return False
        changed = self.mark_past_due(subscription)
        if changed:
            self._queue_payment_failed(subscription, reason)
        return changed
