"""Subscription lifecycle tests: select plan, verify, cancel, change plan"""
from datetime import datetime

import pytest

from app.core.exceptions import ConflictError, ExternalServiceError, ForbiddenError, NotFoundError, ValidationError
from app.models.activity import Activity, ActivityAction
from app.models.notification import Notification
from app.models.subscription import Subscription, SubscriptionStatus, BillingCycle
from app.models.subscription_payment import SubscriptionPayment, PaymentStatus, TransactionType
from app.services.subscription_lifecycle import calculate_period_end, prorate_upgrade
from app.services.usage import compute_usage


def _actions(db, coop):
    return [a.action for a in db.query(Activity).filter(Activity.cooperative_id == coop.id).all()]


def _subscription(db, coop):
    return db.query(Subscription).filter(Subscription.cooperative_id == coop.id).one()


def _activate(service, coop, plan, billing_cycle=BillingCycle.MONTHLY):
    result = service.initialize_subscription(coop.id, plan.id, coop.admin_id, billing_cycle)
    service.verify_payment(result.reference, coop.admin_id)
    return result


# Period arithmetic

def test_period_end_monthly_and_yearly():
    assert calculate_period_end(datetime(2025, 1, 15, 10), "monthly") == datetime(2025, 2, 15, 10)
    assert calculate_period_end(datetime(2025, 12, 1), BillingCycle.MONTHLY) == datetime(2026, 1, 1)
    assert calculate_period_end(datetime(2025, 1, 15), BillingCycle.YEARLY) == datetime(2026, 1, 15)


def test_period_end_clamps_to_month_end():
    assert calculate_period_end(datetime(2025, 1, 31), "monthly") == datetime(2025, 2, 28)
    assert calculate_period_end(datetime(2024, 2, 29), "yearly") == datetime(2025, 2, 28)


def test_proration_rounds_up_whole_days():
    start, end = datetime(2025, 1, 1), datetime(2025, 2, 1)
    # 150000 * 16 / 31 = 77419.35
    assert prorate_upgrade(100000, 250000, start, end, datetime(2025, 1, 16)) == 77420
    # 15.5 days left counts as 16
    assert prorate_upgrade(100000, 250000, start, end, datetime(2025, 1, 16, 12)) == 77420
    assert prorate_upgrade(100000, 250000, start, end, start) == 150000
    assert prorate_upgrade(100000, 250000, start, end, end) == 0


def test_proration_example_from_billing_docs():
    # ceil(1500 * 16 / 31) = ceil(774.19)
    assert prorate_upgrade(1000, 2500, datetime(2024, 1, 1), datetime(2024, 2, 1), datetime(2024, 1, 16)) == 775


# Select plan

def test_free_plan_activates_without_payment(db, service, provider, coop, plans):
    result = service.initialize_subscription(coop.id, plans["free"].id, coop.admin_id)

    assert result.requires_payment is False
    assert result.subscription.status == SubscriptionStatus.ACTIVE
    assert result.subscription.plan.name == "free"
    assert result.subscription.current_period_end == datetime(2099, 12, 31)
    assert provider.initialized == []
    assert db.query(SubscriptionPayment).count() == 0
    assert ActivityAction.SUBSCRIPTION_CREATED.value in _actions(db, coop)


def test_selecting_active_free_plan_again_is_a_no_op(db, service, coop, plans):
    service.initialize_subscription(coop.id, plans["free"].id, coop.admin_id)
    result = service.initialize_subscription(coop.id, plans["free"].id, coop.admin_id)
    assert result.requires_payment is False
    assert "already active" in result.message
    assert db.query(Subscription).count() == 1


def test_paid_plan_creates_pending_subscription_and_payment(db, service, provider, coop, plans):
    result = service.initialize_subscription(coop.id, plans["starter"].id, coop.admin_id)

    assert result.requires_payment is True
    assert result.reference.startswith("sub_")
    assert result.authorization_url == f"https://checkout.paystack.com/{result.reference}"
    assert result.amount == 500000

    call = provider.initialized[0]
    assert call["email"] == "admin@coop.ng"
    assert call["amount"] == 500000
    assert call["metadata"]["cooperativeId"] == str(coop.id)
    assert call["metadata"]["billingCycle"] == "monthly"

    subscription = _subscription(db, coop)
    assert subscription.status == SubscriptionStatus.PENDING
    assert subscription.plan.name == "starter"
    payment = db.query(SubscriptionPayment).one()
    assert payment.status == PaymentStatus.PENDING
    assert payment.external_reference == result.reference
    assert payment.transaction_type == TransactionType.SUBSCRIPTION
    assert payment.period_end == datetime(2025, 2, 15, 10, 0)

    # Nothing paid yet: free limits still apply
    assert compute_usage(db, coop.id, now=service.clock()).plan.name == "free"


def test_yearly_cycle_charges_yearly_price(db, service, provider, coop, plans):
    result = service.initialize_subscription(coop.id, plans["starter"].id, coop.admin_id, BillingCycle.YEARLY)
    assert result.amount == 4800000
    assert db.query(SubscriptionPayment).one().period_end == datetime(2026, 1, 15, 10, 0)


def test_only_admins_can_select_a_plan(db, service, coop, plans):
    with pytest.raises(ForbiddenError):
        service.initialize_subscription(coop.id, plans["starter"].id, coop.member_id)
    assert db.query(Subscription).count() == 0


def test_inactive_plan_cannot_be_selected(db, service, coop, plans):
    plans["starter"].is_active = False
    db.commit()
    with pytest.raises(NotFoundError):
        service.initialize_subscription(coop.id, plans["starter"].id, coop.admin_id)


def test_active_subscription_blocks_new_paid_selection(db, service, coop, plans):
    _activate(service, coop, plans["starter"])
    with pytest.raises(ConflictError):
        service.initialize_subscription(coop.id, plans["business"].id, coop.admin_id)


def test_provider_failure_leaves_no_rows(db, service, provider, coop, plans):
    provider.initialize_error = ExternalServiceError("Invalid key")
    with pytest.raises(ExternalServiceError, match="Invalid key"):
        service.initialize_subscription(coop.id, plans["starter"].id, coop.admin_id)
    service.rollback()
    assert db.query(Subscription).count() == 0
    assert db.query(SubscriptionPayment).count() == 0


def test_unexpected_provider_error_is_wrapped(db, service, provider, coop, plans):
    provider.initialize_error = RuntimeError("socket closed")
    with pytest.raises(ExternalServiceError, match="Failed to initialize payment"):
        service.initialize_subscription(coop.id, plans["starter"].id, coop.admin_id)


def test_switching_to_free_plan_through_select_ends_paid_plan(db, service, coop, plans):
    _activate(service, coop, plans["starter"])
    result = service.initialize_subscription(coop.id, plans["free"].id, coop.admin_id)
    assert result.subscription.plan.name == "free"
    assert result.subscription.status == SubscriptionStatus.ACTIVE
    assert ActivityAction.SUBSCRIPTION_CANCELLED.value in _actions(db, coop)


# Verify

def test_verify_activates_subscription(db, service, provider, coop, plans):
    init = service.initialize_subscription(coop.id, plans["starter"].id, coop.admin_id)
    result = service.verify_payment(init.reference, coop.admin_id)

    assert result.already_processed is False
    assert result.payment.amount == 500000
    assert result.subscription.status == SubscriptionStatus.ACTIVE
    assert result.subscription.plan.name == "starter"
    assert result.subscription.current_period_start == datetime(2025, 1, 15, 10, 0)
    assert result.subscription.current_period_end == datetime(2025, 2, 15, 10, 0)

    payment = db.query(SubscriptionPayment).one()
    assert payment.status == PaymentStatus.SUCCESS
    assert payment.card_last4 == "4081"
    assert payment.paid_at == datetime(2025, 1, 15, 10, 5)
    assert _subscription(db, coop).external_customer_code == "CUS_test"
    assert compute_usage(db, coop.id, now=service.clock()).usage.members.limit == 100


def test_verify_is_idempotent(db, service, provider, coop, plans):
    init = service.initialize_subscription(coop.id, plans["starter"].id, coop.admin_id)
    service.verify_payment(init.reference, coop.admin_id)
    again = service.verify_payment(init.reference, coop.admin_id)

    assert again.already_processed is True
    assert again.subscription.status == SubscriptionStatus.ACTIVE
    assert provider.verified == [init.reference]
    assert _actions(db, coop).count(ActivityAction.SUBSCRIPTION_ACTIVATED.value) == 1


def test_verify_notifies_admins(db, service, coop, plans):
    _activate(service, coop, plans["starter"])
    notifications = db.query(Notification).all()
    assert [n.user_id for n in notifications] == [coop.admin_id]
    assert notifications[0].type == "subscription_activated"


def test_verify_amount_mismatch_fails_payment(db, service, provider, coop, plans):
    init = service.initialize_subscription(coop.id, plans["starter"].id, coop.admin_id)
    provider.settle(init.reference, amount=100)

    with pytest.raises(ValidationError, match="amount mismatch"):
        service.verify_payment(init.reference, coop.admin_id)

    payment = db.query(SubscriptionPayment).one()
    assert payment.status == PaymentStatus.FAILED
    assert "expected 500000, received 100" in payment.failure_reason
    assert _subscription(db, coop).status == SubscriptionStatus.PENDING


def test_verify_failed_transaction(db, service, provider, coop, plans):
    init = service.initialize_subscription(coop.id, plans["starter"].id, coop.admin_id)
    provider.settle(init.reference, status="failed")

    with pytest.raises(ValidationError, match="not successful"):
        service.verify_payment(init.reference, coop.admin_id)

    assert db.query(SubscriptionPayment).one().status == PaymentStatus.FAILED
    assert _subscription(db, coop).status == SubscriptionStatus.PENDING
    assert ActivityAction.SUBSCRIPTION_PAYMENT_FAILED.value in _actions(db, coop)


def test_verify_transaction_still_in_progress(db, service, provider, coop, plans):
    init = service.initialize_subscription(coop.id, plans["starter"].id, coop.admin_id)
    provider.settle(init.reference, status="ongoing")

    with pytest.raises(ConflictError):
        service.verify_payment(init.reference, coop.admin_id)
    assert db.query(SubscriptionPayment).one().status == PaymentStatus.PENDING


def test_verify_unknown_reference(service, coop, plans):
    with pytest.raises(NotFoundError):
        service.verify_payment("sub_doesnotexist", coop.admin_id)


def test_verify_requires_admin(service, coop, plans):
    init = service.initialize_subscription(coop.id, plans["starter"].id, coop.admin_id)
    with pytest.raises(ForbiddenError):
        service.verify_payment(init.reference, coop.member_id)


# Cancel

def test_cancel_at_period_end_then_free_plan(db, service, clock, coop, plans):
    _activate(service, coop, plans["starter"])
    result = service.cancel_subscription(coop.id, coop.admin_id, reason="Too expensive")

    assert result["message"] == "Subscription will be cancelled on 15 Feb 2025"
    assert result["subscription"].cancel_at_period_end is True
    assert result["subscription"].status == SubscriptionStatus.ACTIVE
    assert compute_usage(db, coop.id, now=clock()).plan.name == "starter"

    clock.set(datetime(2025, 2, 16))
    subscription = service.get_subscription(coop.id, coop.admin_id)

    assert subscription.status == SubscriptionStatus.ACTIVE
    assert subscription.plan.name == "free"
    assert subscription.cancel_at_period_end is False
    assert subscription.current_period_end == datetime(2099, 12, 31)
    # The ended plan's cancellation stays on record
    assert subscription.cancelled_at == datetime(2025, 2, 15, 10, 0)
    assert subscription.cancel_reason == "Too expensive"
    assert db.query(Subscription).count() == 1
    actions = _actions(db, coop)
    assert actions.count(ActivityAction.SUBSCRIPTION_CANCELLED.value) == 2
    assert ActivityAction.SUBSCRIPTION_CREATED.value in actions


def test_cancel_immediately(db, service, coop, plans):
    _activate(service, coop, plans["business"])
    result = service.cancel_subscription(coop.id, coop.admin_id, reason="Too expensive", cancel_immediately=True)

    assert result["message"] == "Subscription cancelled successfully"
    assert result["subscription"].plan.name == "free"
    assert result["subscription"].status == SubscriptionStatus.ACTIVE
    assert result["subscription"].cancelled_at == service.clock()
    assert result["subscription"].cancel_reason == "Too expensive"
    subscription = _subscription(db, coop)
    assert subscription.cancelled_at == service.clock()
    assert subscription.cancel_reason == "Too expensive"
    assert db.query(Notification).filter(Notification.type == "subscription_cancelled").count() == 1


def test_cancel_free_plan_is_immediate(db, service, coop, plans):
    service.initialize_subscription(coop.id, plans["free"].id, coop.admin_id)
    result = service.cancel_subscription(coop.id, coop.admin_id)
    assert result["subscription"].plan.name == "free"
    assert result["subscription"].cancel_at_period_end is False


def test_cancel_pending_subscription_is_immediate(db, service, coop, plans):
    service.initialize_subscription(coop.id, plans["starter"].id, coop.admin_id)
    result = service.cancel_subscription(coop.id, coop.admin_id)
    assert result["subscription"].plan.name == "free"
    assert result["subscription"].status == SubscriptionStatus.ACTIVE


def test_cancel_without_subscription(service, coop, plans):
    with pytest.raises(NotFoundError):
        service.cancel_subscription(coop.id, coop.admin_id)


def test_cancel_already_cancelled(db, service, coop, plans):
    _activate(service, coop, plans["starter"])
    subscription = _subscription(db, coop)
    subscription.external_subscription_code = "SUB_abc"
    db.commit()
    assert service.disable_by_subscription_code("SUB_abc") is True
    service.commit()

    with pytest.raises(ConflictError, match="already cancelled"):
        service.cancel_subscription(coop.id, coop.admin_id)


def test_new_paid_subscription_after_provider_disable_reuses_row(db, service, coop, plans):
    _activate(service, coop, plans["starter"])
    subscription = _subscription(db, coop)
    subscription.external_subscription_code = "SUB_abc"
    db.commit()
    service.disable_by_subscription_code("SUB_abc")
    service.commit()

    result = service.initialize_subscription(coop.id, plans["business"].id, coop.admin_id)
    assert result.requires_payment is True
    assert db.query(Subscription).count() == 1
    assert _subscription(db, coop).status == SubscriptionStatus.PENDING


# Change plan

def test_upgrade_is_prorated_and_applied_on_payment(db, service, provider, clock, coop, plans):
    clock.set(datetime(2025, 1, 1))
    _activate(service, coop, plans["starter"])

    clock.set(datetime(2025, 1, 16))
    result = service.change_plan(coop.id, plans["business"].id, coop.admin_id)

    assert result["requires_payment"] is True
    assert result["amount"] == 516130
    assert result["reference"].startswith("upgrade_")
    assert result["message"] == "Pay NGN 5,161.30 to upgrade to Business"
    assert provider.initialized[-1]["metadata"]["type"] == "upgrade"

    # Plan only changes once the upgrade is paid
    assert _subscription(db, coop).plan.name == "starter"

    service.verify_payment(result["reference"], coop.admin_id)
    subscription = _subscription(db, coop)
    assert subscription.plan.name == "business"
    assert subscription.current_period_start == datetime(2025, 1, 1)
    assert subscription.current_period_end == datetime(2025, 2, 1)
    assert ActivityAction.SUBSCRIPTION_UPGRADE_INITIATED.value in _actions(db, coop)


def test_upgrade_from_free_charges_full_price_for_new_period(db, service, clock, coop, plans):
    service.initialize_subscription(coop.id, plans["free"].id, coop.admin_id)
    result = service.change_plan(coop.id, plans["starter"].id, coop.admin_id)
    assert result["amount"] == 500000

    service.verify_payment(result["reference"], coop.admin_id)
    subscription = _subscription(db, coop)
    assert subscription.plan.name == "starter"
    assert subscription.current_period_start == datetime(2025, 1, 15, 10, 0)
    assert subscription.current_period_end == datetime(2025, 2, 15, 10, 0)


def test_failed_upgrade_keeps_current_plan_active(db, service, provider, coop, plans):
    _activate(service, coop, plans["starter"])
    result = service.change_plan(coop.id, plans["business"].id, coop.admin_id)
    provider.settle(result["reference"], status="failed")

    with pytest.raises(ValidationError):
        service.verify_payment(result["reference"], coop.admin_id)
    subscription = _subscription(db, coop)
    assert subscription.status == SubscriptionStatus.ACTIVE
    assert subscription.plan.name == "starter"


def test_downgrade_keeps_paid_limits_until_period_end(db, service, clock, coop, plans):
    _activate(service, coop, plans["business"])
    result = service.change_plan(coop.id, plans["starter"].id, coop.admin_id)

    assert result["requires_payment"] is False
    assert "next billing period" in result["message"]
    assert result["subscription"].plan.name == "starter"
    assert result["subscription"].previous_plan.name == "business"
    assert db.query(SubscriptionPayment).count() == 1
    assert compute_usage(db, coop.id, now=clock()).usage.members.limit == 500

    clock.set(datetime(2025, 2, 16))
    subscription = service.get_subscription(coop.id, coop.admin_id)
    assert subscription.previous_plan_id is None
    assert compute_usage(db, coop.id, now=clock()).usage.members.limit == 100


def test_changing_back_cancels_scheduled_downgrade(db, service, coop, plans):
    _activate(service, coop, plans["business"])
    service.change_plan(coop.id, plans["starter"].id, coop.admin_id)
    result = service.change_plan(coop.id, plans["business"].id, coop.admin_id)

    assert result["requires_payment"] is False
    subscription = _subscription(db, coop)
    assert subscription.plan.name == "business"
    assert subscription.previous_plan_id is None
    assert db.query(SubscriptionPayment).count() == 1


def test_change_to_free_plan_is_immediate(db, service, coop, plans):
    _activate(service, coop, plans["starter"])
    result = service.change_plan(coop.id, plans["free"].id, coop.admin_id)

    assert result["requires_payment"] is False
    subscription = _subscription(db, coop)
    assert subscription.plan.name == "free"
    assert subscription.status == SubscriptionStatus.ACTIVE


def test_change_to_same_plan_rejected(service, coop, plans):
    _activate(service, coop, plans["starter"])
    with pytest.raises(ConflictError, match="already on this plan"):
        service.change_plan(coop.id, plans["starter"].id, coop.admin_id)


def test_change_plan_requires_active_subscription(service, coop, plans):
    service.initialize_subscription(coop.id, plans["starter"].id, coop.admin_id)
    with pytest.raises(ConflictError):
        service.change_plan(coop.id, plans["business"].id, coop.admin_id)


def test_change_plan_without_subscription(service, coop, plans):
    with pytest.raises(NotFoundError):
        service.change_plan(coop.id, plans["business"].id, coop.admin_id)


# Failures outside verify

def test_failure_on_renewal_marks_active_subscription_past_due(db, service, coop, plans):
    _activate(service, coop, plans["starter"])
    subscription = _subscription(db, coop)
    subscription.external_subscription_code = "SUB_abc"
    db.commit()

    assert service.mark_past_due_by_code("SUB_abc", "Insufficient funds") is True
    service.commit()
    assert _subscription(db, coop).status == SubscriptionStatus.PAST_DUE
    # Entitlements kept while past due
    assert compute_usage(db, coop.id, now=service.clock()).plan.name == "starter"
    assert db.query(Notification).filter(Notification.type == "payment_failed").count() == 1


def test_abandoned_checkout_does_not_touch_free_plan(db, service, provider, coop, plans):
    init = service.initialize_subscription(coop.id, plans["starter"].id, coop.admin_id)
    service.initialize_subscription(coop.id, plans["free"].id, coop.admin_id)
    provider.settle(init.reference, status="abandoned")

    with pytest.raises(ValidationError, match="not successful"):
        service.verify_payment(init.reference, coop.admin_id)

    subscription = _subscription(db, coop)
    assert subscription.plan.name == "free"
    assert subscription.status == SubscriptionStatus.ACTIVE
    payment = db.query(SubscriptionPayment).filter(SubscriptionPayment.external_reference == init.reference).one()
    assert payment.status == PaymentStatus.FAILED
    assert db.query(Notification).filter(Notification.type == "payment_failed").count() == 0


def test_failure_of_superseded_checkout_keeps_new_one_pending(db, service, clock, coop, plans):
    first = service.initialize_subscription(coop.id, plans["starter"].id, coop.admin_id)
    clock.advance(minutes=5)
    service.initialize_subscription(coop.id, plans["starter"].id, coop.admin_id)

    payment, changed = service.apply_payment_failure(first.reference, "Declined")
    service.commit()

    assert changed is True
    assert payment.status == PaymentStatus.FAILED
    assert _subscription(db, coop).status == SubscriptionStatus.PENDING
    assert db.query(Notification).filter(Notification.type == "payment_failed").count() == 0


def test_late_success_after_failure_is_ignored(db, service, provider, coop, plans):
    init = service.initialize_subscription(coop.id, plans["starter"].id, coop.admin_id)
    service.apply_payment_failure(init.reference, "Declined")
    service.commit()

    provider.settle(init.reference)
    payment, applied = service.apply_payment_success(provider.transactions[init.reference])
    service.commit()
    assert applied is False
    assert payment.status == PaymentStatus.FAILED
    assert _subscription(db, coop).status == SubscriptionStatus.PENDING
