"""
Paystack webhook reconciliation.

Every verified event is stored in paystack_webhook_events before anything else
happens, keyed by a deterministic id, so a redelivery never applies its side
effects twice. Dispatch and the processed flag commit together; a failure
rolls dispatch back, records the error on the event row and leaves it
unprocessed for scripts/retry_webhook_events.py.

The caller always acknowledges the delivery. Processing errors never reach
Paystack as a non-2xx.
"""
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple
import logging
from app.core.exceptions import NotFoundError, ReconciliationError
from app.models.webhook_event import PaystackWebhookEvent
from app.schemas.paystack import ProviderTransaction
from app.services.subscription_lifecycle import SubscriptionService

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 2000


def synthesize_event_id(event_type: str, data: Dict[str, Any], now: Optional[datetime] = None) -> str:
    """
    Paystack events carry no envelope id. Use "<type>:<data.id>" when the
    object has an id; otherwise fall back to "<type>_<epoch ms>", which is
    not deduplicated.
    """
    object_id = data.get("id") if isinstance(data, dict) else None
    if object_id is not None and str(object_id) != "":
        return f"{event_type}:{object_id}"
    now = now or datetime.utcnow()
    epoch_ms = int((now - datetime(1970, 1, 1)).total_seconds() * 1000)
    return f"{event_type}_{epoch_ms}"


class WebhookReconciler:
    def __init__(self, db: Session, provider=None, clock: Optional[Callable[[], datetime]] = None):
        self.db = db
        self.provider = provider
        self.clock = clock or datetime.utcnow
        self._handlers = {
            "charge.success": self._handle_charge_success,
            "invoice.payment_failed": self._handle_invoice_payment_failed,
            "subscription.create": self._handle_subscription_create,
            "subscription.disable": self._handle_subscription_disable,
            "subscription.not_renew": self._handle_subscription_not_renew,
            "refund.processed": self._handle_refund_processed,
        }

    def handle_delivery(self, event: Dict[str, Any]) -> Tuple[Optional[PaystackWebhookEvent], bool]:
        """Unpack a decoded webhook body ({"event": ..., "data": {...}}) and handle it."""
        event_type = event.get("event") if isinstance(event, dict) else None
        if not event_type:
            logger.warning("[WEBHOOK] Ignoring payload without an event type")
            return None, False
        data = event.get("data")
        if not isinstance(data, dict):
            data = {}
        return self.handle_event(event_type, data)

    def handle_event(self, event_type: str, payload: Dict[str, Any],
                     event_id: Optional[str] = None) -> Tuple[Optional[PaystackWebhookEvent], bool]:
        """
        Record and apply one verified event.

        Returns (event_row, already_processed). A redelivery of an event that
        was already processed comes back with already_processed=True and
        changes nothing.
        """
        event_id = event_id or synthesize_event_id(event_type, payload, self.clock())
        existing = self.db.query(PaystackWebhookEvent).filter(
            PaystackWebhookEvent.external_event_id == event_id
        ).first()
        if existing is not None and existing.processed:
            logger.info(f"[WEBHOOK] Event {event_id} already processed")
            return existing, True

        self._record(event_id, event_type, payload)
        return self.process(event_id)

    def _record(self, event_id: str, event_type: str, data: Dict[str, Any]):
        try:
            with self.db.begin_nested():
                self.db.add(PaystackWebhookEvent(
                    external_event_id=event_id,
                    event_type=event_type,
                    payload=data,
                    processed=False,
                    received_at=self.clock(),
                ))
            logger.info(f"[WEBHOOK] Stored event {event_id}")
        except IntegrityError:
            # Redelivery: an unprocessed row takes the latest payload, a processed one is left alone
            existing = self.db.query(PaystackWebhookEvent).filter(
                PaystackWebhookEvent.external_event_id == event_id
            ).first()
            if existing is not None and not existing.processed:
                existing.payload = data
            logger.info(f"[WEBHOOK] Event {event_id} already recorded")
        self.db.commit()

    def process(self, event_id: str) -> Tuple[Optional[PaystackWebhookEvent], bool]:
        """Apply a stored event unless it has already been processed. Returns (event_row, already_processed)."""
        event_row = self.db.query(PaystackWebhookEvent).filter(
            PaystackWebhookEvent.external_event_id == event_id
        ).with_for_update().populate_existing().first()
        if event_row is None:
            return None, False
        if event_row.processed:
            self.db.commit()
            logger.info(f"[WEBHOOK] Event {event_id} already processed, skipping")
            return event_row, True

        service = SubscriptionService(self.db, provider=self.provider, clock=self.clock)
        event_type = event_row.event_type
        data = event_row.payload or {}
        try:
            handler = self._handlers.get(event_type)
            if handler is None:
                logger.info(f"[WEBHOOK] Unhandled event type {event_type}")
            else:
                handler(service, data)
            event_row.processed = True
            event_row.processed_at = self.clock()
            event_row.error = None
            service.commit()
            logger.info(f"[WEBHOOK] Processed event {event_id} ({event_type})")
        except Exception as e:
            failure = e if isinstance(e, ReconciliationError) else ReconciliationError(f"{type(e).__name__}: {str(e)}")
            logger.exception(f"[WEBHOOK] Failed to process event {event_id} ({event_type}): {failure.message}")
            service.rollback()
            event_row = self.db.query(PaystackWebhookEvent).filter(
                PaystackWebhookEvent.external_event_id == event_id
            ).first()
            if event_row is not None:
                event_row.processed = False
                event_row.error = failure.message[:MAX_ERROR_LENGTH]
                self.db.commit()
        return event_row, False

    # Handlers. They flush through the service; process() commits.

    def _handle_charge_success(self, service: SubscriptionService, data: Dict[str, Any]):
        transaction = ProviderTransaction.from_paystack(data)
        if not transaction.reference:
            logger.warning("[WEBHOOK] charge.success without a reference")
            return
        if transaction.status and transaction.status != "success":
            logger.warning(f"[WEBHOOK] charge.success for {transaction.reference} has status {transaction.status}")
            return
        try:
            service.apply_payment_success(transaction)
        except NotFoundError:
            # Charges we did not initiate (e.g. provider-side renewals) have no payment row
            logger.info(f"[WEBHOOK] No payment for reference {transaction.reference}")

    def _handle_invoice_payment_failed(self, service: SubscriptionService, data: Dict[str, Any]):
        transaction = data.get("transaction") or {}
        reference = data.get("reference") or transaction.get("reference")
        reason = data.get("description") or "Invoice payment failed"
        if reference:
            payment, _ = service.apply_payment_failure(reference, reason)
            if payment is not None:
                return
        subscription_code = (data.get("subscription") or {}).get("subscription_code")
        if not subscription_code or not service.mark_past_due_by_code(subscription_code, reason):
            logger.info(f"[WEBHOOK] invoice.payment_failed matched nothing (reference={reference}, "
                        f"subscription={subscription_code})")

    def _handle_subscription_create(self, service: SubscriptionService, data: Dict[str, Any]):
        customer_code = (data.get("customer") or {}).get("customer_code")
        service.record_provider_subscription(
            customer_code,
            data.get("subscription_code"),
            data.get("email_token"),
        )

    def _handle_subscription_disable(self, service: SubscriptionService, data: Dict[str, Any]):
        service.disable_by_subscription_code(data.get("subscription_code"))

    def _handle_subscription_not_renew(self, service: SubscriptionService, data: Dict[str, Any]):
        service.schedule_cancellation_by_code(data.get("subscription_code"))

    def _handle_refund_processed(self, service: SubscriptionService, data: Dict[str, Any]):
        transaction = data.get("transaction") or {}
        reference = data.get("transaction_reference") or transaction.get("reference")
        if not reference or not service.mark_payment_refunded(reference):
            logger.info(f"[WEBHOOK] refund.processed matched no successful payment ({reference})")


def retry_unprocessed_events(db: Session, provider=None, limit: int = 100,
                             event_type: Optional[str] = None) -> Tuple[int, int]:
    """Re-run stored events with processed = false, oldest first. Returns (succeeded, failed)."""
    query = db.query(PaystackWebhookEvent.external_event_id).filter(
        PaystackWebhookEvent.processed.is_(False)
    )
    if event_type:
        query = query.filter(PaystackWebhookEvent.event_type == event_type)
    event_ids = [row[0] for row in query.order_by(PaystackWebhookEvent.received_at.asc()).limit(limit).all()]
    db.commit()

    reconciler = WebhookReconciler(db, provider=provider)
    succeeded = failed = 0
    for event_id in event_ids:
        event_row, _ = reconciler.process(event_id)
        if event_row is not None and event_row.processed:
            succeeded += 1
        else:
            failed += 1
    logger.info(f"[WEBHOOK] Retried {len(event_ids)} events: {succeeded} processed, {failed} failed")
    return succeeded, failed
