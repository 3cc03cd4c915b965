"""
Paystack webhook handler.
Verifies the x-paystack-signature header, stores the event and reconciles it
synchronously. Anything past signature verification is acknowledged with 200
so Paystack does not retry events we have already stored.
"""
from fastapi import APIRouter, Request, Header, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from app.db.session import get_db
from app.services.paystack import PaystackClient, get_paystack_client
from app.services.webhook_reconciler import WebhookReconciler
from typing import Optional
import json
import logging

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/paystack")
async def paystack_webhook(
    request: Request,
    db: Session = Depends(get_db),
    provider: PaystackClient = Depends(get_paystack_client),
    paystack_signature: Optional[str] = Header(None, alias="x-paystack-signature"),
):
    """
    Handle Paystack webhook events.

    - 401 if the signature does not match
    - 200 for everything else, including payloads we cannot process
    """
    body = await request.body()

    if not provider.verify_webhook_signature(body, paystack_signature):
        logger.warning(f"[WEBHOOK] Invalid Paystack signature (header present: {paystack_signature is not None})")
        return JSONResponse(status_code=401, content={"status": "error", "message": "Invalid signature"})

    try:
        event = json.loads(body)
    except ValueError as e:
        logger.error(f"[WEBHOOK] Invalid payload: {str(e)}")
        return JSONResponse(status_code=200, content={"status": "received", "message": "Invalid payload"})

    try:
        reconciler = WebhookReconciler(db, provider=provider)
        event_row, already_processed = reconciler.handle_delivery(event)
        if already_processed:
            return JSONResponse(status_code=200, content={"status": "received", "message": "Event already processed"})
        if event_row is not None and event_row.error:
            return JSONResponse(status_code=200, content={"status": "received", "message": "Event stored, processing failed"})
    except Exception as e:
        # Event could not even be recorded; log and acknowledge
        logger.exception(f"[WEBHOOK] Unexpected error handling Paystack event: {str(e)}")
        db.rollback()
        return JSONResponse(status_code=200, content={"status": "received", "message": "Webhook received (error logged)"})

    return JSONResponse(status_code=200, content={"status": "received"})
