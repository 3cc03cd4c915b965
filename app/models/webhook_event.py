from sqlalchemy import Column, String, DateTime, JSON, Boolean, Text
from sqlalchemy.dialects.postgresql import UUID
import uuid
from datetime import datetime
from app.db.session import Base


class PaystackWebhookEvent(Base):
    """Append-only log of inbound Paystack events. external_event_id is the dedup key."""
    __tablename__ = "paystack_webhook_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    external_event_id = Column(String, nullable=False, unique=True, index=True)
    event_type = Column(String, nullable=False, index=True)  # charge.success, subscription.disable, ...
    payload = Column(JSON, nullable=False)  # Raw "data" object from Paystack
    processed = Column(Boolean, default=False, nullable=False, index=True)
    error = Column(Text, nullable=True)  # Last processing error, if any
    received_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    processed_at = Column(DateTime, nullable=True)
