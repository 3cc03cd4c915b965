from sqlalchemy import Column, String, DateTime, Integer, JSON, Text, ForeignKey, Enum as SQLEnum
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
import uuid
from datetime import datetime
import enum
from app.db.session import Base


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    REFUNDED = "refunded"


class TransactionType(str, enum.Enum):
    SUBSCRIPTION = "subscription"  # First payment / re-subscription
    UPGRADE = "upgrade"  # Prorated mid-cycle upgrade


class SubscriptionPayment(Base):
    __tablename__ = "subscription_payments"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    subscription_id = Column(UUID(as_uuid=True), ForeignKey("subscriptions.id"), nullable=False, index=True)
    amount = Column(Integer, nullable=False)  # Minor units (kobo)
    external_reference = Column(String, nullable=False, unique=True, index=True)  # Idempotency key
    status = Column(
        SQLEnum(PaymentStatus, name="payment_status", native_enum=False,
                values_callable=lambda e: [m.value for m in e]),
        default=PaymentStatus.PENDING,
        nullable=False,
        index=True,
    )
    transaction_type = Column(
        SQLEnum(TransactionType, name="transaction_type", native_enum=False,
                values_callable=lambda e: [m.value for m in e]),
        default=TransactionType.SUBSCRIPTION,
        nullable=False,
    )
    target_plan_id = Column(UUID(as_uuid=True), ForeignKey("subscription_plans.id"), nullable=True)  # Plan this payment buys
    billing_cycle = Column(String, nullable=True)
    period_start = Column(DateTime, nullable=False)
    period_end = Column(DateTime, nullable=False)
    external_transaction_id = Column(String, nullable=True)
    paid_at = Column(DateTime, nullable=True)
    channel = Column(String, nullable=True)  # card, bank, ussd, ...
    card_last4 = Column(String(4), nullable=True)  # Display only, never the full PAN
    card_brand = Column(String, nullable=True)
    card_exp_month = Column(String(2), nullable=True)
    card_exp_year = Column(String(4), nullable=True)
    failure_reason = Column(Text, nullable=True)
    payment_metadata = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    subscription = relationship("Subscription", back_populates="payments")
