from sqlalchemy import Column, String, DateTime, Boolean, Text, ForeignKey, Enum as SQLEnum
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
import uuid
from datetime import datetime
import enum
from app.db.session import Base


class SubscriptionStatus(str, enum.Enum):
    PENDING = "pending"  # Awaiting first payment
    ACTIVE = "active"
    PAST_DUE = "past_due"  # A charge failed; entitlements kept
    CANCELLED = "cancelled"


class BillingCycle(str, enum.Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    cooperative_id = Column(UUID(as_uuid=True), ForeignKey("cooperatives.id"), nullable=False, unique=True, index=True)
    plan_id = Column(UUID(as_uuid=True), ForeignKey("subscription_plans.id"), nullable=False, index=True)
    previous_plan_id = Column(UUID(as_uuid=True), ForeignKey("subscription_plans.id"), nullable=True)  # Still in effect until current_period_end after a downgrade
    status = Column(
        SQLEnum(SubscriptionStatus, name="subscription_status", native_enum=False,
                values_callable=lambda e: [m.value for m in e]),
        default=SubscriptionStatus.PENDING,
        nullable=False,
        index=True,
    )
    billing_cycle = Column(
        SQLEnum(BillingCycle, name="billing_cycle", native_enum=False,
                values_callable=lambda e: [m.value for m in e]),
        default=BillingCycle.MONTHLY,
        nullable=False,
    )
    current_period_start = Column(DateTime, nullable=False)
    current_period_end = Column(DateTime, nullable=False, index=True)
    cancel_at_period_end = Column(Boolean, default=False, nullable=False)
    cancelled_at = Column(DateTime, nullable=True)
    cancel_reason = Column(Text, nullable=True)
    external_customer_code = Column(String, nullable=True, index=True)  # Paystack CUS_...
    external_subscription_code = Column(String, nullable=True, index=True)  # Paystack SUB_...
    external_email_token = Column(String, nullable=True)  # Needed to disable a Paystack subscription
    created_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    plan = relationship("SubscriptionPlan", foreign_keys=[plan_id])
    previous_plan = relationship("SubscriptionPlan", foreign_keys=[previous_plan_id])
    payments = relationship(
        "SubscriptionPayment",
        back_populates="subscription",
        order_by="SubscriptionPayment.created_at.desc()",
    )
