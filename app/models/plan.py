from sqlalchemy import Column, String, DateTime, Integer, Boolean, JSON, Text
from sqlalchemy.dialects.postgresql import UUID
import uuid
from datetime import datetime
from app.db.session import Base

# Limit sentinels: 0 disables the feature, -1 removes the cap
LIMIT_DISABLED = 0
LIMIT_UNLIMITED = -1


class SubscriptionPlan(Base):
    __tablename__ = "subscription_plans"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False, unique=True, index=True)  # Machine name: free, starter, business, ...
    display_name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    monthly_price = Column(Integer, default=0, nullable=False)  # Minor units (kobo)
    yearly_price = Column(Integer, default=0, nullable=False)  # Minor units (kobo)
    max_members = Column(Integer, default=0, nullable=False)
    max_contribution_plans = Column(Integer, default=0, nullable=False)
    max_loans_per_month = Column(Integer, default=0, nullable=False)
    max_group_buys = Column(Integer, default=0, nullable=False)
    features = Column(JSON, nullable=True)  # Marketing bullet points
    paystack_plan_code = Column(String, nullable=True)  # Optional provider plan code (PLN_...)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    is_popular = Column(Boolean, default=False, nullable=False)
    sort_order = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def price_for(self, billing_cycle) -> int:
        """Price in minor units for a billing cycle ("monthly" or "yearly")."""
        if billing_cycle == "yearly":
            return self.yearly_price
        return self.monthly_price
