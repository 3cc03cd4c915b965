from sqlalchemy import Column, String, DateTime, Integer, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
import uuid
from datetime import datetime
from app.db.session import Base


class Loan(Base):
    __tablename__ = "loans"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    cooperative_id = Column(UUID(as_uuid=True), ForeignKey("cooperatives.id", ondelete="CASCADE"), nullable=False, index=True)
    member_id = Column(UUID(as_uuid=True), ForeignKey("members.id", ondelete="CASCADE"), nullable=True, index=True)
    amount = Column(Integer, nullable=False)  # Minor units
    status = Column(String, default="pending", nullable=False)  # pending, approved, disbursed, repaid, rejected
    requested_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
