"""
Payment transaction model.
"""
import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, ForeignKey, Numeric, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.base import Base


class PaymentTransaction(Base):
    """One row per provider payment id, upserted by payment webhooks."""

    __tablename__ = "payment_transactions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    subscription_id = Column(UUID(as_uuid=True), ForeignKey("subscriptions.id"), nullable=True, index=True)

    external_payment_id = Column(String(255), unique=True, nullable=False, index=True)

    amount = Column(Numeric(10, 2), nullable=False)  # Major currency units
    currency = Column(String(3), nullable=False, default="USD")
    status = Column(String(50), nullable=False)  # pending, succeeded, failed, refunded
    payment_method = Column(String(100), nullable=True)
    billing_period = Column(String(20), nullable=True)
    failure_reason = Column(Text, nullable=True)
    refunded_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    user = relationship("User")
    subscription = relationship("Subscription")

    def __repr__(self):
        return f"<PaymentTransaction(external_payment_id={self.external_payment_id}, status={self.status})>"
