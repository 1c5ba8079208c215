"""
Subscription plan catalog and per-user subscription records.
"""
import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Integer, ForeignKey, Text, Boolean, Numeric, Index, text
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import relationship

from app.db.base import Base


class SubscriptionPlan(Base):
    """Plan catalog entry. Read-mostly, seeded at deploy time."""

    __tablename__ = "subscription_plans"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(50), unique=True, nullable=False, index=True)  # free, pro, enterprise
    display_name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)

    price = Column(Numeric(10, 2), nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="USD")
    billing_cycle = Column(String(20), nullable=False, default="monthly")  # monthly, yearly

    # Quotas per billing period (null = unlimited)
    image_generation_limit = Column(Integer, nullable=True)
    model_training_limit = Column(Integer, nullable=True)

    features = Column(JSONB, nullable=False, default=dict)
    is_active = Column(Boolean, default=True, nullable=False)

    # Payment provider product id (null for the free plan)
    external_plan_id = Column(String(255), unique=True, nullable=True, index=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<SubscriptionPlan(name={self.name}, images={self.image_generation_limit}, models={self.model_training_limit})>"


class Subscription(Base):
    """
    Subscription model - one record per user per provider subscription.

    Rows are created by the free-trial auto-provisioning path or by payment
    webhooks, updated only by webhook handlers, and never deleted.
    """

    __tablename__ = "subscriptions"
    __table_args__ = (
        # At most one subscription without a provider id (the free trial) per user
        Index(
            "uq_subscriptions_user_unlinked",
            "user_id",
            unique=True,
            postgresql_where=text("external_subscription_id IS NULL"),
            sqlite_where=text("external_subscription_id IS NULL"),
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    plan_id = Column(UUID(as_uuid=True), ForeignKey("subscription_plans.id"), nullable=False)

    status = Column(String(50), nullable=False)  # trialing, active, past_due, cancelled, expired

    # Billing period
    current_period_start = Column(DateTime, nullable=False)
    current_period_end = Column(DateTime, nullable=False)
    trial_start = Column(DateTime, nullable=True)
    trial_end = Column(DateTime, nullable=True)
    cancel_at_period_end = Column(Boolean, default=False, nullable=False)
    cancelled_at = Column(DateTime, nullable=True)

    # Payment provider integration
    external_subscription_id = Column(String(255), unique=True, nullable=True, index=True)
    external_customer_id = Column(String(255), nullable=True, index=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    # Relationships
    user = relationship("User", back_populates="subscriptions")
    plan = relationship("SubscriptionPlan")

    def __repr__(self):
        return f"<Subscription(id={self.id}, user_id={self.user_id}, status={self.status})>"
