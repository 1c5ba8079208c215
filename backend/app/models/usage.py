"""
Usage tracking per billing period.
"""
import uuid
from datetime import datetime
from sqlalchemy import Column, DateTime, ForeignKey, Integer, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.base import Base


class UsagePeriod(Base):
    """
    Usage counters for one (subscription, billing period) pair.

    Counters only grow within a period. A new row is appended for every new
    period, so older rows double as the audit trail.
    """

    __tablename__ = "usage_periods"
    __table_args__ = (
        UniqueConstraint(
            "subscription_id", "period_start", "period_end",
            name="uq_usage_periods_subscription_period",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    subscription_id = Column(
        UUID(as_uuid=True),
        ForeignKey("subscriptions.id"),
        nullable=False,
        index=True,
    )

    # Quota period
    period_start = Column(DateTime, nullable=False)
    period_end = Column(DateTime, nullable=False)

    # Counters
    images_generated_count = Column(Integer, default=0, nullable=False)
    models_trained_count = Column(Integer, default=0, nullable=False)

    # Plan limits at the time the period opened (null = unlimited)
    image_generation_limit = Column(Integer, nullable=True)
    model_training_limit = Column(Integer, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    # Relationships
    subscription = relationship("Subscription")

    def __repr__(self):
        return (
            f"<UsagePeriod(subscription_id={self.subscription_id}, "
            f"images={self.images_generated_count}/{self.image_generation_limit}, "
            f"models={self.models_trained_count}/{self.model_training_limit})>"
        )

