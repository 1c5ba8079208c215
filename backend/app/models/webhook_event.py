"""
Webhook delivery log, used for idempotency and auditing.
"""
import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Boolean, Integer, Text
from sqlalchemy.dialects.postgresql import UUID, JSONB

from app.db.base import Base


class WebhookEvent(Base):
    """
    One row per provider event id.

    The unique external_event_id is the idempotency key: a delivery whose row
    is already processed is acknowledged without running any handler.
    """

    __tablename__ = "webhook_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    source = Column(String(50), nullable=False, index=True)  # payment, training
    external_event_id = Column(String(255), unique=True, nullable=False, index=True)
    event_type = Column(String(100), nullable=False, index=True)
    payload = Column(JSONB, nullable=False, default=dict)

    # Processing outcome
    processed = Column(Boolean, default=False, nullable=False)
    processing_error = Column(Text, nullable=True)
    attempts = Column(Integer, default=0, nullable=False)

    received_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    processed_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<WebhookEvent(id={self.external_event_id}, type={self.event_type}, processed={self.processed})>"
