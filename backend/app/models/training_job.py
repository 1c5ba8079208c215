"""
Training job model for tracking remote model training runs.
"""
import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, ForeignKey, Integer, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.base import Base

TERMINAL_STATUSES = ("completed", "failed")


class TrainingJob(Base):
    """
    Training job model.

    Registered as ``pending`` when the training request is submitted, then
    driven forward exclusively by training provider callbacks.
    """

    __tablename__ = "training_jobs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    model_name = Column(String(255), nullable=False)
    gender = Column(String(20), nullable=True)
    training_data_key = Column(String(500), nullable=True)  # Blob storage key of the uploaded zip
    training_data_url = Column(Text, nullable=True)

    # Status tracking
    status = Column(String(50), default="pending", nullable=False, index=True)
    # Status values: pending, training, completed, failed (other provider statuses stored verbatim)
    progress = Column(Integer, default=0, nullable=False)
    error_message = Column(Text, nullable=True)

    # Provider integration
    external_job_id = Column(String(255), unique=True, nullable=True, index=True)
    model_id = Column(String(255), nullable=True)
    model_version = Column(String(255), nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    # Relationships
    user = relationship("User", back_populates="training_jobs")

    def __repr__(self):
        return f"<TrainingJob(id={self.id}, status={self.status}, progress={self.progress}%)>"

    @property
    def is_terminal_state(self) -> bool:
        """Check if job is in a terminal state (completed, failed)."""
        return self.status in TERMINAL_STATUSES
