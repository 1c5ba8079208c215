"""
Generated image gallery model.
"""
import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, ForeignKey, Text
from sqlalchemy.dialects.postgresql import UUID, JSONB

from app.db.base import Base


class GeneratedImage(Base):
    """One row per successful generation request (may hold several images)."""

    __tablename__ = "generated_images"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    model = Column(String(255), nullable=False)
    prompt = Column(Text, nullable=False)
    parameters = Column(JSONB, nullable=False, default=dict)

    image_urls = Column(JSONB, nullable=False, default=list)  # Archived (or fallback) URLs
    source_urls = Column(JSONB, nullable=False, default=list)  # URLs returned by the provider

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<GeneratedImage(id={self.id}, model={self.model}, images={len(self.image_urls or [])})>"
