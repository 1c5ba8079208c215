"""
Pydantic schemas for model training.
"""
import uuid
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel


class TrainingJobDetail(BaseModel):
    """Training job as shown to its owner."""
    id: uuid.UUID
    model_name: str
    gender: Optional[str] = None
    status: str
    progress: int
    external_job_id: Optional[str] = None
    model_id: Optional[str] = None
    model_version: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TrainingJobList(BaseModel):
    total: int
    jobs: List[TrainingJobDetail]
