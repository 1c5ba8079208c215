"""
API endpoints for model training.

Endpoints:
- POST /training - Upload training data and start a training run
- GET /training - List the user's training jobs
- GET /training/{job_id} - Get one training job
- DELETE /training/{job_id} - Delete a trained model
"""
import re
import time
import uuid
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from sqlalchemy.orm import Session

from app.api.deps import get_blob_storage, get_training_client
from app.core.auth import get_current_user
from app.core.config import settings
from app.core.quota import enforce_quota
from app.core.rate_limit import limiter
from app.db.base import get_db
from app.models import TrainingJob, User
from app.schemas import TrainingJobDetail, TrainingJobList
from app.services.providers import ProviderError, TrainingProviderClient
from app.services.storage import BlobStorage
from app.services.usage_meter import UsageMeter
import logging

logger = logging.getLogger(__name__)

router = APIRouter()

ALLOWED_GENDERS = ("man", "woman", "other")


def _slugify(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
    return slug or "model"


@router.post("", response_model=TrainingJobDetail, status_code=201)
@limiter.limit("10/hour")
async def start_training(
    request: Request,
    model_name: str = Form(...),
    gender: str = Form(...),
    training_data: UploadFile = File(...),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage: BlobStorage = Depends(get_blob_storage),
    training_client: TrainingProviderClient = Depends(get_training_client),
):
    """
    Start training a personal model from a zip of photos.

    Flow:
    1. Validate input and check the model training quota
    2. Upload the zip to blob storage
    3. Create the provider training with a callback URL
    4. Register the job as pending and count it against the quota
    """
    model_name = model_name.strip()
    if not model_name:
        raise HTTPException(status_code=400, detail="Model name is required")
    if gender not in ALLOWED_GENDERS:
        raise HTTPException(status_code=400, detail=f"Gender must be one of: {', '.join(ALLOWED_GENDERS)}")
    filename = training_data.filename or ""
    if not filename.lower().endswith(".zip"):
        raise HTTPException(status_code=400, detail="Training data must be a ZIP file")

    meter = UsageMeter(db)
    enforce_quota(meter, current_user, "train_model")

    data = await training_data.read()
    if not data:
        raise HTTPException(status_code=400, detail="Training data is empty")

    job_id = uuid.uuid4()
    key = f"training-data/{current_user.id}/{int(time.time())}-{_slugify(filename[:-4])}.zip"
    storage.put(key, data, content_type="application/zip")
    data_url = storage.public_url(key)

    query = urlencode({"userId": str(current_user.id), "modelId": str(job_id), "fileName": key})
    webhook_url = f"{settings.public_base_url.rstrip('/')}/webhook/training?{query}"
    destination = f"{settings.training_destination_owner}/{_slugify(model_name)}-{job_id.hex[:8]}"

    try:
        training = await training_client.create_training(
            destination=destination,
            input_images_url=data_url,
            trigger_word=_slugify(model_name).replace("-", "_"),
            webhook_url=webhook_url,
        )
    except ProviderError as e:
        logger.error(f"Failed to start training for user {current_user.id}: {str(e)}")
        raise HTTPException(status_code=502, detail="Training provider unavailable") from e

    job = TrainingJob(
        id=job_id,
        user_id=current_user.id,
        model_name=model_name,
        gender=gender,
        training_data_key=key,
        training_data_url=data_url,
        status="pending",
        progress=0,
        external_job_id=training["id"],
    )
    db.add(job)
    db.commit()
    db.refresh(job)
    logger.info(f"Registered training job {job.id} (provider id {job.external_job_id}) for user {current_user.id}")

    meter.increment(current_user.id, "train_model")
    return job


@router.get("", response_model=TrainingJobList)
async def list_training_jobs(
    skip: int = 0,
    limit: int = 50,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """List the user's training jobs, newest first."""
    query = db.query(TrainingJob).filter(TrainingJob.user_id == current_user.id)
    total = query.count()
    jobs = query.order_by(TrainingJob.created_at.desc()).offset(skip).limit(limit).all()
    return TrainingJobList(total=total, jobs=jobs)


@router.get("/{job_id}", response_model=TrainingJobDetail)
async def get_training_job(
    job_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Get one training job."""
    job = (
        db.query(TrainingJob)
        .filter(TrainingJob.id == job_id, TrainingJob.user_id == current_user.id)
        .first()
    )
    if not job:
        raise HTTPException(status_code=404, detail="Training job not found")
    return job


@router.delete("/{job_id}")
async def delete_training_job(
    job_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    training_client: TrainingProviderClient = Depends(get_training_client),
):
    """
    Delete a trained model.

    The version and model are removed at the provider first; a provider
    failure is logged and the local job is deleted regardless.
    """
    job = (
        db.query(TrainingJob)
        .filter(TrainingJob.id == job_id, TrainingJob.user_id == current_user.id)
        .first()
    )
    if not job:
        raise HTTPException(status_code=404, detail="Training job not found")

    model_id = job.model_id
    version = job.model_version
    # A provisional model id is the provider's training id, not a model
    if model_id and version and model_id != job.external_job_id:
        await training_client.delete_model(model_id, version)

    db.delete(job)
    db.commit()
    logger.info(f"Deleted training job {job_id} for user {current_user.id}")

    return {"message": "Model deleted successfully", "model_id": model_id, "version": version}
