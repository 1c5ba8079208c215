"""
API endpoints for image generation.

Endpoints:
- POST /images/generate - Generate images from a prompt
- GET /images - Gallery of generated images
"""
import uuid

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from app.api.deps import get_blob_storage, get_image_client
from app.core.auth import get_current_user
from app.core.config import settings
from app.core.quota import enforce_quota
from app.core.rate_limit import limiter
from app.db.base import get_db
from app.models import GeneratedImage, User
from app.schemas import GeneratedImageDetail, GeneratedImageList, ImageGenerationRequest
from app.services.image_archiver import ImageArchiver
from app.services.providers import ImageProviderClient, ProviderError
from app.services.storage import BlobStorage
from app.services.usage_meter import UsageMeter
import logging

logger = logging.getLogger(__name__)

router = APIRouter()


def provider_input(payload: ImageGenerationRequest) -> dict:
    """Map a generation request to the image model's input."""
    return {
        "prompt": payload.prompt,
        "go_fast": True,
        "guidance": payload.guidance,
        "megapixels": "1",
        "num_outputs": payload.num_outputs,
        "aspect_ratio": payload.aspect_ratio,
        "output_format": payload.output_format,
        "output_quality": payload.output_quality,
        "prompt_strength": 0.8,
        "num_inference_steps": payload.num_inference_steps,
    }


@router.post("/generate", response_model=GeneratedImageDetail)
@limiter.limit("30/minute")
async def generate_images(
    request: Request,
    payload: ImageGenerationRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage: BlobStorage = Depends(get_blob_storage),
    image_client: ImageProviderClient = Depends(get_image_client),
):
    """
    Generate images and store them in the user's gallery.

    The generation counts against the quota only after it succeeded.
    """
    meter = UsageMeter(db)
    enforce_quota(meter, current_user, "generate_image")

    model = settings.image_model_dev if payload.model == "flux-dev" else settings.image_model_schnell
    params = provider_input(payload)

    try:
        source_urls = await image_client.generate(model, params)
    except ProviderError as e:
        logger.error(f"Image generation failed for user {current_user.id}: {str(e)}")
        raise HTTPException(status_code=502, detail="Image generation failed") from e

    image_id = uuid.uuid4()
    archived_urls = await ImageArchiver(storage, image_client).archive(current_user.id, image_id, source_urls)

    image = GeneratedImage(
        id=image_id,
        user_id=current_user.id,
        model=payload.model,
        prompt=payload.prompt,
        parameters=params,
        image_urls=archived_urls,
        source_urls=source_urls,
    )
    db.add(image)
    db.commit()
    db.refresh(image)
    logger.info(f"Generated {len(archived_urls)} image(s) for user {current_user.id}")

    meter.increment(current_user.id, "generate_image")
    return image


@router.get("", response_model=GeneratedImageList)
async def list_images(
    skip: int = 0,
    limit: int = 50,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Get the user's generated images, newest first."""
    query = db.query(GeneratedImage).filter(GeneratedImage.user_id == current_user.id)
    total = query.count()
    images = query.order_by(GeneratedImage.created_at.desc()).offset(skip).limit(limit).all()
    return GeneratedImageList(total=total, images=images)
