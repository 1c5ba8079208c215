"""
Pydantic schemas for image generation.
"""
import uuid
from datetime import datetime
from typing import Any, Dict, List, Literal
from pydantic import BaseModel, Field


ImageModel = Literal["flux-dev", "flux-schnell"]
AspectRatio = Literal["1:1", "16:9", "9:16", "21:9", "9:21", "4:5", "5:4", "4:3", "3:4", "2:3", "3:2"]
OutputFormat = Literal["webp", "png", "jpg"]


class ImageGenerationRequest(BaseModel):
    model: ImageModel = "flux-dev"
    prompt: str = Field(..., min_length=1, max_length=2000)
    guidance: float = Field(3.5, ge=0, le=10)
    num_outputs: int = Field(1, ge=1, le=4)
    aspect_ratio: AspectRatio = "1:1"
    output_format: OutputFormat = "webp"
    output_quality: int = Field(80, ge=1, le=100)
    num_inference_steps: int = Field(28, ge=1, le=50)


class GeneratedImageDetail(BaseModel):
    id: uuid.UUID
    model: str
    prompt: str
    parameters: Dict[str, Any]
    image_urls: List[str]
    created_at: datetime

    class Config:
        from_attributes = True


class GeneratedImageList(BaseModel):
    total: int
    images: List[GeneratedImageDetail]
