"""
Archive generated images into blob storage.

Provider output URLs expire, so each image is copied into our own storage.
When copying fails the provider URL is kept; the generation itself already
succeeded and must not be lost.
"""
import logging
from typing import List
from urllib.parse import urlparse
from uuid import UUID

from app.services.providers import ProviderClient
from app.services.storage import BlobStorage

logger = logging.getLogger(__name__)

CONTENT_TYPES = {
    ".webp": "image/webp",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
}


def _extension(url: str) -> str:
    path = urlparse(url).path.lower()
    for ext in CONTENT_TYPES:
        if path.endswith(ext):
            return ext
    return ".webp"


class ImageArchiver:
    """Copies provider image URLs into blob storage."""

    def __init__(self, storage: BlobStorage, client: ProviderClient):
        self.storage = storage
        self.client = client

    async def archive(self, user_id: UUID, image_id: UUID, urls: List[str]) -> List[str]:
        """
        Archive each URL, falling back to the original URL per image on failure.

        Returns:
            URLs in the same order as the input
        """
        archived = []
        for index, url in enumerate(urls):
            ext = _extension(url)
            key = f"images/{user_id}/{image_id}-{index}{ext}"
            try:
                data = await self.client.fetch_bytes(url)
                self.storage.put(key, data, content_type=CONTENT_TYPES[ext])
                archived.append(self.storage.public_url(key))
            except Exception as e:
                logger.warning(f"Keeping provider URL for image {image_id}-{index}, archiving failed: {str(e)}")
                archived.append(url)
        return archived
