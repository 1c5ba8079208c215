"""
Blob storage abstraction.

Stores training data archives and archived generated images. Keys are
slash-separated relative paths; ``public_url`` turns a key into a URL the
training and image providers (and the browser) can fetch.
"""
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from app.core.config import settings

logger = logging.getLogger(__name__)


class BlobStorage(ABC):
    """Abstract base class for blob storage operations."""

    @abstractmethod
    def put(self, key: str, data: bytes, content_type: Optional[str] = None) -> str:
        """
        Store a blob.

        Args:
            key: Relative key, e.g. "training-data/{user_id}/{name}.zip"
            data: Blob contents
            content_type: Optional MIME type

        Returns:
            The key the blob was stored under
        """
        pass

    @abstractmethod
    def get(self, key: str) -> bytes:
        """Read a blob. Raises FileNotFoundError when the key is unknown."""
        pass

    @abstractmethod
    def public_url(self, key: str) -> str:
        """Get the public URL of a stored blob."""
        pass


class LocalBlobStorage(BlobStorage):
    """
    Local filesystem storage implementation.

    Stores files under a base directory that the app serves at
    ``settings.blob_public_base_url``:
    storage/
      training-data/
        {user_id}/
          {timestamp}-{filename}.zip
      images/
        {user_id}/
          {image_id}-{n}.webp
    """

    def __init__(self, base_path: str = None, public_base_url: str = None):
        self.base_path = Path(base_path or settings.blob_storage_path)
        self.public_base_url = (public_base_url or settings.blob_public_base_url).rstrip("/")

        # Create directory if it doesn't exist
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        path = (self.base_path / key).resolve()
        if self.base_path.resolve() not in path.parents:
            raise ValueError(f"Invalid blob key: {key}")
        return path

    def put(self, key: str, data: bytes, content_type: Optional[str] = None) -> str:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "wb") as f:
            f.write(data)
        logger.debug(f"Stored blob {key} ({len(data)} bytes)")
        return key

    def get(self, key: str) -> bytes:
        path = self._path(key)
        if not path.exists():
            raise FileNotFoundError(f"Blob not found: {key}")
        with open(path, "rb") as f:
            return f.read()

    def public_url(self, key: str) -> str:
        return f"{self.public_base_url}/{key}"
