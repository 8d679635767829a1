"""
Local storage for generated assets.

Files land under the uploads directory, which the FastAPI app serves at
/uploads, so a saved file is immediately addressable by the browser.
"""

import logging
import uuid
from pathlib import Path

logger = logging.getLogger(__name__)

EXTENSIONS = {
    "video/mp4": ".mp4",
    "video/webm": ".webm",
    "image/png": ".png",
    "image/jpeg": ".jpg",
}


class StorageBackend:
    """Abstract base class for storage backends."""

    async def save_file(self, file_bytes: bytes, file_path: str, content_type: str = "video/mp4") -> str:
        """
        Save a file and return the URL it is served at.

        Args:
            file_bytes: File contents as bytes
            file_path: Relative path/key for the file
            content_type: MIME type of the file
        """
        raise NotImplementedError

    async def file_exists(self, file_path: str) -> bool:
        raise NotImplementedError

    async def get_file_url(self, file_path: str) -> str:
        raise NotImplementedError


class LocalStorageBackend(StorageBackend):
    """Local filesystem storage backend."""

    def __init__(self, base_dir: str = "uploads", url_prefix: str = "/uploads"):
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.url_prefix = url_prefix.rstrip("/")
        logger.info(f"Initialized local storage at: {self.base_dir}")

    def _resolve(self, file_path: str) -> Path:
        relative = file_path.lstrip("/")
        full_path = (self.base_dir / relative).resolve()
        if not full_path.is_relative_to(self.base_dir.resolve()):
            raise ValueError(f"Path escapes storage directory: {file_path}")
        return full_path

    async def save_file(self, file_bytes: bytes, file_path: str, content_type: str = "video/mp4") -> str:
        full_path = self._resolve(file_path)
        full_path.parent.mkdir(parents=True, exist_ok=True)
        with open(full_path, "wb") as f:
            f.write(file_bytes)
        logger.info(f"Saved file locally: {full_path} ({content_type}, {len(file_bytes)} bytes)")
        return await self.get_file_url(file_path)

    async def file_exists(self, file_path: str) -> bool:
        return self._resolve(file_path).exists()

    async def get_file_url(self, file_path: str) -> str:
        return f"{self.url_prefix}/{file_path.lstrip('/')}"


def new_asset_path(folder: str, content_type: str) -> str:
    """Unique relative path for a generated asset, e.g. videos/3f2a....mp4."""
    ext = EXTENSIONS.get(content_type.split(";")[0].strip().lower(), ".bin")
    return f"{folder}/{uuid.uuid4().hex}{ext}"


def get_storage_backend(base_dir: str = "uploads") -> StorageBackend:
    return LocalStorageBackend(base_dir=base_dir)
