"""
Local filesystem storage provider for development.
Saves uploaded documents to a local directory instead of Azure Blob Storage.
"""
from typing import Optional, BinaryIO, Union
from pathlib import Path
from urllib.parse import quote

import structlog

from ..config import settings
from ..errors import StorageError
from .provider import StorageProvider


logger = structlog.get_logger(__name__)


class LocalStorageProvider(StorageProvider):
    """Local filesystem storage provider for development."""

    name = "local"

    def __init__(self, base_dir: Optional[str] = None):
        self.base_dir = Path(base_dir or settings.local_storage_dir)
        (self.base_dir / "uploads").mkdir(parents=True, exist_ok=True)

    def _get_path(self, key: str) -> Path:
        """Get the local filesystem path for a given key."""
        # Remove leading slash and sanitize
        clean_key = key.lstrip("/").replace("..", "").replace("\\", "/")
        return self.base_dir / "uploads" / clean_key

    def store(self, data: Union[bytes, BinaryIO], key: str, content_type: Optional[str] = None) -> str:
        path = self._get_path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "wb") as f:
                f.write(data if isinstance(data, (bytes, bytearray)) else data.read())
        except OSError as e:
            logger.error("local_store_failed", key=key, error=str(e))
            raise StorageError("Could not save uploaded file") from e
        return f"/uploads/{key.lstrip('/')}"

    def get_download_url(self, key: str, expires_s: int) -> Optional[str]:
        """Get a local file URL for download."""
        if self._get_path(key).exists():
            return f"{settings.public_base_url}/uploads/{quote(key.lstrip('/'))}"
        return None

    def exists(self, key: str) -> bool:
        return self._get_path(key).exists()

    def delete(self, key: str) -> None:
        path = self._get_path(key)
        try:
            if path.exists():
                path.unlink()
        except OSError as e:
            logger.warning("local_delete_failed", key=key, error=str(e))
