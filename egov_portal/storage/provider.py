import os
import secrets
from datetime import datetime, timezone
from typing import BinaryIO, Optional, Union

from slugify import slugify


def document_key(original_name: str, category: str = "requests") -> str:
    """Collision-resistant storage key for an uploaded document."""
    now = datetime.now(timezone.utc)
    stem, ext = os.path.splitext(original_name or "upload")
    safe_name = slugify(stem) or "file"
    token = secrets.token_hex(16)
    return f"/{slugify(category)}/{now:%Y}/{now:%m}/{token}-{safe_name}{ext.lower()}"


class StorageProvider:
    name = "base"

    def store(self, data: Union[bytes, BinaryIO], key: str, content_type: Optional[str] = None) -> str:
        """Persist data under key and return its locator (path or URL)."""
        raise NotImplementedError

    def get_download_url(self, key: str, expires_s: int) -> Optional[str]:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError
