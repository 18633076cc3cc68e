"""Object storage for chat attachments (Supabase Storage)."""

import logging
from functools import lru_cache

from supabase import Client

from src.core.config import get_settings
from src.core.supabase import get_supabase_client

logger = logging.getLogger(__name__)


class ObjectStorage:
    """Thin wrapper over a Supabase Storage bucket."""

    def __init__(self, client: Client, bucket: str) -> None:
        self.client = client
        self.bucket = bucket

    def upload(self, path: str, data: bytes, content_type: str) -> str:
        """Upload (or overwrite) an object.

        Args:
            path: Object path inside the bucket.
            data: File content.
            content_type: MIME type stored with the object.

        Returns:
            The storage path that was written.
        """
        self.client.storage.from_(self.bucket).upload(
            path=path,
            file=data,
            file_options={"content-type": content_type, "upsert": "true"},
        )
        logger.debug("Uploaded %d bytes to %s/%s", len(data), self.bucket, path)
        return path


@lru_cache
def get_object_storage() -> ObjectStorage:
    """Get cached storage singleton for the configured bucket."""
    return ObjectStorage(get_supabase_client(), get_settings().storage_bucket)
