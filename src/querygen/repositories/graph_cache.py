"""
Key-value cache for serialized knowledge graphs.

GraphCacheRepository stores values as objects in Supabase Storage under
`{cache_prefix}/{key}.json`.
"""

from typing import Optional

from querygen.config import StorageConfig
from querygen.domain.errors import StorageFileError
from querygen.infrastructure.storage_client import StorageClient
from querygen.utils.logging import get_module_logger

logger = get_module_logger()

# Supabase Storage answers 400 "Object not found" as well as 404
_MISSING_STATUS_CODES = {400, 404}


class GraphCacheRepository:
    """Key-value cache over the storage bucket."""

    def __init__(self, storage_client: StorageClient, config: StorageConfig):
        self.storage_client = storage_client
        self.config = config

    def _path(self, key: str) -> str:
        return f"{self.config.cache_prefix}/{key}.json"

    async def get(self, key: str) -> Optional[bytes]:
        """Stored bytes for `key`, or None when absent."""
        try:
            return await self.storage_client.download_file(self.config.default_bucket, self._path(key))
        except StorageFileError as e:
            if e.details.get("status_code") in _MISSING_STATUS_CODES:
                logger.info("Cache miss", key=key)
                return None
            raise

    async def set(self, key: str, value: bytes) -> None:
        await self.storage_client.upload_file(
            self.config.default_bucket,
            self._path(key),
            value,
            content_type="application/json",
            upsert=True,
        )
        logger.info("Cache entry stored", key=key, size_bytes=len(value))
