"""
Supabase Storage client.

Backs two things: the YAML schema document and the key-value cache that
holds the serialized knowledge graph.
"""

from typing import Any, Dict, Optional
import httpx

from ..config import StorageConfig
from ..utils.logging import get_module_logger
from ..utils.tracing import current_trace_id
from ..domain.errors import StorageConnectionError, StorageFileError


logger = get_module_logger()


class StorageClient:
    """
    Minimal async Supabase Storage client: download and upload objects.

    Usage:
        client = StorageClient(config)
        await client.connect()
        await client.upload_file(None, "cache/knowledge_graph.json", payload, "application/json")
        content = await client.download_file(None, "schema.yaml")
        await client.close()
    """

    def __init__(self, config: StorageConfig):
        self.config = config
        self._client: Optional[httpx.AsyncClient] = None
        self._is_connected = False
        self.storage_url = f"{config.supabase_url}/storage/v1"

        logger.info(
            "StorageClient initialized",
            supabase_url=config.supabase_url,
            default_bucket=config.default_bucket
        )

    async def connect(self) -> None:
        """
        Initialize the HTTP client.

        Raises:
            StorageConnectionError: If initialization fails
        """
        if self._is_connected:
            logger.warning("Storage client already connected")
            return

        trace_id = current_trace_id()

        try:
            self._client = httpx.AsyncClient(
                base_url=self.storage_url,
                headers={
                    "Authorization": f"Bearer {self.config.supabase_key}",
                    "apikey": self.config.supabase_key
                },
                timeout=httpx.Timeout(
                    connect=self.config.connect_timeout_seconds,
                    read=self.config.download_timeout_seconds,
                    write=self.config.write_timeout_seconds,
                    pool=self.config.pool_timeout_seconds
                ),
                limits=httpx.Limits(
                    max_connections=self.config.max_connections,
                    max_keepalive_connections=self.config.max_keepalive_connections
                )
            )
            self._is_connected = True
            logger.info("Storage client initialized successfully", trace_id=trace_id)

        except Exception as e:
            error_msg = f"Failed to initialize storage client: {e}"
            logger.error(error_msg, error_type=type(e).__name__, trace_id=trace_id)
            raise StorageConnectionError(error_msg) from e

    async def close(self) -> None:
        """Close HTTP client and release resources."""
        if self._client:
            await self._client.aclose()

        self._is_connected = False
        self._client = None
        logger.info("Storage client closed", trace_id=current_trace_id())

    def is_connected(self) -> bool:
        """Check if storage client is connected."""
        return self._is_connected and self._client is not None

    def _require_client(self) -> httpx.AsyncClient:
        if not self.is_connected() or self._client is None:
            raise StorageConnectionError("Storage client is not connected")
        return self._client

    async def download_file(self, bucket: Optional[str], file_path: str) -> bytes:
        """
        Download an object.

        Raises:
            StorageConnectionError: If client is not connected
            StorageFileError: If download fails; details["status_code"] holds the HTTP status
        """
        client = self._require_client()
        bucket_name = bucket or self.config.default_bucket
        clean_path = file_path.lstrip("/")
        trace_id = current_trace_id()

        try:
            response = await client.get(f"/object/{bucket_name}/{clean_path}")
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            error_msg = f"Failed to download file: {e.response.text}"
            logger.warning(
                error_msg,
                status_code=status_code,
                bucket=bucket_name,
                file_path=clean_path,
                trace_id=trace_id
            )
            raise StorageFileError(error_msg, details={"status_code": status_code}) from e
        except Exception as e:
            error_msg = f"Failed to download file: {e}"
            logger.error(error_msg, bucket=bucket_name, file_path=clean_path, trace_id=trace_id)
            raise StorageFileError(error_msg) from e

        content = response.content
        logger.info(
            "File downloaded successfully",
            bucket=bucket_name,
            file_path=clean_path,
            size=len(content),
            trace_id=trace_id
        )
        return content

    async def upload_file(
        self,
        bucket: Optional[str],
        file_path: str,
        file_data: bytes,
        content_type: Optional[str] = None,
        upsert: bool = True
    ) -> Dict[str, Any]:
        """
        Upload an object, overwriting by default.

        Raises:
            StorageConnectionError: If client is not connected
            StorageFileError: If upload fails
        """
        client = self._require_client()
        bucket_name = bucket or self.config.default_bucket
        clean_path = file_path.lstrip("/")
        trace_id = current_trace_id()

        headers = {}
        if content_type:
            headers["Content-Type"] = content_type
        if upsert:
            headers["x-upsert"] = "true"

        try:
            response = await client.post(
                f"/object/{bucket_name}/{clean_path}",
                content=file_data,
                headers=headers,
                timeout=self.config.upload_timeout_seconds
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            error_msg = f"Failed to upload file: {e.response.text}"
            logger.error(
                error_msg,
                status_code=e.response.status_code,
                bucket=bucket_name,
                file_path=clean_path,
                trace_id=trace_id
            )
            raise StorageFileError(error_msg, details={"status_code": e.response.status_code}) from e
        except Exception as e:
            error_msg = f"Failed to upload file: {e}"
            logger.error(error_msg, bucket=bucket_name, file_path=clean_path, trace_id=trace_id)
            raise StorageFileError(error_msg) from e

        logger.info(
            "File uploaded successfully",
            bucket=bucket_name,
            file_path=clean_path,
            size_bytes=len(file_data),
            trace_id=trace_id
        )
        return response.json()
