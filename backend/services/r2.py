"""Cloudflare R2 upload storage for page images."""

from __future__ import annotations

import asyncio
import logging

import aioboto3
from botocore.exceptions import BotoCoreError, ClientError

from backend.config import settings
from portal.kernel.storage import BackendError, ObjectStorage

logger = logging.getLogger(__name__)

# Retryable S3 error codes
_RETRYABLE_CODES = {"RequestTimeout", "ServiceUnavailable", "ThrottlingException", "Throttling", "SlowDown"}


class R2ObjectStorage(ObjectStorage):
    """Cloudflare R2 storage using the S3-compatible API."""

    def __init__(self) -> None:
        """Initialize with credentials from settings."""
        self.session = aioboto3.Session()
        self.endpoint = settings.R2_ENDPOINT
        self.access_key = settings.R2_ACCESS_KEY
        self.secret_key = settings.R2_SECRET_KEY
        self.bucket = settings.R2_UPLOADS_BUCKET
        self.public_url = settings.R2_PUBLIC_URL.rstrip("/")

    def _client(self):
        return self.session.client(
            "s3",
            endpoint_url=self.endpoint,
            aws_access_key_id=self.access_key,
            aws_secret_access_key=self.secret_key,
        )

    async def put(self, key: str, data: bytes, content_type: str, max_retries: int = 1) -> str:
        """
        Upload a blob with retry on transient failures.

        Args:
            key: Object key, `{user_id}/{uuid}-{filename}`
            data: Raw bytes
            content_type: MIME type stored with the object
            max_retries: Number of retries on transient failures (default 1)

        Returns:
            Public URL of the uploaded object

        Raises:
            BackendError: If the upload fails after retries
        """
        for attempt in range(max_retries + 1):
            try:
                async with self._client() as s3:
                    await s3.put_object(
                        Bucket=self.bucket,
                        Key=key,
                        Body=data,
                        ContentType=content_type,
                    )
                return f"{self.public_url}/{key}"
            except ClientError as e:
                error_code = e.response.get("Error", {}).get("Code", "")
                if error_code in _RETRYABLE_CODES and attempt < max_retries:
                    wait_time = 2**attempt
                    logger.warning("r2: upload error (attempt %d), retrying in %ds: %s", attempt + 1, wait_time, e)
                    await asyncio.sleep(wait_time)
                else:
                    raise BackendError(f"R2 upload failed: {error_code or e}") from e
            except BotoCoreError as e:
                # Network errors, timeouts, etc.
                if attempt < max_retries:
                    wait_time = 2**attempt
                    logger.warning("r2: upload error (attempt %d), retrying in %ds: %s", attempt + 1, wait_time, e)
                    await asyncio.sleep(wait_time)
                else:
                    raise BackendError(f"R2 upload failed: {e}") from e

        raise BackendError("R2 upload failed")
