"""Blob storage capability and its S3-compatible implementation.

Keys follow `{org_id}/{folder}/{unix_nanos}_{filename}`.
"""

import asyncio
import time
from typing import Optional, Protocol

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError

from lumen.core.config import Settings
from lumen.services.exceptions import StorageError

logger = structlog.get_logger(__name__)


class BlobStore(Protocol):
    async def put(self, key: str, data: bytes, content_type: str) -> str: ...

    async def get(self, key: str) -> bytes: ...

    async def delete(self, key: str) -> None: ...


def generate_key(org_id: str, folder: str, filename: str) -> str:
    """Build a storage key unique per upload within an organization folder."""
    return f"{org_id}/{folder}/{time.time_ns()}_{filename}"


class S3BlobStore:
    """BlobStore over any S3-compatible endpoint (Cloudflare R2 in production).

    boto3 is synchronous, so every call runs in a worker thread.
    """

    def __init__(self, client, bucket: str, public_url: str = ""):
        self.client = client
        self.bucket = bucket
        self.public_url = public_url.rstrip("/")

    @classmethod
    def from_settings(cls, settings: Settings) -> "S3BlobStore":
        client = boto3.client(
            "s3",
            endpoint_url=f"https://{settings.r2_account_id}.r2.cloudflarestorage.com",
            aws_access_key_id=settings.r2_access_key_id,
            aws_secret_access_key=settings.r2_secret_access_key,
            region_name="auto",
        )
        return cls(client, settings.r2_bucket_name, settings.r2_public_url)

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        """Store bytes under key.

        Returns:
            Public URL when a public base URL is configured, else the key
        """
        try:
            await asyncio.to_thread(
                self.client.put_object,
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"failed to upload {key}: {e}") from e

        logger.info("storage.put", key=key, size=len(data))
        return self.url_for(key)

    async def get(self, key: str) -> bytes:
        def _read() -> bytes:
            obj = self.client.get_object(Bucket=self.bucket, Key=key)
            return obj["Body"].read()

        try:
            return await asyncio.to_thread(_read)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"failed to download {key}: {e}") from e

    async def delete(self, key: str) -> None:
        try:
            await asyncio.to_thread(self.client.delete_object, Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"failed to delete {key}: {e}") from e

    def url_for(self, key: str) -> str:
        if self.public_url:
            return f"{self.public_url}/{key}"
        return key


def create_blob_store(settings: Settings) -> Optional[S3BlobStore]:
    """Build the configured blob store, or None when storage is not configured."""
    if not settings.storage_enabled:
        return None
    return S3BlobStore.from_settings(settings)
