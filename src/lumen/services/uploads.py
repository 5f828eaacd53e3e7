"""Image uploads to blob storage and reference URL validation."""

import os
from dataclasses import dataclass
from typing import Optional

import httpx
import structlog

from lumen.services.exceptions import StorageError, ValidationError
from lumen.services.storage.blob_store import BlobStore, generate_key

logger = structlog.get_logger(__name__)

IMAGE_CONTENT_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
    ".gif": "image/gif",
}
MAX_UPLOAD_BYTES = 20 * 1024 * 1024
DOWNLOAD_TIMEOUT_SECONDS = 30.0


@dataclass(frozen=True)
class UploadResult:
    url: str
    key: str
    filename: str


def content_type_for(filename: str) -> Optional[str]:
    return IMAGE_CONTENT_TYPES.get(os.path.splitext(filename)[1].lower())


def sanitize_filename(filename: str) -> str:
    """Make a client-supplied filename safe to embed in a storage key."""
    name = os.path.basename(filename.replace("\\", "/"))
    return name.replace(" ", "_").lower()


def validate_image_url(url: str) -> None:
    """Reference and product images must be served over HTTPS.

    Raises:
        ValidationError: Non-empty URL that is not https://
    """
    if url and not url.startswith("https://"):
        raise ValidationError(f"image URL must use HTTPS: {url}")


class UploadService:
    """Stores user uploads and mirrored vendor images in the blob store."""

    def __init__(
        self,
        blob_store: Optional[BlobStore],
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.blob_store = blob_store
        self.http_transport = http_transport

    @property
    def enabled(self) -> bool:
        return self.blob_store is not None

    async def upload_image(
        self, org_id: str, folder: str, filename: str, data: bytes
    ) -> UploadResult:
        """Validate and store an image upload.

        Raises:
            ValidationError: Unsupported extension, empty or oversized file
            StorageError: Blob store unavailable or upload failed
        """
        content_type = content_type_for(filename)
        if content_type is None:
            ext = os.path.splitext(filename)[1].lower() or "<none>"
            raise ValidationError(
                f"invalid file type: {ext} (allowed: jpg, jpeg, png, webp, gif)"
            )
        if not data:
            raise ValidationError("uploaded file is empty")
        if len(data) > MAX_UPLOAD_BYTES:
            raise ValidationError(f"file exceeds maximum size of {MAX_UPLOAD_BYTES} bytes")
        if not folder or "/" in folder or folder.startswith("."):
            raise ValidationError(f"invalid folder: {folder!r}")
        if self.blob_store is None:
            raise StorageError("blob storage is not configured")

        safe_name = sanitize_filename(filename)
        key = generate_key(org_id, folder, safe_name)
        url = await self.blob_store.put(key, data, content_type)

        logger.info("upload.stored", org_id=org_id, key=key, size=len(data))
        return UploadResult(url=url, key=key, filename=safe_name)

    async def mirror_remote_image(
        self, org_id: str, folder: str, name: str, source_url: str
    ) -> UploadResult:
        """Download a vendor-hosted image and store a copy.

        Vendor CDN links expire, so completed generations are copied into
        our own storage.

        Only HTTPS sources are fetched and the body is streamed, giving up
        once it grows past MAX_UPLOAD_BYTES.

        Raises:
            StorageError: Rejected URL, download or upload failed, or storage not configured
        """
        if self.blob_store is None:
            raise StorageError("blob storage is not configured")
        try:
            validate_image_url(source_url)
        except ValidationError as e:
            raise StorageError(f"refusing to mirror {source_url}: {e}") from e

        try:
            async with httpx.AsyncClient(
                timeout=DOWNLOAD_TIMEOUT_SECONDS, transport=self.http_transport
            ) as client:
                async with client.stream("GET", source_url) as response:
                    response.raise_for_status()
                    header_type = response.headers.get("content-type", "").split(";")[0]
                    data = await _read_limited(response, MAX_UPLOAD_BYTES)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise StorageError(f"failed to download {source_url}: {e}") from e
        if not data:
            raise StorageError(f"failed to download {source_url}: empty body")

        ext = _extension_for(source_url, header_type)
        key = generate_key(org_id, folder, f"{name}{ext}")
        url = await self.blob_store.put(key, data, IMAGE_CONTENT_TYPES[ext])
        return UploadResult(url=url, key=key, filename=f"{name}{ext}")


async def _read_limited(response: httpx.Response, limit: int) -> bytes:
    declared = response.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > limit:
        raise StorageError(f"remote image exceeds {limit} bytes")
    chunks = []
    size = 0
    async for chunk in response.aiter_bytes():
        size += len(chunk)
        if size > limit:
            raise StorageError(f"remote image exceeds {limit} bytes")
        chunks.append(chunk)
    return b"".join(chunks)


def _extension_for(source_url: str, content_type: str) -> str:
    path_ext = os.path.splitext(httpx.URL(source_url).path)[1].lower()
    if path_ext in IMAGE_CONTENT_TYPES:
        return path_ext
    for ext, known_type in IMAGE_CONTENT_TYPES.items():
        if known_type == content_type:
            return ext
    return ".png"
