"""Image upload endpoint."""

import structlog
from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from pydantic import BaseModel

from lumen.api.dependencies import Identity, get_identity, get_upload_service, http_error
from lumen.services.exceptions import ServiceError
from lumen.services.uploads import UploadService

logger = structlog.get_logger()
router = APIRouter(prefix="/api/v1/uploads", tags=["uploads"])


class UploadResponse(BaseModel):
    url: str
    key: str
    filename: str


@router.post("", response_model=UploadResponse, status_code=status.HTTP_201_CREATED)
async def upload_image(
    file: UploadFile = File(...),
    folder: str = Form(default="references"),
    identity: Identity = Depends(get_identity),
    uploads: UploadService = Depends(get_upload_service),
) -> UploadResponse:
    """Store a reference or product image for later use in generations.

    HTTP Status Codes:
        201: Stored
        400: Unsupported file type, empty file, or bad folder
        503: Blob storage not configured or unavailable
    """
    data = await file.read()
    try:
        result = await uploads.upload_image(
            str(identity.organization_id), folder, file.filename or "", data
        )
    except ServiceError as e:
        raise http_error(e)

    return UploadResponse(url=result.url, key=result.key, filename=result.filename)
