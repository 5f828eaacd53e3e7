"""Generation job endpoints.

- POST /api/v1/generations - Submit a generation (returns 202 immediately)
- GET /api/v1/generations - List the caller organization's generations
- GET /api/v1/generations/{generation_id} - Job with its images
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from lumen.api.dependencies import (
    Identity,
    get_identity,
    get_orchestrator,
    get_settings,
    http_error,
)
from lumen.core.config import Settings
from lumen.models.generation import GenerationJob
from lumen.models.generation_image import GenerationImage
from lumen.services.exceptions import ServiceError
from lumen.services.generation.orchestrator import (
    GenerationOrchestrator,
    SubmitGenerationRequest,
)

logger = structlog.get_logger()
router = APIRouter(prefix="/api/v1/generations", tags=["generations"])

MAX_PAGE_SIZE = 100


# Request/Response Models


class CreateGenerationRequest(BaseModel):
    base_prompt: str = Field(..., description="Prompt the variations are derived from")
    provider_id: Optional[str] = Field(
        default=None,
        description="Image generation provider UUID or slug (defaults to DEFAULT_IMAGE_PROVIDER)",
    )
    reference_images: list[str] = Field(default_factory=list)
    product_images: list[str] = Field(default_factory=list)
    num_variations: Optional[int] = Field(
        default=None, description="Billed variation count, clamped to 1..10 (default 4)"
    )


class CreateGenerationResponse(BaseModel):
    id: UUID
    status: str
    message: str


class GenerationDTO(BaseModel):
    id: UUID
    organization_id: UUID
    user_id: UUID
    status: str
    base_prompt: str
    reference_images: list[str]
    product_images: list[str]
    provider_id: UUID
    estimated_cost: int
    actual_cost: Optional[int]
    error_message: Optional[str]
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime]

    @classmethod
    def from_model(cls, job: GenerationJob) -> "GenerationDTO":
        return cls(
            id=job.id,
            organization_id=job.organization_id,
            user_id=job.user_id,
            status=job.status.value,
            base_prompt=job.base_prompt,
            reference_images=list(job.reference_images or []),
            product_images=list(job.product_images or []),
            provider_id=job.provider_id,
            estimated_cost=job.estimated_cost,
            actual_cost=job.actual_cost,
            error_message=job.error_message,
            created_at=job.created_at,
            updated_at=job.updated_at,
            completed_at=job.completed_at,
        )


class GenerationImageDTO(BaseModel):
    id: UUID
    position: int
    prompt: str
    status: str
    image_url: Optional[str]
    storage_key: Optional[str]
    task_id: Optional[str]
    error_message: Optional[str]
    created_at: datetime
    completed_at: Optional[datetime]

    @classmethod
    def from_model(cls, image: GenerationImage) -> "GenerationImageDTO":
        return cls(
            id=image.id,
            position=image.position,
            prompt=image.prompt,
            status=image.status.value,
            image_url=image.image_url,
            storage_key=image.storage_key,
            task_id=image.task_id,
            error_message=image.error_message,
            created_at=image.created_at,
            completed_at=image.completed_at,
        )


class GenerationDetailResponse(BaseModel):
    generation: GenerationDTO
    images: list[GenerationImageDTO]


class GenerationListResponse(BaseModel):
    generations: list[GenerationDTO]
    limit: int
    offset: int


# Endpoints


@router.post(
    "",
    response_model=CreateGenerationResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def create_generation(
    body: CreateGenerationRequest,
    identity: Identity = Depends(get_identity),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
    settings: Settings = Depends(get_settings),
) -> CreateGenerationResponse:
    """Accept a generation request; the pipeline continues in the background.

    HTTP Status Codes:
        202: Job accepted (status pending)
        400: Validation error
        402: Insufficient credits
        404: Unknown provider or organization
    """
    try:
        job = await orchestrator.submit_generation(
            SubmitGenerationRequest(
                organization_id=identity.organization_id,
                user_id=identity.user_id,
                provider_id=body.provider_id or settings.default_image_provider,
                base_prompt=body.base_prompt,
                reference_images=body.reference_images,
                product_images=body.product_images,
                num_variations=body.num_variations,
            )
        )
    except ServiceError as e:
        logger.info("generation.rejected", error=str(e), error_type=type(e).__name__)
        raise http_error(e)

    return CreateGenerationResponse(
        id=job.id, status=job.status.value, message="Generation started"
    )


@router.get("", response_model=GenerationListResponse)
async def list_generations(
    limit: int = Query(default=20, ge=1),
    offset: int = Query(default=0, ge=0),
    identity: Identity = Depends(get_identity),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> GenerationListResponse:
    limit = min(limit, MAX_PAGE_SIZE)
    jobs = await orchestrator.list_generations(identity.organization_id, limit=limit, offset=offset)
    return GenerationListResponse(
        generations=[GenerationDTO.from_model(job) for job in jobs],
        limit=limit,
        offset=offset,
    )


@router.get("/{generation_id}", response_model=GenerationDetailResponse)
async def get_generation(
    generation_id: UUID,
    identity: Identity = Depends(get_identity),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> GenerationDetailResponse:
    try:
        details = await orchestrator.get_generation(
            generation_id, organization_id=identity.organization_id
        )
    except ServiceError as e:
        raise http_error(e)

    return GenerationDetailResponse(
        generation=GenerationDTO.from_model(details.job),
        images=[GenerationImageDTO.from_model(image) for image in details.images],
    )
