"""Vendor callback endpoint.

Image vendors POST the outcome of each task to
/api/v1/callbacks/{provider_slug}. The body is vendor-specific and parsed by
the matching provider adapter.
"""

import structlog
from fastapi import APIRouter, Depends

from lumen.api.dependencies import get_orchestrator, http_error, verify_callback_signature
from lumen.services.exceptions import ServiceError
from lumen.services.generation.orchestrator import GenerationOrchestrator

logger = structlog.get_logger()
router = APIRouter(prefix="/api/v1/callbacks", tags=["callbacks"])


@router.post("/{provider_slug}")
async def receive_callback(
    provider_slug: str,
    raw_body: bytes = Depends(verify_callback_signature),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    """Apply a vendor callback to its image.

    HTTP Status Codes:
        200: Callback applied, or a duplicate that was ignored
        400: Malformed payload
        401: Missing or invalid signature (when a signing secret is configured)
        404: Unknown provider or task id
    """
    try:
        outcome = await orchestrator.handle_callback(provider_slug, raw_body)
    except ServiceError as e:
        logger.warning(
            "callback.rejected",
            provider=provider_slug,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise http_error(e)

    return {
        "status": "ok",
        "generation_id": str(outcome.job_id),
        "image_id": str(outcome.image_id),
        "image_status": outcome.status.value,
        "duplicate": not outcome.applied,
    }
