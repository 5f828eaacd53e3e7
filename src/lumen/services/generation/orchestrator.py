"""Generation orchestrator: drives a job from submission to credit settlement.

Job and image states both move pending -> processing -> completed | failed.
Submission persists a pending job and returns; the pipeline (vision
analysis, LLM prompt variations with fallback, image submission) runs as a
supervised background task. Vendor callbacks settle images one by one and
the last one to land finalizes the job and charges the organization.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Optional, Union
from uuid import UUID

import structlog

from lumen.core.config import Settings
from lumen.models.generation import GenerationJob, GenerationStatus, InvalidStateTransition
from lumen.models.generation_image import GenerationImage
from lumen.models.provider import Provider, ProviderCategory
from lumen.services.billing.ledger import CreditLedgerService
from lumen.services.exceptions import (
    GenerationError,
    InsufficientCreditsError,
    NotFoundError,
    PermissionDeniedError,
    ProviderError,
    ServiceError,
    StorageError,
    ValidationError,
)
from lumen.services.generation.locks import KeyedLock
from lumen.services.generation.messages import build_messages
from lumen.services.generation.prompt_splitter import split_prompts
from lumen.services.generation.prompt_validator import validate_prompt
from lumen.services.generation.tasks import PipelineSupervisor
from lumen.services.providers.base import (
    ChatMessage,
    ImageGenerationOptions,
    ImageGenerationProvider,
    TextGenerationOptions,
    TextGenerationResult,
    VisionAnalysis,
)
from lumen.services.providers.registry import ProviderRegistry, RegisteredProvider
from lumen.services.uploads import UploadService, validate_image_url

logger = structlog.get_logger(__name__)

ALL_LLM_PROVIDERS_FAILED = "all LLM providers failed"
MAX_REFERENCE_IMAGES = 10


@dataclass(frozen=True)
class OrchestratorSettings:
    callback_base_url: str = "http://localhost:8080"
    image_width: int = 1024
    image_height: int = 1024
    image_submit_concurrency: int = 4
    llm_temperature: float = 0.8
    llm_max_tokens: int = 2000
    default_num_variations: int = 4
    max_num_variations: int = 10

    @classmethod
    def from_settings(cls, settings: Settings) -> "OrchestratorSettings":
        return cls(
            callback_base_url=settings.callback_base_url,
            image_width=settings.image_width,
            image_height=settings.image_height,
            image_submit_concurrency=settings.image_submit_concurrency,
            llm_temperature=settings.llm_temperature,
            llm_max_tokens=settings.llm_max_tokens,
            default_num_variations=settings.default_num_variations,
            max_num_variations=settings.max_num_variations,
        )


@dataclass
class SubmitGenerationRequest:
    organization_id: Union[str, UUID]
    user_id: Union[str, UUID]
    provider_id: str  # provider UUID or slug
    base_prompt: str
    reference_images: list[str] = field(default_factory=list)
    product_images: list[str] = field(default_factory=list)
    num_variations: Optional[int] = None


@dataclass(frozen=True)
class GenerationDetails:
    job: GenerationJob
    images: list[GenerationImage]


@dataclass(frozen=True)
class CallbackOutcome:
    job_id: UUID
    image_id: UUID
    status: GenerationStatus
    applied: bool  # False for duplicate deliveries


def clamp_variations(num_variations: Optional[int], default: int = 4, maximum: int = 10) -> int:
    """Missing or non-positive counts use the default; larger ones are capped."""
    if num_variations is None or num_variations < 1:
        return default
    return min(num_variations, maximum)


def compute_actual_cost(estimated_cost: int, total: int, completed: int) -> int:
    """Charge per completed image, dividing the estimate before multiplying.

    Integer division truncates: estimate 10 over 3 images with 3 completed
    charges 9.
    """
    if total <= 0:
        return 0
    return estimated_cost // total * completed


def should_fallback(error: Exception, fallback_error_substrings: list[str]) -> bool:
    """Decide whether an LLM failure moves on to the next provider.

    An empty list falls back on any error; otherwise the error message must
    contain one of the substrings (case-insensitive).
    """
    if not fallback_error_substrings:
        return True
    message = str(error).lower()
    return any(substring.lower() in message for substring in fallback_error_substrings)


def _parse_uuid(value: Union[str, UUID], name: str) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError) as e:
        raise ValidationError(f"invalid {name}: {value!r}") from e


class GenerationOrchestrator:
    """Owns every mutation of generation jobs and images."""

    def __init__(
        self,
        uow_factory,
        registry: ProviderRegistry,
        ledger: CreditLedgerService,
        supervisor: PipelineSupervisor,
        settings: Optional[OrchestratorSettings] = None,
        uploads: Optional[UploadService] = None,
    ):
        self.uow_factory = uow_factory
        self.registry = registry
        self.ledger = ledger
        self.supervisor = supervisor
        self.settings = settings or OrchestratorSettings()
        self.uploads = uploads
        self._job_locks = KeyedLock()

        if self.supervisor.on_crash is None:
            self.supervisor.on_crash = self.handle_pipeline_crash

    # Submission

    async def submit_generation(self, request: SubmitGenerationRequest) -> GenerationJob:
        """Validate, run the advisory credit check, persist a pending job and start its pipeline.

        Returns immediately with the pending job; the pipeline never blocks the caller.

        Raises:
            ValidationError: Bad identifiers, prompt, image URLs or provider
            NotFoundError: Unknown organization or provider
            PermissionDeniedError: User is not a member of the organization
            InsufficientCreditsError: Balance below the estimated cost
        """
        organization_id = _parse_uuid(request.organization_id, "organization_id")
        user_id = _parse_uuid(request.user_id, "user_id")
        base_prompt = validate_prompt(request.base_prompt)

        reference_images = list(request.reference_images or [])
        product_images = list(request.product_images or [])
        if len(reference_images) > MAX_REFERENCE_IMAGES:
            raise ValidationError(f"at most {MAX_REFERENCE_IMAGES} reference images are allowed")
        for url in reference_images + product_images:
            validate_image_url(url)

        num_variations = clamp_variations(
            request.num_variations,
            default=self.settings.default_num_variations,
            maximum=self.settings.max_num_variations,
        )

        async with await self.uow_factory() as uow:
            provider = await self._resolve_provider(uow, request.provider_id)
            self._ensure_image_provider(provider)
            estimated_cost = provider.cost_per_use * num_variations

            organization = await uow.organizations.get_by_id(organization_id)
            if organization is None:
                raise NotFoundError(f"organization not found: {organization_id}")
            if await uow.profiles.get_membership(user_id, organization_id) is None:
                raise PermissionDeniedError(
                    f"user {user_id} is not a member of organization {organization_id}"
                )
            if organization.credits < estimated_cost:
                raise InsufficientCreditsError(
                    available=organization.credits, required=estimated_cost
                )

            job = await uow.generation_jobs.add(
                GenerationJob(
                    organization_id=organization_id,
                    user_id=user_id,
                    base_prompt=base_prompt,
                    reference_images=reference_images,
                    product_images=product_images,
                    provider_id=provider.id,
                    estimated_cost=estimated_cost,
                )
            )

        logger.info(
            "generation.submitted",
            job_id=str(job.id),
            organization_id=str(organization_id),
            provider=provider.slug,
            num_variations=num_variations,
            estimated_cost=estimated_cost,
        )
        self.supervisor.spawn(job.id, self.run_pipeline(job.id))
        return job

    async def _resolve_provider(self, uow, identifier: str) -> Provider:
        if not identifier:
            raise ValidationError("provider_id is required")
        try:
            provider = await uow.providers.get_by_id(UUID(str(identifier)))
        except ValueError:
            provider = await uow.providers.get_by_slug(str(identifier))
        if provider is None:
            raise NotFoundError(f"provider not found: {identifier}")
        return provider

    def _ensure_image_provider(self, provider: Provider) -> None:
        if not provider.is_active:
            raise ValidationError(f"provider {provider.slug} is not active")
        if provider.category != ProviderCategory.IMAGE_GENERATION:
            raise ValidationError(
                f"provider {provider.slug} is a {provider.category.value} provider, "
                "not an image generation provider"
            )
        try:
            self.registry.get_image_provider(provider.slug)
        except NotFoundError as e:
            raise ValidationError(f"provider {provider.slug} is not configured") from e

    # Pipeline

    async def run_pipeline(self, job_id: UUID) -> None:
        """Run the asynchronous stage of a job: analyze, prompt, split, submit.

        Synchronous failures end the job as failed with the triggering error;
        individual image submission failures only fail that image.
        """
        async with await self.uow_factory() as uow:
            job = await uow.generation_jobs.get_for_update(job_id)
            if job is None or job.status != GenerationStatus.PENDING:
                logger.warning(
                    "pipeline.skipped",
                    job_id=str(job_id),
                    status=job.status.value if job else None,
                )
                return
            job.mark_processing()
            provider = await uow.providers.get_by_id(job.provider_id)
            base_prompt = job.base_prompt
            reference_images = list(job.reference_images or [])

        logger.info("pipeline.started", job_id=str(job_id))

        try:
            analyses = await self._analyze_references(reference_images)
            messages = build_messages(base_prompt, analyses)
            response = await self._generate_with_fallback(messages)

            prompts = split_prompts(response.content)
            if not prompts:
                raise GenerationError("no prompts generated")

            if provider is None:
                raise NotFoundError(f"image provider not found for job {job_id}")
            image_provider = self.registry.get_image_provider(provider.slug)
        except ServiceError as e:
            await self.fail_job(job_id, str(e))
            return

        async with await self.uow_factory() as uow:
            images = await uow.generation_images.add_many(
                [
                    GenerationImage(job_id=job_id, position=position, prompt=prompt)
                    for position, prompt in enumerate(prompts)
                ]
            )
            pending = [(image.id, image.prompt) for image in images]

        logger.info("pipeline.prompts_ready", job_id=str(job_id), count=len(pending))

        await self._submit_images(job_id, image_provider, pending)
        await self.check_completion(job_id)

    async def _analyze_references(self, image_urls: list[str]) -> list[VisionAnalysis]:
        if not image_urls:
            return []

        vision_providers = self.registry.vision_providers()
        if not vision_providers:
            raise GenerationError("no vision provider registered")
        vision = vision_providers[0]

        analyses = []
        for url in image_urls:
            analyses.append(await vision.client.analyze(url))
        logger.info("pipeline.references_analyzed", provider=vision.slug, count=len(analyses))
        return analyses

    async def _generate_with_fallback(self, messages: list[ChatMessage]) -> TextGenerationResult:
        """Try LLM providers strictly in priority order, one at a time.

        Raises:
            GenerationError: No providers, or every provider failed with a fallback-eligible error
            ProviderError: A provider failed with an error not eligible for fallback
        """
        providers = self.registry.llm_providers()
        if not providers:
            raise GenerationError("no LLM providers available")

        for entry in providers:
            options = TextGenerationOptions(
                model=entry.descriptor.model,
                temperature=self.settings.llm_temperature,
                max_tokens=self.settings.llm_max_tokens,
            )
            try:
                result = await entry.client.generate(messages, options)
            except ProviderError as e:
                if should_fallback(e, entry.descriptor.config.fallback_error_substrings):
                    logger.warning("llm.fallback", provider=entry.slug, error=str(e))
                    continue
                logger.error("llm.failed", provider=entry.slug, error=str(e))
                raise

            logger.info(
                "llm.succeeded",
                provider=entry.slug,
                tokens_used=result.tokens_used,
                finish_reason=result.finish_reason,
            )
            return result

        raise GenerationError(ALL_LLM_PROVIDERS_FAILED)

    async def _submit_images(
        self,
        job_id: UUID,
        entry: RegisteredProvider[ImageGenerationProvider],
        pending: list[tuple[UUID, str]],
    ) -> None:
        options = ImageGenerationOptions(
            model=entry.descriptor.model,
            width=self.settings.image_width,
            height=self.settings.image_height,
            callback_url=f"{self.settings.callback_base_url.rstrip('/')}/api/v1/callbacks/{entry.slug}",
        )
        semaphore = asyncio.Semaphore(max(1, self.settings.image_submit_concurrency))

        async def submit_one(image_id: UUID, prompt: str) -> None:
            async with semaphore:
                try:
                    submission = await entry.client.submit(prompt, options)
                except ServiceError as e:
                    logger.warning(
                        "image.submit_failed",
                        job_id=str(job_id),
                        image_id=str(image_id),
                        error=str(e),
                    )
                    await self._record_submission(image_id, error=str(e))
                    return
                except Exception as e:
                    # Unexpected failures stay confined to this image
                    logger.error(
                        "image.submit_crashed",
                        job_id=str(job_id),
                        image_id=str(image_id),
                        error=str(e),
                        error_type=type(e).__name__,
                        exc_info=True,
                    )
                    await self._record_submission(
                        image_id, error=f"submission error: {type(e).__name__}: {e}"
                    )
                    return
                await self._record_submission(image_id, task_id=submission.task_id)

        await asyncio.gather(*(submit_one(image_id, prompt) for image_id, prompt in pending))

    async def _record_submission(
        self, image_id: UUID, task_id: Optional[str] = None, error: Optional[str] = None
    ) -> None:
        async with await self.uow_factory() as uow:
            image = await uow.generation_images.get_by_id(image_id)
            if image is None:
                return
            try:
                if task_id:
                    image.mark_processing(task_id)
                else:
                    image.mark_failed(error)
            except InvalidStateTransition as e:
                logger.warning("image.transition_skipped", image_id=str(image_id), error=str(e))
                return
            await uow.generation_images.update(image)

    # Callbacks and completion

    async def handle_callback(self, provider_slug: str, raw: bytes) -> CallbackOutcome:
        """Settle the image a vendor callback refers to, then re-check job completion.

        Duplicate deliveries for an already settled image change nothing.

        Raises:
            NotFoundError: Unknown provider slug or task id
            CallbackPayloadError: Payload could not be parsed
        """
        entry = self.registry.get_image_provider(provider_slug)
        result = entry.client.parse_callback(raw)

        async with await self.uow_factory() as uow:
            image = await uow.generation_images.get_by_task_id(result.task_id)
            if image is None:
                raise NotFoundError(f"image not found for task {result.task_id}")
            job = await uow.generation_jobs.get_by_id(image.job_id)
            organization_id = job.organization_id if job else None

        log = logger.bind(
            provider=provider_slug,
            task_id=result.task_id,
            job_id=str(image.job_id),
            image_id=str(image.id),
        )

        if image.status.is_terminal:
            log.info("callback.duplicate", status=image.status.value)
            await self.check_completion(image.job_id)
            return CallbackOutcome(image.job_id, image.id, image.status, applied=False)

        status = GenerationStatus.COMPLETED if result.status == "completed" else GenerationStatus.FAILED
        image_url = result.image_url
        storage_key = None
        error_message = result.error_message or result.error_code

        if status == GenerationStatus.COMPLETED and not image_url:
            status = GenerationStatus.FAILED
            error_message = "vendor reported success without an image url"

        if status == GenerationStatus.COMPLETED and self.uploads and self.uploads.enabled:
            try:
                stored = await self.uploads.mirror_remote_image(
                    str(organization_id), "generations", str(image.id), image_url
                )
                image_url, storage_key = stored.url, stored.key
            except StorageError as e:
                log.warning("callback.mirror_failed", error=str(e))

        async with await self.uow_factory() as uow:
            applied = await uow.generation_images.settle(
                image.id,
                status,
                image_url=image_url,
                storage_key=storage_key,
                error_message=error_message,
            )

        if applied:
            log.info("callback.applied", status=status.value)
        else:
            log.info("callback.duplicate", status=status.value)

        await self.check_completion(image.job_id)
        return CallbackOutcome(image.job_id, image.id, status, applied=applied)

    async def check_completion(self, job_id: UUID) -> bool:
        """Finalize the job once every image is terminal, exactly once.

        Serialized per job by an in-process lock and made safe across
        processes by the conditional finalize UPDATE; only the caller that
        wins the UPDATE charges credits, in the same transaction.

        Returns:
            True if this call finalized the job
        """
        async with self._job_locks.acquire(job_id):
            async with await self.uow_factory() as uow:
                job = await uow.generation_jobs.get_by_id(job_id)
                if job is None or job.status != GenerationStatus.PROCESSING:
                    return False
                organization_id = job.organization_id

            async with self.ledger.locked(organization_id):
                async with await self.uow_factory() as uow:
                    return await self._finalize(uow, job_id)

    async def _finalize(self, uow, job_id: UUID) -> bool:
        job = await uow.generation_jobs.get_for_update(job_id)
        if job is None or job.status != GenerationStatus.PROCESSING:
            return False

        counts = await uow.generation_images.status_counts(job_id)
        if not counts.settled:
            return False

        actual_cost = compute_actual_cost(job.estimated_cost, counts.total, counts.completed)
        if counts.completed > 0:
            status, error_message = GenerationStatus.COMPLETED, None
        else:
            status, error_message = GenerationStatus.FAILED, f"all {counts.total} images failed"

        if not await uow.generation_jobs.finalize_if_processing(
            job_id, status, actual_cost, error_message
        ):
            return False

        if actual_cost > 0:
            reason = f"Image generation {job_id} ({counts.completed}/{counts.total} completed)"
            try:
                await self.ledger.deduct_within(
                    uow,
                    job.organization_id,
                    actual_cost,
                    reason,
                    user_id=job.user_id,
                    job_id=job_id,
                )
            except InsufficientCreditsError as e:
                logger.error("generation.charge_failed", job_id=str(job_id), error=str(e))
                await uow.generation_jobs.set_error_message(job_id, f"credit deduction failed: {e}")

        logger.info(
            "generation.finalized",
            job_id=str(job_id),
            status=status.value,
            completed=counts.completed,
            failed=counts.failed,
            total=counts.total,
            actual_cost=actual_cost,
        )
        return True

    async def fail_job(self, job_id: UUID, error_message: str) -> bool:
        """Fail a non-terminal job and any of its unsettled images.

        Returns:
            True if the job was failed by this call
        """
        async with self._job_locks.acquire(job_id):
            async with await self.uow_factory() as uow:
                job = await uow.generation_jobs.get_for_update(job_id)
                if job is None or job.is_terminal:
                    return False
                await uow.generation_images.fail_unsettled(job_id, error_message)
                job.mark_failed(error_message)
                await uow.generation_jobs.update(job)

        logger.warning("generation.failed", job_id=str(job_id), error=error_message)
        return True

    async def handle_pipeline_crash(self, job_id: UUID, error: BaseException) -> None:
        await self.fail_job(job_id, f"internal error: {type(error).__name__}: {error}")

    async def expire_job(self, job_id: UUID, reason: str) -> bool:
        """Give up on a stuck job: fail its unsettled images and finalize it.

        Jobs that never got images are failed outright.

        Returns:
            True if the job reached a terminal state through this call
        """
        self.supervisor.cancel(job_id)

        async with await self.uow_factory() as uow:
            await uow.generation_images.fail_unsettled(job_id, reason)
            counts = await uow.generation_images.status_counts(job_id)

        if counts.total == 0:
            return await self.fail_job(job_id, "generation abandoned")
        return await self.check_completion(job_id)

    # Queries

    async def get_generation(
        self, job_id: UUID, organization_id: Optional[UUID] = None
    ) -> GenerationDetails:
        """Return a job with its images in prompt order.

        Raises:
            NotFoundError: Unknown job, or job owned by another organization
        """
        async with await self.uow_factory() as uow:
            job = await uow.generation_jobs.get_by_id(job_id)
            if job is None or (
                organization_id is not None and job.organization_id != organization_id
            ):
                raise NotFoundError(f"generation not found: {job_id}")
            images = await uow.generation_images.list_by_job(job_id)
        return GenerationDetails(job=job, images=images)

    async def list_generations(
        self, organization_id: UUID, limit: int = 20, offset: int = 0
    ) -> list[GenerationJob]:
        async with await self.uow_factory() as uow:
            return await uow.generation_jobs.list_by_organization(
                organization_id, limit=limit, offset=offset
            )
