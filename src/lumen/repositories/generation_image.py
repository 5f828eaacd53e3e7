"""GenerationImage repository.

Image rows are settled by vendor callbacks through a conditional UPDATE so a
callback delivered twice mutates the row only once.
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from lumen.core.timezone import utcnow
from lumen.models.generation import ERROR_MESSAGE_MAX_LENGTH, GenerationStatus
from lumen.models.generation_image import DEFAULT_IMAGE_ERROR, GenerationImage

UNSETTLED_STATUSES = (GenerationStatus.PENDING, GenerationStatus.PROCESSING)


@dataclass(frozen=True)
class ImageStatusCounts:
    total: int
    completed: int
    failed: int

    @property
    def settled(self) -> bool:
        """True when every image of a non-empty job reached a terminal state."""
        return self.total > 0 and self.completed + self.failed == self.total


class GenerationImageRepository:
    """Repository for GenerationImage entities."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add_many(self, images: list[GenerationImage]) -> list[GenerationImage]:
        """Persist a batch of images in one flush.

        Args:
            images: Images belonging to a single job

        Returns:
            Persisted images with generated IDs
        """
        self.session.add_all(images)
        await self.session.flush()
        return images

    async def get_by_id(self, image_id: UUID) -> GenerationImage | None:
        result = await self.session.execute(
            select(GenerationImage).where(GenerationImage.id == image_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def get_by_task_id(self, task_id: str) -> GenerationImage | None:
        """Retrieve image by vendor task id (callback routing key)."""
        result = await self.session.execute(
            select(GenerationImage).where(GenerationImage.task_id == task_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def list_by_job(self, job_id: UUID) -> list[GenerationImage]:
        """Retrieve a job's images in prompt order."""
        result = await self.session.execute(
            select(GenerationImage)
            .where(GenerationImage.job_id == job_id)  # type: ignore[arg-type]
            .order_by(GenerationImage.position.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def update(self, image: GenerationImage) -> None:
        self.session.add(image)
        await self.session.flush()

    async def settle(
        self,
        image_id: UUID,
        status: GenerationStatus,
        image_url: str | None = None,
        storage_key: str | None = None,
        error_message: str | None = None,
    ) -> bool:
        """Move a non-terminal image into a terminal state.

        Query explanation:
        - UPDATE generation_images SET status, image_url/error_message
        - WHERE id = :image_id AND status IN ('pending', 'processing')

        Args:
            image_id: Image to settle
            status: completed or failed
            image_url: Final image URL (completed only)
            storage_key: Blob storage key if the image was mirrored
            error_message: Vendor error (failed only)

        Returns:
            True if the row changed, False if it was already terminal
        """
        if not status.is_terminal:
            raise ValueError(f"settle requires a terminal status, got {status.value}")

        now = utcnow()
        values: dict = {"status": status, "completed_at": now, "updated_at": now}
        if status == GenerationStatus.COMPLETED:
            values["image_url"] = image_url
            values["storage_key"] = storage_key
        else:
            values["error_message"] = (error_message or DEFAULT_IMAGE_ERROR)[
                :ERROR_MESSAGE_MAX_LENGTH
            ]

        result = await self.session.execute(
            update(GenerationImage)
            .where(GenerationImage.id == image_id)  # type: ignore[arg-type]
            .where(GenerationImage.status.in_(UNSETTLED_STATUSES))  # type: ignore[attr-defined]
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def fail_unsettled(self, job_id: UUID, error_message: str) -> int:
        """Fail every pending/processing image of a job.

        Returns:
            Number of images failed
        """
        now = utcnow()
        result = await self.session.execute(
            update(GenerationImage)
            .where(GenerationImage.job_id == job_id)  # type: ignore[arg-type]
            .where(GenerationImage.status.in_(UNSETTLED_STATUSES))  # type: ignore[attr-defined]
            .values(
                status=GenerationStatus.FAILED,
                error_message=error_message[:ERROR_MESSAGE_MAX_LENGTH],
                completed_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount  # type: ignore[attr-defined]

    async def status_counts(self, job_id: UUID) -> ImageStatusCounts:
        """Count a job's images by status.

        Returns:
            ImageStatusCounts with total, completed and failed
        """
        result = await self.session.execute(
            select(GenerationImage.status, func.count())
            .where(GenerationImage.job_id == job_id)  # type: ignore[arg-type]
            .group_by(GenerationImage.status)
        )
        by_status = {status: count for status, count in result.all()}
        return ImageStatusCounts(
            total=sum(by_status.values()),
            completed=by_status.get(GenerationStatus.COMPLETED, 0),
            failed=by_status.get(GenerationStatus.FAILED, 0),
        )
