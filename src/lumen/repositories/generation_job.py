"""GenerationJob repository.

Provides data access for generation jobs, including the conditional
finalization used to close the completion race between concurrent callbacks.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from lumen.core.timezone import utcnow
from lumen.models.generation import (
    ERROR_MESSAGE_MAX_LENGTH,
    GenerationJob,
    GenerationStatus,
)

ACTIVE_STATUSES = (GenerationStatus.PENDING, GenerationStatus.PROCESSING)


class GenerationJobRepository:
    """Repository for GenerationJob entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, job: GenerationJob) -> GenerationJob:
        """Persist new generation job to database.

        Args:
            job: GenerationJob entity to persist

        Returns:
            Persisted job with generated ID
        """
        self.session.add(job)
        await self.session.flush()
        return job

    async def get_by_id(self, job_id: UUID) -> GenerationJob | None:
        result = await self.session.execute(
            select(GenerationJob).where(GenerationJob.id == job_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def get_for_update(self, job_id: UUID) -> GenerationJob | None:
        """Retrieve job with a row-level lock held until the transaction ends.

        Args:
            job_id: Job's unique identifier

        Returns:
            Locked GenerationJob if found, None otherwise
        """
        result = await self.session.execute(
            select(GenerationJob)
            .where(GenerationJob.id == job_id)  # type: ignore[arg-type]
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_by_organization(
        self, organization_id: UUID, limit: int = 20, offset: int = 0
    ) -> list[GenerationJob]:
        """Retrieve an organization's jobs, newest first.

        Args:
            organization_id: Owning organization
            limit: Maximum number of jobs to return
            offset: Number of jobs to skip

        Returns:
            List of jobs ordered by creation time (newest first)
        """
        result = await self.session.execute(
            select(GenerationJob)
            .where(GenerationJob.organization_id == organization_id)  # type: ignore[arg-type]
            .order_by(GenerationJob.created_at.desc())  # type: ignore[attr-defined]
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def update(self, job: GenerationJob) -> None:
        self.session.add(job)
        await self.session.flush()

    async def finalize_if_processing(
        self,
        job_id: UUID,
        status: GenerationStatus,
        actual_cost: int,
        error_message: str | None = None,
    ) -> bool:
        """Move a processing job into a terminal state, at most once.

        Query explanation:
        - UPDATE generation_jobs SET status, actual_cost, completed_at
        - WHERE id = :job_id AND status = 'processing'

        Only the caller whose UPDATE matched the row wins; every other
        concurrent or repeated completion check sees False and must not
        charge credits.

        Args:
            job_id: Job to finalize
            status: Terminal status (completed or failed)
            actual_cost: Credits to charge for the job
            error_message: Optional error recorded with the outcome

        Returns:
            True if this call performed the transition
        """
        if not status.is_terminal:
            raise ValueError(f"finalize requires a terminal status, got {status.value}")

        now = utcnow()
        values: dict = {
            "status": status,
            "actual_cost": actual_cost,
            "completed_at": now,
            "updated_at": now,
        }
        if error_message:
            values["error_message"] = error_message[:ERROR_MESSAGE_MAX_LENGTH]

        result = await self.session.execute(
            update(GenerationJob)
            .where(GenerationJob.id == job_id)  # type: ignore[arg-type]
            .where(GenerationJob.status == GenerationStatus.PROCESSING)  # type: ignore[arg-type]
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def set_error_message(self, job_id: UUID, error_message: str) -> None:
        """Record an error on a job without changing its status."""
        await self.session.execute(
            update(GenerationJob)
            .where(GenerationJob.id == job_id)  # type: ignore[arg-type]
            .values(error_message=error_message[:ERROR_MESSAGE_MAX_LENGTH], updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )

    async def list_stale(self, created_before: datetime, limit: int = 100) -> list[GenerationJob]:
        """Retrieve non-terminal jobs created before the cutoff, oldest first.

        Args:
            created_before: Jobs created earlier than this are considered stuck
            limit: Maximum number of jobs to return

        Returns:
            List of pending/processing jobs
        """
        result = await self.session.execute(
            select(GenerationJob)
            .where(GenerationJob.status.in_(ACTIVE_STATUSES))  # type: ignore[attr-defined]
            .where(GenerationJob.created_at < created_before)  # type: ignore[arg-type]
            .order_by(GenerationJob.created_at.asc())  # type: ignore[attr-defined]
            .limit(limit)
        )
        return list(result.scalars().all())
