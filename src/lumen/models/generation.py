"""GenerationJob entity - one end-to-end image generation request."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from lumen.core.timezone import utcnow

ERROR_MESSAGE_MAX_LENGTH = 1000


class GenerationStatus(str, Enum):
    """Lifecycle status shared by jobs and their images."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (GenerationStatus.COMPLETED, GenerationStatus.FAILED)


class InvalidStateTransition(Exception):
    """Raised when attempting an invalid job or image state transition."""

    pass


class GenerationJob(SQLModel, table=True):
    """GenerationJob tracks a generation request from submission to credit settlement.

    Only the orchestrator mutates a job. `actual_cost` stays None until the
    job reaches a terminal state and is written exactly once.
    """

    __tablename__ = "generation_jobs"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    organization_id: UUID = Field(foreign_key="organizations.id", index=True)
    user_id: UUID = Field(index=True)
    status: GenerationStatus = Field(default=GenerationStatus.PENDING, index=True)
    base_prompt: str
    reference_images: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    product_images: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    provider_id: UUID = Field(foreign_key="providers.id")
    estimated_cost: int = Field(default=0, ge=0)
    actual_cost: Optional[int] = Field(default=None)
    error_message: Optional[str] = Field(default=None, max_length=ERROR_MESSAGE_MAX_LENGTH)
    created_at: datetime = Field(default_factory=utcnow, index=True)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = Field(default=None)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def mark_processing(self) -> None:
        """Transition from pending to processing.

        Raises:
            InvalidStateTransition: If current status is not pending
        """
        if self.status != GenerationStatus.PENDING:
            raise InvalidStateTransition(
                f"Cannot mark processing from {self.status.value}. Job must be in pending state."
            )
        self.status = GenerationStatus.PROCESSING
        self.updated_at = utcnow()

    def mark_failed(self, error_message: str) -> None:
        """Transition from any non-terminal state to failed.

        A job failed before any image completed is never charged, so a
        missing actual_cost is settled at zero here.

        Raises:
            InvalidStateTransition: If the job is already terminal
            ValueError: If error_message is empty
        """
        if self.is_terminal:
            raise InvalidStateTransition(
                f"Cannot mark failed from terminal state {self.status.value}."
            )
        if not error_message:
            raise ValueError("error_message is required")
        self.status = GenerationStatus.FAILED
        self.error_message = error_message[:ERROR_MESSAGE_MAX_LENGTH]
        if self.actual_cost is None:
            self.actual_cost = 0
        now = utcnow()
        self.completed_at = now
        self.updated_at = now
