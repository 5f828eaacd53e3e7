"""GenerationImage entity - one prompt variation submitted to an image vendor."""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlmodel import Field, SQLModel

from lumen.core.timezone import utcnow
from lumen.models.generation import (
    ERROR_MESSAGE_MAX_LENGTH,
    GenerationStatus,
    InvalidStateTransition,
)

DEFAULT_IMAGE_ERROR = "image generation failed"


class GenerationImage(SQLModel, table=True):
    """GenerationImage tracks a single vendor task and its outcome.

    `task_id` is the vendor-assigned correlation key used to route callbacks
    back to this row.
    """

    __tablename__ = "generation_images"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    job_id: UUID = Field(foreign_key="generation_jobs.id", index=True)
    position: int = Field(default=0)
    prompt: str
    status: GenerationStatus = Field(default=GenerationStatus.PENDING, index=True)
    task_id: Optional[str] = Field(default=None, max_length=255, unique=True, index=True)
    image_url: Optional[str] = Field(default=None)
    storage_key: Optional[str] = Field(default=None, max_length=1024)
    error_message: Optional[str] = Field(default=None, max_length=ERROR_MESSAGE_MAX_LENGTH)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = Field(default=None)

    def mark_processing(self, task_id: str) -> None:
        """Transition from pending to processing once the vendor accepted the task.

        Raises:
            InvalidStateTransition: If current status is not pending
            ValueError: If task_id is empty
        """
        if self.status != GenerationStatus.PENDING:
            raise InvalidStateTransition(
                f"Cannot mark processing from {self.status.value}. Image must be in pending state."
            )
        if not task_id:
            raise ValueError("task_id is required")
        self.task_id = task_id
        self.status = GenerationStatus.PROCESSING
        self.updated_at = utcnow()

    def mark_failed(self, error_message: Optional[str]) -> None:
        """Transition from any non-terminal state to failed.

        Raises:
            InvalidStateTransition: If the image is already terminal
        """
        if self.status.is_terminal:
            raise InvalidStateTransition(
                f"Cannot mark failed from terminal state {self.status.value}."
            )
        self.status = GenerationStatus.FAILED
        self.error_message = (error_message or DEFAULT_IMAGE_ERROR)[:ERROR_MESSAGE_MAX_LENGTH]
        now = utcnow()
        self.completed_at = now
        self.updated_at = now
