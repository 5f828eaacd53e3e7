"""Provider entity - configured AI vendor integration."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel
from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from lumen.core.timezone import utcnow


class ProviderCategory(str, Enum):
    """Capability category a provider is registered under."""

    VISION = "vision"
    LLM = "llm"
    IMAGE_GENERATION = "image_generation"


class ProviderConfig(BaseModel):
    """Per-provider tuning stored in the `config` JSON column."""

    timeout_ms: int = 0
    max_retries: int = 0
    # Error substrings (case-insensitive) that allow falling back to the next
    # LLM provider. Empty means any error falls back.
    fallback_error_substrings: list[str] = []
    headers: dict[str, str] = {}


class Provider(SQLModel, table=True):
    """Provider represents one vendor integration of a single capability category."""

    __tablename__ = "providers"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    slug: str = Field(max_length=100, unique=True, index=True)
    name: str = Field(max_length=255)
    category: ProviderCategory = Field(index=True)
    api_key: str = Field(default="", max_length=1000)
    base_url: str = Field(default="", max_length=500)
    model: str = Field(default="", max_length=255)
    config: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    priority: int = Field(default=0)
    is_active: bool = Field(default=True)
    cost_per_use: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def settings(self) -> ProviderConfig:
        """Parsed view of the JSON config column."""
        return ProviderConfig.model_validate(self.config or {})
