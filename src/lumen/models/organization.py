"""Organization entity - billing tenant holding the credit balance."""

from datetime import datetime
from uuid import UUID, uuid4

from sqlmodel import Field, SQLModel

from lumen.core.timezone import utcnow


class Organization(SQLModel, table=True):
    """Organization is the billing entity; every job and ledger entry belongs to one.

    `credits` is only ever changed through the credit ledger service so that it
    always equals the sum of the organization's ledger entries.
    """

    __tablename__ = "organizations"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    name: str = Field(max_length=255)
    slug: str = Field(max_length=255, unique=True, index=True)
    credits: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
