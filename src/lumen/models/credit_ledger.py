"""CreditLedgerEntry entity - append-only record of balance changes."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlmodel import Field, SQLModel

from lumen.core.timezone import utcnow


class LedgerEntryType(str, Enum):
    """Reason category of a balance change."""

    GENERATION = "generation"
    REFUND = "refund"
    PURCHASE = "purchase"
    GRANT = "grant"


class CreditLedgerEntry(SQLModel, table=True):
    """One signed change to an organization's credit balance.

    Rows are never updated or deleted: positive amounts add credits,
    negative amounts deduct them.
    """

    __tablename__ = "credit_ledger"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    organization_id: UUID = Field(foreign_key="organizations.id", index=True)
    user_id: Optional[UUID] = Field(default=None)
    amount: int
    entry_type: LedgerEntryType = Field(default=LedgerEntryType.GENERATION)
    description: str = Field(default="", max_length=1000)
    job_id: Optional[UUID] = Field(default=None, foreign_key="generation_jobs.id", index=True)
    created_at: datetime = Field(default_factory=utcnow, index=True)
