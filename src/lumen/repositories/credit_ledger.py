"""CreditLedgerEntry repository.

Append-only: entries are added and read, never updated or deleted.
"""

from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from lumen.models.credit_ledger import CreditLedgerEntry


class CreditLedgerRepository:
    """Repository for CreditLedgerEntry entities."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, entry: CreditLedgerEntry) -> CreditLedgerEntry:
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def list_by_organization(
        self, organization_id: UUID, limit: int = 50, offset: int = 0
    ) -> list[CreditLedgerEntry]:
        """Retrieve an organization's ledger entries, newest first."""
        result = await self.session.execute(
            select(CreditLedgerEntry)
            .where(CreditLedgerEntry.organization_id == organization_id)  # type: ignore[arg-type]
            .order_by(CreditLedgerEntry.created_at.desc())  # type: ignore[attr-defined]
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def list_by_job(self, job_id: UUID) -> list[CreditLedgerEntry]:
        result = await self.session.execute(
            select(CreditLedgerEntry)
            .where(CreditLedgerEntry.job_id == job_id)  # type: ignore[arg-type]
            .order_by(CreditLedgerEntry.created_at.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def sum_by_organization(self, organization_id: UUID) -> int:
        """Sum of all entry amounts for an organization (0 when none)."""
        result = await self.session.execute(
            select(func.coalesce(func.sum(CreditLedgerEntry.amount), 0)).where(
                CreditLedgerEntry.organization_id == organization_id  # type: ignore[arg-type]
            )
        )
        return int(result.scalar_one())
