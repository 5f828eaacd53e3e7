"""Organization repository.

Provides data access for organizations, including the locking primitives the
credit ledger relies on.
"""

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from lumen.core.timezone import utcnow
from lumen.models.organization import Organization


class OrganizationRepository:
    """Repository for Organization entities.

    Credit balance changes go through `debit`/`credit` only; both are single
    UPDATE statements so they are safe against lost updates.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, organization_id: UUID) -> Organization | None:
        result = await self.session.execute(
            select(Organization).where(Organization.id == organization_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def get_by_slug(self, slug: str) -> Organization | None:
        result = await self.session.execute(
            select(Organization).where(Organization.slug == slug)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def get_for_update(self, organization_id: UUID) -> Organization | None:
        """Retrieve organization with a row-level lock held until the transaction ends.

        Args:
            organization_id: Organization's unique identifier

        Returns:
            Locked Organization if found, None otherwise
        """
        result = await self.session.execute(
            select(Organization)
            .where(Organization.id == organization_id)  # type: ignore[arg-type]
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def add(self, organization: Organization) -> Organization:
        self.session.add(organization)
        await self.session.flush()
        return organization

    async def debit(self, organization_id: UUID, amount: int) -> bool:
        """Decrement the balance if it covers the amount.

        Query explanation:
        - UPDATE ... SET credits = credits - :amount
        - WHERE credits >= :amount: never drives the balance negative

        Args:
            organization_id: Organization to charge
            amount: Non-negative number of credits

        Returns:
            True if the balance was decremented, False if it was insufficient
        """
        result = await self.session.execute(
            update(Organization)
            .where(Organization.id == organization_id)  # type: ignore[arg-type]
            .where(Organization.credits >= amount)  # type: ignore[operator]
            .values(credits=Organization.credits - amount, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def credit(self, organization_id: UUID, amount: int) -> bool:
        """Increment the balance.

        Returns:
            True if the organization exists and was updated
        """
        result = await self.session.execute(
            update(Organization)
            .where(Organization.id == organization_id)  # type: ignore[arg-type]
            .values(credits=Organization.credits + amount, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1  # type: ignore[attr-defined]
