"""Profile (organization membership) repository."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lumen.models.profile import Profile


class ProfileRepository:
    """Repository for Profile entities."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_membership(self, user_id: UUID, organization_id: UUID) -> Profile | None:
        """Retrieve the user's profile in the organization, if it is a member."""
        result = await self.session.execute(
            select(Profile).where(
                Profile.user_id == user_id,  # type: ignore[arg-type]
                Profile.organization_id == organization_id,  # type: ignore[arg-type]
            )
        )
        return result.scalar_one_or_none()

    async def list_by_user(self, user_id: UUID) -> list[Profile]:
        """Retrieve the user's memberships, oldest first."""
        result = await self.session.execute(
            select(Profile)
            .where(Profile.user_id == user_id)  # type: ignore[arg-type]
            .order_by(Profile.created_at.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def list_by_organization(self, organization_id: UUID) -> list[Profile]:
        result = await self.session.execute(
            select(Profile)
            .where(Profile.organization_id == organization_id)  # type: ignore[arg-type]
            .order_by(Profile.created_at.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def add(self, profile: Profile) -> Profile:
        self.session.add(profile)
        await self.session.flush()
        return profile
