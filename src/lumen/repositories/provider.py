"""Provider repository."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lumen.core.timezone import utcnow
from lumen.models.provider import Provider, ProviderCategory


class ProviderRepository:
    """Repository for Provider entities."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, provider_id: UUID) -> Provider | None:
        result = await self.session.execute(
            select(Provider).where(Provider.id == provider_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def get_by_slug(self, slug: str) -> Provider | None:
        result = await self.session.execute(
            select(Provider).where(Provider.slug == slug)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def list_active(self, category: ProviderCategory | None = None) -> list[Provider]:
        """Retrieve active providers ordered by ascending priority.

        Args:
            category: Optional category filter

        Returns:
            Active providers, lowest priority value first
        """
        query = select(Provider).where(Provider.is_active == True)  # type: ignore[arg-type]  # noqa: E712
        if category is not None:
            query = query.where(Provider.category == category)  # type: ignore[arg-type]
        query = query.order_by(Provider.priority.asc(), Provider.created_at.asc())  # type: ignore[attr-defined]
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def add(self, provider: Provider) -> Provider:
        self.session.add(provider)
        await self.session.flush()
        return provider

    async def upsert(self, provider: Provider) -> Provider:
        """Insert the provider, or update the existing row with the same slug.

        Used by the seeding CLI so reruns refresh keys and settings in place.

        Returns:
            The persisted provider row
        """
        existing = await self.get_by_slug(provider.slug)
        if existing is None:
            return await self.add(provider)

        existing.name = provider.name
        existing.category = provider.category
        existing.api_key = provider.api_key
        existing.base_url = provider.base_url
        existing.model = provider.model
        existing.config = provider.config
        existing.priority = provider.priority
        existing.is_active = provider.is_active
        existing.cost_per_use = provider.cost_per_use
        existing.updated_at = utcnow()
        self.session.add(existing)
        await self.session.flush()
        return existing
