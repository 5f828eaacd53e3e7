"""Unit of Work pattern.

Provides transaction management with automatic commit/rollback and access to all repositories.
"""

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lumen.repositories.credit_ledger import CreditLedgerRepository
from lumen.repositories.generation_image import GenerationImageRepository
from lumen.repositories.generation_job import GenerationJobRepository
from lumen.repositories.organization import OrganizationRepository
from lumen.repositories.profile import ProfileRepository
from lumen.repositories.provider import ProviderRepository
from lumen.repositories.user import UserRepository

logger = structlog.get_logger()


class UnitOfWork:
    """Unit of Work pattern implementation.

    Manages one database transaction and exposes every repository bound to
    its session.

    Example:
        async with await uow_factory() as uow:
            job = await uow.generation_jobs.get_for_update(job_id)
            job.mark_processing()
            # Commits on clean exit, rolls back on exception
    """

    def __init__(self, session: AsyncSession):
        self.session = session

        self.organizations = OrganizationRepository(session)
        self.users = UserRepository(session)
        self.profiles = ProfileRepository(session)
        self.providers = ProviderRepository(session)
        self.generation_jobs = GenerationJobRepository(session)
        self.generation_images = GenerationImageRepository(session)
        self.credit_ledger = CreditLedgerRepository(session)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Commit on clean exit, roll back otherwise, and always close the session.

        Returns:
            False: Always re-raise exceptions after rollback
        """
        try:
            if exc_type is None:
                await self.session.commit()
                logger.debug("transaction.committed")
            else:
                await self.session.rollback()
                logger.info("transaction.rolled_back", exc_type=exc_type.__name__)
        finally:
            await self.session.close()

        return False


def create_uow_factory(session_factory: async_sessionmaker[AsyncSession]):
    """Create a factory function that produces UnitOfWork instances.

    Args:
        session_factory: SQLAlchemy async session factory

    Returns:
        Callable that creates UnitOfWork instances from new sessions

    Example:
        uow_factory = create_uow_factory(setup_db_session(db_url))

        async with await uow_factory() as uow:
            await uow.organizations.add(org)
    """

    async def _create_uow():
        session = session_factory()
        return UnitOfWork(session)

    return _create_uow
