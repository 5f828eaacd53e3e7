"""pytest fixtures for lumen backend tests.

Provides:
- utc_timezone: Autouse fixture enforcing UTC timezone
- session_factory: Function-scoped SQLite (aiosqlite) database with the schema created
- session: Function-scoped database session
- uow_factory: Function-scoped UnitOfWork factory
- organization / image_provider_row: Seed rows most tests need; the organization
  comes with an admin owner (OWNER_ID) so submissions pass the membership check
- member: A non-admin member of the organization
"""

import os

# Settings validation is skipped in test environments; must be set before lumen.app is imported
os.environ.setdefault("APP_ENV", "test")
os.environ["TZ"] = "UTC"

from typing import AsyncGenerator  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker  # noqa: E402

from lumen.core.database import init_db, setup_db_session  # noqa: E402
from fakes import OWNER_EMAIL, OWNER_ID, OWNER_PASSWORD  # noqa: E402
from lumen.models.organization import Organization  # noqa: E402
from lumen.models.profile import Profile, ProfileRole  # noqa: E402
from lumen.models.provider import Provider, ProviderCategory  # noqa: E402
from lumen.models.user import User  # noqa: E402
from lumen.services.auth import hash_password  # noqa: E402
from lumen.uow import create_uow_factory  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def utc_timezone():
    """Enforce UTC timezone for all tests."""
    os.environ["TZ"] = "UTC"
    yield


@pytest_asyncio.fixture(scope="function")
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Provide a fresh file-backed SQLite database per test.

    A file (not :memory:) is used so concurrent sessions see the same data.
    """
    db_url = f"sqlite+aiosqlite:///{tmp_path / 'lumen_test.db'}"
    factory = setup_db_session(db_url)
    engine = factory.kw["bind"]
    await init_db(engine)

    yield factory

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture(scope="function")
async def uow_factory(session_factory):
    """Provide function-scoped UnitOfWork factory."""
    return create_uow_factory(session_factory)


@pytest_asyncio.fixture
async def organization(uow_factory) -> Organization:
    """Organization with 100 credits, owned by the admin user OWNER_ID."""
    async with await uow_factory() as uow:
        org = await uow.organizations.add(
            Organization(name="Acme Studio", slug="acme", credits=100)
        )
        owner = await uow.users.add(
            User(
                id=OWNER_ID,
                email=OWNER_EMAIL,
                password_hash=hash_password(OWNER_PASSWORD, rounds=4),
            )
        )
        await uow.profiles.add(
            Profile(
                user_id=owner.id,
                organization_id=org.id,
                full_name="Olive Owner",
                role=ProfileRole.ADMIN,
            )
        )
    return org


@pytest_asyncio.fixture
async def member(uow_factory, organization) -> User:
    """Non-admin member of the organization."""
    async with await uow_factory() as uow:
        user = await uow.users.add(
            User(email="member@acme.test", password_hash=hash_password("member-pass", rounds=4))
        )
        await uow.profiles.add(
            Profile(user_id=user.id, organization_id=organization.id, role=ProfileRole.MEMBER)
        )
    return user


@pytest_asyncio.fixture
async def image_provider_row(uow_factory) -> Provider:
    """Active kieai image provider charging 10 credits per variation."""
    async with await uow_factory() as uow:
        provider = await uow.providers.add(
            Provider(
                slug="kieai-seedream",
                name="Kie.ai Seedream",
                category=ProviderCategory.IMAGE_GENERATION,
                api_key="test-key",
                model="seedream-v1",
                cost_per_use=10,
            )
        )
    return provider
