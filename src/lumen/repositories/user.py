"""User repository."""

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from lumen.core.timezone import utcnow
from lumen.models.user import User


class UserRepository:
    """Repository for User entities. Emails are stored lower-cased."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, user_id: UUID) -> User | None:
        result = await self.session.execute(
            select(User).where(User.id == user_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def get_by_email(self, email: str) -> User | None:
        result = await self.session.execute(
            select(User).where(User.email == email.strip().lower())  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def add(self, user: User) -> User:
        user.email = user.email.strip().lower()
        self.session.add(user)
        await self.session.flush()
        return user

    async def record_login(self, user_id: UUID) -> None:
        now = utcnow()
        await self.session.execute(
            update(User)
            .where(User.id == user_id)  # type: ignore[arg-type]
            .values(last_login_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
