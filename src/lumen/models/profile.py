"""Profile entity - a user's membership of one organization."""

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from lumen.core.timezone import utcnow


class ProfileRole(str, Enum):
    """Role of a member within its organization."""

    ADMIN = "admin"
    MEMBER = "member"


class Profile(SQLModel, table=True):
    """Profile links a user to an organization with a role.

    A user has at most one profile per organization. Admins manage members
    and credits; members submit generations.
    """

    __tablename__ = "profiles"  # type: ignore[assignment]
    __table_args__ = (UniqueConstraint("user_id", "organization_id", name="uq_profiles_user_org"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(foreign_key="users.id", index=True)
    organization_id: UUID = Field(foreign_key="organizations.id", index=True)
    full_name: str = Field(default="", max_length=255)
    avatar_url: str = Field(default="", max_length=1000)
    role: ProfileRole = Field(default=ProfileRole.MEMBER)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_admin(self) -> bool:
        return self.role == ProfileRole.ADMIN
