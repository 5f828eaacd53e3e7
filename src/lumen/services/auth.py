"""Account registration, login and organization membership.

Passwords are hashed with bcrypt in a worker thread. Token issuance is left
to the auth gateway in front of this service; it trusts the membership data
returned here.
"""

import asyncio
import re
from dataclasses import dataclass
from uuid import UUID, uuid4

import bcrypt
import structlog
from sqlalchemy.exc import IntegrityError

from lumen.models.organization import Organization
from lumen.models.profile import Profile, ProfileRole
from lumen.models.user import User
from lumen.services.exceptions import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)

logger = structlog.get_logger(__name__)

MIN_PASSWORD_LENGTH = 8
# bcrypt only looks at the first 72 bytes and newer releases reject longer input
MAX_PASSWORD_BYTES = 72
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
INVALID_CREDENTIALS = "invalid credentials"


def hash_password(password: str, rounds: int = 12) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("ascii")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("ascii"))
    except ValueError:
        # Malformed stored hash
        return False


def normalize_email(email: str) -> str:
    normalized = (email or "").strip().lower()
    if not EMAIL_PATTERN.match(normalized):
        raise ValidationError("a valid email address is required")
    return normalized


def validate_password(password: str) -> str:
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"password must be at least {MIN_PASSWORD_LENGTH} characters")
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValidationError(f"password must be at most {MAX_PASSWORD_BYTES} bytes")
    return password


def generate_slug(name: str) -> str:
    """Lower-case the name, keep [a-z0-9] and collapse everything else to single hyphens.

    Example:
        >>> generate_slug("Acme Studio, Inc.")
        'acme-studio-inc'
    """
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug or "org"


@dataclass(frozen=True)
class Registration:
    user: User
    organization: Organization
    profile: Profile


@dataclass(frozen=True)
class Login:
    user: User
    profiles: list[Profile]


class AuthService:
    """Creates accounts and answers membership questions for the HTTP layer."""

    def __init__(self, uow_factory, hash_rounds: int = 12):
        self.uow_factory = uow_factory
        self.hash_rounds = hash_rounds
        self._dummy_hash: str | None = None

    async def _hash(self, password: str) -> str:
        return await asyncio.to_thread(hash_password, password, self.hash_rounds)

    async def register(
        self, email: str, password: str, full_name: str, organization_name: str
    ) -> Registration:
        """Create a user, a new organization and the user's admin profile in one transaction.

        The organization starts with zero credits; the slug gets a random
        suffix when the plain one is taken.

        Raises:
            ValidationError: Bad email, password or organization name
            ConflictError: Email already registered
        """
        email = normalize_email(email)
        validate_password(password)
        organization_name = (organization_name or "").strip()
        if not organization_name:
            raise ValidationError("organization name is required")
        password_hash = await self._hash(password)

        async with await self.uow_factory() as uow:
            if await uow.users.get_by_email(email) is not None:
                raise ConflictError(f"email already registered: {email}")

            slug = generate_slug(organization_name)
            if await uow.organizations.get_by_slug(slug) is not None:
                slug = f"{slug}-{uuid4().hex[:6]}"

            try:
                user = await uow.users.add(User(email=email, password_hash=password_hash))
                organization = await uow.organizations.add(
                    Organization(name=organization_name, slug=slug, credits=0)
                )
                profile = await uow.profiles.add(
                    Profile(
                        user_id=user.id,
                        organization_id=organization.id,
                        full_name=(full_name or "").strip(),
                        role=ProfileRole.ADMIN,
                    )
                )
            except IntegrityError as e:
                raise ConflictError("email or organization slug already in use") from e

        logger.info(
            "auth.registered",
            user_id=str(user.id),
            organization_id=str(organization.id),
            slug=slug,
        )
        return Registration(user=user, organization=organization, profile=profile)

    async def authenticate(self, email: str, password: str) -> Login:
        """Verify credentials and return the user with its memberships.

        Unknown emails and wrong passwords fail identically.

        Raises:
            AuthenticationError: Credentials do not match
        """
        try:
            email = normalize_email(email)
        except ValidationError:
            raise AuthenticationError(INVALID_CREDENTIALS) from None

        async with await self.uow_factory() as uow:
            user = await uow.users.get_by_email(email)

        if user is None:
            # Spend the same hashing time as a real check
            if self._dummy_hash is None:
                self._dummy_hash = await self._hash(uuid4().hex)
            await asyncio.to_thread(verify_password, password or "", self._dummy_hash)
            logger.info("auth.login_failed", reason="unknown_email")
            raise AuthenticationError(INVALID_CREDENTIALS)

        if not await asyncio.to_thread(verify_password, password or "", user.password_hash):
            logger.info("auth.login_failed", reason="bad_password", user_id=str(user.id))
            raise AuthenticationError(INVALID_CREDENTIALS)

        async with await self.uow_factory() as uow:
            await uow.users.record_login(user.id)
            profiles = await uow.profiles.list_by_user(user.id)

        logger.info("auth.login", user_id=str(user.id), memberships=len(profiles))
        return Login(user=user, profiles=profiles)

    async def add_member(
        self,
        organization_id: UUID,
        email: str,
        full_name: str = "",
        role: ProfileRole = ProfileRole.MEMBER,
        password: str | None = None,
    ) -> tuple[User, Profile]:
        """Add a user to the organization, creating the account when the email is new.

        Raises:
            ValidationError: Bad email, or a new account without a valid password
            NotFoundError: Unknown organization
            ConflictError: User is already a member
        """
        email = normalize_email(email)
        async with await self.uow_factory() as uow:
            user = await uow.users.get_by_email(email)
        if user is None:
            if password is None:
                raise ValidationError("password is required to create a new account")
            password_hash = await self._hash(validate_password(password))

        async with await self.uow_factory() as uow:
            if await uow.organizations.get_by_id(organization_id) is None:
                raise NotFoundError(f"organization not found: {organization_id}")
            try:
                if user is None:
                    user = await uow.users.add(User(email=email, password_hash=password_hash))
                elif await uow.profiles.get_membership(user.id, organization_id) is not None:
                    raise ConflictError(f"{email} is already a member")
                profile = await uow.profiles.add(
                    Profile(
                        user_id=user.id,
                        organization_id=organization_id,
                        full_name=(full_name or "").strip(),
                        role=role,
                    )
                )
            except IntegrityError as e:
                raise ConflictError(f"{email} is already registered or a member") from e

        logger.info(
            "auth.member_added",
            user_id=str(user.id),
            organization_id=str(organization_id),
            role=role.value,
        )
        return user, profile

    async def require_membership(self, user_id: UUID, organization_id: UUID) -> Profile:
        """Return the user's profile in the organization.

        Raises:
            PermissionDeniedError: User is not a member
        """
        async with await self.uow_factory() as uow:
            profile = await uow.profiles.get_membership(user_id, organization_id)
        if profile is None:
            raise PermissionDeniedError("user is not a member of this organization")
        return profile

    async def get_account(self, user_id: UUID, organization_id: UUID) -> tuple[User, Profile]:
        """Return the user and its profile in the organization.

        Raises:
            PermissionDeniedError: User is not a member
        """
        async with await self.uow_factory() as uow:
            profile = await uow.profiles.get_membership(user_id, organization_id)
            user = await uow.users.get_by_id(user_id) if profile is not None else None
        if profile is None or user is None:
            raise PermissionDeniedError("user is not a member of this organization")
        return user, profile

    async def list_members(self, organization_id: UUID) -> list[tuple[Profile, User]]:
        async with await self.uow_factory() as uow:
            profiles = await uow.profiles.list_by_organization(organization_id)
            members = []
            for profile in profiles:
                user = await uow.users.get_by_id(profile.user_id)
                if user is not None:
                    members.append((profile, user))
        return members
