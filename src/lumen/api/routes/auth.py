"""Account endpoints.

- POST /api/v1/auth/register - Create an account with a new organization (caller becomes admin)
- POST /api/v1/auth/login - Verify credentials and list the account's memberships
- GET /api/v1/auth/me - Caller's account and profile in the current organization

Tokens are minted by the auth gateway from the login response; this service
only answers who the user is and which organizations it belongs to.
"""

from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from lumen.api.dependencies import Identity, get_auth_service, get_identity, http_error
from lumen.models.profile import Profile
from lumen.models.user import User
from lumen.services.auth import AuthService
from lumen.services.exceptions import ServiceError

logger = structlog.get_logger()
router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


class RegisterRequest(BaseModel):
    email: str = Field(..., max_length=320)
    password: str = Field(..., min_length=8)
    full_name: str = Field(..., min_length=1, max_length=255)
    org_name: str = Field(..., min_length=1, max_length=255)


class LoginRequest(BaseModel):
    email: str
    password: str


class UserDTO(BaseModel):
    id: UUID
    email: str

    @classmethod
    def from_model(cls, user: User) -> "UserDTO":
        return cls(id=user.id, email=user.email)


class MembershipDTO(BaseModel):
    organization_id: UUID
    role: str
    full_name: str

    @classmethod
    def from_model(cls, profile: Profile) -> "MembershipDTO":
        return cls(
            organization_id=profile.organization_id,
            role=profile.role.value,
            full_name=profile.full_name,
        )


class OrganizationDTO(BaseModel):
    id: UUID
    name: str
    slug: str
    credits: int


class RegisterResponse(BaseModel):
    user: UserDTO
    organization: OrganizationDTO
    membership: MembershipDTO


class LoginResponse(BaseModel):
    user: UserDTO
    memberships: list[MembershipDTO]


class MeResponse(BaseModel):
    user: UserDTO
    membership: MembershipDTO


@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
async def register(
    body: RegisterRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> RegisterResponse:
    """Create a user, its organization and its admin profile.

    HTTP Status Codes:
        201: Registered
        400: Invalid email, password or organization name
        409: Email already registered
    """
    try:
        registration = await auth_service.register(
            body.email, body.password, body.full_name, body.org_name
        )
    except ServiceError as e:
        raise http_error(e)

    organization = registration.organization
    return RegisterResponse(
        user=UserDTO.from_model(registration.user),
        organization=OrganizationDTO(
            id=organization.id,
            name=organization.name,
            slug=organization.slug,
            credits=organization.credits,
        ),
        membership=MembershipDTO.from_model(registration.profile),
    )


@router.post("/login", response_model=LoginResponse)
async def login(
    body: LoginRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> LoginResponse:
    """Verify credentials.

    HTTP Status Codes:
        200: Credentials valid
        401: Unknown email or wrong password
    """
    try:
        result = await auth_service.authenticate(body.email, body.password)
    except ServiceError as e:
        raise http_error(e)

    return LoginResponse(
        user=UserDTO.from_model(result.user),
        memberships=[MembershipDTO.from_model(profile) for profile in result.profiles],
    )


@router.get("/me", response_model=MeResponse)
async def me(
    identity: Identity = Depends(get_identity),
    auth_service: AuthService = Depends(get_auth_service),
) -> MeResponse:
    try:
        user, profile = await auth_service.get_account(identity.user_id, identity.organization_id)
    except ServiceError as e:
        raise http_error(e)
    return MeResponse(user=UserDTO.from_model(user), membership=MembershipDTO.from_model(profile))
