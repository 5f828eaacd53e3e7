"""Organization member management (admin only).

- GET /api/v1/admin/members - List the caller organization's members
- POST /api/v1/admin/members - Add a member, creating the account when the email is new
"""

from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from lumen.api.dependencies import Identity, get_auth_service, http_error, require_admin
from lumen.models.profile import Profile, ProfileRole
from lumen.models.user import User
from lumen.services.auth import AuthService
from lumen.services.exceptions import ServiceError

logger = structlog.get_logger()
router = APIRouter(prefix="/api/v1/admin/members", tags=["members"])


class MemberDTO(BaseModel):
    user_id: UUID
    email: str
    full_name: str
    role: str
    joined_at: datetime

    @classmethod
    def from_models(cls, profile: Profile, user: User) -> "MemberDTO":
        return cls(
            user_id=user.id,
            email=user.email,
            full_name=profile.full_name,
            role=profile.role.value,
            joined_at=profile.created_at,
        )


class MemberListResponse(BaseModel):
    members: list[MemberDTO]


class AddMemberRequest(BaseModel):
    email: str = Field(..., max_length=320)
    full_name: str = Field(default="", max_length=255)
    role: Literal["admin", "member"] = "member"
    password: Optional[str] = Field(
        default=None, description="Required when the email has no account yet"
    )


@router.get("", response_model=MemberListResponse)
async def list_members(
    identity: Identity = Depends(require_admin),
    auth_service: AuthService = Depends(get_auth_service),
) -> MemberListResponse:
    members = await auth_service.list_members(identity.organization_id)
    return MemberListResponse(
        members=[MemberDTO.from_models(profile, user) for profile, user in members]
    )


@router.post("", response_model=MemberDTO, status_code=status.HTTP_201_CREATED)
async def add_member(
    body: AddMemberRequest,
    identity: Identity = Depends(require_admin),
    auth_service: AuthService = Depends(get_auth_service),
) -> MemberDTO:
    """Add a user to the caller's organization.

    HTTP Status Codes:
        201: Member added
        400: Invalid email, or a new account without a valid password
        403: Caller is not an admin
        409: Already a member
    """
    try:
        user, profile = await auth_service.add_member(
            identity.organization_id,
            body.email,
            full_name=body.full_name,
            role=ProfileRole(body.role),
            password=body.password,
        )
    except ServiceError as e:
        raise http_error(e)

    logger.info(
        "members.added",
        organization_id=str(identity.organization_id),
        user_id=str(user.id),
        by_user=str(identity.user_id),
    )
    return MemberDTO.from_models(profile, user)
