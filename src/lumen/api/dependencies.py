"""FastAPI dependencies for request validation and common operations.

This module provides reusable FastAPI dependencies for:
- Callback signature validation
- Request identity (asserted by the upstream auth gateway, checked against memberships)
- Access to services stored on app.state by the lifespan
- Translating service errors into HTTP errors
"""

from dataclasses import dataclass
from typing import Annotated, Callable
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request, status

from lumen.core.config import Settings
from lumen.models.profile import ProfileRole
from lumen.services.auth import AuthService
from lumen.services.billing.ledger import CreditLedgerService
from lumen.services.callback_signature import validate_callback_signature
from lumen.services.exceptions import (
    AuthenticationError,
    ConflictError,
    InsufficientCreditsError,
    NotFoundError,
    PermissionDeniedError,
    ServiceError,
    StorageError,
    ValidationError,
)
from lumen.services.generation.orchestrator import GenerationOrchestrator
from lumen.services.uploads import UploadService
from lumen.uow import UnitOfWork

@dataclass(frozen=True)
class Identity:
    """Caller identity: gateway-asserted ids plus the role from the caller's profile."""

    user_id: UUID
    organization_id: UUID
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ProfileRole.ADMIN.value


def get_settings(request: Request) -> Settings:
    """Get application settings loaded by the lifespan."""
    return request.app.state.settings


def get_uow_factory(request: Request) -> Callable[[], UnitOfWork]:
    """Get UnitOfWork factory from app state.

    Example:
        >>> @router.get("/endpoint")
        >>> async def endpoint(uow_factory=Depends(get_uow_factory)):
        ...     async with await uow_factory() as uow:
        ...         await uow.organizations.get_by_id(org_id)
    """
    return request.app.state.uow_factory


def get_orchestrator(request: Request) -> GenerationOrchestrator:
    return request.app.state.orchestrator


def get_ledger(request: Request) -> CreditLedgerService:
    return request.app.state.ledger


def get_upload_service(request: Request) -> UploadService:
    return request.app.state.upload_service


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def _header_uuid(value: str | None, header: str) -> UUID:
    if not value:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail=f"Missing {header} header"
        )
    try:
        return UUID(value)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid {header} header"
        )


async def get_identity(
    x_user_id: Annotated[str | None, Header()] = None,
    x_organization_id: Annotated[str | None, Header()] = None,
    auth_service: AuthService = Depends(get_auth_service),
) -> Identity:
    """Resolve the caller from gateway headers and its membership of the organization.

    Raises:
        HTTPException: 401 if a header is missing, 400 if an id is malformed,
            403 if the user is not a member of the organization
    """
    user_id = _header_uuid(x_user_id, "X-User-Id")
    organization_id = _header_uuid(x_organization_id, "X-Organization-Id")
    try:
        profile = await auth_service.require_membership(user_id, organization_id)
    except PermissionDeniedError as e:
        raise http_error(e)
    return Identity(user_id=user_id, organization_id=organization_id, role=profile.role.value)


async def require_admin(identity: Identity = Depends(get_identity)) -> Identity:
    if not identity.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin role required")
    return identity


async def verify_callback_signature(
    request: Request,
    x_callback_signature: Annotated[str | None, Header()] = None,
    settings: Settings = Depends(get_settings),
) -> bytes:
    """Read the raw callback body, validating its signature when a secret is configured.

    Returns:
        Raw request body bytes (for further processing by the endpoint)

    Raises:
        HTTPException: 401 Unauthorized if signature is missing or invalid
    """
    raw_body = await request.body()

    if not settings.callback_signing_secret:
        return raw_body

    if not x_callback_signature:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-Callback-Signature header"
        )

    if not validate_callback_signature(
        raw_body, x_callback_signature, settings.callback_signing_secret
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid callback signature"
        )

    return raw_body


def http_error(error: ServiceError) -> HTTPException:
    """Map a service error onto the HTTP status the caller should see."""
    if isinstance(error, ValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))
    if isinstance(error, InsufficientCreditsError):
        return HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail={
                "message": str(error),
                "available": error.available,
                "required": error.required,
            },
        )
    if isinstance(error, AuthenticationError):
        return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(error))
    if isinstance(error, PermissionDeniedError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(error))
    if isinstance(error, ConflictError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(error))
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    if isinstance(error, StorageError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(error))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(error))
