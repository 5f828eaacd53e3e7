"""Service error hierarchy.

This module defines the exception hierarchy for service-level errors:
- ServiceError: Base for all service errors
- ValidationError: Caller's fault (bad identifiers, missing fields); no retry
- InsufficientCreditsError: Business rule; no retry without topping up
- NotFoundError: Unknown organization, job, image, provider or task id
- AuthenticationError / PermissionDeniedError: Bad credentials, or not a member
- ConflictError: Email or slug already taken
- ProviderError: Vendor call failed; may trigger LLM fallback
"""


class ServiceError(Exception):
    """Base exception for all service errors."""

    pass


class ValidationError(ServiceError):
    """Request failed validation."""

    pass


class CallbackPayloadError(ValidationError):
    """Vendor callback body could not be parsed."""

    pass


class InsufficientCreditsError(ServiceError):
    """Organization balance does not cover the requested amount."""

    def __init__(self, available: int, required: int):
        self.available = available
        self.required = required
        super().__init__(f"insufficient credits: available {available}, required {required}")


class NotFoundError(ServiceError):
    """Requested entity does not exist."""

    pass


class AuthenticationError(ServiceError):
    """Credentials did not match an account."""

    pass


class PermissionDeniedError(ServiceError):
    """User is not allowed to act within the organization."""

    pass


class ConflictError(ServiceError):
    """Unique value (email, organization slug) already in use."""

    pass


class ProviderError(ServiceError):
    """Vendor call failed.

    Attributes:
        provider: Slug of the provider that failed
        status_code: HTTP status if the vendor answered, None for transport errors
        raw_body: Raw vendor response body for diagnostics
    """

    def __init__(
        self,
        message: str,
        provider: str = "",
        status_code: int | None = None,
        raw_body: str = "",
    ):
        self.provider = provider
        self.status_code = status_code
        self.raw_body = raw_body
        super().__init__(message)


class EmptyResponseError(ProviderError):
    """Vendor returned zero candidates/choices."""

    pass


class GenerationError(ServiceError):
    """Generation pipeline could not continue (no providers, no prompts)."""

    pass


class DuplicateProviderError(ServiceError):
    """A provider slug was registered twice."""

    pass


class RegistryFrozenError(ServiceError):
    """Registration attempted after the registry was frozen."""

    pass


class StorageError(ServiceError):
    """Blob storage operation failed."""

    pass
