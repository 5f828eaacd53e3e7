"""SQLModel database entities.

All models are imported here to ensure they're registered with SQLModel metadata
before `init_db` creates the schema.
"""

from lumen.models.credit_ledger import CreditLedgerEntry, LedgerEntryType
from lumen.models.generation import GenerationJob, GenerationStatus, InvalidStateTransition
from lumen.models.generation_image import GenerationImage
from lumen.models.organization import Organization
from lumen.models.profile import Profile, ProfileRole
from lumen.models.provider import Provider, ProviderCategory, ProviderConfig
from lumen.models.user import User

__all__ = [
    "Organization",
    "User",
    "Profile",
    "ProfileRole",
    "Provider",
    "ProviderCategory",
    "ProviderConfig",
    "GenerationJob",
    "GenerationStatus",
    "InvalidStateTransition",
    "GenerationImage",
    "CreditLedgerEntry",
    "LedgerEntryType",
]
