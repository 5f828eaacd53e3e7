"""Repository layer.

Provides data access abstractions for all domain entities.
No base classes - each repository is self-contained.
"""

from lumen.repositories.credit_ledger import CreditLedgerRepository
from lumen.repositories.generation_image import GenerationImageRepository, ImageStatusCounts
from lumen.repositories.generation_job import GenerationJobRepository
from lumen.repositories.organization import OrganizationRepository
from lumen.repositories.profile import ProfileRepository
from lumen.repositories.provider import ProviderRepository
from lumen.repositories.user import UserRepository

__all__ = [
    "OrganizationRepository",
    "UserRepository",
    "ProfileRepository",
    "ProviderRepository",
    "GenerationJobRepository",
    "GenerationImageRepository",
    "ImageStatusCounts",
    "CreditLedgerRepository",
]
