"""Provider registry: three typed registries of configured provider clients.

Built once at startup, frozen, and injected into the orchestrator. Lookups by
category return entries ordered by ascending priority, ties broken by
registration order.
"""

from dataclasses import dataclass, field
from typing import Generic, TypeVar, Union

from lumen.models.provider import ProviderCategory, ProviderConfig
from lumen.services.exceptions import (
    DuplicateProviderError,
    NotFoundError,
    RegistryFrozenError,
)
from lumen.services.providers.base import (
    ImageGenerationProvider,
    TextGenerationProvider,
    VisionProvider,
)

ClientT = TypeVar("ClientT")


@dataclass(frozen=True)
class ProviderDescriptor:
    """Routing and billing metadata of a registered provider."""

    slug: str
    name: str
    category: ProviderCategory
    model: str = ""
    priority: int = 0
    cost_per_use: int = 0
    config: ProviderConfig = field(default_factory=ProviderConfig)


@dataclass(frozen=True)
class RegisteredProvider(Generic[ClientT]):
    descriptor: ProviderDescriptor
    client: ClientT
    sequence: int

    @property
    def slug(self) -> str:
        return self.descriptor.slug


AnyRegistered = Union[
    RegisteredProvider[VisionProvider],
    RegisteredProvider[TextGenerationProvider],
    RegisteredProvider[ImageGenerationProvider],
]


class ProviderRegistry:
    """Holds vision, LLM and image providers keyed by slug.

    Slugs are unique across all three categories because callbacks are
    dispatched by slug alone.
    """

    def __init__(self) -> None:
        self._vision: dict[str, RegisteredProvider[VisionProvider]] = {}
        self._llm: dict[str, RegisteredProvider[TextGenerationProvider]] = {}
        self._image: dict[str, RegisteredProvider[ImageGenerationProvider]] = {}
        self._sequence = 0
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> "ProviderRegistry":
        self._frozen = True
        return self

    def register_vision(self, descriptor: ProviderDescriptor, client: VisionProvider) -> None:
        self._vision[descriptor.slug] = self._entry(descriptor, client, ProviderCategory.VISION)

    def register_llm(self, descriptor: ProviderDescriptor, client: TextGenerationProvider) -> None:
        self._llm[descriptor.slug] = self._entry(descriptor, client, ProviderCategory.LLM)

    def register_image(
        self, descriptor: ProviderDescriptor, client: ImageGenerationProvider
    ) -> None:
        self._image[descriptor.slug] = self._entry(
            descriptor, client, ProviderCategory.IMAGE_GENERATION
        )

    def vision_providers(self) -> list[RegisteredProvider[VisionProvider]]:
        return _by_priority(self._vision.values())

    def llm_providers(self) -> list[RegisteredProvider[TextGenerationProvider]]:
        return _by_priority(self._llm.values())

    def image_providers(self) -> list[RegisteredProvider[ImageGenerationProvider]]:
        return _by_priority(self._image.values())

    def get_image_provider(self, slug: str) -> RegisteredProvider[ImageGenerationProvider]:
        """Resolve an image provider by slug.

        Raises:
            NotFoundError: No image provider registered under the slug
        """
        entry = self._image.get(slug)
        if entry is None:
            raise NotFoundError(f"image provider not found: {slug}")
        return entry

    def get(self, slug: str) -> AnyRegistered:
        """Resolve any provider by slug.

        Raises:
            NotFoundError: Slug not registered in any category
        """
        for registry in (self._vision, self._llm, self._image):
            if slug in registry:
                return registry[slug]
        raise NotFoundError(f"provider not found: {slug}")

    def __contains__(self, slug: object) -> bool:
        return slug in self._vision or slug in self._llm or slug in self._image

    def __len__(self) -> int:
        return len(self._vision) + len(self._llm) + len(self._image)

    def _entry(
        self, descriptor: ProviderDescriptor, client: ClientT, category: ProviderCategory
    ) -> RegisteredProvider[ClientT]:
        if self._frozen:
            raise RegistryFrozenError(f"cannot register {descriptor.slug}: registry is frozen")
        if descriptor.category != category:
            raise ValueError(
                f"provider {descriptor.slug} has category {descriptor.category.value}, "
                f"cannot register as {category.value}"
            )
        if descriptor.slug in self:
            raise DuplicateProviderError(f"provider already registered: {descriptor.slug}")

        self._sequence += 1
        return RegisteredProvider(descriptor=descriptor, client=client, sequence=self._sequence)


def _by_priority(entries) -> list:
    return sorted(entries, key=lambda entry: (entry.descriptor.priority, entry.sequence))
