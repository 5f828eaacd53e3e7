"""Build provider clients and the registry from Provider rows.

The vendor adapter is chosen from the slug prefix (`kieai-*`, `openai-*`,
`google-*`/`gemini-*`, `replicate-*`).
"""

from typing import Optional

import httpx
import replicate
import structlog

from lumen.core.config import Settings
from lumen.models.provider import Provider, ProviderCategory
from lumen.services.providers.gemini import GeminiTextProvider
from lumen.services.providers.kieai import KieAIProvider
from lumen.services.providers.openai import OpenAIVisionProvider
from lumen.services.providers.registry import ProviderDescriptor, ProviderRegistry
from lumen.services.providers.replicate_client import ReplicateImageProvider

logger = structlog.get_logger(__name__)

SUPPORTED_VENDORS = {
    ProviderCategory.VISION: {"openai"},
    ProviderCategory.LLM: {"kieai", "google", "gemini"},
    ProviderCategory.IMAGE_GENERATION: {"kieai", "replicate"},
}


class UnsupportedProviderError(ValueError):
    """No adapter exists for the provider's vendor and category."""

    pass


def vendor_of(slug: str) -> str:
    return slug.split("-", 1)[0].lower()


def describe(provider: Provider) -> ProviderDescriptor:
    return ProviderDescriptor(
        slug=provider.slug,
        name=provider.name,
        category=provider.category,
        model=provider.model,
        priority=provider.priority,
        cost_per_use=provider.cost_per_use,
        config=provider.settings,
    )


def create_provider_client(
    provider: Provider,
    http_transport: Optional[httpx.AsyncBaseTransport] = None,
    replicate_client: Optional[replicate.Client] = None,
):
    """Instantiate the adapter for a provider row.

    Raises:
        UnsupportedProviderError: Unknown vendor/category combination
    """
    vendor = vendor_of(provider.slug)
    category = provider.category
    if vendor not in SUPPORTED_VENDORS.get(category, set()):
        raise UnsupportedProviderError(
            f"no {category.value} adapter for provider {provider.slug}"
        )

    config = provider.settings
    if vendor == "openai":
        return OpenAIVisionProvider(
            provider.slug,
            provider.api_key,
            base_url=provider.base_url,
            model=provider.model,
            config=config,
            transport=http_transport,
        )
    if vendor in ("google", "gemini"):
        return GeminiTextProvider(
            provider.slug,
            provider.api_key,
            base_url=provider.base_url,
            model=provider.model,
            config=config,
            transport=http_transport,
        )
    if vendor == "replicate":
        return ReplicateImageProvider(
            provider.slug,
            provider.api_key,
            model=provider.model,
            config=config,
            client=replicate_client,
        )
    return KieAIProvider(
        provider.slug,
        provider.api_key,
        base_url=provider.base_url,
        model=provider.model,
        config=config,
        transport=http_transport,
        image_timeout=category == ProviderCategory.IMAGE_GENERATION,
    )


def build_registry(
    providers: list[Provider],
    http_transport: Optional[httpx.AsyncBaseTransport] = None,
    replicate_client: Optional[replicate.Client] = None,
) -> ProviderRegistry:
    """Register every active, supported provider and freeze the registry.

    Unsupported rows are skipped with a warning so one bad row does not take
    the whole service down.
    """
    registry = ProviderRegistry()
    for provider in providers:
        if not provider.is_active:
            continue
        try:
            client = create_provider_client(provider, http_transport, replicate_client)
        except UnsupportedProviderError as e:
            logger.warning("provider.unsupported", slug=provider.slug, error=str(e))
            continue

        descriptor = describe(provider)
        if provider.category == ProviderCategory.VISION:
            registry.register_vision(descriptor, client)
        elif provider.category == ProviderCategory.LLM:
            registry.register_llm(descriptor, client)
        else:
            registry.register_image(descriptor, client)
        logger.info(
            "provider.registered",
            slug=provider.slug,
            category=provider.category.value,
            priority=provider.priority,
        )

    return registry.freeze()


def default_providers(settings: Settings) -> list[Provider]:
    """Provider rows derived from the configured vendor credentials.

    Used by `python -m lumen.cli seed-providers`; only vendors with a key
    configured are returned.
    """
    rows: list[Provider] = []
    text = {"timeout_ms": 60000, "max_retries": 3}
    image = {"timeout_ms": 120000}

    if settings.openai_api_key:
        rows.append(
            Provider(
                slug="openai-gpt4o",
                name="OpenAI GPT-4o Vision",
                category=ProviderCategory.VISION,
                api_key=settings.openai_api_key,
                model="gpt-4o",
                config={"timeout_ms": 60000},
                priority=0,
            )
        )

    if settings.kieai_api_key:
        rows.extend(
            [
                Provider(
                    slug="kieai-gemini3",
                    name="Kie.ai Gemini 3.0",
                    category=ProviderCategory.LLM,
                    api_key=settings.kieai_api_key,
                    model="gemini-3.0",
                    config=dict(text),
                    priority=0,
                ),
                Provider(
                    slug="kieai-gemini25",
                    name="Kie.ai Gemini 2.5",
                    category=ProviderCategory.LLM,
                    api_key=settings.kieai_api_key,
                    model="gemini-2.5",
                    config=dict(text),
                    priority=1,
                ),
                Provider(
                    slug="kieai-seedream",
                    name="Kie.ai Seedream",
                    category=ProviderCategory.IMAGE_GENERATION,
                    api_key=settings.kieai_api_key,
                    model="seedream-v1",
                    config=dict(image),
                    cost_per_use=10,
                ),
                Provider(
                    slug="kieai-nano",
                    name="Kie.ai Nano Banana Pro",
                    category=ProviderCategory.IMAGE_GENERATION,
                    api_key=settings.kieai_api_key,
                    model="nano-banana-pro",
                    config=dict(image),
                    priority=1,
                    cost_per_use=5,
                ),
            ]
        )

    if settings.gemini_api_key:
        rows.append(
            Provider(
                slug="google-gemini",
                name="Google Gemini (Direct)",
                category=ProviderCategory.LLM,
                api_key=settings.gemini_api_key,
                model="gemini-2.0-flash",
                config={"timeout_ms": 60000},
                priority=2,
            )
        )

    if settings.replicate_api_token:
        rows.append(
            Provider(
                slug="replicate-flux",
                name="Replicate Flux",
                category=ProviderCategory.IMAGE_GENERATION,
                api_key=settings.replicate_api_token,
                model=settings.replicate_model_version,
                config=dict(image),
                priority=2,
                cost_per_use=8,
            )
        )

    return rows
