"""OpenAI vision adapter (chat completions with an image_url part)."""

import json
from typing import Optional

import httpx

from lumen.models.provider import ProviderConfig
from lumen.services.exceptions import EmptyResponseError
from lumen.services.providers.base import (
    DEFAULT_TEXT_TIMEOUT_SECONDS,
    VendorHTTPClient,
    VisionAnalysis,
    timeout_seconds,
)

DEFAULT_BASE_URL = "https://api.openai.com"
DEFAULT_MODEL = "gpt-4o"
FALLBACK_STYLE_NOTES = "Style derived from reference image"

VISION_SYSTEM_PROMPT = """You are a professional creative director analyzing reference images for an AI image generation platform.

Analyze the provided image and describe:
1. Overall visual style (artistic style, mood, atmosphere)
2. Color palette and lighting
3. Composition and framing
4. Key visual elements that should be preserved

Format your response as JSON with these fields:
{
  "description": "detailed description of what's in the image",
  "style_notes": "key style characteristics to apply to generated images"
}"""


class OpenAIVisionProvider:
    """Analyzes reference images with an OpenAI vision model."""

    def __init__(
        self,
        slug: str,
        api_key: str,
        base_url: str = "",
        model: str = "",
        config: Optional[ProviderConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        config = config or ProviderConfig()
        self.slug = slug
        self.model = model or DEFAULT_MODEL
        self.http = VendorHTTPClient(
            provider=slug,
            base_url=base_url or DEFAULT_BASE_URL,
            timeout_seconds=timeout_seconds(config.timeout_ms, DEFAULT_TEXT_TIMEOUT_SECONDS),
            max_retries=config.max_retries,
            headers={**config.headers, "Authorization": f"Bearer {api_key}"},
            transport=transport,
        )

    async def analyze(self, image_url: str) -> VisionAnalysis:
        """Describe the image and extract style notes.

        Raises:
            ProviderError: Non-2xx or malformed response
            EmptyResponseError: Response has no choices
        """
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": VISION_SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": "Analyze this reference image for style direction:"},
                        {"type": "image_url", "image_url": {"url": image_url}},
                    ],
                },
            ],
            "response_format": {"type": "json_object"},
            "max_tokens": 1000,
        }
        body = await self.http.post_json("/v1/chat/completions", payload)

        choices = body.get("choices") or []
        if not choices:
            raise EmptyResponseError(
                f"{self.slug}: no choices in vision response",
                provider=self.slug,
                raw_body=json.dumps(body),
            )

        content = choices[0].get("message", {}).get("content") or ""
        return _parse_analysis(content)


def _parse_analysis(content: str) -> VisionAnalysis:
    try:
        parsed = json.loads(content)
    except ValueError:
        parsed = None

    if not isinstance(parsed, dict):
        return VisionAnalysis(description=content, style_notes=FALLBACK_STYLE_NOTES)

    return VisionAnalysis(
        description=str(parsed.get("description") or content),
        style_notes=str(parsed.get("style_notes") or FALLBACK_STYLE_NOTES),
    )
