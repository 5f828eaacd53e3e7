"""Google Gemini text generation adapter (generateContent, API key in query)."""

import json
from typing import Optional

import httpx

from lumen.models.provider import ProviderConfig
from lumen.services.exceptions import EmptyResponseError
from lumen.services.providers.base import (
    DEFAULT_TEXT_TIMEOUT_SECONDS,
    ChatMessage,
    TextGenerationOptions,
    TextGenerationResult,
    VendorHTTPClient,
    timeout_seconds,
)

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com"
DEFAULT_MODEL = "gemini-2.0-flash"


class GeminiTextProvider:
    """Text generation over the Gemini REST API.

    Gemini has no system role: the first system message becomes
    `systemInstruction` and "assistant" turns are sent as "model".
    """

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
        self.api_key = api_key
        self.model = model or DEFAULT_MODEL
        self.http = VendorHTTPClient(
            provider=slug,
            base_url=base_url or DEFAULT_BASE_URL,
            timeout_seconds=timeout_seconds(config.timeout_ms, DEFAULT_TEXT_TIMEOUT_SECONDS),
            max_retries=config.max_retries,
            headers=dict(config.headers),
            transport=transport,
        )

    async def generate(
        self, messages: list[ChatMessage], options: TextGenerationOptions
    ) -> TextGenerationResult:
        contents = []
        system_instruction = None
        for message in messages:
            if message.role == "system":
                if system_instruction is None:
                    system_instruction = message.content
                continue
            role = "model" if message.role == "assistant" else message.role
            contents.append({"role": role, "parts": [{"text": message.content}]})

        payload: dict = {
            "contents": contents,
            "generationConfig": {
                "temperature": options.temperature,
                "maxOutputTokens": options.max_tokens,
            },
        }
        if system_instruction:
            payload["systemInstruction"] = {"parts": [{"text": system_instruction}]}

        model = options.model or self.model
        body = await self.http.post_json(
            f"/v1beta/models/{model}:generateContent",
            payload,
            params={"key": self.api_key},
        )

        candidates = body.get("candidates") or []
        if not candidates:
            raise EmptyResponseError(
                f"{self.slug}: no candidates in Gemini response",
                provider=self.slug,
                raw_body=json.dumps(body),
            )

        first = candidates[0]
        parts = first.get("content", {}).get("parts") or []
        return TextGenerationResult(
            content="".join(part.get("text", "") for part in parts),
            tokens_used=body.get("usageMetadata", {}).get("totalTokenCount", 0),
            finish_reason=first.get("finishReason", ""),
        )
