"""Kie.ai adapter: OpenAI-style chat completions plus async image generation.

Image results arrive by webhook; the vendor reports "success" for finished
tasks, which is normalized to "completed" here.
"""

import json
from typing import Optional

import httpx

from lumen.models.provider import ProviderConfig
from lumen.services.exceptions import CallbackPayloadError, EmptyResponseError, ProviderError
from lumen.services.providers.base import (
    DEFAULT_IMAGE_TIMEOUT_SECONDS,
    DEFAULT_TEXT_TIMEOUT_SECONDS,
    CallbackResult,
    ChatMessage,
    ImageGenerationOptions,
    ImageSubmission,
    TextGenerationOptions,
    TextGenerationResult,
    VendorHTTPClient,
    timeout_seconds,
)

DEFAULT_BASE_URL = "https://api.kie.ai"
COMPLETED_STATUSES = frozenset({"success", "succeeded", "completed"})


class KieAIProvider:
    """Kie.ai client implementing both text and image generation."""

    def __init__(
        self,
        slug: str,
        api_key: str,
        base_url: str = "",
        model: str = "",
        config: Optional[ProviderConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        image_timeout: bool = False,
    ):
        config = config or ProviderConfig()
        default_timeout = (
            DEFAULT_IMAGE_TIMEOUT_SECONDS if image_timeout else DEFAULT_TEXT_TIMEOUT_SECONDS
        )
        self.slug = slug
        self.model = model
        self.http = VendorHTTPClient(
            provider=slug,
            base_url=base_url or DEFAULT_BASE_URL,
            timeout_seconds=timeout_seconds(config.timeout_ms, default_timeout),
            max_retries=config.max_retries,
            headers={**config.headers, "Authorization": f"Bearer {api_key}"},
            transport=transport,
        )

    async def generate(
        self, messages: list[ChatMessage], options: TextGenerationOptions
    ) -> TextGenerationResult:
        payload = {
            "model": options.model or self.model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "temperature": options.temperature,
            "max_tokens": options.max_tokens,
        }
        body = await self.http.post_json("/v1/chat/completions", payload)

        choices = body.get("choices") or []
        if not choices:
            raise EmptyResponseError(
                f"{self.slug}: no choices in LLM response",
                provider=self.slug,
                raw_body=json.dumps(body),
            )

        first = choices[0]
        return TextGenerationResult(
            content=first.get("message", {}).get("content") or "",
            tokens_used=body.get("usage", {}).get("total_tokens", 0),
            finish_reason=first.get("finish_reason") or "",
        )

    async def submit(self, prompt: str, options: ImageGenerationOptions) -> ImageSubmission:
        """Submit an async image task; the result is delivered to callback_url.

        Raises:
            ProviderError: Non-2xx response or no task id in the response
        """
        payload = {
            "model": options.model or self.model,
            "prompt": prompt,
            "width": options.width,
            "height": options.height,
            "callback_url": options.callback_url,
        }
        body = await self.http.post_json(
            "/v1/images/generations", payload, ok_statuses=(200, 202)
        )

        task_id = body.get("task_id")
        if not task_id:
            raise ProviderError(
                f"{self.slug}: image submission returned no task_id",
                provider=self.slug,
                raw_body=json.dumps(body),
            )
        return ImageSubmission(task_id=str(task_id), status=body.get("status") or "pending")

    def parse_callback(self, raw: bytes) -> CallbackResult:
        """Parse a Kie.ai webhook body.

        Raises:
            CallbackPayloadError: Body is not a JSON object or lacks task_id
        """
        try:
            data = json.loads(raw)
        except ValueError as e:
            raise CallbackPayloadError(f"failed to parse callback: {e}") from e

        if not isinstance(data, dict) or not data.get("task_id"):
            raise CallbackPayloadError("callback payload missing task_id")

        vendor_status = str(data.get("status") or "").lower()
        status = "completed" if vendor_status in COMPLETED_STATUSES else "failed"
        return CallbackResult(
            task_id=str(data["task_id"]),
            status=status,
            image_url=data.get("image_url") or None,
            error_code=data.get("error_code") or None,
            error_message=data.get("error_message") or None,
        )
