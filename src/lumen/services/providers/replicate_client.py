"""Replicate image generation adapter with error classification.

Predictions are created with a webhook so results arrive through the
callback endpoint like every other image vendor.
"""

import json
from typing import Any, Optional

import httpx
import replicate
import structlog
from replicate.exceptions import ReplicateError as ReplicateAPIError

from lumen.models.provider import ProviderConfig
from lumen.services.exceptions import CallbackPayloadError, ProviderError
from lumen.services.providers.base import (
    DEFAULT_IMAGE_TIMEOUT_SECONDS,
    RETRYABLE_STATUS_CODES,
    CallbackResult,
    ImageGenerationOptions,
    ImageSubmission,
    timeout_seconds,
)

logger = structlog.get_logger(__name__)

DEFAULT_MODEL = "black-forest-labs/flux-schnell"
FAILED_STATUSES = frozenset({"failed", "canceled"})


def classify_error(exception: Exception, provider: str = "replicate") -> ProviderError:
    """Classify an SDK or network exception into a ProviderError.

    The message prefix names the category so LLM-style fallback substrings
    and operators reading error_message see the same vocabulary:
        - Timeout errors -> "Network timeout:"
        - 429 / rate limit -> "Rate limit exceeded:"
        - 503 -> "Service unavailable:"
        - 401/403 / auth -> "Authentication failed:"
        - NSFW / safety -> "Content policy violation:"
        - Connection / transport errors -> "Connection error:"
        - Anything else -> "Permanent error:"
    """
    error_message = str(exception)
    error_message_lower = error_message.lower()
    status_code = getattr(exception, "status", None)

    if "timeout" in error_message_lower or isinstance(
        exception, (TimeoutError, httpx.TimeoutException)
    ):
        message = f"Network timeout: {error_message}"
    elif status_code == 429 or "429" in error_message or "rate limit" in error_message_lower:
        message = f"Rate limit exceeded: {error_message}"
    elif (
        status_code == 503
        or "503" in error_message
        or "service unavailable" in error_message_lower
    ):
        message = f"Service unavailable: {error_message}"
    elif (
        status_code in (401, 403)
        or "401" in error_message
        or "403" in error_message
        or "unauthorized" in error_message_lower
        or "forbidden" in error_message_lower
        or "authentication" in error_message_lower
        or "invalid api token" in error_message_lower
    ):
        message = f"Authentication failed: {error_message}"
    elif (
        "content policy" in error_message_lower
        or "nsfw" in error_message_lower
        or "safety" in error_message_lower
        or "inappropriate" in error_message_lower
    ):
        message = f"Content policy violation: {error_message}"
    elif isinstance(exception, (ConnectionError, OSError, httpx.TransportError)):
        message = f"Connection error: {error_message}"
    else:
        message = f"Permanent error: {error_message}"

    return ProviderError(
        message,
        provider=provider,
        status_code=status_code if isinstance(status_code, int) else None,
    )


def is_retryable(exception: Exception) -> bool:
    """Whether a failed prediction request is worth another attempt."""
    if isinstance(exception, (httpx.TransportError, ConnectionError, TimeoutError)):
        return True
    status_code = getattr(exception, "status", None)
    return isinstance(status_code, int) and status_code in RETRYABLE_STATUS_CODES


class ReplicateImageProvider:
    """Submits predictions to Replicate and parses its prediction webhooks."""

    def __init__(
        self,
        slug: str,
        api_token: str,
        model: str = "",
        config: Optional[ProviderConfig] = None,
        client: Optional[replicate.Client] = None,
    ):
        self.slug = slug
        self.model = model or DEFAULT_MODEL
        self.config = config or ProviderConfig()
        self.timeout_seconds = timeout_seconds(
            self.config.timeout_ms, DEFAULT_IMAGE_TIMEOUT_SECONDS
        )
        self.client = client or replicate.Client(
            api_token=api_token, timeout=httpx.Timeout(self.timeout_seconds)
        )

    async def submit(self, prompt: str, options: ImageGenerationOptions) -> ImageSubmission:
        """Create a prediction whose completion is posted to the callback URL.

        Transport failures, 429 and 5xx responses are retried up to the
        provider's max_retries extra times.

        Raises:
            ProviderError: Classified SDK or network failure
        """
        model = options.model or self.model
        target: dict[str, Any]
        if ":" in model:
            target = {"version": model.split(":", 1)[1]}
        else:
            target = {"model": model}

        attempts = max(0, self.config.max_retries) + 1
        last_error: ProviderError | None = None
        for attempt in range(1, attempts + 1):
            try:
                prediction = await self.client.predictions.async_create(
                    input={"prompt": prompt, "width": options.width, "height": options.height},
                    webhook=options.callback_url,
                    webhook_events_filter=["completed"],
                    **target,
                )
            except (ReplicateAPIError, httpx.HTTPError, ConnectionError, OSError, TimeoutError) as e:
                last_error = classify_error(e, provider=self.slug)
                if attempt < attempts and is_retryable(e):
                    logger.warning(
                        "provider.request_retry",
                        provider=self.slug,
                        attempt=attempt,
                        error=str(last_error),
                    )
                    continue
                raise last_error from e
            except Exception as e:
                # Unexpected errors are permanent, never retried
                raise ProviderError(
                    f"Permanent error: unexpected {type(e).__name__}: {e}", provider=self.slug
                ) from e

            return ImageSubmission(task_id=prediction.id, status=prediction.status)

        assert last_error is not None
        raise last_error

    def parse_callback(self, raw: bytes) -> CallbackResult:
        """Parse a Replicate prediction webhook body.

        "succeeded" maps to completed; "failed" and "canceled" map to failed.

        Raises:
            CallbackPayloadError: Malformed body or a non-terminal prediction
        """
        try:
            data = json.loads(raw)
        except ValueError as e:
            raise CallbackPayloadError(f"failed to parse callback: {e}") from e

        if not isinstance(data, dict) or not data.get("id"):
            raise CallbackPayloadError("callback payload missing prediction id")

        status = data.get("status")
        if status == "succeeded":
            output = data.get("output")
            if isinstance(output, list):
                output = output[0] if output else None
            if not output:
                return CallbackResult(
                    task_id=str(data["id"]),
                    status="failed",
                    error_message="prediction succeeded without output",
                )
            return CallbackResult(task_id=str(data["id"]), status="completed", image_url=str(output))

        if status in FAILED_STATUSES:
            error = data.get("error")
            return CallbackResult(
                task_id=str(data["id"]),
                status="failed",
                error_code=status,
                error_message=str(error) if error else f"prediction {status}",
            )

        raise CallbackPayloadError(f"prediction {data['id']} is not terminal (status={status})")
