"""Provider capability contracts and the shared vendor HTTP helper.

The orchestrator only talks to these protocols; each adapter maps them onto
its vendor's wire format, auth scheme and status vocabulary.
"""

from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

import httpx
import structlog

from lumen.services.exceptions import ProviderError

logger = structlog.get_logger(__name__)

DEFAULT_TEXT_TIMEOUT_SECONDS = 60.0
DEFAULT_IMAGE_TIMEOUT_SECONDS = 120.0
RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})
RAW_BODY_LIMIT = 2000


@dataclass(frozen=True)
class VisionAnalysis:
    description: str
    style_notes: str


@dataclass(frozen=True)
class ChatMessage:
    role: str  # system | user | assistant
    content: str


@dataclass(frozen=True)
class TextGenerationOptions:
    model: str = ""
    temperature: float = 0.8
    max_tokens: int = 2000


@dataclass(frozen=True)
class TextGenerationResult:
    content: str
    tokens_used: int = 0
    finish_reason: str = ""


@dataclass(frozen=True)
class ImageGenerationOptions:
    model: str = ""
    width: int = 1024
    height: int = 1024
    callback_url: str = ""


@dataclass(frozen=True)
class ImageSubmission:
    task_id: str
    status: str


@dataclass(frozen=True)
class CallbackResult:
    """Vendor callback normalized to the canonical vocabulary.

    status is always "completed" or "failed".
    """

    task_id: str
    status: str
    image_url: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None


class VisionProvider(Protocol):
    slug: str

    async def analyze(self, image_url: str) -> VisionAnalysis: ...


class TextGenerationProvider(Protocol):
    slug: str

    async def generate(
        self, messages: list[ChatMessage], options: TextGenerationOptions
    ) -> TextGenerationResult: ...


class ImageGenerationProvider(Protocol):
    slug: str

    async def submit(self, prompt: str, options: ImageGenerationOptions) -> ImageSubmission: ...

    def parse_callback(self, raw: bytes) -> CallbackResult: ...


@dataclass
class VendorHTTPClient:
    """Thin httpx wrapper shared by the HTTP adapters.

    Retries transport errors, 429 and 5xx up to `max_retries` extra times;
    any other non-2xx response raises ProviderError carrying the raw body.
    """

    provider: str
    base_url: str
    timeout_seconds: float
    max_retries: int = 0
    headers: dict[str, str] = field(default_factory=dict)
    transport: Optional[httpx.AsyncBaseTransport] = None

    async def post_json(
        self,
        path: str,
        payload: dict[str, Any],
        params: Optional[dict[str, str]] = None,
        ok_statuses: tuple[int, ...] = (200,),
    ) -> dict[str, Any]:
        """POST a JSON payload and return the decoded JSON response.

        Raises:
            ProviderError: Transport failure, unexpected status, or non-JSON body
        """
        url = f"{self.base_url.rstrip('/')}{path}"
        attempts = self.max_retries + 1
        last_error: ProviderError | None = None

        async with httpx.AsyncClient(
            timeout=self.timeout_seconds, transport=self.transport
        ) as client:
            for attempt in range(1, attempts + 1):
                try:
                    response = await client.post(
                        url, json=payload, params=params, headers=self.headers
                    )
                except httpx.TimeoutException as e:
                    last_error = ProviderError(
                        f"{self.provider}: request timeout after {self.timeout_seconds}s: {e}",
                        provider=self.provider,
                    )
                except httpx.HTTPError as e:
                    last_error = ProviderError(
                        f"{self.provider}: network error: {e}", provider=self.provider
                    )
                else:
                    if response.status_code in ok_statuses:
                        return self._decode(response)

                    last_error = ProviderError(
                        f"{self.provider}: HTTP {response.status_code}: "
                        f"{response.text[:RAW_BODY_LIMIT]}",
                        provider=self.provider,
                        status_code=response.status_code,
                        raw_body=response.text,
                    )
                    if response.status_code not in RETRYABLE_STATUS_CODES:
                        raise last_error

                if attempt < attempts:
                    logger.warning(
                        "provider.request_retry",
                        provider=self.provider,
                        attempt=attempt,
                        error=str(last_error),
                    )

        assert last_error is not None
        raise last_error

    def _decode(self, response: httpx.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError as e:
            raise ProviderError(
                f"{self.provider}: malformed JSON response: {e}",
                provider=self.provider,
                status_code=response.status_code,
                raw_body=response.text,
            ) from e

        if not isinstance(body, dict):
            raise ProviderError(
                f"{self.provider}: expected a JSON object response",
                provider=self.provider,
                status_code=response.status_code,
                raw_body=response.text,
            )
        return body


def timeout_seconds(timeout_ms: int, default: float) -> float:
    """Convert a configured millisecond timeout, falling back to the default when unset."""
    return timeout_ms / 1000 if timeout_ms > 0 else default
