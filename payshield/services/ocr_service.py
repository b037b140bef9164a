"""Google Vision text detection."""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from payshield.config import settings
from payshield.errors import ConfigurationError, ServiceError, TransientServiceError
from payshield.utils.logging_config import StructuredLogger
from payshield.utils.retry import RetryPolicy, with_retry

logger = StructuredLogger(__name__)


@dataclass
class OCRResult:
    text: str
    annotation: Optional[Dict[str, Any]] = None


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, TransientServiceError)


def extract_best_text(annotation: Optional[Dict[str, Any]]) -> str:
    """Full-text annotation first, then the first text annotation, else ""."""
    if not isinstance(annotation, dict):
        return ""
    full_text = annotation.get("fullTextAnnotation") or {}
    if isinstance(full_text, dict) and isinstance(full_text.get("text"), str) and full_text["text"]:
        return full_text["text"]
    annotations = annotation.get("textAnnotations") or []
    if annotations and isinstance(annotations[0], dict):
        description = annotations[0].get("description")
        if isinstance(description, str):
            return description
    return ""


class VisionOCRClient:
    """Calls the Vision ``images:annotate`` endpoint with TEXT_DETECTION.

    Attributes:
        api_key: Vision API key
        api_url: annotate endpoint URL
        timeout: per-attempt timeout in seconds
        retry_policy: attempt cap and backoff
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_url: Optional[str] = None,
        timeout: Optional[float] = None,
        retry_policy: Optional[RetryPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = settings.google_vision_api_key if api_key is None else api_key
        self.api_url = api_url or settings.google_vision_url
        self.timeout = timeout or settings.ocr_timeout
        self.retry_policy = retry_policy or RetryPolicy(
            attempts=settings.ocr_max_attempts,
            base_delay=0.4,
            max_delay=3.0,
        )
        self._transport = transport

    @staticmethod
    def build_payload(base64_image: str, hints: List[str]) -> Dict[str, Any]:
        request: Dict[str, Any] = {
            "image": {"content": base64_image},
            "features": [{"type": "TEXT_DETECTION"}],
        }
        if hints:
            request["imageContext"] = {"languageHints": hints}
        return {"requests": [request]}

    async def _annotate(self, client: httpx.AsyncClient, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = await client.post(self.api_url, params={"key": self.api_key}, json=payload)
        except httpx.TimeoutException as e:
            raise TransientServiceError("Vision API request timed out", original_error=e) from e
        except httpx.TransportError as e:
            raise TransientServiceError(f"Vision API transport error: {e}", original_error=e) from e

        if response.status_code == 429 or response.status_code >= 500:
            raise TransientServiceError(
                f"Vision API request failed (status {response.status_code}): {response.text[:500]}",
                upstream_status=response.status_code,
            )
        if response.status_code >= 400:
            raise ServiceError(
                f"Vision API request rejected (status {response.status_code}): {response.text[:500]}",
                upstream_status=response.status_code,
            )
        return response.json()

    async def extract_text(self, base64_image: str, hints: Optional[List[str]] = None) -> OCRResult:
        """Run OCR on a base64-encoded image.

        Returns an empty ``text`` when nothing was detected; the caller
        decides whether that is fatal.

        Raises:
            ConfigurationError: If no Vision API key is configured
            TransientServiceError: If every attempt failed transiently
            ServiceError: If Vision rejected the request
        """
        if not self.api_key:
            raise ConfigurationError("GOOGLE_VISION_API_KEY is not configured")

        payload = self.build_payload(base64_image, hints or [])

        def on_retry(error: BaseException, attempt: int):
            logger.warning("Vision API retry", attempt=attempt, error=str(error))

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            body = await with_retry(
                lambda attempt: self._annotate(client, payload),
                self.retry_policy,
                is_retryable=_is_retryable,
                on_retry=on_retry,
            )

        responses = body.get("responses") if isinstance(body, dict) else None
        annotation = responses[0] if isinstance(responses, list) and responses else None
        return OCRResult(text=extract_best_text(annotation), annotation=annotation)
