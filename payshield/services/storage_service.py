"""Image retrieval from Supabase storage."""

import base64
import time
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote

import httpx

from payshield.config import settings
from payshield.errors import RetrievalError
from payshield.utils.logging_config import StructuredLogger

logger = StructuredLogger(__name__)


@dataclass
class RetrievedImage:
    base64: str
    bytes: int
    duration_ms: float


class StorageService:
    """Downloads scan images from the content store. No retries at this layer."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        service_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.supabase_url).rstrip("/")
        self.service_key = settings.supabase_service_role_key if service_key is None else service_key
        self.timeout = timeout or settings.storage_timeout
        self._transport = transport

    @property
    def headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.service_key}",
            "apikey": self.service_key,
        }

    def object_url(self, bucket: str, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/{quote(bucket)}/{quote(path.lstrip('/'))}"

    async def download(self, bucket: str, path: str) -> bytes:
        """Raw object bytes.

        Raises:
            RetrievalError: If the object is missing, unreadable or empty.
        """
        url = self.object_url(bucket, path)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(url, headers=self.headers)
        except httpx.HTTPError as e:
            logger.error("Failed to download image from storage", bucket=bucket, storage_path=path, error=str(e))
            raise RetrievalError("Unable to download image from storage", original_error=e) from e

        if response.status_code != 200:
            logger.error(
                "Failed to download image from storage",
                bucket=bucket,
                storage_path=path,
                status_code=response.status_code,
                error=response.text[:500],
            )
            raise RetrievalError(f"Unable to download image from storage (status {response.status_code})")

        if not response.content:
            raise RetrievalError("Stored image is empty")

        return response.content

    async def fetch_image(self, bucket: str, path: str) -> RetrievedImage:
        """Download an image and base64-encode it for the OCR request."""
        started = time.perf_counter()
        data = await self.download(bucket, path)
        duration_ms = (time.perf_counter() - started) * 1000

        logger.info(
            "Downloaded image for OCR",
            bucket=bucket,
            storage_path=path,
            bytes=len(data),
            download_ms=round(duration_ms),
        )

        return RetrievedImage(
            base64=base64.b64encode(data).decode("ascii"),
            bytes=len(data),
            duration_ms=duration_ms,
        )
