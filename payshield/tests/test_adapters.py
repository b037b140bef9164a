"""Tests for the storage, OCR and identity HTTP adapters."""

import base64
import json

import httpx
import pytest

from payshield.api.security import IdentityClient, get_current_user
from payshield.errors import (
    AuthenticationError,
    ConfigurationError,
    RetrievalError,
    ServiceError,
    TransientServiceError,
)
from payshield.services.ocr_service import VisionOCRClient, extract_best_text
from payshield.services.storage_service import StorageService
from payshield.tests.fakes import NO_WAIT


class TestStorageService:
    """Tests for image download."""

    @pytest.mark.asyncio
    async def test_fetch_image_encodes_bytes(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, content=b"\x89PNG")

        storage = StorageService(
            base_url="https://store.test/",
            service_key="service-key",
            transport=httpx.MockTransport(handler),
        )
        image = await storage.fetch_image("scans", "user-1/shot.png")

        assert image.base64 == base64.b64encode(b"\x89PNG").decode()
        assert image.bytes == 4
        assert str(seen[0].url) == "https://store.test/storage/v1/object/scans/user-1/shot.png"
        assert seen[0].headers["authorization"] == "Bearer service-key"
        assert seen[0].headers["apikey"] == "service-key"

    @pytest.mark.asyncio
    async def test_missing_object_raises(self):
        storage = StorageService(
            base_url="https://store.test",
            service_key="k",
            transport=httpx.MockTransport(lambda request: httpx.Response(404, text="not found")),
        )
        with pytest.raises(RetrievalError):
            await storage.fetch_image("scans", "missing.png")

    @pytest.mark.asyncio
    async def test_empty_object_raises(self):
        storage = StorageService(
            base_url="https://store.test",
            service_key="k",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, content=b"")),
        )
        with pytest.raises(RetrievalError):
            await storage.fetch_image("scans", "empty.png")


class TestVisionOCRClient:
    """Tests for the Vision text detection adapter."""

    def make_client(self, handler, api_key="vision-key"):
        return VisionOCRClient(
            api_key=api_key,
            api_url="https://vision.test/v1/images:annotate",
            retry_policy=NO_WAIT,
            transport=httpx.MockTransport(handler),
        )

    @pytest.mark.asyncio
    async def test_full_text_annotation_preferred(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"responses": [{
                "fullTextAnnotation": {"text": "UPI ID: a@upi"},
                "textAnnotations": [{"description": "other"}],
            }]})

        result = await self.make_client(handler).extract_text("aW1n", ["en", "hi"])

        assert result.text == "UPI ID: a@upi"
        request = bodies[0]["requests"][0]
        assert request["features"] == [{"type": "TEXT_DETECTION"}]
        assert request["imageContext"] == {"languageHints": ["en", "hi"]}

    @pytest.mark.asyncio
    async def test_no_hints_omits_image_context(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"responses": [{}]})

        result = await self.make_client(handler).extract_text("aW1n")
        assert result.text == ""
        assert "imageContext" not in bodies[0]["requests"][0]

    @pytest.mark.asyncio
    async def test_retries_rate_limit(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                return httpx.Response(429, text="slow down")
            return httpx.Response(200, json={"responses": [{"textAnnotations": [{"description": "hello"}]}]})

        result = await self.make_client(handler).extract_text("aW1n")
        assert len(calls) == 2
        assert result.text == "hello"

    @pytest.mark.asyncio
    async def test_gives_up_after_three_attempts(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500, text="boom")

        with pytest.raises(TransientServiceError):
            await self.make_client(handler).extract_text("aW1n")
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(403, text="forbidden")

        with pytest.raises(ServiceError):
            await self.make_client(handler).extract_text("aW1n")
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_missing_key(self):
        with pytest.raises(ConfigurationError):
            await self.make_client(lambda request: httpx.Response(200), api_key="").extract_text("aW1n")

    def test_extract_best_text_fallbacks(self):
        assert extract_best_text(None) == ""
        assert extract_best_text({"fullTextAnnotation": {"text": ""}, "textAnnotations": [{"description": "x"}]}) == "x"


class TestIdentity:
    """Tests for bearer token resolution."""

    @pytest.mark.asyncio
    async def test_resolves_user(self):
        def handler(request):
            assert request.url.path == "/auth/v1/user"
            assert request.headers["authorization"] == "Bearer good"
            return httpx.Response(200, json={"id": "user-9", "email": "u@example.com"})

        client = IdentityClient(base_url="https://auth.test", api_key="anon", transport=httpx.MockTransport(handler))
        user = await get_current_user(authorization="Bearer good", client=client)
        assert user.id == "user-9"

    @pytest.mark.asyncio
    async def test_rejected_token(self):
        client = IdentityClient(
            base_url="https://auth.test",
            api_key="anon",
            transport=httpx.MockTransport(lambda request: httpx.Response(401, json={"msg": "bad jwt"})),
        )
        with pytest.raises(AuthenticationError):
            await get_current_user(authorization="Bearer bad", client=client)

    @pytest.mark.asyncio
    async def test_missing_header(self):
        with pytest.raises(AuthenticationError) as exc:
            await get_current_user(authorization=None, client=IdentityClient(base_url="https://auth.test"))
        assert exc.value.message == "Missing Authorization header"

    @pytest.mark.asyncio
    async def test_non_bearer_scheme(self):
        with pytest.raises(AuthenticationError):
            await get_current_user(authorization="Basic abc", client=IdentityClient(base_url="https://auth.test"))
