"""Test doubles shared across the suite."""

from typing import List, Optional

from payshield.services.ocr_service import OCRResult
from payshield.services.storage_service import RetrievedImage
from payshield.utils.retry import RetryPolicy

EXPO_TOKEN = "ExponentPushToken[abcdefgh1234]"

NO_WAIT = RetryPolicy(attempts=3, base_delay=0.0, max_delay=0.0, jitter=False)


class FakeStorage:
    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.calls: List[tuple] = []

    async def fetch_image(self, bucket, path):
        self.calls.append((bucket, path))
        if self.error is not None:
            raise self.error
        return RetrievedImage(base64="aW1hZ2U=", bytes=5, duration_ms=12.0)


class FakeOCR:
    def __init__(self, text: str = ""):
        self.text = text
        self.calls: List[tuple] = []

    async def extract_text(self, base64_image, hints=None):
        self.calls.append((base64_image, hints))
        return OCRResult(text=self.text)


class FakeReasoning:
    def __init__(self, analysis=None):
        self.analysis = analysis
        self.calls = 0

    async def analyze(self, ocr_text, details, heuristic_score):
        self.calls += 1
        return self.analysis
