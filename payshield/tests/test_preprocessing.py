"""Tests for request normalization and text helpers."""

import pytest

from payshield.errors import ValidationError
from payshield.utils.preprocessing import coerce_request_body, normalize_whitespace, unique_strings


class TestCoerceRequestBody:
    """Tests for analysis request coercion."""

    def test_snake_case_payload_is_normalized(self):
        normalized = coerce_request_body({
            "storage_path": "scans/receipt.png",
            "bucket": " evidence ",
            "scan_id": "1234",
            "hints": ["en", None, 42, "hi"],
            "metadata": {"source": "mobile", "extra": True},
            "forceRefresh": "1",
        })

        assert normalized.storage_path == "scans/receipt.png"
        assert normalized.bucket == "evidence"
        assert normalized.scan_id == "1234"
        assert normalized.hints == ["en", "hi"]
        assert normalized.metadata["source"] == "mobile"
        assert normalized.force_refresh is True

    def test_defaults(self):
        normalized = coerce_request_body({"storagePath": " u/1.png "})
        assert normalized.storage_path == "u/1.png"
        assert normalized.bucket == "scans"
        assert normalized.scan_id is None
        assert normalized.hints == []
        assert normalized.metadata is None
        assert normalized.force_refresh is False

    def test_blank_scan_id_becomes_none(self):
        assert coerce_request_body({"storagePath": "a.png", "scanId": "   "}).scan_id is None

    def test_non_object_metadata_is_dropped(self):
        assert coerce_request_body({"storagePath": "a.png", "metadata": ["x"]}).metadata is None

    def test_missing_storage_path_raises(self):
        with pytest.raises(ValidationError) as exc:
            coerce_request_body({"bucket": "scans"})
        assert exc.value.message == "storagePath is required"
        assert exc.value.status_code == 400

    def test_blank_storage_path_raises(self):
        with pytest.raises(ValidationError):
            coerce_request_body({"storagePath": "   "})

    def test_non_object_body_raises(self):
        with pytest.raises(ValidationError):
            coerce_request_body(["storagePath"])


class TestTextHelpers:

    def test_normalize_whitespace(self):
        assert normalize_whitespace("a\r\nb \t c  ") == "a\nb c"

    def test_unique_strings_keeps_first_seen_order(self):
        assert unique_strings(["b", "a", " b ", "", "a"]) == ["b", "a"]
