import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from payshield.config import settings
from payshield.errors import ValidationError


def normalize_whitespace(value: str) -> str:
    value = value or ""
    value = re.sub(r"\r\n?", "\n", value)
    value = value.replace("\u00a0", " ")
    value = re.sub(r"[\t ]+", " ", value)
    return value.strip()


def is_record(value: Any) -> bool:
    return isinstance(value, dict)


def unique_strings(values: List[str]) -> List[str]:
    """Whitespace-normalize, drop blanks and de-duplicate, keeping first-seen order."""
    seen = dict.fromkeys(normalize_whitespace(value) for value in values)
    return [value for value in seen if value]


@dataclass
class NormalizedRequest:
    storage_path: str
    bucket: str
    scan_id: Optional[str] = None
    hints: List[str] = field(default_factory=list)
    metadata: Optional[Dict[str, Any]] = None
    force_refresh: bool = False


def _first_string(body: Dict[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        value = body.get(key)
        if isinstance(value, str):
            return value
    return None


def coerce_request_body(body: Any) -> NormalizedRequest:
    """
    Validate and coerce a loosely-typed analysis request.

    Accepts camelCase or snake_case keys for the storage path and scan id,
    defaults the bucket, and keeps only non-empty string hints.
    """
    if not is_record(body):
        raise ValidationError("Request body must be a JSON object")

    raw_path = _first_string(body, "storagePath", "storage_path")
    storage_path = raw_path.strip() if raw_path is not None else ""
    if not storage_path:
        raise ValidationError("storagePath is required", details={"field": "storagePath"})

    raw_bucket = body.get("bucket")
    bucket = raw_bucket.strip() if isinstance(raw_bucket, str) and raw_bucket.strip() else settings.default_bucket

    raw_scan_id = _first_string(body, "scanId", "scan_id")
    scan_id = raw_scan_id.strip() if raw_scan_id and raw_scan_id.strip() else None

    raw_hints = body.get("hints")
    hints = (
        [hint.strip() for hint in raw_hints if isinstance(hint, str) and hint.strip()]
        if isinstance(raw_hints, list)
        else []
    )

    metadata = body.get("metadata") if is_record(body.get("metadata")) else None

    return NormalizedRequest(
        storage_path=storage_path,
        bucket=bucket,
        scan_id=scan_id,
        hints=hints,
        metadata=metadata,
        force_refresh=bool(body.get("forceRefresh", body.get("force_refresh", False))),
    )
