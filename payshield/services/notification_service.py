"""
Expo push notification delivery.

Payloads are validated up front; delivery is best-effort per batch so one
bad chunk or ticket never hides the tickets that did go through.
"""

import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, TypeVar

import httpx

from payshield.config import settings
from payshield.errors import InvalidTokenError, TransientServiceError, ValidationError
from payshield.utils.logging_config import StructuredLogger, metrics
from payshield.utils.preprocessing import is_record
from payshield.utils.retry import RetryPolicy, with_retry

logger = StructuredLogger(__name__)

T = TypeVar("T")

EXPO_PUSH_TOKEN_RE = re.compile(r"^(Expo|Exponent)PushToken\[[A-Za-z0-9+\-=._]{8,}\]$")

HIGH_PRIORITY_VALUES = {"high", "critical", "urgent", "emergency"}
DEFAULT_PRIORITY_VALUES = {"default", "normal", "low", "standard"}
PRIORITY_DATA_KEYS = ("riskLevel", "risk_level", "severity", "alertSeverity")


@dataclass
class NotificationPayload:
    tokens: List[str]
    title: str
    body: str
    data: Dict[str, Any] = field(default_factory=dict)
    raw_priority: Any = None
    badge: Optional[int] = None


@dataclass
class DispatchResult:
    tickets: List[Dict[str, Any]] = field(default_factory=list)
    failures: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failures

    @property
    def http_status(self) -> int:
        """200 when everything went out, 207 on partial delivery, 502 otherwise."""
        if self.success:
            return 200
        return 207 if self.tickets else 502

    def to_dict(self) -> Dict[str, Any]:
        return {"success": self.success, "tickets": self.tickets, "failures": self.failures}


# ============== VALIDATION ==============


def _non_empty_string(value: Any, name: str) -> str:
    if not isinstance(value, str):
        raise ValidationError(f"Invalid {name}: expected string", details={"field": name})
    trimmed = value.strip()
    if not trimmed:
        raise ValidationError(f"Invalid {name}: cannot be empty", details={"field": name})
    return trimmed


def _normalize_tokens(value: Any) -> List[str]:
    if isinstance(value, str):
        token = value.strip()
        if not token:
            raise ValidationError("Invalid deviceToken: cannot be empty", details={"field": "deviceToken"})
        return [token]

    if isinstance(value, list):
        tokens = []
        for entry in value:
            if not isinstance(entry, str):
                raise ValidationError(
                    "Invalid deviceToken: entries must be strings", details={"field": "deviceToken"}
                )
            if entry.strip():
                tokens.append(entry.strip())
        if not tokens:
            raise ValidationError(
                "Invalid deviceToken: no valid tokens provided", details={"field": "deviceToken"}
            )
        return tokens

    raise ValidationError(
        "Invalid deviceToken: expected string or array of strings", details={"field": "deviceToken"}
    )


def _normalize_badge(value: Any) -> Optional[int]:
    if value is None:
        return None

    if isinstance(value, str):
        if not value.strip():
            return None
        try:
            value = float(value.strip())
        except ValueError:
            value = None
    elif isinstance(value, bool) or not isinstance(value, (int, float)):
        value = None

    if value is None or not math.isfinite(value) or value < 0:
        raise ValidationError("Invalid badge: expected a non-negative integer", details={"field": "badge"})
    return int(math.floor(value))


def is_expo_push_token(token: str) -> bool:
    return bool(EXPO_PUSH_TOKEN_RE.match(token))


def validate_notification_payload(body: Any) -> NotificationPayload:
    """
    Validate a ``/send-notification`` request body.

    Raises:
        InvalidTokenError: If any token is not an Expo push token
        ValidationError: For any other malformed field
    """
    if not is_record(body):
        raise ValidationError("Request body must be a JSON object")

    tokens = _normalize_tokens(body.get("deviceToken"))
    invalid = [token for token in tokens if not is_expo_push_token(token)]
    if invalid:
        raise InvalidTokenError(invalid)

    title = _non_empty_string(body.get("title"), "title")
    message_body = _non_empty_string(body.get("body"), "body")

    data = body.get("data")
    if data is not None and not is_record(data):
        raise ValidationError("Invalid data: expected an object", details={"field": "data"})

    return NotificationPayload(
        tokens=tokens,
        title=title,
        body=message_body,
        data=data or {},
        raw_priority=body.get("priority"),
        badge=_normalize_badge(body.get("badge")),
    )


# ============== PRIORITY ==============


def _as_lower_string(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip().lower()
    return None


def _as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in ("true", "1", "yes"):
            return True
        if normalized in ("false", "0", "no"):
            return False
    return None


def _is_critical_value(value: Any) -> bool:
    text = _as_lower_string(value)
    if text:
        return text in HIGH_PRIORITY_VALUES
    return _as_bool(value) is True


def derive_priority(raw_priority: Any, data: Optional[Dict[str, Any]] = None) -> str:
    """
    Map an explicit priority, or failing that the payload's data hints,
    to Expo's ``"high"`` or ``"default"``.
    """
    data = data or {}
    explicit = _as_lower_string(raw_priority)

    if explicit:
        if explicit in HIGH_PRIORITY_VALUES:
            return "high"
        if explicit in DEFAULT_PRIORITY_VALUES:
            return "default"
    elif _as_bool(raw_priority) is True:
        return "high"

    if any(_is_critical_value(data.get(key)) for key in PRIORITY_DATA_KEYS):
        return "high"

    if _as_bool(data.get("isCritical")) is True or _as_bool(data.get("critical")) is True:
        return "high"

    return "default"


def chunk(items: Sequence[T], size: int) -> List[List[T]]:
    if size <= 0:
        raise ValueError("chunk size must be a positive number")
    return [list(items[index:index + size]) for index in range(0, len(items), size)]


def to_messages(payload: NotificationPayload, priority: str) -> List[Dict[str, Any]]:
    messages = []
    for token in payload.tokens:
        message: Dict[str, Any] = {
            "to": token,
            "title": payload.title,
            "body": payload.body,
            "priority": priority,
            "sound": "default",
        }
        if payload.data:
            message["data"] = payload.data
        if payload.badge is not None:
            message["badge"] = payload.badge
        messages.append(message)
    return messages


# ============== DISPATCH ==============


def _chunk_failures(batch: List[Dict[str, Any]], message: str, details: Optional[Dict[str, Any]] = None):
    failures = []
    for item in batch:
        failure: Dict[str, Any] = {"to": item["to"], "status": "error", "message": message}
        if details:
            failure["details"] = details
        failures.append(failure)
    return failures


class NotificationDispatcher:
    """
    Sends push messages to the Expo gateway in sequential batches.

    Only 429, 5xx, timeouts and transport errors are retried; any other
    non-OK response fails its whole batch without a retry.
    """

    def __init__(
        self,
        push_url: Optional[str] = None,
        access_token: Optional[str] = None,
        timeout: Optional[float] = None,
        chunk_size: Optional[int] = None,
        retry_policy: Optional[RetryPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.push_url = push_url or settings.expo_push_url
        self.access_token = settings.expo_access_token if access_token is None else access_token
        self.timeout = timeout or settings.push_timeout
        self.chunk_size = chunk_size or settings.expo_chunk_size
        self.retry_policy = retry_policy or RetryPolicy(
            attempts=settings.push_max_attempts,
            base_delay=0.4,
            max_delay=4.0,
        )
        self._transport = transport

    @property
    def headers(self) -> Dict[str, str]:
        headers = {"content-type": "application/json", "accept": "application/json"}
        if self.access_token:
            headers["authorization"] = f"Bearer {self.access_token}"
        return headers

    async def _post_batch(self, client: httpx.AsyncClient, batch: List[Dict[str, Any]]) -> httpx.Response:
        try:
            response = await client.post(self.push_url, json=batch, headers=self.headers)
        except httpx.TimeoutException as e:
            raise TransientServiceError("Expo push request timed out", original_error=e) from e
        except httpx.TransportError as e:
            raise TransientServiceError(f"Expo push transport error: {e}", original_error=e) from e

        if response.status_code == 429 or response.status_code >= 500:
            raise TransientServiceError(
                f"Expo push request failed (status {response.status_code}): {response.text[:500]}",
                upstream_status=response.status_code,
            )
        return response

    async def _send_batch(
        self,
        client: httpx.AsyncClient,
        batch: List[Dict[str, Any]],
        request_id: Optional[str],
        result: DispatchResult,
    ):
        def on_retry(error: BaseException, attempt: int):
            logger.warning("Expo push retry", request_id=request_id, attempt=attempt, error=str(error))

        response = await with_retry(
            lambda attempt: self._post_batch(client, batch),
            self.retry_policy,
            on_retry=on_retry,
        )

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        errors = body.get("errors")

        if not response.is_success:
            message = f"Expo push request returned {response.status_code}"
            details: Dict[str, Any] = {"httpStatus": response.status_code}
            if errors:
                details["errors"] = errors
            logger.error(message, request_id=request_id, response=body)
            result.failures.extend(_chunk_failures(batch, message, details))
            return

        if isinstance(errors, list) and errors:
            first = errors[0] if isinstance(errors[0], dict) else {}
            logger.error("Expo push request reported errors", request_id=request_id, errors=errors)
            result.failures.extend(
                _chunk_failures(batch, first.get("message") or "Expo push request error", {"errors": errors})
            )
            return

        tickets = body.get("data") if isinstance(body.get("data"), list) else []
        for item, ticket in zip(batch, tickets):
            ticket = ticket if isinstance(ticket, dict) else {}
            if ticket.get("status") == "ok":
                result.tickets.append({"to": item["to"], "status": "ok", "id": ticket.get("id")})
            else:
                failure = {
                    "to": item["to"],
                    "status": "error",
                    "message": ticket.get("message") or "Expo push ticket reported error",
                }
                if ticket.get("details") is not None:
                    failure["details"] = ticket["details"]
                result.failures.append(failure)

        if len(tickets) < len(batch):
            result.failures.extend(
                _chunk_failures(batch[len(tickets):], "Expo push ticket missing from response")
            )

    async def dispatch(self, payload: NotificationPayload, request_id: Optional[str] = None) -> DispatchResult:
        """
        Deliver ``payload`` to every token. Never raises on delivery failure;
        failed tokens are reported in ``DispatchResult.failures``.
        """
        result = DispatchResult()
        priority = derive_priority(payload.raw_priority, payload.data)
        messages = to_messages(payload, priority)
        if not messages:
            return result

        logger.info("Dispatching Expo push notification", request_id=request_id, tokens=len(messages), priority=priority)

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for batch in chunk(messages, self.chunk_size):
                try:
                    await self._send_batch(client, batch, request_id, result)
                except Exception as e:
                    logger.error("Expo push delivery failed", request_id=request_id, error=str(e))
                    result.failures.extend(_chunk_failures(batch, str(e)))

        metrics.increment("notifications.tickets", len(result.tickets))
        metrics.increment("notifications.failures", len(result.failures))

        if result.success:
            logger.info("Expo push delivered successfully", request_id=request_id, tickets=len(result.tickets))
        else:
            logger.warning(
                "Expo push completed with failures",
                request_id=request_id,
                tickets=len(result.tickets),
                failures=len(result.failures),
            )
        return result
