import json
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
    OpenAIError,
)

from payshield.config import settings
from payshield.errors import ParseError, PayShieldError, ServiceError, TransientServiceError
from payshield.services.payment_extractor import PaymentDetails
from payshield.utils.logging_config import StructuredLogger
from payshield.utils.retry import RetryPolicy, with_retry
from payshield.utils.risk_levels import (
    clamp,
    derive_risk_level,
    normalize_risk_level,
    round_half_up,
    to_finite_float,
)

logger = StructuredLogger(__name__)

SUMMARY_LIMIT = 400

SYSTEM_PROMPT = (
    "You are an expert fraud detection analyst. You review OCR text and UPI payment "
    "details to determine if a payment screenshot is fraudulent."
)

USER_PROMPT = (
    "Review the following OCR text from a potential fraudulent UPI screenshot and the "
    "parsed UPI details. Respond ONLY with a JSON object containing the keys: "
    "summary (string), risk_level (low|medium|high|critical), risk_score (0-100), "
    "fraud_probability (0-1), risk_factors (array of strings), "
    "recommended_actions (array of strings), confidence (0-1, optional).\n\n"
    "OCR_TEXT:\n{ocr_text}\n\nPARSED_UPI_DETAILS:\n{details}"
)

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)


@dataclass
class ReasoningAnalysis:
    """
    The reasoning model's opinion. ``risk_score``, ``fraud_probability`` and
    ``risk_level`` are None when the model did not report a usable value.
    """
    summary: str
    risk_level: Optional[str]
    risk_score: Optional[int]
    fraud_probability: Optional[float]
    risk_factors: List[str] = field(default_factory=list)
    recommended_actions: List[str] = field(default_factory=list)
    raw_text: str = ""
    confidence: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DecodeResult:
    """Tagged decode outcome: ``kind`` is "parsed" or "fallback"."""
    kind: str
    analysis: ReasoningAnalysis

    @property
    def parsed(self) -> bool:
        return self.kind == "parsed"


def _load_json_object(text: str) -> Dict[str, Any]:
    fenced = _FENCE_RE.search(text)
    candidate = fenced.group(1) if fenced else text
    start = candidate.find("{")
    end = candidate.rfind("}")
    if start == -1 or end == -1 or start >= end:
        raise ParseError("No JSON object found in model response")
    try:
        data = json.loads(candidate[start:end + 1])
    except json.JSONDecodeError as e:
        raise ParseError(f"Malformed JSON in model response: {e}", original_error=e) from e
    if not isinstance(data, dict):
        raise ParseError("Model response JSON is not an object")
    return data


def _pick(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [entry.strip() for entry in value if isinstance(entry, str) and entry.strip()]


def decode_reasoning_response(raw: str, fallback_score: int) -> DecodeResult:
    """
    Best-effort decode of a free-text model response. Never raises: when no
    JSON object can be read, a degraded analysis is synthesized from the raw
    text with numeric fields defaulted to ``fallback_score``.
    """
    raw = raw or ""
    try:
        data = _load_json_object(raw)
    except ParseError:
        return DecodeResult(
            kind="fallback",
            analysis=ReasoningAnalysis(
                summary=raw.strip()[:SUMMARY_LIMIT],
                risk_level=derive_risk_level(fallback_score),
                risk_score=fallback_score,
                fraud_probability=clamp(fallback_score / 100, 0.0, 1.0),
                raw_text=raw,
            ),
        )

    score = to_finite_float(_pick(data, "risk_score", "riskScore"))
    probability = to_finite_float(_pick(data, "fraud_probability", "fraudProbability"))
    confidence = to_finite_float(data.get("confidence"))
    summary = data.get("summary") if isinstance(data.get("summary"), str) else ""

    return DecodeResult(
        kind="parsed",
        analysis=ReasoningAnalysis(
            summary=summary.strip() or raw.strip()[:SUMMARY_LIMIT] or "Model analysis did not provide a summary.",
            risk_level=normalize_risk_level(_pick(data, "risk_level", "riskLevel")),
            risk_score=int(clamp(round_half_up(score), 0, 100)) if score is not None else None,
            fraud_probability=clamp(round(probability, 4), 0.0, 1.0) if probability is not None else None,
            risk_factors=_string_list(_pick(data, "risk_factors", "riskFactors")),
            recommended_actions=_string_list(
                _pick(data, "recommended_actions", "recommendedActions", "recommendations")
            ),
            raw_text=raw,
            confidence=clamp(confidence, 0.0, 1.0) if confidence is not None else None,
        ),
    )


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, TransientServiceError)


class ReasoningClient:
    """
    Wrapper around the OpenAI client for fraud reasoning over OCR text.
    SDK-level retries are disabled; retries follow ``retry_policy``.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        retry_policy: Optional[RetryPolicy] = None,
        client: Any = None,
    ):
        self.api_key = settings.openai_api_key if api_key is None else api_key
        self.model = model or settings.openai_model
        self.timeout = timeout or settings.reasoning_timeout
        self.retry_policy = retry_policy or RetryPolicy(
            attempts=settings.reasoning_max_attempts,
            base_delay=0.6,
            max_delay=2.5,
        )
        self._client = client

    @property
    def enabled(self) -> bool:
        return bool(self.api_key and self.api_key.strip())

    def _get_client(self):
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self.api_key, timeout=self.timeout, max_retries=0)
        return self._client

    async def _complete(self, ocr_text: str, details: PaymentDetails) -> str:
        user_msg = USER_PROMPT.format(
            ocr_text=ocr_text,
            details=json.dumps(details.to_dict(), indent=2),
        )
        try:
            response = await self._get_client().chat.completions.create(
                model=self.model,
                response_format={"type": "json_object"},
                temperature=0,
                max_tokens=settings.openai_max_tokens,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": user_msg},
                ],
            )
        except APITimeoutError as e:
            raise TransientServiceError("Reasoning request timed out", original_error=e) from e
        except APIConnectionError as e:
            raise TransientServiceError(f"Reasoning connection failed: {e}", original_error=e) from e
        except APIStatusError as e:
            if e.status_code == 429 or e.status_code >= 500:
                raise TransientServiceError(
                    f"Reasoning request failed (status {e.status_code})",
                    upstream_status=e.status_code,
                    original_error=e,
                ) from e
            raise ServiceError(
                f"Reasoning request rejected (status {e.status_code})",
                upstream_status=e.status_code,
                original_error=e,
            ) from e
        except OpenAIError as e:
            raise ServiceError(f"Reasoning request failed: {e}", original_error=e) from e

        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

    async def analyze(
        self,
        ocr_text: str,
        details: PaymentDetails,
        heuristic_score: int,
    ) -> Optional[ReasoningAnalysis]:
        """
        Ask the reasoning model for its assessment.

        Returns None when no API key is configured, when the call still fails
        after retries, or when the model returns no text. A missing model
        opinion is never fatal to the scan.
        """
        if not self.enabled:
            logger.info("Skipping reasoning analysis (API key not configured)")
            return None

        def on_retry(error: BaseException, attempt: int):
            logger.warning("Reasoning retry", attempt=attempt, error=str(error))

        try:
            raw = await with_retry(
                lambda attempt: self._complete(ocr_text, details),
                self.retry_policy,
                is_retryable=_is_retryable,
                on_retry=on_retry,
            )
        except PayShieldError as e:
            logger.error("Reasoning analysis failed", error=str(e))
            return None
        except Exception as e:
            logger.error("Reasoning analysis failed", error=str(e), error_type=type(e).__name__)
            return None

        if not raw.strip():
            logger.warning("Reasoning response missing text content")
            return None

        decoded = decode_reasoning_response(raw, heuristic_score)
        if not decoded.parsed:
            logger.warning("Reasoning response was not JSON; using degraded analysis")
        return decoded.analysis
