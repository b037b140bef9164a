from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List

from payshield.services.payment_extractor import PaymentDetails
from payshield.utils.risk_levels import clamp, derive_risk_level

SUSPICIOUS_KEYWORDS = [
    "kyc",
    "blocked",
    "freeze",
    "urgent",
    "immediate action",
    "suspended",
    "verification fee",
    "refund",
    "otp",
    "pin",
    "lottery",
    "prize",
    "investment",
    "double your money",
    "earnings",
    "commission",
    "processing fee",
    "pan update",
    "link account",
    "fraud",
    "scam",
    "warning",
    "risk",
    "cashback",
    "scratch card",
    "gift",
    "jackpot",
    "call helpline",
]

# Counted on top of SUSPICIOUS_KEYWORDS
HIGH_RISK_KEYWORDS = ["urgent", "otp", "pin", "verify", "blocked", "freeze", "warning", "scam"]

BASE_SCORE = 30
LARGE_AMOUNT = 50_000
ELEVATED_AMOUNT = 20_000
LOW_CONFIDENCE = 0.4


@dataclass
class RiskAssessment:
    risk_score: int
    fraud_probability: float
    risk_level: str
    flags: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class HeuristicResult:
    score: int
    flags: List[str]


def score_heuristics(details: PaymentDetails, text: str) -> HeuristicResult:
    """
    Rule-based scoring of the extracted payment details and OCR text.
    Scale: 0-100. Each triggered rule adds its penalty and a flag.
    """
    lowered = (text or "").lower()
    score = BASE_SCORE
    flags: List[str] = []

    if not details.upi_id:
        score += 20
        flags.append("missing_upi_id")

    if not details.reference_id:
        score += 8
        flags.append("missing_reference_id")

    if details.amount is not None and details.amount >= LARGE_AMOUNT:
        score += 25
        flags.append("amount_gt_50k")
    elif details.amount is not None and details.amount >= ELEVATED_AMOUNT:
        score += 15
        flags.append("amount_gt_20k")

    if details.confidence < LOW_CONFIDENCE:
        score += 10
        flags.append("low_confidence_extraction")

    keyword_hits = [keyword for keyword in SUSPICIOUS_KEYWORDS if keyword in lowered]
    score += 6 * len(keyword_hits)
    flags.extend(f"keyword:{keyword}" for keyword in keyword_hits)

    high_risk_hits = [keyword for keyword in HIGH_RISK_KEYWORDS if keyword in lowered]
    score += 8 * len(high_risk_hits)

    return HeuristicResult(score=int(clamp(score, 0, 100)), flags=flags)


def heuristic_assessment(details: PaymentDetails, text: str) -> RiskAssessment:
    """Preliminary assessment from local rules only."""
    result = score_heuristics(details, text)
    return RiskAssessment(
        risk_score=result.score,
        fraud_probability=round(result.score / 100, 4),
        risk_level=derive_risk_level(result.score),
        flags=list(dict.fromkeys(result.flags)),
    )
