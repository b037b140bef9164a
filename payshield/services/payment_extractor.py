"""
Heuristic extraction of UPI payment details from OCR text.

Every field is matched independently and best-effort; nothing here raises
on unrecognised text.
"""

import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from payshield.utils.preprocessing import normalize_whitespace, unique_strings
from payshield.utils.risk_levels import clamp

PAYER_LABELS = ["payer", "from", "sender", "paid by", "debited from"]
PAYEE_LABELS = ["payee", "beneficiary", "to", "merchant", "pay to", "credit to"]

CONFIDENCE_WEIGHTS = {
    "upi_id": 0.4,
    "amount": 0.2,
    "reference_id": 0.2,
    "payee_name": 0.1,
    "payer_name": 0.1,
}

_UPI_HANDLE = r"[a-z0-9._-]{2,}@[a-z][a-z0-9]+"

LABELLED_UPI_RE = re.compile(
    rf"(upi(?:\s?id)?|vpa|virtual payment address)\s*(?:[:=#-]?\s*)({_UPI_HANDLE})",
    re.IGNORECASE,
)
BARE_UPI_RE = re.compile(rf"({_UPI_HANDLE})", re.IGNORECASE)

# Grouped amounts need at least one separator group, otherwise plain digits
# would stop after the first three characters ("75000" -> "750").
# Lakh grouping ("1,50,000") is tried before thousands grouping.
AMOUNT_RE = re.compile(
    r"(amount|rs\.?|inr|amt|paid|payment)\s*(?:[:=#-]?\s*)?[₹rs.]?\s*"
    r"([0-9]{1,3}(?:,[0-9]{2})+,[0-9]{3}(?:\.[0-9]{1,2})?(?![0-9])"
    r"|[0-9]{1,3}(?:[,\s][0-9]{3})+(?:\.[0-9]{1,2})?(?![0-9])"
    r"|[0-9]+(?:\.[0-9]{1,2})?)",
    re.IGNORECASE,
)

REFERENCE_RE = re.compile(
    r"(utr|ref(?:erence)?(?:\s?no)?|txn(?:\s?id)?|transaction(?:\s?id)?|order(?:\s?id)?)"
    r"\s*(?:[:=#-]?\s*)([A-Z0-9\-]{6,})",
    re.IGNORECASE,
)

NOTE_RE = re.compile(
    r"\b(note|remarks|narration)\s*(?:[:=#-]?\s*)([A-Za-z0-9 \t,.&'-]{4,})",
    re.IGNORECASE,
)

RUPEE_MARKERS = (" inr", " rs ", " rs.", " ₹", "currency inr")


@dataclass
class PaymentDetails:
    upi_id: Optional[str] = None
    payer_name: Optional[str] = None
    payee_name: Optional[str] = None
    amount: Optional[float] = None
    currency: Optional[str] = None
    reference_id: Optional[str] = None
    note: Optional[str] = None
    raw_matches: List[str] = field(default_factory=list)
    confidence: float = 0.0
    extracted_fields: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _clean_name(value: str) -> str:
    return normalize_whitespace(re.sub(r"[^A-Za-z0-9\s.&'-]", " ", value))


def _name_pattern(label: str) -> re.Pattern:
    # Names stay on the label's line; OCR puts the next field on a new line.
    return re.compile(
        rf"\b{re.escape(label)}[\t :\-]*([A-Z][A-Za-z0-9 \t.&'-]{{2,}})",
        re.IGNORECASE,
    )


def extract_amount(text: str) -> Tuple[Optional[float], Optional[str]]:
    match = AMOUNT_RE.search(text)
    if not match:
        return None, None

    numeric = re.sub(r"[,\s]", "", match.group(2))
    try:
        return float(numeric), match.group(0)
    except ValueError:
        return None, None


def extract_reference(text: str) -> Tuple[Optional[str], Optional[str]]:
    match = REFERENCE_RE.search(text)
    if not match:
        return None, None
    return match.group(2).strip(), match.group(0)


def extract_name(text: str, labels: List[str]) -> Tuple[Optional[str], Optional[str]]:
    """Try each label synonym in order; the first hit wins."""
    for label in labels:
        match = _name_pattern(label).search(text)
        if match:
            name = _clean_name(match.group(1))
            if name:
                return name, match.group(0)
    return None, None


def extract_note(text: str) -> Tuple[Optional[str], Optional[str]]:
    match = NOTE_RE.search(text)
    if not match:
        return None, None
    return normalize_whitespace(match.group(2)), match.group(0)


def parse_payment_details(raw_text: str) -> PaymentDetails:
    """Parse OCR text into structured UPI payment fields."""
    text = re.sub(r"\r\n?", "\n", raw_text or "")
    lowered = text.lower()
    raw_matches: List[str] = []
    extracted_fields: Dict[str, str] = {}

    upi_id = None
    labelled = LABELLED_UPI_RE.search(text)
    if labelled:
        upi_id = labelled.group(2).lower()
        raw_matches.append(labelled.group(0))
        extracted_fields[labelled.group(1).lower()] = labelled.group(2)
    else:
        bare = BARE_UPI_RE.search(text)
        if bare:
            upi_id = bare.group(1).lower()
            raw_matches.append(bare.group(0))

    amount, amount_raw = extract_amount(text)
    if amount_raw:
        raw_matches.append(amount_raw)
        extracted_fields["amount"] = amount_raw

    reference_id, reference_raw = extract_reference(text)
    if reference_raw:
        raw_matches.append(reference_raw)
        extracted_fields["reference"] = reference_raw

    payer_name, payer_raw = extract_name(text, PAYER_LABELS)
    if payer_raw:
        raw_matches.append(payer_raw)
        extracted_fields["payer"] = payer_raw

    payee_name, payee_raw = extract_name(text, PAYEE_LABELS)
    if payee_raw:
        raw_matches.append(payee_raw)
        extracted_fields["payee"] = payee_raw

    note, note_raw = extract_note(text)
    if note_raw:
        raw_matches.append(note_raw)
        extracted_fields["note"] = note_raw

    currency = "INR" if any(marker in lowered for marker in RUPEE_MARKERS) else None

    found = {
        "upi_id": upi_id is not None,
        "amount": amount is not None,
        "reference_id": reference_id is not None,
        "payee_name": payee_name is not None,
        "payer_name": payer_name is not None,
    }
    confidence = sum(weight for name, weight in CONFIDENCE_WEIGHTS.items() if found[name])
    confidence = clamp(round(confidence, 2), 0.0, 1.0)

    return PaymentDetails(
        upi_id=upi_id,
        payer_name=payer_name,
        payee_name=payee_name,
        amount=amount,
        currency=currency,
        reference_id=reference_id,
        note=note,
        raw_matches=unique_strings(raw_matches),
        confidence=confidence,
        extracted_fields=extracted_fields,
    )
