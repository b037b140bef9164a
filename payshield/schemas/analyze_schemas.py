from pydantic import BaseModel
from typing import Any, Dict, List, Optional


class UpiDetails(BaseModel):
    """Payment fields read off the screenshot."""
    upi_id: Optional[str] = None
    payer_name: Optional[str] = None
    payee_name: Optional[str] = None
    amount: Optional[float] = None
    currency: Optional[str] = None
    reference_id: Optional[str] = None
    note: Optional[str] = None
    raw_matches: List[str] = []
    confidence: float = 0.0  # 0.0-1.0, weighted by which fields matched
    extracted_fields: Dict[str, str] = {}


class ReasoningAnalysisOut(BaseModel):
    summary: str
    risk_level: Optional[str] = None
    risk_score: Optional[int] = None
    fraud_probability: Optional[float] = None
    risk_factors: List[str] = []
    recommended_actions: List[str] = []
    raw_text: str = ""
    confidence: Optional[float] = None


class FraudAlertSummary(BaseModel):
    id: str
    status: str  # open | investigating | dismissed | resolved
    severity: str  # low | medium | high | critical


class AnalyzeResponse(BaseModel):
    request_id: str
    scan_id: str
    user_id: str
    status: str
    risk_score: int  # 0-100
    fraud_probability: float  # 0.0-1.0
    risk_level: str  # low | medium | high | critical
    upi_details: UpiDetails
    ocr_text: str
    claude_analysis: Optional[ReasoningAnalysisOut] = None
    flags: List[str]
    profile_stats: Dict[str, Any]
    fraud_alert: Optional[FraudAlertSummary] = None
    timings: Dict[str, int]  # total_ms, ocr_ms, reasoning_ms (only with a model opinion)


class AlreadyCompletedResponse(BaseModel):
    """Returned instead of AnalyzeResponse when the scan is already complete."""
    message: str
    scan_id: str
    request_id: str


class ErrorResponse(BaseModel):
    error: str
    request_id: str
    message: Optional[str] = None
