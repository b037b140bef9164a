import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from sqlalchemy.orm import Session

from payshield.models.scan import Scan, ScanStatus
from payshield.pipelines.fusion_engine import blend_assessments
from payshield.services import scan_service
from payshield.services.alert_service import AlertOutcome, AlertService, NotificationScheduler
from payshield.services.llm_client import ReasoningAnalysis, ReasoningClient
from payshield.services.ocr_service import VisionOCRClient
from payshield.services.payment_extractor import PaymentDetails, parse_payment_details
from payshield.services.profile_service import (
    ProfileSnapshot,
    ScanOutcome,
    is_high_risk,
    load_profile,
    update_stats,
)
from payshield.services.risk_service import RiskAssessment, heuristic_assessment
from payshield.services.storage_service import RetrievedImage, StorageService
from payshield.utils.logging_config import StructuredLogger, metrics
from payshield.utils.preprocessing import NormalizedRequest, unique_strings
from payshield.utils.risk_levels import round_half_up

logger = StructuredLogger(__name__)


def _ms(seconds: float) -> int:
    return round_half_up(seconds * 1000)


@dataclass
class ShortCircuitResult:
    """Returned when a completed scan is re-requested without ``forceRefresh``."""
    scan_id: str
    request_id: str
    message: str = "Scan already completed"

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, "scan_id": self.scan_id, "request_id": self.request_id}


@dataclass
class AnalysisResult:
    request_id: str
    scan_id: str
    user_id: str
    assessment: RiskAssessment
    details: PaymentDetails
    ocr_text: str
    analysis: Optional[ReasoningAnalysis]
    profile_stats: Dict[str, Any]
    fraud_alert: Optional[AlertOutcome]
    timings: Dict[str, int] = field(default_factory=dict)
    status: str = ScanStatus.COMPLETE.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "request_id": self.request_id,
            "scan_id": self.scan_id,
            "user_id": self.user_id,
            "status": self.status,
            "risk_score": self.assessment.risk_score,
            "fraud_probability": self.assessment.fraud_probability,
            "risk_level": self.assessment.risk_level,
            "upi_details": self.details.to_dict(),
            "ocr_text": self.ocr_text,
            "claude_analysis": self.analysis.to_dict() if self.analysis is not None else None,
            "flags": self.assessment.flags,
            "profile_stats": self.profile_stats,
            "fraud_alert": self.fraud_alert.to_dict() if self.fraud_alert is not None else None,
            "timings": self.timings,
        }


def build_scan_metadata(
    request_id: str,
    request: NormalizedRequest,
    ocr_text: str,
    details: PaymentDetails,
    assessment: RiskAssessment,
    analysis: Optional[ReasoningAnalysis],
    timings: Dict[str, int],
    image: Optional[RetrievedImage] = None,
) -> Dict[str, Any]:
    """JSON bundle stored on a completed scan."""
    factors: List[str] = analysis.risk_factors if analysis is not None else []
    metadata: Dict[str, Any] = {
        "request_id": request_id,
        "bucket": request.bucket,
        "storage_path": request.storage_path,
        "ocr_text": ocr_text,
        "upi_details": details.to_dict(),
        "risk": assessment.to_dict(),
        "claude_analysis": analysis.to_dict() if analysis is not None else None,
        "hints": request.hints,
        "flags": unique_strings(assessment.flags + factors),
        "timings": timings,
    }

    extra: Dict[str, Any] = {}
    if request.metadata:
        extra["request_metadata"] = request.metadata
    if image is not None:
        extra["download_bytes"] = image.bytes
        extra["download_ms"] = _ms(image.duration_ms / 1000)
    if extra:
        metadata["extra"] = extra
    return metadata


class ScanPipeline:
    """
    Drives one analysis request through the scan lifecycle:

        processing -> fetch image -> OCR -> extract -> heuristics
                   -> reasoning -> blend -> complete (+ stats) -> alert

    Any failure after the scan row exists moves it to ``failed`` and the
    original error propagates to the caller.
    """

    def __init__(
        self,
        storage: Optional[StorageService] = None,
        ocr: Optional[VisionOCRClient] = None,
        reasoning: Optional[ReasoningClient] = None,
        alerts: Optional[AlertService] = None,
    ):
        self.storage = storage or StorageService()
        self.ocr = ocr or VisionOCRClient()
        self.reasoning = reasoning or ReasoningClient()
        self.alerts = alerts or AlertService()

    def _open_scan(
        self,
        db: Session,
        user_id: str,
        request: NormalizedRequest,
        request_id: str,
    ) -> Union[ShortCircuitResult, tuple]:
        """Returns the short-circuit result, or ``(scan, increment_stats)``."""
        if request.scan_id is None:
            scan = scan_service.create_processing_scan(
                db,
                user_id=user_id,
                bucket=request.bucket,
                storage_path=request.storage_path,
                metadata={
                    "request_id": request_id,
                    "bucket": request.bucket,
                    "storage_path": request.storage_path,
                    "hints": request.hints,
                    "stage": ScanStatus.PROCESSING.value,
                },
            )
            return scan, True

        scan = scan_service.get_scan_for_user(db, request.scan_id, user_id)
        previous_status = scan.status
        if previous_status == ScanStatus.COMPLETE.value and not request.force_refresh:
            logger.info("Scan already completed and forceRefresh is false", scan_id=scan.id)
            return ShortCircuitResult(scan_id=scan.id, request_id=request_id)

        scan_service.mark_processing(db, scan)
        return scan, previous_status != ScanStatus.COMPLETE.value

    async def analyze(
        self,
        db: Session,
        user_id: str,
        request: NormalizedRequest,
        request_id: str,
        schedule_notification: Optional[NotificationScheduler] = None,
    ) -> Union[AnalysisResult, ShortCircuitResult]:
        started = time.perf_counter()

        logger.info(
            "Analyze request received",
            user_id=user_id,
            bucket=request.bucket,
            storage_path=request.storage_path,
            scan_id=request.scan_id,
            hints_count=len(request.hints),
        )

        profile = load_profile(db, user_id)

        opened = self._open_scan(db, user_id, request, request_id)
        if isinstance(opened, ShortCircuitResult):
            metrics.increment("scans.short_circuit")
            return opened
        scan, increment_stats = opened
        scan_id = scan.id
        metrics.increment("scans.started")

        try:
            return await self._run(
                db, scan, user_id, request, request_id, profile, increment_stats, started, schedule_notification
            )
        except Exception as e:
            metrics.increment("scans.failed")
            logger.error("Analyze request failed", scan_id=scan_id, error=str(e))
            scan_service.mark_failed(db, scan_id, request_id=request_id)
            raise

    async def _run(
        self,
        db: Session,
        scan: Scan,
        user_id: str,
        request: NormalizedRequest,
        request_id: str,
        profile: ProfileSnapshot,
        increment_stats: bool,
        started: float,
        schedule_notification: Optional[NotificationScheduler],
    ) -> AnalysisResult:
        image = await self.storage.fetch_image(request.bucket, request.storage_path)

        ocr_started = time.perf_counter()
        ocr_result = await self.ocr.extract_text(image.base64, request.hints)
        ocr_seconds = time.perf_counter() - ocr_started
        ocr_text = ocr_result.text
        metrics.timing("scans.stage.ocr", ocr_seconds)
        logger.info("OCR completed", characters=len(ocr_text), ocr_ms=_ms(ocr_seconds))

        details = parse_payment_details(ocr_text)
        heuristic = heuristic_assessment(details, ocr_text)

        reasoning_started = time.perf_counter()
        analysis = await self.reasoning.analyze(ocr_text, details, heuristic.risk_score)
        reasoning_seconds = time.perf_counter() - reasoning_started
        if analysis is not None:
            metrics.timing("scans.stage.reasoning", reasoning_seconds)

        assessment = blend_assessments(heuristic, analysis)

        processed_at = scan_service.utcnow()
        total_seconds = time.perf_counter() - started
        timings = {"total_ms": _ms(total_seconds), "ocr_ms": _ms(ocr_seconds)}
        if analysis is not None:
            timings["reasoning_ms"] = _ms(reasoning_seconds)

        stats = update_stats(
            profile.stats,
            ScanOutcome(
                increment=increment_stats,
                high_risk=is_high_risk(assessment.risk_score),
                scan_id=scan.id,
                processed_at=processed_at.isoformat(),
                risk=assessment,
            ),
        )

        scan_service.complete_scan(
            db,
            scan,
            metadata=build_scan_metadata(
                request_id, request, ocr_text, details, assessment, analysis, timings, image=image
            ),
            processed_at=processed_at,
            user_id=user_id,
            stats=stats,
        )
        metrics.increment("scans.completed")
        metrics.timing("scans.total", total_seconds)

        try:
            alert = self.alerts.upsert_alert(
                db,
                scan_id=scan.id,
                user_id=user_id,
                request_id=request_id,
                assessment=assessment,
                details=details,
                analysis=analysis,
                hints=request.hints,
                device_token=profile.device_token,
                schedule_notification=schedule_notification,
            )
        except Exception as e:
            logger.error("Fraud alert step failed", scan_id=scan.id, error=str(e))
            alert = None

        logger.info(
            "Analyze request completed",
            scan_id=scan.id,
            total_ms=timings["total_ms"],
            risk_score=assessment.risk_score,
            fraud_probability=assessment.fraud_probability,
            high_risk=is_high_risk(assessment.risk_score),
        )

        return AnalysisResult(
            request_id=request_id,
            scan_id=scan.id,
            user_id=user_id,
            assessment=assessment,
            details=details,
            ocr_text=ocr_text,
            analysis=analysis,
            profile_stats=stats.to_dict(),
            fraud_alert=alert,
            timings=timings,
        )
