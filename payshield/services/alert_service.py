"""
Fraud alert upsert and high-severity push intents.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from payshield.config import settings
from payshield.models.fraud_alert import AlertSeverity, AlertStatus, FraudAlert
from payshield.services.llm_client import ReasoningAnalysis
from payshield.services.notification_service import NotificationPayload
from payshield.services.payment_extractor import PaymentDetails
from payshield.services.risk_service import RiskAssessment
from payshield.utils.logging_config import StructuredLogger, metrics
from payshield.utils.risk_levels import round_half_up

logger = StructuredLogger(__name__)

NOTIFY_SEVERITIES = (AlertSeverity.HIGH.value, AlertSeverity.CRITICAL.value)

# Receives (payload, request_id); runs after the response is built
NotificationScheduler = Callable[[NotificationPayload, Optional[str]], None]


@dataclass
class AlertOutcome:
    id: str
    status: str
    severity: str
    previous_severity: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "status": self.status, "severity": self.severity}


def map_risk_to_severity(score: int) -> Tuple[str, str]:
    """(severity, status) for a blended score."""
    if score >= 90:
        return AlertSeverity.CRITICAL.value, AlertStatus.INVESTIGATING.value
    if score >= 80:
        return AlertSeverity.HIGH.value, AlertStatus.INVESTIGATING.value
    return AlertSeverity.MEDIUM.value, AlertStatus.OPEN.value


def build_reason(assessment: RiskAssessment, details: PaymentDetails, analysis: Optional[ReasoningAnalysis]) -> str:
    if analysis is not None and analysis.summary:
        return analysis.summary
    return (
        f"High fraud risk detected (score {assessment.risk_score}) "
        f"for UPI ID {details.upi_id or 'unknown'}."
    )


def should_notify(severity: str, previous_severity: Optional[str], device_token: Optional[str]) -> bool:
    """High/critical alerts notify once per severity; a severity change notifies again."""
    if not device_token or severity not in NOTIFY_SEVERITIES:
        return False
    return previous_severity != severity


def build_notification(
    device_token: str,
    alert: AlertOutcome,
    scan_id: str,
    assessment: RiskAssessment,
    details: PaymentDetails,
) -> NotificationPayload:
    critical = alert.severity == AlertSeverity.CRITICAL.value
    subject = details.payee_name or details.payer_name or details.upi_id or "A recent scan"
    title = "Critical fraud alert" if critical else "High risk fraud alert"
    body = (
        f"{subject} was flagged as {'critical' if critical else 'high'} risk "
        f"(score {round_half_up(assessment.risk_score)}). Tap to review the details."
    )
    return NotificationPayload(
        tokens=[device_token],
        title=title,
        body=body,
        data={
            "type": "fraud_alert",
            "alertId": alert.id,
            "scanId": scan_id,
            "severity": alert.severity,
            "riskScore": assessment.risk_score,
            "riskLevel": assessment.risk_level,
        },
        raw_priority="high",
        badge=1,
    )


class AlertService:
    """Keeps at most one alert per scan, overwriting it on re-analysis."""

    def __init__(self, threshold: Optional[int] = None):
        self.threshold = settings.alert_threshold if threshold is None else threshold

    def _save(
        self,
        db: Session,
        scan_id: str,
        user_id: str,
        severity: str,
        status: str,
        reason: str,
        metadata: Dict[str, Any],
    ) -> AlertOutcome:
        existing = db.query(FraudAlert).filter(FraudAlert.scan_id == scan_id).first()
        previous_severity = existing.severity if existing is not None else None

        if existing is None:
            alert = FraudAlert(
                scan_id=scan_id,
                user_id=user_id,
                status=status,
                severity=severity,
                reason=reason,
                alert_metadata=metadata,
            )
            db.add(alert)
        else:
            alert = existing
            alert.status = status
            alert.severity = severity
            alert.reason = reason
            alert.alert_metadata = metadata

        db.commit()
        db.refresh(alert)
        return AlertOutcome(
            id=alert.id,
            status=alert.status,
            severity=alert.severity,
            previous_severity=previous_severity,
        )

    def upsert_alert(
        self,
        db: Session,
        scan_id: str,
        user_id: str,
        request_id: Optional[str],
        assessment: RiskAssessment,
        details: PaymentDetails,
        analysis: Optional[ReasoningAnalysis] = None,
        hints: Optional[List[str]] = None,
        device_token: Optional[str] = None,
        schedule_notification: Optional[NotificationScheduler] = None,
    ) -> Optional[AlertOutcome]:
        """
        Raise or refresh the alert for ``scan_id`` when the blended score
        reaches the alert threshold. Returns None below the threshold or
        when the alert could not be written.
        """
        if assessment.risk_score < self.threshold:
            return None

        severity, status = map_risk_to_severity(assessment.risk_score)
        metadata = {
            "request_id": request_id,
            "risk": assessment.to_dict(),
            "claude": analysis.to_dict() if analysis is not None else None,
            "hints": list(hints or []),
        }

        try:
            outcome = self._save(
                db,
                scan_id=scan_id,
                user_id=user_id,
                severity=severity,
                status=status,
                reason=build_reason(assessment, details, analysis),
                metadata=metadata,
            )
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Failed to upsert fraud alert", request_id=request_id, scan_id=scan_id, error=str(e))
            return None

        metrics.increment("alerts.upserted")
        logger.info(
            "Fraud alert upserted",
            request_id=request_id,
            scan_id=scan_id,
            alert_id=outcome.id,
            severity=outcome.severity,
            previous_severity=outcome.previous_severity,
        )

        if schedule_notification is not None and should_notify(
            outcome.severity, outcome.previous_severity, device_token
        ):
            schedule_notification(
                build_notification(device_token, outcome, scan_id, assessment, details),
                request_id,
            )
            metrics.increment("alerts.notifications_scheduled")

        return outcome
