"""
Fraud alert model. One row per scan at most.
"""

import enum
import uuid

from sqlalchemy import Column, DateTime, JSON, String, Text, UniqueConstraint, func

from payshield.database import Base


class AlertStatus(str, enum.Enum):
    OPEN = "open"
    INVESTIGATING = "investigating"
    DISMISSED = "dismissed"
    RESOLVED = "resolved"


class AlertSeverity(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class FraudAlert(Base):
    """User-facing alert raised when blended risk crosses the alert threshold."""
    __tablename__ = "fraud_alerts"
    __table_args__ = (UniqueConstraint("scan_id", name="fraud_alerts_scan_id_key"),)

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    scan_id = Column(String(36), nullable=False, index=True)
    user_id = Column(String(36), nullable=False, index=True)

    status = Column(String(16), nullable=False, default=AlertStatus.OPEN.value)
    severity = Column(String(16), nullable=False)
    reason = Column(Text, nullable=False)
    notes = Column(Text, nullable=True)

    alert_metadata = Column("metadata", JSON, nullable=False, default=dict)  # risk snapshot, model output, request id

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    resolved_at = Column(DateTime(timezone=True), nullable=True)
