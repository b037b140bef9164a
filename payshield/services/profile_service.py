"""
Per-user scan statistics and device token lookup.
"""

import math
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from payshield.config import settings
from payshield.models.profile import Profile
from payshield.services.risk_service import RiskAssessment
from payshield.utils.logging_config import StructuredLogger

logger = StructuredLogger(__name__)


@dataclass
class ScanStats:
    total_scans: int = 0
    high_risk_scans: int = 0
    last_scan_id: Optional[str] = None
    last_scan_at: Optional[str] = None
    last_risk_score: Optional[float] = None
    last_fraud_probability: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}


@dataclass
class ScanOutcome:
    """What a completed scan contributes to the owner's stats."""
    increment: bool
    high_risk: bool
    scan_id: str
    processed_at: str
    risk: RiskAssessment


@dataclass
class ProfileSnapshot:
    stats: ScanStats
    device_token: Optional[str] = None


def _finite_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value if math.isfinite(value) else None


def parse_scan_stats(value: Any) -> ScanStats:
    """Read stored stats JSON. Anything malformed falls back to zero/None."""
    if not isinstance(value, dict):
        return ScanStats()

    return ScanStats(
        total_scans=int(_finite_number(value.get("total_scans")) or 0),
        high_risk_scans=int(_finite_number(value.get("high_risk_scans")) or 0),
        last_scan_id=value.get("last_scan_id") if isinstance(value.get("last_scan_id"), str) else None,
        last_scan_at=value.get("last_scan_at") if isinstance(value.get("last_scan_at"), str) else None,
        last_risk_score=_finite_number(value.get("last_risk_score")),
        last_fraud_probability=_finite_number(value.get("last_fraud_probability")),
    )


def is_high_risk(score: int) -> bool:
    return score >= settings.high_risk_stats_threshold


def update_stats(previous: ScanStats, outcome: ScanOutcome) -> ScanStats:
    """
    Fold one completed scan into the stats. Totals only move when
    ``outcome.increment`` is set (first completion of a scan); the
    last-scan pointers always move.
    """
    return ScanStats(
        total_scans=previous.total_scans + (1 if outcome.increment else 0),
        high_risk_scans=previous.high_risk_scans + (1 if outcome.increment and outcome.high_risk else 0),
        last_scan_id=outcome.scan_id,
        last_scan_at=outcome.processed_at,
        last_risk_score=outcome.risk.risk_score,
        last_fraud_probability=outcome.risk.fraud_probability,
    )


def load_profile(db: Session, user_id: str) -> ProfileSnapshot:
    """
    Current stats and push token for ``user_id``. A missing profile or a
    failed read yields empty stats; it never fails the scan.
    """
    try:
        profile = db.query(Profile).filter(Profile.id == user_id).first()
    except Exception as e:
        logger.warning("Failed to load profile stats", user_id=user_id, error=str(e))
        db.rollback()
        return ProfileSnapshot(stats=ScanStats())

    if profile is None:
        return ProfileSnapshot(stats=ScanStats())

    token = profile.device_token.strip() if isinstance(profile.device_token, str) else None
    return ProfileSnapshot(stats=parse_scan_stats(profile.scan_stats), device_token=token or None)


def apply_stats(db: Session, user_id: str, stats: ScanStats) -> Profile:
    """Stage the new stats on the profile row (creating it if needed). Caller commits."""
    profile = db.query(Profile).filter(Profile.id == user_id).first()
    if profile is None:
        profile = Profile(id=user_id)
        db.add(profile)
    profile.scan_stats = stats.to_dict()
    return profile
