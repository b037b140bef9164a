"""
Scan record persistence. All status transitions go through here.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from payshield.errors import PersistenceError, ScanNotFoundError
from payshield.models.scan import Scan, ScanStatus
from payshield.services.profile_service import ScanStats, apply_stats
from payshield.utils.logging_config import StructuredLogger

logger = StructuredLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_processing_scan(
    db: Session,
    user_id: str,
    bucket: str,
    storage_path: str,
    metadata: Optional[Dict[str, Any]] = None,
) -> Scan:
    scan = Scan(
        user_id=user_id,
        bucket=bucket,
        storage_path=storage_path,
        status=ScanStatus.PROCESSING.value,
        scan_metadata=metadata or {},
    )
    try:
        db.add(scan)
        db.commit()
        db.refresh(scan)
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError(f"Failed to create scan: {e}", original_error=e) from e
    return scan


def get_scan_for_user(db: Session, scan_id: str, user_id: str) -> Scan:
    """
    Raises:
        ScanNotFoundError: If the scan does not exist or belongs to another user
    """
    scan = db.query(Scan).filter(Scan.id == scan_id, Scan.user_id == user_id).first()
    if scan is None:
        raise ScanNotFoundError("Scan not found")
    return scan


def mark_processing(db: Session, scan: Scan) -> Scan:
    scan.status = ScanStatus.PROCESSING.value
    scan.processed_at = None
    try:
        db.commit()
        db.refresh(scan)
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError(f"Failed to update scan status: {e}", original_error=e) from e
    return scan


def complete_scan(
    db: Session,
    scan: Scan,
    metadata: Dict[str, Any],
    processed_at: datetime,
    user_id: str,
    stats: Optional[ScanStats] = None,
) -> Scan:
    """Mark the scan complete and write the owner's stats in the same commit."""
    scan.status = ScanStatus.COMPLETE.value
    scan.processed_at = processed_at
    scan.scan_metadata = metadata
    try:
        if stats is not None:
            apply_stats(db, user_id, stats)
        db.commit()
        db.refresh(scan)
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError(f"Failed to update scan record: {e}", original_error=e) from e
    return scan


def mark_failed(db: Session, scan_id: str, request_id: Optional[str] = None):
    """Best-effort transition to ``failed``. Errors are logged, never raised."""
    try:
        db.rollback()
        scan = db.query(Scan).filter(Scan.id == scan_id).first()
        if scan is None:
            return
        scan.status = ScanStatus.FAILED.value
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning(
            "Failed to mark scan as failed after error",
            request_id=request_id,
            scan_id=scan_id,
            error=str(e),
        )
