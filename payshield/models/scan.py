import enum
import uuid

from sqlalchemy import Column, DateTime, JSON, String, func

from payshield.database import Base


class ScanStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETE = "complete"
    FAILED = "failed"


def _new_id() -> str:
    return str(uuid.uuid4())


class Scan(Base):
    __tablename__ = "scans"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(36), nullable=False, index=True)

    bucket = Column(String, nullable=False, default="scans")
    storage_path = Column(String, nullable=False)
    status = Column(String(16), nullable=False, default=ScanStatus.PENDING.value)  # pending | processing | complete | failed
    checksum = Column(String, nullable=True)

    scan_metadata = Column("metadata", JSON, nullable=False, default=dict)  # OCR text, details, risk, model output, timings

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    processed_at = Column(DateTime(timezone=True), nullable=True)
