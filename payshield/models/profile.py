from sqlalchemy import Column, DateTime, JSON, String, func

from payshield.database import Base


class Profile(Base):
    __tablename__ = "profiles"

    id = Column(String(36), primary_key=True)  # same id as the auth user
    full_name = Column(String, nullable=True)
    device_token = Column(String, nullable=True, index=True)  # Expo push token, if registered

    scan_stats = Column(JSON, nullable=False, default=dict)  # {"total_scans": 3, "high_risk_scans": 1, ...}

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
