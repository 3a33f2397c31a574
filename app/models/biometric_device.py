"""
Biometric terminal model
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, UniqueConstraint
from sqlalchemy.sql import func
import enum
from app.db.base import Base


class SyncStatus(str, enum.Enum):
    SUCCESS = "SUCCESS"
    PARTIAL = "PARTIAL"


class BiometricDevice(Base):
    __tablename__ = "biometric_devices"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, nullable=False, index=True)
    code = Column(String(30), nullable=False)
    name = Column(String(120), nullable=False)
    device_model = Column(String(80), nullable=False)
    location_name = Column(String(120), nullable=True)
    ip_address = Column(String(120), nullable=False)
    port = Column(Integer, nullable=False, default=4370)
    inport = Column(Integer, nullable=True)
    timeout_ms = Column(Integer, nullable=False, default=15000)
    # Write-only: set/cleared through the secret capability, never serialized
    secret_encrypted = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    is_online = Column(Boolean, default=False, nullable=False)
    last_online_at = Column(DateTime(timezone=True), nullable=True)
    last_sync_at = Column(DateTime(timezone=True), nullable=True)
    last_sync_status = Column(String, nullable=True)  # SUCCESS/PARTIAL
    last_sync_record_count = Column(Integer, nullable=True)
    created_by = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(), onupdate=func.current_timestamp(), nullable=False)

    __table_args__ = (
        UniqueConstraint("company_id", "code", name="uq_biometric_devices_company_code"),
    )

    @property
    def has_secret(self) -> bool:
        return bool(self.secret_encrypted)
