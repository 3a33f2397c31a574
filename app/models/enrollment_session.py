"""
Fingerprint enrollment session model
"""
from sqlalchemy import Column, Integer, String, DateTime, JSON, ForeignKey, Index, Enum as SQLEnum, text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum
from app.db.base import Base


class EnrollmentStatus(str, enum.Enum):
    STARTED = "STARTED"
    DETECTED = "DETECTED"
    EXPIRED = "EXPIRED"


class EnrollmentEndReason(str, enum.Enum):
    SUPERSEDED = "SUPERSEDED"
    CANCELLED = "CANCELLED"
    TIMED_OUT = "TIMED_OUT"


class EnrollmentSession(Base):
    __tablename__ = "enrollment_sessions"

    id = Column(Integer, primary_key=True, index=True)
    device_id = Column(Integer, ForeignKey("biometric_devices.id"), nullable=False, index=True)
    company_id = Column(Integer, nullable=False, index=True)
    employee_id = Column(Integer, ForeignKey("employees.id"), nullable=False, index=True)
    status = Column(SQLEnum(EnrollmentStatus, native_enum=False, length=20), nullable=False, default=EnrollmentStatus.STARTED)
    end_reason = Column(SQLEnum(EnrollmentEndReason, native_enum=False, length=20), nullable=True)
    baseline_keys = Column(JSON, nullable=False, default=list)  # Terminal user keys seen at start
    baseline_count = Column(Integer, nullable=False, default=0)
    poll_count = Column(Integer, nullable=False, default=0)

    # Filled once a single new terminal user is detected
    biometric_id = Column(String, nullable=True)
    device_user_id = Column(String, nullable=True)
    device_uid = Column(Integer, nullable=True)
    device_user_name = Column(String, nullable=True)

    expires_at = Column(DateTime(timezone=True), nullable=False)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    created_by = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(), nullable=False)

    __table_args__ = (
        # One live session per terminal
        Index(
            "uq_enrollment_sessions_device_started",
            "device_id",
            unique=True,
            sqlite_where=text("status = 'STARTED'"),
            postgresql_where=text("status = 'STARTED'"),
        ),
    )

    device = relationship("BiometricDevice", backref="enrollment_sessions")
    employee = relationship("Employee")
