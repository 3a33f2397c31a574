"""
Staged sync batch model: the reviewable output of one terminal log pull
"""
from sqlalchemy import Column, Integer, String, Boolean, Date, DateTime, Text, JSON, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum
from app.db.base import Base


class SyncBatchStatus(str, enum.Enum):
    STAGED = "STAGED"
    APPLIED = "APPLIED"


class SyncBatchSource(str, enum.Enum):
    DEVICE = "DEVICE"  # Read from the terminal
    FILE = "FILE"  # Uploaded attendance export


class StagedSyncBatch(Base):
    __tablename__ = "staged_sync_batches"

    id = Column(Integer, primary_key=True, index=True)
    device_id = Column(Integer, ForeignKey("biometric_devices.id"), nullable=False, index=True)
    company_id = Column(Integer, nullable=False, index=True)
    date_from = Column(Date, nullable=False)
    date_to = Column(Date, nullable=False)
    status = Column(SQLEnum(SyncBatchStatus, native_enum=False, length=20), nullable=False, default=SyncBatchStatus.STAGED, index=True)
    source = Column(SQLEnum(SyncBatchSource, native_enum=False, length=20), nullable=False, default=SyncBatchSource.DEVICE)

    # Pull accounting
    pulled_logs = Column(Integer, nullable=False, default=0)
    in_range_logs = Column(Integer, nullable=False, default=0)
    out_of_range_logs = Column(Integer, nullable=False, default=0)
    invalid_logs = Column(Integer, nullable=False, default=0)
    prepared_logs = Column(Integer, nullable=False, default=0)
    skipped_logs = Column(Integer, nullable=False, default=0)
    lines_prepared = Column(Integer, nullable=False, default=0)
    device_date_from = Column(Date, nullable=True)  # Earliest punch date the terminal returned
    device_date_to = Column(Date, nullable=True)

    parse_errors = Column(JSON, nullable=False, default=list)  # [{line, reason}]
    validation_errors = Column(JSON, nullable=False, default=list)  # [{employee_number, date, reason, log_count}]
    prepared_lines = Column(JSON, nullable=False, default=list)  # Full set consumed by apply
    preview_lines = Column(JSON, nullable=False, default=list)
    preview_truncated = Column(Boolean, nullable=False, default=False)
    message = Column(Text, nullable=True)

    # Apply outcome
    records_created = Column(Integer, nullable=True)
    records_updated = Column(Integer, nullable=True)
    records_skipped = Column(Integer, nullable=True)
    write_errors = Column(JSON, nullable=True)  # [{employee_number, date, reason}]
    applied_at = Column(DateTime(timezone=True), nullable=True)
    applied_by = Column(Integer, nullable=True)

    created_by = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(), nullable=False)

    device = relationship("BiometricDevice", backref="sync_batches")
