"""
Database models
"""
from app.models.employee import Employee
from app.models.daily_time_record import DailyTimeRecord, TimeSource
from app.models.biometric_device import BiometricDevice, SyncStatus
from app.models.sync_batch import StagedSyncBatch, SyncBatchSource, SyncBatchStatus
from app.models.enrollment_session import EnrollmentSession, EnrollmentStatus, EnrollmentEndReason
from app.models.audit_log import AuditLog

__all__ = [
    "Employee",
    "DailyTimeRecord",
    "TimeSource",
    "BiometricDevice",
    "SyncStatus",
    "StagedSyncBatch",
    "SyncBatchStatus",
    "SyncBatchSource",
    "EnrollmentSession",
    "EnrollmentStatus",
    "EnrollmentEndReason",
    "AuditLog",
]
