"""
Audit log model
"""
from sqlalchemy import Column, Integer, String, DateTime, JSON
from app.db.base import Base


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    actor_id = Column(Integer, nullable=False)  # Token subject; users live in the identity service
    action = Column(String, nullable=False)  # e.g. "DEVICE_CREATE", "SYNC_APPLY", "ENROLLMENT_DETECTED"
    entity_type = Column(String, nullable=False)  # e.g. "biometric_device", "sync_batch", "enrollment_session"
    entity_id = Column(Integer, nullable=True)
    meta_json = Column(JSON, nullable=True)
    # Note: server_default handled by migration (CURRENT_TIMESTAMP for SQLite, now() for PostgreSQL)
    created_at = Column(DateTime(timezone=True), nullable=False)
