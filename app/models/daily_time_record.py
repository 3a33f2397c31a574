"""
Daily time record model (one employee, one calendar date)
"""
from sqlalchemy import Column, Integer, String, Boolean, Date, DateTime, Numeric, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum
from app.db.base import Base


class TimeSource(str, enum.Enum):
    BIOMETRIC = "BIOMETRIC"
    MANUAL = "MANUAL"


class DailyTimeRecord(Base):
    __tablename__ = "daily_time_records"

    id = Column(Integer, primary_key=True, index=True)
    employee_id = Column(Integer, ForeignKey("employees.id"), nullable=False, index=True)
    attendance_date = Column(Date, nullable=False, index=True)  # Device-timezone date
    actual_time_in = Column(DateTime(timezone=True), nullable=True)
    actual_time_out = Column(DateTime(timezone=True), nullable=True)
    hours_worked = Column(Numeric(6, 2), nullable=True)
    time_in_source = Column(String, nullable=True)  # BIOMETRIC/MANUAL
    time_out_source = Column(String, nullable=True)
    is_locked = Column(Boolean, default=False, nullable=False)  # Approved/payroll-closed; never overwritten by sync
    created_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(), onupdate=func.current_timestamp(), nullable=False)

    __table_args__ = (
        UniqueConstraint("employee_id", "attendance_date", name="uq_daily_time_records_employee_date"),
    )

    employee = relationship("Employee", backref="daily_time_records")
