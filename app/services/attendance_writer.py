"""
Attendance writer - idempotent daily record upsert used by batch apply
"""
import enum
import logging
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.core.constants import BIOMETRIC_SOURCE
from app.models.daily_time_record import DailyTimeRecord
from app.utils.datetime_utils import ensure_utc

_log = logging.getLogger(__name__)


class WriteOutcome(str, enum.Enum):
    CREATED = "CREATED"
    UPDATED = "UPDATED"
    SKIPPED = "SKIPPED"


class WriteResult(BaseModel):
    outcome: WriteOutcome
    reason: Optional[str] = None


class AttendanceWriter:
    def upsert_daily_record(
        self,
        employee_id: int,
        attendance_date: date,
        time_in: datetime,
        time_out: datetime,
    ) -> WriteResult:
        raise NotImplementedError


def _hours_between(time_in: datetime, time_out: datetime) -> Decimal:
    seconds = (time_out - time_in).total_seconds()
    return (Decimal(seconds) / Decimal(3600)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


class SqlAttendanceWriter(AttendanceWriter):
    """
    Writes daily_time_records rows.

    Each call runs in its own savepoint so a failing line leaves the other
    lines of the same apply intact. Locked records and records that already
    hold the same times are reported as SKIPPED.
    """

    def __init__(self, db: Session):
        self.db = db

    def upsert_daily_record(
        self,
        employee_id: int,
        attendance_date: date,
        time_in: datetime,
        time_out: datetime,
    ) -> WriteResult:
        time_in = ensure_utc(time_in)
        time_out = ensure_utc(time_out)

        with self.db.begin_nested():
            record = self.db.query(DailyTimeRecord).filter(
                DailyTimeRecord.employee_id == employee_id,
                DailyTimeRecord.attendance_date == attendance_date
            ).first()

            if record is None:
                record = DailyTimeRecord(
                    employee_id=employee_id,
                    attendance_date=attendance_date,
                    actual_time_in=time_in,
                    actual_time_out=time_out,
                    hours_worked=_hours_between(time_in, time_out),
                    time_in_source=BIOMETRIC_SOURCE,
                    time_out_source=BIOMETRIC_SOURCE,
                    is_locked=False
                )
                self.db.add(record)
                self.db.flush()
                return WriteResult(outcome=WriteOutcome.CREATED)

            if record.is_locked:
                return WriteResult(outcome=WriteOutcome.SKIPPED, reason="Daily record is locked.")

            if ensure_utc(record.actual_time_in) == time_in and ensure_utc(record.actual_time_out) == time_out:
                return WriteResult(outcome=WriteOutcome.SKIPPED, reason="Daily record already up to date.")

            record.actual_time_in = time_in
            record.actual_time_out = time_out
            record.hours_worked = _hours_between(time_in, time_out)
            record.time_in_source = BIOMETRIC_SOURCE
            record.time_out_source = BIOMETRIC_SOURCE
            self.db.flush()
            _log.debug("Daily record updated: employee_id=%s date=%s", employee_id, attendance_date)
            return WriteResult(outcome=WriteOutcome.UPDATED)
