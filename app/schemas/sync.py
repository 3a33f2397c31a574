"""
Log sync schemas (pull request, staged batch, apply result)
"""
from datetime import date, datetime
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_serializer, field_validator


class SyncPullRequest(BaseModel):
    date_from: date = Field(..., description="First calendar date to include (device timezone)")
    date_to: date = Field(..., description="Last calendar date to include (device timezone)")


class ParseErrorOut(BaseModel):
    line: str
    reason: str


class ValidationErrorOut(BaseModel):
    employee_number: str
    date: Optional[str] = None
    reason: str
    log_count: int = 1


class WriteErrorOut(BaseModel):
    employee_number: str
    date: str
    reason: str


class PreparedLineOut(BaseModel):
    employee_id: int
    employee_number: str
    employee_name: Optional[str] = None
    attendance_date: str
    time_in: str
    time_out: str
    log_count: int


class SyncBatchOut(BaseModel):
    """A staged (or applied) batch with its accounting, errors and preview"""
    id: int
    device_id: int
    date_from: date
    date_to: date
    status: str
    source: str
    pulled_logs: int
    in_range_logs: int
    out_of_range_logs: int
    invalid_logs: int
    prepared_logs: int
    skipped_logs: int
    lines_prepared: int
    device_date_from: Optional[date] = None
    device_date_to: Optional[date] = None
    parse_errors: List[ParseErrorOut] = []
    validation_errors: List[ValidationErrorOut] = []
    preview_lines: List[PreparedLineOut] = []
    preview_truncated: bool
    message: Optional[str] = None
    records_created: Optional[int] = None
    records_updated: Optional[int] = None
    records_skipped: Optional[int] = None
    write_errors: Optional[List[WriteErrorOut]] = None
    applied_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @field_validator("status", "source", mode="before")
    @classmethod
    def _enum_value(cls, value):
        return getattr(value, "value", value)

    @field_serializer("applied_at", "created_at", when_used="always")
    @classmethod
    def _ser_datetime(cls, dt):
        from app.utils.datetime_utils import iso_local
        return iso_local(dt) if dt is not None else None


class ApplyResultOut(BaseModel):
    """Outcome of applying a staged batch"""
    batch_id: int
    status: str
    created: int
    updated: int
    skipped: int
    write_errors: List[WriteErrorOut] = []
    batch: SyncBatchOut
