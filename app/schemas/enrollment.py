"""
Enrollment session schemas
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict, field_serializer, field_validator


class EnrollmentStart(BaseModel):
    device_id: int = Field(..., description="Terminal the employee will scan on")
    employee_id: int = Field(..., description="Employee being enrolled")


class EnrollmentResult(BaseModel):
    """The single new terminal user bound to the session's employee"""
    employee_id: int
    biometric_id: str
    device_user_id: Optional[str] = None
    device_uid: Optional[int] = None
    device_user_name: Optional[str] = None


class EnrollmentSessionOut(BaseModel):
    id: int
    device_id: int
    employee_id: int
    status: str
    end_reason: Optional[str] = None
    baseline_count: int
    poll_count: int
    biometric_id: Optional[str] = None
    expires_at: datetime
    resolved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @field_validator("status", "end_reason", mode="before")
    @classmethod
    def _enum_value(cls, value):
        return getattr(value, "value", value)

    @field_serializer("expires_at", "resolved_at", "created_at", when_used="always")
    @classmethod
    def _ser_datetime(cls, dt):
        from app.utils.datetime_utils import iso_local
        return iso_local(dt) if dt is not None else None


class EnrollmentStartOut(BaseModel):
    session_id: int
    baseline_count: int
    expires_at: datetime
    session: EnrollmentSessionOut

    @field_serializer("expires_at", when_used="always")
    @classmethod
    def _ser_datetime(cls, dt):
        from app.utils.datetime_utils import iso_local
        return iso_local(dt)


class EnrollmentDetectOut(BaseModel):
    """``pending`` until exactly one new terminal user shows up, then ``detected``"""
    status: str
    session: EnrollmentSessionOut
    detected: Optional[EnrollmentResult] = None


class EnrollmentCancelOut(BaseModel):
    session: EnrollmentSessionOut
    device_capture_cancelled: bool
