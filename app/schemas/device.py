"""
Biometric device schemas

The device comm key is write-only: it can be supplied on upsert or through
the secret endpoints, but no output schema carries it. Reads expose only
``has_secret``.
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict, field_serializer, field_validator


class DeviceUpsert(BaseModel):
    """Schema for creating or updating a device profile"""
    code: str = Field(..., min_length=2, max_length=30, description="Device code, unique within the company")
    name: str = Field(..., min_length=2, max_length=120, description="Display name")
    device_model: str = Field(..., min_length=2, max_length=80, description="Terminal model tag")
    ip_address: str = Field(..., min_length=3, max_length=120, description="Terminal host or IP")
    port: Optional[int] = Field(None, description="Terminal port (default 4370)")
    inport: Optional[int] = Field(None, description="Inbound port")
    timeout_ms: Optional[int] = Field(None, description="Per-call timeout in milliseconds")
    location_name: Optional[str] = Field(None, max_length=120, description="Where the terminal is installed")
    comm_key: Optional[str] = Field(None, max_length=128, description="New comm key; blank keeps the stored one")
    clear_comm_key: bool = Field(default=False, description="Remove the stored comm key (wins over comm_key)")
    is_active: bool = Field(default=True, description="Device active status")

    @field_validator("code", "name", "device_model", "ip_address")
    @classmethod
    def strip_required(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 2:
            raise ValueError("must be at least 2 characters")
        return v

    @field_validator("location_name")
    @classmethod
    def strip_optional(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None


class DeviceSecretSet(BaseModel):
    """Schema for the write-only secret capability"""
    comm_key: str = Field(..., min_length=1, max_length=128, description="Device comm key")


class DeviceOut(BaseModel):
    """Schema for device output. Never includes the comm key."""
    id: int
    company_id: int
    code: str
    name: str
    device_model: str
    location_name: Optional[str] = None
    ip_address: str
    port: int
    inport: Optional[int] = None
    timeout_ms: int
    has_secret: bool
    is_active: bool
    is_online: bool
    last_online_at: Optional[datetime] = None
    last_sync_at: Optional[datetime] = None
    last_sync_status: Optional[str] = None
    last_sync_record_count: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @field_serializer("last_online_at", "last_sync_at", "created_at", "updated_at", when_used="always")
    @classmethod
    def _ser_datetime(cls, dt):
        from app.utils.datetime_utils import iso_local
        return iso_local(dt) if dt is not None else None


class DeviceUserLookupOut(BaseModel):
    """Whether an employee number is enrolled on the terminal"""
    device_id: int
    employee_number: str
    found: bool
    uid: Optional[int] = None
    user_id: Optional[str] = None
    name: Optional[str] = None
    total_device_users: int


class DeviceEnrollStart(BaseModel):
    """Which finger to capture on the terminal"""
    finger_index: int = Field(default=0, ge=0, le=9, description="Finger slot 0-9 on the terminal")


class DeviceEnrollOut(BaseModel):
    """Outcome of a remote enroll on the terminal"""
    device_id: int
    employee_number: str
    uid: int
    user_id: Optional[str] = None
    finger_index: int
    enrolled: bool
