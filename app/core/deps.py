"""
Dependencies and guards for FastAPI endpoints
"""
from typing import Generator, Optional
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.core.constants import DEVICE_MANAGER_ROLES
from app.core.security import decode_token
from app.db.session import SessionLocal
from app.services.attendance_writer import AttendanceWriter, SqlAttendanceWriter
from app.services.device_transport import DeviceTransport, ZKDeviceTransport
from app.services.employee_directory import EmployeeDirectory, SqlEmployeeDirectory


security = HTTPBearer()


class Actor(BaseModel):
    """Caller identity taken from the bearer token issued by the identity service"""
    id: int
    company_id: int
    role: str
    name: Optional[str] = None


def get_db() -> Generator:
    """Dependency for getting database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


async def get_current_actor(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Actor:
    """
    Get the current caller from the JWT token

    The token must carry ``sub`` (user id), ``company_id`` and ``role``.
    """
    token = credentials.credentials

    try:
        payload = decode_token(token)
        sub_value = payload.get("sub")
        company_value = payload.get("company_id")
        if sub_value is None or company_value is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid authentication credentials",
                headers={"WWW-Authenticate": "Bearer"},
            )
        # sub is a string claim; ids are integers here
        actor = Actor(
            id=int(sub_value),
            company_id=int(company_value),
            role=str(payload.get("role") or "").upper(),
            name=payload.get("name"),
        )
    except (ValueError, TypeError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return actor


def require_roles(*allowed_roles: str):
    """
    Dependency factory for role-based access control

    Usage:
        @router.post("/biometric-devices")
        async def create_device(actor: Actor = Depends(require_roles("ADMIN", "HR"))):
            ...
    """
    def role_checker(current_actor: Actor = Depends(get_current_actor)) -> Actor:
        # ADMIN is allowed regardless of required roles
        if current_actor.role == "ADMIN":
            return current_actor
        if current_actor.role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required roles: {list(allowed_roles)}"
            )
        return current_actor
    return role_checker


require_device_manager = require_roles(*DEVICE_MANAGER_ROLES)


def get_device_transport() -> DeviceTransport:
    """Terminal protocol adapter; overridden in tests"""
    return ZKDeviceTransport()


def get_employee_directory(db: Session = Depends(get_db)) -> EmployeeDirectory:
    return SqlEmployeeDirectory(db)


def get_attendance_writer(db: Session = Depends(get_db)) -> AttendanceWriter:
    return SqlAttendanceWriter(db)
