"""
Biometric device endpoints (Admin/HR): profiles, secret, connect, remote enroll,
pull, file import
"""
from datetime import date
from typing import List, Optional
from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from sqlalchemy.orm import Session

from app.core.deps import (
    Actor,
    get_db,
    get_device_transport,
    get_employee_directory,
    require_device_manager,
)
from app.core.exceptions import ValidationError
from app.models.sync_batch import SyncBatchStatus
from app.schemas.device import (
    DeviceEnrollOut,
    DeviceEnrollStart,
    DeviceOut,
    DeviceSecretSet,
    DeviceUpsert,
    DeviceUserLookupOut,
)
from app.schemas.sync import SyncBatchOut, SyncPullRequest
from app.services.device_registry import (
    clear_device_secret,
    connect_device,
    get_device,
    list_devices,
    lookup_device_user,
    set_device_secret,
    start_device_enrollment,
    upsert_device,
)
from app.services.device_transport import DeviceTransport
from app.services.employee_directory import EmployeeDirectory
from app.services.log_sync_service import import_log_file, list_batches, pull_logs

router = APIRouter()


@router.post("", response_model=DeviceOut, status_code=status.HTTP_201_CREATED)
async def create_device_endpoint(
    data: DeviceUpsert,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_device_manager)
):
    """Register a biometric terminal"""
    device = upsert_device(db, company_id=actor.company_id, data=data, actor_id=actor.id)
    return DeviceOut.model_validate(device)


@router.get("", response_model=List[DeviceOut])
async def list_devices_endpoint(
    active_only: Optional[bool] = Query(None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_device_manager)
):
    """List the company's terminals"""
    return [DeviceOut.model_validate(d) for d in list_devices(db, actor.company_id, active_only=active_only)]


@router.get("/{device_id}", response_model=DeviceOut)
async def get_device_endpoint(
    device_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_device_manager)
):
    return DeviceOut.model_validate(get_device(db, actor.company_id, device_id))


@router.put("/{device_id}", response_model=DeviceOut)
async def update_device_endpoint(
    device_id: int,
    data: DeviceUpsert,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_device_manager)
):
    """Update a terminal profile; comm key rules as on create"""
    device = upsert_device(db, company_id=actor.company_id, data=data, actor_id=actor.id, device_id=device_id)
    return DeviceOut.model_validate(device)


@router.put("/{device_id}/secret", response_model=DeviceOut)
async def set_device_secret_endpoint(
    device_id: int,
    data: DeviceSecretSet,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_device_manager)
):
    """Store a new comm key (write-only)"""
    device = set_device_secret(
        db, company_id=actor.company_id, device_id=device_id, comm_key=data.comm_key, actor_id=actor.id
    )
    return DeviceOut.model_validate(device)


@router.delete("/{device_id}/secret", response_model=DeviceOut)
async def clear_device_secret_endpoint(
    device_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_device_manager)
):
    """Remove the stored comm key"""
    device = clear_device_secret(db, company_id=actor.company_id, device_id=device_id, actor_id=actor.id)
    return DeviceOut.model_validate(device)


@router.post("/{device_id}/connect", response_model=DeviceOut)
def connect_device_endpoint(
    device_id: int,
    db: Session = Depends(get_db),
    transport: DeviceTransport = Depends(get_device_transport),
    actor: Actor = Depends(require_device_manager)
):
    """Single-attempt health check; marks the terminal online or offline"""
    device = connect_device(db, transport, company_id=actor.company_id, device_id=device_id, actor_id=actor.id)
    return DeviceOut.model_validate(device)


@router.get("/{device_id}/users/{employee_number}", response_model=DeviceUserLookupOut)
def lookup_device_user_endpoint(
    device_id: int,
    employee_number: str,
    db: Session = Depends(get_db),
    transport: DeviceTransport = Depends(get_device_transport),
    actor: Actor = Depends(require_device_manager)
):
    """Check whether an employee number is enrolled on the terminal"""
    return lookup_device_user(
        db, transport, company_id=actor.company_id, device_id=device_id, employee_number=employee_number
    )


@router.post("/{device_id}/users/{employee_number}/enroll", response_model=DeviceEnrollOut)
def start_device_enrollment_endpoint(
    device_id: int,
    employee_number: str,
    data: DeviceEnrollStart = DeviceEnrollStart(),
    db: Session = Depends(get_db),
    transport: DeviceTransport = Depends(get_device_transport),
    actor: Actor = Depends(require_device_manager)
):
    """Put the terminal in enroll mode for an existing user; returns once the scans finish"""
    return start_device_enrollment(
        db,
        transport,
        company_id=actor.company_id,
        device_id=device_id,
        employee_number=employee_number,
        finger_index=data.finger_index,
        actor_id=actor.id,
    )


@router.post("/{device_id}/sync/pull", response_model=SyncBatchOut, status_code=status.HTTP_201_CREATED)
def pull_logs_endpoint(
    device_id: int,
    data: SyncPullRequest,
    db: Session = Depends(get_db),
    transport: DeviceTransport = Depends(get_device_transport),
    directory: EmployeeDirectory = Depends(get_employee_directory),
    actor: Actor = Depends(require_device_manager)
):
    """Read the terminal's logs and stage them for review"""
    batch = pull_logs(
        db,
        transport,
        directory,
        company_id=actor.company_id,
        device_id=device_id,
        date_from=data.date_from,
        date_to=data.date_to,
        actor_id=actor.id,
    )
    return SyncBatchOut.model_validate(batch)


@router.post("/{device_id}/sync/import", response_model=SyncBatchOut, status_code=status.HTTP_201_CREATED)
async def import_log_file_endpoint(
    device_id: int,
    file: UploadFile = File(...),
    date_from: date = Form(...),
    date_to: date = Form(...),
    db: Session = Depends(get_db),
    directory: EmployeeDirectory = Depends(get_employee_directory),
    actor: Actor = Depends(require_device_manager)
):
    """Stage an exported attendance file (one "<emp> <yyyy-mm-dd> <hhmm> <0|1>" punch per line)"""
    contents = await file.read()
    try:
        text = contents.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise ValidationError("Attendance file must be UTF-8 text.")

    batch = import_log_file(
        db,
        directory,
        company_id=actor.company_id,
        device_id=device_id,
        content=text,
        date_from=date_from,
        date_to=date_to,
        actor_id=actor.id,
    )
    return SyncBatchOut.model_validate(batch)


@router.get("/{device_id}/sync/batches", response_model=List[SyncBatchOut])
async def list_batches_endpoint(
    device_id: int,
    status_filter: Optional[SyncBatchStatus] = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_device_manager)
):
    """List a terminal's staged and applied batches, newest first"""
    batches = list_batches(db, actor.company_id, device_id, status=status_filter, skip=skip, limit=limit)
    return [SyncBatchOut.model_validate(b) for b in batches]
