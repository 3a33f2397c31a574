"""
Fingerprint enrollment session endpoints (Admin/HR)

Clients call /detect on an interval after asking the employee to scan.
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.core.deps import (
    Actor,
    get_db,
    get_device_transport,
    get_employee_directory,
    require_device_manager,
)
from app.schemas.enrollment import (
    EnrollmentCancelOut,
    EnrollmentDetectOut,
    EnrollmentSessionOut,
    EnrollmentStart,
    EnrollmentStartOut,
)
from app.services.device_transport import DeviceTransport
from app.services.employee_directory import EmployeeDirectory
from app.services.enrollment_service import cancel_session, detect_enrollment, get_session, start_session

router = APIRouter()


@router.post("", response_model=EnrollmentStartOut, status_code=status.HTTP_201_CREATED)
def start_session_endpoint(
    data: EnrollmentStart,
    db: Session = Depends(get_db),
    transport: DeviceTransport = Depends(get_device_transport),
    directory: EmployeeDirectory = Depends(get_employee_directory),
    actor: Actor = Depends(require_device_manager)
):
    """Snapshot the terminal's users and wait for one new enrollment"""
    session = start_session(
        db,
        transport,
        directory,
        company_id=actor.company_id,
        device_id=data.device_id,
        employee_id=data.employee_id,
        actor_id=actor.id,
    )
    return EnrollmentStartOut(
        session_id=session.id,
        baseline_count=session.baseline_count,
        expires_at=session.expires_at,
        session=EnrollmentSessionOut.model_validate(session),
    )


@router.get("/{session_id}", response_model=EnrollmentSessionOut)
async def get_session_endpoint(
    session_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_device_manager)
):
    return EnrollmentSessionOut.model_validate(get_session(db, actor.company_id, session_id))


@router.post("/{session_id}/detect", response_model=EnrollmentDetectOut)
def detect_endpoint(
    session_id: int,
    db: Session = Depends(get_db),
    transport: DeviceTransport = Depends(get_device_transport),
    directory: EmployeeDirectory = Depends(get_employee_directory),
    actor: Actor = Depends(require_device_manager)
):
    """Poll once: pending until exactly one new terminal user appears"""
    outcome, session, result = detect_enrollment(
        db, transport, directory, company_id=actor.company_id, session_id=session_id, actor_id=actor.id
    )
    return EnrollmentDetectOut(
        status=outcome,
        session=EnrollmentSessionOut.model_validate(session),
        detected=result,
    )


@router.post("/{session_id}/cancel", response_model=EnrollmentCancelOut)
def cancel_session_endpoint(
    session_id: int,
    db: Session = Depends(get_db),
    transport: DeviceTransport = Depends(get_device_transport),
    actor: Actor = Depends(require_device_manager)
):
    """Cancel a waiting session and free the terminal"""
    session, capture_cancelled = cancel_session(
        db, transport, company_id=actor.company_id, session_id=session_id, actor_id=actor.id
    )
    return EnrollmentCancelOut(
        session=EnrollmentSessionOut.model_validate(session),
        device_capture_cancelled=capture_cancelled,
    )
