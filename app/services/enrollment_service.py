"""
Enrollment session service - link a new terminal fingerprint to an employee

Terminals do not announce new enrollments, so a session snapshots the
terminal's user list at start (the baseline) and each detect call diffs the
current list against it. Exactly one new user resolves the session; none
means keep polling; more than one is ambiguous and fails closed.

Expiry is lazy: timed-out sessions are closed by the next start, detect or
read that touches them.
"""
import logging
from datetime import timedelta
from typing import Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import (
    AmbiguousEnrollmentError,
    DeviceConnectionError,
    DeviceUnreachableError,
    NotFoundError,
    SessionExpiredError,
    ValidationError,
)
from app.core.locks import device_lock
from app.models.enrollment_session import EnrollmentEndReason, EnrollmentSession, EnrollmentStatus
from app.schemas.enrollment import EnrollmentResult
from app.services.audit_service import log_audit
from app.services.device_registry import connect_params, get_device
from app.services.device_transport import DeviceTransport, DeviceUser, TransportError
from app.services.employee_directory import EmployeeDirectory
from app.services.punch_normalizer import build_device_user_key
from app.utils.datetime_utils import ensure_utc, now_utc

_log = logging.getLogger(__name__)

PENDING = "pending"
DETECTED = "detected"

_EXPIRED_MESSAGES = {
    EnrollmentEndReason.SUPERSEDED: "Enrollment session was superseded by a newer session on this device. Start a new session.",
    EnrollmentEndReason.CANCELLED: "Enrollment session was cancelled. Start a new session.",
    EnrollmentEndReason.TIMED_OUT: "Enrollment session timed out. Start a new session.",
}


def _user_keys(users: List[DeviceUser]) -> Dict[str, DeviceUser]:
    keyed = {}
    for user in users:
        key = build_device_user_key(user.user_id, user.uid)
        if key:
            keyed[key] = user
    return keyed


def _read_users(transport: DeviceTransport, device) -> List[DeviceUser]:
    try:
        return transport.fetch_users(connect_params(device))
    except TransportError as e:
        _log.warning("Enrollment could not read device users: device_id=%s kind=%s", device.id, e.kind)
        raise DeviceUnreachableError(e.kind, e.message)


def _expired_error(session: EnrollmentSession) -> SessionExpiredError:
    reason = session.end_reason or EnrollmentEndReason.TIMED_OUT
    return SessionExpiredError(_EXPIRED_MESSAGES.get(reason, "Enrollment session expired."))


def _result_of(session: EnrollmentSession) -> EnrollmentResult:
    return EnrollmentResult(
        employee_id=session.employee_id,
        biometric_id=session.biometric_id,
        device_user_id=session.device_user_id,
        device_uid=session.device_uid,
        device_user_name=session.device_user_name,
    )


def expire_stale_sessions(db: Session, device_id: Optional[int] = None) -> int:
    """Close STARTED sessions whose expiry has passed; returns how many were closed"""
    now = now_utc()
    query = db.query(EnrollmentSession).filter(
        EnrollmentSession.status == EnrollmentStatus.STARTED,
        EnrollmentSession.expires_at <= now
    )
    if device_id is not None:
        query = query.filter(EnrollmentSession.device_id == device_id)
    closed = query.update(
        {
            EnrollmentSession.status: EnrollmentStatus.EXPIRED,
            EnrollmentSession.end_reason: EnrollmentEndReason.TIMED_OUT,
            EnrollmentSession.resolved_at: now,
        },
        synchronize_session=False
    )
    if closed:
        _log.info("Expired %s stale enrollment session(s): device_id=%s", closed, device_id)
    return closed


def _expire_if_due(db: Session, session: EnrollmentSession) -> bool:
    if session.status != EnrollmentStatus.STARTED:
        return False
    if ensure_utc(session.expires_at) > now_utc():
        return False
    expire_stale_sessions(db, device_id=session.device_id)
    db.commit()
    db.refresh(session)
    return session.status == EnrollmentStatus.EXPIRED


def get_session(db: Session, company_id: int, session_id: int) -> EnrollmentSession:
    """
    Get an enrollment session by ID, closing it first if it has timed out

    Raises:
        NotFoundError: If the session does not exist in this company
    """
    session = db.query(EnrollmentSession).filter(
        EnrollmentSession.id == session_id,
        EnrollmentSession.company_id == company_id
    ).first()
    if session is None:
        raise NotFoundError(f"Enrollment session with id {session_id} not found")
    _expire_if_due(db, session)
    return session


def _supersede_and_insert(db: Session, session: EnrollmentSession, now) -> int:
    superseded = db.query(EnrollmentSession).filter(
        EnrollmentSession.device_id == session.device_id,
        EnrollmentSession.status == EnrollmentStatus.STARTED
    ).update(
        {
            EnrollmentSession.status: EnrollmentStatus.EXPIRED,
            EnrollmentSession.end_reason: EnrollmentEndReason.SUPERSEDED,
            EnrollmentSession.resolved_at: now,
        },
        synchronize_session=False
    )
    db.add(session)
    db.commit()
    return superseded


def start_session(
    db: Session,
    transport: DeviceTransport,
    directory: EmployeeDirectory,
    *,
    company_id: int,
    device_id: int,
    employee_id: int,
    actor_id: int,
) -> EnrollmentSession:
    """
    Snapshot the terminal's users and open a session for (device, employee)

    Any STARTED session on the same device is superseded.

    Raises:
        NotFoundError: Unknown device or employee
        DeviceUnreachableError: Terminal user list could not be read
    """
    device = get_device(db, company_id, device_id)
    employee = directory.get_employee(company_id, employee_id)
    if employee is None:
        raise NotFoundError(f"Employee with id {employee_id} not found")

    baseline = sorted(_user_keys(_read_users(transport, device)))

    with device_lock(device.id):
        expire_stale_sessions(db, device_id=device.id)
        now = now_utc()

        def new_session() -> EnrollmentSession:
            return EnrollmentSession(
                device_id=device.id,
                company_id=company_id,
                employee_id=employee.id,
                status=EnrollmentStatus.STARTED,
                baseline_keys=baseline,
                baseline_count=len(baseline),
                poll_count=0,
                expires_at=now + timedelta(seconds=settings.ENROLLMENT_SESSION_TTL_SECONDS),
                created_by=actor_id,
                created_at=now,
            )

        session = new_session()
        try:
            superseded = _supersede_and_insert(db, session, now)
        except IntegrityError:
            # Another worker opened a session between our supersede and insert
            db.rollback()
            session = new_session()
            superseded = _supersede_and_insert(db, session, now)
        db.refresh(session)

    _log.info(
        "Enrollment session started: id=%s device_id=%s employee_id=%s baseline=%s superseded=%s",
        session.id, device.id, employee.id, session.baseline_count, superseded
    )
    log_audit(
        db=db,
        actor_id=actor_id,
        action="ENROLLMENT_START",
        entity_type="enrollment_session",
        entity_id=session.id,
        meta={
            "device_id": device.id,
            "employee_id": employee.id,
            "baseline_count": session.baseline_count,
            "superseded": superseded,
        }
    )
    return session


def detect_enrollment(
    db: Session,
    transport: DeviceTransport,
    directory: EmployeeDirectory,
    *,
    company_id: int,
    session_id: int,
    actor_id: int,
) -> Tuple[str, EnrollmentSession, Optional[EnrollmentResult]]:
    """
    Poll the terminal once and diff its users against the session baseline

    Returns ("pending", session, None) while nothing new is enrolled and
    ("detected", session, result) once exactly one new user appears. A
    session that already detected returns its stored result again.

    Raises:
        NotFoundError: Unknown session
        SessionExpiredError: Session timed out, was cancelled or superseded
        DeviceUnreachableError: Terminal user list could not be read
        AmbiguousEnrollmentError: More than one new user; session stays STARTED
    """
    session = get_session(db, company_id, session_id)
    if session.status == EnrollmentStatus.DETECTED:
        return DETECTED, session, _result_of(session)
    if session.status == EnrollmentStatus.EXPIRED:
        raise _expired_error(session)

    device = get_device(db, company_id, session.device_id)
    current = _user_keys(_read_users(transport, device))
    baseline = set(session.baseline_keys or [])
    added = sorted(key for key in current if key not in baseline)

    if not added:
        session.poll_count = (session.poll_count or 0) + 1
        db.commit()
        db.refresh(session)
        return PENDING, session, None

    if len(added) > 1:
        session.poll_count = (session.poll_count or 0) + 1
        db.commit()
        _log.warning("Ambiguous enrollment: session_id=%s new_users=%s", session.id, len(added))
        raise AmbiguousEnrollmentError(
            f"Multiple new device users detected ({len(added)}). "
            "Remove the extra enrollment from the device and scan again.",
            candidates=[
                {"user_id": current[key].user_id, "uid": current[key].uid, "name": current[key].name}
                for key in added
            ]
        )

    user = current[added[0]]
    biometric_id = user.user_id or str(user.uid)

    with device_lock(device.id):
        # The terminal read may outlast the session; expiry is part of the claim
        claimed = db.query(EnrollmentSession).filter(
            EnrollmentSession.id == session.id,
            EnrollmentSession.status == EnrollmentStatus.STARTED,
            EnrollmentSession.expires_at > now_utc()
        ).update(
            {
                EnrollmentSession.status: EnrollmentStatus.DETECTED,
                EnrollmentSession.biometric_id: biometric_id,
                EnrollmentSession.device_user_id: user.user_id,
                EnrollmentSession.device_uid: user.uid,
                EnrollmentSession.device_user_name: user.name,
                EnrollmentSession.poll_count: EnrollmentSession.poll_count + 1,
                EnrollmentSession.resolved_at: now_utc(),
            },
            synchronize_session=False
        )
        if claimed != 1:
            db.rollback()
            db.refresh(session)
            if session.status == EnrollmentStatus.DETECTED:
                return DETECTED, session, _result_of(session)
            _expire_if_due(db, session)
            raise _expired_error(session)

        directory.assign_biometric_id(session.employee_id, biometric_id)
        db.commit()
        db.refresh(session)

    _log.info(
        "Enrollment detected: session_id=%s employee_id=%s biometric_id=%s",
        session.id, session.employee_id, biometric_id
    )
    log_audit(
        db=db,
        actor_id=actor_id,
        action="ENROLLMENT_DETECTED",
        entity_type="enrollment_session",
        entity_id=session.id,
        meta={
            "device_id": session.device_id,
            "employee_id": session.employee_id,
            "biometric_id": biometric_id,
        }
    )
    return DETECTED, session, _result_of(session)


def cancel_session(
    db: Session,
    transport: DeviceTransport,
    *,
    company_id: int,
    session_id: int,
    actor_id: int,
) -> Tuple[EnrollmentSession, bool]:
    """
    Close a STARTED session and ask the terminal to stop capturing

    Cancelling an already expired session is a no-op. The terminal
    cancel-capture is best effort; its outcome is returned, never raised.

    Raises:
        NotFoundError: Unknown session
        ValidationError: Session already detected an enrollment
    """
    session = get_session(db, company_id, session_id)
    if session.status == EnrollmentStatus.DETECTED:
        raise ValidationError("Enrollment session already detected a fingerprint and cannot be cancelled.")
    if session.status == EnrollmentStatus.EXPIRED:
        return session, False

    with device_lock(session.device_id):
        closed = db.query(EnrollmentSession).filter(
            EnrollmentSession.id == session.id,
            EnrollmentSession.status == EnrollmentStatus.STARTED
        ).update(
            {
                EnrollmentSession.status: EnrollmentStatus.EXPIRED,
                EnrollmentSession.end_reason: EnrollmentEndReason.CANCELLED,
                EnrollmentSession.resolved_at: now_utc(),
            },
            synchronize_session=False
        )
        db.commit()
        db.refresh(session)

    if closed != 1:
        if session.status == EnrollmentStatus.DETECTED:
            raise ValidationError("Enrollment session already detected a fingerprint and cannot be cancelled.")
        return session, False

    capture_cancelled = False
    device = get_device(db, company_id, session.device_id)
    try:
        transport.cancel_capture(connect_params(device))
        capture_cancelled = True
    except TransportError as e:
        _log.warning("Device cancel-capture failed: device_id=%s kind=%s", device.id, e.kind)
    except DeviceConnectionError as e:
        _log.warning("Device cancel-capture skipped: device_id=%s reason=%s", device.id, e.detail)

    _log.info("Enrollment session cancelled: id=%s", session.id)
    log_audit(
        db=db,
        actor_id=actor_id,
        action="ENROLLMENT_CANCEL",
        entity_type="enrollment_session",
        entity_id=session.id,
        meta={"device_id": session.device_id, "device_capture_cancelled": capture_cancelled}
    )
    return session, capture_cancelled
