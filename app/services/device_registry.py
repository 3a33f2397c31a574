"""
Device registry - business logic for biometric terminal profiles

The registry is the only place that mutates a device row: profile and
secret changes, online state after a connect, and last-sync stamps after an
apply (through mark_device_synced).
"""
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import DeviceConnectionError, NotFoundError, ValidationError
from app.core.locks import device_lock
from app.core.security import decrypt_device_secret, encrypt_device_secret
from app.models.biometric_device import BiometricDevice
from app.schemas.device import DeviceUpsert
from app.services.audit_service import log_audit
from app.services.device_transport import DeviceConnectParams, DeviceTransport, TransportError
from app.services.punch_normalizer import normalize_identifier
from app.utils.datetime_utils import now_utc

_log = logging.getLogger(__name__)


def _validate_network(port: int, inport: Optional[int], timeout_ms: int) -> None:
    if not 1 <= port <= 65535:
        raise ValidationError("Port must be between 1 and 65535.")
    if inport is not None and not 1 <= inport <= 65535:
        raise ValidationError("Inbound port must be between 1 and 65535.")
    if timeout_ms < settings.DEVICE_MIN_TIMEOUT_MS:
        raise ValidationError(f"Timeout must be at least {settings.DEVICE_MIN_TIMEOUT_MS} ms.")
    if timeout_ms > settings.DEVICE_MAX_TIMEOUT_MS:
        raise ValidationError(f"Timeout must be at most {settings.DEVICE_MAX_TIMEOUT_MS} ms.")


def get_device(db: Session, company_id: int, device_id: int) -> BiometricDevice:
    """
    Get a device by ID within a company

    Raises:
        NotFoundError: If the device does not exist in this company
    """
    device = db.query(BiometricDevice).filter(
        BiometricDevice.id == device_id,
        BiometricDevice.company_id == company_id
    ).first()
    if device is None:
        raise NotFoundError(f"Biometric device with id {device_id} not found")
    return device


def list_devices(db: Session, company_id: int, active_only: Optional[bool] = None) -> List[BiometricDevice]:
    """List a company's devices ordered by code"""
    query = db.query(BiometricDevice).filter(BiometricDevice.company_id == company_id)
    if active_only is not None:
        query = query.filter(BiometricDevice.is_active == active_only)
    return query.order_by(BiometricDevice.code.asc()).all()


def upsert_device(
    db: Session,
    *,
    company_id: int,
    data: DeviceUpsert,
    actor_id: int,
    device_id: Optional[int] = None,
) -> BiometricDevice:
    """
    Create (device_id is None) or update a device profile

    Secret handling: clear_comm_key wins and removes the stored key; otherwise
    a non-blank comm_key replaces it; otherwise the stored key is unchanged.

    Raises:
        ValidationError: Duplicate code in the company or bad network parameters
        NotFoundError: device_id given but not found
    """
    port = data.port if data.port is not None else settings.DEVICE_DEFAULT_PORT
    timeout_ms = data.timeout_ms if data.timeout_ms is not None else settings.DEVICE_DEFAULT_TIMEOUT_MS
    _validate_network(port, data.inport, timeout_ms)

    device = get_device(db, company_id, device_id) if device_id is not None else None

    duplicate = db.query(BiometricDevice).filter(
        BiometricDevice.company_id == company_id,
        BiometricDevice.code == data.code
    )
    if device is not None:
        duplicate = duplicate.filter(BiometricDevice.id != device.id)
    if duplicate.first():
        raise ValidationError("Device code already exists in this company.")

    creating = device is None
    if creating:
        device = BiometricDevice(company_id=company_id, created_by=actor_id, is_online=False)
        db.add(device)

    device.code = data.code
    device.name = data.name
    device.device_model = data.device_model
    device.ip_address = data.ip_address
    device.port = port
    device.inport = data.inport
    device.timeout_ms = timeout_ms
    device.location_name = data.location_name
    device.is_active = data.is_active

    secret_action = "unchanged"
    if data.clear_comm_key:
        device.secret_encrypted = None
        secret_action = "cleared"
    elif data.comm_key is not None and data.comm_key.strip():
        device.secret_encrypted = encrypt_device_secret(data.comm_key.strip())
        secret_action = "rotated"

    db.commit()
    db.refresh(device)

    _log.info("Biometric device %s: id=%s code=%s", "created" if creating else "updated", device.id, device.code)
    log_audit(
        db=db,
        actor_id=actor_id,
        action="DEVICE_CREATE" if creating else "DEVICE_UPDATE",
        entity_type="biometric_device",
        entity_id=device.id,
        meta={
            "code": device.code,
            "ip_address": device.ip_address,
            "port": device.port,
            "secret": secret_action,
        }
    )
    return device


def set_device_secret(db: Session, *, company_id: int, device_id: int, comm_key: str, actor_id: int) -> BiometricDevice:
    """Store a new comm key for a device"""
    if comm_key is None or not comm_key.strip():
        raise ValidationError("Comm key must not be blank.")
    device = get_device(db, company_id, device_id)
    device.secret_encrypted = encrypt_device_secret(comm_key.strip())
    db.commit()
    db.refresh(device)
    log_audit(
        db=db,
        actor_id=actor_id,
        action="DEVICE_SECRET_SET",
        entity_type="biometric_device",
        entity_id=device.id
    )
    return device


def clear_device_secret(db: Session, *, company_id: int, device_id: int, actor_id: int) -> BiometricDevice:
    """Remove the stored comm key for a device"""
    device = get_device(db, company_id, device_id)
    device.secret_encrypted = None
    db.commit()
    db.refresh(device)
    log_audit(
        db=db,
        actor_id=actor_id,
        action="DEVICE_SECRET_CLEAR",
        entity_type="biometric_device",
        entity_id=device.id
    )
    return device


def connect_params(device: BiometricDevice) -> DeviceConnectParams:
    """Transport parameters for a device, with the comm key decrypted"""
    try:
        comm_key = decrypt_device_secret(device.secret_encrypted)
    except ValueError:
        raise DeviceConnectionError("AUTH_REJECTED", "Stored device comm key could not be decrypted. Set it again.")
    return DeviceConnectParams(
        host=device.ip_address,
        port=device.port,
        timeout_ms=device.timeout_ms,
        inport=device.inport or settings.DEVICE_DEFAULT_INPORT,
        comm_key=comm_key,
    )


def connect_device(
    db: Session,
    transport: DeviceTransport,
    *,
    company_id: int,
    device_id: int,
    actor_id: int,
) -> BiometricDevice:
    """
    Single-attempt health check against the terminal

    Success marks the device online and stamps last_online_at; failure marks
    it offline and raises. There is no retry.

    The terminal call runs without the device lock; only the state write is
    serialized, so the lock is always taken before any database write lock.

    Raises:
        DeviceConnectionError: With the transport's failure kind and reason
    """
    device = get_device(db, company_id, device_id)
    params = connect_params(device)

    try:
        transport.health_check(params)
    except TransportError as e:
        with device_lock(device.id):
            device.is_online = False
            db.commit()
        _log.warning("Device connect failed: id=%s kind=%s", device.id, e.kind)
        log_audit(
            db=db,
            actor_id=actor_id,
            action="DEVICE_CONNECT",
            entity_type="biometric_device",
            entity_id=device.id,
            meta={"success": False, "kind": e.kind, "reason": e.message}
        )
        raise DeviceConnectionError(e.kind, e.message)

    with device_lock(device.id):
        device.is_online = True
        device.last_online_at = now_utc()
        db.commit()
    db.refresh(device)

    _log.info("Device connected: id=%s code=%s", device.id, device.code)
    log_audit(
        db=db,
        actor_id=actor_id,
        action="DEVICE_CONNECT",
        entity_type="biometric_device",
        entity_id=device.id,
        meta={"success": True}
    )
    return device


def mark_device_synced(db: Session, device: BiometricDevice, *, sync_status: str, record_count: int) -> None:
    """
    Stamp last-sync fields after a successful apply; the caller commits.

    Runs inside the apply transaction, which already holds the row, so no
    device lock is taken here.
    """
    device.last_sync_at = now_utc()
    device.last_sync_status = sync_status
    device.last_sync_record_count = record_count
    db.flush()


def lookup_device_user(
    db: Session,
    transport: DeviceTransport,
    *,
    company_id: int,
    device_id: int,
    employee_number: str,
) -> dict:
    """
    Check whether an employee number is enrolled on the terminal

    Raises:
        ValidationError: Blank employee number
        DeviceConnectionError: Terminal could not be read
    """
    wanted = normalize_identifier(employee_number)
    if not wanted:
        raise ValidationError("Employee number is required.")

    device = get_device(db, company_id, device_id)
    try:
        users = transport.fetch_users(connect_params(device))
    except TransportError as e:
        raise DeviceConnectionError(e.kind, e.message)

    match = next((u for u in users if normalize_identifier(u.user_id) == wanted), None)
    return {
        "device_id": device.id,
        "employee_number": employee_number.strip(),
        "found": match is not None,
        "uid": match.uid if match else None,
        "user_id": match.user_id if match else None,
        "name": match.name if match else None,
        "total_device_users": len(users),
    }


def start_device_enrollment(
    db: Session,
    transport: DeviceTransport,
    *,
    company_id: int,
    device_id: int,
    employee_number: str,
    finger_index: int,
    actor_id: int,
) -> dict:
    """
    Ask the terminal to capture a fingerprint for a user it already lists

    The call blocks while the person scans their finger (up to
    DEVICE_ENROLL_TIMEOUT_MS). ``enrolled`` is False when the terminal ended
    the capture without storing a template.

    Raises:
        ValidationError: Blank employee number, bad finger index, or the
            number is not on the terminal's user list
        DeviceConnectionError: Terminal could not be reached
    """
    wanted = normalize_identifier(employee_number)
    if not wanted:
        raise ValidationError("Employee number is required.")
    if not 0 <= finger_index <= 9:
        raise ValidationError("Finger index must be between 0 and 9.")

    device = get_device(db, company_id, device_id)
    params = connect_params(device)
    try:
        users = transport.fetch_users(params)
    except TransportError as e:
        raise DeviceConnectionError(e.kind, e.message)

    match = next((u for u in users if normalize_identifier(u.user_id) == wanted), None)
    if match is None or match.uid is None:
        raise ValidationError(f"Employee number {employee_number.strip()} was not found on the device user list.")

    try:
        enrolled = transport.start_enroll(
            params,
            uid=match.uid,
            user_id=match.user_id,
            finger_index=finger_index,
            deadline_ms=settings.DEVICE_ENROLL_TIMEOUT_MS,
        )
    except TransportError as e:
        _log.warning("Device enroll failed: id=%s uid=%s kind=%s", device.id, match.uid, e.kind)
        log_audit(
            db=db,
            actor_id=actor_id,
            action="DEVICE_ENROLL_START",
            entity_type="biometric_device",
            entity_id=device.id,
            meta={"user_id": match.user_id, "finger_index": finger_index, "success": False, "kind": e.kind}
        )
        raise DeviceConnectionError(e.kind, e.message)

    _log.info("Device enroll: id=%s uid=%s finger=%s enrolled=%s", device.id, match.uid, finger_index, enrolled)
    log_audit(
        db=db,
        actor_id=actor_id,
        action="DEVICE_ENROLL_START",
        entity_type="biometric_device",
        entity_id=device.id,
        meta={"user_id": match.user_id, "finger_index": finger_index, "success": enrolled}
    )
    return {
        "device_id": device.id,
        "employee_number": employee_number.strip(),
        "uid": match.uid,
        "user_id": match.user_id,
        "finger_index": finger_index,
        "enrolled": enrolled,
    }
