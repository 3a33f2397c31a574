"""
Log sync service - pull terminal punches into a staged batch, then apply it

pull_logs never touches attendance records or the device row; it only
produces a StagedSyncBatch describing what an apply would write and why the
rest was left out. apply_batch claims the batch with a compare-and-set on
its status and writes each prepared line through the attendance writer.

import_log_file stages an exported attendance file the same way, so file
imports and terminal pulls share one review-then-apply path.
"""
import logging
from collections import defaultdict
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import AlreadyAppliedError, DeviceUnreachableError, NotFoundError, ValidationError
from app.models.biometric_device import BiometricDevice, SyncStatus
from app.models.sync_batch import StagedSyncBatch, SyncBatchSource, SyncBatchStatus
from app.services.attendance_writer import AttendanceWriter, WriteOutcome
from app.services.audit_service import log_audit
from app.services.device_registry import connect_params, get_device, mark_device_synced
from app.services.device_transport import DeviceTransport, TransportError
from app.services.employee_directory import EmployeeDirectory
from app.services.punch_normalizer import (
    UNTYPED_ON_TYPED_DAY,
    NormalizedPunch,
    PunchParseError,
    pair_day_punches,
    parse_raw_punch,
    raw_line,
)
from app.utils.datetime_utils import iso_8601_utc, now_utc, parse_iso_utc

_log = logging.getLogger(__name__)

EMPLOYEE_NOT_FOUND = "Employee number not found in this company."


def _validation_error(employee_number: str, day: date, reason: str, log_count: int) -> Dict[str, Any]:
    return {
        "employee_number": employee_number,
        "date": day.isoformat(),
        "reason": reason,
        "log_count": log_count,
    }


def _build_message(
    pulled: int,
    in_range: int,
    lines: int,
    coverage: Tuple[Optional[date], Optional[date]],
    truncated: bool,
) -> str:
    if pulled == 0:
        return "Device returned no attendance logs."
    if in_range == 0:
        first, last = coverage
        if first is None:
            return "No valid logs returned by the device."
        return (
            "No logs found in selected date range. "
            f"Device log coverage is {first.isoformat()} to {last.isoformat()}."
        )
    message = f"{lines} line(s) ready to apply from {in_range} log(s) in range."
    if truncated:
        message += f" Preview shows the first {settings.SYNC_PREVIEW_LIMIT} lines."
    return message


def pull_logs(
    db: Session,
    transport: DeviceTransport,
    directory: EmployeeDirectory,
    *,
    company_id: int,
    device_id: int,
    date_from: date,
    date_to: date,
    actor_id: int,
) -> StagedSyncBatch:
    """
    Read the terminal's logs and stage what falls in [date_from, date_to]

    Accounting on the returned batch:
        pulled_logs = in_range_logs + out_of_range_logs + invalid_logs
        in_range_logs = prepared_logs + skipped_logs
        skipped_logs = sum of validation_errors[*].log_count

    Raises:
        ValidationError: date_to before date_from
        NotFoundError: Unknown device
        DeviceUnreachableError: Terminal read failed; no batch is created
    """
    if date_to < date_from:
        raise ValidationError("date_from must be on or before date_to.")

    device = get_device(db, company_id, device_id)
    params = connect_params(device)

    try:
        rows = transport.fetch_attendance(params, date_from, date_to)
    except TransportError as e:
        _log.warning("Sync pull aborted: device_id=%s kind=%s", device.id, e.kind)
        raise DeviceUnreachableError(e.kind, e.message)

    return _stage_batch(
        db,
        directory,
        device,
        rows,
        company_id=company_id,
        date_from=date_from,
        date_to=date_to,
        actor_id=actor_id,
        source=SyncBatchSource.DEVICE,
    )


def import_log_file(
    db: Session,
    directory: EmployeeDirectory,
    *,
    company_id: int,
    device_id: int,
    content: str,
    date_from: date,
    date_to: date,
    actor_id: int,
) -> StagedSyncBatch:
    """
    Stage an exported attendance file for a device

    Each non-blank line is ``<employee number> <yyyy-mm-dd> <hhmm> <0|1>``.
    The file goes through the same parsing, pairing and accounting as a
    terminal pull and produces an ordinary STAGED batch.

    Raises:
        ValidationError: Empty file or date_to before date_from
        NotFoundError: Unknown device
    """
    if date_to < date_from:
        raise ValidationError("date_from must be on or before date_to.")
    if not content or not content.strip():
        raise ValidationError("Attendance file is empty.")

    device = get_device(db, company_id, device_id)
    rows = [line.strip() for line in content.splitlines() if line.strip()]
    return _stage_batch(
        db,
        directory,
        device,
        rows,
        company_id=company_id,
        date_from=date_from,
        date_to=date_to,
        actor_id=actor_id,
        source=SyncBatchSource.FILE,
    )


def _stage_batch(
    db: Session,
    directory: EmployeeDirectory,
    device: BiometricDevice,
    rows: List[Any],
    *,
    company_id: int,
    date_from: date,
    date_to: date,
    actor_id: int,
    source: SyncBatchSource,
) -> StagedSyncBatch:
    parse_errors: List[Dict[str, str]] = []
    in_range: List[NormalizedPunch] = []
    out_of_range = 0
    first_seen: Optional[date] = None
    last_seen: Optional[date] = None

    for row in rows:
        try:
            punch = parse_raw_punch(row)
        except PunchParseError as e:
            parse_errors.append({"line": raw_line(row), "reason": str(e)})
            continue

        day = punch.attendance_date
        first_seen = day if first_seen is None or day < first_seen else first_seen
        last_seen = day if last_seen is None or day > last_seen else last_seen

        if date_from <= day <= date_to:
            in_range.append(punch)
        else:
            out_of_range += 1

    groups: Dict[Tuple[str, date], List[NormalizedPunch]] = defaultdict(list)
    for punch in in_range:
        groups[(punch.employee_number, punch.attendance_date)].append(punch)

    validation_errors: List[Dict[str, Any]] = []
    prepared: List[Dict[str, Any]] = []
    prepared_logs = 0

    for (employee_number, day) in sorted(groups):
        punches = groups[(employee_number, day)]
        employee = directory.find_employee_by_number(company_id, employee_number)
        if employee is None:
            validation_errors.append(_validation_error(employee_number, day, EMPLOYEE_NOT_FOUND, len(punches)))
            continue

        pairing = pair_day_punches(punches)
        if pairing.excluded_untyped:
            validation_errors.append(
                _validation_error(employee_number, day, UNTYPED_ON_TYPED_DAY, pairing.excluded_untyped)
            )
        if pairing.error:
            validation_errors.append(_validation_error(employee_number, day, pairing.error, pairing.used_count))
            continue

        prepared_logs += pairing.used_count
        prepared.append({
            "employee_id": employee.id,
            "employee_number": employee_number,
            "employee_name": employee.name,
            "attendance_date": day.isoformat(),
            "time_in": iso_8601_utc(pairing.time_in),
            "time_out": iso_8601_utc(pairing.time_out),
            "log_count": pairing.used_count,
        })

    skipped_logs = sum(error["log_count"] for error in validation_errors)
    limit = settings.SYNC_PREVIEW_LIMIT
    preview = prepared[:limit]
    truncated = len(prepared) > limit

    batch = StagedSyncBatch(
        device_id=device.id,
        company_id=company_id,
        date_from=date_from,
        date_to=date_to,
        status=SyncBatchStatus.STAGED,
        source=source,
        pulled_logs=len(rows),
        in_range_logs=len(in_range),
        out_of_range_logs=out_of_range,
        invalid_logs=len(parse_errors),
        prepared_logs=prepared_logs,
        skipped_logs=skipped_logs,
        lines_prepared=len(prepared),
        device_date_from=first_seen,
        device_date_to=last_seen,
        parse_errors=parse_errors,
        validation_errors=validation_errors,
        prepared_lines=prepared,
        preview_lines=preview,
        preview_truncated=truncated,
        message=_build_message(len(rows), len(in_range), len(prepared), (first_seen, last_seen), truncated),
        created_by=actor_id,
        created_at=now_utc(),
    )
    db.add(batch)
    db.commit()
    db.refresh(batch)

    _log.info(
        "Sync batch staged: id=%s device_id=%s source=%s pulled=%s in_range=%s out_of_range=%s invalid=%s lines=%s",
        batch.id, device.id, source.value, batch.pulled_logs, batch.in_range_logs,
        batch.out_of_range_logs, batch.invalid_logs, batch.lines_prepared
    )
    log_audit(
        db=db,
        actor_id=actor_id,
        action="SYNC_PULL" if source == SyncBatchSource.DEVICE else "SYNC_IMPORT",
        entity_type="sync_batch",
        entity_id=batch.id,
        meta={
            "device_id": device.id,
            "date_from": date_from,
            "date_to": date_to,
            "pulled_logs": batch.pulled_logs,
            "lines_prepared": batch.lines_prepared,
        }
    )
    return batch


def get_batch(db: Session, company_id: int, batch_id: int) -> StagedSyncBatch:
    """
    Get a sync batch by ID within a company

    Raises:
        NotFoundError: If the batch does not exist in this company
    """
    batch = db.query(StagedSyncBatch).filter(
        StagedSyncBatch.id == batch_id,
        StagedSyncBatch.company_id == company_id
    ).first()
    if batch is None:
        raise NotFoundError(f"Sync batch with id {batch_id} not found")
    return batch


def list_batches(
    db: Session,
    company_id: int,
    device_id: int,
    status: Optional[SyncBatchStatus] = None,
    skip: int = 0,
    limit: int = 50,
) -> List[StagedSyncBatch]:
    """List a device's batches, newest first"""
    get_device(db, company_id, device_id)
    query = db.query(StagedSyncBatch).filter(
        StagedSyncBatch.company_id == company_id,
        StagedSyncBatch.device_id == device_id
    )
    if status is not None:
        query = query.filter(StagedSyncBatch.status == status)
    return query.order_by(StagedSyncBatch.id.desc()).offset(skip).limit(limit).all()


def apply_batch(
    db: Session,
    writer: AttendanceWriter,
    *,
    company_id: int,
    batch_id: int,
    actor_id: int,
) -> StagedSyncBatch:
    """
    Commit a staged batch's prepared lines, exactly once

    The STAGED -> APPLIED transition is a single conditional UPDATE in the
    same transaction as the writes; a concurrent apply of the same batch
    matches zero rows and fails. Each line is written independently: a line
    the writer skips or fails on is counted as skipped with its reason.

    Raises:
        NotFoundError: Unknown batch
        AlreadyAppliedError: Batch was applied before (or concurrently)
    """
    batch = get_batch(db, company_id, batch_id)
    if batch.status == SyncBatchStatus.APPLIED:
        raise AlreadyAppliedError(f"Sync batch {batch_id} has already been applied.")

    applied_at = now_utc()
    claimed = db.query(StagedSyncBatch).filter(
        StagedSyncBatch.id == batch.id,
        StagedSyncBatch.status == SyncBatchStatus.STAGED
    ).update(
        {
            StagedSyncBatch.status: SyncBatchStatus.APPLIED,
            StagedSyncBatch.applied_at: applied_at,
            StagedSyncBatch.applied_by: actor_id,
        },
        synchronize_session=False
    )
    if claimed != 1:
        db.rollback()
        raise AlreadyAppliedError(f"Sync batch {batch_id} has already been applied.")
    db.refresh(batch)

    created = updated = skipped = 0
    write_errors: List[Dict[str, str]] = []

    for line in batch.prepared_lines or []:
        try:
            result = writer.upsert_daily_record(
                line["employee_id"],
                date.fromisoformat(line["attendance_date"]),
                parse_iso_utc(line["time_in"]),
                parse_iso_utc(line["time_out"]),
            )
        except Exception as e:
            _log.warning(
                "Daily record write failed: batch_id=%s employee=%s date=%s error=%s",
                batch.id, line["employee_number"], line["attendance_date"], e
            )
            skipped += 1
            write_errors.append({
                "employee_number": line["employee_number"],
                "date": line["attendance_date"],
                "reason": f"Write failed: {e}",
            })
            continue

        if result.outcome == WriteOutcome.CREATED:
            created += 1
        elif result.outcome == WriteOutcome.UPDATED:
            updated += 1
        else:
            skipped += 1
            write_errors.append({
                "employee_number": line["employee_number"],
                "date": line["attendance_date"],
                "reason": result.reason or "Skipped by attendance writer.",
            })

    batch.records_created = created
    batch.records_updated = updated
    batch.records_skipped = skipped
    batch.write_errors = write_errors

    partial = skipped > 0 or bool(batch.parse_errors) or bool(batch.validation_errors)
    sync_status = SyncStatus.PARTIAL if partial else SyncStatus.SUCCESS
    device = get_device(db, company_id, batch.device_id)
    mark_device_synced(db, device, sync_status=sync_status.value, record_count=created + updated)

    db.commit()
    db.refresh(batch)

    _log.info(
        "Sync batch applied: id=%s created=%s updated=%s skipped=%s status=%s",
        batch.id, created, updated, skipped, sync_status.value
    )
    log_audit(
        db=db,
        actor_id=actor_id,
        action="SYNC_APPLY",
        entity_type="sync_batch",
        entity_id=batch.id,
        meta={
            "device_id": batch.device_id,
            "created": created,
            "updated": updated,
            "skipped": skipped,
            "status": sync_status,
        }
    )
    return batch
