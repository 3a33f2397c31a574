"""
Staged sync batch endpoints (Admin/HR)
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.deps import Actor, get_attendance_writer, get_db, require_device_manager
from app.schemas.sync import ApplyResultOut, SyncBatchOut
from app.services.attendance_writer import AttendanceWriter
from app.services.log_sync_service import apply_batch, get_batch

router = APIRouter()


@router.get("/{batch_id}", response_model=SyncBatchOut)
async def get_batch_endpoint(
    batch_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_device_manager)
):
    """Get a batch with its preview and error lists"""
    return SyncBatchOut.model_validate(get_batch(db, actor.company_id, batch_id))


@router.post("/{batch_id}/apply", response_model=ApplyResultOut)
def apply_batch_endpoint(
    batch_id: int,
    db: Session = Depends(get_db),
    writer: AttendanceWriter = Depends(get_attendance_writer),
    actor: Actor = Depends(require_device_manager)
):
    """Write a staged batch into daily time records (once)"""
    batch = apply_batch(db, writer, company_id=actor.company_id, batch_id=batch_id, actor_id=actor.id)
    out = SyncBatchOut.model_validate(batch)
    return ApplyResultOut(
        batch_id=batch.id,
        status=out.status,
        created=batch.records_created or 0,
        updated=batch.records_updated or 0,
        skipped=batch.records_skipped or 0,
        write_errors=out.write_errors or [],
        batch=out,
    )
