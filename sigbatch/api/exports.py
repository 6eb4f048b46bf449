"""
Batch export endpoints: start a job, poll it, download the archive, CSV export
"""

import asyncio
import csv
import io
import logging
import math
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session
from starlette.background import BackgroundTask

from ..auth import Caller, ensure_self_or_admin, require_key
from ..config import EXPORT_CHUNK_SIZE
from ..db import SessionLocal, get_db
from ..errors import SigBatchError
from ..logging_config import log_job_event
from ..schemas.export import ExportCreate, ExportStarted, ExportStatus
from ..services.archive import archive_assembler, authorize_job
from ..services.export_queue import export_queue
from ..services.job_store import job_store
from ..services.prometheus_metrics import prometheus_metrics
from ..services.signatures import count_for_owner, iter_newest_first, max_id_for_owner, owner_display_name
from ..services.validation import clean_name
from .errors import http_error

logger = logging.getLogger("sigbatch.api.exports")

router = APIRouter(tags=["Exports"])

CSV_HEADER = ["Name", "Role", "Email", "Phone", "Template", "Created Date"]


@router.post("/exports", response_model=ExportStarted)
async def start_export(body: ExportCreate, caller: Caller = Depends(require_key), db: Session = Depends(get_db)):
    """
    Create an export job and render its first chunk.

    Remaining chunks are processed in the background; poll /exports/status.
    """
    ensure_self_or_admin(caller, body.owner_id)

    total = count_for_owner(db, body.owner_id)
    if total == 0:
        raise HTTPException(status_code=404, detail="No signatures to download")
    snapshot_max_id = max_id_for_owner(db, body.owner_id)

    job_id = job_store.create(
        owner_id=body.owner_id,
        requester_id=caller.user_id,
        total_items=total,
        chunk_size=EXPORT_CHUNK_SIZE,
        snapshot_max_id=snapshot_max_id,
    )
    prometheus_metrics.record_job("created")
    log_job_event("job_created", f"Export job {job_id} created", job_id=job_id,
                  owner_id=body.owner_id, requester_id=caller.user_id, total_items=total)

    try:
        await export_queue.run_chunk(job_id, 0)
    except Exception:
        logger.exception("First chunk crashed", extra={"component": "export", "job_id": job_id})
        await asyncio.to_thread(export_queue.processor.mark_failed, job_id, "internal error while processing chunk")

    return ExportStarted(
        job_id=job_id,
        total=total,
        chunks=math.ceil(total / EXPORT_CHUNK_SIZE),
        message="Processing started",
    )


@router.get("/exports/status", response_model=ExportStatus)
def export_status(job_id: str = Query(..., description="Export job id"), caller: Caller = Depends(require_key)):
    try:
        job = authorize_job(job_store, job_id, caller.user_id, caller.is_admin)
    except SigBatchError as e:
        raise http_error(e)
    return ExportStatus.model_validate(job.to_dict())


@router.get("/exports/download")
async def export_download(job_id: str = Query(..., description="Export job id"), caller: Caller = Depends(require_key)):
    """Stream the assembled archive; the job and its files are removed afterwards"""
    try:
        stream = await asyncio.to_thread(archive_assembler.open_archive, job_id, caller.user_id, caller.is_admin)
    except SigBatchError as e:
        raise http_error(e)

    return StreamingResponse(
        stream.iter_bytes(),
        media_type="application/zip",
        headers={
            "Content-Disposition": f'attachment; filename="{stream.filename}"',
            "Content-Length": str(stream.size),
            "X-Content-Type-Options": "nosniff",
            "Cache-Control": "private, max-age=0, must-revalidate",
        },
        # Backstop for a stream that is never iterated
        background=BackgroundTask(stream.cleanup),
    )


def _csv_rows(owner_id: int):
    buf = io.StringIO()
    writer = csv.writer(buf)

    def _flush() -> str:
        data = buf.getvalue()
        buf.seek(0)
        buf.truncate(0)
        return data

    # BOM so spreadsheet tools detect UTF-8
    writer.writerow(CSV_HEADER)
    yield "\ufeff" + _flush()
    with SessionLocal() as db:
        for sig in iter_newest_first(db, owner_id):
            writer.writerow([
                sig.name,
                sig.role,
                sig.email,
                sig.phone,
                sig.template,
                sig.created_at.strftime("%Y-%m-%d %H:%M:%S") if sig.created_at else "",
            ])
            yield _flush()


@router.get("/exports/csv")
def export_csv(
    owner_id: int = Query(..., ge=1),
    caller: Caller = Depends(require_key),
    db: Session = Depends(get_db),
):
    ensure_self_or_admin(caller, owner_id)
    display_name = owner_display_name(db, owner_id)
    filename = f"signatures_{clean_name(display_name, 'user')}_{datetime.now().strftime('%Y-%m-%d')}.csv"
    return StreamingResponse(
        _csv_rows(owner_id),
        media_type="text/csv; charset=utf-8",
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "Cache-Control": "no-cache",
        },
    )
