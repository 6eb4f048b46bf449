import logging
import shutil
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

from ..config import EXPORT_RETENTION_MINUTES
from ..logging_config import log_job_event
from .archive import cleanup_job
from .job_store import JobStore, job_store
from .paths import artifact_root
from .validation import JOB_ID_RE

logger = logging.getLogger("sigbatch.retention")


def cleanup_expired_jobs(store: JobStore = job_store, max_age: Optional[timedelta] = None) -> int:
    """Delete jobs older than the retention window, whatever their status"""
    max_age = max_age if max_age is not None else timedelta(minutes=EXPORT_RETENTION_MINUTES)
    removed = 0
    for job_id in store.list_expired(max_age):
        try:
            cleanup_job(store, job_id)
            removed += 1
            log_job_event("job_expired", f"Export job {job_id} expired and was removed", job_id=job_id)
        except Exception as e:
            logger.error(f"Failed to remove expired job {job_id}: {e}")
    return removed


def cleanup_orphan_dirs(store: JobStore = job_store, max_age: Optional[timedelta] = None) -> int:
    """Remove artifact directories that no longer belong to a stored job"""
    max_age = max_age if max_age is not None else timedelta(minutes=EXPORT_RETENTION_MINUTES)
    cutoff = datetime.utcnow() - max_age
    removed = 0
    root: Path = artifact_root()
    for d in root.iterdir():
        if not d.is_dir() or not JOB_ID_RE.match(d.name):
            continue
        if store.exists(d.name):
            continue
        if datetime.utcfromtimestamp(d.stat().st_mtime) >= cutoff:
            continue
        shutil.rmtree(d, ignore_errors=True)
        removed += 1
    if removed:
        logger.info("Removed orphan artifact directories", extra={"component": "retention", "removed": removed})
    return removed


def sweep(store: JobStore = job_store) -> int:
    return cleanup_expired_jobs(store) + cleanup_orphan_dirs(store)
