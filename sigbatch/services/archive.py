"""
Archive assembly for completed export jobs.

Merges the partial chunk artifacts into one ZIP with a README and manifest,
streams it in blocks and then removes every trace of the job: partials, the
final archive and the job state row.
"""

import asyncio
import json
import logging
import os
import shutil
import tempfile
import threading
import zipfile
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import AsyncIterator, Optional

from sqlalchemy.orm import sessionmaker

from ..config import EXPORT_STREAM_BLOCK_BYTES
from ..db import SessionLocal
from ..errors import AccessDenied, ConcurrentUpdate, InvalidIdentifier, NotFound, NotReady, StorageFailure
from ..logging_config import log_job_event
from . import paths
from .job_store import BatchJob, JobStore, COMPLETED, CONSUMING, FAILED, job_store
from .signatures import owner_display_name
from .validation import clean_name

logger = logging.getLogger("sigbatch.archive")


def authorize_job(store: JobStore, job_id: str, user_id: int, is_admin: bool) -> BatchJob:
    """
    Load a job on behalf of a caller.

    Callers without admin rights get AccessDenied for unknown, malformed and
    foreign job ids alike, so ids cannot be probed.
    """
    try:
        job = store.load(job_id)
    except (InvalidIdentifier, NotFound):
        if not is_admin:
            raise AccessDenied("Access denied")
        raise
    if not job.can_access(user_id, is_admin):
        raise AccessDenied("Access denied")
    return job


def summary_text(display_name: str, count: int, when: datetime) -> str:
    return f"EXPORT SUMMARY\nUser: {display_name}\nCount: {count}\nDate: {when.strftime('%Y-%m-%d')}\n"


def manifest_data(job: BatchJob, display_name: str, when: datetime) -> dict:
    return {
        "user": display_name,
        "count": job.items_done,
        "total_items": job.total_items,
        "chunks": len(job.partial_artifacts),
        "job_id": job.job_id,
        "generated_at": when.strftime("%Y-%m-%d %H:%M:%S"),
    }


@dataclass
class ArchiveStream:
    """A finished archive on disk, deleted together with its job once consumed"""

    job_id: str
    filename: str
    path: Path
    size: int
    store: JobStore
    block_size: int = EXPORT_STREAM_BLOCK_BYTES
    _cleaned: bool = field(default=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def cleanup(self) -> None:
        """Remove the archive, all partials and the job row; safe to call twice"""
        with self._lock:
            if self._cleaned:
                return
            self._cleaned = True
        cleanup_job(self.store, self.job_id)
        log_job_event("job_consumed", f"Export job {self.job_id} downloaded and removed", job_id=self.job_id)

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        try:
            with open(self.path, "rb") as f:
                while True:
                    block = await asyncio.to_thread(f.read, self.block_size)
                    if not block:
                        break
                    yield block
        finally:
            # Runs on normal completion, client abort and cancellation
            self.cleanup()


def cleanup_job(store: JobStore, job_id: str) -> None:
    try:
        shutil.rmtree(paths.job_dir(job_id), ignore_errors=True)
    finally:
        store.delete(job_id)


class ArchiveAssembler:
    def __init__(self, store: JobStore = job_store, session_factory: sessionmaker = SessionLocal):
        self.store = store
        self._session_factory = session_factory

    def open_archive(self, job_id: str, user_id: int, is_admin: bool, now: Optional[datetime] = None) -> ArchiveStream:
        """
        Claim a completed job and build its final archive.

        Only one caller can claim a job; a second download of the same job is
        rejected before any archive is built. The claim is released again if
        assembly fails.

        Raises:
            AccessDenied, NotFound, InvalidIdentifier, NotReady, StorageFailure
        """
        job = authorize_job(self.store, job_id, user_id, is_admin)
        if job.status == FAILED:
            raise NotReady(f"Batch failed: {job.error or 'unknown error'}")
        if job.status == CONSUMING:
            raise NotReady("Batch is already being downloaded")
        if job.status != COMPLETED:
            raise NotReady("Batch not completed yet")

        self._claim(job)
        try:
            return self._assemble(job, now or datetime.now())
        except Exception:
            self._release(job)
            raise

    def _claim(self, job: BatchJob) -> None:
        job.status = CONSUMING
        try:
            self.store.save(job, job.chunks_done, COMPLETED)
        except ConcurrentUpdate:
            raise NotReady("Batch is already being downloaded")

    def _release(self, job: BatchJob) -> None:
        job.status = COMPLETED
        try:
            self.store.save(job, job.chunks_done, CONSUMING)
        except (ConcurrentUpdate, NotFound):
            logger.warning("Could not release download claim", extra={"component": "archive", "job_id": job.job_id})

    def _assemble(self, job: BatchJob, now: datetime) -> ArchiveStream:
        with self._session_factory() as db:
            display_name = owner_display_name(db, job.owner_id)

        base = paths.job_dir(job.job_id, create=True)
        fd, tmp_name = tempfile.mkstemp(prefix="final_", suffix=".zip", dir=base)
        os.close(fd)
        final_path = Path(tmp_name)
        try:
            with zipfile.ZipFile(final_path, mode="w", compression=zipfile.ZIP_DEFLATED) as out:
                for index, name in enumerate(job.partial_artifacts):
                    self._copy_partial(out, paths.partial_path(job.job_id, name), index)
                out.writestr("README.txt", summary_text(display_name, job.items_done, now))
                out.writestr("manifest.json", json.dumps(manifest_data(job, display_name, now), indent=2))
        except StorageFailure:
            final_path.unlink(missing_ok=True)
            raise
        except (OSError, zipfile.BadZipFile) as e:
            final_path.unlink(missing_ok=True)
            raise StorageFailure(f"Cannot assemble archive: {e}") from e

        filename = f"signatures_{clean_name(display_name, 'user')}_{now.strftime('%Y-%m-%d_%H-%M')}.zip"
        logger.info("Archive assembled", extra={
            "component": "archive",
            "job_id": job.job_id,
            "items": job.items_done,
            "bytes": final_path.stat().st_size,
        })
        return ArchiveStream(
            job_id=job.job_id,
            filename=filename,
            path=final_path,
            size=final_path.stat().st_size,
            store=self.store,
        )

    @staticmethod
    def _copy_partial(out: zipfile.ZipFile, partial: Path, index: int) -> None:
        if not partial.is_file():
            raise StorageFailure(f"Partial artifact missing: {partial.name}")
        with zipfile.ZipFile(partial) as part:
            for info in part.infolist():
                if info.is_dir():
                    continue
                arcname = f"signatures/chunk_{index:05d}/{Path(info.filename).name}"
                with part.open(info) as src, out.open(arcname, "w") as dst:
                    shutil.copyfileobj(src, dst)


archive_assembler = ArchiveAssembler()
