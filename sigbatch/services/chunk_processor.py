"""
Chunk-level export processing.

Renders one page of an owner's signatures into a partial ZIP artifact and
advances the job. Continuations are not scheduled here: the caller receives
the next chunk index and hands it to the export queue.
"""

import logging
import os
import time
import zipfile
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy.orm import sessionmaker

from ..db import SessionLocal
from ..errors import ConcurrentUpdate, NotFound, StorageFailure, TemplateNotFound
from ..logging_config import log_job_event
from ..models.signature import Signature
from . import paths
from .job_store import BatchJob, JobStore, COMPLETED, FAILED, PROCESSING, job_store
from .prometheus_metrics import prometheus_metrics
from .signatures import page_for_owner
from .templates import TemplateResolver
from .validation import clean_name

logger = logging.getLogger("sigbatch.chunk_processor")


@dataclass
class RenderedDocument:
    filename: str
    html: str


def document_filename(sig: Signature) -> str:
    """<clean_name>_<YYYY-MM-DD>_<id>.html, unique through the record id"""
    day = sig.created_at.strftime("%Y-%m-%d") if sig.created_at else "undated"
    return f"{clean_name(sig.name)}_{day}_{sig.id}.html"


class ChunkProcessor:
    """
    Processes one chunk of an export job.

    Usage:
        processor = ChunkProcessor()
        next_index = processor.process_chunk(job_id, 0)
        if next_index is not None:
            export_queue.enqueue(job_id, next_index)
    """

    def __init__(
        self,
        store: JobStore = job_store,
        resolver: Optional[TemplateResolver] = None,
        session_factory: sessionmaker = SessionLocal,
    ):
        self.store = store
        self.resolver = resolver or TemplateResolver()
        self._session_factory = session_factory

    def render(self, sig: Signature) -> RenderedDocument:
        html_doc = self.resolver.render_record(sig.template, sig.fields(), fallback=True)
        return RenderedDocument(filename=document_filename(sig), html=html_doc)

    def _write_partial(self, job: BatchJob, chunk_index: int, docs: List[RenderedDocument]) -> str:
        name = paths.partial_name(chunk_index)
        tmp = None
        try:
            target = paths.job_dir(job.job_id, create=True) / name
            tmp = target.with_suffix(".zip.tmp")
            with zipfile.ZipFile(tmp, mode="w", compression=zipfile.ZIP_DEFLATED) as zf:
                for doc in docs:
                    zf.writestr(doc.filename, doc.html)
            os.replace(tmp, target)
        except OSError as e:
            if tmp is not None:
                tmp.unlink(missing_ok=True)
            raise StorageFailure(f"Cannot write partial artifact {name}: {e}") from e
        return name

    def _fail(self, job: BatchJob, expected_done: int, expected_status: str, reason: str) -> None:
        job.status = FAILED
        job.error = reason
        try:
            self.store.save(job, expected_done, expected_status)
        except (ConcurrentUpdate, NotFound):
            logger.warning("Could not mark job failed", extra={"component": "export", "job_id": job.job_id})
            return
        prometheus_metrics.record_job(FAILED)
        log_job_event("job_failed", f"Export job {job.job_id} failed: {reason}", job_id=job.job_id)

    def mark_failed(self, job_id: str, reason: str) -> None:
        try:
            job = self.store.load(job_id)
        except NotFound:
            return
        if not job.is_terminal:
            self._fail(job, job.chunks_done, job.status, reason)

    def process_chunk(self, job_id: str, chunk_index: int) -> Optional[int]:
        """
        Process one chunk of a job.

        Returns:
            The next chunk index to schedule, or None when there is nothing
            more to do (job finished, failed, gone, or index already handled).
        """
        try:
            job = self.store.load(job_id)
        except NotFound:
            logger.info("Chunk for unknown job ignored", extra={"component": "export", "job_id": job_id})
            return None

        if job.is_terminal or chunk_index != job.chunks_done:
            logger.info("Chunk already handled, skipping", extra={
                "component": "export",
                "job_id": job_id,
                "chunk_index": chunk_index,
                "chunks_done": job.chunks_done,
                "status": job.status,
            })
            return None

        expected_done, expected_status = job.chunks_done, job.status
        start = time.time()

        with self._session_factory() as db:
            records = page_for_owner(
                db,
                job.owner_id,
                limit=job.chunk_size,
                after_created_at=job.last_created_at,
                after_id=job.last_id,
                max_id=job.snapshot_max_id,
            )
            cursor = (records[-1].created_at, records[-1].id) if records else (None, None)
            try:
                docs = [self.render(sig) for sig in records]
            except TemplateNotFound as e:
                self._fail(job, expected_done, expected_status, str(e))
                return None

        if not docs:
            # Source set shrank since creation; whatever was rendered is the export
            job.chunks_done = job.chunks_total
            job.status = COMPLETED
            try:
                self.store.save(job, expected_done, expected_status)
            except (ConcurrentUpdate, NotFound):
                return None
            prometheus_metrics.record_job(COMPLETED)
            log_job_event("job_completed", f"Export job {job_id} completed early on empty chunk",
                          job_id=job_id, chunk_index=chunk_index, items_done=job.items_done)
            return None

        try:
            name = self._write_partial(job, chunk_index, docs)
        except StorageFailure as e:
            logger.error(str(e), extra={"component": "export", "job_id": job_id})
            self._fail(job, expected_done, expected_status, e.message)
            return None

        job.partial_artifacts.append(name)
        job.chunks_done = chunk_index + 1
        job.items_done += len(docs)
        job.last_created_at, job.last_id = cursor
        job.status = COMPLETED if job.chunks_done >= job.chunks_total else PROCESSING

        try:
            self.store.save(job, expected_done, expected_status)
        except (ConcurrentUpdate, NotFound):
            # The winner already owns this chunk's artifact name
            logger.warning("Lost chunk race, discarding duplicate work", extra={
                "component": "export", "job_id": job_id, "chunk_index": chunk_index,
            })
            return None

        prometheus_metrics.record_chunk()
        log_job_event(
            "chunk_processed",
            f"Export job {job_id} chunk {chunk_index + 1}/{job.chunks_total} done",
            job_id=job_id,
            chunk_index=chunk_index,
            items=len(docs),
            duration_ms=round((time.time() - start) * 1000, 2),
        )

        if job.status == COMPLETED:
            prometheus_metrics.record_job(COMPLETED)
            return None
        return chunk_index + 1
