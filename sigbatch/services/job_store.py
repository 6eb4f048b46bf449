"""
Job State Store

Durable export job state addressed only by an unguessable job id. Rows live in
the service database so a job survives restarts and can be driven forward by
independent requests.
"""

import logging
import math
import secrets
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.orm import sessionmaker

from ..db import SessionLocal
from ..errors import ConcurrentUpdate, NotFound
from ..models.export_job import ExportJob
from .validation import validate_job_id

logger = logging.getLogger("sigbatch.job_store")

PENDING = "pending"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"
# Claimed by one download; the job is removed once the archive is streamed
CONSUMING = "consuming"

TERMINAL_STATUSES = {COMPLETED, FAILED, CONSUMING}
_ALLOWED_TRANSITIONS = {
    PENDING: {PENDING, PROCESSING, COMPLETED, FAILED},
    PROCESSING: {PROCESSING, COMPLETED, FAILED},
    COMPLETED: {COMPLETED, CONSUMING},
    CONSUMING: {CONSUMING, COMPLETED},
    FAILED: {FAILED},
}


@dataclass
class BatchJob:
    job_id: str
    owner_id: int
    requester_id: int
    total_items: int
    chunk_size: int
    chunks_total: int
    chunks_done: int = 0
    items_done: int = 0
    snapshot_max_id: Optional[int] = None
    last_created_at: Optional[datetime] = None
    last_id: Optional[int] = None
    status: str = PENDING
    partial_artifacts: List[str] = field(default_factory=list)
    error: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def can_access(self, user_id: int, is_admin: bool) -> bool:
        return is_admin or user_id in (self.owner_id, self.requester_id)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key in ("last_created_at", "created_at", "updated_at"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data

    @classmethod
    def from_row(cls, row: ExportJob) -> "BatchJob":
        return cls(
            job_id=row.job_id,
            owner_id=row.owner_id,
            requester_id=row.requester_id,
            total_items=row.total_items,
            chunk_size=row.chunk_size,
            chunks_total=row.chunks_total,
            chunks_done=row.chunks_done,
            items_done=row.items_done,
            snapshot_max_id=row.snapshot_max_id,
            last_created_at=row.last_created_at,
            last_id=row.last_id,
            status=row.status,
            partial_artifacts=list(row.partial_artifacts or []),
            error=row.error,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )


def new_job_id() -> str:
    # 128 bits from the OS CSPRNG
    return secrets.token_hex(16)


class JobStore:
    """CRUD over export job state with compare-and-swap saves"""

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self._session_factory = session_factory

    def create(
        self,
        owner_id: int,
        requester_id: int,
        total_items: int,
        chunk_size: int,
        snapshot_max_id: Optional[int] = None,
    ) -> str:
        if chunk_size < 1:
            raise ValueError("chunk_size must be positive")
        job_id = new_job_id()
        now = datetime.utcnow()
        row = ExportJob(
            job_id=job_id,
            owner_id=owner_id,
            requester_id=requester_id,
            total_items=total_items,
            chunk_size=chunk_size,
            chunks_total=math.ceil(total_items / chunk_size),
            chunks_done=0,
            items_done=0,
            snapshot_max_id=snapshot_max_id,
            status=PENDING,
            partial_artifacts=[],
            created_at=now,
            updated_at=now,
        )
        with self._session_factory() as db:
            db.add(row)
            db.commit()
        logger.info("Created export job", extra={
            "component": "job_store",
            "job_id": job_id,
            "owner_id": owner_id,
            "requester_id": requester_id,
            "total_items": total_items,
        })
        return job_id

    def load(self, job_id: str) -> BatchJob:
        validate_job_id(job_id)
        with self._session_factory() as db:
            row = db.get(ExportJob, job_id)
            if row is None:
                raise NotFound("Job not found")
            return BatchJob.from_row(row)

    def save(self, job: BatchJob, expected_chunks_done: int, expected_status: str) -> BatchJob:
        """
        Persist `job` only if the stored row still has the expected progress.

        Raises:
            ConcurrentUpdate: another writer advanced the job first
            NotFound: the job was deleted in the meantime
        """
        if job.status not in _ALLOWED_TRANSITIONS[expected_status]:
            raise ValueError(f"illegal status transition {expected_status} -> {job.status}")
        if job.chunks_done < expected_chunks_done or job.chunks_done > job.chunks_total:
            raise ValueError("chunks_done must stay within [expected, chunks_total]")

        job.updated_at = datetime.utcnow()
        stmt = (
            update(ExportJob)
            .where(
                ExportJob.job_id == job.job_id,
                ExportJob.chunks_done == expected_chunks_done,
                ExportJob.status == expected_status,
            )
            .values(
                chunks_done=job.chunks_done,
                items_done=job.items_done,
                last_created_at=job.last_created_at,
                last_id=job.last_id,
                status=job.status,
                partial_artifacts=list(job.partial_artifacts),
                error=job.error,
                updated_at=job.updated_at,
            )
        )
        with self._session_factory() as db:
            result = db.execute(stmt)
            db.commit()
            if result.rowcount == 1:
                return job
            exists = db.get(ExportJob, job.job_id) is not None
        if not exists:
            raise NotFound("Job not found")
        raise ConcurrentUpdate(f"job {job.job_id} changed concurrently")

    def delete(self, job_id: str) -> bool:
        validate_job_id(job_id)
        with self._session_factory() as db:
            result = db.execute(delete(ExportJob).where(ExportJob.job_id == job_id))
            db.commit()
            return result.rowcount > 0

    def list_resumable(self) -> List[BatchJob]:
        """Non-terminal jobs with chunks left, oldest first"""
        stmt = (
            select(ExportJob)
            .where(ExportJob.status.in_([PENDING, PROCESSING]))
            .where(ExportJob.chunks_done < ExportJob.chunks_total)
            .order_by(ExportJob.created_at.asc())
        )
        with self._session_factory() as db:
            return [BatchJob.from_row(r) for r in db.scalars(stmt)]

    def list_expired(self, max_age: timedelta) -> List[str]:
        cutoff = datetime.utcnow() - max_age
        stmt = select(ExportJob.job_id).where(ExportJob.created_at < cutoff)
        with self._session_factory() as db:
            return list(db.scalars(stmt))

    def exists(self, job_id: str) -> bool:
        with self._session_factory() as db:
            return db.get(ExportJob, job_id) is not None


job_store = JobStore()
