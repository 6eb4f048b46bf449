"""
Export continuation queue.

A single worker pulls (job_id, chunk_index) items and runs the blocking chunk
step in a thread, so chunks of one job always run in increasing order and one
at a time. The request that finishes a chunk only enqueues the next one.
"""

import asyncio
import logging
from typing import Optional

from ..config import EXPORT_QUEUE_MAX_DEPTH
from .chunk_processor import ChunkProcessor
from .job_store import JobStore, job_store
from .prometheus_metrics import prometheus_metrics

logger = logging.getLogger("sigbatch.export_queue")


class ExportQueue:
    """Bounded continuation queue with one worker task"""

    def __init__(self, processor: Optional[ChunkProcessor] = None, max_depth: int = EXPORT_QUEUE_MAX_DEPTH):
        self.processor = processor or ChunkProcessor()
        self.max_depth = max_depth
        self.queue: Optional[asyncio.Queue] = None
        self.worker: Optional[asyncio.Task] = None

    def initialize(self):
        """Bind the queue to the running event loop"""
        self.queue = asyncio.Queue(maxsize=self.max_depth)
        logger.info("Export queue initialized", extra={
            "component": "export_queue",
            "max_depth": self.max_depth,
        })

    async def start_worker(self):
        if not self.queue:
            raise RuntimeError("Queue not initialized")
        self.worker = asyncio.create_task(self._worker_loop())
        logger.info("Export worker started", extra={"component": "export_queue"})

    async def stop_worker(self):
        if self.worker:
            self.worker.cancel()
            await asyncio.gather(self.worker, return_exceptions=True)
            self.worker = None
        logger.info("Export worker stopped", extra={"component": "export_queue"})

    def enqueue(self, job_id: str, chunk_index: int) -> bool:
        """
        Schedule a chunk continuation.
        Returns False when the queue is missing or full; the job then stays
        in its last saved state and is picked up again by resume_pending().
        """
        if not self.queue:
            logger.warning("Export queue not initialized, continuation deferred", extra={
                "component": "export_queue",
                "job_id": job_id,
                "chunk_index": chunk_index,
            })
            return False
        try:
            self.queue.put_nowait((job_id, chunk_index))
        except asyncio.QueueFull:
            logger.warning("Export queue full, continuation deferred", extra={
                "component": "export_queue",
                "job_id": job_id,
                "chunk_index": chunk_index,
                "max_depth": self.max_depth,
            })
            return False
        prometheus_metrics.set_queue_depth(self.queue.qsize())
        return True

    def resume_pending(self, store: JobStore = job_store) -> int:
        """Re-enqueue every unfinished job at its next chunk"""
        resumed = 0
        for job in store.list_resumable():
            if self.enqueue(job.job_id, job.chunks_done):
                resumed += 1
        if resumed:
            logger.info("Resumed unfinished export jobs", extra={
                "component": "export_queue",
                "resumed": resumed,
            })
        return resumed

    async def run_chunk(self, job_id: str, chunk_index: int) -> Optional[int]:
        """Run one chunk off the event loop and schedule its continuation"""
        next_index = await asyncio.to_thread(self.processor.process_chunk, job_id, chunk_index)
        if next_index is not None:
            self.enqueue(job_id, next_index)
        return next_index

    async def _worker_loop(self):
        while True:
            try:
                job_id, chunk_index = await self.queue.get()
                try:
                    await self.run_chunk(job_id, chunk_index)
                except Exception:
                    logger.exception("Chunk processing crashed", extra={
                        "component": "export_queue",
                        "job_id": job_id,
                        "chunk_index": chunk_index,
                    })
                    await asyncio.to_thread(self.processor.mark_failed, job_id, "internal error while processing chunk")
                finally:
                    self.queue.task_done()
                    prometheus_metrics.set_queue_depth(self.queue.qsize())
            except asyncio.CancelledError:
                logger.info("Export worker cancelled", extra={"component": "export_queue"})
                break
            except Exception:
                logger.exception("Export worker loop error", extra={"component": "export_queue"})
                await asyncio.sleep(1)


# Global queue instance, initialized in the app lifespan
export_queue = ExportQueue()
