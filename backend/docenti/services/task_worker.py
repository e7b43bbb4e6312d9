"""
Background task worker - a bounded pool of slots polling the job queue.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict

from docenti.config import logger
from docenti.errors import FatalConfigError
from docenti.models import Job, JobKind
from docenti.services.job_queue import JobQueue

JobHandler = Callable[[Job], Awaitable[Any]]


class JobWorker:
    """
    Runs `concurrency` independent slots. Each slot claims one job at a time,
    runs its handler and reports the outcome back to the queue. While a
    handler runs, the slot keeps renewing the job's lock.
    """

    def __init__(
        self,
        queue: JobQueue,
        handlers: Dict[JobKind, JobHandler],
        concurrency: int = 3,
        poll_interval: float = 1.0,
        lock_renew_interval: float = 60.0,
    ):
        self._queue = queue
        self._handlers = handlers
        self._concurrency = max(1, concurrency)
        self._poll_interval = poll_interval
        self._lock_renew_interval = lock_renew_interval

    async def run(self):
        """Main worker loop. Runs until cancelled."""
        logger.info(f"🔄 Task worker started with {self._concurrency} slots for {[k.value for k in self._handlers]}")
        slots = [asyncio.create_task(self._slot(i)) for i in range(self._concurrency)]
        try:
            await asyncio.gather(*slots)
        finally:
            for slot in slots:
                slot.cancel()
            await asyncio.gather(*slots, return_exceptions=True)
            logger.info("⏹️  Task worker stopped")

    async def _slot(self, slot_no: int):
        while True:
            try:
                processed = await self.run_once()
            except Exception as e:
                logger.error(f"Worker slot {slot_no} error: {e}", exc_info=True)
                processed = False
            if not processed:
                await asyncio.sleep(self._poll_interval)

    async def run_once(self) -> bool:
        """Claim and process a single job. Returns False when nothing was runnable."""
        job = await self._queue.claim(self._handlers.keys())
        if job is None:
            return False
        await self.process(job)
        return True

    async def _renew_lock(self, job: Job):
        while True:
            await asyncio.sleep(self._lock_renew_interval)
            try:
                held = await self._queue.extend_lock(job)
            except Exception as e:
                logger.warning(f"Could not renew lock for job {job.id}: {e}")
                continue
            if not held:
                logger.warning(f"Lost the lock on job {job.id}; it will not be renewed")
                return

    async def process(self, job: Job):
        handler = self._handlers.get(job.kind)
        logger.info(f"Processing {job.kind.value} job {job.id} (attempt {job.attempts_made + 1}/{job.max_attempts})")
        if handler is None:
            await self._queue.fail(job, f"Unknown job kind: {job.kind.value}", retryable=False)
            return

        renewer = asyncio.create_task(self._renew_lock(job))
        try:
            result = await handler(job)
        except FatalConfigError as e:
            await self._queue.fail(job, str(e), retryable=False)
        except Exception as e:
            logger.error(f"Queue consumer process error for job {job.id}: {e}")
            await self._queue.fail(job, str(e))
        else:
            await self._queue.complete(job, result)
        finally:
            renewer.cancel()
            await asyncio.gather(renewer, return_exceptions=True)
