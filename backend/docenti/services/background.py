"""
Background worker service - job processing plus queue housekeeping.
"""

import asyncio

from docenti.config import logger
from docenti.services.job_queue import JobQueue
from docenti.services.task_worker import JobWorker


async def run_housekeeping(queue: JobQueue):
    """Purge expired finished jobs and recover jobs from dead workers."""
    try:
        await queue.purge_expired()
        await queue.requeue_stalled()
    except Exception as e:
        logger.error(f"Error during queue housekeeping: {e}", exc_info=True)


async def housekeeping_loop(queue: JobQueue, interval: float = 60.0):
    while True:
        await asyncio.sleep(interval)
        await run_housekeeping(queue)


async def run_background_worker(worker: JobWorker, queue: JobQueue, housekeeping_interval: float = 60.0):
    """Integrated background worker - processes queued jobs until cancelled."""
    logger.info("🔄 Background worker started")
    logger.info("=" * 60)

    # Run housekeeping once on startup
    await run_housekeeping(queue)
    housekeeping = asyncio.create_task(housekeeping_loop(queue, housekeeping_interval))

    try:
        await worker.run()
    except Exception as e:
        logger.error(f"Background worker error: {e}", exc_info=True)
    finally:
        housekeeping.cancel()
        await asyncio.gather(housekeeping, return_exceptions=True)
