"""
Durable at-least-once job queue stored in the MongoDB `jobs` collection.

A job moves waiting -> active -> completed|failed once per attempt. Failed
attempts go back to waiting with a backoff delay until max_attempts is used
up. Claiming is a single find_one_and_update, so a job is handed to exactly
one worker at a time. Active jobs hold a lock that the worker renews; a job
whose lock lapses (worker died) is handled by requeue_stalled(), which
counts the stall as a used attempt.
"""

import time
import uuid
from typing import Any, Dict, Iterable, Optional

from pymongo import ASCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from docenti.config import logger
from docenti.errors import NotFoundError
from docenti.models import Job, JobInfo, JobKind, JobOptions, JobState


STALLED_REASON = "Job stalled: worker lock expired"
STALLED_LIMIT_REASON = "job stalled more than allowable limit"


def now_ms() -> int:
    return int(time.time() * 1000)


class JobQueue:
    """Producer/consumer API over the jobs collection."""

    def __init__(self, collection, lock_seconds: int = 300, clock=now_ms):
        self._jobs = collection
        self._lock_ms = lock_seconds * 1000
        self._clock = clock

    async def ensure_indexes(self):
        await self._jobs.create_index("job_id", unique=True)
        await self._jobs.create_index([("state", ASCENDING), ("run_at", ASCENDING)])
        await self._jobs.create_index("expire_at")

    # ============== PRODUCER SIDE ==============

    async def enqueue(self, kind: JobKind, payload: Dict[str, Any], options: Optional[JobOptions] = None) -> Job:
        """
        Add a job. Re-using an id replaces a job that is still waiting or has
        finished; an id whose job is currently active is left untouched.
        """
        options = options or JobOptions()
        now = self._clock()
        job = Job(
            id=options.job_id or str(uuid.uuid4()),
            kind=kind,
            payload=payload,
            max_attempts=max(1, options.attempts),
            backoff=options.backoff,
            created_at=now,
            run_at=now + max(0, options.delay_ms),
            remove_on_complete=options.remove_on_complete,
            remove_on_fail=options.remove_on_fail,
        )

        existing = await self._jobs.find_one({"job_id": job.id}, {"_id": 0})
        if existing and existing.get("state") == JobState.ACTIVE.value:
            logger.info(f"Job {job.id} is already active; enqueue ignored")
            return Job.from_doc(existing)

        try:
            await self._jobs.replace_one(
                {"job_id": job.id, "state": {"$ne": JobState.ACTIVE.value}},
                job.to_doc(),
                upsert=True,
            )
        except DuplicateKeyError:
            # Became active between the read and the write
            current = await self._jobs.find_one({"job_id": job.id}, {"_id": 0})
            logger.info(f"Job {job.id} was claimed concurrently; enqueue ignored")
            return Job.from_doc(current)

        action = "Replaced" if existing else "Enqueued"
        logger.info(f"{action} {kind.value} job {job.id} (attempts={job.max_attempts}, delay={options.delay_ms}ms)")
        return job

    async def cancel(self, job_id: str) -> bool:
        """Remove a job that has not started yet."""
        result = await self._jobs.delete_one({"job_id": job_id, "state": JobState.WAITING.value})
        if result.deleted_count:
            logger.info(f"Cancelled pending job {job_id}")
        return bool(result.deleted_count)

    async def get(self, job_id: str) -> Optional[Job]:
        doc = await self._jobs.find_one({"job_id": job_id}, {"_id": 0})
        return Job.from_doc(doc) if doc else None

    async def get_status(self, job_id: str) -> JobInfo:
        job = await self.get(job_id)
        if job is None:
            raise NotFoundError("Job not found", details={"job_id": job_id})
        logger.debug(f"Job {job_id} state: {job.state.value}")
        return JobInfo.from_job(job)

    async def count(self, kind: Optional[JobKind] = None, state: Optional[JobState] = None) -> int:
        query: Dict[str, Any] = {}
        if kind is not None:
            query["kind"] = kind.value
        if state is not None:
            query["state"] = state.value
        return await self._jobs.count_documents(query)

    # ============== CONSUMER SIDE ==============

    async def claim(self, kinds: Iterable[JobKind]) -> Optional[Job]:
        """Atomically take the oldest runnable waiting job of the given kinds."""
        now = self._clock()
        doc = await self._jobs.find_one_and_update(
            {
                "state": JobState.WAITING.value,
                "run_at": {"$lte": now},
                "kind": {"$in": [k.value for k in kinds]},
            },
            {"$set": {
                "state": JobState.ACTIVE.value,
                "processed_on": now,
                "lock_until": now + self._lock_ms,
            }},
            sort=[("run_at", ASCENDING)],
            return_document=ReturnDocument.AFTER,
        )
        return Job.from_doc(doc) if doc else None

    @staticmethod
    def _held(job: Job) -> Dict[str, Any]:
        """Filter matching the job only while it is still held by this claim."""
        return {
            "job_id": job.id,
            "state": JobState.ACTIVE.value,
            "processed_on": job.processed_on,
            "attempts_made": job.attempts_made,
        }

    async def extend_lock(self, job: Job) -> bool:
        result = await self._jobs.update_one(
            self._held(job),
            {"$set": {"lock_until": self._clock() + self._lock_ms}},
        )
        return bool(result.matched_count)

    async def complete(self, job: Job, result: Any = None) -> bool:
        """Record success. Returns False when the claim was lost (lock lapsed and the job moved on)."""
        now = self._clock()
        if job.remove_on_complete == 0:
            outcome = await self._jobs.delete_one(self._held(job))
            held = bool(outcome.deleted_count)
        else:
            outcome = await self._jobs.update_one(
                self._held(job),
                {"$set": {
                    "state": JobState.COMPLETED.value,
                    "result": result,
                    "progress": 100,
                    "finished_on": now,
                    "lock_until": None,
                    "expire_at": self._expiry(now, job.remove_on_complete),
                }},
            )
            held = bool(outcome.matched_count)
        if not held:
            logger.warning(f"Job {job.id} finished after its claim was lost; result dropped")
            return False
        logger.info(f"Job {job.id} completed" + (" and removed" if job.remove_on_complete == 0 else ""))
        return True

    async def fail(self, job: Job, reason: str, retryable: bool = True) -> Optional[JobState]:
        """
        Record a failed attempt. Returns WAITING when another attempt is
        scheduled, FAILED once the job is exhausted (or not retryable), and
        None when the claim was lost and nothing was written.
        """
        now = self._clock()
        attempts_made = job.attempts_made + 1

        if retryable and attempts_made < job.max_attempts:
            delay = job.backoff.delay_for(attempts_made)
            if not await self._back_to_waiting(self._held(job), attempts_made, reason, now + delay):
                logger.warning(f"Job {job.id} failed after its claim was lost: {reason}")
                return None
            logger.warning(f"Job {job.id} attempt {attempts_made}/{job.max_attempts} failed, retrying in {delay}ms: {reason}")
            return JobState.WAITING

        if not await self._mark_failed(self._held(job), job, attempts_made, reason, now):
            logger.warning(f"Job {job.id} failed after its claim was lost: {reason}")
            return None
        logger.error(f"Job {job.id} failed after {attempts_made} attempt(s): {reason}")
        return JobState.FAILED

    async def _back_to_waiting(self, query: Dict[str, Any], attempts_made: int, reason: str, run_at: int) -> bool:
        result = await self._jobs.update_one(
            query,
            {"$set": {
                "state": JobState.WAITING.value,
                "attempts_made": attempts_made,
                "failure_reason": reason,
                "run_at": run_at,
                "lock_until": None,
            }},
        )
        return bool(result.matched_count)

    async def _mark_failed(self, query: Dict[str, Any], job: Job, attempts_made: int, reason: str, now: int) -> bool:
        if job.remove_on_fail == 0:
            result = await self._jobs.delete_one(query)
            return bool(result.deleted_count)
        result = await self._jobs.update_one(
            query,
            {"$set": {
                "state": JobState.FAILED.value,
                "attempts_made": attempts_made,
                "failure_reason": reason,
                "finished_on": now,
                "lock_until": None,
                "expire_at": self._expiry(now, job.remove_on_fail),
            }},
        )
        return bool(result.matched_count)

    # ============== HOUSEKEEPING ==============

    @staticmethod
    def _expiry(now: int, retention_seconds: Optional[int]) -> Optional[int]:
        if retention_seconds is None:
            return None
        return now + retention_seconds * 1000

    async def purge_expired(self) -> int:
        """Delete finished jobs whose retention window has passed."""
        result = await self._jobs.delete_many({
            "state": {"$in": [JobState.COMPLETED.value, JobState.FAILED.value]},
            "expire_at": {"$ne": None, "$lte": self._clock()},
        })
        if result.deleted_count:
            logger.info(f"Purged {result.deleted_count} finished jobs")
        return result.deleted_count

    async def requeue_stalled(self) -> int:
        """
        Recover active jobs whose lock lapsed (the worker died). A stall uses up
        an attempt: the job goes back to waiting right away, or fails once its
        attempts are exhausted. Returns how many stalled jobs were handled.
        """
        now = self._clock()
        stalled = self._jobs.find({"state": JobState.ACTIVE.value, "lock_until": {"$lt": now}})
        handled = 0
        async for doc in stalled:
            job = Job.from_doc(doc)
            query = {**self._held(job), "lock_until": {"$lt": now}}
            attempts_made = job.attempts_made + 1
            if attempts_made < job.max_attempts:
                if await self._back_to_waiting(query, attempts_made, STALLED_REASON, now):
                    logger.warning(f"Requeued stalled job {job.id} (attempt {attempts_made}/{job.max_attempts})")
                    handled += 1
            elif await self._mark_failed(query, job, attempts_made, STALLED_LIMIT_REASON, now):
                logger.error(f"Job {job.id} {STALLED_LIMIT_REASON}")
                handled += 1
        return handled
