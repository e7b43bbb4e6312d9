"""Job queue lifecycle: claim, retry/backoff, retention, idempotent ids, stall recovery."""

import pytest

from docenti.errors import NotFoundError
from docenti.models import BackoffPolicy, JobKind, JobOptions, JobState
from docenti.services.job_queue import STALLED_LIMIT_REASON, STALLED_REASON

RETRYING = JobOptions(attempts=3, backoff=BackoffPolicy(type="exponential", delay_ms=1000))


class TestBackoffPolicy:
    def test_exponential_delays_double(self):
        policy = BackoffPolicy(type="exponential", delay_ms=1000)
        assert [policy.delay_for(n) for n in (1, 2, 3)] == [1000, 2000, 4000]

    def test_fixed_delay(self):
        assert BackoffPolicy(type="fixed", delay_ms=500).delay_for(3) == 500


class TestEnqueueAndClaim:
    async def test_enqueue_assigns_id_and_waits(self, queue):
        job = await queue.enqueue(JobKind.PARSE, {"exam_key": "K"}, RETRYING)

        assert job.id
        info = await queue.get_status(job.id)
        assert info.state == JobState.WAITING
        assert info.progress == 0
        assert info.attempts_made == 0

    async def test_claim_hands_job_to_one_worker(self, queue):
        job = await queue.enqueue(JobKind.PARSE, {"exam_key": "K"})

        claimed = await queue.claim([JobKind.PARSE])
        assert claimed.id == job.id
        assert claimed.state == JobState.ACTIVE
        assert claimed.processed_on is not None
        assert await queue.claim([JobKind.PARSE]) is None

    async def test_claim_filters_by_kind(self, queue):
        await queue.enqueue(JobKind.MARK, {"exam_key": "K"})

        assert await queue.claim([JobKind.PARSE]) is None
        assert (await queue.claim([JobKind.MARK])).kind == JobKind.MARK

    async def test_delayed_job_not_claimable_early(self, queue, clock):
        await queue.enqueue(JobKind.OPEN_EXAM, {"exam_id": "e1"}, JobOptions(job_id="e1", delay_ms=5000))

        assert await queue.claim([JobKind.OPEN_EXAM]) is None
        clock.advance(5000)
        assert (await queue.claim([JobKind.OPEN_EXAM])).id == "e1"

    async def test_unknown_job_status_is_not_found(self, queue):
        with pytest.raises(NotFoundError):
            await queue.get_status("missing")


class TestRetries:
    async def test_failed_attempt_returns_to_waiting_with_backoff(self, queue, clock):
        job = await queue.enqueue(JobKind.PARSE, {}, RETRYING)
        claimed = await queue.claim([JobKind.PARSE])

        state = await queue.fail(claimed, "boom")

        assert state == JobState.WAITING
        stored = await queue.get(job.id)
        assert stored.attempts_made == 1
        assert stored.failure_reason == "boom"
        assert stored.run_at == clock.now + 1000
        assert await queue.claim([JobKind.PARSE]) is None

        clock.advance(1000)
        second = await queue.claim([JobKind.PARSE])
        await queue.fail(second, "boom again")
        assert (await queue.get(job.id)).run_at == clock.now + 2000

    async def test_exhausted_job_is_removed_by_default(self, queue, clock):
        job = await queue.enqueue(JobKind.MARK, {}, RETRYING.model_copy(update={"remove_on_fail": 0}))

        for _ in range(3):
            clock.advance(10_000)
            claimed = await queue.claim([JobKind.MARK])
            final = await queue.fail(claimed, "still broken")

        assert final == JobState.FAILED
        assert await queue.get(job.id) is None

    async def test_exhausted_job_kept_for_retention(self, queue, clock):
        options = JobOptions(attempts=1, remove_on_fail=60)
        job = await queue.enqueue(JobKind.MARK, {}, options)
        claimed = await queue.claim([JobKind.MARK])

        await queue.fail(claimed, "last reason")

        info = await queue.get_status(job.id)
        assert info.state == JobState.FAILED
        assert info.failure_reason == "last reason"
        assert info.attempts_made == 1

        clock.advance(60_000)
        assert await queue.purge_expired() == 1
        assert await queue.get(job.id) is None

    async def test_non_retryable_failure_skips_remaining_attempts(self, queue):
        job = await queue.enqueue(JobKind.PARSE, {}, RETRYING.model_copy(update={"remove_on_fail": 60}))
        claimed = await queue.claim([JobKind.PARSE])

        assert await queue.fail(claimed, "fatal", retryable=False) == JobState.FAILED
        assert (await queue.get(job.id)).state == JobState.FAILED


class TestCompletion:
    async def test_completed_job_keeps_result_until_retention_expires(self, queue, clock):
        job = await queue.enqueue(JobKind.MARK, {}, JobOptions(remove_on_complete=3600))
        claimed = await queue.claim([JobKind.MARK])

        await queue.complete(claimed, "3/4")

        info = await queue.get_status(job.id)
        assert info.state == JobState.COMPLETED
        assert info.result == "3/4"
        assert info.progress == 100
        assert info.finished_at == clock.now

        clock.advance(3_599_000)
        assert await queue.purge_expired() == 0
        clock.advance(1000)
        assert await queue.purge_expired() == 1

    async def test_remove_on_complete_zero_deletes(self, queue):
        job = await queue.enqueue(JobKind.OPEN_EXAM, {}, JobOptions(job_id="e1", remove_on_complete=0))
        await queue.complete(await queue.claim([JobKind.OPEN_EXAM]), True)

        assert await queue.get(job.id) is None


class TestJobIdentity:
    async def test_same_id_replaces_waiting_job(self, queue, clock):
        await queue.enqueue(JobKind.OPEN_EXAM, {"exam_id": "e1"}, JobOptions(job_id="e1", delay_ms=10_000))
        await queue.enqueue(JobKind.OPEN_EXAM, {"exam_id": "e1"}, JobOptions(job_id="e1", delay_ms=20_000))

        assert await queue.count(JobKind.OPEN_EXAM) == 1
        assert (await queue.get("e1")).run_at == clock.now + 20_000

    async def test_same_id_leaves_active_job_alone(self, queue):
        await queue.enqueue(JobKind.PARSE, {"v": 1}, JobOptions(job_id="j1"))
        await queue.claim([JobKind.PARSE])

        returned = await queue.enqueue(JobKind.PARSE, {"v": 2}, JobOptions(job_id="j1"))

        assert returned.state == JobState.ACTIVE
        assert (await queue.get("j1")).payload == {"v": 1}

    async def test_same_id_overwrites_finished_job(self, queue):
        await queue.enqueue(JobKind.PARSE, {"v": 1}, JobOptions(job_id="j1", remove_on_complete=3600))
        await queue.complete(await queue.claim([JobKind.PARSE]), "done")

        await queue.enqueue(JobKind.PARSE, {"v": 2}, JobOptions(job_id="j1"))

        stored = await queue.get("j1")
        assert stored.state == JobState.WAITING
        assert stored.payload == {"v": 2}
        assert stored.result is None

    async def test_cancel_only_removes_waiting_jobs(self, queue):
        await queue.enqueue(JobKind.OPEN_EXAM, {}, JobOptions(job_id="e1"))
        await queue.enqueue(JobKind.PARSE, {}, JobOptions(job_id="p1"))
        await queue.claim([JobKind.PARSE])

        assert await queue.cancel("e1") is True
        assert await queue.cancel("p1") is False
        assert await queue.get("p1") is not None


class TestStallRecovery:
    async def test_expired_lock_is_requeued(self, queue, clock):
        job = await queue.enqueue(JobKind.PARSE, {}, RETRYING)
        claimed = await queue.claim([JobKind.PARSE])
        assert claimed.lock_until == clock.now + 300_000

        clock.advance(299_000)
        assert await queue.requeue_stalled() == 0

        clock.advance(2000)
        assert await queue.requeue_stalled() == 1
        stored = await queue.get(job.id)
        assert stored.state == JobState.WAITING
        assert stored.attempts_made == 1
        assert stored.failure_reason == STALLED_REASON
        assert (await queue.claim([JobKind.PARSE])).id == job.id

    async def test_extend_lock_keeps_job_active(self, queue, clock):
        await queue.enqueue(JobKind.PARSE, {})
        claimed = await queue.claim([JobKind.PARSE])

        clock.advance(200_000)
        assert await queue.extend_lock(claimed) is True
        clock.advance(200_000)
        assert await queue.requeue_stalled() == 0

    async def test_repeated_stalls_use_up_attempts(self, queue, clock):
        options = RETRYING.model_copy(update={"remove_on_fail": 60})
        job = await queue.enqueue(JobKind.MARK, {}, options)

        for _ in range(3):
            assert await queue.claim([JobKind.MARK]) is not None
            clock.advance(301_000)
            assert await queue.requeue_stalled() == 1

        info = await queue.get_status(job.id)
        assert info.state == JobState.FAILED
        assert info.attempts_made == 3
        assert info.failure_reason == STALLED_LIMIT_REASON
        assert await queue.claim([JobKind.MARK]) is None

    async def test_stalled_job_removed_when_failures_are_not_kept(self, queue, clock):
        job = await queue.enqueue(JobKind.MARK, {}, JobOptions(attempts=1, remove_on_fail=0))
        await queue.claim([JobKind.MARK])

        clock.advance(301_000)
        assert await queue.requeue_stalled() == 1
        assert await queue.get(job.id) is None


class TestLostClaim:
    async def test_late_completion_does_not_overwrite_new_claim(self, queue, clock):
        job = await queue.enqueue(JobKind.PARSE, {}, RETRYING.model_copy(update={"remove_on_complete": 60}))
        stale = await queue.claim([JobKind.PARSE])
        clock.advance(301_000)
        await queue.requeue_stalled()
        clock.advance(1000)
        current = await queue.claim([JobKind.PARSE])

        assert await queue.complete(stale, "late") is False
        assert await queue.fail(stale, "late failure") is None
        assert await queue.extend_lock(stale) is False

        stored = await queue.get(job.id)
        assert stored.state == JobState.ACTIVE
        assert stored.result is None
        assert stored.attempts_made == 1

        assert await queue.complete(current, "fresh") is True
        assert (await queue.get_status(job.id)).result == "fresh"

    async def test_late_completion_of_requeued_job_leaves_it_waiting(self, queue, clock):
        job = await queue.enqueue(JobKind.PARSE, {}, RETRYING.model_copy(update={"remove_on_complete": 0}))
        stale = await queue.claim([JobKind.PARSE])
        clock.advance(301_000)
        await queue.requeue_stalled()

        assert await queue.complete(stale, "late") is False
        assert (await queue.get(job.id)).state == JobState.WAITING
