"""Durable queue: ordering, delays, leases, retry bookkeeping, retention, stats."""
import asyncio

import pytest

from database.db import Database
from notifier.errors import QueuePersistError
from notifier.services.queue_service import JobState, QueueService, RetentionPolicy, RetryPolicy


async def _enqueue(queue, module_key="order_completed", message="m", **kwargs) -> int:
    return await queue.enqueue(module_key=module_key, message=message, **kwargs)


async def test_higher_priority_is_claimed_first(queue):
    low = await _enqueue(queue, message="low", priority=1)
    high = await _enqueue(queue, message="high", priority=10)

    first = await queue.claim_due()
    second = await queue.claim_due()

    assert [j.id for j in first] == [high]
    assert [j.id for j in second] == [low]


async def test_equal_priority_is_fifo(queue):
    ids = [await _enqueue(queue, message=str(i), priority=3) for i in range(4)]

    claimed = await queue.claim_due(limit=10)

    assert [j.id for j in claimed] == ids


async def test_claim_marks_job_active_and_counts_attempt(queue):
    job_id = await _enqueue(queue)

    [job] = await queue.claim_due()

    row = await queue.get_job(job_id)
    assert row["state"] == "active"
    assert row["attempt_count"] == 1
    assert job.attempt_count == 1
    assert job.lease_token.startswith("test-worker:")


async def test_leased_job_is_not_claimed_twice(queue):
    await _enqueue(queue)

    assert len(await queue.claim_due()) == 1
    assert await queue.claim_due() == []


async def test_concurrent_workers_never_lease_the_same_job(db, queue, clock):
    other = QueueService(db, lease_seconds=60, clock=clock, worker_id="other-worker")

    for round_no in range(20):
        job_id = await _enqueue(queue, message=str(round_no))

        first, second = await asyncio.gather(queue.claim_due(), other.claim_due())

        leased = [j.id for j in first + second]
        assert leased == [job_id]
        row = await queue.get_job(job_id)
        assert row["attempt_count"] == 1
        assert row["state"] == "active"


async def test_delayed_job_waits_until_run_at(queue, clock):
    job_id = await _enqueue(queue, delay_ms=2500)

    assert (await queue.get_job(job_id))["state"] == "delayed"
    clock.advance(2)
    assert await queue.claim_due() == []

    clock.advance(1)
    assert [j.id for j in await queue.claim_due()] == [job_id]


async def test_promote_delayed_moves_due_jobs_to_waiting(queue, clock):
    due = await _enqueue(queue, delay_ms=1000)
    later = await _enqueue(queue, delay_ms=60_000)

    clock.advance(5)
    assert await queue.promote_delayed() == 1

    assert (await queue.get_job(due))["state"] == "waiting"
    assert (await queue.get_job(later))["state"] == "delayed"


async def test_complete_records_result(queue):
    job_id = await _enqueue(queue)
    [job] = await queue.claim_due()

    assert await queue.complete(job, result={"sent_count": 2}) is True

    row = await queue.get_job(job_id)
    assert row["state"] == "completed"
    assert row["result"] == {"sent_count": 2}
    assert row["finished_at"] is not None


async def test_retry_backoff_grows_until_terminal_failure(queue, clock):
    job_id = await _enqueue(queue)
    delays = []

    for attempt in range(1, 6):
        clock.advance(3600)
        [job] = await queue.claim_due()
        assert job.attempt_count == attempt
        decision = await queue.retry_or_fail(job, error=f"fail {attempt}")
        if attempt < 5:
            assert decision.state is JobState.DELAYED
            delays.append(decision.delay_seconds)
        else:
            assert decision.state is JobState.FAILED

    assert delays == [2, 4, 8, 16]
    row = await queue.get_job(job_id)
    assert row["state"] == "failed"
    assert row["attempt_count"] == 5
    assert row["last_error"] == "fail 5"

    clock.advance(3600)
    assert await queue.claim_due() == []


async def test_retry_respects_rate_limit_hint(queue):
    await _enqueue(queue)
    [job] = await queue.claim_due()

    decision = await queue.retry_or_fail(job, error="429", retry_after=30)

    assert decision.delay_seconds == 30


def test_retry_policy_caps_delay():
    policy = RetryPolicy(max_attempts=20, base_seconds=2, max_seconds=60)

    assert policy.delay_for(1) == 2
    assert policy.delay_for(3) == 8
    assert policy.delay_for(10) == 60
    assert policy.delay_for(1, retry_after=5) == 5


async def test_stale_lease_is_requeued(queue, clock):
    job_id = await _enqueue(queue)
    [job] = await queue.claim_due()

    clock.advance(30)
    assert await queue.release_stale_locks() == (0, 0)

    clock.advance(61)
    assert await queue.release_stale_locks() == (1, 0)
    assert (await queue.get_job(job_id))["state"] == "waiting"

    [again] = await queue.claim_due()
    assert again.id == job_id
    assert again.attempt_count == 2


async def test_stale_lease_on_final_attempt_fails_job(db, clock):
    queue = QueueService(db, retry_policy=RetryPolicy(max_attempts=1), lease_seconds=60, clock=clock)
    job_id = await _enqueue(queue)
    await queue.claim_due()

    clock.advance(120)

    assert await queue.release_stale_locks() == (0, 1)
    row = await queue.get_job(job_id)
    assert row["state"] == "failed"
    assert row["last_error"] == "lease expired on final attempt"


async def test_lost_lease_cannot_change_state(queue, clock):
    job_id = await _enqueue(queue)
    [stale] = await queue.claim_due()

    clock.advance(120)
    await queue.release_stale_locks()
    [current] = await queue.claim_due()

    assert await queue.extend_lease(stale) is False
    assert await queue.complete(stale) is False
    assert await queue.retry_or_fail(stale, error="late") is None
    assert (await queue.get_job(job_id))["state"] == "active"

    assert await queue.complete(current) is True
    assert (await queue.get_job(job_id))["state"] == "completed"


async def test_completed_job_is_never_reclaimed(queue, clock):
    job_id = await _enqueue(queue)
    [job] = await queue.claim_due()
    await queue.complete(job)

    clock.advance(10_000)
    await queue.run_maintenance()

    assert await queue.claim_due() == []
    assert (await queue.get_job(job_id))["state"] == "completed"


async def test_clean_applies_retention_windows(queue, clock):
    done_id = await _enqueue(queue, message="done")
    [done] = await queue.claim_due()
    await queue.complete(done)

    failed_id = await queue.enqueue(module_key="m", message="fail")
    # exhaust attempts
    for _ in range(5):
        clock.advance(3600)
        [job] = await queue.claim_due()
        await queue.retry_or_fail(job, error="x")

    clock.advance(25 * 3600)
    purged = await queue.clean()

    assert purged == {"completed": 1, "failed": 0}
    assert await queue.get_job(done_id) is None
    assert (await queue.get_job(failed_id))["state"] == "failed"

    clock.advance(7 * 24 * 3600)
    assert await queue.clean() == {"completed": 0, "failed": 1}
    assert await queue.get_job(failed_id) is None


async def test_clean_keeps_only_newest_completed(db, clock):
    queue = QueueService(db, retention=RetentionPolicy(completed_count=2), clock=clock)
    ids = []
    for i in range(4):
        ids.append(await _enqueue(queue, message=str(i)))
        [job] = await queue.claim_due()
        clock.advance(1)
        await queue.complete(job)

    purged = await queue.clean()

    assert purged["completed"] == 2
    assert [await queue.get_job(i) is not None for i in ids] == [False, False, True, True]


async def test_stats_count_every_state(queue, clock):
    await _enqueue(queue)
    await _enqueue(queue, delay_ms=10_000)
    await _enqueue(queue)
    [job] = await queue.claim_due()
    await queue.complete(job)
    await _enqueue(queue)
    await queue.claim_due()

    stats = await queue.get_stats()

    assert stats.to_dict() == {
        "waiting": 1,
        "active": 1,
        "completed": 1,
        "failed": 0,
        "delayed": 1,
        "total": 4,
    }


async def test_stats_report_error_when_store_unreachable(tmp_path):
    broken = Database(f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'nope.db'}")
    queue = QueueService(broken)
    try:
        stats = await queue.get_stats()
    finally:
        await broken.disconnect()

    assert stats.total == 0
    assert stats.error


async def test_enqueue_on_unreachable_store_raises_persist_error(tmp_path):
    broken = Database(f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'nope.db'}")
    queue = QueueService(broken)
    try:
        with pytest.raises(QueuePersistError):
            await _enqueue(queue)
    finally:
        await broken.disconnect()
