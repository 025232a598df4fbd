"""Queue service - DB-backed, priority- and delay-aware dispatch job queue."""

from __future__ import annotations

import json
import logging
import os
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable

from sqlalchemy import select, update, delete, func
from sqlalchemy.exc import SQLAlchemyError

from database.db import Database
from database.models import DispatchJob
from notifier.errors import QueuePersistError
from notifier.utils.datetime_utils import after_ms, utcnow

logger = logging.getLogger(__name__)


class JobState(str, Enum):
    WAITING = "waiting"
    DELAYED = "delayed"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


PENDING_STATES = (JobState.WAITING.value, JobState.DELAYED.value)


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff: base * 2^(attempt-1), capped, for at most max_attempts."""

    max_attempts: int = 5
    base_seconds: float = 2.0
    max_seconds: float = 3600.0

    def delay_for(self, attempt: int, retry_after: int | None = None) -> float:
        delay = self.base_seconds * (2 ** max(int(attempt) - 1, 0))
        if retry_after:
            delay = max(delay, float(retry_after))
        return min(delay, self.max_seconds)


@dataclass(frozen=True)
class RetentionPolicy:
    completed_seconds: int = 24 * 3600
    completed_count: int = 1000
    failed_seconds: int = 7 * 24 * 3600


@dataclass(frozen=True)
class ClaimedJob:
    """A leased job. `lease_token` must accompany every state change."""

    id: int
    module_key: str
    message: str
    explicit_chat_id: str | None
    parse_mode: str | None
    priority: int
    attempt_count: int
    max_attempts: int
    lease_token: str
    created_at: datetime | None = None


@dataclass(frozen=True)
class RetryDecision:
    state: JobState
    run_at: datetime | None = None
    delay_seconds: float | None = None


@dataclass
class QueueStats:
    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    delayed: int = 0
    error: str | None = None

    @property
    def total(self) -> int:
        return self.waiting + self.active + self.completed + self.failed + self.delayed

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "waiting": self.waiting,
            "active": self.active,
            "completed": self.completed,
            "failed": self.failed,
            "delayed": self.delayed,
            "total": self.total,
        }
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class MaintenanceReport:
    reclaimed: int = 0
    expired: int = 0
    promoted: int = 0
    purged: dict[str, int] = field(default_factory=dict)


class QueueService:
    """
    Durable job queue stored in the `dispatch_jobs` table.

    Leasing uses row locks (FOR UPDATE SKIP LOCKED) so concurrent workers never
    claim the same job; a lease not renewed within `lease_seconds` is reclaimed
    by `release_stale_locks()`.
    """

    def __init__(
        self,
        db: Database,
        *,
        retry_policy: RetryPolicy | None = None,
        retention: RetentionPolicy | None = None,
        lease_seconds: int = 300,
        clock: Callable[[], datetime] = utcnow,
        worker_id: str | None = None,
    ):
        self.db = db
        self.retry_policy = retry_policy or RetryPolicy()
        self.retention = retention or RetentionPolicy()
        self.lease_seconds = int(lease_seconds)
        self.clock = clock
        self.worker_id = worker_id or f"pid:{os.getpid()}"
        self._initialized = False

    async def init(self) -> None:
        """Connect the underlying store. Safe to call more than once."""
        if self._initialized:
            return
        await self.db.connect()
        self._initialized = True

    async def shutdown(self) -> None:
        """Release the queue's hold on the store (the Database is disposed by its owner)."""
        self._initialized = False

    async def enqueue(
        self,
        *,
        module_key: str,
        message: str,
        explicit_chat_id: str | int | None = None,
        parse_mode: str | None = None,
        priority: int = 1,
        delay_ms: int = 0,
    ) -> int:
        """
        Persist a job and return its id once the transaction has committed.

        Raises:
            QueuePersistError: the store is unreachable or rejected the insert
        """
        now = self.clock()
        delay_ms = max(0, int(delay_ms or 0))
        job = DispatchJob(
            module_key=str(module_key),
            message=str(message),
            explicit_chat_id=str(explicit_chat_id) if explicit_chat_id not in (None, "") else None,
            parse_mode=parse_mode,
            priority=int(priority),
            delay_ms=delay_ms,
            attempt_count=0,
            max_attempts=int(self.retry_policy.max_attempts),
            state=JobState.DELAYED.value if delay_ms > 0 else JobState.WAITING.value,
            run_at=after_ms(now, delay_ms),
            locked_at=None,
            locked_by=None,
            last_error=None,
            result=None,
            created_at=now,
            updated_at=now,
        )
        try:
            async with self.db.session() as session:
                session.add(job)
                await session.flush()
                job_id = int(job.id)
        except (SQLAlchemyError, OSError) as e:
            raise QueuePersistError(f"failed to persist job for module {module_key}: {e}") from e

        logger.info(f"Notification job {job_id} queued for module {module_key} (priority={priority}, delay_ms={delay_ms})")
        return job_id

    async def claim_due(self, *, limit: int = 1) -> list[ClaimedJob]:
        """
        Lease up to `limit` eligible jobs: highest priority first, FIFO within a priority.

        Each candidate is taken with a conditional update that only matches a
        still-pending row, so a job another worker leased between the select
        and the update is skipped. Dialects without SKIP LOCKED (SQLite) rely
        on that check alone.
        """
        now = self.clock()

        async with self.db.session() as session:
            result = await session.execute(
                select(DispatchJob.id)
                .where(DispatchJob.state.in_(PENDING_STATES), DispatchJob.run_at <= now)
                .order_by(DispatchJob.priority.desc(), DispatchJob.id.asc())
                .limit(int(limit))
                .with_for_update(skip_locked=True)
            )
            candidate_ids = [int(i) for i in result.scalars().all()]

            claimed: list[ClaimedJob] = []
            for job_id in candidate_ids:
                token = f"{self.worker_id}:{uuid.uuid4().hex}"
                leased = await session.execute(
                    update(DispatchJob)
                    .where(DispatchJob.id == job_id, DispatchJob.state.in_(PENDING_STATES))
                    .values(
                        state=JobState.ACTIVE.value,
                        attempt_count=DispatchJob.attempt_count + 1,
                        locked_at=now,
                        locked_by=token,
                        updated_at=now,
                    )
                    .returning(
                        DispatchJob.module_key,
                        DispatchJob.message,
                        DispatchJob.explicit_chat_id,
                        DispatchJob.parse_mode,
                        DispatchJob.priority,
                        DispatchJob.attempt_count,
                        DispatchJob.max_attempts,
                        DispatchJob.created_at,
                    )
                    .execution_options(synchronize_session=False)
                )
                row = leased.first()
                if row is None:
                    logger.debug(f"Job {job_id} was leased by another worker")
                    continue
                claimed.append(
                    ClaimedJob(
                        id=job_id,
                        module_key=str(row.module_key),
                        message=str(row.message),
                        explicit_chat_id=row.explicit_chat_id,
                        parse_mode=row.parse_mode,
                        priority=int(row.priority),
                        attempt_count=int(row.attempt_count),
                        max_attempts=int(row.max_attempts or self.retry_policy.max_attempts),
                        lease_token=token,
                        created_at=row.created_at,
                    )
                )

            return claimed

    async def extend_lease(self, job: ClaimedJob) -> bool:
        """Heartbeat: renew the lease. False means the lease was lost."""
        async with self.db.session() as session:
            result = await session.execute(
                update(DispatchJob)
                .where(*self._owned(job))
                .values(locked_at=self.clock(), updated_at=self.clock())
            )
            return bool(result.rowcount)

    async def complete(self, job: ClaimedJob, *, result: dict[str, Any] | None = None) -> bool:
        now = self.clock()
        async with self.db.session() as session:
            res = await session.execute(
                update(DispatchJob)
                .where(*self._owned(job))
                .values(
                    state=JobState.COMPLETED.value,
                    locked_at=None,
                    locked_by=None,
                    result=_dump(result),
                    finished_at=now,
                    updated_at=now,
                )
            )
            ok = bool(res.rowcount)
        if not ok:
            logger.error(f"Lease lost before completing job {job.id}; completion discarded")
        return ok

    async def retry_or_fail(
        self,
        job: ClaimedJob,
        *,
        error: str,
        result: dict[str, Any] | None = None,
        retry_after: int | None = None,
    ) -> RetryDecision | None:
        """
        Record a failed attempt: reschedule with backoff, or fail terminally
        once the job has used `max_attempts`. Returns None if the lease was lost.
        """
        now = self.clock()
        if job.attempt_count >= job.max_attempts:
            values: dict[str, Any] = dict(
                state=JobState.FAILED.value,
                finished_at=now,
            )
            decision = RetryDecision(state=JobState.FAILED)
        else:
            delay = self.retry_policy.delay_for(job.attempt_count, retry_after)
            run_at = now + timedelta(seconds=delay)
            values = dict(state=JobState.DELAYED.value, run_at=run_at)
            decision = RetryDecision(state=JobState.DELAYED, run_at=run_at, delay_seconds=delay)

        values.update(
            locked_at=None,
            locked_by=None,
            last_error=(error or "")[:4000],
            result=_dump(result),
            updated_at=now,
        )
        async with self.db.session() as session:
            res = await session.execute(update(DispatchJob).where(*self._owned(job)).values(**values))
            ok = bool(res.rowcount)

        if not ok:
            logger.error(f"Lease lost before recording failure of job {job.id}")
            return None
        if decision.state is JobState.FAILED:
            logger.error(
                f"Notification job {job.id} failed permanently after {job.attempt_count} attempts "
                f"(module {job.module_key}): {error}"
            )
        else:
            logger.warning(
                f"Notification job {job.id} attempt {job.attempt_count}/{job.max_attempts} failed, "
                f"retrying in {decision.delay_seconds:.1f}s: {error}"
            )
        return decision

    async def release_stale_locks(self) -> tuple[int, int]:
        """
        Reclaim jobs whose lease expired (worker crash/restart).

        Returns (requeued, failed): jobs with attempts left go back to
        `waiting`; jobs that expired on their final attempt become `failed`.
        """
        now = self.clock()
        cutoff = now - timedelta(seconds=self.lease_seconds)
        stale = (DispatchJob.state == JobState.ACTIVE.value, DispatchJob.locked_at < cutoff)
        async with self.db.session() as session:
            exhausted = await session.execute(
                update(DispatchJob)
                .where(*stale, DispatchJob.attempt_count >= DispatchJob.max_attempts)
                .values(
                    state=JobState.FAILED.value,
                    locked_at=None,
                    locked_by=None,
                    last_error="lease expired on final attempt",
                    finished_at=now,
                    updated_at=now,
                )
            )
            requeued = await session.execute(
                update(DispatchJob)
                .where(*stale)
                .values(state=JobState.WAITING.value, locked_at=None, locked_by=None, updated_at=now)
            )
            counts = (int(requeued.rowcount or 0), int(exhausted.rowcount or 0))

        if any(counts):
            logger.warning(f"Reclaimed stalled jobs: requeued={counts[0]} failed={counts[1]}")
        return counts

    async def promote_delayed(self) -> int:
        """Move delayed jobs whose run_at has passed to `waiting`."""
        now = self.clock()
        async with self.db.session() as session:
            result = await session.execute(
                update(DispatchJob)
                .where(DispatchJob.state == JobState.DELAYED.value, DispatchJob.run_at <= now)
                .values(state=JobState.WAITING.value, updated_at=now)
            )
            return int(result.rowcount or 0)

    async def clean(self) -> dict[str, int]:
        """Purge terminal jobs past their retention window."""
        now = self.clock()
        completed_cutoff = now - timedelta(seconds=self.retention.completed_seconds)
        failed_cutoff = now - timedelta(seconds=self.retention.failed_seconds)

        async with self.db.session() as session:
            by_age = await session.execute(
                delete(DispatchJob).where(
                    DispatchJob.state == JobState.COMPLETED.value,
                    DispatchJob.finished_at < completed_cutoff,
                )
            )
            completed_purged = int(by_age.rowcount or 0)

            # Keep only the newest N completed jobs.
            keep = (
                select(DispatchJob.id)
                .where(DispatchJob.state == JobState.COMPLETED.value)
                .order_by(DispatchJob.finished_at.desc(), DispatchJob.id.desc())
                .limit(int(self.retention.completed_count))
            )
            keep_ids = [int(i) for i in (await session.execute(keep)).scalars().all()]
            overflow = delete(DispatchJob).where(DispatchJob.state == JobState.COMPLETED.value)
            if keep_ids:
                overflow = overflow.where(DispatchJob.id.not_in(keep_ids))
            by_count = await session.execute(overflow)
            completed_purged += int(by_count.rowcount or 0)

            failed = await session.execute(
                delete(DispatchJob).where(
                    DispatchJob.state == JobState.FAILED.value,
                    DispatchJob.finished_at < failed_cutoff,
                )
            )
            failed_purged = int(failed.rowcount or 0)

        if completed_purged or failed_purged:
            logger.info(f"Queue cleaned: completed={completed_purged} failed={failed_purged}")
        return {"completed": completed_purged, "failed": failed_purged}

    async def run_maintenance(self) -> MaintenanceReport:
        requeued, expired = await self.release_stale_locks()
        promoted = await self.promote_delayed()
        purged = await self.clean()
        return MaintenanceReport(reclaimed=requeued, expired=expired, promoted=promoted, purged=purged)

    async def get_stats(self) -> QueueStats:
        """Point-in-time counts per state; zeros plus `error` if the store is unreachable."""
        try:
            async with self.db.session() as session:
                result = await session.execute(
                    select(DispatchJob.state, func.count()).group_by(DispatchJob.state)
                )
                counts = {str(state): int(n or 0) for state, n in result.all()}
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Error getting queue stats: {e}")
            return QueueStats(error=str(e))

        return QueueStats(
            waiting=counts.get(JobState.WAITING.value, 0),
            active=counts.get(JobState.ACTIVE.value, 0),
            completed=counts.get(JobState.COMPLETED.value, 0),
            failed=counts.get(JobState.FAILED.value, 0),
            delayed=counts.get(JobState.DELAYED.value, 0),
        )

    async def count(self) -> int:
        async with self.db.session() as session:
            result = await session.execute(select(func.count()).select_from(DispatchJob))
            return int(result.scalar() or 0)

    async def get_job(self, job_id: int) -> dict[str, Any] | None:
        async with self.db.session() as session:
            job = await session.get(DispatchJob, int(job_id))
            if not job:
                return None
            return job_to_dict(job)

    @staticmethod
    def _owned(job: ClaimedJob):
        return (
            DispatchJob.id == int(job.id),
            DispatchJob.state == JobState.ACTIVE.value,
            DispatchJob.locked_by == job.lease_token,
        )


def job_to_dict(job: DispatchJob) -> dict[str, Any]:
    def _iso(value: datetime | None) -> str | None:
        return value.isoformat() if value else None

    raw_result = getattr(job, "result", None)
    try:
        parsed = json.loads(raw_result) if raw_result else None
    except ValueError:
        parsed = None

    return {
        "id": int(job.id),
        "module": str(job.module_key),
        "message": str(job.message),
        "chat_id": job.explicit_chat_id,
        "parse_mode": job.parse_mode,
        "priority": int(job.priority),
        "delay_ms": int(job.delay_ms or 0),
        "attempt_count": int(job.attempt_count or 0),
        "max_attempts": int(job.max_attempts or 0),
        "state": str(job.state),
        "run_at": _iso(job.run_at),
        "last_error": job.last_error,
        "result": parsed,
        "created_at": _iso(job.created_at),
        "updated_at": _iso(job.updated_at),
        "finished_at": _iso(job.finished_at),
    }


def _dump(data: dict[str, Any] | None) -> str | None:
    if data is None:
        return None
    return json.dumps(data, separators=(",", ":"), ensure_ascii=False, default=str)
