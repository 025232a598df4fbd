"""Worker pool - concurrent consumers of the dispatch job queue."""
import asyncio
import logging
from typing import Optional

from notifier.services.delivery_service import DeliveryOutcome, DeliveryService
from notifier.services.queue_service import ClaimedJob, QueueService
from notifier.utils.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


class WorkerPool:
    """
    N consumer loops plus one maintenance loop.

    Each consumer leases one job at a time, delivers it and records the
    outcome. The maintenance loop reclaims expired leases, promotes due
    delayed jobs and purges old terminal jobs.
    """

    def __init__(
        self,
        queue: QueueService,
        delivery: DeliveryService,
        *,
        concurrency: int = 5,
        poll_interval_seconds: float = 2.0,
        maintenance_interval_seconds: float = 60.0,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        self.queue = queue
        self.delivery = delivery
        self.concurrency = max(1, int(concurrency))
        self.poll_interval_seconds = float(poll_interval_seconds)
        self.maintenance_interval_seconds = float(maintenance_interval_seconds)
        self.rate_limiter = rate_limiter
        self._running = False
        self._tasks: list[asyncio.Task] = []

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            logger.warning("Worker pool already running")
            return
        await self.queue.init()
        self._running = True
        self._tasks = [
            asyncio.create_task(self._consume_loop(i), name=f"notifier-worker-{i}")
            for i in range(self.concurrency)
        ]
        self._tasks.append(asyncio.create_task(self._maintenance_loop(), name="notifier-maintenance"))
        logger.info(f"Worker pool started (concurrency={self.concurrency})")

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Worker pool stopped")

    async def process_next(self) -> bool:
        """Lease and execute one eligible job. Returns False when none is due."""
        jobs = await self.queue.claim_due(limit=1)
        if not jobs:
            return False
        if self.rate_limiter is not None:
            await self.rate_limiter.acquire()
        await self.execute(jobs[0])
        return True

    async def drain(self, max_jobs: int = 1000) -> int:
        """Process due jobs until none is left (or max_jobs). Returns the count processed."""
        processed = 0
        while processed < max_jobs and await self.process_next():
            processed += 1
        return processed

    async def execute(self, job: ClaimedJob) -> Optional[DeliveryOutcome]:
        logger.info(f"Processing notification job {job.id} for module {job.module_key} (attempt {job.attempt_count})")
        try:
            outcome = await self.delivery.deliver(job, heartbeat=lambda: self.queue.extend_lease(job))
        except Exception as e:
            logger.error(f"Error processing notification job {job.id}: {e}", exc_info=True)
            await self.queue.retry_or_fail(job, error=str(e))
            return None

        if outcome.lease_lost:
            return outcome

        if outcome.success:
            if await self.queue.complete(job, result=outcome.to_dict()):
                logger.info(f"Notification job {job.id} completed: {outcome.to_dict()['message']}")
        else:
            await self.queue.retry_or_fail(
                job,
                error=outcome.error_summary(),
                result=outcome.to_dict(),
                retry_after=outcome.retry_after,
            )
        return outcome

    async def _consume_loop(self, index: int) -> None:
        while self._running:
            try:
                if not await self.process_next():
                    await asyncio.sleep(self.poll_interval_seconds)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Worker {index} error: {e}", exc_info=True)
                await asyncio.sleep(self.poll_interval_seconds)

    async def _maintenance_loop(self) -> None:
        while self._running:
            try:
                await self.queue.run_maintenance()
                await asyncio.sleep(self.maintenance_interval_seconds)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Queue maintenance error: {e}", exc_info=True)
                await asyncio.sleep(self.maintenance_interval_seconds)
