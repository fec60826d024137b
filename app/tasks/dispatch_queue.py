"""Dispatch Queue - bounded asyncio worker pool for post-submission work.

Submissions return as soon as the response is stored; crisis alerts, rewards,
milestones and cache invalidation run here afterwards. A job that raises is
logged and recorded in the failure log; it never takes a worker down and is
never retried automatically.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

from app.config import settings
from app.core.sentry import capture_exception
from app.middleware.correlation import snapshot_context, restore_context

logger = logging.getLogger(__name__)

FAILURE_LOG_SIZE = 200


@dataclass
class DispatchJob:
    name: str
    func: Callable[..., Awaitable[Any]]
    args: tuple = ()
    kwargs: dict = field(default_factory=dict)
    context: dict = field(default_factory=dict)
    enqueued_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class FailedJob:
    name: str
    error: str
    error_type: str
    correlation_id: str
    failed_at: datetime = field(default_factory=datetime.utcnow)


class DispatchQueue:
    """
    Fixed pool of worker tasks draining a bounded asyncio.Queue.

    Workers start on first submit if start() was not called, so the queue
    also works where no lifespan runs (e.g. in-process test clients).
    """

    def __init__(
        self,
        max_workers: int = 4,
        max_size: int = 1000,
        failure_log_size: int = FAILURE_LOG_SIZE,
    ):
        self.max_workers = max_workers
        self.max_size = max_size
        self._queue: Optional[asyncio.Queue] = None
        self._workers: list[asyncio.Task] = []
        self._failures: deque[FailedJob] = deque(maxlen=failure_log_size)

        self._submitted = 0
        self._completed = 0
        self._failed = 0
        self._rejected = 0

    @property
    def is_running(self) -> bool:
        return bool(self._workers) and not all(w.done() for w in self._workers)

    def start(self) -> None:
        """Spawn the worker tasks. Must be called from a running event loop."""
        if self.is_running:
            return
        self._queue = asyncio.Queue(maxsize=self.max_size)
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"dispatch-worker-{i}")
            for i in range(self.max_workers)
        ]
        logger.info(f"Dispatch queue started with {self.max_workers} workers (max {self.max_size} jobs)")

    def submit(self, name: str, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> bool:
        """
        Enqueue a coroutine function call.

        Returns False when the queue is full; the job is then recorded as
        failed instead of blocking the caller.
        """
        if not self.is_running:
            self.start()

        job = DispatchJob(name=name, func=func, args=args, kwargs=kwargs, context=snapshot_context())
        try:
            self._queue.put_nowait(job)
        except asyncio.QueueFull:
            self._rejected += 1
            logger.error(f"Dispatch queue full, dropping job {name}")
            self._record_failure(job, RuntimeError("dispatch queue full"))
            return False

        self._submitted += 1
        return True

    async def join(self) -> None:
        """Wait until every submitted job has finished."""
        if self._queue is not None:
            await self._queue.join()

    async def stop(self, drain: bool = True, timeout: Optional[float] = 10.0) -> None:
        """Stop the workers, optionally letting queued jobs finish first."""
        if not self._workers:
            return
        if drain and self._queue is not None:
            try:
                await asyncio.wait_for(self._queue.join(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Dispatch queue stop timed out with {self._queue.qsize()} jobs pending")

        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Dispatch queue stopped")

    async def _worker(self, index: int) -> None:
        while True:
            job = await self._queue.get()
            try:
                restore_context(job.context)
                await job.func(*job.args, **job.kwargs)
                self._completed += 1
            except Exception as e:
                logger.error(f"Dispatch job {job.name} failed on worker {index}: {e}", exc_info=True)
                capture_exception(e, context={"job": job.name, **job.context})
                self._record_failure(job, e)
            finally:
                self._queue.task_done()

    def _record_failure(self, job: DispatchJob, error: BaseException) -> None:
        self._failed += 1
        self._failures.append(
            FailedJob(
                name=job.name,
                error=str(error),
                error_type=type(error).__name__,
                correlation_id=job.context.get("correlation_id", ""),
            )
        )

    @property
    def failures(self) -> list[FailedJob]:
        """Most recent failures, oldest first."""
        return list(self._failures)

    def get_stats(self) -> dict:
        return {
            "workers": len(self._workers),
            "pending": self._queue.qsize() if self._queue is not None else 0,
            "submitted": self._submitted,
            "completed": self._completed,
            "failed": self._failed,
            "rejected": self._rejected,
        }


# Global queue instance
_dispatch_queue: Optional[DispatchQueue] = None


def get_dispatch_queue() -> DispatchQueue:
    """Get or create the global dispatch queue."""
    global _dispatch_queue
    if _dispatch_queue is None:
        _dispatch_queue = DispatchQueue(
            max_workers=settings.DISPATCH_MAX_WORKERS,
            max_size=settings.DISPATCH_QUEUE_SIZE,
        )
    return _dispatch_queue
