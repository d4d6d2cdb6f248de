import asyncio
import itertools
from collections.abc import Awaitable, Callable, Hashable
from enum import Enum
from typing import Any

from loguru import logger

from personalization.core.errors import PoolSaturatedError

Job = Callable[..., Awaitable[Any]]


class RejectionPolicy(str, Enum):
    CALLER_RUNS = "CALLER_RUNS"  # run in the submitting coroutine (backpressure)
    DISCARD = "DISCARD"  # drop and log
    ABORT = "ABORT"  # raise PoolSaturatedError


def _consume_exception(future: asyncio.Future) -> None:
    # Failures are logged by the pool; mark them retrieved for callers that never await
    if not future.cancelled():
        future.exception()


class WorkerPool:
    """
    Bounded pool of asyncio workers, one queue per worker.

    Jobs submitted with the same key always land on the same worker, so they run in
    submission order. Keyless jobs are spread round-robin. When the chosen queue is
    full the pool's RejectionPolicy decides what happens. A pool that has not been
    started (or has been stopped) runs jobs inline in the caller.
    """

    def __init__(self, name: str, workers: int, queue_size: int, policy: RejectionPolicy):
        self.name = name
        self.workers = max(1, workers)
        self.queue_size = max(self.workers, queue_size)
        self.policy = policy
        self._queues: list[asyncio.Queue] = []
        self._tasks: list[asyncio.Task] = []
        self._round_robin = itertools.count()
        self._running = False
        self._stats = {
            "submitted": 0,
            "completed": 0,
            "failed": 0,
            "discarded": 0,
            "rejected": 0,
            "inline": 0,
        }

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        if self._running:
            return
        per_worker = max(1, self.queue_size // self.workers)
        self._queues = [asyncio.Queue(maxsize=per_worker) for _ in range(self.workers)]
        self._tasks = [
            asyncio.create_task(self._worker(index, queue), name=f"{self.name}-worker-{index}")
            for index, queue in enumerate(self._queues)
        ]
        self._running = True
        logger.info(
            f"Started worker pool '{self.name}' ({self.workers} workers, "
            f"queue {self.queue_size}, policy {self.policy.value})"
        )

    async def stop(self, drain_timeout: float | None = 5.0) -> None:
        """Stop accepting queued work, wait up to drain_timeout for the backlog, then cancel workers."""
        if not self._running:
            return
        self._running = False
        try:
            await asyncio.wait_for(self.join(), timeout=drain_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Worker pool '{self.name}' did not drain in {drain_timeout}s; cancelling backlog")

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)

        dropped = 0
        for queue in self._queues:
            while not queue.empty():
                _, _, future = queue.get_nowait()
                future.cancel()
                dropped += 1
        if dropped:
            logger.warning(f"Worker pool '{self.name}' dropped {dropped} queued jobs on shutdown")
        self._tasks = []
        self._queues = []
        logger.info(f"Stopped worker pool '{self.name}'")

    async def join(self) -> None:
        """Wait until every queued job has been processed."""
        await asyncio.gather(*(queue.join() for queue in self._queues))

    def _pick_queue(self, key: Hashable | None) -> asyncio.Queue:
        if key is not None:
            return self._queues[hash(key) % self.workers]
        start = next(self._round_robin)
        for offset in range(self.workers):
            queue = self._queues[(start + offset) % self.workers]
            if not queue.full():
                return queue
        return self._queues[start % self.workers]

    async def submit(self, fn: Job, *args: Any, key: Hashable | None = None) -> asyncio.Future | None:
        """
        Schedule fn(*args). Returns a future with the job's outcome, or None when the job
        was discarded. Raises PoolSaturatedError under the ABORT policy.
        """
        self._stats["submitted"] += 1
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        future.add_done_callback(_consume_exception)

        if not self._running:
            self._stats["inline"] += 1
            await self._execute(fn, args, future)
            return future

        queue = self._pick_queue(key)
        if queue.full():
            if self.policy == RejectionPolicy.CALLER_RUNS:
                self._stats["inline"] += 1
                logger.debug(f"Worker pool '{self.name}' saturated, running job in caller")
                await self._execute(fn, args, future)
                return future
            if self.policy == RejectionPolicy.DISCARD:
                self._stats["discarded"] += 1
                logger.warning(f"Worker pool '{self.name}' saturated, discarding {getattr(fn, '__name__', fn)}")
                future.cancel()
                return None
            self._stats["rejected"] += 1
            future.cancel()
            raise PoolSaturatedError(f"Worker pool '{self.name}' is saturated")

        queue.put_nowait((fn, args, future))
        return future

    async def _execute(self, fn: Job, args: tuple, future: asyncio.Future) -> None:
        try:
            result = await fn(*args)
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            self._stats["failed"] += 1
            logger.exception(f"Job {getattr(fn, '__name__', fn)} failed in pool '{self.name}': {exc}")
            if not future.done():
                future.set_exception(exc)
        else:
            self._stats["completed"] += 1
            if not future.done():
                future.set_result(result)

    async def _worker(self, index: int, queue: asyncio.Queue) -> None:
        while True:
            fn, args, future = await queue.get()
            try:
                await self._execute(fn, args, future)
            finally:
                queue.task_done()

    def stats(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "policy": self.policy.value,
            "workers": self.workers,
            "queueSize": self.queue_size,
            "running": self._running,
            "queued": sum(queue.qsize() for queue in self._queues),
            **self._stats,
        }


class WorkerPools:
    """The service's four named pools."""

    def __init__(self, activity: WorkerPool, recompute: WorkerPool, reactor: WorkerPool, notification: WorkerPool):
        self.activity = activity
        self.recompute = recompute
        self.reactor = reactor
        self.notification = notification

    @classmethod
    def from_settings(cls, settings) -> "WorkerPools":
        return cls(
            activity=WorkerPool(
                "activity",
                settings.ACTIVITY_POOL_WORKERS,
                settings.ACTIVITY_POOL_QUEUE_SIZE,
                RejectionPolicy.CALLER_RUNS,
            ),
            recompute=WorkerPool(
                "recompute",
                settings.RECOMPUTE_POOL_WORKERS,
                settings.RECOMPUTE_POOL_QUEUE_SIZE,
                RejectionPolicy.CALLER_RUNS,
            ),
            reactor=WorkerPool(
                "reactor", settings.REACTOR_POOL_WORKERS, settings.REACTOR_POOL_QUEUE_SIZE, RejectionPolicy.DISCARD
            ),
            notification=WorkerPool(
                "notification",
                settings.NOTIFICATION_POOL_WORKERS,
                settings.NOTIFICATION_POOL_QUEUE_SIZE,
                RejectionPolicy.ABORT,
            ),
        )

    def all(self) -> list[WorkerPool]:
        return [self.activity, self.recompute, self.reactor, self.notification]

    def start(self) -> None:
        for pool in self.all():
            pool.start()

    async def stop(self, drain_timeout: float | None = 5.0) -> None:
        # Upstream pools first: activity feeds the reactor, which feeds notifications
        for pool in (self.activity, self.recompute, self.reactor, self.notification):
            await pool.stop(drain_timeout)

    def stats(self) -> dict[str, dict]:
        return {pool.name: pool.stats() for pool in self.all()}
