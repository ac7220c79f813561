# src/socrata_sync/pooling/executor.py
"""Bounded concurrency for chunk copies.

ConcurrencyLimit is a counting semaphore of fixed capacity: ``run`` blocks
until a slot is free, runs the task while holding it, then releases it.

PooledExecutor dispatches a batch of tasks onto a thread pool, each task
taking a ConcurrencyLimit slot, and joins the whole batch before returning:
every dispatched task is awaited and its outcome observed.

Without an acquire timeout the thread pool has ``pool_size`` workers, so
queued tasks wait in the pool. With one, every task gets its own thread and
waits on the semaphore instead, which is where the timeout applies.
"""

from collections.abc import Callable, Sequence
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from threading import BoundedSemaphore, Event, Lock
from typing import Any, TypeVar

import structlog

from socrata_sync.contracts.errors import AcquireTimeoutError
from socrata_sync.pooling.config import PoolConfig

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class _Skipped(Exception):
    """A task got its slot after the batch was aborted and did not run."""


class ConcurrencyLimit:
    """Fixed-capacity slot holder. Holds no state beyond the semaphore."""

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self._capacity = capacity
        self._slots = BoundedSemaphore(capacity)

    @property
    def capacity(self) -> int:
        return self._capacity

    def run(self, task: Callable[[], T]) -> T:
        """Run ``task`` while holding a slot, blocking until one is free."""
        with self._slots:
            return task()

    def run_with_timeout(self, task: Callable[[], T], timeout: float) -> T:
        """Run ``task`` while holding a slot, waiting at most ``timeout`` seconds for it.

        Raises:
            AcquireTimeoutError: No slot became free in time. ``task`` did not run.
        """
        if not self._slots.acquire(timeout=timeout):
            raise AcquireTimeoutError(timeout)
        try:
            return task()
        finally:
            self._slots.release()


class PooledExecutor:
    """Run a batch of tasks with at most ``pool_size`` in flight.

    Results come back in submission order. On the first failure, tasks that
    have not started are cancelled, running tasks are awaited, and the first
    error is raised. Later errors from tasks already running are logged.

    Usage:
        with PooledExecutor(PoolConfig(pool_size=2)) as executor:
            results = executor.execute_all([partial(copy_chunk, c) for c in cursors])
            stats = executor.get_stats()
    """

    def __init__(self, config: PoolConfig) -> None:
        self._config = config
        self._limit = ConcurrencyLimit(config.pool_size)
        self._aborted = Event()
        self._closed = False

        self._stats_lock = Lock()
        self._active_workers = 0
        self._max_concurrent = 0
        self._completed = 0
        self._failed = 0
        self._cancelled = 0

    @property
    def pool_size(self) -> int:
        return self._limit.capacity

    def __enter__(self) -> "PooledExecutor":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    def shutdown(self) -> None:
        """Refuse further batches. Tasks still waiting for a slot are skipped."""
        self._closed = True
        self._aborted.set()

    def _track(self, task: Callable[[], T]) -> T:
        if self._aborted.is_set():
            raise _Skipped()
        with self._stats_lock:
            self._active_workers += 1
            self._max_concurrent = max(self._max_concurrent, self._active_workers)
        try:
            return task()
        finally:
            with self._stats_lock:
                self._active_workers -= 1

    def _run_one(self, task: Callable[[], T]) -> T:
        timeout = self._config.acquire_timeout_seconds
        if timeout is None:
            return self._limit.run(lambda: self._track(task))
        return self._limit.run_with_timeout(lambda: self._track(task), timeout)

    def _worker_count(self, tasks: Sequence[Callable[[], Any]]) -> int:
        if self._config.acquire_timeout_seconds is None:
            return min(self.pool_size, len(tasks))
        return len(tasks)

    def get_stats(self) -> dict[str, Any]:
        with self._stats_lock:
            return {
                "pool_size": self.pool_size,
                "max_concurrent_reached": self._max_concurrent,
                "completed": self._completed,
                "failed": self._failed,
                "cancelled": self._cancelled,
            }

    def execute_all(self, tasks: Sequence[Callable[[], T]]) -> list[T]:
        """Run every task and join them.

        Returns:
            Task results in submission order.

        Raises:
            AcquireTimeoutError: A task waited longer than ``acquire_timeout_seconds``
                for a slot.
            Exception: The first error raised by any task.
        """
        if self._closed:
            raise RuntimeError("executor has been shut down")
        if not tasks:
            return []
        self._aborted.clear()
        with ThreadPoolExecutor(max_workers=self._worker_count(tasks), thread_name_prefix="chunk") as pool:
            futures: list[Future[T]] = [pool.submit(self._run_one, task) for task in tasks]
            done, pending = wait(futures, return_when=FIRST_EXCEPTION)

            first_error = next(
                (future.exception() for future in futures if future in done and future.exception() is not None),
                None,
            )
            if first_error is None:
                self._record_outcomes(futures)
                return [future.result() for future in futures]

            self._aborted.set()
            for future in pending:
                future.cancel()
            wait(futures)

        cancelled = self._record_outcomes(futures)
        for future in futures:
            error = None if future.cancelled() else future.exception()
            if error is not None and error is not first_error and not isinstance(error, _Skipped):
                logger.error("task failed after first failure", error=str(error), error_type=type(error).__name__)
        logger.error("batch aborted", cancelled=cancelled, error=str(first_error))
        raise first_error

    def _record_outcomes(self, futures: Sequence[Future[Any]]) -> int:
        """Count each future once. Returns how many never ran."""
        cancelled = 0
        with self._stats_lock:
            for future in futures:
                if future.cancelled() or isinstance(future.exception(), _Skipped):
                    cancelled += 1
                elif future.exception() is not None:
                    self._failed += 1
                else:
                    self._completed += 1
            self._cancelled += cancelled
        return cancelled
