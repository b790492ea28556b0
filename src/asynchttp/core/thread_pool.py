"""
=============================================================================
WORKER THREAD POOL
=============================================================================

The event loop must never block. Handlers that do blocking work (disk,
legacy client libraries, CPU-heavy rendering) run on this pool instead, and
call their response sink from the worker thread:

    ┌──────────────┐  submit(work)   ┌───────────┐   get()   ┌──────────┐
    │  event loop  │ ──────────────► │ TaskQueue │ ────────► │ Worker-N │
    │  (sessions)  │                 └───────────┘           └────┬─────┘
    │              │ ◄─────────── call_soon_threadsafe ───────────┘
    └──────────────┘                 respond(response)

The pool starts ``min_workers`` threads and adds one more whenever a task is
queued while no worker is idle (up to ``max_workers``). Workers block on
the queue; each one exits when it takes a poison pill (None).

=============================================================================
"""

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional


logger = logging.getLogger(__name__)


class WorkerState(Enum):
    IDLE = "idle"
    BUSY = "busy"
    STOPPED = "stopped"


@dataclass
class Task:
    """A deferred call: func(*args, **kwargs)."""

    func: Callable[..., Any]
    args: tuple = ()
    kwargs: dict = field(default_factory=dict)
    queued_at: float = field(default_factory=time.monotonic)

    def __call__(self) -> Any:
        return self.func(*self.args, **self.kwargs)


class Worker(threading.Thread):
    """One pool thread. Failures are logged and counted by the pool."""

    def __init__(self, pool: "ThreadPool", worker_id: int):
        # daemon=True: an abandoned pool does not keep the process alive
        super().__init__(name=f"asynchttp-worker-{worker_id}", daemon=True)
        self.pool = pool
        self.worker_id = worker_id
        self.state = WorkerState.IDLE

    def run(self):
        tasks = self.pool._queue
        logger.debug(f"{self.name} ready")

        while True:
            task = tasks.get()
            if task is None:
                tasks.task_done()
                break

            self.state = WorkerState.BUSY
            waited = time.monotonic() - task.queued_at
            try:
                task()
            except Exception as e:
                logger.exception(f"{self.name}: task failed after {waited:.3f}s in queue: {e}")
                self.pool._count(failed=True)
            else:
                self.pool._count(failed=False)
            finally:
                self.state = WorkerState.IDLE
                tasks.task_done()

        self.state = WorkerState.STOPPED
        logger.debug(f"{self.name} exited")


class ThreadPool:
    """
    Bounded pool of worker threads.

        pool = ThreadPool(min_workers=4, max_workers=8)
        pool.start()
        pool.submit(render_report, args=(request,))
        pool.shutdown(wait=True, timeout=5.0)

    A pool can be started again after shutdown().
    """

    def __init__(self, min_workers: int = 4, max_workers: int = 8, queue_size: int = 100):
        if min_workers < 1 or max_workers < min_workers:
            raise ValueError("need 1 <= min_workers <= max_workers")

        self.min_workers = min_workers
        self.max_workers = max_workers
        self.queue_size = queue_size

        self._queue: "queue.Queue[Optional[Task]]" = queue.Queue(maxsize=queue_size)
        self._workers: List[Worker] = []
        self._lock = threading.Lock()  # workers list and counters
        self._worker_ids = 0
        self._completed = 0
        self._failed = 0
        self._accepting = False

    @property
    def started(self) -> bool:
        return bool(self._workers)

    def start(self):
        """Start ``min_workers`` threads. A second call is a no-op."""
        with self._lock:
            if self._workers:
                return
            logger.info(f"Thread pool starting {self.min_workers} workers (max {self.max_workers})")
            for _ in range(self.min_workers):
                self._spawn()
            self._accepting = True

    def _spawn(self) -> Worker:
        # Caller holds _lock
        self._worker_ids += 1
        worker = Worker(self, self._worker_ids)
        self._workers.append(worker)
        worker.start()
        return worker

    def _count(self, failed: bool):
        with self._lock:
            if failed:
                self._failed += 1
            else:
                self._completed += 1

    # =========================================================================
    # SUBMITTING
    # =========================================================================

    def submit(
        self,
        func: Callable[..., Any],
        args: tuple = (),
        kwargs: Optional[dict] = None,
        block: bool = True,
        queue_timeout: Optional[float] = None,
    ) -> bool:
        """
        Queue ``func(*args, **kwargs)`` for a worker.

        Returns:
            True if queued, False if the queue stayed full.

        Raises:
            RuntimeError: Pool not started or shutting down.
        """
        if not self._workers:
            raise RuntimeError("Thread pool not started")
        if not self._accepting:
            raise RuntimeError("Thread pool is shutting down")

        try:
            self._queue.put(Task(func, args, kwargs or {}), block=block, timeout=queue_timeout)
        except queue.Full:
            logger.warning(f"Thread pool queue full ({self.queue_size} tasks), task rejected")
            return False

        with self._lock:
            if self.idle_workers == 0 and len(self._workers) < self.max_workers:
                worker = self._spawn()
                logger.debug(f"All workers busy, added {worker.name}")
        return True

    # =========================================================================
    # SHUTDOWN
    # =========================================================================

    def shutdown(self, wait: bool = True, timeout: Optional[float] = None):
        """
        Stop every worker.

        Args:
            wait: Let queued tasks finish first.
            timeout: Upper bound on that wait; what is still queued then
                     is dropped.
        """
        with self._lock:
            if not self._workers:
                return
            self._accepting = False
            workers, self._workers = self._workers, []

        logger.info(f"Thread pool stopping {len(workers)} workers")

        if wait:
            deadline = None if timeout is None else time.monotonic() + timeout
            while self._queue.unfinished_tasks:
                if deadline is not None and time.monotonic() >= deadline:
                    logger.warning("Thread pool shutdown timed out with tasks still queued")
                    break
                time.sleep(0.05)

        dropped = self._drop_queued()
        if dropped:
            logger.warning(f"Dropped {dropped} queued task(s)")

        for _ in workers:
            self._queue.put(None)
        for worker in workers:
            worker.join(timeout=2.0)

        logger.info("Thread pool stopped")

    def _drop_queued(self) -> int:
        dropped = 0
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                return dropped
            self._queue.task_done()
            dropped += 1

    # =========================================================================
    # MONITORING
    # =========================================================================

    @property
    def busy_workers(self) -> int:
        return sum(1 for w in self._workers if w.state is WorkerState.BUSY)

    @property
    def idle_workers(self) -> int:
        return sum(1 for w in self._workers if w.state is WorkerState.IDLE)

    @property
    def stats(self) -> dict:
        with self._lock:
            completed, failed = self._completed, self._failed
        return {
            "workers": {
                "total": len(self._workers),
                "busy": self.busy_workers,
                "idle": self.idle_workers,
            },
            "tasks": {
                "queued": self._queue.qsize(),
                "completed": completed,
                "failed": failed,
            },
        }
