"""
=============================================================================
THREAD POOL
=============================================================================

A fixed set of worker threads pulls connection tasks from a bounded queue.

    ┌───────────────────────────────────────────────────────────────┐
    │  accept loop ──submit()──► [Task] [Task] [Task] ...  (queue)  │
    │                                 │                             │
    │                                 ▼ get()                       │
    │        ┌──────────┐ ┌──────────┐ ┌──────────┐ ┌──────────┐    │
    │        │ Worker 0 │ │ Worker 1 │ │ Worker 2 │ │ Worker 3 │    │
    │        │ (idle)   │ │ (busy)   │ │ (busy)   │ │ (idle)   │    │
    │        └──────────┘ └──────────┘ └──────────┘ └──────────┘    │
    └───────────────────────────────────────────────────────────────┘

- min_workers are started up front; more are added (up to max_workers)
  when every worker is busy and tasks are waiting.
- A full queue makes submit() return False, and the server answers 503.

=============================================================================
SHUTDOWN AND DRAINING
=============================================================================

shutdown(wait=True) is the drain step of a graceful stop:

    1. Reject new tasks
    2. Wait until every queued and running task has finished
    3. Send one poison pill (None) per worker so they exit their loop
    4. Join the workers

With a timeout, step 2 gives up at the deadline and shutdown() returns
False, leaving unfinished tasks running on daemon threads.

=============================================================================
"""

import threading
import queue
import time
import logging
from typing import Callable, Optional, Any
from dataclasses import dataclass, field
from enum import Enum


logger = logging.getLogger(__name__)


class WorkerState(Enum):
    IDLE = "idle"
    BUSY = "busy"
    STOPPED = "stopped"


@dataclass
class Task:
    """A deferred function call."""
    func: Callable[..., Any]
    args: tuple = ()
    kwargs: dict = field(default_factory=dict)


class Worker(threading.Thread):
    """Worker thread that runs tasks from the shared queue until poisoned."""

    def __init__(
        self,
        task_queue: queue.Queue,
        worker_id: int,
        idle_timeout: float = 60.0
    ):
        # Daemon threads never keep the process alive on their own
        super().__init__(name=f"Worker-{worker_id}", daemon=True)

        self.task_queue = task_queue
        self.worker_id = worker_id
        self.idle_timeout = idle_timeout

        self.state = WorkerState.IDLE
        self._shutdown = threading.Event()

    def run(self):
        logger.debug(f"Worker {self.worker_id} started")

        while not self._shutdown.is_set():
            try:
                task = self.task_queue.get(timeout=self.idle_timeout)
            except queue.Empty:
                continue

            try:
                # Poison pill
                if task is None:
                    break
                self._execute_task(task)
            finally:
                self.task_queue.task_done()

        self.state = WorkerState.STOPPED
        logger.debug(f"Worker {self.worker_id} stopped")

    def _execute_task(self, task: Task):
        """Run one task. Failures are logged, never raised."""
        self.state = WorkerState.BUSY
        start_time = time.time()

        try:
            task.func(*task.args, **task.kwargs)

            elapsed = time.time() - start_time
            logger.debug(f"Worker {self.worker_id} completed task in {elapsed:.3f}s")

        except Exception as e:
            # One bad task must not take the worker down with it
            elapsed = time.time() - start_time
            logger.exception(
                f"Worker {self.worker_id} task failed after {elapsed:.3f}s: {e}"
            )

        finally:
            self.state = WorkerState.IDLE

    def shutdown(self):
        """Signal the worker to stop."""
        self._shutdown.set()


class ThreadPool:
    """
    Thread pool for concurrent connection handling.

    Usage:
        pool = ThreadPool(min_workers=4, max_workers=16)
        pool.start()

        if not pool.submit(handle_connection, args=(conn,), block=False):
            ...  # queue full, reject the connection

        drained = pool.shutdown(wait=True, timeout=10.0)
    """

    def __init__(
        self,
        min_workers: int = 4,
        max_workers: int = 16,
        max_queue_size: int = 100,
        idle_timeout: float = 60.0
    ):
        """
        Args:
            min_workers: Workers created at startup and always running.
            max_workers: Upper bound on workers spawned under load.
            max_queue_size: Bound on waiting tasks.
            idle_timeout: Seconds an idle worker waits before re-checking
                          its shutdown flag.
        """
        if min_workers < 1 or max_workers < min_workers:
            raise ValueError(
                f"Invalid worker bounds: min={min_workers}, max={max_workers}"
            )

        self.min_workers = min_workers
        self.max_workers = max_workers
        self.max_queue_size = max_queue_size
        self.idle_timeout = idle_timeout

        self._task_queue: queue.Queue[Optional[Task]] = queue.Queue(maxsize=max_queue_size)

        self._workers: list[Worker] = []
        self._lock = threading.Lock()  # Guards _workers
        self._started = False
        self._shutdown = False
        self._next_worker_id = 0

    def start(self):
        """Start the minimum set of workers. Calling it twice is a no-op."""
        if self._started:
            return

        logger.info(f"Starting thread pool with {self.min_workers} workers")

        with self._lock:
            for _ in range(self.min_workers):
                self._spawn_worker()

        self._shutdown = False
        self._started = True

    def _spawn_worker(self) -> Worker:
        # Caller holds self._lock
        worker = Worker(
            task_queue=self._task_queue,
            worker_id=self._next_worker_id,
            idle_timeout=self.idle_timeout
        )
        self._next_worker_id += 1
        self._workers.append(worker)
        worker.start()
        return worker

    def submit(
        self,
        func: Callable[..., Any],
        args: tuple = (),
        kwargs: Optional[dict] = None,
        block: bool = True,
    ) -> bool:
        """
        Submit a task for execution.

        Args:
            func: The function to execute.
            args: Positional arguments for the function.
            kwargs: Keyword arguments for the function.
            block: Whether to wait for space when the queue is full.

        Returns:
            True if the task was queued, False if the queue was full.

        Raises:
            RuntimeError: If the pool is not started or is shutting down.
        """
        if not self._started:
            raise RuntimeError("Thread pool not started")

        if self._shutdown:
            raise RuntimeError("Thread pool is shutting down")

        task = Task(func=func, args=args, kwargs=kwargs or {})

        try:
            self._task_queue.put(task, block=block)
        except queue.Full:
            return False

        self._maybe_scale_up()
        return True

    def _maybe_scale_up(self):
        """Add a worker when all are busy and work is waiting."""
        with self._lock:
            if len(self._workers) >= self.max_workers:
                return

            busy_count = sum(1 for w in self._workers if w.state == WorkerState.BUSY)
            if busy_count == len(self._workers) and self._task_queue.qsize() > 0:
                logger.debug(
                    f"Scaling up: {len(self._workers)} -> {len(self._workers) + 1} workers"
                )
                self._spawn_worker()

    def shutdown(self, wait: bool = True, timeout: Optional[float] = None) -> bool:
        """
        Stop the pool.

        Args:
            wait: Wait for queued and running tasks to finish first.
            timeout: Upper bound on that wait. None waits indefinitely.

        Returns:
            True if every task finished, False if tasks were abandoned.
        """
        if not self._started:
            return True

        logger.info("Shutting down thread pool...")
        self._shutdown = True

        drained = True
        if wait:
            drained = self._wait_for_tasks(timeout)
            if not drained:
                logger.warning(
                    f"Thread pool drain timed out after {timeout}s, "
                    f"abandoning {self._task_queue.unfinished_tasks} tasks"
                )
        else:
            drained = self._discard_pending() == 0 and self.busy_workers == 0

        with self._lock:
            workers = list(self._workers)

        for worker in workers:
            worker.shutdown()
            try:
                self._task_queue.put(None, block=False)
            except queue.Full:
                pass  # Worker still sees its shutdown flag

        if drained:
            for worker in workers:
                worker.join(timeout=2.0)

        with self._lock:
            self._workers.clear()
        self._started = False

        logger.info("Thread pool shutdown complete")
        return drained

    def _wait_for_tasks(self, timeout: Optional[float]) -> bool:
        if timeout is None:
            self._task_queue.join()
            return True

        deadline = time.monotonic() + timeout
        while self._task_queue.unfinished_tasks:
            if time.monotonic() >= deadline:
                return False
            time.sleep(0.05)
        return True

    def _discard_pending(self) -> int:
        discarded = 0
        while True:
            try:
                self._task_queue.get_nowait()
            except queue.Empty:
                return discarded
            self._task_queue.task_done()
            discarded += 1

    # =========================================================================
    # MONITORING
    # =========================================================================

    @property
    def busy_workers(self) -> int:
        return sum(1 for w in self._workers if w.state == WorkerState.BUSY)

    @property
    def pending(self) -> int:
        """Tasks waiting in the queue."""
        return self._task_queue.qsize()

