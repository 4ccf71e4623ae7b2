"""Bounded, memory-aware worker pool for the encodes of one job"""

import logging
import threading
from concurrent.futures import CancelledError, ThreadPoolExecutor, as_completed
from typing import Callable, List, Optional, Sequence, Tuple, TypeVar

import psutil

from .config import MEMORY_RESERVE, TASK_STAGGER_DELAY
from .exceptions import JobCancelledError
from .utils import CancellationToken

log = logging.getLogger(__name__)

T = TypeVar("T")
EncodeTask = Tuple[str, Callable[[CancellationToken], T]]


class EncodeScheduler:
    """
    Run independent encode tasks with at most max_workers at a time.

    Each task is a (label, callable) pair; the callable receives the batch's
    cancellation token and must pass it to every subprocess it starts. The
    first failing task cancels the batch: running siblings are killed and
    queued ones never start. Cancelling the parent token does the same.
    """

    def __init__(self, max_workers: int, token: Optional[CancellationToken] = None,
                 memory_reserve: float = MEMORY_RESERVE,
                 task_stagger_delay: float = TASK_STAGGER_DELAY,
                 thread_name_prefix: str = "encode"):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.max_workers = max_workers
        self.token = token.child() if token is not None else CancellationToken()
        self.memory_reserve = memory_reserve
        self.task_stagger_delay = task_stagger_delay
        self.thread_name_prefix = thread_name_prefix
        self._lock = threading.Lock()
        self._running = 0
        self.peak_running = 0

    def has_memory_headroom(self) -> bool:
        """True if available memory stays above the reserved fraction"""
        mem = psutil.virtual_memory()
        return mem.available > mem.total * self.memory_reserve

    def _acquire_slot(self, label: str) -> None:
        waiting_logged = False
        while True:
            self.token.raise_if_cancelled(module="scheduler")
            with self._lock:
                # Always let one task through so a low-memory host still progresses
                if self._running == 0 or self.has_memory_headroom():
                    self._running += 1
                    self.peak_running = max(self.peak_running, self._running)
                    return
            if not waiting_logged:
                log.info("Low memory; holding %s until a running encode finishes", label)
                waiting_logged = True
            self.token.wait(self.task_stagger_delay)

    def _release_slot(self) -> None:
        with self._lock:
            self._running -= 1

    def _run_task(self, label: str, task: Callable[[CancellationToken], T]) -> T:
        self._acquire_slot(label)
        try:
            log.debug("Starting task %s", label)
            return task(self.token)
        finally:
            self._release_slot()

    def run_all(self, tasks: Sequence[EncodeTask]) -> List[T]:
        """
        Run every task and return their results in submission order.

        Raises:
            The first task error other than cancellation, or
            JobCancelledError if the batch was cancelled from outside
        """
        if not tasks:
            return []

        results: List[Optional[T]] = [None] * len(tasks)
        first_error: Optional[BaseException] = None
        cancelled = False
        workers = min(self.max_workers, len(tasks))
        log.info("Running %d task(s) with up to %d in parallel", len(tasks), workers)

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=self.thread_name_prefix) as executor:
            futures = {
                executor.submit(self._run_task, label, task): (index, label)
                for index, (label, task) in enumerate(tasks)
            }
            try:
                for future in as_completed(futures):
                    index, label = futures[future]
                    try:
                        results[index] = future.result()
                        log.info("Finished %s", label)
                    except (CancelledError, JobCancelledError):
                        cancelled = True
                    except Exception as e:
                        if first_error is None:
                            log.error("Task %s failed, cancelling remaining tasks: %s", label, e)
                            first_error = e
                            self.token.cancel()
                            for pending in futures:
                                pending.cancel()
                        else:
                            log.debug("Task %s also failed: %s", label, e)
            except KeyboardInterrupt:
                self.token.cancel()
                raise

        if first_error is not None:
            raise first_error
        if cancelled:
            raise JobCancelledError("Encoding was cancelled", module="scheduler")
        return results
