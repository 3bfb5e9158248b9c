"""Bounded worker pool with "parallel for" helpers.

This module provides a small executor built on
``concurrent.futures.ThreadPoolExecutor``. Index ranges are split into
contiguous chunks, one task per chunk; numpy releases the GIL inside the
chunk bodies, so per-channel and per-row work scales across cores.

Invariants
----------
- Tasks only write to indices/outputs exclusive to their chunk; the executor
  adds no locking around task bodies.
- A task must never block on the executor it runs on. Whole-request work and
  the per-chunk work it fans out to belong on separate executors.
- Task exceptions are never swallowed: they are logged and re-raised by the
  blocking helpers and by ``wait_until_idle``.
"""

from __future__ import annotations

import os
import threading
import traceback
import uuid
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Iterable, List, Optional, Set, Tuple

from hdr_inspector.logger import get_logger, task_logger

LOGGER = get_logger(__name__)

__all__ = ["ParallelExecutor", "TaskBatch", "chunk_ranges", "default_worker_count"]


def default_worker_count() -> int:
    """Return the available hardware parallelism (at least 1)."""
    return max(1, os.cpu_count() or 1)


def chunk_ranges(start: int, end: int, chunks: int) -> List[Tuple[int, int]]:
    """Split ``[start, end)`` into at most ``chunks`` contiguous ranges.

    Range sizes differ by at most one; an empty input range yields no chunks.
    """
    n = int(end) - int(start)
    if n <= 0:
        return []
    count = max(1, min(int(chunks), n))
    base, extra = divmod(n, count)
    ranges = []
    lo = int(start)
    for i in range(count):
        hi = lo + base + (1 if i < extra else 0)
        ranges.append((lo, hi))
        lo = hi
    return ranges


def _run_task(name: Optional[str], task_id: str, fn: Callable[..., Any], args: Tuple[Any, ...]) -> Any:
    log = task_logger(LOGGER, task_id)
    if name:
        log.info("Task started: %s", name)
    try:
        result = fn(*args)
    except Exception:
        log.error("Task error: %s\n%s", name or getattr(fn, "__name__", "task"), traceback.format_exc())
        raise
    if name:
        log.info("Task finished: %s", name)
    return result


def _per_index(fn: Callable[[int], Any]) -> Callable[[int, int], None]:
    def _chunk(lo: int, hi: int) -> None:
        for i in range(lo, hi):
            fn(i)

    return _chunk


class _PendingTasks:
    """Thread-safe set of futures that a caller will join later."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._pending: Set[Future] = set()

    def track(self, futures: Iterable[Future]) -> None:
        with self._lock:
            self._pending.update(futures)

    def join(self, futures: Iterable[Future]) -> None:
        futures = list(futures)
        wait(futures)
        with self._lock:
            self._pending.difference_update(futures)
        for future in futures:
            future.result()

    def join_all(self) -> None:
        while True:
            with self._lock:
                snapshot = list(self._pending)
            if not snapshot:
                return
            self.join(snapshot)


class ParallelExecutor:
    """Fixed-size thread pool with blocking and non-blocking parallel-for.

    Parameters
    ----------
    max_workers : int, optional
        Pool size; defaults to :func:`default_worker_count`.
    name : str
        Thread-name prefix, useful when several executors coexist.
    """

    def __init__(self, max_workers: Optional[int] = None, name: str = "compute") -> None:
        self._max_workers = int(max_workers) if max_workers else default_worker_count()
        self._name = name
        self._pool = ThreadPoolExecutor(
            max_workers=self._max_workers, thread_name_prefix=f"hdr-{name}"
        )
        self._pending = _PendingTasks()

    @property
    def max_workers(self) -> int:
        return self._max_workers

    @property
    def name(self) -> str:
        return self._name

    def submit(self, fn: Callable[..., Any], *args: Any, name: Optional[str] = None) -> Future:
        """Schedule a single task and return its future.

        Futures returned here are owned by the caller and are not joined by
        :meth:`wait_until_idle`.
        """
        task_id = f"task-{uuid.uuid4().hex[:8]}"
        return self._pool.submit(_run_task, name, task_id, fn, args)

    def batch(self) -> "TaskBatch":
        """Return a batch whose ``wait_until_idle`` only joins its own tasks."""
        return TaskBatch(self)

    def parallel_for_chunks_no_wait(
        self, start: int, end: int, fn: Callable[[int, int], Any]
    ) -> List[Future]:
        """Schedule ``fn(lo, hi)`` for every chunk of ``[start, end)`` and return immediately."""
        futures = self._schedule_chunks(start, end, fn)
        self._pending.track(futures)
        return futures

    def parallel_for_chunks(self, start: int, end: int, fn: Callable[[int, int], Any]) -> None:
        """Run ``fn(lo, hi)`` for every chunk of ``[start, end)`` and wait for all of them."""
        self._pending.join(self._schedule_chunks(start, end, fn))

    def parallel_for_no_wait(self, start: int, end: int, fn: Callable[[int], Any]) -> List[Future]:
        """Schedule ``fn(i)`` for every index in ``[start, end)`` and return immediately.

        Call :meth:`wait_until_idle` before relying on any result.
        """
        return self.parallel_for_chunks_no_wait(start, end, _per_index(fn))

    def parallel_for(self, start: int, end: int, fn: Callable[[int], Any]) -> None:
        """Run ``fn(i)`` for every index in ``[start, end)``; returns when all are done."""
        self.parallel_for_chunks(start, end, _per_index(fn))

    def wait_until_idle(self) -> None:
        """Block until every task scheduled with the ``*_no_wait`` helpers has finished.

        Re-raises the first task exception encountered.
        """
        self._pending.join_all()

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work; optionally wait for running tasks."""
        self._pool.shutdown(wait=wait)

    def __enter__(self) -> "ParallelExecutor":
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown(wait=True)

    def _schedule_chunks(self, start: int, end: int, fn: Callable[[int, int], Any]) -> List[Future]:
        futures = []
        for lo, hi in chunk_ranges(start, end, self._max_workers):
            task_id = f"chunk-{uuid.uuid4().hex[:8]}"
            futures.append(self._pool.submit(_run_task, None, task_id, fn, (lo, hi)))
        return futures


class TaskBatch:
    """Group of non-blocking tasks on a shared executor, joined together.

    Several requests can share one :class:`ParallelExecutor`; each uses its
    own batch so that waiting never blocks on (or re-raises from) another
    request's tasks.
    """

    def __init__(self, executor: ParallelExecutor) -> None:
        self._executor = executor
        self._pending = _PendingTasks()

    def parallel_for_chunks_no_wait(
        self, start: int, end: int, fn: Callable[[int, int], Any]
    ) -> List[Future]:
        futures = self._executor._schedule_chunks(start, end, fn)
        self._pending.track(futures)
        return futures

    def parallel_for_no_wait(self, start: int, end: int, fn: Callable[[int], Any]) -> List[Future]:
        return self.parallel_for_chunks_no_wait(start, end, _per_index(fn))

    def wait_until_idle(self) -> None:
        self._pending.join_all()
