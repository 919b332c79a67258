"""
PlaylistMirror - Job Pool

Bounded-concurrency task executor. Tasks start in submission order, at most
max_concurrency at a time; every resolution frees a slot and pumps the queue.
The pool never retries: retry policy belongs to the job (see downloads.py).
"""

import threading
from collections import deque
from concurrent.futures import Future, wait

from context import RunContext


class JobPool:
    def __init__(self, max_concurrency: int, name: str = "Pool", context: RunContext | None = None):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self.max_concurrency = max_concurrency
        self.name = name
        self.context = context
        self._lock = threading.Lock()
        self._queue: deque = deque()
        self._futures: list[Future] = []
        self._running = 0
        self._completed = 0
        self._failed = 0
        self._cancelled = 0
        self._total = 0
        if context is not None:
            context.add_stop_listener(self._pump)

    def add(self, task, *args, **kwargs) -> Future:
        """Queue task(*args, **kwargs). The future resolves with its result or exception."""
        future: Future = Future()
        with self._lock:
            self._total += 1
            self._futures.append(future)
            self._queue.append((future, task, args, kwargs))
        self._pump()
        return future

    def get_stats(self) -> dict[str, int]:
        with self._lock:
            return {
                "running": self._running,
                "queued": len(self._queue),
                "completed": self._completed,
                "failed": self._failed,
                "cancelled": self._cancelled,
                "total": self._total,
            }

    def join(self, timeout: float | None = None) -> bool:
        """Wait until every submitted task has resolved. False on timeout."""
        with self._lock:
            futures = list(self._futures)
        _, not_done = wait(futures, timeout=timeout)
        return not not_done

    def _stopping(self) -> bool:
        return self.context is not None and self.context.stopping

    def _pump(self) -> None:
        to_start = []
        to_cancel = []
        with self._lock:
            if self._stopping():
                to_cancel = list(self._queue)
                self._queue.clear()
                self._cancelled += len(to_cancel)
            else:
                while self._running < self.max_concurrency and self._queue:
                    item = self._queue.popleft()
                    if not item[0].set_running_or_notify_cancel():
                        # Cancelled by the caller while queued
                        self._cancelled += 1
                        continue
                    self._running += 1
                    to_start.append(item)

        for future, *_ in to_cancel:
            # wait() only counts CANCELLED_AND_NOTIFIED as done
            future.cancel()
            future.set_running_or_notify_cancel()
        for item in to_start:
            thread = threading.Thread(target=self._run, args=item, name=f"{self.name}-worker", daemon=True)
            thread.start()

    def _run(self, future: Future, task, args, kwargs) -> None:
        try:
            result = task(*args, **kwargs)
        except Exception as exc:
            with self._lock:
                self._failed += 1
                self._running -= 1
            future.set_exception(exc)
        else:
            with self._lock:
                self._completed += 1
                self._running -= 1
            future.set_result(result)
        self._pump()
