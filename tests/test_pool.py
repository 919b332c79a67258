import threading
import time

import pytest

from context import RunContext
from pool import JobPool


def test_never_exceeds_max_concurrency():
    pool = JobPool(3, name="Test")
    lock = threading.Lock()
    state = {"running": 0, "peak": 0}

    def task():
        with lock:
            state["running"] += 1
            state["peak"] = max(state["peak"], state["running"])
        time.sleep(0.02)
        with lock:
            state["running"] -= 1

    for _ in range(12):
        pool.add(task)
    assert pool.join(timeout=10)

    assert 1 <= state["peak"] <= 3
    assert pool.get_stats()["completed"] == 12


def test_tasks_start_in_submission_order():
    pool = JobPool(1)
    started = []
    for i in range(6):
        pool.add(started.append, i)
    assert pool.join(timeout=5)
    assert started == list(range(6))


def test_completed_plus_failed_equals_total():
    pool = JobPool(2)

    def task(n):
        if n % 3 == 0:
            raise ValueError(n)
        return n * 2

    futures = [pool.add(task, n) for n in range(9)]
    assert pool.join(timeout=5)

    stats = pool.get_stats()
    assert stats["completed"] + stats["failed"] == stats["total"] == 9
    assert stats["failed"] == 3
    assert stats["running"] == 0 and stats["queued"] == 0
    assert futures[1].result() == 2
    with pytest.raises(ValueError):
        futures[0].result()


def test_stop_cancels_queued_tasks_and_waiters_do_not_hang():
    context = RunContext()
    pool = JobPool(1, context=context)
    release = threading.Event()
    first_started = threading.Event()

    def blocker():
        first_started.set()
        release.wait(5)
        return "done"

    first = pool.add(blocker)
    queued = [pool.add(lambda: "never") for _ in range(3)]
    assert first_started.wait(5)

    context.request_stop()
    release.set()

    assert pool.join(timeout=5)
    assert first.result() == "done"
    assert all(f.cancelled() for f in queued)
    assert pool.get_stats()["cancelled"] == 3


def test_no_new_tasks_start_after_stop():
    context = RunContext()
    context.request_stop()
    pool = JobPool(2, context=context)

    future = pool.add(lambda: "never")

    assert future.cancelled()
    assert pool.get_stats()["running"] == 0


def test_rejects_zero_concurrency():
    with pytest.raises(ValueError):
        JobPool(0)
