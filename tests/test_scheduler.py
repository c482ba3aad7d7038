import threading
import time

import pytest

from kvraft.fiber import Fiber
from kvraft.scheduler import Scheduler
from kvraft.thread import get_thread_id


def _recorder():
    log = []
    lock = threading.Lock()

    def make(tag):
        def task():
            with lock:
                log.append(tag)

        return task

    return log, make


def test_user_caller_single_thread_runs_in_order():
    log, make = _recorder()
    sc = Scheduler()
    sc.schedule(make(1))
    sc.schedule(make(2))
    sc.schedule(Fiber(make(3)))
    sc.start()
    sc.stop()
    assert log == [1, 2, 3]
    assert Scheduler.get_this() is None


def test_user_caller_multi_thread_runs_everything():
    log, make = _recorder()
    sc = Scheduler(3, True)
    sc.schedule(make(1))
    sc.schedule(make(2))
    sc.schedule(Fiber(make(3)))
    sc.start()
    sc.schedule(make(4))
    time.sleep(0.05)
    sc.stop()
    assert sorted(log) == [1, 2, 3, 4]
    assert len(sc.thread_ids) == 3


def test_without_caller_thread():
    log, make = _recorder()
    sc = Scheduler(2, False)
    for i in range(5):
        sc.schedule(make(i))
    sc.start()
    sc.stop()
    assert sorted(log) == [0, 1, 2, 3, 4]
    assert Scheduler.get_this() is None


def test_zero_threads_rejected():
    with pytest.raises(AssertionError):
        Scheduler(0, False)
    sc = Scheduler(1, False)
    sc.start()
    sc.stop()
    assert sc.stopping() is True


def test_schedule_rejects_non_callable():
    sc = Scheduler()
    with pytest.raises(TypeError):
        sc.schedule(42)
    sc.stop()
    assert sc.stopping()


def test_get_this_inside_task():
    seen = []
    sc = Scheduler()
    sc.schedule(lambda: seen.append(Scheduler.get_this()))
    sc.stop()
    assert seen == [sc]


def test_pinned_task_runs_on_caller_thread():
    seen = []
    me = get_thread_id()
    sc = Scheduler()
    sc.schedule(lambda: seen.append(get_thread_id()), sc.thread_ids[0])
    sc.stop()
    assert seen == [me]


def test_fiber_yields_and_is_rescheduled():
    log = []

    def task():
        log.append("a")
        Scheduler.get_this().schedule(Fiber.get_this())
        Fiber.get_this().yield_()
        log.append("b")

    sc = Scheduler()
    sc.schedule(task)
    sc.stop()
    assert log == ["a", "b"]
    assert sc.stopping() is True


def test_failing_task_does_not_stop_others():
    log = []

    def bad():
        raise RuntimeError("boom")

    sc = Scheduler()
    sc.schedule(bad)
    sc.schedule(lambda: log.append("ok"))
    sc.stop()
    assert log == ["ok"]