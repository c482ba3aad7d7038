import gc
import time

import pytest

from kvraft.timer import TimerManager, elapsed_ms


class FakeClock:
    def __init__(self, start=1_000_000_000):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += ms


class Manager(TimerManager):
    def __init__(self, clock):
        super().__init__(clock=clock)
        self.front_calls = 0

    def on_timer_inserted_at_front(self):
        self.front_calls += 1


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def manager(clock):
    return Manager(clock)


def test_manager_is_abstract():
    with pytest.raises(TypeError):
        TimerManager()


def test_empty_manager(manager):
    assert TimerManager.get_next_timer(manager) is None
    assert TimerManager.has_timer(manager) is False
    assert TimerManager.list_expired_cb(manager) == []


def test_next_timer_counts_down(manager, clock):
    delay, step = 100, 40
    timer = TimerManager.add_timer(manager, delay, lambda: None)
    assert timer.deadline == clock.now + delay
    assert TimerManager.get_next_timer(manager) == delay
    clock.advance(step)
    assert TimerManager.get_next_timer(manager) == delay - step
    clock.advance(delay)
    assert TimerManager.get_next_timer(manager) == 0


def test_expired_in_deadline_order(manager, clock):
    calls = []
    manager.add_timer(30, lambda: calls.append("b"))
    manager.add_timer(10, lambda: calls.append("a"))
    manager.add_timer(50, lambda: calls.append("c"))
    clock.advance(30)
    for cb in TimerManager.list_expired_cb(manager):
        cb()
    assert calls == ["a", "b"]
    assert TimerManager.has_timer(manager)
    assert TimerManager.get_next_timer(manager) == 50 - 30


def test_recurring_timer_is_rescheduled(manager, clock):
    calls = []
    TimerManager.add_timer(manager, 10, lambda: calls.append(1), recurring=True)
    for _ in range(3):
        clock.advance(10)
        for cb in TimerManager.list_expired_cb(manager):
            cb()
        assert TimerManager.get_next_timer(manager) == 10
    assert calls == [1, 1, 1]


def test_one_shot_timer_is_removed(manager, clock):
    timer = TimerManager.add_timer(manager, 5, lambda: None)
    clock.advance(5)
    assert len(TimerManager.list_expired_cb(manager)) == 1
    assert TimerManager.has_timer(manager) is False
    assert timer.cancel() is False


def test_cancel(manager, clock):
    timer = TimerManager.add_timer(manager, 20, lambda: None)
    assert timer.cancel() is True
    assert timer.cancel() is False
    assert TimerManager.has_timer(manager) is False
    clock.advance(50)
    assert TimerManager.list_expired_cb(manager) == []


def test_refresh_restarts_period(manager, clock):
    timer = TimerManager.add_timer(manager, 100, lambda: None)
    clock.advance(60)
    assert timer.refresh() is True
    assert TimerManager.get_next_timer(manager) == 100
    timer.cancel()
    assert timer.refresh() is False


def test_reset_from_now(manager, clock):
    timer = TimerManager.add_timer(manager, 100, lambda: None)
    clock.advance(30)
    assert timer.reset(50, True) is True
    assert timer.ms == 50
    assert TimerManager.get_next_timer(manager) == 50


def test_reset_from_start(manager, clock):
    start = clock.now
    timer = TimerManager.add_timer(manager, 100, lambda: None)
    clock.advance(30)
    assert timer.reset(50, False) is True
    assert timer.deadline == start + 50
    assert timer.reset(50, False) is True
    assert timer.deadline == start + 50
    assert TimerManager.get_next_timer(manager) == 50 - 30


def test_condition_timer(manager, clock):
    class Token:
        pass

    calls = []
    alive = Token()
    gone = Token()
    TimerManager.add_condition_timer(manager, 10, lambda: calls.append("alive"), alive)
    TimerManager.add_condition_timer(manager, 10, lambda: calls.append("gone"), gone)
    del gone
    gc.collect()
    clock.advance(10)
    for cb in TimerManager.list_expired_cb(manager):
        cb()
    assert calls == ["alive"]


def test_clock_rollover_expires_everything(manager, clock):
    TimerManager.add_timer(manager, 10, lambda: None)
    TimerManager.add_timer(manager, 10_000_000, lambda: None)
    clock.advance(-2 * 60 * 60 * 1000)
    assert len(TimerManager.list_expired_cb(manager)) == 2
    assert TimerManager.has_timer(manager) is False


def test_front_insert_hook(manager):
    TimerManager.add_timer(manager, 100, lambda: None)
    assert manager.front_calls == 1
    TimerManager.add_timer(manager, 50, lambda: None)
    assert manager.front_calls == 1
    TimerManager.get_next_timer(manager)
    TimerManager.add_timer(manager, 10, lambda: None)
    assert manager.front_calls == 2
    TimerManager.get_next_timer(manager)
    TimerManager.add_timer(manager, 500, lambda: None)
    assert manager.front_calls == 2


def test_elapsed_ms_is_monotonic():
    first = elapsed_ms()
    time.sleep(0.02)
    second = elapsed_ms()
    assert second >= first + 10