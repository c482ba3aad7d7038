"""Millisecond timers kept in deadline order."""

from __future__ import annotations

import bisect
import itertools
import math
import threading
import time
import weakref
from abc import ABC, abstractmethod
from typing import Any, Callable, List, Optional, Tuple

_ROLLOVER_MS = 60 * 60 * 1000
_seq = itertools.count()


def elapsed_ms() -> int:
    """Return milliseconds on a monotonic clock."""
    return time.monotonic_ns() // 1_000_000


class Timer:
    """A timer owned by a ``TimerManager``; created through ``add_timer``."""

    def __init__(
        self, ms: int, cb: Callable[[], Any], recurring: bool, manager: "TimerManager"
    ) -> None:
        self._seq = next(_seq)
        self._recurring = recurring
        self._ms = ms
        self._cb: Optional[Callable[[], Any]] = cb
        self._manager = manager
        self._deadline = manager._clock() + ms

    def _key(self) -> Tuple[int, int]:
        return (self._deadline, self._seq)

    @property
    def ms(self) -> int:
        return self._ms

    @property
    def deadline(self) -> int:
        return self._deadline

    @property
    def recurring(self) -> bool:
        return self._recurring

    def cancel(self) -> bool:
        """Stop the timer; return False if it had already finished or been cancelled."""
        manager = self._manager
        with manager._lock:
            if self._cb is None:
                return False
            self._cb = None
            manager._remove(self)
            return True

    def refresh(self) -> bool:
        """Restart the period from now."""
        manager = self._manager
        with manager._lock:
            if self._cb is None or not manager._remove(self):
                return False
            self._deadline = manager._clock() + self._ms
            manager._insert(self)
            return True

    def reset(self, ms: int, from_now: bool) -> bool:
        """Change the period, counting from now or from the last start."""
        if ms == self._ms and not from_now:
            return True
        manager = self._manager
        with manager._lock:
            if self._cb is None:
                return True
            if not manager._remove(self):
                return False
            start = manager._clock() if from_now else self._deadline - self._ms
            self._ms = ms
            self._deadline = start + ms
        manager._schedule(self)
        return True


class TimerManager(ABC):
    """Holds timers and hands out the callbacks of those that are due."""

    def __init__(self, clock: Callable[[], int] = elapsed_ms) -> None:
        self._clock = clock
        self._lock = threading.RLock()
        self._timers: List[Timer] = []
        self._tickled = False
        self._previous = clock()

    def _find(self, timer: Timer) -> Optional[int]:
        i = bisect.bisect_left(self._timers, timer._key(), key=Timer._key)
        if i < len(self._timers) and self._timers[i] is timer:
            return i
        return None

    def _remove(self, timer: Timer) -> bool:
        i = self._find(timer)
        if i is None:
            return False
        del self._timers[i]
        return True

    def _insert(self, timer: Timer) -> None:
        bisect.insort(self._timers, timer, key=Timer._key)

    def _schedule(self, timer: Timer) -> None:
        with self._lock:
            self._insert(timer)
            at_front = self._timers[0] is timer and not self._tickled
            if at_front:
                self._tickled = True
        if at_front:
            self.on_timer_inserted_at_front()

    def add_timer(self, ms: int, cb: Callable[[], Any], recurring: bool = False) -> Timer:
        timer = Timer(ms, cb, recurring, self)
        self._schedule(timer)
        return timer

    def add_condition_timer(
        self, ms: int, cb: Callable[[], Any], cond: Any, recurring: bool = False
    ) -> Timer:
        """Add a timer whose callback runs only while ``cond`` is still alive."""
        ref = cond if isinstance(cond, weakref.ReferenceType) else weakref.ref(cond)

        def on_timer() -> None:
            if ref() is not None:
                cb()

        return self.add_timer(ms, on_timer, recurring)

    def get_next_timer(self) -> Optional[int]:
        """Milliseconds until the next timer is due, or ``None`` if there are none."""
        with self._lock:
            self._tickled = False
            if not self._timers:
                return None
            now_ms = self._clock()
            deadline = self._timers[0].deadline
            return 0 if now_ms >= deadline else deadline - now_ms

    def list_expired_cb(self) -> List[Callable[[], Any]]:
        """Remove due timers and return their callbacks; recurring ones are rescheduled."""
        now_ms = self._clock()
        with self._lock:
            if not self._timers:
                return []
            rollover = self._detect_clock_rollover(now_ms)
            if not rollover and self._timers[0].deadline > now_ms:
                return []
            if rollover:
                split = len(self._timers)
            else:
                split = bisect.bisect_right(self._timers, (now_ms, math.inf), key=Timer._key)
            expired = self._timers[:split]
            del self._timers[:split]
            callbacks = []
            for timer in expired:
                callbacks.append(timer._cb)
                if timer.recurring:
                    timer._deadline = now_ms + timer.ms
                    self._insert(timer)
                else:
                    timer._cb = None
            return callbacks

    def has_timer(self) -> bool:
        with self._lock:
            return bool(self._timers)

    @abstractmethod
    def on_timer_inserted_at_front(self) -> None:
        """Called when a new timer becomes the earliest one."""

    def _detect_clock_rollover(self, now_ms: int) -> bool:
        rollover = now_ms < self._previous and now_ms < self._previous - _ROLLOVER_MS
        self._previous = now_ms
        return rollover