"""Cooperative fibers: callbacks that can pause with ``yield_`` and be resumed later."""

from __future__ import annotations

import enum
import itertools
import logging
import threading
import weakref
from typing import Any, Callable, Optional

from .thread import ThreadLocal, bind_carrier, cond_panic, current_carrier

log = logging.getLogger(__name__)


class FiberState(enum.Enum):
    READY = "ready"
    RUNNING = "running"
    TERM = "term"


_ids = itertools.count()
_ids_lock = threading.Lock()
_live = 0
_live_lock = threading.Lock()

_local = ThreadLocal(current=None, main=None)


def _next_id() -> int:
    with _ids_lock:
        return next(_ids)


def _adjust_live(delta: int) -> None:
    global _live
    with _live_lock:
        _live += delta


def _retire(go: Optional[threading.Semaphore]) -> None:
    _adjust_live(-1)
    if go is not None:
        go.release()


def _work(ref: "weakref.ref[Fiber]", go: threading.Semaphore) -> None:
    try:
        while True:
            go.acquire()
            fiber = ref()
            if fiber is None:
                return
            fiber._execute()
            del fiber
    finally:
        bind_carrier(None)


class Fiber:
    """A fiber that runs ``cb`` on demand; at most one fiber runs per logical thread."""

    def __init__(self, cb: Callable[[], Any]) -> None:
        cond_panic(callable(cb), "fiber callback must be callable")
        self._setup(cb, FiberState.READY, child=True)

    def _setup(self, cb: Optional[Callable[[], Any]], state: FiberState, child: bool) -> None:
        self._id = _next_id()
        self._cb = cb
        self._state = state
        self._go: Optional[threading.Semaphore] = threading.Semaphore(0) if child else None
        self._back: Optional[threading.Semaphore] = threading.Semaphore(0) if child else None
        self._worker: Optional[threading.Thread] = None
        self._resumer: Optional[Fiber] = None
        self._carrier: Any = None
        self._error: Optional[BaseException] = None
        _adjust_live(1)
        weakref.finalize(self, _retire, self._go)

    @classmethod
    def _create_main(cls) -> "Fiber":
        fiber = cls.__new__(cls)
        fiber._setup(None, FiberState.RUNNING, child=False)
        log.debug("[fiber] create fiber , id = %d", fiber._id)
        return fiber

    @property
    def id(self) -> int:
        return self._id

    @property
    def state(self) -> FiberState:
        return self._state

    @property
    def is_main(self) -> bool:
        return self._go is None

    def resume(self) -> None:
        """Run the fiber until it yields or finishes; re-raise what its callback raised."""
        cond_panic(self._state not in (FiberState.TERM, FiberState.RUNNING), "state error")
        self._resumer = Fiber.get_this()
        self._carrier = current_carrier()
        Fiber.set_this(self)
        self._state = FiberState.RUNNING
        if self._worker is None:
            self._worker = threading.Thread(
                target=_work,
                args=(weakref.ref(self), self._go),
                name=f"fiber-{self._id}",
                daemon=True,
            )
            self._worker.start()
        self._go.release()
        self._back.acquire()
        if self._error is not None:
            error, self._error = self._error, None
            raise error

    def yield_(self) -> None:
        """Hand control back to whoever resumed this fiber."""
        cond_panic(self._state in (FiberState.TERM, FiberState.RUNNING), "state error")
        cond_panic(not self.is_main, "main fiber cannot yield")
        if self._state is not FiberState.TERM:
            self._state = FiberState.READY
        self._hand_back()
        self._go.acquire()
        bind_carrier(self._carrier)

    def reset(self, cb: Callable[[], Any]) -> None:
        """Reuse a finished fiber for a new callback."""
        cond_panic(not self.is_main, "main fiber cannot be reset")
        cond_panic(self._state is FiberState.TERM, "state isn't TERM")
        cond_panic(callable(cb), "fiber callback must be callable")
        self._cb = cb
        self._state = FiberState.READY

    def _hand_back(self) -> None:
        _local.current = self._resumer
        self._resumer = None
        self._back.release()

    def _execute(self) -> None:
        bind_carrier(self._carrier)
        try:
            self._cb()
        except BaseException as exc:  # handed to resume()
            self._error = exc
        self._cb = None
        self._state = FiberState.TERM
        self._hand_back()

    @staticmethod
    def set_this(fiber: Optional["Fiber"]) -> None:
        _local.current = fiber

    @staticmethod
    def get_this() -> "Fiber":
        """Return the running fiber, creating the thread's main fiber if needed."""
        current = _local.current
        if current is not None:
            return current
        main = Fiber._create_main()
        _local.main = main
        _local.current = main
        return main

    @staticmethod
    def total_fiber_num() -> int:
        with _live_lock:
            return _live