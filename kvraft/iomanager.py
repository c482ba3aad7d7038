"""A scheduler that also waits on descriptor readiness and timers."""

from __future__ import annotations

import enum
import logging
import os
import selectors
import threading
from typing import Any, Callable, Dict, Optional

from .fiber import Fiber, FiberState
from .scheduler import Scheduler
from .thread import cond_panic
from .timer import TimerManager

log = logging.getLogger(__name__)

_MAX_TIMEOUT_MS = 5000


class Event(enum.IntFlag):
    NONE = 0x0
    READ = 0x1
    WRITE = 0x4


def _selector_mask(events: Event) -> int:
    mask = 0
    if events & Event.READ:
        mask |= selectors.EVENT_READ
    if events & Event.WRITE:
        mask |= selectors.EVENT_WRITE
    return mask


class _EventContext:
    __slots__ = ("scheduler", "fiber", "cb")

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        self.scheduler: Optional[Scheduler] = None
        self.fiber: Optional[Fiber] = None
        self.cb: Optional[Callable[[], Any]] = None

    @property
    def empty(self) -> bool:
        return self.scheduler is None and self.fiber is None and self.cb is None


class _FdContext:
    def __init__(self, fd: int) -> None:
        self.fd = fd
        self.events = Event.NONE
        self.read = _EventContext()
        self.write = _EventContext()
        self.lock = threading.Lock()

    def context(self, event: Event) -> _EventContext:
        if event == Event.READ:
            return self.read
        if event == Event.WRITE:
            return self.write
        raise ValueError(f"unknown event: {event!r}")

    def trigger(self, event: Event) -> None:
        cond_panic(bool(self.events & event), "event hasn't been registered")
        self.events = self.events & ~event
        ctx = self.context(event)
        target = ctx.cb if ctx.cb is not None else ctx.fiber
        scheduler = ctx.scheduler
        ctx.reset()
        if scheduler is not None and target is not None:
            scheduler.schedule(target)


class IOManager(Scheduler, TimerManager):
    """Schedules callbacks or fibers when descriptors become ready or timers expire."""

    def __init__(self, threads: int = 1, use_caller: bool = True, name: str = "IOManager") -> None:
        TimerManager.__init__(self)
        Scheduler.__init__(self, threads, use_caller, name)
        self._selector = selectors.DefaultSelector()
        self._tickle_r, self._tickle_w = os.pipe()
        os.set_blocking(self._tickle_r, False)
        self._selector.register(self._tickle_r, selectors.EVENT_READ, None)
        self._ctx_lock = threading.Lock()
        self._fd_contexts: Dict[int, _FdContext] = {}
        self._pending = 0
        self._pending_lock = threading.Lock()
        self._closed = False
        self.start()

    def __enter__(self) -> "IOManager":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    @property
    def pending_events(self) -> int:
        with self._pending_lock:
            return self._pending

    def _add_pending(self, delta: int) -> None:
        with self._pending_lock:
            self._pending += delta

    def _context(self, fd: int, create: bool) -> Optional[_FdContext]:
        with self._ctx_lock:
            ctx = self._fd_contexts.get(fd)
            if ctx is None and create:
                ctx = self._fd_contexts[fd] = _FdContext(fd)
            return ctx

    def _apply(self, fd: int, ctx: _FdContext, events: Event) -> None:
        mask = _selector_mask(events)
        try:
            try:
                self._selector.get_key(fd)
                registered = True
            except KeyError:
                registered = False
            if mask == 0:
                if registered:
                    self._selector.unregister(fd)
            elif registered:
                self._selector.modify(fd, mask, ctx)
            else:
                self._selector.register(fd, mask, ctx)
        except (ValueError, KeyError) as exc:
            raise OSError(f"cannot watch fd {fd}: {exc}") from exc

    def add_event(self, fd: int, event: Event, cb: Optional[Callable[[], Any]] = None) -> None:
        """Watch ``fd`` for ``event`` once; run ``cb``, or resume the calling fiber."""
        ctx = self._context(fd, create=True)
        with ctx.lock:
            event_ctx = ctx.context(event)
            cond_panic(not (ctx.events & event), f"addevent error, fd = {fd}")
            new_events = ctx.events | event
            self._apply(fd, ctx, new_events)
            self._add_pending(1)
            ctx.events = new_events
            cond_panic(event_ctx.empty, "event context is not empty")
            event_ctx.scheduler = Scheduler.get_this() or self
            if cb is not None:
                event_ctx.cb = cb
            else:
                fiber = Fiber.get_this()
                cond_panic(fiber.state is FiberState.RUNNING, f"state={fiber.state}")
                event_ctx.fiber = fiber
        log.debug("add event success, fd = %d", fd)

    def _remove(self, fd: int, event: Event, trigger: bool) -> bool:
        ctx = self._context(fd, create=False)
        if ctx is None:
            return False
        with ctx.lock:
            if not (ctx.events & event):
                return False
            new_events = ctx.events & ~event
            try:
                self._apply(fd, ctx, new_events)
            except OSError:
                log.warning("delevent: selector error on fd %d", fd)
                return False
            if trigger:
                ctx.trigger(event)
            else:
                ctx.events = new_events
                ctx.context(event).reset()
            self._add_pending(-1)
            return True

    def del_event(self, fd: int, event: Event) -> bool:
        """Stop watching ``fd`` for ``event`` without running its handler."""
        return self._remove(fd, event, trigger=False)

    def cancel_event(self, fd: int, event: Event) -> bool:
        """Stop watching ``fd`` for ``event`` and run its handler once."""
        return self._remove(fd, event, trigger=True)

    def cancel_all(self, fd: int) -> bool:
        """Stop watching ``fd`` and run every registered handler once."""
        ctx = self._context(fd, create=False)
        if ctx is None:
            return False
        with ctx.lock:
            if not ctx.events:
                return False
            try:
                self._apply(fd, ctx, Event.NONE)
            except OSError:
                log.warning("cancelall: selector error on fd %d", fd)
                return False
            for event in (Event.READ, Event.WRITE):
                if ctx.events & event:
                    ctx.trigger(event)
                    self._add_pending(-1)
            cond_panic(ctx.events == Event.NONE, "fd not totally clear")
            return True

    @staticmethod
    def get_this() -> Optional["IOManager"]:
        current = Scheduler.get_this()
        return current if isinstance(current, IOManager) else None

    def tickle(self) -> None:
        if not self.has_idle_threads:
            return
        os.write(self._tickle_w, b"T")

    def _drain_tickle(self) -> None:
        try:
            while os.read(self._tickle_r, 256):
                pass
        except BlockingIOError:
            pass

    def idle(self) -> None:
        while True:
            next_timeout = self.get_next_timer()
            if self._can_stop(next_timeout):
                log.debug("name=%s idle stopping exit", self.name)
                break
            wait = _MAX_TIMEOUT_MS if next_timeout is None else min(next_timeout, _MAX_TIMEOUT_MS)
            try:
                ready = self._selector.select(wait / 1000)
            except OSError as exc:
                log.warning("select failed: %s", exc)
                ready = []
            for cb in self.list_expired_cb():
                self.schedule(cb)
            for key, mask in ready:
                if key.fd == self._tickle_r:
                    self._drain_tickle()
                    continue
                ctx: _FdContext = key.data
                with ctx.lock:
                    real = Event.NONE
                    if mask & selectors.EVENT_READ:
                        real |= Event.READ
                    if mask & selectors.EVENT_WRITE:
                        real |= Event.WRITE
                    real &= ctx.events
                    if not real:
                        continue
                    try:
                        self._apply(ctx.fd, ctx, ctx.events & ~real)
                    except OSError as exc:
                        log.warning("selector update failed: %s", exc)
                        continue
                    for event in (Event.READ, Event.WRITE):
                        if real & event:
                            ctx.trigger(event)
                            self._add_pending(-1)
            Fiber.get_this().yield_()

    def _can_stop(self, next_timeout: Optional[int]) -> bool:
        return next_timeout is None and self.pending_events == 0 and Scheduler.stopping(self)

    def stopping(self) -> bool:
        return self._can_stop(self.get_next_timer())

    def on_timer_inserted_at_front(self) -> None:
        self.tickle()

    def close(self) -> None:
        """Stop the scheduler and release its selector and pipe."""
        if self._closed:
            return
        self.stop()
        self._closed = True
        self._selector.close()
        os.close(self._tickle_r)
        os.close(self._tickle_w)