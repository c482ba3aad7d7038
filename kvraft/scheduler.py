"""An N:M scheduler that runs fibers and callbacks on a pool of threads."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Union

from .fiber import Fiber, FiberState
from .thread import Thread, ThreadLocal, cond_panic, get_thread_id

log = logging.getLogger(__name__)

_local = ThreadLocal(scheduler=None, main_fiber=None)

Task = Union[Fiber, Callable[[], Any]]

_IDLE_WAIT_SECONDS = 0.01


@dataclass
class _Task:
    fiber: Optional[Fiber] = None
    cb: Optional[Callable[[], Any]] = None
    thread: int = -1


class Scheduler:
    """Runs scheduled fibers and callbacks on worker threads and, optionally, the caller."""

    def __init__(self, threads: int = 1, use_caller: bool = True, name: str = "Scheduler") -> None:
        cond_panic(threads > 0, "threads <= 0")
        self._name = name
        self._use_caller = use_caller
        self._task_lock = threading.Lock()
        self._wakeup = threading.Event()
        self._tasks: List[_Task] = []
        self._pool: List[Thread] = []
        self._thread_ids: List[int] = []
        self._active = 0
        self._idle_count = 0
        self._stopped = False
        self._root_fiber: Optional[Fiber] = None
        if use_caller:
            threads -= 1
            Fiber.get_this()
            cond_panic(Scheduler.get_this() is None, "GetThis err:cur scheduler is not nullptr")
            _local.scheduler = self
            self._root_fiber = Fiber(self.run)
            Thread.set_name(name)
            _local.main_fiber = self._root_fiber
            self._root_thread = get_thread_id()
            self._thread_ids.append(self._root_thread)
        else:
            self._root_thread = -1
        self._thread_count = threads
        log.debug("scheduler %s initialised", name)

    @property
    def name(self) -> str:
        return self._name

    @property
    def thread_ids(self) -> List[int]:
        return list(self._thread_ids)

    @property
    def has_idle_threads(self) -> bool:
        with self._task_lock:
            return self._idle_count > 0

    @staticmethod
    def get_this() -> Optional["Scheduler"]:
        """Return the scheduler of the calling thread, if any."""
        return _local.scheduler

    @staticmethod
    def get_main_fiber() -> Optional[Fiber]:
        """Return the scheduling fiber of the calling thread, if any."""
        return _local.main_fiber

    def schedule(self, task: Task, thread: int = -1) -> None:
        """Queue a fiber or a callable; ``thread`` pins it to one thread id."""
        if isinstance(task, Fiber):
            item = _Task(fiber=task, thread=thread)
        elif callable(task):
            item = _Task(cb=task, thread=thread)
        else:
            raise TypeError(f"cannot schedule {task!r}")
        with self._task_lock:
            need_tickle = not self._tasks
            self._tasks.append(item)
        if need_tickle:
            self.tickle()

    def start(self) -> None:
        """Start the worker threads."""
        with self._task_lock:
            if self._stopped:
                log.debug("scheduler has stopped")
                return
            cond_panic(not self._pool, "thread pool is not empty")
            for i in range(self._thread_count):
                worker = Thread(self.run, f"{self._name}_{i}")
                self._pool.append(worker)
                self._thread_ids.append(worker.id)

    def _take(self, me: int) -> "tuple[Optional[_Task], bool]":
        with self._task_lock:
            tickle_me = False
            for i, item in enumerate(self._tasks):
                if item.thread != -1 and item.thread != me:
                    tickle_me = True
                    continue
                if item.fiber is not None:
                    cond_panic(item.fiber.state is FiberState.READY, "fiber task state error")
                del self._tasks[i]
                self._active += 1
                return item, tickle_me or i < len(self._tasks)
            return None, tickle_me

    def _finish_active(self) -> None:
        with self._task_lock:
            self._active -= 1

    @staticmethod
    def _execute(fiber: Fiber) -> None:
        try:
            fiber.resume()
        except Exception:
            log.exception("scheduled task failed")

    def run(self) -> None:
        """The scheduling loop of one thread."""
        _local.scheduler = self
        me = get_thread_id()
        if me != self._root_thread:
            _local.main_fiber = Fiber.get_this()
        idle_fiber = Fiber(self.idle)
        while True:
            task, tickle_me = self._take(me)
            if tickle_me:
                self.tickle()
            if task is not None and task.fiber is not None:
                self._execute(task.fiber)
                self._finish_active()
            elif task is not None:
                self._execute(Fiber(task.cb))
                self._finish_active()
            else:
                if idle_fiber.state is FiberState.TERM:
                    log.debug("idle fiber term")
                    break
                with self._task_lock:
                    self._idle_count += 1
                try:
                    idle_fiber.resume()
                finally:
                    with self._task_lock:
                        self._idle_count -= 1

    def tickle(self) -> None:
        """Wake threads waiting in ``idle`` because work has arrived."""
        self._wakeup.set()
        log.debug("tickle")

    def stopping(self) -> bool:
        with self._task_lock:
            return self._stopped and not self._tasks and self._active == 0

    def idle(self) -> None:
        while not self.stopping():
            self._wakeup.wait(_IDLE_WAIT_SECONDS)
            self._wakeup.clear()
            Fiber.get_this().yield_()

    def stop(self) -> None:
        """Run the remaining tasks, then stop every thread."""
        if self.stopping():
            return
        self._stopped = True
        if self._use_caller:
            cond_panic(Scheduler.get_this() is self, "cur thread is not caller thread")
        else:
            cond_panic(Scheduler.get_this() is not self, "cur thread is caller thread")
        for _ in range(self._thread_count):
            self.tickle()
        if self._root_fiber is not None:
            self.tickle()
            self._root_fiber.resume()
            log.debug("root fiber end")
        with self._task_lock:
            workers, self._pool = self._pool, []
        for worker in workers:
            worker.join()
        if Scheduler.get_this() is self:
            _local.scheduler = None
            _local.main_fiber = None