"""Named threads, thread ids and thread-local state that follows fibers across threads."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, Optional

log = logging.getLogger(__name__)

UNKNOWN_NAME = "UNKNOW"


class _Carrier:
    """The state of one logical thread: an OS thread plus the fibers it is running."""

    __slots__ = ("native_id", "slots")

    def __init__(self) -> None:
        self.native_id = threading.get_native_id()
        self.slots: Dict[Any, Dict[str, Any]] = {}


_own = threading.local()
_bindings: Dict[int, _Carrier] = {}


def current_carrier() -> _Carrier:
    """Return the logical thread the calling code runs on."""
    bound = _bindings.get(threading.get_ident())
    if bound is not None:
        return bound
    carrier = getattr(_own, "carrier", None)
    if carrier is None:
        carrier = _own.carrier = _Carrier()
    return carrier


def bind_carrier(carrier: Optional[_Carrier]) -> None:
    """Make the calling OS thread act on behalf of ``carrier``; ``None`` undoes it."""
    ident = threading.get_ident()
    if carrier is None:
        _bindings.pop(ident, None)
    else:
        _bindings[ident] = carrier


class ThreadLocal:
    """Attributes local to a logical thread, shared with the fibers it runs."""

    def __init__(self, **defaults: Any) -> None:
        object.__setattr__(self, "_defaults", defaults)

    def _slot(self) -> Dict[str, Any]:
        return current_carrier().slots.setdefault(self, {})

    def __getattr__(self, name: str) -> Any:
        slot = self._slot()
        if name in slot:
            return slot[name]
        if name in self._defaults:
            return self._defaults[name]
        raise AttributeError(name)

    def __setattr__(self, name: str, value: Any) -> None:
        self._slot()[name] = value

    def __delattr__(self, name: str) -> None:
        try:
            del self._slot()[name]
        except KeyError:
            raise AttributeError(name) from None


def get_thread_id() -> int:
    """Return the kernel id of the logical thread the caller runs on."""
    return current_carrier().native_id


def cond_panic(condition: bool, message: str) -> None:
    """Raise ``AssertionError`` with ``message`` unless ``condition`` holds."""
    if not condition:
        log.error("assertion failed: %s", message)
        raise AssertionError(message)


_state = ThreadLocal(thread=None, name=UNKNOWN_NAME)


class Thread:
    """A started thread that runs one callback and carries a name."""

    def __init__(self, cb: Callable[[], Any], name: str = UNKNOWN_NAME) -> None:
        self._name = name or UNKNOWN_NAME
        self._cb: Optional[Callable[[], Any]] = cb
        self._id: Optional[int] = None
        self._error: Optional[BaseException] = None
        ready = threading.Event()
        self._handle: Optional[threading.Thread] = threading.Thread(
            target=self._run, args=(ready,), name=self._name, daemon=True
        )
        self._handle.start()
        ready.wait()

    @property
    def id(self) -> Optional[int]:
        return self._id

    @property
    def name(self) -> str:
        return self._name

    def _run(self, ready: threading.Event) -> None:
        _state.thread = self
        _state.name = self._name
        self._id = get_thread_id()
        cb, self._cb = self._cb, None
        ready.set()
        try:
            if cb is not None:
                cb()
        except BaseException as exc:  # handed to join()
            self._error = exc

    def join(self) -> None:
        """Wait for the callback to finish; re-raise anything it raised."""
        if self._handle is None:
            return
        self._handle.join()
        self._handle = None
        if self._error is not None:
            error, self._error = self._error, None
            raise error

    @staticmethod
    def get_this() -> Optional["Thread"]:
        return _state.thread

    @staticmethod
    def get_name() -> str:
        return _state.name

    @staticmethod
    def set_name(name: str) -> None:
        if not name:
            return
        current = _state.thread
        if current is not None:
            current._name = name
        _state.name = name