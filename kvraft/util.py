"""Shared helpers: timing constants, debug printing, formatting, ports, queues and KV operations."""

from __future__ import annotations

import json
import random
import socket
import sys
import threading
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from datetime import timedelta
from typing import Any, Callable, Deque, Generic, Iterator, TypeVar

DEBUG = True

# Time unit is the millisecond; scale it for slower networks.
DEBUG_MUL = 1
HEART_BEAT_TIMEOUT = 25 * DEBUG_MUL
APPLY_INTERVAL = 10 * DEBUG_MUL
MIN_RANDOMIZED_ELECTION_TIME = 300 * DEBUG_MUL
MAX_RANDOMIZED_ELECTION_TIME = 500 * DEBUG_MUL
CONSENSUS_TIMEOUT = 500 * DEBUG_MUL

FIBER_THREAD_NUM = 1
FIBER_USE_CALLER_THREAD = False

# Replies from a KV server to a clerk.
OK = "OK"
ERR_NO_KEY = "ErrNoKey"
ERR_WRONG_LEADER = "ErrWrongLeader"

_PORT_SEARCH_LIMIT = 30

T = TypeVar("T")


class NoFreePortError(OSError):
    """No port in the searched range could be bound."""


@contextmanager
def defer(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Iterator[None]:
    """Call ``func(*args, **kwargs)`` when the ``with`` block is left, however it is left."""
    try:
        yield
    finally:
        func(*args, **kwargs)


def dprintf(fmt: str, *args: Any) -> None:
    """Print a timestamped, printf-formatted debug line when debugging is on."""
    if not DEBUG:
        return
    t = time.localtime()
    stamp = f"[{t.tm_year}-{t.tm_mon}-{t.tm_mday}-{t.tm_hour}-{t.tm_min}-{t.tm_sec}] "
    print(stamp + sprintf(fmt, *args))


def my_assert(condition: bool, message: str = "Assertion failed!") -> None:
    """Raise ``AssertionError`` carrying ``message`` unless ``condition`` holds."""
    if not condition:
        raise AssertionError(message)


def sprintf(fmt: str, *args: Any) -> str:
    """Format ``args`` into ``fmt`` using printf-style conversions."""
    try:
        return fmt % args
    except (TypeError, ValueError) as exc:
        raise ValueError("Error during formatting.") from exc


def now() -> float:
    """Return a high-resolution monotonic time point in seconds."""
    return time.perf_counter()


def get_randomized_election_timeout() -> timedelta:
    """Return a random election timeout between the configured bounds."""
    ms = random.randint(MIN_RANDOMIZED_ELECTION_TIME, MAX_RANDOMIZED_ELECTION_TIME)
    return timedelta(milliseconds=ms)


def sleep_n_milliseconds(n: int) -> None:
    """Block the calling thread for ``n`` milliseconds."""
    time.sleep(n / 1000)


def is_release_port(port: int) -> bool:
    """Return whether ``port`` can be bound on the loopback interface."""
    if not 0 <= port <= 0xFFFF:
        return False
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind(("127.0.0.1", port))
        except OSError:
            return False
    return True


def get_release_port(port: int) -> int:
    """Return the first bindable port among ``port`` and the next 29 ports."""
    for candidate in range(port, port + _PORT_SEARCH_LIMIT):
        if is_release_port(candidate):
            return candidate
    raise NoFreePortError(f"no free port in {port}..{port + _PORT_SEARCH_LIMIT - 1}")


class LockQueue(Generic[T]):
    """A thread-safe FIFO whose reads block until data arrives."""

    def __init__(self) -> None:
        self._items: Deque[T] = deque()
        self._cond = threading.Condition()

    def __len__(self) -> int:
        with self._cond:
            return len(self._items)

    def push(self, data: T) -> None:
        with self._cond:
            self._items.append(data)
            self._cond.notify()

    def pop(self) -> T:
        with self._cond:
            self._cond.wait_for(lambda: self._items)
            return self._items.popleft()

    def time_out_pop(self, timeout: int = 50) -> T:
        """Pop an item, waiting at most ``timeout`` milliseconds; raise ``TimeoutError`` otherwise."""
        with self._cond:
            if not self._cond.wait_for(lambda: self._items, timeout / 1000):
                raise TimeoutError("queue stayed empty")
            return self._items.popleft()


@dataclass
class Op:
    """A command handed from the KV layer to raft."""

    operation: str = ""  # "Get", "Put" or "Append"
    key: str = ""
    value: str = ""
    client_id: str = ""
    request_id: int = 0

    def as_string(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False)

    @classmethod
    def parse_from_string(cls, text: str) -> "Op":
        try:
            data = json.loads(text)
            op = cls(
                operation=data["operation"],
                key=data["key"],
                value=data["value"],
                client_id=data["client_id"],
                request_id=data["request_id"],
            )
        except (json.JSONDecodeError, KeyError, TypeError) as exc:
            raise ValueError(f"malformed operation: {text!r}") from exc
        if not isinstance(op.request_id, int):
            raise ValueError(f"malformed request id: {op.request_id!r}")
        return op

    def __str__(self) -> str:
        return (
            f"[MyClass:Operation{{{self.operation}}},Key{{{self.key}}},Value{{{self.value}}},"
            f"ClientId{{{self.client_id}}},RequestId{{{self.request_id}}}"
        )


def _warn(message: str) -> None:
    print(f"Error: {message}", file=sys.stderr)