# kvraft

Building blocks for a key/value store replicated with Raft, in pure Python
with no third-party dependencies:

- `kvraft.skiplist` – `SkipList`, an ordered, thread-safe skip list that can
  dump its contents to a string and load them back.
- `kvraft.fiber` – `Fiber`, a cooperative fiber that runs a callback, can
  pause with `yield_()` and be resumed later; `FiberState` gives its state.
- `kvraft.scheduler` – `Scheduler`, an N:M scheduler that runs fibers and
  callables on a pool of worker threads and, optionally, the calling thread.
- `kvraft.timer` – `TimerManager` and `Timer`: one-shot, recurring and
  conditional millisecond timers kept in deadline order.
- `kvraft.iomanager` – `IOManager`, a scheduler that also waits on file
  descriptor readiness (`Event.READ`, `Event.WRITE`) and on timers.
- `kvraft.fd_manager` – `FdCtx` and `FdManager`: per-descriptor records of
  socket type, non-blocking flags and send/receive timeouts; `fd_manager()`
  returns the process-wide registry.
- `kvraft.thread` – `Thread`, a named thread running one callback;
  `get_thread_id()` and `cond_panic()`.
- `kvraft.util` – `LockQueue`, the `Op` command record, randomized election
  timeouts, free-port discovery, `defer`, `sprintf`, `dprintf` and the timing
  and reply constants.
- `kvraft.echo_server` – a TCP echo server built on `IOManager`.

The I/O manager uses an OS pipe and the standard `selectors` module; it is
meant for POSIX systems.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Skip list

```python
from kvraft.skiplist import SkipList

store = SkipList(6)                  # maximum level
store.insert_element(1, "one")       # True; False if the key already exists
store.insert_element(3, "three")
store.insert_set_element(1, "uno")   # replaces the value of an existing key
store.search_element(1)              # "uno"; raises KeyError if absent
store.delete_element(3)              # True if the key was present
print(store.size(), list(store.items()))

snapshot = store.dump_file()         # serialise to a string
copy = SkipList(6)
copy.load_file(snapshot)             # insert every entry of a dump
copy.display_list()
```

`SkipList` also supports `len()`, `in` and iteration over its keys in order.

## Scheduler and fibers

```python
from kvraft.scheduler import Scheduler

def job():
    print("running inside a fiber")

sc = Scheduler()          # one thread: the caller's
sc.schedule(job)          # thread=-1 (the default): any thread
sc.start()
sc.stop()                 # runs the remaining tasks, then stops every thread
```

Tasks may be callables or `Fiber` objects. Inside a running fiber,
`Fiber.get_this()` returns the current fiber and `yield_()` hands control back
to whoever resumed it. An exception raised by a fiber's callback is re-raised
by `resume()`; the scheduler logs it and carries on.

## Timers

`TimerManager` is abstract: a subclass provides `on_timer_inserted_at_front()`,
called when a new timer becomes the earliest. `add_timer(ms, cb, recurring)`
returns a `Timer`; `get_next_timer()` gives the milliseconds until the earliest
timer is due, or `None` when there are none; `list_expired_cb()` removes the
due timers and returns their callbacks, rescheduling recurring ones. A timer
can be `cancel()`ed, `refresh()`ed or `reset(ms, from_now)`.
`add_condition_timer(ms, cb, cond)` only runs `cb` while `cond` is still alive.

## I/O manager

```python
from kvraft.iomanager import Event, IOManager

with IOManager() as iom:
    iom.add_event(sock.fileno(), Event.READ, on_readable)
```

Each registration fires once. Without a callback, `add_event` resumes the
calling fiber when the descriptor is ready. `del_event` removes a registration
silently; `cancel_event` and `cancel_all` remove it and run its handler once.
`close()` (or leaving the `with` block) stops the manager and releases its
resources.

## Utilities

`LockQueue.pop()` blocks until an item arrives; `time_out_pop(ms)` raises
`TimeoutError` if none arrives in time. `Op.as_string()` and
`Op.parse_from_string()` turn an operation into a string and back.
`get_release_port(port)` returns the first bindable port among `port` and the
next 29, or raises `NoFreePortError`. `with defer(func, *args):` calls `func`
when the block is left.

## Echo server

A TCP echo server that listens on every interface, port 8080 by default:

```
kvraft-echo-server
kvraft-echo-server --port 9000
```

Whatever a client sends is printed and sent back. From code,
`kvraft.echo_server.serve(port, iomanager)` starts it on an `IOManager` of
your own and returns a server object with `port`, `address` and `close()`.

## What is not included

The package holds the pieces a replicated key/value store is built from, not
the store itself. It has no Raft consensus (elections, log replication,
snapshots), no key/value server, no client, and no RPC between nodes. `Op`,
the reply constants (`OK`, `ERR_NO_KEY`, `ERR_WRONG_LEADER`) and the timing
constants in `kvraft.util` are there for such a layer to use.