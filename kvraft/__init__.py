"""Skip list storage, fibers, scheduling, timers, event-driven I/O and an echo server for a Raft key/value store."""

__version__ = "0.1.0"

__all__ = [
    "echo_server",
    "fd_manager",
    "fiber",
    "iomanager",
    "scheduler",
    "skiplist",
    "thread",
    "timer",
    "util",
]