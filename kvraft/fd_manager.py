"""Per-descriptor context: socket detection, non-blocking flags and timeouts."""

from __future__ import annotations

import functools
import os
import socket
import stat
import threading
from typing import Dict, Optional


class FdCtx:
    """What is known about one file descriptor."""

    def __init__(self, fd: int) -> None:
        self.fd = fd
        self.is_init = False
        self.is_socket = False
        self.sys_nonblock = False
        self.user_nonblock = False
        self.is_closed = False
        self.recv_timeout: Optional[int] = None
        self.send_timeout: Optional[int] = None
        self._init()

    def _init(self) -> bool:
        if self.is_init:
            return True
        self.recv_timeout = None
        self.send_timeout = None
        try:
            info = os.fstat(self.fd)
        except OSError:
            self.is_init = False
            self.is_socket = False
        else:
            self.is_init = True
            self.is_socket = stat.S_ISSOCK(info.st_mode)
        if self.is_socket:
            if os.get_blocking(self.fd):
                os.set_blocking(self.fd, False)
            self.sys_nonblock = True
        else:
            self.sys_nonblock = False
        self.user_nonblock = False
        self.is_closed = False
        return self.is_init

    def set_timeout(self, kind: int, value: Optional[int]) -> None:
        """Set the receive timeout for ``SO_RCVTIMEO``, else the send timeout (ms)."""
        if kind == socket.SO_RCVTIMEO:
            self.recv_timeout = value
        else:
            self.send_timeout = value

    def get_timeout(self, kind: int) -> Optional[int]:
        """Return the timeout in ms, ``None`` meaning no timeout."""
        if kind == socket.SO_RCVTIMEO:
            return self.recv_timeout
        return self.send_timeout


class FdManager:
    """Registry of descriptor contexts."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ctxs: Dict[int, FdCtx] = {}

    def get(self, fd: int, auto_create: bool = False) -> Optional[FdCtx]:
        """Return the context of ``fd``, creating it when asked to."""
        if fd < 0:
            return None
        with self._lock:
            ctx = self._ctxs.get(fd)
            if ctx is not None or not auto_create:
                return ctx
            ctx = self._ctxs[fd] = FdCtx(fd)
            return ctx

    def delete(self, fd: int) -> None:
        with self._lock:
            self._ctxs.pop(fd, None)


@functools.lru_cache(maxsize=None)
def fd_manager() -> FdManager:
    """Return the process-wide descriptor registry."""
    return FdManager()