"""A TCP echo server driven by an IOManager: every byte a client sends comes back to it."""

from __future__ import annotations

import argparse
import functools
import socket
import sys
import threading
from typing import Dict, List, Optional, Tuple

from .iomanager import Event, IOManager

DEFAULT_PORT = 8080
_BACKLOG = 1024
_CHUNK = 1024


class _EchoServer:
    """A listening socket whose connections are echoed by an IOManager."""

    def __init__(self, sock: socket.socket, iomanager: IOManager) -> None:
        self._sock = sock
        self._iom = iomanager
        self._lock = threading.Lock()
        self._conns: Dict[int, socket.socket] = {}
        self._closed = False

    @property
    def address(self) -> Tuple[str, int]:
        """The address the server listens on."""
        return self._sock.getsockname()

    @property
    def port(self) -> int:
        return self.address[1]

    @property
    def closed(self) -> bool:
        return self._closed

    def _watch_accept(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._iom.add_event(self._sock.fileno(), Event.READ, self._accept)

    def _accept(self) -> None:
        try:
            conn, _ = self._sock.accept()
        except OSError as exc:
            print(f"fd = -1,accept error: {exc}")
        else:
            print(f"fd = {conn.fileno()},accept success")
            conn.setblocking(False)
            with self._lock:
                if self._closed:
                    conn.close()
                    conn = None
                else:
                    self._conns[conn.fileno()] = conn
            if conn is not None:
                self._watch_conn(conn)
        self._iom.schedule(self._watch_accept)

    def _watch_conn(self, conn: socket.socket) -> None:
        with self._lock:
            fd = conn.fileno()
            if self._closed or self._conns.get(fd) is not conn:
                return
            try:
                self._iom.add_event(fd, Event.READ, functools.partial(self._on_readable, conn))
                return
            except OSError:
                self._conns.pop(fd, None)
        conn.close()

    def _drop(self, conn: socket.socket) -> None:
        with self._lock:
            fd = conn.fileno()
            if self._conns.get(fd) is conn:
                del self._conns[fd]
        conn.close()

    def _on_readable(self, conn: socket.socket) -> None:
        while True:
            try:
                data = conn.recv(_CHUNK)
            except BlockingIOError:
                self._watch_conn(conn)
                return
            except OSError:
                self._drop(conn)
                return
            if not data:
                self._drop(conn)
                return
            print("client say: " + data.decode("utf-8", errors="replace"))
            try:
                conn.sendall(data)
            except OSError:
                self._drop(conn)
                return

    def close(self) -> None:
        """Stop accepting, drop every connection and release the listening socket."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            conns: List[socket.socket] = list(self._conns.values())
            self._conns.clear()
            self._iom.del_event(self._sock.fileno(), Event.READ)
            for conn in conns:
                self._iom.del_event(conn.fileno(), Event.READ)
        for conn in conns:
            conn.close()
        self._sock.close()

    def __enter__(self) -> "_EchoServer":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


def serve(port: int, iomanager: IOManager) -> _EchoServer:
    """Listen on ``port`` on every interface and echo each connection through ``iomanager``."""
    if not 0 <= port <= 0xFFFF:
        raise ValueError(f"port out of range: {port}")
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind(("", port))
        sock.listen(_BACKLOG)
        sock.setblocking(False)
    except OSError:
        sock.close()
        raise
    print(f"listen success on port: {sock.getsockname()[1]}")
    server = _EchoServer(sock, iomanager)
    try:
        server._watch_accept()
    except OSError:
        server.close()
        raise
    return server


def main(argv: Optional[List[str]] = None) -> int:
    """Run the echo server until the process is stopped."""
    parser = argparse.ArgumentParser(description="TCP echo server")
    parser.add_argument("-p", "--port", type=int, default=DEFAULT_PORT, help="port to listen on")
    args = parser.parse_args(argv)
    with IOManager() as iom:
        try:
            serve(args.port, iom)
        except (OSError, ValueError) as exc:
            print(f"cannot listen on port {args.port}: {exc}", file=sys.stderr)
            return 1
    return 0