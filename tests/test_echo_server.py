import socket

import pytest

from kvraft.echo_server import main, serve
from kvraft.iomanager import IOManager


@pytest.fixture
def iomanager():
    iom = IOManager(threads=1, use_caller=False, name="echo-test")
    yield iom
    iom.close()


@pytest.fixture
def server(iomanager):
    srv = serve(0, iomanager)
    yield srv
    srv.close()


def _connect(port):
    client = socket.create_connection(("127.0.0.1", port), timeout=5)
    client.settimeout(5)
    return client


def _recv_exactly(sock, size):
    chunks = []
    got = 0
    while got < size:
        data = sock.recv(size - got)
        if not data:
            break
        chunks.append(data)
        got += len(data)
    return b"".join(chunks)


def test_echoes_a_message(server):
    with _connect(server.port) as client:
        client.sendall(b"hello")
        assert _recv_exactly(client, 5) == b"hello"


def test_echoes_several_messages_on_one_connection(server):
    with _connect(server.port) as client:
        for message in (b"first", b"second message", b"x"):
            client.sendall(message)
            assert _recv_exactly(client, len(message)) == message


def test_serves_two_clients(server):
    with _connect(server.port) as one, _connect(server.port) as two:
        one.sendall(b"from one")
        two.sendall(b"from two")
        assert _recv_exactly(two, 8) == b"from two"
        assert _recv_exactly(one, 8) == b"from one"


def test_new_client_after_previous_disconnects(server):
    with _connect(server.port) as client:
        client.sendall(b"abc")
        assert _recv_exactly(client, 3) == b"abc"
    with _connect(server.port) as client:
        client.sendall(b"def")
        assert _recv_exactly(client, 3) == b"def"


def test_larger_payload_round_trips(server):
    payload = bytes(range(256)) * 8
    with _connect(server.port) as client:
        client.sendall(payload)
        assert _recv_exactly(client, len(payload)) == payload


def test_prints_listen_message(iomanager, capsys):
    srv = serve(0, iomanager)
    try:
        out = capsys.readouterr().out
        assert f"listen success on port: {srv.port}" in out
    finally:
        srv.close()


def test_close_refuses_new_connections_and_clears_events(iomanager):
    srv = serve(0, iomanager)
    port = srv.port
    assert iomanager.pending_events == 1
    srv.close()
    assert srv.closed
    assert iomanager.pending_events == 0
    with pytest.raises(ConnectionRefusedError):
        socket.create_connection(("127.0.0.1", port), timeout=5)


def test_close_is_idempotent(iomanager):
    srv = serve(0, iomanager)
    srv.close()
    srv.close()
    assert iomanager.pending_events == 0


def test_port_out_of_range(iomanager):
    with pytest.raises(ValueError):
        serve(70000, iomanager)
    with pytest.raises(ValueError):
        serve(-1, iomanager)


def test_port_in_use(iomanager):
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as blocker:
        blocker.bind(("", 0))
        blocker.listen(1)
        port = blocker.getsockname()[1]
        with pytest.raises(OSError):
            serve(port, iomanager)
    assert iomanager.pending_events == 0


def test_main_reports_port_in_use(capsys):
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as blocker:
        blocker.bind(("", 0))
        blocker.listen(1)
        port = blocker.getsockname()[1]
        assert main(["--port", str(port)]) == 1
    assert f"cannot listen on port {port}" in capsys.readouterr().err


def test_main_rejects_bad_port_argument():
    with pytest.raises(SystemExit) as info:
        main(["--port", "not-a-port"])
    assert info.value.code == 2


def test_main_rejects_out_of_range_port():
    assert main(["--port", "70000"]) == 1