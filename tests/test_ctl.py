import json
import os
import shutil
import socket
import tempfile
import threading

import pytest

from nextdns.ctl import Client, Event, Server, dial


@pytest.fixture
def sock_path():
    d = tempfile.mkdtemp(prefix="nd")
    yield os.path.join(d, "ctl.sock")
    shutil.rmtree(d, ignore_errors=True)


@pytest.fixture
def server(sock_path):
    srv = Server(addr=sock_path)
    srv.start()
    yield srv
    srv.stop()


def test_event_wire_format():
    assert Event("ping").to_bytes() == b'{"name":"ping","data":null,"reply":false}\n'


def test_event_round_trip():
    e = Event("stats", {"hits": [1, 2], "ok": True}, True)
    assert Event.from_dict(json.loads(e.to_bytes())) == e


def test_event_from_dict_case_insensitive():
    assert Event.from_dict({"Name": "a", "REPLY": True}) == Event("a", None, True)


@pytest.mark.parametrize("bad", [[1], {"name": 1}, {"name": "a", "reply": "yes"}])
def test_event_from_dict_invalid(bad):
    with pytest.raises(ValueError):
        Event.from_dict(bad)


def test_send_command(server, sock_path):
    server.command("echo", lambda data: data)
    with dial(sock_path) as client:
        assert isinstance(client, Client)
        assert client.send(Event("echo", {"k": "v"})) == {"k": "v"}
        assert client.send(Event("echo", [1, 2, 3])) == [1, 2, 3]


def test_unknown_command_replies_none(server, sock_path):
    with dial(sock_path) as client:
        assert client.send(Event("nope")) is None


def test_broadcast_reaches_clients(server, sock_path):
    raw = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    raw.settimeout(5)
    raw.connect(sock_path)
    stream = raw.makefile("rb")
    try:
        raw.sendall(Event("hello").to_bytes())
        assert json.loads(stream.readline()) == {"name": "hello", "data": None, "reply": True}
        server.broadcast(Event("news", [1]))
        assert json.loads(stream.readline()) == {"name": "news", "data": [1], "reply": False}
    finally:
        stream.close()
        raw.close()


def test_callbacks(sock_path):
    connected = threading.Event()
    disconnected = threading.Event()
    seen = []
    srv = Server(
        addr=sock_path,
        on_connect=lambda c: connected.set(),
        on_disconnect=lambda c: disconnected.set(),
        on_event=lambda c, e: seen.append(e.name),
    )
    with srv:
        client = dial(sock_path)
        client.send(Event("first"))
        client.close()
        assert connected.wait(5)
        assert disconnected.wait(5)
    assert seen == ["first"]


def test_stop_removes_socket(sock_path):
    srv = Server(addr=sock_path)
    srv.start()
    srv.command("x", lambda d: "ok")
    with dial(sock_path) as client:
        assert client.send(Event("x")) == "ok"
    srv.stop()
    assert not os.path.exists(sock_path)
    with pytest.raises(OSError):
        dial(sock_path)


def test_start_replaces_stale_file(sock_path):
    with open(sock_path, "w") as f:
        f.write("stale")
    with Server(addr=sock_path) as srv:
        srv.command("x", lambda d: "ok")
        with dial(sock_path) as client:
            assert client.send(Event("x")) == "ok"


def test_dial_missing_socket(sock_path):
    with pytest.raises(OSError):
        dial(sock_path)


def test_send_on_closed_connection(sock_path):
    listener = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    listener.bind(sock_path)
    listener.listen()

    def accept_and_close():
        conn, _ = listener.accept()
        conn.close()

    t = threading.Thread(target=accept_and_close)
    t.start()
    client = dial(sock_path)
    t.join()
    try:
        with pytest.raises(OSError):
            client.send(Event("x"))
    finally:
        client.close()
        listener.close()


def test_handler_errors_are_logged(sock_path):
    errors = []
    srv = Server(addr=sock_path, error_log=errors.append)

    def fail(data):
        raise RuntimeError("boom")

    with srv:
        srv.command("fail", fail)
        with dial(sock_path) as client:
            assert client.send(Event("fail")) is None
    assert any(isinstance(e, RuntimeError) for e in errors)