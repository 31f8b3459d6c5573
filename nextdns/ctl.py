"""Control socket: a bi-directional JSON event stream between daemon and clients."""

from __future__ import annotations

import json
import os
import socket
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, Iterator, List, Optional

DEFAULT_CONTROL = "/var/run/nextdns.sock"

_ACCEPT_POLL = 0.2


def _lookup(obj: dict, key: str):
    if key in obj:
        return obj[key]
    for k, v in obj.items():
        if isinstance(k, str) and k.lower() == key:
            return v
    return None


@dataclass
class Event:
    """An event received from or sent to a control client."""

    name: str = ""
    data: Any = None
    reply: bool = False

    def to_bytes(self) -> bytes:
        """Encode as one line of compact JSON."""
        payload = {"name": self.name, "data": self.data, "reply": self.reply}
        text = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
        return text.encode() + b"\n"

    @classmethod
    def from_dict(cls, data) -> "Event":
        """Build an event from a decoded JSON object; field names match case-insensitively."""
        if not isinstance(data, dict):
            raise ValueError("event must be a JSON object")
        name = _lookup(data, "name")
        if name is None:
            name = ""
        if not isinstance(name, str):
            raise ValueError("event name must be a string")
        reply = _lookup(data, "reply")
        if reply is None:
            reply = False
        if not isinstance(reply, bool):
            raise ValueError("event reply must be a boolean")
        return cls(name, _lookup(data, "data"), reply)


def _read_events(sock: socket.socket) -> Iterator[Event]:
    """Yield events from newline-delimited JSON until end of stream."""
    with sock.makefile("rb") as stream:
        for line in stream:
            line = line.strip()
            if not line:
                continue
            yield Event.from_dict(json.loads(line))


class Client:
    """A connection to a control server."""

    def __init__(self, sock: socket.socket) -> None:
        self._sock = sock
        self._send_lock = threading.Lock()
        self._cond = threading.Condition()
        self._replies: Deque[Event] = deque()
        self._waiting = False
        self._eof = False
        threading.Thread(target=self._read_loop, daemon=True).start()

    def _read_loop(self) -> None:
        try:
            for event in _read_events(self._sock):
                if not event.reply:
                    continue
                with self._cond:
                    # Replies nobody waits for are dropped.
                    if self._waiting:
                        self._replies.append(event)
                        self._cond.notify_all()
        except (OSError, ValueError):
            pass
        finally:
            with self._cond:
                self._eof = True
                self._cond.notify_all()
            self._sock.close()

    def send(self, event: Event) -> Any:
        """Send event and return the data of the server's reply to it."""
        with self._send_lock:
            with self._cond:
                self._waiting = True
                self._replies.clear()
            try:
                self._sock.sendall(event.to_bytes())
                with self._cond:
                    while True:
                        while not self._replies and not self._eof:
                            self._cond.wait()
                        if self._replies:
                            reply = self._replies.popleft()
                            if reply.name == event.name:
                                return reply.data
                            continue
                        raise ConnectionError("control connection closed")
            finally:
                with self._cond:
                    self._waiting = False
                    self._replies.clear()

    def close(self) -> None:
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self._sock.close()

    def __enter__(self) -> "Client":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def dial(addr: str = DEFAULT_CONTROL) -> Client:
    """Connect to the control socket at addr."""
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        sock.connect(addr)
    except OSError:
        sock.close()
        raise
    return Client(sock)


Handler = Callable[[Any], Any]


@dataclass
class Server:
    """Serves commands and broadcasts events to clients of a Unix socket."""

    addr: str = DEFAULT_CONTROL
    on_connect: Optional[Callable[[socket.socket], None]] = None
    on_disconnect: Optional[Callable[[socket.socket], None]] = None
    on_event: Optional[Callable[[socket.socket, Event], None]] = None
    error_log: Optional[Callable[[Exception], None]] = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _cmds: Dict[str, Handler] = field(default_factory=dict, repr=False)
    _clients: List[socket.socket] = field(default_factory=list, repr=False)
    _listener: Optional[socket.socket] = field(default=None, repr=False)
    _stopped: threading.Event = field(default_factory=threading.Event, repr=False)

    def start(self) -> None:
        """Listen on addr, replacing any stale socket file."""
        try:
            os.remove(self.addr)
        except FileNotFoundError:
            pass
        listener = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            listener.bind(self.addr)
            listener.listen()
        except OSError:
            listener.close()
            raise
        listener.settimeout(_ACCEPT_POLL)
        stopped = threading.Event()
        with self._lock:
            self._listener = listener
            self._stopped = stopped
        threading.Thread(target=self._run, args=(listener, stopped), daemon=True).start()

    def command(self, name: str, handler: Handler) -> None:
        """Register handler to answer events called name."""
        with self._lock:
            self._cmds[name] = handler

    def broadcast(self, event: Event) -> None:
        """Send event to every connected client."""
        payload = event.to_bytes()
        with self._lock:
            for conn in list(self._clients):
                try:
                    conn.sendall(payload)
                except OSError as e:
                    self._log(OSError(f"write event: {e}"))

    def stop(self) -> None:
        """Stop listening and remove the socket file."""
        with self._lock:
            self._clients = []
            listener, self._listener = self._listener, None
            self._stopped.set()
        if listener is not None:
            listener.close()
            try:
                os.remove(self.addr)
            except FileNotFoundError:
                pass

    def __enter__(self) -> "Server":
        self.start()
        return self

    def __exit__(self, *exc) -> None:
        self.stop()

    def _run(self, listener: socket.socket, stopped: threading.Event) -> None:
        while not stopped.is_set():
            try:
                conn, _ = listener.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if stopped.is_set():
                    return
                self._log(e)
                continue
            conn.settimeout(None)
            threading.Thread(target=self._handle_events, args=(conn,), daemon=True).start()

    def _handle_events(self, conn: socket.socket) -> None:
        if self.on_connect is not None:
            self.on_connect(conn)
        with self._lock:
            self._clients.append(conn)
        try:
            for event in _read_events(conn):
                if self.on_event is not None:
                    self.on_event(conn, event)
                self._handle(conn, event)
        except (OSError, ValueError) as e:
            self._log(type(e)(f"decode event: {e}"))
        finally:
            with self._lock:
                self._clients = [c for c in self._clients if c is not conn]
            conn.close()
            if self.on_disconnect is not None:
                self.on_disconnect(conn)

    def _handle(self, conn: socket.socket, event: Event) -> None:
        with self._lock:
            handler = self._cmds.get(event.name)
        data = None
        if handler is not None:
            try:
                data = handler(event.data)
            except Exception as e:  # a failing command must not kill the connection
                self._log(e)
                data = None
        reply = Event(name=event.name, data=data, reply=True)
        try:
            payload = reply.to_bytes()
        except (TypeError, ValueError) as e:
            self._log(e)
            return
        with self._lock:
            try:
                conn.sendall(payload)
            except OSError as e:
                self._log(e)

    def _log(self, err: Exception) -> None:
        if self.error_log is not None:
            self.error_log(err)