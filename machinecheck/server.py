"""Unix socket server answering client queries about recorded errors."""

from __future__ import annotations

import contextlib
import io
import os
import selectors
import socket
import struct
from dataclasses import dataclass

from .memdb import PrintFlags

SOCKET_PATH = "/var/run/mcelog-client"

_SUN_PATH_MAX = 108
_RECV_MAX = 65536
_UCRED = struct.Struct("3i")
_SEND_FLAGS = getattr(socket, "MSG_NOSIGNAL", 0)


def access_allowed(uid: int, gid: int, client_uid: int | None, client_gid: int | None) -> bool:
    """Whether a peer with uid and gid may query the server; None means unset."""
    return (
        uid == 0
        or (client_uid is not None and uid == client_uid)
        or (client_gid is not None and gid == client_gid)
    )


def server_ping(path, timeout: float = 2.0) -> bool:
    """True when a server answers on the socket at path."""
    try:
        with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as sock:
            sock.settimeout(timeout)
            sock.connect(os.fspath(path))
            sock.sendall(b"ping\n")
            return sock.recv(10) == b"pong\n"
    except OSError:
        return False


@dataclass(eq=False)
class _Client:
    sock: socket.socket
    out: bytes = b""
    outcur: int = 0


def _sendstring(sock: socket.socket, text: str) -> None:
    with contextlib.suppress(OSError):
        sock.send(text.encode(), _SEND_FLAGS)


def _credentials(ancdata) -> tuple[int, int, int] | None:
    scm = getattr(socket, "SCM_CREDENTIALS", None)
    for level, kind, data in ancdata:
        if level == socket.SOL_SOCKET and kind == scm and len(data) >= _UCRED.size:
            return _UCRED.unpack(data[: _UCRED.size])
    return None


def _pass_credentials(sock: socket.socket) -> None:
    option = getattr(socket, "SO_PASSCRED", None)
    if option is None:
        raise OSError("credentials passing is not supported")
    sock.setsockopt(socket.SOL_SOCKET, option, 1)


class ClientServer:
    """Listens on a unix socket and answers dump, pages and ping commands."""

    def __init__(
        self,
        memdb,
        pages,
        log,
        socket_path=SOCKET_PATH,
        client_uid: int | None = 0,
        client_gid: int | None = None,
        ping_timeout: float = 2.0,
    ):
        self.memdb = memdb
        self.pages = pages
        self.log = log
        self.socket_path = os.fspath(socket_path) if socket_path else ""
        self.client_uid = client_uid
        self.client_gid = client_gid
        self.ping_timeout = ping_timeout
        self._selector = selectors.DefaultSelector()
        self._listener: socket.socket | None = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    @property
    def listening(self) -> bool:
        return self._listener is not None

    def _dispatch_dump(self, out: io.StringIO, line: str) -> None:
        flags = PrintFlags.NONE
        for word in line.split(" "):
            if word == "dump":
                continue
            if word == "bios":
                flags |= PrintFlags.BIOS
            elif word == "all":
                flags |= PrintFlags.ALL
            else:
                out.write("Unknown dump parameter\n")
        self.memdb.dump_memory_errors(out, flags)
        out.write("done\n")

    def dispatch_commands(self, text: str) -> str:
        """Run every command line in text and return the reply."""
        out = io.StringIO()
        for line in text.split("\n"):
            line = line.lstrip()
            if line.startswith("dump"):
                self._dispatch_dump(out, line)
            elif line.startswith("pages"):
                self.pages.dump_page_errors(out)
                out.write("done\n")
            elif line == "ping":
                out.write("pong\n")
            elif line:
                out.write("Unknown command\n")
        return out.getvalue()

    def setup(self) -> bool:
        """Start listening; returns False when no socket is configured or usable.

        Raises RuntimeError when another server already answers on the path.
        """
        path = self.socket_path
        if not path:
            return False
        if len(os.fsencode(path)) >= _SUN_PATH_MAX - 1:
            self.log.error(f"Client socket path `{path}' too long for unix socket")
            return False
        if os.access(path, os.F_OK):
            if server_ping(path, self.ping_timeout):
                self.log.error("mcelog server already running\n")
                raise RuntimeError("mcelog server already running")
            with contextlib.suppress(OSError):
                os.unlink(path)
        try:
            sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        except OSError as exc:
            self.log.syserror("cannot open listening socket", exc)
            return False
        try:
            sock.bind(path)
        except OSError as exc:
            self.log.syserror(f"Cannot bind to client unix socket `{path}'", exc)
            sock.close()
            raise
        sock.listen(10)
        # Set before clients connect; older kernels may refuse it.
        with contextlib.suppress(OSError):
            _pass_credentials(sock)
        sock.setblocking(False)
        self._selector.register(sock, selectors.EVENT_READ, None)
        self._listener = sock
        return True

    def handle_events(self, timeout: float | None = None) -> int:
        """Serve pending socket events; returns how many were handled."""
        events = self._selector.select(timeout)
        for key, mask in events:
            if key.data is None:
                self._accept()
            else:
                self._client_event(key.data, mask)
        return len(events)

    def _accept(self) -> None:
        try:
            conn, _ = self._listener.accept()
        except OSError as exc:
            self.log.syserror("accept failed on client socket", exc)
            return
        try:
            _pass_credentials(conn)
        except OSError as exc:
            self.log.syserror("Cannot enable credentials passing on client socket", exc)
            conn.close()
            return
        conn.setblocking(False)
        self._selector.register(conn, selectors.EVENT_READ, _Client(conn))

    def _client_input(self, sock: socket.socket) -> str | None:
        data, ancdata, _flags, _addr = sock.recvmsg(
            _RECV_MAX, socket.CMSG_SPACE(_UCRED.size)
        )
        if not data:
            return None
        creds = _credentials(ancdata)
        if creds is None:
            self.log.error("Did not receive credentials over client unix socket\n")
            return None
        pid, uid, gid = creds
        if not access_allowed(uid, gid, self.client_uid, self.client_gid):
            self.log.error(f"rejected client access from pid:{pid} uid:{uid} gid:{gid}\n")
            _sendstring(sock, "permission denied\n")
            return None
        return data.decode("utf-8", errors="replace")

    def _client_event(self, client: _Client, mask: int) -> None:
        sock = client.sock
        try:
            if mask & selectors.EVENT_WRITE:
                if client.outcur < len(client.out):
                    client.outcur += sock.send(client.out[client.outcur :], _SEND_FLAGS)
                if client.outcur >= len(client.out):
                    client.out, client.outcur = b"", 0
            if mask & selectors.EVENT_READ:
                text = self._client_input(sock)
                if text is None:
                    self._drop(client)
                    return
                client.out = self.dispatch_commands(text).encode()
                client.outcur = 0
        except OSError as exc:
            self.log.syserror("error while reading from client", exc)
            self._drop(client)
            return
        events = selectors.EVENT_WRITE if client.out else selectors.EVENT_READ
        self._selector.modify(sock, events, client)

    def _drop(self, client: _Client) -> None:
        with contextlib.suppress(KeyError, ValueError):
            self._selector.unregister(client.sock)
        client.sock.close()

    def close(self) -> None:
        """Close every client and the listening socket, removing its file."""
        for key in list(self._selector.get_map().values()):
            self._selector.unregister(key.fileobj)
            key.fileobj.close()
        if self._listener is not None:
            self._listener = None
            with contextlib.suppress(OSError):
                os.unlink(self.socket_path)