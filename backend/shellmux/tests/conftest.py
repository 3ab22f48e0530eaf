"""Test configuration and fixtures."""

import asyncio
import base64
import os
from typing import Optional

import pytest

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("LOG_FORMAT", "console")

from shellmux.domain.targets import (  # noqa: E402 - env vars must be set before settings load
    Geometry,
    PasswordCredential,
    TargetDescriptor,
)

OS_RELEASE_CHUNKS = (
    b'NAME="Debian GNU/Linux"\nVERSION_ID="12"\n',
    b'PRETTY_NAME="Debian GNU/Linux 12 (bookworm)"\n',
)


class RecordingSink:
    """EventSink that keeps every event in arrival order."""

    def __init__(self):
        self.events = []

    def output(self, session_id, data):
        self.events.append(("output", session_id, data))

    def status(self, session_id, message):
        self.events.append(("status", session_id, message))

    def error(self, session_id, message):
        self.events.append(("error", session_id, message))

    def metadata(self, session_id, text):
        self.events.append(("metadata", session_id, text))

    def of(self, kind, session_id=None):
        return [
            payload
            for event_kind, sid, payload in self.events
            if event_kind == kind and (session_id is None or sid == session_id)
        ]


class FakeSocket:
    def __init__(self, host, port, closed_log):
        self.host = host
        self.port = port
        self.closed = False
        self.broken = False
        self.on_close = None
        self._closed_log = closed_log

    def close(self):
        self._closed_log.append("socket")
        if self.on_close is not None:
            self.on_close()
        if self.broken:
            raise OSError(9, "Bad file descriptor")
        self.closed = True


class FakeChannel:
    """Mimics SSHClientChannel: closing reports connection_lost on the next loop turn."""

    def __init__(self, session, closed_log, *, echo=False):
        self.session = session
        self.echo = echo
        self.written = []
        self.sizes = []
        self.closed = False
        self._closed_log = closed_log

    def write(self, data):
        if self.closed:
            raise BrokenPipeError("Channel not open for sending")
        self.written.append(data)
        if self.echo:
            self.session.data_received(data, None)

    def change_terminal_size(self, width, height, pixwidth=0, pixheight=0):
        self.sizes.append((width, height))

    def feed(self, data):
        self.session.data_received(data, None)

    def close(self):
        if self.closed:
            return
        self._closed_log.append("shell")
        self.closed = True
        asyncio.get_running_loop().call_soon(self.session.connection_lost, None)


class FakeClient:
    def __init__(self, watcher, closed_log):
        self.watcher = watcher
        self.channels = []
        self.closed = False
        self._closed_log = closed_log

    def close(self):
        if self.closed:
            return
        self._closed_log.append("client")
        self.closed = True
        for chan in self.channels:
            chan.close()
        asyncio.get_running_loop().call_soon(self.watcher.connection_lost, None)

    def lose(self, exc):
        """Simulate an abrupt transport fault seen by both the channel and the client."""
        self.closed = True
        for chan in self.channels:
            chan.closed = True
            chan.session.connection_lost(exc)
        self.watcher.connection_lost(exc)


class FakeConnector:
    """Stands in for SSHConnector, driving the factories the way asyncssh does."""

    def __init__(
        self,
        *,
        socket_error=None,
        auth_error=None,
        shell_error=None,
        exec_error=None,
        exec_output=OS_RELEASE_CHUNKS,
        echo=False,
    ):
        self.socket_error = socket_error
        self.auth_error = auth_error
        self.shell_error = shell_error
        self.exec_error = exec_error
        self.exec_output = exec_output
        self.echo = echo
        self.gate: Optional[asyncio.Event] = None
        self.closed_log = []
        self.sockets = []
        self.clients = []
        self.shells = []
        self.execs = []
        self.targets = []

    async def open_socket(self, host, port):
        gate = self.gate
        if gate is not None:
            await gate.wait()
        await asyncio.sleep(0)
        if self.socket_error is not None:
            raise self.socket_error
        sock = FakeSocket(host, port, self.closed_log)
        self.sockets.append(sock)
        return sock

    async def open_client(self, sock, target, client_factory):
        await asyncio.sleep(0)
        if self.auth_error is not None:
            raise self.auth_error
        watcher = client_factory()
        client = FakeClient(watcher, self.closed_log)
        watcher.connection_made(client)
        self.clients.append(client)
        self.targets.append(target)
        return client

    async def open_shell(self, client, geometry, session_factory):
        await asyncio.sleep(0)
        if self.shell_error is not None:
            raise self.shell_error
        session = session_factory()
        chan = FakeChannel(session, self.closed_log, echo=self.echo)
        chan.geometry = (geometry.columns, geometry.rows)
        client.channels.append(chan)
        session.connection_made(chan)
        session.session_started()
        self.shells.append(chan)
        return chan, session

    async def open_exec(self, client, command, session_factory):
        await asyncio.sleep(0)
        if self.exec_error is not None:
            raise self.exec_error
        session = session_factory()
        chan = FakeChannel(session, [])
        client.channels.append(chan)
        session.connection_made(chan)
        session.session_started()
        loop = asyncio.get_running_loop()
        for chunk in self.exec_output:
            loop.call_soon(session.data_received, chunk, None)
        loop.call_soon(chan.close)
        self.execs.append((command, chan))
        return chan, session


async def settle(turns: int = 10) -> None:
    """Let callbacks scheduled with call_soon run."""
    for _ in range(turns):
        await asyncio.sleep(0)


def make_target(host="203.0.113.10", port=22, username="root", password="secret"):
    return TargetDescriptor(
        host=host,
        port=port,
        username=username,
        credential=PasswordCredential(password),
    )


def b64(value: str) -> str:
    return base64.b64encode(value.encode()).decode()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def target():
    return make_target()


@pytest.fixture
def geometry():
    return Geometry(columns=120, rows=40)
