"""asyncssh-backed engine for the three per-session resource tiers.

Every coroutine here raises only ``SessionError`` subclasses, so the
manager never has to know about asyncssh or socket exception types.
"""

from __future__ import annotations

import asyncio
import socket
from dataclasses import dataclass
from typing import Callable, Optional

import asyncssh

from shellmux.domain.exceptions import (
    AuthError,
    ChannelError,
    ProtocolError,
    SessionError,
    TransportError,
)
from shellmux.domain.targets import Geometry, PasswordCredential, TargetDescriptor


@dataclass(slots=True)
class ConnectorConfig:
    """Options passed through to asyncssh."""

    term_type: str = "xterm-256color"
    keepalive_interval: float = 30.0
    known_hosts: Optional[str] = None


def classify_error(exc: BaseException) -> SessionError:
    """Map an engine exception onto the session error taxonomy."""
    if isinstance(exc, SessionError):
        return exc
    if isinstance(exc, asyncio.TimeoutError):
        return TransportError("Connection timed out")
    if isinstance(exc, (asyncssh.PermissionDenied, asyncssh.KeyImportError)):
        return AuthError(str(exc) or "Authentication failed")
    if isinstance(exc, asyncssh.ChannelOpenError):
        return ChannelError(str(exc) or "Channel open failed")
    if isinstance(exc, (asyncssh.ConnectionLost, ConnectionError)):
        return TransportError(str(exc) or "Connection lost")
    if isinstance(exc, socket.gaierror):
        return TransportError(f"Name resolution failed: {exc}")
    if isinstance(exc, asyncssh.Error):
        return ProtocolError(str(exc) or "SSH protocol error")
    if isinstance(exc, OSError):
        return TransportError(str(exc) or exc.__class__.__name__)
    return ProtocolError(str(exc) or exc.__class__.__name__)


class SSHConnector:
    """Opens sockets, SSH clients and channels for the session manager."""

    def __init__(self, config: Optional[ConnectorConfig] = None) -> None:
        self._config = config or ConnectorConfig()

    async def open_socket(self, host: str, port: int) -> socket.socket:
        """Open a non-blocking TCP socket to ``host:port`` via the running loop."""
        loop = asyncio.get_running_loop()
        try:
            addresses = await loop.getaddrinfo(host, port, type=socket.SOCK_STREAM)
        except OSError as exc:
            raise classify_error(exc) from exc

        last_exc: Optional[OSError] = None
        for family, sock_type, proto, _, address in addresses:
            sock = socket.socket(family, sock_type, proto)
            sock.setblocking(False)
            try:
                await loop.sock_connect(sock, address)
            except OSError as exc:
                sock.close()
                last_exc = exc
                continue
            except BaseException:
                sock.close()
                raise
            return sock

        if last_exc is None:
            raise TransportError(f"No addresses found for {host}")
        raise TransportError(f"Connection to {host}:{port} failed: {last_exc}") from last_exc

    async def open_client(
        self,
        sock: socket.socket,
        target: TargetDescriptor,
        client_factory: Callable[[], asyncssh.SSHClient],
    ) -> asyncssh.SSHClientConnection:
        """Run the SSH handshake and authenticate over an already connected socket."""
        credential = target.credential
        auth: dict = {}
        if isinstance(credential, PasswordCredential):
            auth["password"] = credential.password
            auth["client_keys"] = None
        else:
            try:
                key = await asyncio.to_thread(
                    asyncssh.read_private_key, credential.key_path, credential.passphrase
                )
            except (OSError, asyncssh.KeyImportError) as exc:
                raise AuthError(f"Unable to read private key {credential.key_path}: {exc}") from exc
            auth["client_keys"] = [key]

        try:
            return await asyncssh.connect(
                target.host,
                target.port,
                sock=sock,
                username=target.username,
                client_factory=client_factory,
                known_hosts=self._config.known_hosts,
                keepalive_interval=self._config.keepalive_interval,
                **auth,
            )
        except (asyncssh.Error, OSError) as exc:
            raise classify_error(exc) from exc

    async def open_shell(
        self,
        client: asyncssh.SSHClientConnection,
        geometry: Geometry,
        session_factory: Callable[[], asyncssh.SSHClientSession],
    ) -> tuple[asyncssh.SSHClientChannel, asyncssh.SSHClientSession]:
        """Open an interactive pty channel; data stays as raw bytes."""
        try:
            return await client.create_session(
                session_factory,
                term_type=self._config.term_type,
                term_size=(geometry.columns, geometry.rows),
                encoding=None,
            )
        except (asyncssh.Error, OSError) as exc:
            raise ChannelError(f"Unable to open shell: {classify_error(exc).message}") from exc

    async def open_exec(
        self,
        client: asyncssh.SSHClientConnection,
        command: str,
        session_factory: Callable[[], asyncssh.SSHClientSession],
    ) -> tuple[asyncssh.SSHClientChannel, asyncssh.SSHClientSession]:
        """Open a non-interactive channel running ``command``."""
        try:
            return await client.create_session(session_factory, command, encoding=None)
        except (asyncssh.Error, OSError) as exc:
            raise ChannelError(f"Unable to run {command!r}: {classify_error(exc).message}") from exc
