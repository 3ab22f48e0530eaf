"""Multiplexes concurrent interactive SSH sessions on one event loop.

Each session owns a socket, an authenticated client and a pty shell channel.
All engine callbacks funnel through ``SessionManager._is_live``: an event
whose resources are no longer the registry's current, non-terminal entry for
that id is dropped. That single guard is what keeps superseded attempts and
secondary faults from ever reaching the event sink.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional, Union

import asyncssh

from shellmux.core.logging import LoggerAdapter, get_logger
from shellmux.core.metrics import (
    SSH_CONNECTS_TOTAL,
    SSH_SESSION_ERRORS_TOTAL,
    SSH_SESSIONS_ACTIVE,
)
from shellmux.domain.exceptions import (
    ChannelError,
    SessionBusyError,
    SessionError,
    TransportError,
)
from shellmux.domain.targets import Geometry, TargetDescriptor

from .connector import SSHConnector, classify_error
from .events import EventSink
from .registry import SessionRegistry, SessionResources, SessionState

logger = get_logger(__name__)

STATUS_ESTABLISHED = "SSH Connection Established"
STATUS_CLOSED = "SSH Connection Closed"


@dataclass(slots=True)
class SSHSessionConfig:
    """Runtime limits/tuning for interactive sessions."""

    connect_timeout: float = 20.0
    metadata_command: str = "cat /etc/os-release"
    default_cols: int = 80
    default_rows: int = 24


class _ClientWatcher(asyncssh.SSHClient):
    """Reports loss of the SSH connection back to the manager."""

    def __init__(self, manager: "SessionManager", resources: SessionResources) -> None:
        self._manager = manager
        self._resources = resources

    def connection_lost(self, exc: Optional[Exception]) -> None:
        self._manager._on_client_lost(self._resources, exc)


class _ShellSession(asyncssh.SSHClientSession):
    """Forwards pty output verbatim and reports channel open/close."""

    def __init__(self, manager: "SessionManager", resources: SessionResources) -> None:
        self._manager = manager
        self._resources = resources
        self._chan: Optional[asyncssh.SSHClientChannel] = None

    def connection_made(self, chan: asyncssh.SSHClientChannel) -> None:
        self._chan = chan

    def session_started(self) -> None:
        self._manager._on_shell_open(self._resources, self._chan)

    def data_received(self, data: bytes, datatype: Optional[int]) -> None:
        self._manager._on_shell_output(self._resources, data)

    def connection_lost(self, exc: Optional[Exception]) -> None:
        self._manager._on_shell_lost(self._resources, exc)


class _MetadataProbe(asyncssh.SSHClientSession):
    """Collects everything an exec channel prints until it closes."""

    def __init__(self) -> None:
        self.buffer = bytearray()
        self.error: Optional[Exception] = None
        self._closed = asyncio.get_running_loop().create_future()

    def data_received(self, data: bytes, datatype: Optional[int]) -> None:
        self.buffer.extend(data)

    def connection_lost(self, exc: Optional[Exception]) -> None:
        self.error = exc
        if not self._closed.done():
            self._closed.set_result(None)

    async def wait_closed(self) -> None:
        await self._closed

    @property
    def text(self) -> str:
        return bytes(self.buffer).decode("utf-8", errors="replace")


class SessionManager:
    """Opens, drives and tears down SSH shell sessions keyed by session id."""

    def __init__(
        self,
        sink: EventSink,
        *,
        config: Optional[SSHSessionConfig] = None,
        registry: Optional[SessionRegistry] = None,
        connector: Optional[SSHConnector] = None,
    ) -> None:
        self._sink = sink
        self._config = config or SSHSessionConfig()
        self._registry = registry if registry is not None else SessionRegistry()
        self._connector = connector or SSHConnector()
        self._closing: set[str] = set()

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    # -- commands -----------------------------------------------------------

    def connect(
        self,
        session_id: str,
        target: TargetDescriptor,
        geometry: Optional[Geometry] = None,
    ) -> asyncio.Task:
        """Start connecting ``session_id`` to ``target``.

        Returns the task running the connect sequence. Progress arrives as
        status events; a failure arrives as exactly one error event, after
        which the session is gone from the registry.
        """
        target.validate()
        if session_id in self._closing:
            raise SessionBusyError(f"Session {session_id} is still closing")

        previous = self._registry.get(session_id)
        if previous is not None:
            self._log(previous).info("Superseding existing session")
            SSH_CONNECTS_TOTAL.labels(status="superseded").inc()
            self._teardown(previous, SessionState.CLOSED)

        resources = SessionResources(
            session_id=session_id,
            geometry=geometry
            or Geometry(self._config.default_cols, self._config.default_rows),
        )
        self._registry.add(resources)
        SSH_SESSIONS_ACTIVE.set(len(self._registry))

        self._log(resources).info(
            "Connecting to %s@%s:%s", target.username, target.host, target.port
        )
        self._emit("status", resources.session_id, f"Connecting to {target.host}:{target.port}...")
        resources.task = asyncio.get_running_loop().create_task(
            self._run_connect(resources, target), name=f"ssh-connect-{session_id}"
        )
        return resources.task

    def input(self, session_id: str, data: Union[bytes, str]) -> None:
        """Write to the session's shell; silently dropped until the shell exists."""
        resources = self._registry.get(session_id)
        if resources is None or resources.shell is None or resources.is_terminal:
            return
        if isinstance(data, str):
            data = data.encode("utf-8")
        try:
            resources.shell.write(data)
        except Exception as exc:
            self._log(resources).warning("Dropping input, shell write failed: %s", exc)

    def resize(self, session_id: str, geometry: Geometry) -> None:
        resources = self._registry.get(session_id)
        if resources is None:
            return
        resources.geometry = geometry
        if resources.shell is None or resources.is_terminal:
            return
        try:
            resources.shell.change_terminal_size(geometry.columns, geometry.rows)
        except Exception as exc:
            self._log(resources).warning("Resize to %sx%s failed: %s", geometry.columns, geometry.rows, exc)

    def query_metadata(self, session_id: str) -> Optional[asyncio.Task]:
        """Run the metadata command on its own exec channel.

        The text is delivered through ``EventSink.metadata`` once the remote
        command finishes. Returns ``None`` if the session has no client yet.
        """
        resources = self._registry.get(session_id)
        if resources is None or resources.client is None or resources.is_terminal:
            return None
        task = asyncio.get_running_loop().create_task(
            self._run_probe(resources, resources.client),
            name=f"ssh-metadata-{session_id}",
        )
        resources.probes.add(task)
        task.add_done_callback(resources.probes.discard)
        return task

    def close(self, session_id: str) -> None:
        resources = self._registry.get(session_id)
        if resources is None or resources.is_terminal:
            return
        self._log(resources).info("Closing session on request")
        self._teardown(resources, SessionState.CLOSED)
        self._emit("status", session_id, STATUS_CLOSED)

    def shutdown_all(self) -> None:
        """Destroy every session at process exit. Never raises."""
        for resources in self._registry.values():
            try:
                self._teardown(resources, SessionState.CLOSED)
            except Exception:  # pragma: no cover - teardown guards each resource already
                logger.exception("Teardown of session %s failed during shutdown", resources.session_id)
        self._registry.clear()
        self._closing.clear()
        SSH_SESSIONS_ACTIVE.set(0)
        logger.info("All SSH sessions shut down")

    # -- connect sequence ---------------------------------------------------

    async def _run_connect(self, resources: SessionResources, target: TargetDescriptor) -> None:
        try:
            await asyncio.wait_for(
                self._establish(resources, target),
                timeout=self._config.connect_timeout,
            )
        except asyncio.TimeoutError:
            self._fail(resources, TransportError("Connection timed out"))
        except SessionError as exc:
            self._fail(resources, exc)
        except Exception as exc:
            self._log(resources).exception("Unexpected failure while connecting")
            self._fail(resources, classify_error(exc))

    async def _establish(self, resources: SessionResources, target: TargetDescriptor) -> None:
        sock = await self._connector.open_socket(target.host, target.port)
        if not self._is_live(resources):
            _close_quietly(sock)
            return
        resources.socket = sock

        self._transition(resources, SessionState.AUTHENTICATING)
        self._emit("status", resources.session_id, f"Authenticating as {target.username}...")
        client = await self._connector.open_client(
            sock, target, lambda: _ClientWatcher(self, resources)
        )
        if not self._is_live(resources):
            _close_quietly(client)
            return
        resources.client = client

        chan, _ = await self._connector.open_shell(
            client, resources.geometry, lambda: _ShellSession(self, resources)
        )
        if not self._is_live(resources):
            _close_quietly(chan)
            return
        if resources.shell is None:
            # session_started was not delivered before create_session returned
            self._on_shell_open(resources, chan)

    async def _run_probe(self, resources: SessionResources, client) -> None:
        log = self._log(resources)
        try:
            _, probe = await self._connector.open_exec(
                client, self._config.metadata_command, _MetadataProbe
            )
        except SessionError as exc:
            if not self._is_live(resources):
                return
            log.warning("Metadata query failed (%s): %s", exc.origin, exc.message)
            SSH_SESSION_ERRORS_TOTAL.labels(origin=exc.origin).inc()
            self._emit("error", resources.session_id, f"Metadata query failed: {exc.message}")
            return

        await probe.wait_closed()
        if not self._is_live(resources):
            log.debug("Discarding metadata for a session that is gone")
            return
        if probe.error is not None:
            log.debug("Metadata channel closed with %s", probe.error)
        self._emit("metadata", resources.session_id, probe.text)

    # -- engine callbacks ---------------------------------------------------

    def _on_shell_open(self, resources: SessionResources, chan) -> None:
        if not self._is_live(resources):
            _close_quietly(chan)
            return
        resources.shell = chan
        self._transition(resources, SessionState.SHELL_OPEN)
        SSH_CONNECTS_TOTAL.labels(status="established").inc()
        self._log(resources).info("Shell established")
        self._emit("status", resources.session_id, STATUS_ESTABLISHED)

    def _on_shell_output(self, resources: SessionResources, data: bytes) -> None:
        if self._is_live(resources):
            self._emit("output", resources.session_id, data)

    def _on_shell_lost(self, resources: SessionResources, exc: Optional[Exception]) -> None:
        if not self._is_live(resources):
            self._log(resources).debug("Ignoring channel close for a session already torn down")
            return
        if exc is not None:
            self._fail(resources, ChannelError(str(exc) or "Shell channel failed"))
            return
        self._log(resources).info("Remote shell exited")
        self._teardown(resources, SessionState.CLOSED)
        self._emit("status", resources.session_id, STATUS_CLOSED)

    def _on_client_lost(self, resources: SessionResources, exc: Optional[Exception]) -> None:
        if not self._is_live(resources):
            self._log(resources).debug("Ignoring connection loss for a session already torn down")
            return
        if exc is not None:
            self._fail(resources, classify_error(exc))
            return
        self._log(resources).info("Server closed the connection")
        self._teardown(resources, SessionState.CLOSED)
        self._emit("status", resources.session_id, STATUS_CLOSED)

    # -- state machine ------------------------------------------------------

    def _is_live(self, resources: SessionResources) -> bool:
        return (
            self._registry.get(resources.session_id) is resources
            and not resources.is_terminal
        )

    def _transition(self, resources: SessionResources, state: SessionState) -> None:
        self._log(resources).debug("%s -> %s", resources.state.value, state.value)
        resources.state = state

    def _fail(self, resources: SessionResources, exc: SessionError) -> None:
        """Surface one error for a live session, then tear it down."""
        log = self._log(resources)
        if not self._is_live(resources):
            log.debug("Suppressing %s error for a session already torn down: %s", exc.origin, exc.message)
            return
        log.warning("Session failed in %s layer: %s", exc.origin, exc.message)
        SSH_SESSION_ERRORS_TOTAL.labels(origin=exc.origin).inc()
        if resources.shell is None:
            SSH_CONNECTS_TOTAL.labels(status="failed").inc()
        self._emit("error", resources.session_id, exc.message)
        self._teardown(resources, SessionState.ERRORED)

    def _teardown(self, resources: SessionResources, state: SessionState) -> None:
        """Destroy shell, client, then socket; deregister only afterwards."""
        if resources.is_terminal:
            return
        session_id = resources.session_id
        self._transition(resources, state)
        self._closing.add(session_id)
        try:
            current = asyncio.current_task() if _loop_running() else None
            for task in [resources.task, *resources.probes]:
                if task is not None and task is not current and not task.done():
                    try:
                        task.cancel()
                    except RuntimeError as exc:
                        self._log(resources).debug("Cancelling %s raised %s", task.get_name(), exc)
            for slot in ("shell", "client", "socket"):
                self._destroy(resources, slot)
        finally:
            self._closing.discard(session_id)
            self._registry.remove(session_id, resources)
            SSH_SESSIONS_ACTIVE.set(len(self._registry))

    def _destroy(self, resources: SessionResources, slot: str) -> None:
        resource = getattr(resources, slot)
        if resource is None:
            return
        setattr(resources, slot, None)
        try:
            resource.close()
        except Exception as exc:
            self._log(resources).debug("Closing %s raised %s", slot, exc)

    # -- helpers ------------------------------------------------------------

    def _emit(self, kind: str, session_id: str, payload) -> None:
        try:
            getattr(self._sink, kind)(session_id, payload)
        except Exception as exc:
            logger.error("Event sink failed on %s for %s: %s", kind, session_id, exc)

    @staticmethod
    def _log(resources: SessionResources) -> LoggerAdapter:
        return LoggerAdapter(logger, {"session_id": resources.session_id})


def _loop_running() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


def _close_quietly(resource) -> None:
    try:
        resource.close()
    except Exception as exc:
        logger.debug("Closing orphaned %s raised %s", type(resource).__name__, exc)
