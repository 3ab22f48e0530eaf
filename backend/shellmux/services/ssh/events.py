"""Outward event interface of the session manager."""

from __future__ import annotations

from typing import Optional, Protocol

from shellmux.core.logging import get_logger

logger = get_logger(__name__)


class EventSink(Protocol):
    """Receives session events tagged by session id.

    Methods are called synchronously from the event loop and must not block.
    """

    def output(self, session_id: str, data: bytes) -> None: ...

    def status(self, session_id: str, message: str) -> None: ...

    def error(self, session_id: Optional[str], message: str) -> None: ...

    def metadata(self, session_id: str, text: str) -> None: ...


class EventRouter:
    """EventSink that forwards each session's events to the sink attached to it.

    The process-wide manager emits into one router; every WebSocket attaches
    its own sink for the session ids it opened.
    """

    def __init__(self) -> None:
        self._sinks: dict[str, EventSink] = {}

    def attach(self, session_id: str, sink: EventSink) -> None:
        self._sinks[session_id] = sink

    def detach(self, session_id: str, sink: Optional[EventSink] = None) -> None:
        """Remove the sink for ``session_id`` (only if it is ``sink``, when given)."""
        current = self._sinks.get(session_id)
        if current is None:
            return
        if sink is not None and current is not sink:
            return
        del self._sinks[session_id]

    def sink_for(self, session_id: str) -> Optional[EventSink]:
        return self._sinks.get(session_id)

    def _target(self, session_id: Optional[str], kind: str) -> Optional[EventSink]:
        sink = self._sinks.get(session_id) if session_id is not None else None
        if sink is None:
            logger.debug("Dropping %s event for unattached session %s", kind, session_id)
        return sink

    def output(self, session_id: str, data: bytes) -> None:
        sink = self._target(session_id, "output")
        if sink is not None:
            sink.output(session_id, data)

    def status(self, session_id: str, message: str) -> None:
        sink = self._target(session_id, "status")
        if sink is not None:
            sink.status(session_id, message)

    def error(self, session_id: Optional[str], message: str) -> None:
        sink = self._target(session_id, "error")
        if sink is not None:
            sink.error(session_id, message)

    def metadata(self, session_id: str, text: str) -> None:
        sink = self._target(session_id, "metadata")
        if sink is not None:
            sink.metadata(session_id, text)
