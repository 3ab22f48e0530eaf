"""WebSocket bridge between the terminal UI and the session manager.

One socket carries any number of sessions. Frames are JSON objects keyed by
``type`` and ``id``; see ``_dispatch`` for the inbound verbs.
"""

from __future__ import annotations

import asyncio
import codecs
import contextlib
import json
import re
import uuid
from typing import Any, Optional

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from shellmux.core.config import settings
from shellmux.core.logging import get_logger
from shellmux.dependencies import get_events, get_manager
from shellmux.domain.exceptions import SessionError
from shellmux.domain.targets import Geometry, TargetDescriptor
from shellmux.services.ssh import EventRouter, SessionManager

logger = get_logger(__name__)

router = APIRouter(tags=["websocket"])

_PRETTY_NAME = re.compile(r'^PRETTY_NAME="?([^"\n]+)"?\s*$', re.MULTILINE)


def parse_os_pretty_name(text: str) -> Optional[str]:
    """Pull ``PRETTY_NAME`` out of /etc/os-release output."""
    match = _PRETTY_NAME.search(text)
    return match.group(1).strip() if match else None


class WebSocketEventSink:
    """EventSink that queues JSON frames for one WebSocket.

    Every socket gets its own ``scope``. Manager ids are ``"<scope>:<id>"`` so
    two clients that both number their tabs from 1 never share a session;
    the prefix is stripped again before a frame goes out.

    Output bytes are decoded with a per-session incremental decoder so a
    multibyte character split across two chunks still renders correctly.
    """

    def __init__(self, websocket: WebSocket) -> None:
        self._websocket = websocket
        self._queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self._decoders: dict[str, codecs.IncrementalDecoder] = {}
        self.scope = uuid.uuid4().hex

    def key(self, client_id: str) -> str:
        """Manager session id for the client's ``client_id``."""
        return f"{self.scope}:{client_id}"

    def client_id(self, session_id: Optional[str]) -> Optional[str]:
        if session_id is None:
            return None
        prefix = f"{self.scope}:"
        return session_id[len(prefix):] if session_id.startswith(prefix) else session_id

    def output(self, session_id: str, data: bytes) -> None:
        decoder = self._decoders.get(session_id)
        if decoder is None:
            decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
            self._decoders[session_id] = decoder
        text = decoder.decode(data)
        if text:
            self._send("output", session_id, text)

    def status(self, session_id: str, message: str) -> None:
        self._send("status", session_id, message)

    def error(self, session_id: Optional[str], message: str) -> None:
        self._send("error", session_id, message)

    def metadata(self, session_id: str, text: str) -> None:
        self._send("metadata", session_id, text, prettyName=parse_os_pretty_name(text))

    def forget(self, session_id: str) -> None:
        self._decoders.pop(session_id, None)

    def _send(self, kind: str, session_id: Optional[str], data: str, **fields: Any) -> None:
        frame = {"type": kind, "id": self.client_id(session_id), "data": data}
        frame.update(fields)
        self._queue.put_nowait(frame)

    async def pump(self) -> None:
        """Send queued frames until cancelled."""
        while True:
            frame = await self._queue.get()
            await self._websocket.send_json(frame)


def _dispatch(
    payload: dict[str, Any],
    manager: SessionManager,
    events: EventRouter,
    sink: WebSocketEventSink,
    owned: set[str],
) -> None:
    kind = payload.get("type")
    client_id = payload.get("id")
    if client_id is None or not isinstance(client_id, (str, int)):
        sink.error(None, "Message is missing a session id")
        return
    client_id = str(client_id)
    session_id = sink.key(client_id)

    if kind == "connect":
        if session_id not in owned and len(owned) >= settings.ws_max_sessions:
            sink.error(client_id, "Maximum number of SSH sessions reached")
            return
        try:
            target = TargetDescriptor.from_saved(payload)
            geometry = Geometry.coerce(
                payload.get("cols"),
                payload.get("rows"),
                default_columns=settings.ssh_default_cols,
                default_rows=settings.ssh_default_rows,
            )
            events.attach(session_id, sink)
            sink.forget(session_id)
            manager.connect(session_id, target, geometry)
        except SessionError as exc:
            if session_id not in owned:
                events.detach(session_id, sink)
            sink.error(client_id, exc.message)
            return
        owned.add(session_id)
    elif kind == "input":
        data = payload.get("data")
        if isinstance(data, str) and session_id in owned:
            manager.input(session_id, data)
    elif kind == "resize":
        if session_id in owned:
            manager.resize(
                session_id,
                Geometry.coerce(
                    payload.get("cols"),
                    payload.get("rows"),
                    default_columns=settings.ssh_default_cols,
                    default_rows=settings.ssh_default_rows,
                ),
            )
    elif kind == "queryMetadata":
        if session_id in owned:
            manager.query_metadata(session_id)
    elif kind == "close":
        if session_id in owned:
            manager.close(session_id)
            events.detach(session_id, sink)
            sink.forget(session_id)
            owned.discard(session_id)
    else:
        sink.error(None, f"Unsupported message type: {kind}")


@router.websocket("/ws")
async def terminal_websocket(
    websocket: WebSocket,
    manager: SessionManager = Depends(get_manager),
    events: EventRouter = Depends(get_events),
) -> None:
    """Multiplexed terminal sessions over a single WebSocket."""
    await websocket.accept()
    sink = WebSocketEventSink(websocket)
    owned: set[str] = set()
    sender = asyncio.create_task(sink.pump())
    try:
        while True:
            try:
                raw_message = await websocket.receive_text()
            except WebSocketDisconnect:
                break

            try:
                payload = json.loads(raw_message)
            except json.JSONDecodeError:
                sink.error(None, "Messages must be JSON encoded")
                continue
            if not isinstance(payload, dict):
                sink.error(None, "Messages must be JSON objects")
                continue

            _dispatch(payload, manager, events, sink, owned)
    finally:
        for session_id in owned:
            manager.close(session_id)
            events.detach(session_id, sink)
        sender.cancel()
        with contextlib.suppress(Exception, asyncio.CancelledError):
            await sender
        logger.info("WebSocket closed, released %d session(s)", len(owned))
