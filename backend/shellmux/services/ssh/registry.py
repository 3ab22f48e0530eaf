"""Bookkeeping for per-session SSH resources."""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, field
from typing import Any, Iterator, Optional

from shellmux.domain.targets import Geometry


class SessionState(str, enum.Enum):
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    SHELL_OPEN = "shell_open"
    CLOSED = "closed"
    ERRORED = "errored"


TERMINAL_STATES = frozenset({SessionState.CLOSED, SessionState.ERRORED})


@dataclass(slots=True, eq=False)
class SessionResources:
    """The resource triple for one session id plus its lifecycle state.

    ``socket``, ``client`` and ``shell`` fill in as the connect sequence
    advances and are reset to ``None`` once destroyed.
    """

    session_id: str
    geometry: Geometry
    state: SessionState = SessionState.CONNECTING
    socket: Optional[Any] = None
    client: Optional[Any] = None
    shell: Optional[Any] = None
    task: Optional[asyncio.Task] = None
    probes: set[asyncio.Task] = field(default_factory=set)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES


class SessionRegistry:
    """Maps session ids to their current ``SessionResources``."""

    def __init__(self) -> None:
        self._sessions: dict[str, SessionResources] = {}

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._sessions))

    def get(self, session_id: str) -> Optional[SessionResources]:
        return self._sessions.get(session_id)

    def add(self, resources: SessionResources) -> None:
        if resources.session_id in self._sessions:
            raise KeyError(f"Session {resources.session_id!r} is already registered")
        self._sessions[resources.session_id] = resources

    def remove(self, session_id: str, resources: Optional[SessionResources] = None) -> bool:
        """Drop the entry for ``session_id``.

        When ``resources`` is given the entry is only dropped if it is that
        exact object, so a stale teardown never evicts a newer occupant.
        """
        current = self._sessions.get(session_id)
        if current is None:
            return False
        if resources is not None and current is not resources:
            return False
        del self._sessions[session_id]
        return True

    def values(self) -> list[SessionResources]:
        return list(self._sessions.values())

    def clear(self) -> None:
        self._sessions.clear()
