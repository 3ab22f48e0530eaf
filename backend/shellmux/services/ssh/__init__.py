"""Public entrypoints for the SSH service."""

from functools import lru_cache

from shellmux.core.config import settings

from .connector import ConnectorConfig, SSHConnector
from .events import EventRouter, EventSink
from .manager import SessionManager, SSHSessionConfig
from .registry import SessionRegistry, SessionResources, SessionState

__all__ = [
    "ConnectorConfig",
    "EventRouter",
    "EventSink",
    "SSHConnector",
    "SSHSessionConfig",
    "SessionManager",
    "SessionRegistry",
    "SessionResources",
    "SessionState",
    "get_event_router",
    "get_session_manager",
]


@lru_cache(maxsize=1)
def get_event_router() -> EventRouter:
    """Provide the process-wide router that WebSockets attach their sinks to."""
    return EventRouter()


@lru_cache(maxsize=1)
def get_session_manager() -> SessionManager:
    """Provide a process-wide session manager using app settings."""
    config = SSHSessionConfig(
        connect_timeout=settings.ssh_connect_timeout,
        metadata_command=settings.metadata_command,
        default_cols=settings.ssh_default_cols,
        default_rows=settings.ssh_default_rows,
    )
    connector = SSHConnector(
        ConnectorConfig(
            term_type=settings.ssh_term_type,
            keepalive_interval=settings.ssh_keepalive_interval,
            known_hosts=settings.ssh_known_hosts,
        )
    )
    return SessionManager(get_event_router(), config=config, connector=connector)
