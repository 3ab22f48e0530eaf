"""Service layer entry points."""

from .ssh import (
    EventRouter,
    SessionManager,
    SSHSessionConfig,
    get_event_router,
    get_session_manager,
)

__all__ = [
    "EventRouter",
    "SSHSessionConfig",
    "SessionManager",
    "get_event_router",
    "get_session_manager",
]
