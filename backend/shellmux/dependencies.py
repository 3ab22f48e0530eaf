"""Shared FastAPI dependency factories."""

from shellmux.services import (
    EventRouter,
    SessionManager,
    get_event_router,
    get_session_manager,
)


def get_manager() -> SessionManager:
    """Expose the process-wide session manager (overridable in tests)."""
    return get_session_manager()


def get_events() -> EventRouter:
    return get_event_router()
