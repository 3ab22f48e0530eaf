"""Domain-level exception hierarchy."""


class SessionError(Exception):
    """Base exception for session-layer errors."""

    origin = "protocol"

    def __init__(self, message: str = "Session error") -> None:
        super().__init__(message)
        self.message = message


class TransportError(SessionError):
    """Raised when the TCP stream cannot be opened or is reset."""

    origin = "transport"


class AuthError(SessionError):
    """Raised when credentials are rejected or key material is unreadable."""

    origin = "auth"


class ChannelError(SessionError):
    """Raised when a shell or exec channel fails to open or dies."""

    origin = "channel"


class ProtocolError(SessionError):
    """Raised for any other fault reported by the SSH layer."""

    origin = "protocol"


class InvalidTargetError(SessionError):
    """Raised when a target descriptor fails validation."""

    origin = "validation"


class SessionBusyError(SessionError):
    """Raised when a connect arrives for an id that is still being torn down."""

    origin = "validation"
