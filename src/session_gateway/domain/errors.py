"""Errors raised by the session gateway."""


class GatewayError(Exception):
    """Base class for gateway errors surfaced to callers."""


class CapacityExceededError(GatewayError):
    """Raised when a new session would exceed the configured maximum."""

    def __init__(self, max_sessions: int) -> None:
        super().__init__(f"Max sessions ({max_sessions}) reached")
        self.max_sessions = max_sessions


class SessionNotFoundError(GatewayError):
    """Raised when an operation targets a session that does not exist."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


class SessionNotConnectedError(GatewayError):
    """Raised when an operation needs a connected session."""

    def __init__(self, session_id: str, status: str) -> None:
        super().__init__(f"Session {session_id} is not connected ({status})")
        self.session_id = session_id
        self.status = status


class TransportOperationFailedError(GatewayError):
    """Raised when the transport rejects or fails an operation."""
