"""Classification of transport disconnect codes."""

from enum import IntEnum, StrEnum


class DisconnectCode(IntEnum):
    """Failure codes reported by the transport when a connection closes."""

    LOGGED_OUT = 401
    FORBIDDEN = 403
    CONNECTION_LOST = 408
    TIMED_OUT = 408
    MULTIDEVICE_MISMATCH = 411
    CONNECTION_CLOSED = 428
    CONNECTION_REPLACED = 440
    BAD_SESSION = 500
    UNAVAILABLE_SERVICE = 503
    RESTART_REQUIRED = 515


class DisconnectKind(StrEnum):
    """How the lifecycle reacts to a closed connection."""

    TERMINAL = "terminal"
    TRANSIENT = "transient"
    RESTART_REQUIRED = "restart_required"
    UNKNOWN = "unknown"


_KINDS: dict[DisconnectCode, DisconnectKind] = {
    DisconnectCode.LOGGED_OUT: DisconnectKind.TERMINAL,
    DisconnectCode.BAD_SESSION: DisconnectKind.TERMINAL,
    DisconnectCode.FORBIDDEN: DisconnectKind.TERMINAL,
    DisconnectCode.MULTIDEVICE_MISMATCH: DisconnectKind.TERMINAL,
    DisconnectCode.CONNECTION_REPLACED: DisconnectKind.TERMINAL,
    DisconnectCode.CONNECTION_LOST: DisconnectKind.TRANSIENT,
    DisconnectCode.CONNECTION_CLOSED: DisconnectKind.TRANSIENT,
    DisconnectCode.UNAVAILABLE_SERVICE: DisconnectKind.TRANSIENT,
    DisconnectCode.RESTART_REQUIRED: DisconnectKind.RESTART_REQUIRED,
}

_TERMINAL_NOTICES: dict[DisconnectCode, tuple[str, str]] = {
    DisconnectCode.FORBIDDEN: (
        "session:forbidden",
        "Account banned or forbidden by the messaging service",
    ),
    DisconnectCode.MULTIDEVICE_MISMATCH: (
        "session:multidevice_error",
        "Multidevice mismatch - please re-authenticate",
    ),
    DisconnectCode.CONNECTION_REPLACED: (
        "session:replaced",
        "Connection replaced by another device",
    ),
}


def to_code(code: int | None) -> DisconnectCode | None:
    """Return the known disconnect code for a raw value, if any."""
    if code is None:
        return None
    try:
        return DisconnectCode(code)
    except ValueError:
        return None


def classify(code: int | None) -> DisconnectKind:
    """Map a raw failure code to its disconnect kind."""
    known = to_code(code)
    if known is None:
        return DisconnectKind.UNKNOWN
    return _KINDS[known]


def reason_name(code: int | None) -> str:
    """Return a readable name for a raw failure code."""
    known = to_code(code)
    if known is None:
        return f"unknown({code})"
    return known.name.lower()


def terminal_notice(code: int | None) -> tuple[str, str]:
    """Return the notification event and message for a terminal close."""
    known = to_code(code)
    if known in _TERMINAL_NOTICES:
        return _TERMINAL_NOTICES[known]
    return "session:terminated", f"Session terminated ({reason_name(code)})"
