"""Transport event models."""

from dataclasses import dataclass

CONNECTION_OPEN = "open"
CONNECTION_CLOSE = "close"


@dataclass(frozen=True)
class ConnectionUpdate:
    """A connection state change reported by the transport."""

    connection: str | None = None
    qr: str | None = None
    disconnect_code: int | None = None
    disconnect_reason: str | None = None
    account_id: str | None = None

    @property
    def is_open(self) -> bool:
        return self.connection == CONNECTION_OPEN

    @property
    def is_close(self) -> bool:
        return self.connection == CONNECTION_CLOSE
