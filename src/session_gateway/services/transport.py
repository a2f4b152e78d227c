"""Messaging transport port."""

from collections.abc import Awaitable, Callable
from typing import Protocol

from session_gateway.domain.transport import ConnectionUpdate

CredentialsListener = Callable[[dict[str, object]], Awaitable[None]]
ConnectionListener = Callable[[ConnectionUpdate], Awaitable[None]]


class TransportHandle(Protocol):
    """A single live protocol connection for one session."""

    @property
    def account_id(self) -> str | None:
        """Return the authenticated account id, once known."""

    def on_credentials_update(self, listener: CredentialsListener) -> None:
        """Register a listener for updated credential material."""

    def on_connection_update(self, listener: ConnectionListener) -> None:
        """Register a listener for connection state changes."""

    async def request_pairing_code(self, phone_digits: str) -> str:
        """Request a pairing code for a digits-only phone number."""

    async def send_message(self, target: str, text: str) -> str:
        """Send a text message and return its id."""

    async def send_presence(self, state: str, target: str) -> None:
        """Send a presence update such as ``composing``."""

    async def logout(self) -> None:
        """Invalidate the connection's credentials on the service side."""

    async def end(self) -> None:
        """Close the connection without logging out."""


class TransportProvider(Protocol):
    """Factory for transport connections."""

    async def connect(
        self, session_id: str, state: dict[str, object]
    ) -> TransportHandle:
        """Open a new connection for a session using its credential state."""
