"""Credential persistence port."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Protocol

CredentialSaver = Callable[[dict[str, object]], Awaitable[None]]


@dataclass(frozen=True)
class LoadedCredentials:
    """Credential state for one session plus the callback that persists it."""

    state: dict[str, object]
    save: CredentialSaver

    @property
    def registered(self) -> bool:
        """Return true when the stored identity already completed pairing."""
        creds = self.state.get("creds")
        return isinstance(creds, dict) and bool(creds.get("registered"))


class CredentialStore(Protocol):
    """Key-value persistence for per-session credential material."""

    async def load(self, session_id: str) -> LoadedCredentials:
        """Load the credential state for a session."""

    async def purge(self, session_id: str) -> None:
        """Delete every persisted key belonging to a session."""

    async def list_session_ids(self) -> list[str]:
        """Return ids of sessions with persisted credentials."""
