"""In-process registry of live sessions."""

import asyncio
from collections.abc import Iterator
from dataclasses import dataclass, field

from session_gateway.domain.sessions import SessionRecord
from session_gateway.services.credentials import LoadedCredentials
from session_gateway.services.transport import TransportHandle


@dataclass(eq=False)
class LiveSession:
    """Runtime resources owned by one session record."""

    record: SessionRecord
    handle: TransportHandle
    credentials: LoadedCredentials
    timers: set[asyncio.TimerHandle] = field(default_factory=set)

    @property
    def id(self) -> str:
        return self.record.id

    @property
    def generation(self) -> int:
        return self.record.generation

    def cancel_timers(self) -> None:
        """Cancel every scheduled action owned by this session."""
        for timer in self.timers:
            timer.cancel()
        self.timers.clear()


@dataclass
class SessionRegistry:
    """Maps session ids to live sessions; at most one entry per id."""

    _sessions: dict[str, LiveSession] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __iter__(self) -> Iterator[LiveSession]:
        return iter(list(self._sessions.values()))

    def get(self, session_id: str) -> LiveSession | None:
        return self._sessions.get(session_id)

    def current(self, session_id: str, generation: int) -> LiveSession | None:
        """Return the live session only if it is still the given generation."""
        live = self._sessions.get(session_id)
        if live is None or live.generation != generation:
            return None
        return live

    def add(self, live: LiveSession) -> None:
        """Register a live session; the id must not be taken."""
        if live.id in self._sessions:
            raise ValueError(f"Session {live.id} is already registered")
        self._sessions[live.id] = live

    def remove(self, live: LiveSession) -> bool:
        """Remove exactly this live session, if it is still registered."""
        if self._sessions.get(live.id) is not live:
            return False
        del self._sessions[live.id]
        return True

    def records(self) -> list[SessionRecord]:
        return [live.record for live in self._sessions.values()]

    def clear(self) -> list[LiveSession]:
        removed = list(self._sessions.values())
        self._sessions.clear()
        return removed
