"""Fan-out of session events to subscribers."""

import asyncio
import logging
from collections.abc import AsyncIterator, Iterable
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

SESSIONS_UPDATE = "sessions:update"


@dataclass(frozen=True)
class SessionEvent:
    """One notification delivered to subscribers."""

    event: str
    data: object
    session_id: str | None = None

    def to_message(self) -> dict[str, object]:
        return {"event": self.event, "data": self.data}


@dataclass(eq=False)
class Subscription:
    """A bounded queue of events for one subscriber."""

    notifier: "Notifier"
    session_id: str | None
    queue: asyncio.Queue[SessionEvent]
    closed: bool = False

    def push(self, event: SessionEvent) -> bool:
        """Queue an event without blocking; drop it when the queue is full."""
        if self.closed:
            return False
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(
                "Dropping event for slow subscriber",
                extra={"event": event.event, "session_id": self.session_id},
            )
            return False
        return True

    async def get(self) -> SessionEvent:
        return await self.queue.get()

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.notifier.unsubscribe(self)

    async def __aiter__(self) -> AsyncIterator[SessionEvent]:
        while not self.closed:
            yield await self.queue.get()


@dataclass
class Notifier:
    """Delivers per-session events and global snapshots, best effort."""

    queue_size: int = 100
    _session_subscribers: dict[str, set[Subscription]] = field(default_factory=dict)
    _global_subscribers: set[Subscription] = field(default_factory=set)

    def subscribe_session(
        self, session_id: str, replay: Iterable[SessionEvent] = ()
    ) -> Subscription:
        """Subscribe to one session's events, starting with ``replay``."""
        subscription = Subscription(
            notifier=self,
            session_id=session_id,
            queue=asyncio.Queue(maxsize=self.queue_size),
        )
        for event in replay:
            subscription.push(event)
        self._session_subscribers.setdefault(session_id, set()).add(subscription)
        return subscription

    def subscribe_global(
        self, initial: SessionEvent | None = None
    ) -> Subscription:
        """Subscribe to the global sessions snapshot."""
        subscription = Subscription(
            notifier=self,
            session_id=None,
            queue=asyncio.Queue(maxsize=self.queue_size),
        )
        if initial is not None:
            subscription.push(initial)
        self._global_subscribers.add(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription.session_id is None:
            self._global_subscribers.discard(subscription)
            return
        subscribers = self._session_subscribers.get(subscription.session_id)
        if subscribers is None:
            return
        subscribers.discard(subscription)
        if not subscribers:
            del self._session_subscribers[subscription.session_id]

    def emit(self, session_id: str, event: str, payload: dict[str, object]) -> None:
        """Send an event to the session's subscribers."""
        message = SessionEvent(event=event, data=payload, session_id=session_id)
        for subscription in list(self._session_subscribers.get(session_id, ())):
            subscription.push(message)
        logger.debug(
            "Emitted session event", extra={"event": event, "session_id": session_id}
        )

    def broadcast(self, entries: list[dict[str, object]]) -> None:
        """Send the global sessions snapshot to global subscribers."""
        message = SessionEvent(event=SESSIONS_UPDATE, data=entries)
        for subscription in list(self._global_subscribers):
            subscription.push(message)

    def subscriber_count(self, session_id: str | None = None) -> int:
        if session_id is None:
            return len(self._global_subscribers)
        return len(self._session_subscribers.get(session_id, ()))
