"""Lifecycle supervision for gateway sessions.

The supervisor is the only writer of session records. Every transition for a
session id runs under that id's lock; different ids proceed independently.
Transport callbacks and timers are bound to the record generation they were
created for, so deliveries for a replaced or destroyed record are dropped.
"""

import asyncio
import itertools
import logging
from collections.abc import Callable, Coroutine, Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from functools import partial
from typing import Any

from session_gateway.adapters.qr_renderer import CodeRenderer
from session_gateway.domain.disconnects import reason_name
from session_gateway.domain.errors import (
    CapacityExceededError,
    SessionNotFoundError,
    TransportOperationFailedError,
)
from session_gateway.domain.sessions import (
    SessionRecord,
    SessionStatus,
    broadcast_entry,
    digits_only,
)
from session_gateway.domain.transitions import (
    Broadcast,
    Destroy,
    Kill,
    Notify,
    PublishQr,
    PurgeCredentials,
    ReconnectPolicy,
    ScheduleRestart,
    Transition,
    apply_close,
    apply_open,
    apply_pairing_code,
    apply_qr,
    apply_reconnect_failed,
)
from session_gateway.domain.transport import ConnectionUpdate
from session_gateway.services.credentials import CredentialStore
from session_gateway.services.keyed_lock import KeyedLock
from session_gateway.services.notifier import (
    SESSIONS_UPDATE,
    Notifier,
    SessionEvent,
    Subscription,
)
from session_gateway.services.registry import LiveSession, SessionRegistry
from session_gateway.services.transport import TransportProvider

logger = logging.getLogger(__name__)

PENDING_EXPIRED_REASON = "pending expired"


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


@dataclass
class LifecycleSupervisor:
    """Starts, restarts and destroys sessions and keeps observers informed."""

    registry: SessionRegistry
    notifier: Notifier
    transport: TransportProvider
    credential_store: CredentialStore
    renderer: CodeRenderer
    policy: ReconnectPolicy = field(default_factory=ReconnectPolicy)
    max_sessions: int = 50
    pairing_code_delay_seconds: float = 1.2
    clock: Callable[[], datetime] = _utcnow
    _locks: KeyedLock = field(default_factory=KeyedLock, init=False, repr=False)
    _generations: Iterator[int] = field(
        default_factory=lambda: itertools.count(1), init=False, repr=False
    )
    _tasks: set[asyncio.Task[None]] = field(
        default_factory=set, init=False, repr=False
    )
    _reserved: set[str] = field(default_factory=set, init=False, repr=False)

    async def start(
        self, session_id: str, phone_number: str | None = None, force: bool = False
    ) -> SessionRecord:
        """Start a session, or return the existing one unless ``force`` is set."""
        async with self._locks.hold(session_id):
            return await self._start_locked(session_id, phone_number, force=force)

    async def refresh(self, session_id: str) -> SessionRecord:
        """Force a fresh connection for an existing session."""
        async with self._locks.hold(session_id):
            live = self.registry.get(session_id)
            if live is None:
                raise SessionNotFoundError(session_id)
            logger.info(
                "Manual refresh session_id=%s",
                session_id,
                extra={"session_id": session_id},
            )
            return await self._start_locked(
                session_id, live.record.phone_number, force=True
            )

    async def kill(self, session_id: str, reason: str = "manual_kill") -> bool:
        """Destroy a session and its persisted credentials."""
        async with self._locks.hold(session_id):
            live = self.registry.get(session_id)
            if live is None:
                return False
            await self._kill_locked(live, reason)
            return True

    async def logout(self, session_id: str) -> bool:
        """Log a session out on the service side and remove it immediately."""
        async with self._locks.hold(session_id):
            live = self.registry.get(session_id)
            if live is None:
                return False
            logger.info(
                "Logging out session session_id=%s",
                session_id,
                extra={"session_id": session_id},
            )
            live.cancel_timers()
            try:
                await live.handle.logout()
            except Exception:
                logger.warning(
                    "Transport logout failed",
                    exc_info=True,
                    extra={"session_id": session_id},
                )
            await self._purge(session_id)
            await self._end_transport(live)
            self.notifier.emit(
                session_id, "session:logged_out", {"sessionId": session_id}
            )
            self._remove(live)
            return True

    async def expire(
        self, session_id: str, generation: int, max_age: timedelta
    ) -> bool:
        """Kill a pending session that outlived ``max_age``."""
        async with self._locks.hold(session_id):
            live = self.registry.current(session_id, generation)
            if live is None or not live.record.is_expired(self.clock(), max_age):
                return False
            age = self.clock() - live.record.created_at
            logger.info(
                "Pending session expired session_id=%s status=%s age_seconds=%s",
                session_id,
                live.record.status,
                round(age.total_seconds()),
                extra={
                    "session_id": session_id,
                    "status": str(live.record.status),
                    "age_seconds": round(age.total_seconds()),
                },
            )
            await self._kill_locked(live, PENDING_EXPIRED_REASON)
            return True

    def get_status(self, session_id: str) -> SessionRecord:
        live = self.registry.get(session_id)
        if live is None:
            raise SessionNotFoundError(session_id)
        return live.record

    def list_status(self) -> list[SessionRecord]:
        return self.registry.records()

    def subscribe(self, session_id: str) -> Subscription:
        """Subscribe to a session, replaying any pending QR or pairing code."""
        replay: list[SessionEvent] = []
        live = self.registry.get(session_id)
        if live is not None and live.record.qr_payload is not None:
            rendered = self._render(session_id, live.record.qr_payload)
            if rendered is not None:
                replay.append(
                    SessionEvent(
                        event="qr:update",
                        data=_qr_payload(session_id, rendered),
                        session_id=session_id,
                    )
                )
        if live is not None and live.record.pairing_code is not None:
            replay.append(
                SessionEvent(
                    event="pairing:code",
                    data={"sessionId": session_id, "code": live.record.pairing_code},
                    session_id=session_id,
                )
            )
        return self.notifier.subscribe_session(session_id, replay)

    def subscribe_all(self) -> Subscription:
        """Subscribe to global snapshots, starting with the current one."""
        return self.notifier.subscribe_global(
            SessionEvent(event=SESSIONS_UPDATE, data=self.snapshot())
        )

    def snapshot(self) -> list[dict[str, object]]:
        return [broadcast_entry(record) for record in self.registry.records()]

    async def wait_for_credentials(
        self, session_id: str, timeout: float
    ) -> SessionRecord | None:
        """Wait until a session has a QR, a pairing code or is connected."""
        subscription = self.notifier.subscribe_session(session_id)
        try:
            async with asyncio.timeout(timeout):
                while True:
                    live = self.registry.get(session_id)
                    if live is None:
                        return None
                    if live.record.has_artifact or live.record.is_connected:
                        return live.record
                    await subscription.get()
        except TimeoutError:
            live = self.registry.get(session_id)
            return live.record if live is not None else None
        finally:
            subscription.close()

    def image_for(self, record: SessionRecord) -> str | None:
        """Return the rendered QR for a record, if it has one."""
        if record.qr_payload is None:
            return None
        return self._render(record.id, record.qr_payload)

    async def shutdown(self) -> None:
        """Close every transport without touching persisted credentials."""
        for live in self.registry.clear():
            live.cancel_timers()
            await self._end_transport(live)
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._broadcast()

    async def _start_locked(
        self,
        session_id: str,
        phone_number: str | None,
        *,
        force: bool,
        reconnect_attempts: int = 0,
    ) -> SessionRecord:
        existing = self.registry.get(session_id)
        if existing is not None and not force:
            logger.info(
                "Session already running, skipping start",
                extra={"session_id": session_id, "status": str(existing.record.status)},
            )
            return existing.record
        if existing is None and self._occupied() >= self.max_sessions:
            logger.warning(
                "Max sessions reached session_id=%s max_sessions=%s",
                session_id,
                self.max_sessions,
                extra={"session_id": session_id, "max_sessions": self.max_sessions},
            )
            raise CapacityExceededError(self.max_sessions)
        if existing is not None:
            logger.info(
                "Force restarting session session_id=%s",
                session_id,
                extra={"session_id": session_id},
            )
            existing.cancel_timers()
            self.registry.remove(existing)

        # Holds the slot until the new record is registered.
        self._reserved.add(session_id)
        try:
            if existing is not None:
                await self._end_transport(existing)
            credentials = await self.credential_store.load(session_id)
            handle = await self.transport.connect(session_id, credentials.state)
        except Exception as exc:
            logger.exception(
                "Failed to open transport session_id=%s",
                session_id,
                extra={"session_id": session_id},
            )
            if existing is not None:
                self._broadcast()
            raise TransportOperationFailedError(str(exc)) from exc
        finally:
            self._reserved.discard(session_id)

        record = SessionRecord.pending(
            session_id,
            generation=next(self._generations),
            now=self.clock(),
            phone_number=phone_number,
            reconnect_attempts=reconnect_attempts,
        )
        live = LiveSession(record=record, handle=handle, credentials=credentials)
        self.registry.add(live)
        handle.on_credentials_update(
            partial(self._on_credentials_update, session_id, record.generation)
        )
        handle.on_connection_update(
            partial(self._on_connection_update, session_id, record.generation)
        )
        needs_pairing_code = (
            record.status is SessionStatus.PENDING_PAIRING
            and not credentials.registered
        )
        if needs_pairing_code:
            self._schedule(
                live,
                self.pairing_code_delay_seconds,
                partial(self._request_pairing_code, session_id, record.generation),
            )
        logger.info(
            "Session started session_id=%s status=%s generation=%s",
            session_id,
            record.status,
            record.generation,
            extra={
                "session_id": session_id,
                "status": str(record.status),
                "generation": record.generation,
            },
        )
        self._broadcast()
        return record

    async def _on_credentials_update(
        self, session_id: str, generation: int, update: dict[str, object]
    ) -> None:
        live = self.registry.current(session_id, generation)
        if live is None:
            return
        try:
            await live.credentials.save(update)
        except Exception:
            logger.exception(
                "Failed to persist credential update",
                extra={"session_id": session_id},
            )

    async def _on_connection_update(
        self, session_id: str, generation: int, update: ConnectionUpdate
    ) -> None:
        async with self._locks.hold(session_id):
            live = self.registry.current(session_id, generation)
            if live is None:
                logger.debug(
                    "Ignoring update for replaced session",
                    extra={"session_id": session_id, "generation": generation},
                )
                return
            if update.qr:
                await self._apply(live, apply_qr(live.record, update.qr))
            if update.is_open:
                logger.info(
                    "Session connected session_id=%s",
                    session_id,
                    extra={"session_id": session_id},
                )
                live.cancel_timers()
                account_id = update.account_id or live.handle.account_id
                await self._apply(
                    live, apply_open(live.record, self.clock(), account_id)
                )
            elif update.is_close:
                logger.info(
                    "Session closed session_id=%s code=%s reason=%s reconnecting=%s",
                    session_id,
                    update.disconnect_code,
                    reason_name(update.disconnect_code),
                    live.record.is_reconnecting,
                    extra={
                        "session_id": session_id,
                        "code": update.disconnect_code,
                        "reason": reason_name(update.disconnect_code),
                        "detail": update.disconnect_reason,
                        "reconnecting": live.record.is_reconnecting,
                    },
                )
                await self._apply(
                    live,
                    apply_close(live.record, update.disconnect_code, self.policy),
                )

    async def _request_pairing_code(self, session_id: str, generation: int) -> None:
        live = self.registry.current(session_id, generation)
        if live is None or live.record.status is not SessionStatus.PENDING_PAIRING:
            return
        digits = digits_only(live.record.phone_number or "")
        try:
            code = await live.handle.request_pairing_code(digits)
        except Exception as exc:
            logger.warning(
                "Pairing code request failed",
                exc_info=True,
                extra={"session_id": session_id},
            )
            self.notifier.emit(
                session_id,
                "pairing:error",
                {"sessionId": session_id, "error": str(exc)},
            )
            return
        async with self._locks.hold(session_id):
            live = self.registry.current(session_id, generation)
            if live is None:
                return
            await self._apply(live, apply_pairing_code(live.record, code))

    async def _restart(self, session_id: str, generation: int) -> None:
        async with self._locks.hold(session_id):
            live = self.registry.current(session_id, generation)
            if live is None or not live.record.is_reconnecting:
                return
            record = live.record.evolve(pending_restart=None)
            live.record = record
            logger.info(
                "Reconnecting session session_id=%s attempt=%s max_attempts=%s",
                session_id,
                record.reconnect_attempts,
                self.policy.max_attempts,
                extra={
                    "session_id": session_id,
                    "attempt": record.reconnect_attempts,
                    "max_attempts": self.policy.max_attempts,
                },
            )
            try:
                await self._start_locked(
                    session_id,
                    record.phone_number,
                    force=True,
                    reconnect_attempts=record.reconnect_attempts,
                )
            except TransportOperationFailedError:
                logger.warning(
                    "Reconnect failed session_id=%s attempt=%s",
                    session_id,
                    record.reconnect_attempts,
                    extra={"session_id": session_id},
                )
                if self.registry.get(session_id) is None:
                    self.registry.add(live)
                await self._apply(live, apply_reconnect_failed(record, self.policy))

    async def _apply(self, live: LiveSession, transition: Transition) -> None:
        """Store the new record and carry out the transition's effects."""
        if transition.record is not None:
            live.record = transition.record
        session_id = live.id
        for effect in transition.effects:
            if isinstance(effect, Notify):
                self.notifier.emit(session_id, effect.event, effect.payload)
            elif isinstance(effect, PublishQr):
                rendered = self._render(session_id, effect.payload)
                if rendered is not None:
                    self.notifier.emit(
                        session_id, "qr:update", _qr_payload(session_id, rendered)
                    )
            elif isinstance(effect, Broadcast):
                self._broadcast()
            elif isinstance(effect, PurgeCredentials):
                await self._purge(session_id)
            elif isinstance(effect, ScheduleRestart):
                logger.info(
                    "Scheduling reconnect session_id=%s delay_seconds=%s attempt=%s",
                    session_id,
                    effect.delay_seconds,
                    live.record.reconnect_attempts,
                    extra={
                        "session_id": session_id,
                        "delay_seconds": effect.delay_seconds,
                        "attempt": live.record.reconnect_attempts,
                    },
                )
                self._schedule(
                    live,
                    effect.delay_seconds,
                    partial(self._restart, session_id, live.generation),
                )
            elif isinstance(effect, Destroy):
                logger.info(
                    "Destroying session session_id=%s reason=%s",
                    session_id,
                    effect.reason,
                    extra={"session_id": session_id, "reason": effect.reason},
                )
                live.cancel_timers()
                await self._end_transport(live)
                self._remove(live)
            elif isinstance(effect, Kill):
                await self._kill_locked(live, effect.reason)

    async def _kill_locked(self, live: LiveSession, reason: str) -> None:
        session_id = live.id
        logger.info(
            "Killing session session_id=%s reason=%s",
            session_id,
            reason,
            extra={"session_id": session_id, "reason": reason},
        )
        self.notifier.emit(
            session_id, "session:killed", {"sessionId": session_id, "reason": reason}
        )
        live.cancel_timers()
        try:
            await live.handle.logout()
        except Exception:
            logger.debug(
                "Transport logout during kill failed",
                exc_info=True,
                extra={"session_id": session_id},
            )
        await self._end_transport(live)
        await self._purge(session_id)
        self._remove(live)

    def _remove(self, live: LiveSession) -> None:
        if self.registry.remove(live):
            self._broadcast()

    async def _end_transport(self, live: LiveSession) -> None:
        try:
            await live.handle.end()
        except Exception:
            logger.warning(
                "Error ending transport", exc_info=True, extra={"session_id": live.id}
            )

    async def _purge(self, session_id: str) -> None:
        try:
            await self.credential_store.purge(session_id)
        except Exception:
            logger.warning(
                "Credential cleanup failed",
                exc_info=True,
                extra={"session_id": session_id},
            )

    def _render(self, session_id: str, payload: str) -> str | None:
        try:
            return self.renderer.to_data_url(payload)
        except Exception:
            logger.warning(
                "QR rendering failed", exc_info=True, extra={"session_id": session_id}
            )
            return None

    def _occupied(self) -> int:
        """Registered sessions plus slots held by starts still connecting."""
        return len(self.registry) + len(self._reserved)

    def _broadcast(self) -> None:
        self.notifier.broadcast(self.snapshot())

    def _schedule(
        self,
        live: LiveSession,
        delay: float,
        action: Callable[[], Coroutine[Any, Any, None]],
    ) -> None:
        loop = asyncio.get_running_loop()

        def fire() -> None:
            live.timers.discard(timer)
            self._spawn(action())

        timer = loop.call_later(delay, fire)
        live.timers.add(timer)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)


def _qr_payload(session_id: str, rendered: str) -> dict[str, object]:
    return {"sessionId": session_id, "qr": rendered}
