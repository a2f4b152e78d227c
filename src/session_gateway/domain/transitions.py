"""Pure session state transitions.

Each transition takes the current record and an event and returns the next
record (``None`` once the session is gone) plus the side effects the
supervisor has to carry out. Nothing here touches I/O, timers or the
registry.
"""

from dataclasses import dataclass
from datetime import datetime

from session_gateway.domain.disconnects import (
    DisconnectCode,
    DisconnectKind,
    classify,
    reason_name,
    terminal_notice,
)
from session_gateway.domain.sessions import (
    PendingRestart,
    SessionRecord,
    SessionStatus,
)

MAX_RECONNECT_REASON = "max reconnect attempts reached"
RECONNECT_FAILED_REASON = "reconnect_failed"


@dataclass(frozen=True)
class ReconnectPolicy:
    """Backoff settings for reconnecting after a dropped connection."""

    max_attempts: int = 5
    base_seconds: float = 2.0
    unavailable_base_seconds: float = 5.0
    max_backoff_seconds: float = 30.0
    restart_delay_seconds: float = 2.0

    def backoff_seconds(self, attempts: int, code: int | None) -> float:
        """Return the delay before reconnect attempt number ``attempts``."""
        base = (
            self.unavailable_base_seconds
            if code == DisconnectCode.UNAVAILABLE_SERVICE
            else self.base_seconds
        )
        return min(attempts * base, self.max_backoff_seconds)


@dataclass(frozen=True)
class Notify:
    event: str
    payload: dict[str, object]


@dataclass(frozen=True)
class PublishQr:
    """Render a QR payload and send it to the session's observers."""

    payload: str


@dataclass(frozen=True)
class Broadcast:
    pass


@dataclass(frozen=True)
class PurgeCredentials:
    pass


@dataclass(frozen=True)
class ScheduleRestart:
    delay_seconds: float


@dataclass(frozen=True)
class Destroy:
    """Release the transport and drop the record without a kill notice."""

    reason: str


@dataclass(frozen=True)
class Kill:
    """Run the full kill path: notice, logout, purge and removal."""

    reason: str


Effect = (
    Notify | PublishQr | Broadcast | PurgeCredentials | ScheduleRestart | Destroy | Kill
)


@dataclass(frozen=True)
class Transition:
    record: SessionRecord | None
    effects: tuple[Effect, ...] = ()


def apply_qr(record: SessionRecord, payload: str) -> Transition:
    """Store a scannable payload while waiting for a QR scan."""
    if record.status is not SessionStatus.PENDING_QR:
        return Transition(record)
    updated = record.evolve(qr_payload=payload, pairing_code=None)
    return Transition(updated, (PublishQr(payload), Broadcast()))


def apply_pairing_code(record: SessionRecord, code: str) -> Transition:
    """Store a pairing code while waiting for the pairing handshake."""
    if record.status is not SessionStatus.PENDING_PAIRING:
        return Transition(record)
    updated = record.evolve(pairing_code=code, qr_payload=None)
    return Transition(
        updated,
        (
            Notify("pairing:code", {"sessionId": record.id, "code": code}),
            Broadcast(),
        ),
    )


def apply_open(
    record: SessionRecord, now: datetime, account_id: str | None
) -> Transition:
    """Mark the session connected and close the outage episode."""
    updated = record.evolve(
        status=SessionStatus.CONNECTED,
        connected_at=now,
        created_at=now,
        qr_payload=None,
        pairing_code=None,
        account_id=account_id or record.account_id,
        reconnect_attempts=0,
        pending_restart=None,
    )
    return Transition(
        updated,
        (
            Notify(
                "session:connected",
                {"sessionId": record.id, "phoneNumber": updated.account_phone},
            ),
            Broadcast(),
        ),
    )


def apply_close(
    record: SessionRecord, code: int | None, policy: ReconnectPolicy
) -> Transition:
    """Decide what a closed connection means for the session."""
    if record.is_reconnecting:
        return Transition(record)

    kind = classify(code)
    if kind is DisconnectKind.TERMINAL:
        event, message = terminal_notice(code)
        return Transition(
            None,
            (
                PurgeCredentials(),
                Notify(
                    event,
                    {
                        "sessionId": record.id,
                        "reason": reason_name(code),
                        "message": message,
                    },
                ),
                Destroy(f"terminal_{reason_name(code)}"),
            ),
        )

    if kind is DisconnectKind.TRANSIENT:
        return _backoff(record, reason_name(code), code, policy)

    if kind is DisconnectKind.RESTART_REQUIRED:
        delay = policy.restart_delay_seconds
        updated = record.evolve(
            pending_restart=PendingRestart(
                reason=reason_name(code), delay_seconds=delay
            )
        )
        return Transition(updated, (ScheduleRestart(delay),))

    # TODO: unknown codes leave the session in place; decide whether a single
    # bounded retry should be added once real-world codes are collected.
    return Transition(record)


def apply_reconnect_failed(
    record: SessionRecord, policy: ReconnectPolicy
) -> Transition:
    """Count a reconnect that could not open a transport against the episode."""
    return _backoff(record, RECONNECT_FAILED_REASON, None, policy, Broadcast())


def _backoff(
    record: SessionRecord,
    reason: str,
    code: int | None,
    policy: ReconnectPolicy,
    *extra: Effect,
) -> Transition:
    attempts = record.reconnect_attempts + 1
    if attempts > policy.max_attempts:
        return Transition(
            record.evolve(reconnect_attempts=attempts, pending_restart=None),
            (Kill(MAX_RECONNECT_REASON),),
        )
    delay = policy.backoff_seconds(attempts, code)
    updated = record.evolve(
        reconnect_attempts=attempts,
        pending_restart=PendingRestart(reason=reason, delay_seconds=delay),
    )
    return Transition(updated, (ScheduleRestart(delay), *extra))
