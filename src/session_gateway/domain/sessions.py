"""Domain models for gateway sessions."""

import re
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import StrEnum

_NON_DIGITS = re.compile(r"\D")
CHAT_TARGET_SUFFIX = "@s.whatsapp.net"


class SessionStatus(StrEnum):
    """Lifecycle status of a session."""

    PENDING_QR = "pending_qr"
    PENDING_PAIRING = "pending_pairing"
    CONNECTED = "connected"


@dataclass(frozen=True)
class PendingRestart:
    """Marks an outage episode with a restart already scheduled."""

    reason: str
    delay_seconds: float


@dataclass(frozen=True)
class SessionRecord:
    """Snapshot of one session's lifecycle state."""

    id: str
    status: SessionStatus
    generation: int
    created_at: datetime
    phone_number: str | None = None
    qr_payload: str | None = None
    pairing_code: str | None = None
    connected_at: datetime | None = None
    account_id: str | None = None
    reconnect_attempts: int = 0
    pending_restart: PendingRestart | None = None

    @classmethod
    def pending(  # noqa: PLR0913
        cls,
        session_id: str,
        generation: int,
        now: datetime,
        phone_number: str | None = None,
        reconnect_attempts: int = 0,
    ) -> "SessionRecord":
        """Create a fresh pending record for a new transport connection."""
        status = (
            SessionStatus.PENDING_PAIRING if phone_number else SessionStatus.PENDING_QR
        )
        return cls(
            id=session_id,
            status=status,
            generation=generation,
            created_at=now,
            phone_number=phone_number,
            reconnect_attempts=reconnect_attempts,
        )

    @property
    def is_pending(self) -> bool:
        return self.status is not SessionStatus.CONNECTED

    @property
    def is_connected(self) -> bool:
        return self.status is SessionStatus.CONNECTED

    @property
    def is_reconnecting(self) -> bool:
        return self.pending_restart is not None

    @property
    def has_artifact(self) -> bool:
        """Return true when a QR payload or pairing code is waiting."""
        return self.qr_payload is not None or self.pairing_code is not None

    @property
    def account_phone(self) -> str | None:
        return account_phone(self.account_id)

    def evolve(self, **changes: object) -> "SessionRecord":
        """Return a copy of the record with the given fields replaced."""
        return replace(self, **changes)  # type: ignore[arg-type]

    def expires_at(self, max_age: timedelta) -> datetime | None:
        """Return when a pending record expires; connected records never do."""
        if not self.is_pending:
            return None
        return self.created_at + max_age

    def is_expired(self, now: datetime, max_age: timedelta) -> bool:
        return self.is_pending and now - self.created_at > max_age


def digits_only(phone_number: str) -> str:
    """Strip everything except digits from a phone number."""
    return _NON_DIGITS.sub("", phone_number)


def chat_target(number: str) -> str:
    """Build the transport chat address for a phone number."""
    return f"{digits_only(number)}{CHAT_TARGET_SUFFIX}"


def account_phone(account_id: str | None) -> str | None:
    """Extract the phone part of an account id like ``15550100:12@host``."""
    if not account_id:
        return None
    return account_id.split(":", maxsplit=1)[0].split("@", maxsplit=1)[0]


def broadcast_entry(record: SessionRecord) -> dict[str, object]:
    """Build the global snapshot entry for one session."""
    return {
        "id": record.id,
        "status": str(record.status),
        "connected": record.is_connected,
        "hasQR": record.qr_payload is not None,
        "hasPairingCode": record.pairing_code is not None,
        "phoneNumber": record.account_phone,
    }
