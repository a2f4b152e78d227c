"""Sending messages through connected sessions."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime

from session_gateway.domain.errors import (
    SessionNotConnectedError,
    SessionNotFoundError,
    TransportOperationFailedError,
)
from session_gateway.domain.sessions import chat_target
from session_gateway.services.notifier import Notifier
from session_gateway.services.registry import SessionRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TypingDelay:
    """Pause shown as "typing" before a message goes out."""

    per_char_ms: int = 60
    min_ms: int = 1500
    max_ms: int = 4000

    def seconds_for(self, text: str) -> float:
        millis = min(max(len(text) * self.per_char_ms, self.min_ms), self.max_ms)
        return millis / 1000


@dataclass(frozen=True)
class SentMessage:
    session_id: str
    to: str
    message_id: str


@dataclass
class MessageService:
    """Sends text messages; never changes session state."""

    registry: SessionRegistry
    notifier: Notifier
    typing_delay: TypingDelay = TypingDelay()

    async def send_text(self, session_id: str, number: str, text: str) -> SentMessage:
        """Send ``text`` to ``number`` through a connected session."""
        live = self.registry.get(session_id)
        if live is None:
            raise SessionNotFoundError(session_id)
        if not live.record.is_connected:
            raise SessionNotConnectedError(session_id, str(live.record.status))

        target = chat_target(number)
        handle = live.handle
        try:
            await handle.send_presence("composing", target)
            await asyncio.sleep(self.typing_delay.seconds_for(text))
            message_id = await handle.send_message(target, text)
            await handle.send_presence("paused", target)
        except Exception as exc:
            logger.exception(
                "Send message failed", extra={"session_id": session_id}
            )
            self.notifier.emit(
                session_id,
                "message:error",
                {"sessionId": session_id, "error": str(exc)},
            )
            raise TransportOperationFailedError(str(exc)) from exc

        self.notifier.emit(
            session_id,
            "message:sent",
            {
                "sessionId": session_id,
                "to": number,
                "message": text,
                "messageId": message_id,
                "timestamp": datetime.now(tz=UTC).isoformat(),
            },
        )
        return SentMessage(session_id=session_id, to=number, message_id=message_id)
