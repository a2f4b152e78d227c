"""Re-launching persisted sessions at process start."""

import asyncio
import logging
from dataclasses import dataclass

from session_gateway.domain.errors import CapacityExceededError
from session_gateway.services.credentials import CredentialStore
from session_gateway.services.supervisor import LifecycleSupervisor

logger = logging.getLogger(__name__)


@dataclass
class RestoreOrchestrator:
    """Starts every session that still has persisted credentials."""

    supervisor: LifecycleSupervisor
    credential_store: CredentialStore
    delay_seconds: float = 1.5

    async def restore(self) -> list[str]:
        """Restore persisted sessions one by one and return the restored ids."""
        logger.info("Restoring sessions from credential store")
        session_ids = await self.credential_store.list_session_ids()
        logger.info("Found persisted sessions", extra={"count": len(session_ids)})
        restored: list[str] = []
        for session_id in session_ids:
            if session_id in self.supervisor.registry:
                continue
            if len(self.supervisor.registry) >= self.supervisor.max_sessions:
                logger.warning(
                    "Session capacity reached, stopping restore",
                    extra={"session_id": session_id},
                )
                break
            try:
                await self.supervisor.start(session_id)
            except CapacityExceededError:
                logger.warning(
                    "Session capacity reached, stopping restore",
                    extra={"session_id": session_id},
                )
                break
            except Exception:
                logger.exception(
                    "Failed to restore session", extra={"session_id": session_id}
                )
            else:
                logger.info("Restored session", extra={"session_id": session_id})
                restored.append(session_id)
            await asyncio.sleep(self.delay_seconds)
        logger.info("Session restoration complete", extra={"count": len(restored)})
        return restored
