"""Periodic reaping of sessions stuck in a pending state."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import timedelta

from session_gateway.services.supervisor import LifecycleSupervisor

logger = logging.getLogger(__name__)


@dataclass
class ExpirySweeper:
    """Kills pending sessions older than ``max_age`` on a fixed interval."""

    supervisor: LifecycleSupervisor
    max_age: timedelta = timedelta(minutes=2)
    interval_seconds: float = 30.0
    _task: asyncio.Task[None] | None = field(default=None, init=False, repr=False)

    async def sweep_once(self) -> list[str]:
        """Expire overdue pending sessions and return their ids."""
        now = self.supervisor.clock()
        candidates = [
            record
            for record in self.supervisor.list_status()
            if record.is_expired(now, self.max_age)
        ]
        if not candidates:
            return []
        results = await asyncio.gather(
            *(
                self.supervisor.expire(record.id, record.generation, self.max_age)
                for record in candidates
            ),
            return_exceptions=True,
        )
        expired: list[str] = []
        for record, result in zip(candidates, results, strict=True):
            if isinstance(result, BaseException):
                logger.error(
                    "Failed to expire session",
                    exc_info=result,
                    extra={"session_id": record.id},
                )
            elif result:
                expired.append(record.id)
        return expired

    async def run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.sweep_once()
            except Exception:
                logger.exception("Expiry sweep failed")

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
