"""FastAPI application factory."""

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from session_gateway.api.events import router as events_router
from session_gateway.api.sessions import router as sessions_router
from session_gateway.app_logging import configure_logging
from session_gateway.config import parse_cors_origins
from session_gateway.containers import AppContainer


def create_app(container: AppContainer) -> FastAPI:
    """Create a FastAPI app configured with dependencies."""
    configure_logging(container.settings.log_level)
    logger = logging.getLogger(__name__)
    started = time.monotonic()

    async def restore_sessions() -> None:
        try:
            await container.restore.restore()
        except Exception:
            logger.exception("Session restore failed")

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        state_container: AppContainer = app.state.container
        restore_task = asyncio.create_task(restore_sessions())
        state_container.sweeper.start()
        logger.info(
            "Session gateway started",
            extra={
                "environment": state_container.settings.environment,
                "max_sessions": state_container.settings.max_sessions,
            },
        )
        yield
        restore_task.cancel()
        await asyncio.gather(restore_task, return_exceptions=True)
        await state_container.sweeper.stop()
        await state_container.supervisor.shutdown()
        await state_container.close_resources()

    app = FastAPI(lifespan=lifespan)
    app.state.container = container
    app.add_middleware(
        CORSMiddleware,
        allow_origins=parse_cors_origins(container.settings.cors_origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(sessions_router)
    app.include_router(events_router)

    @app.get("/health")
    async def health(request: Request) -> dict[str, object]:
        """Health check with session counts."""
        state_container: AppContainer = request.app.state.container
        records = state_container.supervisor.list_status()
        return {
            "status": "ok",
            "uptimeSeconds": round(time.monotonic() - started, 1),
            "sessions": len(records),
            "connected": sum(1 for record in records if record.is_connected),
            "maxSessions": state_container.settings.max_sessions,
        }

    return app
