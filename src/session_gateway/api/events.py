"""Transport webhook and live event stream."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from fastapi import (
    APIRouter,
    Depends,
    Header,
    HTTPException,
    Request,
    WebSocket,
    WebSocketDisconnect,
    status,
)
from pydantic import ValidationError

from session_gateway.api.models import BridgeEvent, ClientCommand

if TYPE_CHECKING:
    from session_gateway.containers import AppContainer
    from session_gateway.services.notifier import Subscription

logger = logging.getLogger(__name__)

SUBSCRIBE_SESSION = "subscribe:session"

router = APIRouter(tags=["events"])


def _get_bridge_token(request: Request) -> str | None:
    container: AppContainer = request.app.state.container
    return container.settings.bridge_token


async def require_bridge_token(
    x_bridge_token: str | None = Header(default=None),
    bridge_token: str | None = Depends(_get_bridge_token),
) -> None:
    """Ensure webhook calls come from the configured bridge."""
    if bridge_token is None:
        return
    if not x_bridge_token or x_bridge_token != bridge_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)


@router.post("/transport/events", dependencies=[Depends(require_bridge_token)])
async def transport_event(event: BridgeEvent, request: Request) -> dict[str, object]:
    """Deliver a bridge event to the connection it belongs to."""
    container: AppContainer = request.app.state.container
    delivered = await container.bridge.dispatch(
        event.connection_id, event.type, event.payload
    )
    return {"status": "ok", "delivered": delivered}


@router.websocket("/ws")
async def event_stream(websocket: WebSocket) -> None:
    """Stream global snapshots and subscribed session events to a client."""
    container: AppContainer = websocket.app.state.container
    api_token = container.settings.api_token
    if api_token is not None and websocket.query_params.get("token") != api_token:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    await websocket.accept()
    subscriptions: list[Subscription] = []
    forwarders: list[asyncio.Task[None]] = []

    def attach(subscription: Subscription) -> None:
        subscriptions.append(subscription)
        forwarders.append(asyncio.create_task(_forward(websocket, subscription)))

    attach(container.supervisor.subscribe_all())
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                command = ClientCommand.model_validate_json(raw)
            except ValidationError:
                logger.debug("Ignoring malformed client message")
                continue
            if command.type == SUBSCRIBE_SESSION and command.session_id:
                logger.info(
                    "Client subscribed to session",
                    extra={"session_id": command.session_id},
                )
                attach(container.supervisor.subscribe(command.session_id))
    except WebSocketDisconnect:
        logger.debug("Client disconnected")
    finally:
        for subscription in subscriptions:
            subscription.close()
        for forwarder in forwarders:
            forwarder.cancel()
        await asyncio.gather(*forwarders, return_exceptions=True)


async def _forward(websocket: WebSocket, subscription: Subscription) -> None:
    async for event in subscription:
        await websocket.send_json(event.to_message())
