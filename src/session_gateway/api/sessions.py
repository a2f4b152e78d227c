"""Session control endpoints."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

from session_gateway.api.models import SendMessageRequest
from session_gateway.domain.errors import (
    CapacityExceededError,
    SessionNotConnectedError,
    SessionNotFoundError,
    TransportOperationFailedError,
)

if TYPE_CHECKING:
    from session_gateway.containers import AppContainer
    from session_gateway.domain.sessions import SessionRecord


def _get_api_token(request: Request) -> str | None:
    container: AppContainer = request.app.state.container
    return container.settings.api_token


async def require_api_token(
    x_api_token: str | None = Header(default=None),
    api_token: str | None = Depends(_get_api_token),
) -> None:
    """Ensure requests carry the API token when one is configured."""
    if api_token is None:
        return
    if not x_api_token or x_api_token != api_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)


router = APIRouter(tags=["sessions"], dependencies=[Depends(require_api_token)])


@router.get("/start/{session_id}")
async def start_session(
    session_id: str, request: Request, phone: str | None = None
) -> dict[str, object]:
    """Start a session and wait briefly for a QR code or pairing code."""
    container: AppContainer = request.app.state.container
    try:
        await container.supervisor.start(session_id, phone_number=phone)
    except CapacityExceededError as exc:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=str(exc)
        ) from exc
    except TransportOperationFailedError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)
        ) from exc
    return await _wait_and_describe(container, session_id)


@router.post("/session/{session_id}/refresh")
async def refresh_session(session_id: str, request: Request) -> dict[str, object]:
    """Force a new connection for a session and return its fresh state."""
    container: AppContainer = request.app.state.container
    try:
        await container.supervisor.refresh(session_id)
    except SessionNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)
        ) from exc
    except TransportOperationFailedError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)
        ) from exc
    return await _wait_and_describe(container, session_id)


@router.get("/status")
async def list_sessions(request: Request) -> dict[str, object]:
    """Return every session with aggregate counts."""
    container: AppContainer = request.app.state.container
    records = container.supervisor.list_status()
    now = container.supervisor.clock()
    max_age = _max_age(container)
    connected = sum(1 for record in records if record.is_connected)
    return {
        "total": len(records),
        "connected": connected,
        "pending": len(records) - connected,
        "sessions": [_describe(record, now, max_age) for record in records],
    }


@router.get("/status/{session_id}")
async def session_status(session_id: str, request: Request) -> dict[str, object]:
    """Return one session."""
    container: AppContainer = request.app.state.container
    try:
        record = container.supervisor.get_status(session_id)
    except SessionNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)
        ) from exc
    return _describe(record, container.supervisor.clock(), _max_age(container))


@router.post("/send-message")
async def send_message(
    body: SendMessageRequest, request: Request
) -> dict[str, object]:
    """Send a text message through a connected session."""
    container: AppContainer = request.app.state.container
    if not body.session_id or not body.number or not body.message:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="sessionId, number and message are required",
        )
    try:
        sent = await container.message_service.send_text(
            body.session_id, body.number, body.message
        )
    except SessionNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)
        ) from exc
    except SessionNotConnectedError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)
        ) from exc
    except TransportOperationFailedError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)
        ) from exc
    return {
        "success": True,
        "sessionId": sent.session_id,
        "to": sent.to,
        "messageId": sent.message_id,
    }


@router.delete("/session/{session_id}")
async def delete_session(session_id: str, request: Request) -> dict[str, object]:
    """Kill a session and delete its credentials."""
    container: AppContainer = request.app.state.container
    killed = await container.supervisor.kill(session_id, reason="api_delete")
    if not killed:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Session {session_id} not found",
        )
    return {"success": True, "sessionId": session_id}


@router.get("/logout/{session_id}")
async def logout_session(session_id: str, request: Request) -> dict[str, object]:
    """Log a session out; succeeds whether or not it was running."""
    container: AppContainer = request.app.state.container
    await container.supervisor.logout(session_id)
    return {"success": True, "sessionId": session_id}


async def _wait_and_describe(
    container: AppContainer, session_id: str
) -> dict[str, object]:
    record = await container.supervisor.wait_for_credentials(
        session_id, container.settings.wait_for_credentials_seconds
    )
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Session {session_id} ended before it was ready",
        )
    now = container.supervisor.clock()
    description = _describe(record, now, _max_age(container))
    description["qr"] = container.supervisor.image_for(record)
    return description


def _max_age(container: AppContainer) -> timedelta:
    return timedelta(seconds=container.settings.pending_expire_seconds)


def _describe(
    record: SessionRecord, now: datetime, max_age: timedelta
) -> dict[str, object]:
    expires_at = record.expires_at(max_age)
    expires_in_ms = None
    if expires_at is not None:
        remaining = (expires_at - now).total_seconds() * 1000
        expires_in_ms = max(0, round(remaining))
    return {
        "sessionId": record.id,
        "status": str(record.status),
        "connected": record.is_connected,
        "hasQR": record.qr_payload is not None,
        "hasPairingCode": record.pairing_code is not None,
        "pairingCode": record.pairing_code,
        "phoneNumber": record.account_phone or record.phone_number,
        "createdAt": record.created_at.isoformat(),
        "connectedAt": record.connected_at.isoformat() if record.connected_at else None,
        "expiresAt": expires_at.isoformat() if expires_at else None,
        "expiresInMs": expires_in_ms,
        "reconnectAttempts": record.reconnect_attempts,
    }
