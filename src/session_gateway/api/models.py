"""Pydantic models for API payloads."""

from typing import Any

from pydantic import AliasChoices, BaseModel, Field


class SendMessageRequest(BaseModel):
    """Body of ``POST /send-message``; fields are checked by the route."""

    session_id: str | None = Field(
        default=None, validation_alias=AliasChoices("sessionId", "session_id")
    )
    number: str | None = None
    message: str | None = None


class BridgeEvent(BaseModel):
    """Event posted by the protocol bridge for one of its connections."""

    connection_id: str = Field(
        validation_alias=AliasChoices("connectionId", "connection_id")
    )
    type: str
    payload: dict[str, Any] = Field(default_factory=dict)


class ClientCommand(BaseModel):
    """Message sent by a WebSocket client."""

    type: str
    session_id: str | None = Field(
        default=None, validation_alias=AliasChoices("sessionId", "session_id")
    )
