"""Transport adapter for an external protocol bridge.

The bridge is a sidecar process that speaks the messaging protocol. Commands
go to it over HTTP; connection and credential events come back through the
``/transport/events`` webhook and are dispatched to the matching connection.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from session_gateway.domain.transport import ConnectionUpdate
from session_gateway.services.transport import ConnectionListener, CredentialsListener

logger = logging.getLogger(__name__)

CREDS_UPDATE = "creds.update"
CONNECTION_UPDATE = "connection.update"


def parse_connection_update(payload: dict[str, Any]) -> ConnectionUpdate:
    """Build a connection update from a bridge event payload."""
    last_disconnect = payload.get("lastDisconnect") or {}
    user = payload.get("user") or {}
    code = last_disconnect.get("statusCode")
    return ConnectionUpdate(
        connection=payload.get("connection"),
        qr=payload.get("qr"),
        disconnect_code=int(code) if code is not None else None,
        disconnect_reason=last_disconnect.get("error"),
        account_id=user.get("id"),
    )


@dataclass(eq=False)
class BridgeConnection:
    """One protocol connection held open by the bridge."""

    connection_id: str
    session_id: str
    provider: "HttpxBridgeTransportProvider"
    account_id: str | None = None
    _credential_listeners: list[CredentialsListener] = field(default_factory=list)
    _connection_listeners: list[ConnectionListener] = field(default_factory=list)

    def on_credentials_update(self, listener: CredentialsListener) -> None:
        self._credential_listeners.append(listener)

    def on_connection_update(self, listener: ConnectionListener) -> None:
        self._connection_listeners.append(listener)

    async def dispatch(self, event_type: str, payload: dict[str, Any]) -> None:
        """Deliver a bridge event to the registered listeners."""
        if event_type == CREDS_UPDATE:
            for credentials_listener in list(self._credential_listeners):
                await credentials_listener(payload)
            return
        if event_type == CONNECTION_UPDATE:
            update = parse_connection_update(payload)
            if update.account_id:
                self.account_id = update.account_id
            for connection_listener in list(self._connection_listeners):
                await connection_listener(update)
            return
        logger.debug(
            "Ignoring unknown bridge event",
            extra={"event_type": event_type, "connection_id": self.connection_id},
        )

    async def request_pairing_code(self, phone_digits: str) -> str:
        data = await self.provider.post(
            f"/connections/{self.connection_id}/pairing-code",
            {"phoneNumber": phone_digits},
        )
        return str(data["code"])

    async def send_message(self, target: str, text: str) -> str:
        data = await self.provider.post(
            f"/connections/{self.connection_id}/messages",
            {"to": target, "text": text},
        )
        return str(data["messageId"])

    async def send_presence(self, state: str, target: str) -> None:
        await self.provider.post(
            f"/connections/{self.connection_id}/presence",
            {"state": state, "to": target},
        )

    async def logout(self) -> None:
        await self.provider.post(f"/connections/{self.connection_id}/logout", {})

    async def end(self) -> None:
        self.provider.forget(self.connection_id)
        self._credential_listeners.clear()
        self._connection_listeners.clear()
        await self.provider.delete(f"/connections/{self.connection_id}")


@dataclass
class HttpxBridgeTransportProvider:
    """Opens bridge connections over HTTP with httpx."""

    base_url: str
    http_client: httpx.AsyncClient
    token: str | None = None
    timeout: float = 60.0
    connections: dict[str, BridgeConnection] = field(default_factory=dict)

    @classmethod
    def create(
        cls, base_url: str, token: str | None = None
    ) -> "HttpxBridgeTransportProvider":
        """Create a provider with a managed httpx session."""
        return cls(
            base_url=base_url.rstrip("/"),
            http_client=httpx.AsyncClient(),
            token=token,
        )

    async def connect(
        self, session_id: str, state: dict[str, object]
    ) -> BridgeConnection:
        """Ask the bridge to open a connection for a session."""
        data = await self.post("/connections", {"sessionId": session_id, "auth": state})
        connection = BridgeConnection(
            connection_id=str(data["connectionId"]),
            session_id=session_id,
            provider=self,
            account_id=data.get("accountId"),
        )
        self.connections[connection.connection_id] = connection
        return connection

    async def dispatch(
        self, connection_id: str, event_type: str, payload: dict[str, Any]
    ) -> bool:
        """Route a webhook event to its connection; false if it is unknown."""
        connection = self.connections.get(connection_id)
        if connection is None:
            logger.debug(
                "Event for unknown bridge connection",
                extra={"connection_id": connection_id, "event_type": event_type},
            )
            return False
        await connection.dispatch(event_type, payload)
        return True

    def forget(self, connection_id: str) -> None:
        self.connections.pop(connection_id, None)

    async def post(self, path: str, payload: dict[str, object]) -> dict[str, Any]:
        response = await self.http_client.post(
            f"{self.base_url}{path}",
            json=payload,
            headers=self._headers(),
            timeout=self.timeout,
        )
        response.raise_for_status()
        if not response.content:
            return {}
        return response.json()

    async def delete(self, path: str) -> None:
        response = await self.http_client.delete(
            f"{self.base_url}{path}", headers=self._headers(), timeout=self.timeout
        )
        if response.status_code == httpx.codes.NOT_FOUND:
            return
        response.raise_for_status()

    async def close(self) -> None:
        """Close the underlying HTTP client session."""
        await self.http_client.aclose()

    def _headers(self) -> dict[str, str]:
        if self.token is None:
            return {}
        return {"X-Bridge-Token": self.token}
