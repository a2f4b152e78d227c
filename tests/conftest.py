"""Shared test fixtures."""

import asyncio
from dataclasses import dataclass, field

import pytest

from session_gateway.adapters.qr_renderer import CodeRenderer
from session_gateway.config import Settings
from session_gateway.domain.transitions import ReconnectPolicy
from session_gateway.domain.transport import ConnectionUpdate
from session_gateway.services.credentials import CredentialStore, LoadedCredentials
from session_gateway.services.messages import MessageService, TypingDelay
from session_gateway.services.notifier import Notifier
from session_gateway.services.registry import SessionRegistry
from session_gateway.services.supervisor import LifecycleSupervisor
from session_gateway.services.transport import (
    ConnectionListener,
    CredentialsListener,
    TransportHandle,
    TransportProvider,
)


@dataclass
class InMemoryCredentialStore(CredentialStore):
    """In-memory credential store for tests."""

    data: dict[str, dict[str, object]] = field(default_factory=dict)
    purged: list[str] = field(default_factory=list)
    fail_purge: bool = False

    async def load(self, session_id: str) -> LoadedCredentials:
        async def save(update: dict[str, object]) -> None:
            self.data.setdefault(session_id, {}).update(update)

        return LoadedCredentials(state=dict(self.data.get(session_id, {})), save=save)

    async def purge(self, session_id: str) -> None:
        self.purged.append(session_id)
        if self.fail_purge:
            raise RuntimeError("storage unavailable")
        self.data.pop(session_id, None)

    async def list_session_ids(self) -> list[str]:
        return sorted(
            session_id for session_id, state in self.data.items() if "creds" in state
        )


@dataclass(eq=False)
class FakeTransportHandle(TransportHandle):
    """Fake connection that records calls and lets tests push events."""

    session_id: str
    state: dict[str, object]
    account_id: str | None = None
    pairing_code: str = "ABCD1234"
    fail_pairing: bool = False
    fail_logout: bool = False
    fail_end: bool = False
    fail_send: bool = False
    pairing_requests: list[str] = field(default_factory=list)
    sent: list[tuple[str, str]] = field(default_factory=list)
    presence: list[tuple[str, str]] = field(default_factory=list)
    logged_out: bool = False
    ended: bool = False
    credential_listeners: list[CredentialsListener] = field(default_factory=list)
    connection_listeners: list[ConnectionListener] = field(default_factory=list)

    def on_credentials_update(self, listener: CredentialsListener) -> None:
        self.credential_listeners.append(listener)

    def on_connection_update(self, listener: ConnectionListener) -> None:
        self.connection_listeners.append(listener)

    async def request_pairing_code(self, phone_digits: str) -> str:
        self.pairing_requests.append(phone_digits)
        if self.fail_pairing:
            raise RuntimeError("pairing rejected")
        return self.pairing_code

    async def send_message(self, target: str, text: str) -> str:
        if self.fail_send:
            raise RuntimeError("send failed")
        self.sent.append((target, text))
        return f"msg-{len(self.sent)}"

    async def send_presence(self, state: str, target: str) -> None:
        self.presence.append((state, target))

    async def logout(self) -> None:
        self.logged_out = True
        if self.fail_logout:
            raise RuntimeError("logout failed")

    async def end(self) -> None:
        self.ended = True
        if self.fail_end:
            raise RuntimeError("end failed")

    async def push(self, update: ConnectionUpdate) -> None:
        for listener in list(self.connection_listeners):
            await listener(update)

    async def emit_qr(self, payload: str) -> None:
        await self.push(ConnectionUpdate(qr=payload))

    async def emit_open(self, account_id: str | None = None) -> None:
        await self.push(ConnectionUpdate(connection="open", account_id=account_id))

    async def emit_close(self, code: int | None) -> None:
        await self.push(ConnectionUpdate(connection="close", disconnect_code=code))

    async def emit_credentials(self, update: dict[str, object]) -> None:
        for listener in list(self.credential_listeners):
            await listener(update)


@dataclass
class FakeTransportProvider(TransportProvider):
    """Hands out fake connections and remembers them in order."""

    handles: list[FakeTransportHandle] = field(default_factory=list)
    fail_connect: bool = False
    connect_delay: float = 0

    async def connect(
        self, session_id: str, state: dict[str, object]
    ) -> FakeTransportHandle:
        if self.connect_delay:
            await asyncio.sleep(self.connect_delay)
        if self.fail_connect:
            raise RuntimeError("bridge unreachable")
        handle = FakeTransportHandle(session_id=session_id, state=state)
        self.handles.append(handle)
        return handle

    def latest(self, session_id: str) -> FakeTransportHandle:
        return [h for h in self.handles if h.session_id == session_id][-1]

    def count(self, session_id: str) -> int:
        return sum(1 for h in self.handles if h.session_id == session_id)


@dataclass
class FakeCodeRenderer(CodeRenderer):
    """Renderer that returns a readable fake data URL."""

    fail: bool = False

    def to_data_url(self, payload: str) -> str:
        if self.fail:
            raise ValueError("cannot render")
        return f"data:text/plain,{payload}"


@pytest.fixture
def settings() -> Settings:
    return Settings(
        supabase_url="https://example.supabase.co",
        supabase_service_key="test.service.key",
        bridge_url="http://bridge.test",
        wait_for_credentials_seconds=0.2,
        restore_delay_seconds=0,
        pairing_code_delay_seconds=0,
        typing_delay_per_char_ms=0,
        typing_delay_min_ms=0,
        typing_delay_max_ms=0,
    )


@pytest.fixture
def credential_store() -> InMemoryCredentialStore:
    return InMemoryCredentialStore()


@pytest.fixture
def transport() -> FakeTransportProvider:
    return FakeTransportProvider()


@pytest.fixture
def renderer() -> FakeCodeRenderer:
    return FakeCodeRenderer()


@pytest.fixture
def registry() -> SessionRegistry:
    return SessionRegistry()


@pytest.fixture
def notifier() -> Notifier:
    return Notifier()


@pytest.fixture
def policy() -> ReconnectPolicy:
    return ReconnectPolicy(
        max_attempts=5,
        base_seconds=0.01,
        unavailable_base_seconds=0.02,
        max_backoff_seconds=0.05,
        restart_delay_seconds=0.01,
    )


@pytest.fixture
def supervisor(  # noqa: PLR0913
    registry: SessionRegistry,
    notifier: Notifier,
    transport: FakeTransportProvider,
    credential_store: InMemoryCredentialStore,
    renderer: FakeCodeRenderer,
    policy: ReconnectPolicy,
) -> LifecycleSupervisor:
    return LifecycleSupervisor(
        registry=registry,
        notifier=notifier,
        transport=transport,
        credential_store=credential_store,
        renderer=renderer,
        policy=policy,
        max_sessions=50,
        pairing_code_delay_seconds=0,
    )


@pytest.fixture
def message_service(
    registry: SessionRegistry, notifier: Notifier
) -> MessageService:
    return MessageService(
        registry=registry,
        notifier=notifier,
        typing_delay=TypingDelay(per_char_ms=0, min_ms=0, max_ms=0),
    )
