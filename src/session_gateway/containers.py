"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta

from supabase import create_client

from session_gateway.adapters.bridge_transport import HttpxBridgeTransportProvider
from session_gateway.adapters.qr_renderer import CodeRenderer, QrCodeRenderer
from session_gateway.adapters.supabase_credential_store import (
    SupabaseCredentialStore,
)
from session_gateway.config import Settings
from session_gateway.domain.transitions import ReconnectPolicy
from session_gateway.services.credentials import CredentialStore
from session_gateway.services.messages import MessageService, TypingDelay
from session_gateway.services.notifier import Notifier
from session_gateway.services.registry import SessionRegistry
from session_gateway.services.restore import RestoreOrchestrator
from session_gateway.services.supervisor import LifecycleSupervisor
from session_gateway.services.sweeper import ExpirySweeper


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    bridge: HttpxBridgeTransportProvider
    credential_store: CredentialStore
    renderer: CodeRenderer
    registry: SessionRegistry
    notifier: Notifier
    supervisor: LifecycleSupervisor
    sweeper: ExpirySweeper
    restore: RestoreOrchestrator
    message_service: MessageService
    close_resources: Callable[[], Awaitable[None]]


def build_services(
    settings: Settings,
    bridge: HttpxBridgeTransportProvider,
    credential_store: CredentialStore,
) -> AppContainer:
    """Wire the session services around the given adapters."""
    registry = SessionRegistry()
    notifier = Notifier()
    renderer = QrCodeRenderer()
    policy = ReconnectPolicy(
        max_attempts=settings.max_reconnect_attempts,
        base_seconds=settings.reconnect_base_seconds,
        unavailable_base_seconds=settings.unavailable_base_seconds,
        max_backoff_seconds=settings.max_backoff_seconds,
        restart_delay_seconds=settings.restart_delay_seconds,
    )
    supervisor = LifecycleSupervisor(
        registry=registry,
        notifier=notifier,
        transport=bridge,
        credential_store=credential_store,
        renderer=renderer,
        policy=policy,
        max_sessions=settings.max_sessions,
        pairing_code_delay_seconds=settings.pairing_code_delay_seconds,
    )
    sweeper = ExpirySweeper(
        supervisor=supervisor,
        max_age=timedelta(seconds=settings.pending_expire_seconds),
        interval_seconds=settings.expiry_sweep_interval_seconds,
    )
    restore = RestoreOrchestrator(
        supervisor=supervisor,
        credential_store=credential_store,
        delay_seconds=settings.restore_delay_seconds,
    )
    message_service = MessageService(
        registry=registry,
        notifier=notifier,
        typing_delay=TypingDelay(
            per_char_ms=settings.typing_delay_per_char_ms,
            min_ms=settings.typing_delay_min_ms,
            max_ms=settings.typing_delay_max_ms,
        ),
    )

    async def close_resources() -> None:
        await bridge.close()

    return AppContainer(
        settings=settings,
        bridge=bridge,
        credential_store=credential_store,
        renderer=renderer,
        registry=registry,
        notifier=notifier,
        supervisor=supervisor,
        sweeper=sweeper,
        restore=restore,
        message_service=message_service,
        close_resources=close_resources,
    )


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    supabase_client = create_client(
        resolved_settings.supabase_url, resolved_settings.supabase_service_key
    )
    credential_store = SupabaseCredentialStore(supabase_client)
    bridge = HttpxBridgeTransportProvider.create(
        resolved_settings.bridge_url, token=resolved_settings.bridge_token
    )
    return build_services(resolved_settings, bridge, credential_store)
