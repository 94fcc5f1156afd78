"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from supabase import create_client

from wpp_gateway.adapters.playwright_engine import PlaywrightEngine
from wpp_gateway.adapters.supabase_webhook_repository import (
    SupabaseWebhookRepository,
)
from wpp_gateway.adapters.webhook_client import HttpxWebhookClient
from wpp_gateway.config import (
    Settings,
    parse_browser_args,
    resolve_credential_root,
)
from wpp_gateway.services.credentials import CredentialStore
from wpp_gateway.services.registry import SessionRegistry
from wpp_gateway.services.sessions import SessionManager
from wpp_gateway.services.webhooks import (
    InMemoryWebhookRepository,
    WebhookDispatcher,
    WebhookRepository,
)


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    credential_store: CredentialStore
    webhook_dispatcher: WebhookDispatcher
    session_manager: SessionManager
    close_resources: Callable[[], Awaitable[None]]


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    webhook_repository: WebhookRepository
    if resolved_settings.supabase_url and resolved_settings.supabase_service_key:
        supabase_client = create_client(
            resolved_settings.supabase_url, resolved_settings.supabase_service_key
        )
        webhook_repository = SupabaseWebhookRepository(supabase_client)
    else:
        webhook_repository = InMemoryWebhookRepository()
    webhook_client = HttpxWebhookClient.create()
    webhook_dispatcher = WebhookDispatcher(
        repository=webhook_repository,
        client=webhook_client,
        max_attempts=resolved_settings.webhook_max_attempts,
        timeout_seconds=resolved_settings.webhook_timeout_seconds,
        backoff_base_seconds=resolved_settings.webhook_backoff_base_seconds,
        shutdown_grace_seconds=resolved_settings.webhook_shutdown_grace_seconds,
    )
    credential_store = CredentialStore(resolve_credential_root(resolved_settings))
    session_manager = SessionManager(
        engine=PlaywrightEngine(),
        registry=SessionRegistry(),
        dispatcher=webhook_dispatcher,
        credential_store=credential_store,
        executable_path=resolved_settings.browser_executable_path or None,
        browser_args=parse_browser_args(resolved_settings.browser_args),
        headless=resolved_settings.browser_headless,
        auto_close_seconds=resolved_settings.engine_auto_close_seconds,
        qr_wait_timeout_seconds=resolved_settings.qr_wait_timeout_seconds,
        qr_poll_interval_seconds=resolved_settings.qr_poll_interval_seconds,
        engine_query_timeout_seconds=resolved_settings.engine_query_timeout_seconds,
        default_chat_domain=resolved_settings.default_chat_domain,
    )

    async def close_resources() -> None:
        await webhook_client.close()

    return AppContainer(
        settings=resolved_settings,
        credential_store=credential_store,
        webhook_dispatcher=webhook_dispatcher,
        session_manager=session_manager,
        close_resources=close_resources,
    )
