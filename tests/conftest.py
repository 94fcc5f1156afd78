"""Shared test fixtures."""

import asyncio
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from wpp_gateway.config import Settings
from wpp_gateway.containers import AppContainer
from wpp_gateway.domain.engine import EngineConfig, EventCallback, MediaPayload
from wpp_gateway.services.credentials import CredentialStore
from wpp_gateway.services.registry import SessionRegistry
from wpp_gateway.services.sessions import SessionManager
from wpp_gateway.services.webhooks import InMemoryWebhookRepository, WebhookDispatcher

API_KEY = "test-api-key"


@dataclass
class FakeEngineHandle:
    """Scriptable engine handle that records every call."""

    session_id: str
    connected: bool = True
    connect_error: Exception | None = None
    hang_on_connect: bool = False
    logout_error: Exception | None = None
    close_error: Exception | None = None
    send_error: Exception | None = None
    messages: list[dict[str, object]] = field(default_factory=list)
    listeners: dict[str, list[EventCallback]] = field(default_factory=dict)
    sent: list[tuple[str, str, object]] = field(default_factory=list)
    logged_out: bool = False
    closed: bool = False
    close_calls: int = 0

    async def is_connected(self) -> bool:
        if self.hang_on_connect:
            await asyncio.Event().wait()
        if self.connect_error is not None:
            raise self.connect_error
        return self.connected

    async def logout(self) -> None:
        if self.logout_error is not None:
            raise self.logout_error
        self.logged_out = True
        self.connected = False

    async def close(self) -> None:
        self.close_calls += 1
        if self.close_error is not None:
            raise self.close_error
        self.closed = True

    async def send_text(self, target: str, body: str) -> dict[str, object]:
        return self._record("text", target, body)

    async def send_image(
        self, target: str, media: MediaPayload, caption: str | None
    ) -> dict[str, object]:
        return self._record("image", target, (media, caption))

    async def send_file(
        self, target: str, media: MediaPayload, caption: str | None
    ) -> dict[str, object]:
        return self._record("file", target, (media, caption))

    async def send_voice(self, target: str, media: MediaPayload) -> dict[str, object]:
        return self._record("voice", target, media)

    async def send_video(
        self, target: str, media: MediaPayload, caption: str | None
    ) -> dict[str, object]:
        return self._record("video", target, (media, caption))

    async def get_messages_in_chat(
        self, chat_id: str, include_me: bool, include_notifications: bool
    ) -> list[dict[str, object]]:
        return [
            message
            for message in self.messages
            if include_me or not message.get("fromMe")
        ]

    def on(self, event: str, callback: EventCallback) -> None:
        self.listeners.setdefault(event, []).append(callback)

    def emit(self, event: str, payload: dict[str, object]) -> None:
        for callback in self.listeners.get(event, []):
            callback(payload)

    def _record(self, kind: str, target: str, content: object) -> dict[str, object]:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((kind, target, content))
        return {"id": f"msg-{len(self.sent)}", "to": target, "type": kind}


@dataclass
class FakeEngine:
    """Engine whose launches are driven by the test.

    Each launch reports `qr_codes` through `on_qr`, then waits for
    `authenticate` (unless `auto_authenticate` is set) before returning a
    handle. `fail_with` makes launches raise instead. `active` and
    `max_active` count launches in flight.
    """

    qr_codes: list[str] = field(default_factory=lambda: ["qr-1"])
    auto_authenticate: bool = False
    fail_with: Exception | None = None
    emit_qr: bool = True
    launches: list[EngineConfig] = field(default_factory=list)
    handles: list[FakeEngineHandle] = field(default_factory=list)
    active: int = 0
    max_active: int = 0
    _gates: dict[str, asyncio.Event] = field(default_factory=dict)

    async def create(self, config: EngineConfig) -> FakeEngineHandle:
        self.launches.append(config)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            return await self._open(config)
        finally:
            self.active -= 1

    async def _open(self, config: EngineConfig) -> FakeEngineHandle:
        await asyncio.sleep(0)
        if self.fail_with is not None:
            raise self.fail_with
        if self.emit_qr:
            for qr_code in self.qr_codes:
                config.on_qr(qr_code)
        if not self.auto_authenticate:
            gate = self._gates.setdefault(config.session_id, asyncio.Event())
            await gate.wait()
            self._gates.pop(config.session_id, None)
        config.on_status("isLogged")
        handle = FakeEngineHandle(session_id=config.session_id)
        self.handles.append(handle)
        return handle

    def authenticate(self, session_id: str) -> None:
        self._gates.setdefault(session_id, asyncio.Event()).set()


@dataclass
class FakeWebhookClient:
    """Webhook client that records posts and fails on demand."""

    failures: int = 0
    posts: list[tuple[str, dict[str, object], float]] = field(default_factory=list)
    closed: bool = False

    async def post_json(
        self, url: str, payload: dict[str, object], timeout: float
    ) -> None:
        self.posts.append((url, payload, timeout))
        if self.failures > 0:
            self.failures -= 1
            raise RuntimeError("webhook down")

    async def close(self) -> None:
        self.closed = True


@dataclass
class RecordedSleep:
    """Replacement for asyncio.sleep that records requested delays."""

    delays: list[float] = field(default_factory=list)

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        api_key=API_KEY,
        credential_root=str(tmp_path / "tokens"),
        qr_wait_timeout_seconds=0.5,
        qr_poll_interval_seconds=0.01,
        engine_query_timeout_seconds=0.2,
    )


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def webhook_client() -> FakeWebhookClient:
    return FakeWebhookClient()


@pytest.fixture
def recorded_sleep() -> RecordedSleep:
    return RecordedSleep()


@pytest.fixture
def dispatcher(
    webhook_client: FakeWebhookClient, recorded_sleep: RecordedSleep
) -> WebhookDispatcher:
    return WebhookDispatcher(
        repository=InMemoryWebhookRepository(),
        client=webhook_client,
        sleep=recorded_sleep,
        shutdown_grace_seconds=0.1,
    )


@pytest.fixture
def credential_store(tmp_path: Path) -> CredentialStore:
    return CredentialStore(tmp_path / "tokens")


@pytest.fixture
def manager(
    settings: Settings,
    engine: FakeEngine,
    dispatcher: WebhookDispatcher,
    credential_store: CredentialStore,
) -> SessionManager:
    return SessionManager(
        engine=engine,
        registry=SessionRegistry(),
        dispatcher=dispatcher,
        credential_store=credential_store,
        qr_wait_timeout_seconds=settings.qr_wait_timeout_seconds,
        qr_poll_interval_seconds=settings.qr_poll_interval_seconds,
        engine_query_timeout_seconds=settings.engine_query_timeout_seconds,
    )


@pytest.fixture
def container(
    settings: Settings,
    manager: SessionManager,
    dispatcher: WebhookDispatcher,
    credential_store: CredentialStore,
    webhook_client: FakeWebhookClient,
) -> AppContainer:
    async def close_resources() -> None:
        await webhook_client.close()

    return AppContainer(
        settings=settings,
        credential_store=credential_store,
        webhook_dispatcher=dispatcher,
        session_manager=manager,
        close_resources=close_resources,
    )


async def settle(manager: SessionManager) -> None:
    """Wait until no registered session is still launching its engine."""
    pending = [
        session.creation_task
        for session in manager.registry.list()
        if session.creation_task is not None and not session.creation_task.done()
    ]
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)
