"""Session lifecycle manager: creation, reconciliation and teardown."""

import asyncio
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

from wpp_gateway.domain.engine import (
    ENGINE_EVENTS,
    AutomationEngine,
    EngineConfig,
    EngineHandle,
    MediaPayload,
)
from wpp_gateway.domain.errors import (
    EngineError,
    InvalidSessionIdError,
    QRCodeNotAvailableError,
    QRCodeTimeoutError,
    SessionNotConnectedError,
    SessionNotFoundError,
)
from wpp_gateway.domain.sessions import (
    AUTHENTICATED_ENGINE_STATUSES,
    STATUS_CONNECTED,
    STATUS_DISCONNECTED,
    STATUS_ERROR,
    STATUS_NOT_LOGGED,
    STATUS_QRCODE,
    TERMINAL_ENGINE_STATUSES,
    QRCodeResult,
    SendResult,
    Session,
    SessionSummary,
    StartResult,
    StatusReport,
    is_valid_session_id,
)
from wpp_gateway.services.credentials import CredentialStore
from wpp_gateway.services.registry import SessionRegistry
from wpp_gateway.services.webhooks import WebhookDispatcher

_logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class SessionManager:
    """Owns every automation session of the process.

    At most one engine instance exists per session id: start-session and
    logout for the same id run under a per-id lock, and a session entry is
    registered before its engine launch is scheduled, so later callers find
    the in-progress entry instead of launching again. Engine creation runs
    as a detached task and reconciles the registry when it finishes, even if
    the caller that started it has already given up waiting.
    """

    engine: AutomationEngine
    registry: SessionRegistry
    dispatcher: WebhookDispatcher
    credential_store: CredentialStore
    executable_path: str | None = None
    browser_args: tuple[str, ...] = ()
    headless: bool = True
    auto_close_seconds: float = 60.0
    qr_wait_timeout_seconds: float = 30.0
    qr_poll_interval_seconds: float = 0.3
    engine_query_timeout_seconds: float = 5.0
    default_chat_domain: str = "c.us"
    _locks: defaultdict[str, asyncio.Lock] = field(
        default_factory=lambda: defaultdict(asyncio.Lock), init=False
    )

    async def start_session(
        self,
        session_id: str,
        webhook_url: str | None = None,
        wait_for_qr: bool = False,
    ) -> StartResult:
        """Start a session or report the one already running."""
        if not is_valid_session_id(session_id):
            raise InvalidSessionIdError(session_id)
        async with self._locks[session_id]:
            existing = await self._reusable_session(session_id)
            if webhook_url:
                self.dispatcher.register(session_id, webhook_url)
            if existing is not None:
                session = existing
                message = "Session already exists"
            else:
                session = self._launch(session_id)
                message = ""

        if wait_for_qr and session.is_creating and session.qr_code is None:
            await self._wait_for_qr(session)

        if not message:
            message = "QR Code ready" if session.qr_code else "Session starting"
        return StartResult(
            session_id=session_id,
            status=session.status,
            qr_code=session.qr_code,
            webhook=webhook_url or None,
            message=message,
        )

    async def _reusable_session(self, session_id: str) -> Session | None:
        """Return the registered session if it can be reused, else purge it."""
        session = self.registry.get(session_id)
        if session is None:
            return None
        if session.handle is None:
            return session
        try:
            connected = await self._check_connected(session.handle)
        except EngineError as exc:
            _logger.warning("Removing stale session %s: %s", session_id, exc)
            await self._close_quietly(session_id, session.handle)
            self.registry.remove(session_id, expected=session)
            session.qr_code = None
            return None
        if connected:
            session.mark_connected()
        elif session.status == STATUS_CONNECTED:
            session.mark_disconnected()
        return session

    def _launch(self, session_id: str) -> Session:
        session = Session(session_id=session_id)
        self.registry.put(session)
        if self.credential_store.has_credentials(session_id):
            _logger.info("Creating session %s from stored credentials", session_id)
        else:
            _logger.info("Creating session %s", session_id)
        session.creation_task = asyncio.create_task(self._create_engine(session))
        return session

    async def _create_engine(self, session: Session) -> None:
        session_id = session.session_id
        config = EngineConfig(
            session_id=session_id,
            credential_root=self.credential_store.root,
            executable_path=self.executable_path,
            browser_args=self.browser_args,
            headless=self.headless,
            auto_close_seconds=self.auto_close_seconds,
            on_qr=lambda qr_code: self._on_qr(session, qr_code),
            on_status=lambda status: self._on_status(session, status),
        )
        try:
            handle = await self.engine.create(config)
        except asyncio.CancelledError:
            self.registry.remove(session_id, expected=session)
            session.qr_code = None
            raise
        except Exception as exc:
            _logger.exception("Error creating session %s", session_id)
            session.creation_error = exc
            session.qr_code = None
            session.status = STATUS_ERROR
            self.registry.remove(session_id, expected=session)
            return

        if self.registry.get(session_id) is not session:
            _logger.info(
                "Session %s was removed while starting, closing its engine",
                session_id,
            )
            await self._close_quietly(session_id, handle)
            return

        session.handle = handle
        session.mark_connected()
        for event in ENGINE_EVENTS:
            handle.on(event, self._event_forwarder(session_id, event))
        _logger.info("Session %s ready", session_id)

    def _on_qr(self, session: Session, qr_code: str) -> None:
        session.set_qr_code(qr_code)
        _logger.info("QR generated for %s", session.session_id)

    def _on_status(self, session: Session, status: str) -> None:
        _logger.info("%s status: %s", session.session_id, status)
        session.engine_status = status
        if status in AUTHENTICATED_ENGINE_STATUSES:
            session.mark_connected()
            _logger.info("%s authenticated", session.session_id)
        elif status in TERMINAL_ENGINE_STATUSES:
            session.mark_disconnected()

    def _event_forwarder(
        self, session_id: str, event: str
    ) -> Callable[[dict[str, object]], None]:
        def forward(payload: dict[str, object]) -> None:
            self.dispatcher.dispatch(session_id, {"event": event, "data": payload})

        return forward

    async def _wait_for_qr(self, session: Session) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.qr_wait_timeout_seconds
        while True:
            if session.qr_code is not None or session.status == STATUS_CONNECTED:
                return
            if session.creation_error is not None:
                raise EngineError(str(session.creation_error) or "Engine failed")
            if not session.is_creating:
                return
            if loop.time() >= deadline:
                raise QRCodeTimeoutError(
                    session.session_id, self.qr_wait_timeout_seconds
                )
            await asyncio.sleep(self.qr_poll_interval_seconds)

    async def get_status(self, session_id: str) -> StatusReport:
        """Report connectivity; engine trouble degrades to an error status."""
        session = self.registry.get(session_id)
        if session is None:
            return StatusReport(
                session_id=session_id,
                status=STATUS_NOT_LOGGED,
                connected=False,
                known=False,
            )
        if session.handle is None:
            return StatusReport(
                session_id=session_id,
                status=session.status,
                connected=False,
                known=True,
            )
        try:
            connected = await self._check_connected(session.handle)
        except EngineError as exc:
            _logger.error("Status check error for %s: %s", session_id, exc)
            return StatusReport(
                session_id=session_id,
                status=STATUS_ERROR,
                connected=False,
                known=True,
                error=str(exc),
            )
        if connected:
            session.mark_connected()
            status = STATUS_CONNECTED
        elif session.qr_code is not None:
            status = STATUS_QRCODE
        else:
            status = STATUS_NOT_LOGGED
        return StatusReport(
            session_id=session_id, status=status, connected=connected, known=True
        )

    async def get_qr_code(self, session_id: str) -> QRCodeResult:
        """Return the cached QR code, or report an already connected session."""
        session = self.registry.get(session_id)
        if session is not None and session.handle is not None:
            try:
                connected = await self._check_connected(session.handle)
            except EngineError:
                connected = False
            if connected:
                session.mark_connected()
                return QRCodeResult(session_id=session_id, qr_code=None, connected=True)
        if session is None or session.qr_code is None:
            raise QRCodeNotAvailableError(session_id)
        return QRCodeResult(
            session_id=session_id, qr_code=session.qr_code, connected=False
        )

    async def logout(self, session_id: str) -> None:
        """Log out and release a session; the registry is purged regardless."""
        async with self._locks[session_id]:
            session = self.registry.get(session_id)
            if session is None:
                raise SessionNotFoundError(session_id)
            _logger.info("Logging out %s", session_id)
            failure: Exception | None = None
            if session.is_creating and session.creation_task is not None:
                # The engine releases its browser when creation is cancelled.
                session.creation_task.cancel()
                await asyncio.gather(session.creation_task, return_exceptions=True)
            handle = session.handle
            if handle is not None:
                try:
                    await self._bounded(handle.logout(), "Logout")
                except EngineError as exc:
                    failure = exc
                try:
                    await handle.close()
                except Exception as exc:
                    failure = failure or exc
            self.registry.remove(session_id, expected=session)
            session.qr_code = None
            session.status = STATUS_NOT_LOGGED
        if failure is not None:
            _logger.error("Logout error for %s: %s", session_id, failure)
            raise EngineError(str(failure) or "Logout failed") from failure

    async def send_text(self, session_id: str, target: str, body: str) -> SendResult:
        """Send a text message through a connected session."""
        handle, chat_id = await self._connected_handle(session_id, target)
        _logger.info("Sending text to %s from %s", chat_id, session_id)
        result = await self._relay(handle.send_text(chat_id, body), "Send text")
        return SendResult(session_id=session_id, to=chat_id, result=result)

    async def send_image(
        self,
        session_id: str,
        target: str,
        media: MediaPayload,
        caption: str | None = None,
    ) -> SendResult:
        """Send an image through a connected session."""
        handle, chat_id = await self._connected_handle(session_id, target)
        result = await self._relay(
            handle.send_image(chat_id, media, caption), "Send image"
        )
        return SendResult(session_id=session_id, to=chat_id, result=result)

    async def send_file(
        self,
        session_id: str,
        target: str,
        media: MediaPayload,
        caption: str | None = None,
    ) -> SendResult:
        """Send a document through a connected session."""
        handle, chat_id = await self._connected_handle(session_id, target)
        result = await self._relay(
            handle.send_file(chat_id, media, caption), "Send file"
        )
        return SendResult(session_id=session_id, to=chat_id, result=result)

    async def send_voice(
        self, session_id: str, target: str, media: MediaPayload
    ) -> SendResult:
        """Send an audio note through a connected session."""
        handle, chat_id = await self._connected_handle(session_id, target)
        result = await self._relay(handle.send_voice(chat_id, media), "Send voice")
        return SendResult(session_id=session_id, to=chat_id, result=result)

    async def send_video(
        self,
        session_id: str,
        target: str,
        media: MediaPayload,
        caption: str | None = None,
    ) -> SendResult:
        """Send a video through a connected session."""
        handle, chat_id = await self._connected_handle(session_id, target)
        result = await self._relay(
            handle.send_video(chat_id, media, caption), "Send video"
        )
        return SendResult(session_id=session_id, to=chat_id, result=result)

    async def get_messages(
        self,
        session_id: str,
        target: str,
        include_me: bool = True,
        include_notifications: bool = False,
    ) -> tuple[str, list[dict[str, object]]]:
        """Return the message history of a chat."""
        handle, chat_id = await self._connected_handle(session_id, target)
        messages = await self._relay(
            handle.get_messages_in_chat(chat_id, include_me, include_notifications),
            "Get messages",
        )
        return chat_id, messages

    async def _connected_handle(
        self, session_id: str, target: str
    ) -> tuple[EngineHandle, str]:
        session = self.registry.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        handle = session.handle
        if handle is None or not await self._check_connected(handle):
            raise SessionNotConnectedError(session_id)
        return handle, self.normalize_target(target)

    def normalize_target(self, target: str) -> str:
        """Append the default chat domain when the caller left it out."""
        cleaned = target.strip()
        if "@" in cleaned:
            return cleaned
        return f"{cleaned}@{self.default_chat_domain}"

    async def list_sessions(self) -> list[SessionSummary]:
        """Snapshot every session; one failing check never aborts the listing."""
        summaries = []
        for session in self.registry.list():
            status = session.status
            connected = False
            if session.handle is not None:
                try:
                    connected = await self._check_connected(session.handle)
                except EngineError:
                    status = STATUS_ERROR
                else:
                    if connected:
                        session.mark_connected()
                    status = STATUS_CONNECTED if connected else STATUS_DISCONNECTED
            summaries.append(
                SessionSummary(
                    name=session.session_id,
                    status=status,
                    connected=connected,
                    has_qr_code=session.qr_code is not None,
                    engine_status=session.engine_status,
                    created_at=session.created_at,
                )
            )
        return summaries

    def set_webhook(self, session_id: str, url: str) -> None:
        """Register a webhook, independent of the session lifecycle."""
        self.dispatcher.register(session_id, url)

    def remove_webhook(self, session_id: str) -> bool:
        """Remove a webhook registration."""
        return self.dispatcher.unregister(session_id)

    def get_webhook(self, session_id: str) -> str | None:
        """Return the webhook registered for a session."""
        return self.dispatcher.get_url(session_id)

    async def resume_persisted_sessions(self) -> list[str]:
        """Start every session that has credentials on disk."""
        resumed = []
        for session_id in self.credential_store.persisted_sessions():
            if session_id in self.registry:
                continue
            await self.start_session(session_id)
            resumed.append(session_id)
        if resumed:
            _logger.info("Resuming %s stored sessions", len(resumed))
        return resumed

    async def shutdown(self) -> None:
        """Close every live engine, cancel pending creations, clear state."""
        sessions = self.registry.list()
        live = [
            (session.session_id, session.handle)
            for session in sessions
            if session.handle is not None
        ]
        results = await asyncio.gather(
            *(handle.close() for _, handle in live), return_exceptions=True
        )
        for (session_id, _), result in zip(live, results, strict=True):
            if isinstance(result, BaseException):
                _logger.error("Error closing %s: %s", session_id, result)
            else:
                _logger.info("Closed %s", session_id)

        pending = [
            session.creation_task
            for session in sessions
            if session.creation_task is not None and not session.creation_task.done()
        ]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        self.registry.clear()
        await self.dispatcher.close()

    async def _check_connected(self, handle: EngineHandle) -> bool:
        return bool(await self._bounded(handle.is_connected(), "Connectivity check"))

    async def _bounded(self, awaitable: Awaitable[T], action: str) -> T:
        try:
            return await asyncio.wait_for(
                awaitable, timeout=self.engine_query_timeout_seconds
            )
        except TimeoutError as exc:
            raise EngineError(f"{action} timeout") from exc
        except Exception as exc:
            raise EngineError(str(exc) or f"{action} failed") from exc

    async def _relay(self, awaitable: Awaitable[T], action: str) -> T:
        try:
            return await awaitable
        except EngineError:
            raise
        except Exception as exc:
            _logger.error("%s failed: %s", action, exc)
            raise EngineError(str(exc) or f"{action} failed") from exc

    async def _close_quietly(self, session_id: str, handle: EngineHandle) -> None:
        try:
            await handle.close()
        except Exception as exc:
            _logger.warning("Error closing %s: %s", session_id, exc)
