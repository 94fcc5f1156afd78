"""Webhook registrations and best-effort event delivery."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Protocol

from wpp_gateway.adapters.webhook_client import WebhookClient

_logger = logging.getLogger(__name__)


class WebhookRepository(Protocol):
    """Persistence interface for per-session webhook URLs."""

    def get_url(self, session_id: str) -> str | None:
        """Return the registered URL for a session, if any."""

    def set_url(self, session_id: str, url: str) -> None:
        """Register or replace the URL for a session."""

    def delete_url(self, session_id: str) -> bool:
        """Remove a registration; return True if one existed."""


@dataclass
class InMemoryWebhookRepository(WebhookRepository):
    """Process-local webhook registrations."""

    urls: dict[str, str] = field(default_factory=dict)

    def get_url(self, session_id: str) -> str | None:
        """Return the registered URL."""
        return self.urls.get(session_id)

    def set_url(self, session_id: str, url: str) -> None:
        """Register a URL."""
        self.urls[session_id] = url

    def delete_url(self, session_id: str) -> bool:
        """Remove a URL."""
        return self.urls.pop(session_id, None) is not None


@dataclass
class WebhookDispatcher:
    """Delivers session events to registered webhooks with bounded retries.

    Delivery is fire-and-forget for the producer: `dispatch` schedules a
    detached task and returns at once, and no delivery failure ever leaves
    this class. Each event gets at most `max_attempts` POSTs, waiting
    `backoff_base_seconds * 2 ** (attempt - 1)` between them, and is dropped
    after the last failure. `close` gives in-flight deliveries
    `shutdown_grace_seconds` to finish before cancelling them.
    """

    repository: WebhookRepository
    client: WebhookClient
    max_attempts: int = 3
    timeout_seconds: float = 10.0
    backoff_base_seconds: float = 1.0
    shutdown_grace_seconds: float = 2.0
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    _tasks: set[asyncio.Task[bool]] = field(default_factory=set, init=False)

    def register(self, session_id: str, url: str) -> None:
        """Register the webhook URL for a session."""
        self.repository.set_url(session_id, url)
        _logger.info("Webhook registered for %s", session_id)

    def unregister(self, session_id: str) -> bool:
        """Remove the webhook URL for a session."""
        removed = self.repository.delete_url(session_id)
        if removed:
            _logger.info("Webhook removed for %s", session_id)
        return removed

    def get_url(self, session_id: str) -> str | None:
        """Return the webhook URL for a session."""
        return self.repository.get_url(session_id)

    def dispatch(
        self, session_id: str, event: dict[str, object]
    ) -> "asyncio.Task[bool]":
        """Schedule delivery of an event without waiting for it."""
        task = asyncio.create_task(self.deliver(session_id, event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def deliver(self, session_id: str, event: dict[str, object]) -> bool:
        """Deliver one event; return True once a POST succeeds."""
        try:
            url = self.repository.get_url(session_id)
        except Exception:
            _logger.exception("Webhook lookup failed for %s", session_id)
            return False
        if not url:
            return False

        payload: dict[str, object] = {
            "session": session_id,
            **event,
            "timestamp": datetime.now(tz=UTC).isoformat(),
        }
        for attempt in range(1, self.max_attempts + 1):
            try:
                await self.client.post_json(url, payload, timeout=self.timeout_seconds)
            except Exception as exc:
                _logger.warning(
                    "Webhook delivery for %s failed (attempt %s/%s, status=%s): %s",
                    session_id,
                    attempt,
                    self.max_attempts,
                    _status_code_from_exception(exc),
                    exc,
                )
            else:
                return True
            if attempt < self.max_attempts:
                await self.sleep(self.backoff_base_seconds * 2 ** (attempt - 1))

        _logger.error(
            "Webhook delivery for %s permanently failed after %s attempts, "
            "dropping %s event",
            session_id,
            self.max_attempts,
            event.get("event", "unknown"),
        )
        return False

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for scheduled deliveries to finish, at most `timeout` seconds."""
        if self._tasks:
            await asyncio.wait(list(self._tasks), timeout=timeout)

    async def close(self) -> None:
        """Let in-flight deliveries finish within the grace period, then cancel."""
        await self.drain(self.shutdown_grace_seconds)
        pending = [task for task in self._tasks if not task.done()]
        if pending:
            _logger.warning("Cancelling %s pending webhook deliveries", len(pending))
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)


def _status_code_from_exception(exc: Exception) -> str:
    """Extract HTTP status code from an exception, if available."""
    response = getattr(exc, "response", None)
    status_code = getattr(response, "status_code", None)
    if isinstance(status_code, int):
        return str(status_code)
    return "n/a"
