"""Capability interface of the browser automation engine."""

from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

EVENT_MESSAGE = "message"
EVENT_ACK = "ack"
EVENT_INCOMING_CALL = "incoming_call"
EVENT_STATE_CHANGE = "state_change"

ENGINE_EVENTS = (EVENT_MESSAGE, EVENT_ACK, EVENT_INCOMING_CALL, EVENT_STATE_CHANGE)

EventCallback = Callable[[dict[str, object]], None]


@dataclass(frozen=True)
class MediaPayload:
    """Binary attachment handed to the engine."""

    data: bytes
    filename: str
    mimetype: str


@dataclass(frozen=True)
class EngineConfig:
    """Everything the engine needs to launch one session."""

    session_id: str
    credential_root: Path
    executable_path: str | None
    browser_args: tuple[str, ...]
    on_qr: Callable[[str], None]
    on_status: Callable[[str], None]
    headless: bool = True
    auto_close_seconds: float = 60.0


class EngineHandle(Protocol):
    """A launched, authenticated engine instance."""

    async def is_connected(self) -> bool:
        """Return True when the account is connected."""

    async def logout(self) -> None:
        """Log the account out and unlink the device."""

    async def close(self) -> None:
        """Release the browser and all engine resources."""

    async def send_text(self, target: str, body: str) -> dict[str, object]:
        """Send a text message."""

    async def send_image(
        self, target: str, media: MediaPayload, caption: str | None
    ) -> dict[str, object]:
        """Send an image with an optional caption."""

    async def send_file(
        self, target: str, media: MediaPayload, caption: str | None
    ) -> dict[str, object]:
        """Send a document."""

    async def send_voice(self, target: str, media: MediaPayload) -> dict[str, object]:
        """Send an audio note."""

    async def send_video(
        self, target: str, media: MediaPayload, caption: str | None
    ) -> dict[str, object]:
        """Send a video with an optional caption."""

    async def get_messages_in_chat(
        self, chat_id: str, include_me: bool, include_notifications: bool
    ) -> list[dict[str, object]]:
        """Return message records for a chat."""

    def on(self, event: str, callback: EventCallback) -> None:
        """Register a listener for one of ENGINE_EVENTS."""


class AutomationEngine(Protocol):
    """Factory for engine instances."""

    async def create(self, config: EngineConfig) -> EngineHandle:
        """Launch an instance; resolves once the account is logged in."""
