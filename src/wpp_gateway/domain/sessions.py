"""Domain models for automation sessions."""

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime

from wpp_gateway.domain.engine import EngineHandle

STATUS_INITIALIZING = "initializing"
STATUS_QRCODE = "qrcode"
STATUS_CONNECTED = "connected"
STATUS_DISCONNECTED = "disconnected"
STATUS_NOT_LOGGED = "notLogged"
STATUS_ERROR = "error"

# Raw engine statuses that mean the account is logged in.
AUTHENTICATED_ENGINE_STATUSES = frozenset({"authenticated", "isLogged"})
# Raw engine statuses after which the current QR code can no longer be scanned.
TERMINAL_ENGINE_STATUSES = frozenset(
    {
        "autocloseCalled",
        "browserClose",
        "desconnectedMobile",
        "deleteToken",
        "qrReadFail",
    }
)


def is_valid_session_id(session_id: str) -> bool:
    """Return True if the id can name its own credential directory."""
    if not session_id or session_id.startswith("."):
        return False
    return not any(char in session_id for char in ("/", "\\", "\x00"))


@dataclass
class Session:
    """Live state of one session known to this process."""

    session_id: str
    status: str = STATUS_INITIALIZING
    qr_code: str | None = None
    handle: EngineHandle | None = None
    engine_status: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    creation_task: "asyncio.Task[None] | None" = None
    creation_error: BaseException | None = None

    def set_qr_code(self, qr_code: str) -> None:
        """Cache a freshly generated QR code."""
        self.qr_code = qr_code
        self.status = STATUS_QRCODE

    def mark_connected(self) -> None:
        """Record an authenticated session and drop any QR code."""
        self.status = STATUS_CONNECTED
        self.qr_code = None

    def mark_disconnected(self) -> None:
        """Record a session that lost its login."""
        self.status = STATUS_DISCONNECTED
        self.qr_code = None

    @property
    def is_creating(self) -> bool:
        """Return True while engine creation has not finished."""
        return self.creation_task is not None and not self.creation_task.done()


@dataclass(frozen=True)
class StartResult:
    """Outcome of a start-session request."""

    session_id: str
    status: str
    qr_code: str | None
    webhook: str | None
    message: str


@dataclass(frozen=True)
class StatusReport:
    """Connectivity report for a single session."""

    session_id: str
    status: str
    connected: bool
    known: bool
    error: str | None = None


@dataclass(frozen=True)
class QRCodeResult:
    """QR code lookup result."""

    session_id: str
    qr_code: str | None
    connected: bool


@dataclass(frozen=True)
class SessionSummary:
    """Listing entry for a session."""

    name: str
    status: str
    connected: bool
    has_qr_code: bool
    engine_status: str | None
    created_at: datetime


@dataclass(frozen=True)
class SendResult:
    """Result of a delegated send operation."""

    session_id: str
    to: str
    result: object
