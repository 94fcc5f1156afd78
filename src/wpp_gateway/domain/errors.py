"""Domain errors raised by the session lifecycle manager."""


class GatewayError(Exception):
    """Base class for errors reported to API callers."""


class SessionNotFoundError(GatewayError):
    """Raised when an operation references an unknown session id."""

    def __init__(self, session_id: str) -> None:
        super().__init__("Session not found")
        self.session_id = session_id


class SessionNotConnectedError(GatewayError):
    """Raised when an operation needs an active connection."""

    def __init__(self, session_id: str) -> None:
        super().__init__("Session not connected")
        self.session_id = session_id


class QRCodeNotAvailableError(GatewayError):
    """Raised when no QR code is cached for a session."""

    def __init__(self, session_id: str) -> None:
        super().__init__("QR Code not available")
        self.session_id = session_id


class QRCodeTimeoutError(GatewayError):
    """Raised when a QR code did not appear within the wait ceiling."""

    def __init__(self, session_id: str, timeout_seconds: float) -> None:
        super().__init__(f"Timed out after {timeout_seconds:g}s waiting for QR code")
        self.session_id = session_id
        self.timeout_seconds = timeout_seconds


class EngineError(GatewayError):
    """Raised when the automation engine fails or does not answer in time."""


class InvalidMediaError(GatewayError):
    """Raised when a media payload cannot be decoded."""


class InvalidSessionIdError(GatewayError):
    """Raised when a session id cannot name a credential directory."""

    def __init__(self, session_id: str) -> None:
        super().__init__("Invalid session id")
        self.session_id = session_id
