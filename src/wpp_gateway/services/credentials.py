"""Filesystem store for engine-written session credentials."""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

_logger = logging.getLogger(__name__)


@dataclass
class CredentialStore:
    """Root directory holding one engine-owned subtree per session id.

    The gateway never reads the files inside a session directory. It only
    makes sure the root exists and is writable, hands the root to the engine,
    and checks whether a session directory is present.
    """

    root: Path

    def prepare(self) -> bool:
        """Create the root and verify it is writable; warn instead of failing."""
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            _logger.warning(
                "Credential directory %s cannot be created, sessions will not "
                "survive restarts: %s",
                self.root,
                exc,
            )
            return False
        probe = self.root / ".write-test"
        try:
            probe.write_text("ok", encoding="utf-8")
            probe.unlink()
        except OSError as exc:
            _logger.warning(
                "Credential directory %s is not writable, sessions will not "
                "survive restarts: %s",
                self.root,
                exc,
            )
            return False
        _logger.info("Credential directory ready at %s", self.root)
        return True

    def session_dir(self, session_id: str) -> Path:
        """Return the directory the engine uses for a session."""
        return self.root / session_id

    def has_credentials(self, session_id: str) -> bool:
        """Return True when a non-empty credential directory exists."""
        path = self.session_dir(session_id)
        if not path.is_dir():
            return False
        with os.scandir(path) as entries:
            return any(True for _ in entries)

    def persisted_sessions(self) -> list[str]:
        """Return session ids that have credentials on disk."""
        if not self.root.is_dir():
            return []
        return sorted(
            entry.name
            for entry in self.root.iterdir()
            if entry.is_dir()
            and not entry.name.startswith(".")
            and self.has_credentials(entry.name)
        )
