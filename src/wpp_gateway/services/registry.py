"""In-memory registry of sessions known to this process."""

from dataclasses import dataclass, field

from wpp_gateway.domain.sessions import Session


@dataclass
class SessionRegistry:
    """Maps session ids to their live session state."""

    _sessions: dict[str, Session] = field(default_factory=dict)

    def get(self, session_id: str) -> Session | None:
        """Return the session for an id, if known."""
        return self._sessions.get(session_id)

    def put(self, session: Session) -> None:
        """Store or replace a session."""
        self._sessions[session.session_id] = session

    def remove(self, session_id: str, expected: Session | None = None) -> bool:
        """Remove a session; with `expected`, only if it is still the stored one."""
        current = self._sessions.get(session_id)
        if current is None:
            return False
        if expected is not None and current is not expected:
            return False
        del self._sessions[session_id]
        return True

    def list(self) -> list[Session]:
        """Return a snapshot of all sessions."""
        return list(self._sessions.values())

    def clear(self) -> None:
        """Forget every session."""
        self._sessions.clear()

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
