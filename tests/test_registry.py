"""Tests for the in-memory session registry."""

from wpp_gateway.domain.sessions import Session
from wpp_gateway.services.registry import SessionRegistry


def test_put_get_and_list() -> None:
    registry = SessionRegistry()
    alpha = Session(session_id="alpha")
    beta = Session(session_id="beta")

    registry.put(alpha)
    registry.put(beta)

    assert registry.get("alpha") is alpha
    assert registry.get("missing") is None
    assert {session.session_id for session in registry.list()} == {"alpha", "beta"}
    assert "alpha" in registry
    assert len(registry) == 2


def test_remove_with_expected_keeps_replacement() -> None:
    registry = SessionRegistry()
    stale = Session(session_id="alpha")
    replacement = Session(session_id="alpha")
    registry.put(stale)
    registry.put(replacement)

    assert registry.remove("alpha", expected=stale) is False
    assert registry.get("alpha") is replacement
    assert registry.remove("alpha", expected=replacement) is True
    assert registry.remove("alpha") is False


def test_clear() -> None:
    registry = SessionRegistry()
    registry.put(Session(session_id="alpha"))

    registry.clear()

    assert len(registry) == 0
    assert registry.list() == []


def test_session_state_transitions() -> None:
    session = Session(session_id="alpha")

    session.set_qr_code("data:image/png;base64,AAA")
    assert session.status == "qrcode"

    session.mark_connected()
    assert session.status == "connected"
    assert session.qr_code is None

    session.set_qr_code("data:image/png;base64,BBB")
    session.mark_disconnected()
    assert session.status == "disconnected"
    assert session.qr_code is None
    assert session.is_creating is False
