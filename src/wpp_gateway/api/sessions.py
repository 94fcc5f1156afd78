"""Session API endpoints with shared-secret auth."""

from __future__ import annotations

import base64
import binascii
import mimetypes
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status

from wpp_gateway.api.models import (
    SendMediaRequest,
    SendTextRequest,
    SendVoiceRequest,
    StartSessionRequest,
    WebhookRequest,
)
from wpp_gateway.domain.engine import MediaPayload
from wpp_gateway.domain.errors import InvalidMediaError

if TYPE_CHECKING:
    from wpp_gateway.containers import AppContainer
    from wpp_gateway.domain.sessions import SendResult
    from wpp_gateway.services.sessions import SessionManager


def _get_api_key(request: Request) -> str:
    container: AppContainer = request.app.state.container
    return container.settings.api_key


async def require_api_key(
    authorization: str | None = Header(default=None),
    x_api_key: str | None = Header(default=None),
    api_key: str = Depends(_get_api_key),
) -> None:
    """Ensure requests carry the shared secret as a bearer token or X-Api-Key."""
    supplied = x_api_key
    if authorization:
        supplied = authorization.removeprefix("Bearer ").strip() or x_api_key
    if not supplied or supplied != api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized"
        )


router = APIRouter(
    prefix="/api", tags=["sessions"], dependencies=[Depends(require_api_key)]
)


def _manager(request: Request) -> SessionManager:
    container: AppContainer = request.app.state.container
    return container.session_manager


@router.get("/sessions")
async def list_sessions(request: Request) -> dict[str, object]:
    """Return every session with a best-effort connectivity check."""
    summaries = await _manager(request).list_sessions()
    return {
        "success": True,
        "count": len(summaries),
        "sessions": [
            {
                "name": summary.name,
                "status": summary.status,
                "connected": summary.connected,
                "hasQrCode": summary.has_qr_code,
                "engineStatus": summary.engine_status,
                "createdAt": summary.created_at.isoformat(),
            }
            for summary in summaries
        ],
    }


@router.post("/{session}/start-session")
async def start_session(
    session: str, request: Request, body: StartSessionRequest | None = None
) -> dict[str, object]:
    """Start a session, optionally waiting for its first QR code."""
    payload = body or StartSessionRequest()
    result = await _manager(request).start_session(
        session,
        webhook_url=payload.webhook,
        wait_for_qr=payload.wait_qr_code,
    )
    return {
        "success": True,
        "session": result.session_id,
        "qrCode": result.qr_code,
        "status": result.status,
        "message": result.message,
        "webhook": result.webhook,
    }


@router.get("/{session}/qrcode")
async def get_qr_code(session: str, request: Request) -> dict[str, object]:
    """Return the pending QR code of a session."""
    result = await _manager(request).get_qr_code(session)
    if result.connected:
        return {
            "success": True,
            "session": session,
            "qrCode": None,
            "connected": True,
            "message": "Session already connected",
        }
    return {"success": True, "session": session, "qrCode": result.qr_code}


@router.get("/{session}/status")
async def get_status(session: str, request: Request) -> dict[str, object]:
    """Return the connectivity status of a session."""
    report = await _manager(request).get_status(session)
    response: dict[str, object] = {
        "success": report.known and report.error is None,
        "session": session,
        "status": report.status,
        "connected": report.connected,
    }
    if report.error is not None:
        response["error"] = report.error
    return response


@router.post("/{session}/logout")
async def logout(session: str, request: Request) -> dict[str, object]:
    """Log out a session and release its engine."""
    await _manager(request).logout(session)
    return {"success": True, "message": "Logged out successfully", "session": session}


@router.post("/{session}/send-text")
async def send_text(
    session: str, body: SendTextRequest, request: Request
) -> dict[str, object]:
    """Send a text message."""
    result = await _manager(request).send_text(session, body.phone, body.message)
    return _sent_response(result)


@router.post("/{session}/send-image")
async def send_image(
    session: str, body: SendMediaRequest, request: Request
) -> dict[str, object]:
    """Send an image."""
    media = decode_media(body.base64, body.filename, "image.jpg", "image/jpeg")
    result = await _manager(request).send_image(
        session, body.phone, media, body.caption
    )
    return _sent_response(result)


@router.post("/{session}/send-file")
async def send_file(
    session: str, body: SendMediaRequest, request: Request
) -> dict[str, object]:
    """Send a document."""
    media = decode_media(body.base64, body.filename, "file")
    result = await _manager(request).send_file(
        session, body.phone, media, body.caption
    )
    return _sent_response(result)


@router.post("/{session}/send-voice")
async def send_voice(
    session: str, body: SendVoiceRequest, request: Request
) -> dict[str, object]:
    """Send a voice note."""
    media = decode_media(body.base64, body.filename, "voice.ogg", "audio/ogg")
    result = await _manager(request).send_voice(session, body.phone, media)
    return _sent_response(result)


@router.post("/{session}/send-video")
async def send_video(
    session: str, body: SendMediaRequest, request: Request
) -> dict[str, object]:
    """Send a video."""
    media = decode_media(body.base64, body.filename, "video.mp4", "video/mp4")
    result = await _manager(request).send_video(
        session, body.phone, media, body.caption
    )
    return _sent_response(result)


@router.get("/{session}/messages/{target}")
async def get_messages(
    session: str,
    target: str,
    request: Request,
    include_me: bool = Query(default=True, alias="includeMe"),
    include_notifications: bool = Query(default=False, alias="includeNotifications"),
) -> dict[str, object]:
    """Return the message history of a chat."""
    chat_id, messages = await _manager(request).get_messages(
        session, target, include_me, include_notifications
    )
    return {
        "success": True,
        "session": session,
        "chatId": chat_id,
        "count": len(messages),
        "messages": messages,
    }


@router.get("/{session}/webhook")
async def get_webhook(session: str, request: Request) -> dict[str, object]:
    """Return the webhook registered for a session."""
    return {
        "success": True,
        "session": session,
        "webhook": _manager(request).get_webhook(session),
    }


@router.post("/{session}/webhook")
async def set_webhook(
    session: str, body: WebhookRequest, request: Request
) -> dict[str, object]:
    """Register the webhook for a session."""
    _manager(request).set_webhook(session, body.url)
    return {"success": True, "session": session, "webhook": body.url}


@router.delete("/{session}/webhook")
async def delete_webhook(session: str, request: Request) -> dict[str, object]:
    """Remove the webhook of a session."""
    removed = _manager(request).remove_webhook(session)
    return {"success": True, "session": session, "removed": removed}


def decode_media(
    raw: str,
    filename: str | None,
    default_name: str,
    default_mimetype: str = "application/octet-stream",
) -> MediaPayload:
    """Decode a bare base64 string or a data URL into a media payload."""
    mimetype = None
    data = raw.strip()
    if data.startswith("data:"):
        header, _, data = data.partition(",")
        mimetype = header[len("data:") :].split(";", maxsplit=1)[0] or None
    if mimetype is None and filename:
        mimetype = mimetypes.guess_type(filename)[0]
    try:
        content = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidMediaError("Invalid base64 media data") from exc
    if not content:
        raise InvalidMediaError("Empty media data")
    return MediaPayload(
        data=content,
        filename=filename or default_name,
        mimetype=mimetype or default_mimetype,
    )


def _sent_response(result: SendResult) -> dict[str, object]:
    return {
        "success": True,
        "result": result.result,
        "session": result.session_id,
        "to": result.to,
        "message": "Sent successfully",
    }
