"""Pydantic models for session API request bodies."""

from pydantic import BaseModel, ConfigDict, Field


class StartSessionRequest(BaseModel):
    """Body of a start-session request."""

    model_config = ConfigDict(populate_by_name=True)

    webhook: str | None = None
    wait_qr_code: bool = Field(default=False, alias="waitQrCode")


class SendTextRequest(BaseModel):
    """Body of a send-text request."""

    phone: str = Field(min_length=1)
    message: str = Field(min_length=1)


class SendMediaRequest(BaseModel):
    """Body of an image, file or video send request."""

    phone: str = Field(min_length=1)
    base64: str = Field(min_length=1)
    filename: str | None = None
    caption: str | None = None


class SendVoiceRequest(BaseModel):
    """Body of a voice note send request."""

    phone: str = Field(min_length=1)
    base64: str = Field(min_length=1)
    filename: str | None = None


class WebhookRequest(BaseModel):
    """Body of a webhook registration request."""

    url: str = Field(min_length=1)
