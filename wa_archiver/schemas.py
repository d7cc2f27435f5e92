"""
Pydantic schemas for inbound events and API responses.

This module contains:
- Message payload models (one optional field per message kind)
- Inbound event models pushed by the messaging bridge
- Request/response models for the HTTP API
"""

import base64
import binascii
from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, RootModel, field_validator


# =============================================================================
# Message Payload Models
# =============================================================================

class ExtendedTextMessage(BaseModel):
    """Text message carrying formatting, link previews or a quoted reply."""
    text: str = Field(default="", description="Message text")


class MediaMessage(BaseModel):
    """
    Reference to an encrypted media object on the messaging network's CDN.

    Key and hash fields are base64 strings, as the network encodes bytes in JSON.
    """
    url: str = Field(default="", description="CDN URL of the encrypted media")
    direct_path: Optional[str] = Field(None, description="CDN path, derived from url when absent")
    mimetype: Optional[str] = None
    caption: Optional[str] = None
    media_key: str = Field(default="", description="Symmetric key for decryption (base64)")
    file_sha256: str = Field(default="", description="SHA-256 of the plaintext (base64)")
    file_enc_sha256: str = Field(default="", description="SHA-256 of the ciphertext (base64)")
    file_length: int = Field(default=0, ge=0, description="Plaintext length in bytes")

    @field_validator("media_key", "file_sha256", "file_enc_sha256")
    @classmethod
    def validate_base64(cls, v: str, info) -> str:
        """Reject values that are not valid base64."""
        try:
            base64.b64decode(v, validate=True)
        except (binascii.Error, ValueError):
            raise ValueError(f"{info.field_name} must be base64-encoded")
        return v


class AudioMessage(MediaMessage):
    """Audio attachment; voice notes set ptt together with seconds and waveform."""
    seconds: Optional[int] = Field(None, ge=0)
    ptt: Optional[bool] = None
    waveform: Optional[str] = Field(None, description="64 amplitude values 0..100 (base64)")


class DocumentMessage(MediaMessage):
    """Arbitrary file attachment."""
    file_name: Optional[str] = None
    title: Optional[str] = None


class MessagePayload(BaseModel):
    """
    Message content. At most one text field and one media field are expected;
    extraction applies a fixed precedence when more are present.
    """
    conversation: Optional[str] = Field(None, description="Plain text message")
    extended_text_message: Optional[ExtendedTextMessage] = None
    image_message: Optional[MediaMessage] = None
    video_message: Optional[MediaMessage] = None
    audio_message: Optional[AudioMessage] = None
    document_message: Optional[DocumentMessage] = None


# =============================================================================
# Inbound Event Models
# =============================================================================

class MessageInfo(BaseModel):
    """Envelope metadata of a live message."""
    id: str = Field(..., min_length=1, description="Message identifier")
    chat: str = Field(..., min_length=1, description="Chat JID")
    sender: str = Field(..., min_length=1, description="Sender JID")
    timestamp: datetime
    is_from_me: bool = False


class LiveMessageEvent(BaseModel):
    """A message received (or sent from another device) in real time."""
    type: Literal["message"] = "message"
    info: MessageInfo
    message: Optional[MessagePayload] = None


class MessageKey(BaseModel):
    id: Optional[str] = None
    from_me: bool = False
    participant: Optional[str] = None


class HistoryMessage(BaseModel):
    """One stored message inside a history-sync conversation."""
    key: Optional[MessageKey] = None
    message_timestamp: int = Field(default=0, ge=0, description="Unix seconds")
    message: Optional[MessagePayload] = None


class Conversation(BaseModel):
    """A conversation delivered by history sync, with its inline metadata."""
    id: Optional[str] = None
    display_name: Optional[str] = None
    name: Optional[str] = None
    messages: list[HistoryMessage] = Field(default_factory=list)


class HistorySyncEvent(BaseModel):
    """Bulk backfill of previously missed conversations."""
    type: Literal["history_sync"] = "history_sync"
    conversations: list[Conversation] = Field(default_factory=list)


InboundEvent = Annotated[
    Union[LiveMessageEvent, HistorySyncEvent],
    Field(discriminator="type"),
]


class EventRequest(RootModel[InboundEvent]):
    """Body of POST /events, tagged by its ``type`` field."""

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "type": "message",
                    "info": {
                        "id": "3EB0C767D26A1D",
                        "chat": "123@s.whatsapp.net",
                        "sender": "123@s.whatsapp.net",
                        "timestamp": "2025-01-15T10:00:00Z",
                        "is_from_me": False,
                    },
                    "message": {"conversation": "hello"},
                }
            ]
        }
    }


# =============================================================================
# API Request/Response Models
# =============================================================================

class EventResponse(BaseModel):
    """Per-event processing outcome."""
    status: str = Field(default="ok", description="Request status")
    event_type: str
    result: str = Field(..., description="ok, degraded or ignored")
    message_id: Optional[str] = None
    archive_path: Optional[str] = None
    stored: Optional[int] = Field(None, ge=0, description="Messages stored by a history sync")


class SendMessageRequest(BaseModel):
    """Outbound send; media is read from the object store when given."""
    recipient: str = ""
    message: str = ""
    bucket_name: str = ""
    object_key: str = ""


class SendMessageResponse(BaseModel):
    success: bool
    message: str


class ErrorResponse(BaseModel):
    """Response model for error responses."""
    detail: str = Field(..., description="Error description")


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
