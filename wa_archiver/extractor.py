"""
Content extraction from inbound message payloads.

Turns one MessagePayload into the flat set of fields the store and the
archiver work with. Pure: no I/O, and the clock is only read for default
filenames.
"""

import base64
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from wa_archiver.schemas import MediaMessage, MessagePayload
from wa_archiver.utils import compact_timestamp

logger = logging.getLogger(__name__)


class MediaType(str, Enum):
    NONE = ""
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"


# Extension for generated filenames; documents keep their declared name
DEFAULT_EXTENSIONS = {
    MediaType.IMAGE: ".jpg",
    MediaType.VIDEO: ".mp4",
    MediaType.AUDIO: ".ogg",
    MediaType.DOCUMENT: "",
}


@dataclass(frozen=True)
class ExtractedContent:
    content: str = ""
    media_type: MediaType = MediaType.NONE
    filename: str = ""
    url: str = ""
    media_key: bytes = b""
    file_sha256: bytes = b""
    file_enc_sha256: bytes = b""
    file_length: int = 0

    @property
    def has_media(self) -> bool:
        return self.media_type is not MediaType.NONE

    @property
    def is_storable(self) -> bool:
        """False for messages with neither text nor media."""
        return bool(self.content) or self.has_media


def extract_text_content(payload: Optional[MessagePayload]) -> str:
    if payload is None:
        return ""
    if payload.conversation:
        return payload.conversation
    if payload.extended_text_message is not None:
        return payload.extended_text_message.text
    return ""


def _select_media(payload: MessagePayload) -> tuple[MediaType, Optional[MediaMessage]]:
    # First match wins
    if payload.image_message is not None:
        return MediaType.IMAGE, payload.image_message
    if payload.video_message is not None:
        return MediaType.VIDEO, payload.video_message
    if payload.audio_message is not None:
        return MediaType.AUDIO, payload.audio_message
    if payload.document_message is not None:
        return MediaType.DOCUMENT, payload.document_message
    return MediaType.NONE, None


def default_filename(media_type: MediaType, now: datetime) -> str:
    """``<type>_<YYYYmmdd_HHMMSS><ext>``; text messages use the ``text`` prefix and ``.txt``."""
    stamp = compact_timestamp(now)
    if media_type is MediaType.NONE:
        return f"text_{stamp}.txt"
    return f"{media_type.value}_{stamp}{DEFAULT_EXTENSIONS[media_type]}"


def extract_message_content(
    payload: Optional[MessagePayload],
    now: Optional[datetime] = None,
) -> ExtractedContent:
    """
    Classify a message payload and pull out its text and media descriptor.

    Args:
        payload: Inbound payload, may be None for protocol-only messages
        now: Instant used for generated filenames (defaults to the wall clock)

    Returns:
        ExtractedContent; an empty one when the payload has no text and no media
    """
    if payload is None:
        return ExtractedContent()

    now = now or datetime.now()
    content = extract_text_content(payload)
    media_type, media = _select_media(payload)
    if media is None:
        if not content:
            return ExtractedContent()
        return ExtractedContent(content=content, filename=default_filename(MediaType.NONE, now))

    filename = default_filename(media_type, now)
    if media_type is MediaType.DOCUMENT and payload.document_message.file_name:
        filename = payload.document_message.file_name

    logger.debug(f"Extracted {media_type.value} media with filename {filename}")

    return ExtractedContent(
        content=content,
        media_type=media_type,
        filename=filename,
        url=media.url,
        media_key=base64.b64decode(media.media_key),
        file_sha256=base64.b64decode(media.file_sha256),
        file_enc_sha256=base64.b64decode(media.file_enc_sha256),
        file_length=media.file_length,
    )
