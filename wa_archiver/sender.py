"""
Outbound messages: text, or media read from the object store.

Ogg audio is sent as a voice note with a duration and waveform computed by
the Ogg/Opus analyzer.
"""

import base64
import logging
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from wa_archiver.audio import analyze_ogg_opus
from wa_archiver.bridge import MessagingClient, UploadedMedia
from wa_archiver.exceptions import FormatError
from wa_archiver.schemas import AudioMessage, DocumentMessage, MediaMessage, MessagePayload
from wa_archiver.utils import recipient_jid

logger = logging.getLogger(__name__)

# extension -> (media type, mimetype); anything else is sent as a document
MEDIA_TYPES_BY_EXTENSION = {
    "jpg": ("image", "image/jpeg"),
    "jpeg": ("image", "image/jpeg"),
    "png": ("image", "image/png"),
    "gif": ("image", "image/gif"),
    "webp": ("image", "image/webp"),
    "ogg": ("audio", "audio/ogg; codecs=opus"),
    "mp4": ("video", "video/mp4"),
    "avi": ("video", "video/avi"),
    "mov": ("video", "video/quicktime"),
}
DOCUMENT_MEDIA = ("document", "application/octet-stream")


def media_type_for(path: str) -> tuple[str, str]:
    """(media type, mimetype) for a file path, by extension."""
    extension = path.rsplit(".", 1)[-1].lower() if "." in path else ""
    return MEDIA_TYPES_BY_EXTENSION.get(extension, DOCUMENT_MEDIA)


def _b64(value: bytes) -> str:
    return base64.b64encode(value).decode("ascii")


def _media_fields(uploaded: UploadedMedia, mimetype: str) -> dict[str, Any]:
    return {
        "mimetype": mimetype,
        "url": uploaded.url,
        "direct_path": uploaded.direct_path,
        "media_key": _b64(uploaded.media_key),
        "file_sha256": _b64(uploaded.file_sha256),
        "file_enc_sha256": _b64(uploaded.file_enc_sha256),
        "file_length": uploaded.file_length,
    }


def build_media_payload(
    media_type: str,
    mimetype: str,
    uploaded: UploadedMedia,
    data: bytes,
    caption: str,
    filename: str,
) -> MessagePayload:
    """
    Message payload for uploaded media.

    Raises:
        FormatError: if audio data is not an Ogg stream
    """
    fields = _media_fields(uploaded, mimetype)
    if media_type == "image":
        return MessagePayload(image_message=MediaMessage(caption=caption, **fields))
    if media_type == "video":
        return MessagePayload(video_message=MediaMessage(caption=caption, **fields))
    if media_type == "audio":
        analysis = analyze_ogg_opus(data)
        return MessagePayload(
            audio_message=AudioMessage(
                seconds=analysis.duration_seconds,
                ptt=True,
                waveform=_b64(analysis.waveform),
                **fields,
            )
        )
    return MessagePayload(
        document_message=DocumentMessage(title=filename, file_name=filename, caption=caption, **fields)
    )


def send_message(
    client: MessagingClient,
    s3,
    recipient: str,
    message: str,
    bucket_name: str = "",
    object_key: str = "",
) -> tuple[bool, str]:
    """
    Send a text or media message.

    Returns:
        Tuple of (success, human-readable status)
    """
    if not client.is_connected():
        return False, "Not connected to WhatsApp"

    try:
        jid = recipient_jid(recipient)
    except ValueError as e:
        return False, f"Error parsing JID: {e}"

    if bucket_name and object_key:
        try:
            obj = s3.get_object(Bucket=bucket_name, Key=object_key)
            data = obj["Body"].read()
        except (BotoCoreError, ClientError) as e:
            return False, f"Error reading media {bucket_name}/{object_key}: {e}"

        media_type, mimetype = media_type_for(object_key)
        try:
            uploaded = client.upload_media(data, media_type)
        except Exception as e:
            logger.error(f"Media upload for {recipient} failed: {e}")
            return False, f"Error uploading media: {e}"

        try:
            payload = build_media_payload(
                media_type,
                mimetype,
                uploaded,
                data,
                caption=message,
                filename=object_key.rsplit("/", 1)[-1],
            )
        except FormatError as e:
            return False, f"Failed to analyze Ogg Opus file: {e}"
    else:
        payload = MessagePayload(conversation=message)

    try:
        client.send_message(jid, payload.model_dump(mode="json", exclude_none=True))
    except Exception as e:
        logger.error(f"Sending message to {recipient} failed: {e}")
        return False, f"Error sending message: {e}"

    logger.info(f"Message sent to {jid}")
    return True, f"Message sent to {recipient}"
