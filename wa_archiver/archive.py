"""
Archival of message content to S3-compatible object storage.

Text messages are archived as their UTF-8 bytes, media messages as the
decrypted media fetched through the messaging client. Objects live at
``input/<chat_jid>/<filename>``; an existing key counts as already archived.
"""

import logging

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError, WaiterError

from wa_archiver.bridge import MediaDownloadRequest, MessagingClient
from wa_archiver.config import Settings
from wa_archiver.exceptions import (
    ArchiveError,
    BucketMissingError,
    DuplicateObjectError,
    MediaFetchError,
    OversizeError,
)
from wa_archiver.extractor import ExtractedContent
from wa_archiver.metrics import record_archive_outcome
from wa_archiver.utils import extract_direct_path

logger = logging.getLogger(__name__)

KEY_PREFIX = "input"


def create_s3_client(config: Settings):
    """S3 client for the configured region and (optional) custom endpoint."""
    return boto3.client(
        "s3",
        region_name=config.AWS_REGION,
        endpoint_url=config.AWS_S3_ENDPOINT_URL,
        config=BotoConfig(signature_version="s3v4", connect_timeout=10, read_timeout=60),
    )


def object_key(chat_jid: str, filename: str) -> str:
    return f"{KEY_PREFIX}/{chat_jid}/{filename}"


def _error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


def fetch_media(client: MessagingClient, message_id: str, chat_jid: str, content: ExtractedContent) -> bytes:
    """
    Download and decrypt the media referenced by a message.

    Raises:
        MediaFetchError: on incomplete media information or a failed download
    """
    if (
        not content.url
        or not content.media_key
        or not content.file_sha256
        or not content.file_enc_sha256
        or not content.file_length
    ):
        raise MediaFetchError(f"incomplete media information for message {message_id}")

    logger.info(f"Downloading {content.media_type.value} media for message {message_id} in chat {chat_jid}")
    request = MediaDownloadRequest(
        url=content.url,
        direct_path=extract_direct_path(content.url),
        media_key=content.media_key,
        file_sha256=content.file_sha256,
        file_enc_sha256=content.file_enc_sha256,
        file_length=content.file_length,
        media_type=content.media_type.value,
    )
    return client.download_media(request)


def upload_object(
    s3,
    bucket: str,
    key: str,
    data: bytes,
    wait: bool = True,
    wait_timeout: int = 60,
) -> None:
    """
    Put ``data`` at ``key`` unless the key already exists.

    Raises:
        DuplicateObjectError: the key already exists (nothing was written)
        BucketMissingError: the bucket does not exist
        OversizeError: the object is too large for a single put
        ArchiveError: any other upload failure
    """
    paginator = s3.get_paginator("list_objects_v2")
    try:
        for page in paginator.paginate(Bucket=bucket, Prefix=key):
            for obj in page.get("Contents", []):
                if obj["Key"] == key:
                    raise DuplicateObjectError(bucket, key)
    except ClientError as e:
        if _error_code(e) == "NoSuchBucket":
            raise BucketMissingError(f"bucket {bucket} does not exist") from e
        # Listing is only a de-duplication hint, the put is still attempted
        logger.warning(f"Could not list objects under {key} in {bucket}: {e}")
    except BotoCoreError as e:
        logger.warning(f"Could not list objects under {key} in {bucket}: {e}")

    try:
        s3.put_object(Bucket=bucket, Key=key, Body=data)
    except ClientError as e:
        code = _error_code(e)
        if code == "EntityTooLarge":
            raise OversizeError(
                f"object {key} ({len(data)} bytes) is too large for a single upload, use multipart"
            ) from e
        if code == "NoSuchBucket":
            raise BucketMissingError(f"bucket {bucket} does not exist") from e
        raise ArchiveError(f"couldn't upload {key} to {bucket}: {e}") from e
    except BotoCoreError as e:
        raise ArchiveError(f"couldn't upload {key} to {bucket}: {e}") from e

    if wait:
        try:
            s3.get_waiter("object_exists").wait(
                Bucket=bucket,
                Key=key,
                WaiterConfig={"Delay": 1, "MaxAttempts": max(1, wait_timeout)},
            )
        except WaiterError as e:
            logger.warning(f"Object {key} not yet visible in {bucket}: {e}")


def archive_message(
    client: MessagingClient,
    s3,
    bucket: str,
    message_id: str,
    chat_jid: str,
    content: ExtractedContent,
    wait: bool = True,
    wait_timeout: int = 60,
) -> str:
    """
    Archive a message's text or media to the object store.

    Media takes precedence over text when a message carries both.

    Returns:
        ``<bucket>/<key>`` of the archived object, also when it already existed

    Raises:
        ArchiveError: nothing to archive, or the upload failed
        MediaFetchError: the media could not be downloaded
    """
    if not content.is_storable:
        raise ArchiveError(f"no content or media to upload for message {message_id}")

    if content.has_media:
        data = fetch_media(client, message_id, chat_jid, content)
    else:
        data = content.content.encode("utf-8")

    key = object_key(chat_jid, content.filename)
    try:
        upload_object(s3, bucket, key, data, wait=wait, wait_timeout=wait_timeout)
    except DuplicateObjectError:
        logger.info(f"Object {key} already exists in bucket {bucket}, skipping upload")
        record_archive_outcome("duplicate")
    else:
        logger.info(f"Uploaded message {message_id} to {bucket}/{key}")
        record_archive_outcome("uploaded")

    return f"{bucket}/{key}"
