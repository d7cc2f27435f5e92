"""
Event dispatch for live messages and history-sync batches.

Each event runs to completion on its own: a failing step is logged with the
message and chat ids and counted, and the remaining steps are still
attempted. Nothing here is fatal to the process.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional, Union

from sqlalchemy.orm import Session

from wa_archiver.archive import archive_message
from wa_archiver.bridge import MessagingClient
from wa_archiver.chat_names import ConversationMetadata, resolve_chat_name
from wa_archiver.exceptions import (
    ArchiveError,
    BucketMissingError,
    MediaFetchError,
    OversizeError,
    PersistenceError,
)
from wa_archiver.extractor import ExtractedContent, MediaType, extract_message_content
from wa_archiver.logging_utils import event_context
from wa_archiver.metrics import (
    record_archive_outcome,
    record_event_outcome,
    record_history_messages_stored,
)
from wa_archiver.schemas import Conversation, HistoryMessage, HistorySyncEvent, LiveMessageEvent
from wa_archiver.storage import store_chat, store_message
from wa_archiver.utils import JID, parse_jid

logger = logging.getLogger(__name__)

# Live traffic archives text plus these media types only
LIVE_MEDIA_TYPES = frozenset({MediaType.AUDIO})


@dataclass
class MessageOutcome:
    message_id: str
    chat_jid: str
    result: str = "ok"  # ok, degraded or ignored
    chat_stored: bool = False
    message_stored: bool = False
    archive_path: Optional[str] = None
    errors: list[str] = field(default_factory=list)


@dataclass
class HistorySyncOutcome:
    conversations: int = 0
    stored: int = 0
    skipped: int = 0
    failed: int = 0
    chat_failed: int = 0  # chat upserts that failed

    @property
    def result(self) -> str:
        return "ok" if self.failed == 0 and self.chat_failed == 0 else "degraded"


class EventDispatcher:
    """
    Routes inbound events through extraction, name resolution, persistence
    and archival.

    Args:
        session_factory: Callable returning a new SQLAlchemy session
        client: Messaging client for lookups and media downloads
        s3: boto3 S3 client; archival is skipped when None
        bucket: Destination bucket; archival is skipped when empty
        wait_for_object: Wait for read-after-write visibility after uploads
        wait_timeout: Maximum seconds to wait for visibility
        clock: Source of the current instant, used for generated filenames
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        client: MessagingClient,
        s3=None,
        bucket: str = "",
        wait_for_object: bool = True,
        wait_timeout: int = 60,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._session_factory = session_factory
        self._client = client
        self._s3 = s3
        self._bucket = bucket
        self._wait_for_object = wait_for_object
        self._wait_timeout = wait_timeout
        self._clock = clock

    def dispatch(self, event: Union[LiveMessageEvent, HistorySyncEvent]):
        """
        Process one event. Unexpected failures are logged and counted as a
        degraded outcome instead of propagating.
        """
        try:
            if isinstance(event, LiveMessageEvent):
                return self.handle_message(event)
            return self.handle_history_sync(event)
        except Exception as e:
            logger.exception(f"Unexpected failure processing {event.type} event: {e}")
            record_event_outcome(event.type, "degraded")
            if isinstance(event, LiveMessageEvent):
                return MessageOutcome(
                    message_id=event.info.id,
                    chat_jid=event.info.chat,
                    result="degraded",
                    errors=[str(e)],
                )
            return HistorySyncOutcome(failed=1)

    # -------------------------------------------------------------------------
    # Live messages
    # -------------------------------------------------------------------------

    def handle_message(self, event: LiveMessageEvent) -> MessageOutcome:
        with event_context(message_id=event.info.id, chat_jid=event.info.chat):
            return self._handle_message(event)

    def _handle_message(self, event: LiveMessageEvent) -> MessageOutcome:
        info = event.info
        outcome = MessageOutcome(message_id=info.id, chat_jid=info.chat)

        content = extract_message_content(event.message, now=self._clock())
        if not content.content and content.media_type not in LIVE_MEDIA_TYPES:
            logger.info(
                f"Ignoring message {info.id} in {info.chat}: "
                f"media type {content.media_type.value or 'none'} without text"
            )
            outcome.result = "ignored"
            record_event_outcome("message", outcome.result)
            return outcome

        try:
            jid = parse_jid(info.chat)
        except ValueError as e:
            logger.warning(f"Ignoring message {info.id}: {e}")
            outcome.result = "ignored"
            outcome.errors.append(str(e))
            record_event_outcome("message", outcome.result)
            return outcome

        sender = _user_part(info.sender)

        with self._session_factory() as db:
            name = resolve_chat_name(db, self._client, jid, sender=sender, chat_jid=info.chat)

            try:
                store_chat(db, info.chat, name, info.timestamp)
                outcome.chat_stored = True
                logger.info(f"Updated chat {info.chat} with latest timestamp {info.timestamp.isoformat()}")
            except PersistenceError as e:
                logger.warning(f"Failed to store chat {info.chat} for message {info.id}: {e}")
                outcome.errors.append(str(e))

            try:
                outcome.message_stored = store_message(
                    db,
                    message_id=info.id,
                    chat_jid=info.chat,
                    sender=sender,
                    content=content.content,
                    timestamp=info.timestamp,
                    is_from_me=info.is_from_me,
                    **_media_fields(content),
                )
                logger.info(f"Stored message {info.id} from {sender} in chat {info.chat}")
            except PersistenceError as e:
                logger.warning(f"Failed to store message {info.id} in {info.chat}: {e}")
                outcome.errors.append(str(e))

        outcome.archive_path = self._archive(info.id, info.chat, content, outcome)

        outcome.result = "ok" if not outcome.errors else "degraded"
        record_event_outcome("message", outcome.result)
        return outcome

    def _archive(
        self,
        message_id: str,
        chat_jid: str,
        content: ExtractedContent,
        outcome: MessageOutcome,
    ) -> Optional[str]:
        if self._s3 is None or not self._bucket:
            logger.warning(f"No archive bucket configured, message {message_id} not archived")
            return None

        try:
            return archive_message(
                self._client,
                self._s3,
                self._bucket,
                message_id,
                chat_jid,
                content,
                wait=self._wait_for_object,
                wait_timeout=self._wait_timeout,
            )
        except MediaFetchError as e:
            result = "media_error"
            error = e
        except OversizeError as e:
            result = "oversize"
            error = e
        except BucketMissingError as e:
            result = "bucket_missing"
            error = e
        except ArchiveError as e:
            result = "error"
            error = e

        logger.warning(f"Failed to archive message {message_id} in {chat_jid}: {error}")
        record_archive_outcome(result)
        outcome.errors.append(str(error))
        return None

    # -------------------------------------------------------------------------
    # History sync
    # -------------------------------------------------------------------------

    def handle_history_sync(self, event: HistorySyncEvent) -> HistorySyncOutcome:
        """
        Store every message of a backfill batch, in delivered order.

        The chat row is upserted with each message's timestamp, so it ends up
        with the timestamp of the last message processed. No archival.
        """
        outcome = HistorySyncOutcome()
        logger.info(f"Received history sync event with {len(event.conversations)} conversations")

        for conversation in event.conversations:
            outcome.conversations += 1
            if not conversation.id:
                continue
            try:
                jid = parse_jid(conversation.id)
            except ValueError as e:
                logger.warning(f"Failed to parse JID {conversation.id}: {e}")
                continue

            with event_context(chat_jid=conversation.id):
                self._sync_conversation(conversation, jid, outcome)

        logger.info(f"History sync complete. Stored {outcome.stored} messages.")
        record_history_messages_stored(outcome.stored)
        record_event_outcome("history_sync", outcome.result)
        return outcome

    def _sync_conversation(self, conversation: Conversation, jid: JID, outcome: HistorySyncOutcome) -> None:
        chat_jid = conversation.id
        with self._session_factory() as db:
            name = resolve_chat_name(
                db,
                self._client,
                jid,
                metadata=ConversationMetadata.from_conversation(conversation),
                chat_jid=chat_jid,
            )

            for msg in conversation.messages:
                content = extract_message_content(msg.message, now=self._clock())
                if not content.is_storable:
                    outcome.skipped += 1
                    continue
                message_id = msg.key.id if msg.key is not None else None
                if not message_id or not msg.message_timestamp:
                    outcome.skipped += 1
                    continue

                timestamp = datetime.fromtimestamp(msg.message_timestamp, tz=timezone.utc)
                sender = self._history_sender(msg, jid)

                try:
                    store_chat(db, chat_jid, name, timestamp)
                except PersistenceError as e:
                    logger.warning(f"Failed to store chat {chat_jid} for message {message_id}: {e}")
                    outcome.chat_failed += 1

                try:
                    store_message(
                        db,
                        message_id=message_id,
                        chat_jid=chat_jid,
                        sender=sender,
                        content=content.content,
                        timestamp=timestamp,
                        is_from_me=msg.key.from_me,
                        **_media_fields(content),
                    )
                except PersistenceError as e:
                    logger.warning(f"Failed to store history message {message_id} in {chat_jid}: {e}")
                    outcome.failed += 1
                    continue

                outcome.stored += 1
                logger.debug(
                    f"Stored message: [{timestamp:%Y-%m-%d %H:%M:%S}] {sender} -> {chat_jid}: "
                    f"{content.media_type.value or 'text'}"
                )

    def _history_sender(self, msg: HistoryMessage, jid: JID) -> str:
        key = msg.key
        if key.from_me:
            return self._client.own_user() or jid.user
        if key.participant:
            return key.participant
        return jid.user


def _user_part(value: str) -> str:
    try:
        return parse_jid(value).user
    except ValueError:
        return value


def _media_fields(content: ExtractedContent) -> dict:
    return {
        "media_type": content.media_type.value,
        "filename": content.filename,
        "url": content.url,
        "media_key": content.media_key,
        "file_sha256": content.file_sha256,
        "file_enc_sha256": content.file_enc_sha256,
        "file_length": content.file_length,
    }
