"""
Display-name resolution for chats.

Priority: stored name, then (groups) inline metadata and the group-info
service, or (individuals) the contact directory and the sender, then a
name built from the JID itself. Read-only: the caller stores the result.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from wa_archiver.bridge import MessagingClient
from wa_archiver.exceptions import PersistenceError
from wa_archiver.schemas import Conversation
from wa_archiver.storage import get_chat_name
from wa_archiver.utils import JID

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConversationMetadata:
    """Names a history-sync conversation carries inline."""
    display_name: Optional[str] = None
    name: Optional[str] = None

    @classmethod
    def from_conversation(cls, conversation: Conversation) -> "ConversationMetadata":
        return cls(display_name=conversation.display_name, name=conversation.name)


def _stored_name(db: Session, chat_jid: str) -> Optional[str]:
    try:
        return get_chat_name(db, chat_jid)
    except PersistenceError as e:
        logger.warning(f"Could not read stored name for {chat_jid}: {e}")
        return None


def _group_name(client: MessagingClient, jid: JID, metadata: Optional[ConversationMetadata]) -> str:
    if metadata is not None:
        if metadata.display_name:
            return metadata.display_name
        if metadata.name:
            return metadata.name
    name = client.get_group_name(jid)
    if name:
        return name
    return f"Group {jid.user}"


def _contact_name(client: MessagingClient, jid: JID, sender: str) -> str:
    name = client.get_contact_name(jid)
    if name:
        return name
    if sender:
        return sender
    return jid.user or str(jid)


def resolve_chat_name(
    db: Session,
    client: MessagingClient,
    jid: JID,
    metadata: Optional[ConversationMetadata] = None,
    sender: str = "",
    chat_jid: Optional[str] = None,
) -> str:
    """
    Decide the display name for a chat.

    Args:
        db: Session used to read the stored name
        client: Messaging client for directory and group-info lookups
        jid: Parsed chat identifier
        metadata: Inline names from a history-sync conversation
        sender: Fallback for individual chats when the directory has no name
        chat_jid: Chat id as stored, device suffix included; defaults to str(jid)

    Returns:
        A non-empty display name
    """
    chat_jid = chat_jid or str(jid)
    existing = _stored_name(db, chat_jid)
    if existing:
        logger.debug(f"Using existing chat name for {chat_jid}: {existing}")
        return existing

    if jid.is_group:
        name = _group_name(client, jid, metadata)
    else:
        name = _contact_name(client, jid, sender)

    logger.info(f"Resolved chat name for {chat_jid}: {name}")
    return name
