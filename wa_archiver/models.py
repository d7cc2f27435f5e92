"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response schemas, see schemas.py.
"""

from sqlalchemy import BigInteger, Boolean, Column, ForeignKey, LargeBinary, String, Text

from wa_archiver.storage import Base


class Chat(Base):
    """
    One row per conversation.

    Table: chats
    Primary Key: jid
    """
    __tablename__ = "chats"

    jid = Column(String, primary_key=True)
    name = Column(String, nullable=True)
    last_message_time = Column(String, nullable=True)  # ISO-8601 UTC string


class Message(Base):
    """
    SQLAlchemy model for stored messages, text or media.

    Table: messages
    Primary Key: (id, chat_jid) so redelivery overwrites instead of appending
    """
    __tablename__ = "messages"

    id = Column(String, primary_key=True)
    chat_jid = Column(String, ForeignKey("chats.jid"), primary_key=True, index=True)
    sender = Column(String, nullable=True)
    content = Column(Text, nullable=True)
    timestamp = Column(String, nullable=False, index=True)  # ISO-8601 UTC string
    is_from_me = Column(Boolean, nullable=False, default=False)
    media_type = Column(String, nullable=True)
    filename = Column(String, nullable=True)
    url = Column(Text, nullable=True)
    media_key = Column(LargeBinary, nullable=True)
    file_sha256 = Column(LargeBinary, nullable=True)
    file_enc_sha256 = Column(LargeBinary, nullable=True)
    file_length = Column(BigInteger, nullable=True)
