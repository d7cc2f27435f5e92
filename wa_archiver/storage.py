import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from wa_archiver.config import settings
from wa_archiver.exceptions import PersistenceError
from wa_archiver.utils import to_iso_utc

logger = logging.getLogger(__name__)

DATABASE_URL = settings.database_url

# check_same_thread=False is required for SQLite to be used from the threadpool
engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {},
    pool_pre_ping=True,
    echo=False,
)

# Create SessionLocal class for creating database sessions
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for SQLAlchemy models
Base = declarative_base()

REQUIRED_TABLES = ("chats", "messages")


def init_db() -> None:
    """
    Initialize the database by creating all tables.
    Called during application startup.
    """
    logger.debug(f"Initializing database with dialect: {engine.dialect.name}")
    try:
        # Import models to register them with Base.metadata
        from wa_archiver.models import Chat, Message  # noqa: F401

        Base.metadata.create_all(bind=engine)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


def check_db_health() -> bool:
    """
    Check if the database is reachable and schema is applied.

    Returns:
        True if DB is healthy and both tables exist, False otherwise.
    """
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
        tables = set(inspect(engine).get_table_names())
        missing = [name for name in REQUIRED_TABLES if name not in tables]
        if missing:
            logger.error(f"Database schema not applied, missing tables: {missing}")
            return False
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False


def _insert(db: Session, table):
    """Dialect-specific INSERT supporting ON CONFLICT DO UPDATE."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(table)
    if dialect == "sqlite":
        return sqlite.insert(table)
    raise PersistenceError(f"upsert not supported for dialect {dialect}")


# =============================================================================
# Chat Repository Functions
# =============================================================================

def store_chat(db: Session, jid: str, name: str, last_message_time: datetime) -> None:
    """
    Insert a chat or overwrite its name and last message time (last write wins).

    Raises:
        PersistenceError: if the statement fails
    """
    from wa_archiver.models import Chat

    values = {"jid": jid, "name": name, "last_message_time": to_iso_utc(last_message_time)}
    stmt = _insert(db, Chat.__table__).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=["jid"],
        set_={
            "name": stmt.excluded.name,
            "last_message_time": stmt.excluded.last_message_time,
        },
    )
    try:
        db.execute(stmt)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError(f"failed to store chat {jid}: {e}") from e
    logger.debug(f"Stored chat {jid} ({name}) at {values['last_message_time']}")


def get_chat(db: Session, jid: str):
    from wa_archiver.models import Chat

    return db.query(Chat).filter(Chat.jid == jid).first()


def get_chat_name(db: Session, jid: str) -> Optional[str]:
    """Stored display name of a chat, None when the chat is unknown or unnamed."""
    from wa_archiver.models import Chat

    try:
        name = db.query(Chat.name).filter(Chat.jid == jid).scalar()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError(f"failed to read chat name for {jid}: {e}") from e
    return name or None


# =============================================================================
# Message Repository Functions
# =============================================================================

def store_message(
    db: Session,
    message_id: str,
    chat_jid: str,
    sender: str,
    content: str,
    timestamp: datetime,
    is_from_me: bool,
    media_type: str = "",
    filename: str = "",
    url: str = "",
    media_key: bytes = b"",
    file_sha256: bytes = b"",
    file_enc_sha256: bytes = b"",
    file_length: int = 0,
) -> bool:
    """
    Store a message (idempotent upsert on (id, chat_jid)).

    Messages with neither content nor media are skipped.

    Returns:
        True if the message was written, False if it was skipped

    Raises:
        PersistenceError: if the statement fails
    """
    from wa_archiver.models import Message

    if not content and not media_type:
        logger.debug(f"Skipping empty message {message_id} in {chat_jid}")
        return False

    values = {
        "id": message_id,
        "chat_jid": chat_jid,
        "sender": sender,
        "content": content,
        "timestamp": to_iso_utc(timestamp),
        "is_from_me": is_from_me,
        "media_type": media_type,
        "filename": filename,
        "url": url,
        "media_key": media_key,
        "file_sha256": file_sha256,
        "file_enc_sha256": file_enc_sha256,
        "file_length": file_length,
    }
    stmt = _insert(db, Message.__table__).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=["id", "chat_jid"],
        set_={
            column: stmt.excluded[column]
            for column in values
            if column not in ("id", "chat_jid")
        },
    )
    try:
        db.execute(stmt)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError(f"failed to store message {message_id} in {chat_jid}: {e}") from e

    logger.debug(f"Stored message {message_id} in {chat_jid}")
    return True


def get_message(db: Session, message_id: str, chat_jid: str):
    from wa_archiver.models import Message

    return (
        db.query(Message)
        .filter(Message.id == message_id, Message.chat_jid == chat_jid)
        .first()
    )


def get_media_info(db: Session, message_id: str, chat_jid: str) -> Optional[dict]:
    """
    Stored media descriptor of a message, enough to fetch the media again.

    Returns:
        Dict of media fields, or None if the message is unknown
    """
    message = get_message(db, message_id, chat_jid)
    if message is None:
        return None
    return {
        "media_type": message.media_type or "",
        "filename": message.filename or "",
        "url": message.url or "",
        "media_key": message.media_key or b"",
        "file_sha256": message.file_sha256 or b"",
        "file_enc_sha256": message.file_enc_sha256 or b"",
        "file_length": message.file_length or 0,
    }
